import os

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import LineString, Point, box

from openpedkit.corrections import HIGH_PED_CORRIDOR_TYPES


DEFAULT_PARAMS = {
  "crs": "EPSG:2272",
  "origin": (2690000.0, 235000.0),
  "width_in_blocks": 8,
  "height_in_blocks": 8,
  "block_size_ft": 400.0,
  "half_road_width_ft": 3.0,
  "n_sensors": 40,
  "seed": 1337
}

RIDERSHIP_MODES = {
  "bus": 30,
  "trolley": 8,
  "el": 3,
  "subway": 3,
  "regional_rail": 1
}

OTHER_CORRIDOR_TYPES = ["Urban Arterial", "Local Street", "Park Road", "Shared Narrow"]


class SynDistrict:
  """
  A synthetic street grid with every input layer of the pedestrian volume pipeline: census blocks with population and
  employment, buildings, streets, transit hubs, ridership stops per mode, retail parcels and pedestrian sensors.

  Streets run along the grid lines and are split at every intersection. Blocks are inset from the street centerlines
  by half a road width, so intersection vertices fall within a few feet of the surrounding block corners. Activity
  (integration, jobs, ridership, foot traffic) peaks at the center of the grid.

  Block GEOIDs use tract 036900 and number blocks from 1000 upward, so the first blocks carry the GEOIDs of the
  employer override lists in openpedkit.corrections.
  """

  def __init__(self, params: dict = None):
    p = DEFAULT_PARAMS.copy()
    if params is not None:
      p.update(params)
    self.crs = p["crs"]
    self.origin = p["origin"]
    self.width_in_blocks = p["width_in_blocks"]
    self.height_in_blocks = p["height_in_blocks"]
    self.block_size = p["block_size_ft"]
    self.half_road_width = p["half_road_width_ft"]
    self.n_sensors = p["n_sensors"]
    self.rng = np.random.default_rng(p["seed"])

    self.gdf_district: gpd.GeoDataFrame | None = None
    self.gdf_study_area: gpd.GeoDataFrame | None = None
    self.gdf_blocks: gpd.GeoDataFrame | None = None
    self.df_population: pd.DataFrame | None = None
    self.df_employment: pd.DataFrame | None = None
    self.gdf_buildings: gpd.GeoDataFrame | None = None
    self.gdf_streets: gpd.GeoDataFrame | None = None
    self.gdf_hubs: gpd.GeoDataFrame | None = None
    self.ridership: dict = {}
    self.gdf_retail: gpd.GeoDataFrame | None = None
    self.gdf_sensors: gpd.GeoDataFrame | None = None

    self.setup()

  def setup(self):
    x0, y0 = self.origin
    self.center = (
      x0 + self.width_in_blocks * self.block_size / 2,
      y0 + self.height_in_blocks * self.block_size / 2
    )
    self.max_radius = np.hypot(self.width_in_blocks, self.height_in_blocks) * self.block_size / 2
    self.build_grid()
    self.build_boundaries()
    self.build_transit()
    self.build_retail()
    self.build_sensors()

  def _centrality(self, x: float, y: float) -> float:
    # 1 at the center of the grid, falling to 0 at the corners
    d = np.hypot(x - self.center[0], y - self.center[1])
    return float(max(0.0, 1.0 - d / self.max_radius))

  def build_grid(self):
    x0, y0 = self.origin
    size = self.block_size
    inset = self.half_road_width

    blocks = []
    buildings = []
    for x in range(self.width_in_blocks):
      for y in range(self.height_in_blocks):
        i = x * self.height_in_blocks + y
        left = x0 + x * size
        bottom = y0 + y * size
        c = self._centrality(left + size / 2, bottom + size / 2)
        geoid = f"42101036900{1000 + i:04d}"
        blocks.append({
          "GEOID20": geoid,
          "population": int(self.rng.integers(0, 400) * (0.5 + c)),
          "jobs": float(self.rng.integers(0, 600) * (0.2 + 2 * c)),
          "geometry": box(left + inset, bottom + inset, left + size - inset, bottom + size - inset)
        })

        # two footprints per block; a zero height is a missing value in the source data
        for b in range(2):
          bx = left + inset + 20 + b * size / 2
          by = bottom + inset + 20
          height = float(self.rng.uniform(15, 60) + 200 * c * self.rng.random())
          if self.rng.random() < 0.05:
            height = 0.0
          buildings.append({
            "MAX_HEIGHT": height,
            "geometry": box(bx, by, bx + size / 2 - 60, by + size - 2 * inset - 40)
          })

    streets = []
    street_id = 1
    for y in range(self.height_in_blocks + 1):
      for x in range(self.width_in_blocks):
        streets.append(self._street(street_id, (x0 + x * size, y0 + y * size), (x0 + (x + 1) * size, y0 + y * size)))
        street_id += 1
    for x in range(self.width_in_blocks + 1):
      for y in range(self.height_in_blocks):
        streets.append(self._street(street_id, (x0 + x * size, y0 + y * size), (x0 + x * size, y0 + (y + 1) * size)))
        street_id += 1

    df_blocks = pd.DataFrame(blocks)
    self.gdf_blocks = gpd.GeoDataFrame(df_blocks[["GEOID20", "geometry"]], geometry="geometry", crs=self.crs)
    self.df_population = pd.DataFrame({"GEOID": df_blocks["GEOID20"], "P1_001N": df_blocks["population"]})
    self.df_employment = pd.DataFrame({"w_geocode": df_blocks["GEOID20"], "C000": df_blocks["jobs"]})
    self.gdf_buildings = gpd.GeoDataFrame(buildings, geometry="geometry", crs=self.crs)
    self.gdf_streets = gpd.GeoDataFrame(streets, geometry="geometry", crs=self.crs)

  def _street(self, street_id: int, start: tuple, end: tuple) -> dict:
    line = LineString([start, end])
    c = self._centrality(line.centroid.x, line.centroid.y)
    if c > 0.75:
      corridor_type = HIGH_PED_CORRIDOR_TYPES[int(self.rng.integers(0, len(HIGH_PED_CORRIDOR_TYPES)))]
    else:
      corridor_type = OTHER_CORRIDOR_TYPES[int(self.rng.integers(0, len(OTHER_CORRIDOR_TYPES)))]
    return {
      "streetID": street_id,
      "CS_TYPE": corridor_type,
      "LocalInteg": 1.0 + 3.0 * c + self.rng.normal(0, 0.2),
      "geometry": line
    }

  def build_boundaries(self):
    x0, y0 = self.origin
    x1 = x0 + self.width_in_blocks * self.block_size
    y1 = y0 + self.height_in_blocks * self.block_size
    self.gdf_district = gpd.GeoDataFrame({"name": ["district"]}, geometry=[box(x0 - 10, y0 - 10, x1 + 10, y1 + 10)], crs=self.crs)
    self.gdf_study_area = gpd.GeoDataFrame({"name": ["study_area"]}, geometry=[box(x0 - 1000, y0 - 1000, x1 + 1000, y1 + 1000)], crs=self.crs)

  def _random_points(self, n: int, spread: float) -> list[Point]:
    # points scattered around the center of the grid
    xy = self.rng.normal(0, spread, size=(n, 2))
    return [Point(self.center[0] + dx, self.center[1] + dy) for dx, dy in xy]

  def build_transit(self):
    x0, y0 = self.origin
    size = self.block_size
    hubs = [
      Point(x0 + x * size, y0 + y * size)
      for x in range(0, self.width_in_blocks + 1, 3)
      for y in range(0, self.height_in_blocks + 1, 3)
    ]
    self.gdf_hubs = gpd.GeoDataFrame({"hub_id": np.arange(len(hubs))}, geometry=hubs, crs=self.crs)

    spread = self.width_in_blocks * size / 4
    self.ridership = {}
    for mode, n in RIDERSHIP_MODES.items():
      points = self._random_points(n, spread)
      scale = 400 if mode in ["bus", "trolley"] else 4000
      weekday = self.rng.integers(0, scale, size=n).astype(float)
      df = pd.DataFrame({
        "Weekday_Boards": weekday,
        "Saturday_Boards": np.round(weekday * 0.6),
        "Sunday_Boards": np.round(weekday * 0.4)
      })
      # some sources leave weekend counts blank
      if n > 2:
        df.loc[0, "Sunday_Boards"] = np.nan
      self.ridership[mode] = gpd.GeoDataFrame(df, geometry=points, crs=self.crs)

  def build_retail(self):
    parcels = []
    for geom in self.gdf_blocks.geometry:
      minx, miny, maxx, maxy = geom.bounds
      c = self._centrality((minx + maxx) / 2, (miny + maxy) / 2)
      if self.rng.random() > 0.3 + 0.6 * c:
        continue
      parcels.append({
        "GLA_SQFT": float(self.rng.integers(1000, 20000)),
        "CATEGORY": "retail" if self.rng.random() < 0.6 else "fb",
        "geometry": box(minx, miny, minx + 80, miny + 80)
      })
    self.gdf_retail = gpd.GeoDataFrame(parcels, geometry="geometry", crs=self.crs)

  def build_sensors(self):
    streets = self.gdf_streets
    n = min(self.n_sensors, len(streets))
    chosen = self.rng.choice(len(streets), size=n, replace=False)

    points = []
    weekly = []
    for pos in chosen:
      line = streets.geometry.iloc[pos]
      mid = line.interpolate(0.5, normalized=True)
      (ax, ay), (bx, by) = line.coords[0], line.coords[-1]
      length = np.hypot(bx - ax, by - ay)
      # two feet off the centerline, on the sidewalk
      points.append(Point(mid.x - 2 * (by - ay) / length, mid.y + 2 * (bx - ax) / length))
      rate = np.exp(6.0 + 0.6 * streets["LocalInteg"].iloc[pos])
      weekly.append(float(self.rng.poisson(rate)))

    weekly = np.array(weekly)
    weekly[self.rng.random(n) < 0.05] = np.nan
    self.gdf_sensors = gpd.GeoDataFrame({"weekly_sum": weekly}, geometry=points, crs=self.crs)

  def to_layers(self) -> dict:
    """
    The district's layers as openpedkit.data.load_layers returns them, with columns already renamed.
    """
    return {
      "district": self.gdf_district.copy(),
      "study_area": self.gdf_study_area.copy(),
      "blocks": self.gdf_blocks.rename(columns={"GEOID20": "geoid"}),
      "population": self.df_population.rename(columns={"GEOID": "geoid", "P1_001N": "population"}).astype({"geoid": "string"}),
      "employment": self.df_employment.rename(columns={"w_geocode": "geoid", "C000": "jobs"}).astype({"geoid": "string"}),
      "buildings": self.gdf_buildings.rename(columns={"MAX_HEIGHT": "max_height"}),
      "streets": self.gdf_streets.rename(columns={"streetID": "street_id", "CS_TYPE": "corridor_type", "LocalInteg": "local_integ"}),
      "transit_hubs": self.gdf_hubs.copy(),
      "ridership": {
        mode: gdf.rename(columns={"Weekday_Boards": "weekday", "Saturday_Boards": "saturday", "Sunday_Boards": "sunday"})
        for mode, gdf in self.ridership.items()
      },
      "retail": self.gdf_retail.rename(columns={"GLA_SQFT": "leasable_area", "CATEGORY": "category"}),
      "sensors": self.gdf_sensors.copy()
    }

  def write(self, base_dir: str, out_dir: str = "out") -> dict:
    """
    Write every layer to base_dir in its raw source form and return a settings object pointing at them, suitable for
    openpedkit.utilities.settings.load_settings(settings_object=...).
    """
    os.makedirs(base_dir, exist_ok=True)
    files = {
      "district": ("district.parquet", self.gdf_district),
      "study_area": ("study_area.parquet", self.gdf_study_area),
      "blocks": ("blocks.parquet", self.gdf_blocks),
      "population": ("population.csv", self.df_population),
      "employment": ("employment.csv", self.df_employment),
      "buildings": ("buildings.parquet", self.gdf_buildings),
      "streets": ("streets.parquet", self.gdf_streets),
      "transit_hubs": ("transit_hubs.parquet", self.gdf_hubs),
      "retail": ("retail.parquet", self.gdf_retail),
      "sensors": ("sensors.parquet", self.gdf_sensors)
    }
    layers = {}
    for key, (filename, df) in files.items():
      path = os.path.join(base_dir, filename)
      if isinstance(df, gpd.GeoDataFrame):
        df.to_parquet(path, engine="pyarrow")
      else:
        df.to_csv(path, index=False)
      layers[key] = {"filename": filename}

    layers["ridership"] = {}
    for mode, gdf in self.ridership.items():
      filename = f"ridership_{mode}.parquet"
      gdf.to_parquet(os.path.join(base_dir, filename), engine="pyarrow")
      layers["ridership"][mode] = {"filename": filename}

    return {
      "locality": {"name": "Synthetic District", "slug": "synthetic", "crs": self.crs},
      "data": {"base_dir": base_dir, "layers": layers},
      "output": {"dir": out_dir}
    }
