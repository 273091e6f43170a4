import warnings

import geopandas as gpd
import numpy as np
import shapely
from pyproj import CRS
from shapely import Polygon, MultiPolygon


METERS_PER_FOOT = 0.3048
FEET_PER_METER = 1 / METERS_PER_FOOT


def meters_to_feet(meters: float) -> float:
  return meters * FEET_PER_METER


def crs_units_per_foot(crs) -> float:
  """
  Returns how many linear units of the given CRS make up one international foot.

  :param crs: Anything pyproj.CRS can parse.
  :return: CRS units per foot (1.0 for a foot-based CRS, 0.3048 for a meter-based CRS)
  """
  crs = ensure_projected(crs)
  meters_per_unit = crs.axis_info[0].unit_conversion_factor
  return METERS_PER_FOOT / meters_per_unit


def feet_to_crs_units(crs, feet: float) -> float:
  return feet * crs_units_per_foot(crs)


def crs_units_to_feet(crs, value):
  return value / crs_units_per_foot(crs)


def ensure_projected(crs) -> CRS:
  """
  Parses the CRS and makes sure it is projected; every buffer in this package is a linear distance, so degree-based
  coordinate systems are rejected.
  """
  if crs is None:
    raise ValueError("CRS is undefined")
  crs = CRS.from_user_input(crs)
  if not crs.is_projected:
    raise ValueError(f"CRS must be projected with linear units, got geographic CRS: {crs.to_string()}")
  return crs


def assert_same_crs(*gdfs: gpd.GeoDataFrame):
  crs = None
  for gdf in gdfs:
    if gdf.crs is None:
      raise ValueError("GeoDataFrame has no CRS")
    if crs is None:
      crs = gdf.crs
    elif not gdf.crs.equals(crs):
      raise ValueError(f"CRS mismatch: {crs.to_string()} vs {gdf.crs.to_string()}")


def get_midpoints(gdf: gpd.GeoDataFrame) -> gpd.GeoSeries:
  """
  Returns one representative point per feature: the point halfway along lines, and a point guaranteed to lie inside
  polygons.
  """
  geoms = gdf.geometry
  is_line = geoms.geom_type.isin(["LineString", "MultiLineString"])
  points = geoms.representative_point()
  if is_line.any():
    points[is_line] = geoms[is_line].interpolate(0.5, normalized=True)
  return points


def get_vertices(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
  """
  Explodes each feature into its distinct vertices.

  A polygon ring repeats its first vertex to close itself; repeated coordinates within one feature are collapsed so
  the closing vertex is not counted twice.

  :param gdf: Input GeoDataFrame of lines or polygons.
  :return: GeoDataFrame of points with a "source" column holding the positional index of the originating feature.
  """
  coords, source = shapely.get_coordinates(np.asarray(gdf.geometry.values), return_index=True)
  df = gpd.GeoDataFrame(
    {"source": source, "x": coords[:, 0], "y": coords[:, 1]},
    geometry=gpd.points_from_xy(coords[:, 0], coords[:, 1]),
    crs=gdf.crs
  )
  df = df.drop_duplicates(subset=["source", "x", "y"]).reset_index(drop=True)
  return df.drop(columns=["x", "y"])


def clean_geometry(gdf: gpd.GeoDataFrame, ensure_polygon: bool = False, verbose: bool = False) -> gpd.GeoDataFrame:
  """
  Drops null and empty geometries and repairs invalid polygons.

  :param gdf: The input GeoDataFrame.
  :param ensure_polygon: If True, drops every non-polygon geometry.
  :param verbose: If True, prints how many rows were dropped.
  :return: A cleaned copy of the GeoDataFrame.
  """
  n_before = len(gdf)

  warnings.filterwarnings('ignore', 'GeoSeries.notna', UserWarning)
  gdf = gdf[gdf.geometry.notna()].copy()
  warnings.filterwarnings('default', 'GeoSeries.notna', UserWarning)

  # Fix invalid polygons using buffer(0)
  def fix(geom):
    if isinstance(geom, (Polygon, MultiPolygon)) and not geom.is_valid:
      return geom.buffer(0)
    return geom

  gdf[gdf.geometry.name] = gdf.geometry.apply(fix)
  gdf = gdf[~gdf.geometry.is_empty]

  if ensure_polygon:
    gdf = gdf[gdf.geometry.geom_type.isin(["Polygon", "MultiPolygon"])]

  n_dropped = n_before - len(gdf)
  if n_dropped > 0 and verbose:
    print(f"--> dropped {n_dropped} rows with null, empty, or unusable geometry")
  return gdf


def buffer_in_feet(geoms: gpd.GeoSeries, feet: float) -> gpd.GeoSeries:
  """
  Buffers every geometry by a distance given in feet, whatever the linear unit of its CRS.
  """
  return geoms.buffer(feet_to_crs_units(geoms.crs, feet))
