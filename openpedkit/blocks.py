import warnings
from dataclasses import dataclass

import geopandas as gpd
import numpy as np
import pandas as pd

from openpedkit import corrections
from openpedkit.data import clip
from openpedkit.utilities.data import div_z_safe
from openpedkit.utilities.geometry import assert_same_crs


@dataclass
class BlockLayer:
  """
  Census blocks with their land-use features, plus the block/building pairs needed to average building heights over
  any group of blocks.

  Attributes:
      blocks (gpd.GeoDataFrame): One row per block, positionally indexed (0..n-1), with columns geoid, population,
        jobs, area, res_dens, job_dens, bldg_height.
      building_pairs (pd.DataFrame): One row per intersecting (block, building) pair, with columns block_pos,
        bldg_pos, max_height. A max_height of zero in the source is stored as missing.
  """
  blocks: gpd.GeoDataFrame
  building_pairs: pd.DataFrame


def join_block_attributes(blocks: gpd.GeoDataFrame, population: pd.DataFrame, employment: pd.DataFrame) -> gpd.GeoDataFrame:
  """
  Left join population and employment counts onto block geometry by GEOID. A block missing from the population table
  has zero residents; a block missing from the employment table has zero jobs.

  :raises ValueError: If a required column is missing or a table repeats a GEOID.
  """
  for name, df, cols in [("blocks", blocks, ["geoid"]), ("population", population, ["geoid", "population"]),
      ("employment", employment, ["geoid", "jobs"])]:
    for col in cols:
      if col not in df:
        raise ValueError(f"Column '{col}' not found in {name} table")
    n_dupes = df["geoid"].duplicated().sum()
    if n_dupes > 0:
      raise ValueError(f"Found {n_dupes} duplicate GEOIDs in the {name} table. De-duplicate it and try again.")

  gdf = blocks.drop(columns=["population", "jobs"], errors="ignore").copy()
  gdf["geoid"] = gdf["geoid"].astype("string")

  df_pop = population[["geoid", "population"]].copy()
  df_pop["geoid"] = df_pop["geoid"].astype("string")
  df_emp = employment[["geoid", "jobs"]].copy()
  df_emp["geoid"] = df_emp["geoid"].astype("string")

  gdf = gdf.merge(df_pop, on="geoid", how="left")
  gdf = gdf.merge(df_emp, on="geoid", how="left")
  gdf["population"] = pd.to_numeric(gdf["population"]).fillna(0).astype(np.int64)
  gdf["jobs"] = pd.to_numeric(gdf["jobs"]).fillna(0).astype(np.float64)
  return gdf


def apply_employer_overrides(
    blocks: gpd.GeoDataFrame,
    base_jobs: float = corrections.EMPLOYER_BASE_JOBS,
    overrides: dict = None,
    verbose: bool = False
) -> gpd.GeoDataFrame:
  """
  Replace the job count of hand-identified blocks with fixed values, redistributing a large employer's workforce
  across the blocks its campus covers.

  :param blocks: Blocks with "geoid" and "jobs" columns.
  :param base_jobs: Job count assigned to blocks in the "full" class.
  :param overrides: {"full": [geoid, ...], "double": [...], "half": [...]}. Defaults to the lists in
    openpedkit.corrections.
  :param verbose: If True, prints each override applied.
  :returns: A copy of blocks with overridden job counts.
  """
  if overrides is None:
    overrides = {
      "full": corrections.EMPLOYER_BLOCKS_FULL,
      "double": corrections.EMPLOYER_BLOCKS_DOUBLE,
      "half": corrections.EMPLOYER_BLOCKS_HALF
    }
  gdf = blocks.copy()
  for override_class, geoids in overrides.items():
    if override_class not in corrections.EMPLOYER_OVERRIDE_MULTIPLIERS:
      raise ValueError(f"Unknown employer override class '{override_class}'")
    jobs = base_jobs * corrections.EMPLOYER_OVERRIDE_MULTIPLIERS[override_class]
    for geoid in geoids:
      idx = gdf["geoid"].eq(geoid).fillna(False).astype(bool)
      if not idx.any():
        warnings.warn(f"Employer override block {geoid} not found among blocks; skipping")
        continue
      if verbose:
        print(f"--> block {geoid}: jobs {gdf.loc[idx, 'jobs'].iloc[0]} -> {jobs} ({override_class})")
      gdf.loc[idx, "jobs"] = jobs
  return gdf


def calc_block_densities(blocks: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
  """
  Add block area (in squared CRS units) and residential and job densities. A zero-area block has missing densities.
  """
  gdf = blocks.copy()
  gdf["area"] = gdf.geometry.area
  gdf["res_dens"] = div_z_safe(gdf, "population", "area")
  gdf["job_dens"] = div_z_safe(gdf, "jobs", "area")
  return gdf


def calc_building_pairs(blocks: gpd.GeoDataFrame, buildings: gpd.GeoDataFrame) -> pd.DataFrame:
  """
  Find every building that intersects each block, via the buildings' spatial index.

  A MAX_HEIGHT of exactly zero marks an unmeasured building, not a real height, so it is stored as missing.

  :param blocks: Positionally indexed blocks.
  :param buildings: Building footprints with a "max_height" column.
  :returns: DataFrame with columns block_pos, bldg_pos, max_height.
  """
  assert_same_crs(blocks, buildings)
  if "max_height" not in buildings:
    raise ValueError("Column 'max_height' not found in buildings table")

  heights = pd.to_numeric(buildings["max_height"], errors="coerce").to_numpy(dtype=np.float64, na_value=np.nan, copy=True)
  heights[heights == 0] = np.nan

  block_pos, bldg_pos = buildings.sindex.query(blocks.geometry, predicate="intersects")
  return pd.DataFrame({
    "block_pos": block_pos.astype(np.int64),
    "bldg_pos": bldg_pos.astype(np.int64),
    "max_height": pd.array(heights[bldg_pos], dtype="Float64")
  })


def calc_block_heights(blocks: gpd.GeoDataFrame, building_pairs: pd.DataFrame) -> pd.Series:
  """
  Mean building height per block, ignoring missing heights. Blocks without any measured building are missing.
  """
  heights = building_pairs.groupby("block_pos")["max_height"].mean()
  heights = heights.reindex(range(len(blocks))).astype("Float64")
  heights.index = blocks.index
  return heights


def build_block_features(
    blocks: gpd.GeoDataFrame,
    population: pd.DataFrame,
    employment: pd.DataFrame,
    buildings: gpd.GeoDataFrame,
    boundary: gpd.GeoDataFrame = None,
    base_jobs: float = corrections.EMPLOYER_BASE_JOBS,
    overrides: dict = None,
    verbose: bool = False
) -> BlockLayer:
  """
  Build the block-level feature layer: join population and employment, apply the employer overrides, clip to the
  study area, compute densities, and average building heights.

  :param blocks: Census block polygons with a "geoid" column.
  :param population: Table with "geoid" and "population".
  :param employment: Table with "geoid" and "jobs".
  :param buildings: Building footprints with "max_height".
  :param boundary: Optional boundary to clip the blocks to (blocks intersecting it are kept).
  :param base_jobs: Base job count for the employer overrides.
  :param overrides: Employer override classes, see apply_employer_overrides.
  :param verbose: If True, prints progress messages.
  :returns: The BlockLayer.
  """
  if verbose:
    print("Building block features...")
    print("--> joining population and employment...")
  gdf = join_block_attributes(blocks, population, employment)

  if verbose:
    print("--> applying employer overrides...")
  gdf = apply_employer_overrides(gdf, base_jobs, overrides, verbose)

  if boundary is not None:
    n_before = len(gdf)
    gdf = clip(gdf, boundary)
    if verbose:
      print(f"--> clipped blocks to boundary: {n_before} -> {len(gdf)}")
  gdf = gdf.reset_index(drop=True)

  if verbose:
    print("--> calculating densities...")
  gdf = calc_block_densities(gdf)

  if verbose:
    print("--> averaging building heights...")
  pairs = calc_building_pairs(gdf, buildings)
  gdf["bldg_height"] = calc_block_heights(gdf, pairs)

  return BlockLayer(blocks=gdf, building_pairs=pairs)
