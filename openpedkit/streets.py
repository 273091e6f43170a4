import warnings

import geopandas as gpd
import numpy as np
import pandas as pd

from openpedkit import corrections
from openpedkit.blocks import BlockLayer
from openpedkit.utilities.geometry import assert_same_crs, get_vertices, buffer_in_feet


BLOCK_FEATURES = ["n_res", "n_jobs", "res_dens", "job_dens", "bldg_height"]


def check_street_ids(streets: gpd.GeoDataFrame):
  if "street_id" not in streets:
    raise ValueError("Column 'street_id' not found in streets table")
  n_dupes = streets["street_id"].duplicated().sum()
  if n_dupes > 0:
    raise ValueError(f"Found {n_dupes} duplicate street ids. street_id must be unique within a district.")


def aggregate_block_features(
    streets: gpd.GeoDataFrame,
    block_layer: BlockLayer,
    buffer_ft: float = 5.0,
    verbose: bool = False
) -> pd.DataFrame:
  """
  Aggregate block-level land-use features onto each street segment.

  Every distinct vertex of a segment is buffered by buffer_ft, and every block intersecting any of those buffers is
  matched to the segment. Matches are concatenated across vertices without de-duplication, so a block touched at both
  ends of a segment contributes twice to the sums. For a segment with at least one match:

  - n_res, n_jobs: sums of block population and jobs
  - res_dens, job_dens: summed population (jobs) over summed block area, a density over the matched footprint
  - bldg_height: mean height of the distinct buildings inside the distinct matched blocks

  A segment with no match lies outside the covered area; all five features are missing for it, never zero.

  :param streets: Street segments with a unique "street_id".
  :param block_layer: Output of openpedkit.blocks.build_block_features.
  :param buffer_ft: Vertex buffer radius, in feet.
  :param verbose: If True, prints progress messages.
  :returns: DataFrame with street_id and the five block features (nullable Float64), one row per street.
  """
  check_street_ids(streets)
  blocks = block_layer.blocks
  assert_same_crs(streets, blocks)

  if verbose:
    print(f"Aggregating block features onto {len(streets)} streets...")

  n = len(streets)
  vertices = get_vertices(streets)
  buffers = buffer_in_feet(vertices.geometry, buffer_ft)

  vert_pos, block_pos = blocks.sindex.query(buffers, predicate="intersects")
  street_pos = vertices["source"].to_numpy()[vert_pos]

  population = blocks["population"].to_numpy(dtype=np.float64)
  jobs = blocks["jobs"].to_numpy(dtype=np.float64)
  area = blocks["area"].to_numpy(dtype=np.float64)

  n_matches = np.bincount(street_pos, minlength=n)
  sum_pop = np.bincount(street_pos, weights=population[block_pos], minlength=n)
  sum_jobs = np.bincount(street_pos, weights=jobs[block_pos], minlength=n)
  sum_area = np.bincount(street_pos, weights=area[block_pos], minlength=n)

  has_match = n_matches > 0
  has_area = has_match & (sum_area > 0)

  res_dens = np.full(n, np.nan)
  job_dens = np.full(n, np.nan)
  res_dens[has_area] = sum_pop[has_area] / sum_area[has_area]
  job_dens[has_area] = sum_jobs[has_area] / sum_area[has_area]

  sum_pop[~has_match] = np.nan
  sum_jobs[~has_match] = np.nan

  if verbose:
    n_missing = (~has_match).sum()
    print(f"--> {n - n_missing} streets matched to blocks, {n_missing} outside the covered area")

  df = pd.DataFrame({
    "street_id": streets["street_id"].to_numpy(),
    "n_res": pd.array(sum_pop, dtype="Float64"),
    "n_jobs": pd.array(sum_jobs, dtype="Float64"),
    "res_dens": pd.array(res_dens, dtype="Float64"),
    "job_dens": pd.array(job_dens, dtype="Float64"),
  })
  df["bldg_height"] = _street_building_heights(street_pos, block_pos, block_layer.building_pairs, n)
  return df


def _street_building_heights(street_pos: np.ndarray, block_pos: np.ndarray, building_pairs: pd.DataFrame, n: int) -> pd.Series:
  # Heights are averaged over distinct buildings: a building straddling two matched blocks counts once
  matches = pd.DataFrame({"street_pos": street_pos, "block_pos": block_pos}).drop_duplicates()
  df = matches.merge(building_pairs, on="block_pos", how="inner")
  df = df.drop_duplicates(subset=["street_pos", "bldg_pos"])
  heights = df.groupby("street_pos")["max_height"].mean()
  return heights.reindex(range(n)).astype("Float64").reset_index(drop=True)


def apply_street_job_overrides(df: pd.DataFrame, overrides: dict = None, verbose: bool = False) -> pd.DataFrame:
  """
  Hard-set n_jobs for street segments fronting employers that the employment source leaves out.

  :param df: Street feature table with "street_id" and "n_jobs".
  :param overrides: {street_id: n_jobs}. Defaults to openpedkit.corrections.STREET_JOB_OVERRIDES.
  :param verbose: If True, prints each override applied.
  :returns: A copy of df with the overrides applied.
  """
  if overrides is None:
    overrides = corrections.STREET_JOB_OVERRIDES
  df = df.copy()
  for street_id, n_jobs in overrides.items():
    idx = df["street_id"].eq(street_id)
    if not idx.any():
      warnings.warn(f"Street job override for street {street_id} not applied: street not found")
      continue
    if verbose:
      print(f"--> street {street_id}: n_jobs {df.loc[idx, 'n_jobs'].iloc[0]} -> {n_jobs}")
    df.loc[idx, "n_jobs"] = n_jobs
  return df
