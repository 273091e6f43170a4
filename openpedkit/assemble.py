import os
import warnings

import geopandas as gpd
import pandas as pd

from openpedkit import corrections
from openpedkit.streets import check_street_ids
from openpedkit.utilities.data import left_join_on_key


def assemble_features(streets: gpd.GeoDataFrame, tables: list[pd.DataFrame], verbose: bool = False) -> gpd.GeoDataFrame:
  """
  Left join a sequence of per-street feature tables onto the street layer by street_id. Every street is kept; a
  street absent from a table receives missing values for that table's columns.

  :param streets: Street segments with a unique "street_id".
  :param tables: Per-street tables, each keyed by a unique "street_id".
  :param verbose: If True, prints each join.
  :returns: The joined GeoDataFrame, in the same row order as streets.
  """
  check_street_ids(streets)
  gdf = streets.copy()
  for table in tables:
    if verbose:
      cols = [c for c in table.columns if c != "street_id"]
      print(f"--> joining {cols}")
    gdf = left_join_on_key(gdf, table, "street_id")
  return gdf


def calc_high_ped_type(df: pd.DataFrame, corridor_types: list[str] = None) -> pd.Series:
  """
  1 if the street's corridor type is one of the high pedestrian categories, else 0.
  """
  if corridor_types is None:
    corridor_types = corrections.HIGH_PED_CORRIDOR_TYPES
  if "corridor_type" not in df:
    raise ValueError("Column 'corridor_type' not found in streets table")
  return df["corridor_type"].isin(corridor_types).astype(int)


def apply_height_corrections(df: pd.DataFrame, height_corrections: dict = None, verbose: bool = False) -> pd.DataFrame:
  """
  Hard-set bldg_height for streets with known data entry errors.

  :param df: Feature table with "street_id" and "bldg_height".
  :param height_corrections: {street_id: bldg_height}. Defaults to openpedkit.corrections.STREET_HEIGHT_CORRECTIONS.
  :param verbose: If True, prints each correction applied.
  """
  if height_corrections is None:
    height_corrections = corrections.STREET_HEIGHT_CORRECTIONS
  df = df.copy()
  for street_id, height in height_corrections.items():
    idx = df["street_id"].eq(street_id)
    if not idx.any():
      warnings.warn(f"Height correction for street {street_id} not applied: street not found")
      continue
    if verbose:
      print(f"--> street {street_id}: bldg_height {df.loc[idx, 'bldg_height'].iloc[0]} -> {height}")
    df.loc[idx, "bldg_height"] = height
  return df


def build_feature_table(
    streets: gpd.GeoDataFrame,
    sensor_counts: pd.DataFrame,
    block_features: pd.DataFrame,
    transit_distance: pd.DataFrame,
    retail_area: pd.DataFrame,
    ridership: pd.DataFrame,
    corridor_types: list[str] = None,
    height_corrections: dict = None,
    verbose: bool = False
) -> gpd.GeoDataFrame:
  """
  Assemble the modeling dataset: one row per street with the observed mean_ped (where sensors exist), block features,
  transit distance, retail floor area, ridership sums, and the high_ped_type flag, followed by the manual building
  height corrections.
  """
  if verbose:
    print(f"Assembling feature table for {len(streets)} streets...")
  gdf = assemble_features(streets, [sensor_counts, block_features, transit_distance, retail_area, ridership], verbose)
  gdf["high_ped_type"] = calc_high_ped_type(gdf, corridor_types)
  gdf = apply_height_corrections(gdf, height_corrections, verbose)
  if "n_sensors" in gdf:
    gdf["n_sensors"] = gdf["n_sensors"].fillna(0).astype(int)
  return gdf


def split_partitions(df: gpd.GeoDataFrame) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
  """
  Split the feature table into the modeling partition (streets with an observed mean_ped) and the prediction partition
  (every other street, with mean_ped unset).

  :returns: (modeling, prediction)
  """
  if "mean_ped" not in df:
    raise ValueError("Column 'mean_ped' not found in feature table")
  observed = df["mean_ped"].notna().astype(bool)
  modeling = df[observed].copy()
  prediction = df[~observed].copy()
  prediction["mean_ped"] = pd.array([pd.NA] * len(prediction), dtype="Float64")
  return modeling, prediction


def write_output(df: pd.DataFrame, path: str, verbose: bool = False):
  """
  Write the street table as a flat csv. Geometry is dropped and missing values are written as empty cells.
  """
  out_dir = os.path.dirname(path)
  if out_dir != "":
    os.makedirs(out_dir, exist_ok=True)
  df_out = pd.DataFrame(df.drop(columns=[df.geometry.name] if isinstance(df, gpd.GeoDataFrame) else [], errors="ignore"))
  df_out = df_out.sort_values(by="street_id").reset_index(drop=True)
  df_out.to_csv(path, index=False)
  if verbose:
    print(f"Wrote {len(df_out)} streets to \"{path}\"")
