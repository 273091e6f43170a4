import geopandas as gpd
import pandas as pd
import pytest
from shapely import LineString, box

from openpedkit.blocks import build_block_features
from openpedkit.streets import aggregate_block_features, apply_street_job_overrides, check_street_ids, BLOCK_FEATURES
from openpedkit.utilities.assertions import series_are_equal, dfs_are_equal


CRS = "EPSG:2272"


def _block_layer():
  # two blocks of unequal area and population sharing the edge y=10
  blocks = gpd.GeoDataFrame({"geoid": ["A", "B"]}, geometry=[
    box(0, 0, 100, 10),
    box(0, 10, 300, 110)
  ], crs=CRS)
  population = pd.DataFrame({"geoid": ["A", "B"], "population": [100, 600]})
  employment = pd.DataFrame({"geoid": ["A", "B"], "jobs": [50.0, 30.0]})
  buildings = gpd.GeoDataFrame({"max_height": [30.0, 60.0]}, geometry=[
    box(10, 2, 20, 8),
    box(50, 50, 60, 60)
  ], crs=CRS)
  return build_block_features(blocks, population, employment, buildings, overrides={})


def _streets() -> gpd.GeoDataFrame:
  return gpd.GeoDataFrame({"street_id": [1, 2]}, geometry=[
    LineString([(0, 10), (100, 10)]),
    LineString([(1000, 1000), (1100, 1000)])
  ], crs=CRS)


def test_unioned_density_differs_from_mean_density():
  layer = _block_layer()
  df = aggregate_block_features(_streets(), layer, buffer_ft=5.0)
  print("")
  print(df)

  row = df.iloc[0]
  unioned = (100 + 600) / (1000 + 30000)
  naive = (100 / 1000 + 600 / 30000) / 2

  assert row["res_dens"] == pytest.approx(unioned)
  assert row["job_dens"] == pytest.approx((50 + 30) / (1000 + 30000))
  assert abs(row["res_dens"] - naive) > 1e-3


def test_block_sums_count_every_vertex_match():
  layer = _block_layer()
  df = aggregate_block_features(_streets(), layer, buffer_ft=5.0)
  # both vertices touch both blocks
  assert df["n_res"].iloc[0] == pytest.approx(2 * (100 + 600))
  assert df["n_jobs"].iloc[0] == pytest.approx(2 * (50 + 30))
  # each building is counted once
  assert df["bldg_height"].iloc[0] == pytest.approx(45.0)


def test_street_outside_blocks_is_missing():
  layer = _block_layer()
  df = aggregate_block_features(_streets(), layer, buffer_ft=5.0)
  row = df[df["street_id"].eq(2)].iloc[0]
  for col in BLOCK_FEATURES:
    assert pd.isna(row[col]), f"{col} should be missing, got {row[col]}"
    assert df[col].dtype == "Float64"


def test_street_job_overrides():
  df = pd.DataFrame({
    "street_id": [1748, 1749],
    "n_jobs": pd.array([10.0, None], dtype="Float64"),
    "job_dens": pd.array([0.5, None], dtype="Float64")
  })
  result = apply_street_job_overrides(df)
  assert series_are_equal(result["n_jobs"], pd.Series(pd.array([8400.0, None], dtype="Float64")))
  # missing is not zero
  assert not series_are_equal(result["n_jobs"], pd.Series([8400.0, 0.0]))
  assert result["n_jobs"].iloc[0] == 8400.0
  assert pd.isna(result["n_jobs"].iloc[1])
  # density is left alone
  assert result["job_dens"].iloc[0] == 0.5
  assert df["n_jobs"].iloc[0] == 10.0

  with pytest.warns(UserWarning):
    apply_street_job_overrides(df, {9999: 1.0})


def test_duplicate_street_ids():
  streets = _streets()
  streets["street_id"] = [1, 1]
  with pytest.raises(ValueError):
    check_street_ids(streets)


def test_aggregation_independent_of_street_order():
  layer = _block_layer()
  streets = _streets()
  forward = aggregate_block_features(streets, layer)
  backward = aggregate_block_features(streets.iloc[::-1].reset_index(drop=True), layer)
  assert dfs_are_equal(forward, backward, primary_key="street_id")
