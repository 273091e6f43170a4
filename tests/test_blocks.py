import geopandas as gpd
import pandas as pd
import pytest
from shapely import box

from openpedkit import corrections
from openpedkit.blocks import join_block_attributes, apply_employer_overrides, calc_block_densities, \
  calc_building_pairs, calc_block_heights, build_block_features


CRS = "EPSG:2272"


def _blocks() -> gpd.GeoDataFrame:
  return gpd.GeoDataFrame({
    "geoid": ["421010369001000", "421010369001002", "421010369009999"]
  }, geometry=[
    box(0, 0, 100, 10),
    box(100, 0, 200, 20),
    box(200, 0, 300, 10)
  ], crs=CRS)


def test_join_block_attributes():
  population = pd.DataFrame({"geoid": ["421010369001000", "421010369001002"], "population": [100, 50]})
  employment = pd.DataFrame({"geoid": ["421010369001000"], "jobs": [7.0]})
  gdf = join_block_attributes(_blocks(), population, employment)

  # absence from a source table means zero, not missing
  assert gdf["population"].tolist() == [100, 50, 0]
  assert gdf["jobs"].tolist() == [7.0, 0.0, 0.0]


def test_join_block_attributes_duplicate_geoid():
  population = pd.DataFrame({"geoid": ["421010369001000", "421010369001000"], "population": [100, 50]})
  employment = pd.DataFrame({"geoid": [], "jobs": []})
  with pytest.raises(ValueError):
    join_block_attributes(_blocks(), population, employment)


def test_employer_override_job_density():
  # one 1000 sq ft block, population 100, in the "full" override class
  blocks = gpd.GeoDataFrame({
    "geoid": ["421010369001000"],
    "population": [100],
    "jobs": [9999.0]
  }, geometry=[box(0, 0, 100, 10)], crs=CRS)

  gdf = apply_employer_overrides(blocks, base_jobs=1216.0, overrides={"full": ["421010369001000"]})
  gdf = calc_block_densities(gdf)

  assert gdf["area"].iloc[0] == pytest.approx(1000.0)
  assert gdf["jobs"].iloc[0] == 1216.0
  assert gdf["job_dens"].iloc[0] == pytest.approx(1.216)
  assert gdf["res_dens"].iloc[0] == pytest.approx(0.1)


def test_employer_override_classes():
  blocks = _blocks()
  blocks["population"] = [0, 0, 0]
  blocks["jobs"] = [1.0, 1.0, 1.0]
  with pytest.warns(UserWarning):
    # most of the default override GEOIDs are absent from this small sample
    gdf = apply_employer_overrides(blocks)

  base = corrections.EMPLOYER_BASE_JOBS
  assert gdf["jobs"].tolist() == [base, base * 2, 1.0]


def test_zero_area_density_is_missing():
  blocks = gpd.GeoDataFrame({
    "geoid": ["a"],
    "population": [10],
    "jobs": [5.0]
  }, geometry=[box(0, 0, 10, 0)], crs=CRS)
  gdf = calc_block_densities(blocks)
  assert pd.isna(gdf["res_dens"].iloc[0])
  assert pd.isna(gdf["job_dens"].iloc[0])


def test_block_heights():
  blocks = _blocks().reset_index(drop=True)
  buildings = gpd.GeoDataFrame({
    "max_height": [30.0, 50.0, 0.0, 0.0]
  }, geometry=[
    box(10, 2, 20, 8),
    box(30, 2, 40, 8),
    box(110, 2, 120, 8),
    box(500, 0, 510, 10)
  ], crs=CRS)

  pairs = calc_building_pairs(blocks, buildings)
  heights = calc_block_heights(blocks, pairs)

  assert heights.iloc[0] == pytest.approx(40.0)
  # a zero height is an unmeasured building, so a block of only those has no height
  assert pd.isna(heights.iloc[1])
  assert pd.isna(heights.iloc[2])


def test_build_block_features_clips_to_boundary():
  population = pd.DataFrame({"geoid": ["421010369001000", "421010369001002", "421010369009999"], "population": [100, 50, 20]})
  employment = pd.DataFrame({"geoid": ["421010369009999"], "jobs": [12.0]})
  buildings = gpd.GeoDataFrame({"max_height": [30.0]}, geometry=[box(10, 2, 20, 8)], crs=CRS)
  boundary = gpd.GeoDataFrame(geometry=[box(-10, -10, 150, 30)], crs=CRS)

  layer = build_block_features(_blocks(), population, employment, buildings, boundary=boundary, overrides={})

  assert layer.blocks["geoid"].tolist() == ["421010369001000", "421010369001002"]
  assert list(layer.blocks.index) == [0, 1]
  for col in ["area", "res_dens", "job_dens", "bldg_height"]:
    assert col in layer.blocks
  assert layer.blocks["bldg_height"].iloc[0] == pytest.approx(30.0)
  assert pd.isna(layer.blocks["bldg_height"].iloc[1])
  assert layer.building_pairs["block_pos"].tolist() == [0]


def test_building_pairs_zero_height_float_column():
  blocks = _blocks().reset_index(drop=True)
  buildings = gpd.GeoDataFrame({
    "max_height": pd.Series([30.0, 0.0], dtype="float64")
  }, geometry=[
    box(10, 2, 20, 8),
    box(30, 2, 40, 8)
  ], crs=CRS)

  pairs = calc_building_pairs(blocks, buildings)
  assert pairs["max_height"].dtype == "Float64"
  assert pairs["max_height"].iloc[0] == 30.0
  assert pd.isna(pairs["max_height"].iloc[1])
  # the source column is left untouched
  assert buildings["max_height"].tolist() == [30.0, 0.0]
