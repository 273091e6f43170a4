import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely import LineString, Point, box

from openpedkit.data import load_layer, load_table, reproject, clip
from openpedkit.errors import LayerLoadError


def _settings(base_dir) -> dict:
  return {"locality": {"crs": "EPSG:2272"}, "data": {"base_dir": str(base_dir)}}


def _streets() -> gpd.GeoDataFrame:
  return gpd.GeoDataFrame({
    "streetID": [1, 2],
    "LocalInteg": [1.5, 2.5]
  }, geometry=[
    LineString([(2690000, 235000), (2690400, 235000)]),
    LineString([(2690400, 235000), (2690400, 235400)])
  ], crs="EPSG:2272")


def test_load_layer_parquet(tmp_path):
  _streets().to_crs("EPSG:32618").to_parquet(tmp_path / "streets.parquet")
  entry = {"filename": "streets.parquet", "load": {"street_id": "streetID", "local_integ": "LocalInteg"}}
  gdf = load_layer(entry, _settings(tmp_path))

  assert gdf.crs.to_epsg() == 2272
  assert "street_id" in gdf
  assert "local_integ" in gdf
  assert gdf["street_id"].tolist() == [1, 2]
  # reprojected back to the original coordinates
  assert gdf.geometry.iloc[0].coords[0][0] == pytest.approx(2690000, abs=1e-3)


def test_load_layer_empty_filename():
  assert load_layer({"filename": ""}, _settings("in")) is None


def test_load_layer_missing_file(tmp_path):
  with pytest.raises(LayerLoadError):
    load_layer({"filename": "nope.parquet"}, _settings(tmp_path))


def test_load_layer_missing_column(tmp_path):
  _streets().to_parquet(tmp_path / "streets.parquet")
  with pytest.raises(LayerLoadError):
    load_layer({"filename": "streets.parquet", "load": {"street_id": "STREET_ID"}}, _settings(tmp_path))


def test_load_layer_undefined_crs(tmp_path):
  gdf = gpd.GeoDataFrame({"a": [1]}, geometry=[Point(0, 0)])
  gdf.to_parquet(tmp_path / "no_crs.parquet")
  with pytest.raises(LayerLoadError):
    load_layer({"filename": "no_crs.parquet"}, _settings(tmp_path))


def test_load_layer_unreadable(tmp_path):
  with open(tmp_path / "broken.parquet", "w") as f:
    f.write("this is not a parquet file")
  with pytest.raises(LayerLoadError):
    load_layer({"filename": "broken.parquet"}, _settings(tmp_path))


def test_load_csv_points(tmp_path):
  pd.DataFrame({
    "X": [2690100.0, 2690200.0],
    "Y": [235000.0, 235010.0],
    "Weekly": [1000.0, np.nan]
  }).to_csv(tmp_path / "sensors.csv", index=False)

  entry = {"filename": "sensors.csv", "x": "X", "y": "Y", "crs": "EPSG:2272", "load": {"weekly_sum": "Weekly"}}
  gdf = load_layer(entry, _settings(tmp_path))
  assert len(gdf) == 2
  assert gdf.geometry.iloc[1].equals(Point(2690200.0, 235010.0))
  assert gdf["weekly_sum"].isna().tolist() == [False, True]

  # a csv layer must state its CRS
  del entry["crs"]
  with pytest.raises(LayerLoadError):
    load_layer(entry, _settings(tmp_path))


def test_load_table_keeps_geoid_strings(tmp_path):
  pd.DataFrame({"GEOID": ["010010201001000", "010010201001001"], "P1_001N": [10, 20]}).to_csv(tmp_path / "pop.csv", index=False)
  df = load_table({"filename": "pop.csv", "load": {"geoid": "GEOID", "population": "P1_001N"}}, _settings(tmp_path))
  assert df["geoid"].tolist() == ["010010201001000", "010010201001001"]
  assert df["population"].tolist() == [10, 20]


def test_reproject_identity():
  gdf = _streets()
  same = reproject(gdf, "EPSG:2272")
  for a, b in zip(gdf.geometry, same.geometry):
    assert a.equals_exact(b, 1e-9)


def test_reproject_round_trip():
  gdf = _streets()
  back = reproject(reproject(gdf, "EPSG:32618"), "EPSG:2272")
  for a, b in zip(gdf.geometry, back.geometry):
    assert a.equals_exact(b, 1e-4)


def test_reproject_undefined_crs():
  gdf = gpd.GeoDataFrame(geometry=[Point(0, 0)])
  with pytest.raises(LayerLoadError):
    reproject(gdf, "EPSG:2272")


def test_clip():
  gdf = gpd.GeoDataFrame({"id": [1, 2, 3]}, geometry=[
    Point(5, 5),
    LineString([(5, 5), (15, 5)]),
    Point(20, 20)
  ], crs="EPSG:2272")
  boundary = gpd.GeoDataFrame(geometry=[box(0, 0, 10, 10)], crs="EPSG:2272")

  intersecting = clip(gdf, boundary)
  assert intersecting["id"].tolist() == [1, 2]
  # features are kept whole
  assert intersecting.geometry.iloc[1].length == pytest.approx(10)

  within = clip(gdf, boundary, predicate="within")
  assert within["id"].tolist() == [1]

  with pytest.raises(ValueError):
    clip(gdf, boundary, predicate="touches")
