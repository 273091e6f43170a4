import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely import LineString, Point

from openpedkit.sensors import assign_sensors, aggregate_sensor_counts


CRS = "EPSG:2272"


def _streets() -> gpd.GeoDataFrame:
  # street 7 and street 3 are parallel, 20ft apart; street 5 is far away
  return gpd.GeoDataFrame({"street_id": [7, 3, 5]}, geometry=[
    LineString([(0, 0), (100, 0)]),
    LineString([(0, 20), (100, 20)]),
    LineString([(0, 1000), (100, 1000)])
  ], crs=CRS)


def test_tie_goes_to_lowest_street_id():
  sensors = gpd.GeoDataFrame({"weekly_sum": [1000.0]}, geometry=[Point(50, 10)], crs=CRS)
  assigned = assign_sensors(sensors, _streets())
  assert assigned["street_id"].tolist() == [3]
  # EPSG:2272 is in US survey feet
  assert assigned["sensor_dist"].iloc[0] == pytest.approx(10.0, rel=1e-4)


def test_nearest_street():
  sensors = gpd.GeoDataFrame({"weekly_sum": [1000.0, 2000.0]}, geometry=[Point(50, 2), Point(50, 990)], crs=CRS)
  assigned = assign_sensors(sensors, _streets())
  assert assigned["street_id"].tolist() == [7, 5]
  assert assigned["sensor_pos"].tolist() == [0, 1]


def test_max_distance():
  sensors = gpd.GeoDataFrame({"weekly_sum": [1000.0, 2000.0]}, geometry=[Point(50, 2), Point(50, 500)], crs=CRS)
  with pytest.warns(UserWarning):
    assigned = assign_sensors(sensors, _streets(), max_distance_ft=100.0)
  assert assigned["street_id"].tolist() == [7]


def test_mean_ped_ignores_missing_readings():
  sensors = gpd.GeoDataFrame({
    "weekly_sum": [1000.0, np.nan, 3000.0, np.nan]
  }, geometry=[
    Point(10, 1),
    Point(20, 1),
    Point(30, -1),
    Point(50, 999)
  ], crs=CRS)
  assigned = assign_sensors(sensors, _streets())
  counts = aggregate_sensor_counts(assigned)
  print("")
  print(counts)

  row_7 = counts[counts["street_id"].eq(7)].iloc[0]
  row_5 = counts[counts["street_id"].eq(5)].iloc[0]

  # missing readings are left out, not averaged in as zero
  assert row_7["mean_ped"] == pytest.approx(2000.0)
  assert row_7["n_sensors"] == 3
  assert pd.isna(row_5["mean_ped"])
  assert row_5["n_sensors"] == 1
  assert counts["mean_ped"].dtype == "Float64"
