import geopandas as gpd
import numpy as np
import pytest
from shapely import LineString, box

from openpedkit.retail import calc_retail_area


CRS = "EPSG:2272"


def test_retail_area():
  streets = gpd.GeoDataFrame({"street_id": [1, 2]}, geometry=[
    LineString([(0, 0), (400, 0)]),
    LineString([(0, 5000), (400, 5000)])
  ], crs=CRS)
  parcels = gpd.GeoDataFrame({
    "leasable_area": [1000.0, 2500.0, 400.0, 9999.0, np.nan],
    "category": ["retail", "fb", "retail", "retail", "fb"]
  }, geometry=[
    box(10, 10, 50, 50),
    box(100, -100, 150, -55),
    box(300, 40, 320, 70),
    box(100, 100, 150, 150),
    box(200, 10, 220, 30)
  ], crs=CRS)

  with pytest.warns(UserWarning):
    df = calc_retail_area(streets, parcels, buffer_ft=60.0)
  print("")
  print(df)

  assert df["retail_area"].iloc[0] == 1400.0
  assert df["fb_area"].iloc[0] == 2500.0
  assert df["total_retail_area"].iloc[0] == 3900.0

  # no retail nearby is a zero, not a missing value
  assert df["retail_area"].iloc[1] == 0.0
  assert df["fb_area"].iloc[1] == 0.0
  assert df["total_retail_area"].iloc[1] == 0.0


def test_retail_missing_columns():
  streets = gpd.GeoDataFrame({"street_id": [1]}, geometry=[LineString([(0, 0), (1, 0)])], crs=CRS)
  parcels = gpd.GeoDataFrame({"category": ["retail"]}, geometry=[box(0, 0, 1, 1)], crs=CRS)
  with pytest.raises(ValueError):
    calc_retail_area(streets, parcels)
