import warnings

import geopandas as gpd
import numpy as np
import pandas as pd

from openpedkit.streets import check_street_ids
from openpedkit.utilities.geometry import assert_same_crs, buffer_in_feet


RETAIL_CATEGORIES = {
  "retail": "retail_area",
  "fb": "fb_area"
}


def calc_retail_area(streets: gpd.GeoDataFrame, parcels: gpd.GeoDataFrame, buffer_ft: float = 60.0, verbose: bool = False) -> pd.DataFrame:
  """
  Sum the leasable floor area of retail and food-and-beverage parcels intersecting a buffer around each street.

  No nearby retail is a valid measurement: streets with no intersecting parcel get zero, not missing.

  :param streets: Street segments with a unique "street_id".
  :param parcels: Parcel polygons with "leasable_area" and "category" ("retail" or "fb").
  :param buffer_ft: Buffer radius, in feet.
  :param verbose: If True, prints progress messages.
  :returns: DataFrame with street_id, retail_area, fb_area, total_retail_area.
  """
  check_street_ids(streets)
  assert_same_crs(streets, parcels)
  for col in ["leasable_area", "category"]:
    if col not in parcels:
      raise ValueError(f"Column '{col}' not found in retail parcel table")

  unknown = set(parcels["category"].dropna().unique()) - set(RETAIL_CATEGORIES)
  if len(unknown) > 0:
    warnings.warn(f"Ignoring retail parcels with unknown categories: {sorted(unknown)}")

  if verbose:
    print(f"Summing retail floor area within {buffer_ft}ft of {len(streets)} streets...")

  n = len(streets)
  area = pd.to_numeric(parcels["leasable_area"], errors="coerce").to_numpy(dtype=np.float64, na_value=np.nan)
  n_missing_area = np.isnan(area).sum()
  if n_missing_area > 0:
    warnings.warn(f"{n_missing_area} retail parcels have no leasable area and contribute nothing")
  area = np.nan_to_num(area, nan=0.0)
  category = parcels["category"].to_numpy()

  buffers = buffer_in_feet(streets.geometry, buffer_ft)
  street_pos, parcel_pos = parcels.sindex.query(buffers, predicate="intersects")

  df = pd.DataFrame({"street_id": streets["street_id"].to_numpy()})
  for key, field in RETAIL_CATEGORIES.items():
    weights = np.where(category[parcel_pos] == key, area[parcel_pos], 0.0)
    df[field] = np.bincount(street_pos, weights=weights, minlength=n)
  df["total_retail_area"] = df["retail_area"] + df["fb_area"]
  return df
