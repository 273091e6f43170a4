import warnings

import geopandas as gpd
import numpy as np
import pandas as pd

from openpedkit.streets import check_street_ids
from openpedkit.utilities.geometry import assert_same_crs, feet_to_crs_units, crs_units_to_feet


def assign_sensors(
    sensors: gpd.GeoDataFrame,
    streets: gpd.GeoDataFrame,
    max_distance_ft: float = None,
    verbose: bool = False
) -> pd.DataFrame:
  """
  Snap each pedestrian sensor to its nearest street segment.

  When a sensor is exactly equidistant from several segments it is assigned to the one with the lowest street_id.

  :param sensors: Sensor points with a "weekly_sum" column (may be missing).
  :param streets: Street segments with a unique "street_id".
  :param max_distance_ft: Optional search radius in feet. Sensors farther than this from every street are dropped
    with a warning.
  :param verbose: If True, prints progress messages.
  :returns: DataFrame with one row per assigned sensor: sensor_pos, street_id, weekly_sum, sensor_dist (feet).
  """
  check_street_ids(streets)
  assert_same_crs(sensors, streets)
  if "weekly_sum" not in sensors:
    raise ValueError("Column 'weekly_sum' not found in sensor table")

  if verbose:
    print(f"Assigning {len(sensors)} sensors to nearest streets...")

  df_sensors = gpd.GeoDataFrame({
    "sensor_pos": np.arange(len(sensors)),
    "weekly_sum": pd.to_numeric(sensors["weekly_sum"], errors="coerce").astype("Float64").array
  }, geometry=sensors.geometry.to_numpy(), crs=sensors.crs)
  df_streets = streets[["street_id", streets.geometry.name]]

  max_distance = None
  if max_distance_ft is not None:
    max_distance = feet_to_crs_units(streets.crs, max_distance_ft)

  joined = gpd.sjoin_nearest(df_sensors, df_streets, how="left", max_distance=max_distance, distance_col="sensor_dist")

  # equidistant streets produce one row each; keep the lowest street_id
  joined = joined.sort_values(by=["sensor_pos", "sensor_dist", "street_id"], ascending=[True, True, True])
  joined = joined.drop_duplicates(subset="sensor_pos", keep="first")

  unassigned = joined["street_id"].isna()
  if unassigned.any():
    warnings.warn(f"{unassigned.sum()} sensors are farther than {max_distance_ft}ft from every street and were dropped")
    joined = joined[~unassigned]

  result = pd.DataFrame({
    "sensor_pos": joined["sensor_pos"].to_numpy(),
    "street_id": joined["street_id"].to_numpy().astype(streets["street_id"].dtype),
    "weekly_sum": joined["weekly_sum"].astype("Float64").array,
    "sensor_dist": crs_units_to_feet(streets.crs, joined["sensor_dist"].to_numpy(dtype=np.float64))
  })
  return result.reset_index(drop=True)


def aggregate_sensor_counts(assigned: pd.DataFrame) -> pd.DataFrame:
  """
  Mean weekly pedestrian count per street over its assigned sensors. Missing readings are left out of the mean rather
  than counted as zero; a street whose sensors all lack readings has a missing mean_ped.

  :param assigned: Output of assign_sensors.
  :returns: DataFrame with street_id, mean_ped (nullable Float64), and n_sensors.
  """
  grouped = assigned.groupby("street_id", sort=True)
  df = pd.DataFrame({
    "mean_ped": grouped["weekly_sum"].mean().astype("Float64"),
    "n_sensors": grouped["sensor_pos"].count().astype(np.int64)
  })
  return df.reset_index()
