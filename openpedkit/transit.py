import warnings

import geopandas as gpd
import numpy as np
import pandas as pd

from openpedkit.errors import SpatialJoinAmbiguity
from openpedkit.streets import check_street_ids
from openpedkit.utilities.geometry import assert_same_crs, get_midpoints, buffer_in_feet, crs_units_to_feet, \
  meters_to_feet


RIDERSHIP_RADII_M = (250, 400, 500)
SURFACE_MODES = ("bus", "trolley")
GRADE_SEPARATED_MODES = ("el", "subway", "regional_rail")


def calc_weekly_riders(df: pd.DataFrame, weekdays_per_week: int = 5) -> pd.Series:
  """
  Weekly boardings from average weekday, Saturday and Sunday counts. Missing counts are treated as zero before summing.

  The source tables give an average weekday, so the weekday count is weighted by the number of weekdays in a week
  rather than added once. Pass weekdays_per_week=1 for a plain sum of the three counts.

  :param df: Table with "weekday", "saturday" and "sunday" columns.
  :param weekdays_per_week: How many times the weekday count occurs in a week.
  :returns: Series of weekly riders.
  """
  for col in ["weekday", "saturday", "sunday"]:
    if col not in df:
      raise ValueError(f"Column '{col}' not found in ridership table")
  weekday = pd.to_numeric(df["weekday"], errors="coerce").astype(np.float64).fillna(0.0)
  saturday = pd.to_numeric(df["saturday"], errors="coerce").astype(np.float64).fillna(0.0)
  sunday = pd.to_numeric(df["sunday"], errors="coerce").astype(np.float64).fillna(0.0)
  return weekday * weekdays_per_week + saturday + sunday


def combine_ridership_sources(sources: dict, weekdays_per_week: int = 5, verbose: bool = False) -> gpd.GeoDataFrame:
  """
  Stack per-mode ridership point tables into one stop layer with "mode" and "weekly_riders" columns.

  :param sources: {mode: GeoDataFrame of stops with weekday/saturday/sunday counts}
  :param weekdays_per_week: See calc_weekly_riders.
  :param verbose: If True, prints per-mode totals.
  """
  if len(sources) == 0:
    raise ValueError("No ridership sources given")
  frames = []
  for mode, gdf in sources.items():
    df = gpd.GeoDataFrame({
      "mode": mode,
      "weekly_riders": calc_weekly_riders(gdf, weekdays_per_week).to_numpy()
    }, geometry=gdf.geometry.to_numpy(), crs=gdf.crs)
    if verbose:
      print(f"--> {mode}: {len(df)} stops, {df['weekly_riders'].sum():,.0f} weekly riders")
    frames.append(df)
  assert_same_crs(*frames)
  return gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), geometry="geometry", crs=frames[0].crs)


def calc_transit_distance(streets: gpd.GeoDataFrame, hubs: gpd.GeoDataFrame, buffer_ft: float = 5.0, verbose: bool = False) -> pd.DataFrame:
  """
  Distance, in feet, from a small buffer around each street's midpoint to the nearest transit hub.

  :param streets: Street segments with a unique "street_id".
  :param hubs: Transit hub points.
  :param buffer_ft: Radius of the midpoint buffer, in feet.
  :param verbose: If True, prints progress messages.
  :returns: DataFrame with street_id and transit_dist.
  :raises SpatialJoinAmbiguity: If there are no hubs to measure against.
  """
  check_street_ids(streets)
  if hubs is None or len(hubs) == 0:
    raise SpatialJoinAmbiguity("Cannot compute transit distance: the transit hub layer is empty")
  assert_same_crs(streets, hubs)

  if verbose:
    print(f"Calculating distance to nearest transit hub for {len(streets)} streets...")

  n = len(streets)
  buffers = buffer_in_feet(get_midpoints(streets), buffer_ft)
  (street_pos, _), distances = hubs.sindex.nearest(buffers, return_all=False, return_distance=True)

  result = np.full(n, np.nan)
  result[street_pos] = crs_units_to_feet(streets.crs, distances)

  n_missing = np.isnan(result).sum()
  if n_missing > 0:
    warnings.warn(f"{n_missing} streets have no measurable geometry; their transit distance is missing")

  return pd.DataFrame({
    "street_id": streets["street_id"].to_numpy(),
    "transit_dist": pd.array(result, dtype="Float64")
  })


def calc_ridership_sums(
    streets: gpd.GeoDataFrame,
    stops: gpd.GeoDataFrame,
    radii_m: list | tuple = RIDERSHIP_RADII_M,
    surface_modes: list | tuple = SURFACE_MODES,
    grade_separated_modes: list | tuple = GRADE_SEPARATED_MODES,
    verbose: bool = False
) -> pd.DataFrame:
  """
  Sum weekly riders of the stops within each radius of the full street geometry.

  For every radius r (in meters) three columns are produced: riders_{r} over all stops, surface_riders_{r} over
  surface modes, and grade_riders_{r} over grade-separated modes. A street with no stop in range gets zero: no nearby
  transit is itself a measurement.

  :param streets: Street segments with a unique "street_id".
  :param stops: Stop points with "mode" and "weekly_riders" (see combine_ridership_sources).
  :param radii_m: Buffer radii, in meters.
  :param surface_modes: Modes counted as surface transit.
  :param grade_separated_modes: Modes counted as grade-separated transit.
  :param verbose: If True, prints progress messages.
  :returns: DataFrame with street_id and one column per radius and stop subset.
  """
  check_street_ids(streets)
  assert_same_crs(streets, stops)
  for col in ["mode", "weekly_riders"]:
    if col not in stops:
      raise ValueError(f"Column '{col}' not found in stops table")

  unknown = set(stops["mode"].unique()) - set(surface_modes) - set(grade_separated_modes)
  if len(unknown) > 0:
    warnings.warn(f"Modes {sorted(unknown)} are neither surface nor grade-separated; they only count toward the all-stop sums")

  n = len(streets)
  riders = stops["weekly_riders"].to_numpy(dtype=np.float64)
  subsets = {
    "riders": np.ones(len(stops), dtype=bool),
    "surface_riders": stops["mode"].isin(surface_modes).to_numpy(),
    "grade_riders": stops["mode"].isin(grade_separated_modes).to_numpy()
  }

  df = pd.DataFrame({"street_id": streets["street_id"].to_numpy()})
  for radius in radii_m:
    if verbose:
      print(f"--> summing ridership within {radius}m...")
    buffers = buffer_in_feet(streets.geometry, meters_to_feet(radius))
    street_pos, stop_pos = stops.sindex.query(buffers, predicate="intersects")
    for prefix, mask in subsets.items():
      weights = np.where(mask[stop_pos], riders[stop_pos], 0.0)
      df[f"{prefix}_{radius}"] = np.bincount(street_pos, weights=weights, minlength=n)
  return df
