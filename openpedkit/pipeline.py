import os

import geopandas as gpd
import pandas as pd

from openpedkit.assemble import build_feature_table, split_partitions, write_output
from openpedkit.blocks import build_block_features
from openpedkit.checkpoint import from_checkpoint, delete_checkpoints
from openpedkit.data import load_layers, clip
from openpedkit.modeling import fit, diagnose, cross_validate, predict_partition, collinearity_report, \
  MODEL_PREDICTORS, PSEUDO_R2_PREDICTORS
from openpedkit.retail import calc_retail_area
from openpedkit.sensors import assign_sensors, aggregate_sensor_counts
from openpedkit.streets import aggregate_block_features, apply_street_job_overrides
from openpedkit.transit import combine_ridership_sources, calc_transit_distance, calc_ridership_sums, \
  RIDERSHIP_RADII_M, SURFACE_MODES, GRADE_SEPARATED_MODES
from openpedkit.utilities.settings import get_aggregation_settings, get_transit_settings, get_modeling_settings, \
  get_output_settings, get_corrections
from openpedkit.utilities.timing import TimingData


def build_street_features(layers: dict, settings: dict, verbose: bool = False) -> gpd.GeoDataFrame:
  """
  Run every aggregation stage and assemble the full per-street feature table (observed mean_ped included where the
  street has sensors).

  Streets and sensors are restricted to the district; blocks to the extended study area, so that streets near the
  district edge still see the blocks across it.

  :param layers: Output of openpedkit.data.load_layers.
  :param settings: Settings dictionary.
  :param verbose: If True, prints progress messages.
  :returns: One row per district street.
  """
  agg = get_aggregation_settings(settings)
  transit = get_transit_settings(settings)
  c = get_corrections(settings)

  streets = clip(layers["streets"], layers["district"]).reset_index(drop=True)
  sensors = clip(layers["sensors"], layers["district"]).reset_index(drop=True)
  if verbose:
    print(f"--> {len(streets)} streets and {len(sensors)} sensors in the district")

  block_layer = build_block_features(
    layers["blocks"],
    layers["population"],
    layers["employment"],
    layers["buildings"],
    boundary=layers["study_area"],
    base_jobs=c["employer_base_jobs"],
    overrides=c["employer_overrides"],
    verbose=verbose
  )

  block_features = aggregate_block_features(streets, block_layer, buffer_ft=agg.get("vertex_buffer_ft", 5.0), verbose=verbose)
  block_features = apply_street_job_overrides(block_features, c["street_job_overrides"], verbose=verbose)

  transit_distance = calc_transit_distance(streets, layers["transit_hubs"], buffer_ft=agg.get("midpoint_buffer_ft", 5.0), verbose=verbose)

  stops = combine_ridership_sources(layers["ridership"], transit.get("weekdays_per_week", 5), verbose=verbose)
  ridership = calc_ridership_sums(
    streets,
    stops,
    radii_m=agg.get("ridership_radii_m", RIDERSHIP_RADII_M),
    surface_modes=transit.get("surface_modes", SURFACE_MODES),
    grade_separated_modes=transit.get("grade_separated_modes", GRADE_SEPARATED_MODES),
    verbose=verbose
  )

  retail_area = calc_retail_area(streets, layers["retail"], buffer_ft=agg.get("retail_buffer_ft", 60.0), verbose=verbose)

  assigned = assign_sensors(sensors, streets, max_distance_ft=agg.get("max_sensor_distance_ft"), verbose=verbose)
  sensor_counts = aggregate_sensor_counts(assigned)

  return build_feature_table(
    streets,
    sensor_counts,
    block_features,
    transit_distance,
    retail_area,
    ridership,
    corridor_types=c["high_ped_corridor_types"],
    height_corrections=c["street_height_corrections"],
    verbose=verbose
  )


def run_pipeline(settings: dict, verbose: bool = False) -> dict:
  """
  Load every layer, build the street feature table, fit and validate the pedestrian volume model, predict volumes on
  the unmeasured streets, and write the combined table to the output csv.

  :param settings: Settings dictionary (see openpedkit.utilities.settings.load_settings).
  :param verbose: If True, prints progress messages, diagnostics and step timings.
  :returns: dict with the output "table", the fitted "model", its "diagnostics", the "cv" result, the "collinearity"
    report, and the output "path".
  """
  t = TimingData()
  modeling_settings = get_modeling_settings(settings)
  output = get_output_settings(settings)
  out_dir = output.get("dir", "out")
  use_checkpoints = output.get("use_checkpoints", False)
  checkpoint_dir = os.path.join(out_dir, "checkpoints")

  t.start("load")
  layers = load_layers(settings, verbose=verbose)
  t.stop("load")

  t.start("features")
  if not use_checkpoints:
    # stale stage outputs from an earlier run
    delete_checkpoints("street_features", checkpoint_dir)
  features = from_checkpoint(
    "street_features",
    build_street_features,
    {"layers": layers, "settings": settings, "verbose": verbose},
    use_checkpoint=use_checkpoints,
    out_dir=checkpoint_dir
  )
  modeling_rows, prediction_rows = split_partitions(features)
  t.stop("features")
  if verbose:
    print(f"--> {len(modeling_rows)} streets with sensor counts, {len(prediction_rows)} to predict")

  predictors = modeling_settings.get("predictors", MODEL_PREDICTORS)

  t.start("collinearity")
  candidates = modeling_settings.get("collinearity_candidates", predictors)
  collinearity = collinearity_report(modeling_rows, candidates, verbose=verbose)
  t.stop("collinearity")

  t.start("fit")
  model = fit(modeling_rows, predictors, verbose=verbose)
  t.stop("fit")

  t.start("diagnose")
  diagnostics = diagnose(
    model,
    modeling_rows,
    k=modeling_settings.get("knn", 6),
    permutations=modeling_settings.get("permutations", 999),
    seed=modeling_settings.get("seed", 777),
    pseudo_r2_predictors=modeling_settings.get("pseudo_r2_predictors", PSEUDO_R2_PREDICTORS),
    verbose=verbose
  )
  t.stop("diagnose")

  t.start("cross_validate")
  cv = cross_validate(modeling_rows, predictors, n_jobs=modeling_settings.get("n_jobs", 1), verbose=verbose)
  t.stop("cross_validate")

  t.start("predict")
  observed = modeling_rows.copy()
  observed["mean_ped_predicted"] = False
  predicted = predict_partition(model, prediction_rows)
  table = gpd.GeoDataFrame(pd.concat([observed, predicted]), geometry=features.geometry.name, crs=features.crs)
  t.stop("predict")

  t.start("write")
  path = os.path.join(out_dir, output.get("filename", "street_volumes.csv"))
  write_output(table, path, verbose=verbose)
  t.stop("write")

  if verbose:
    print("Timing:")
    t.print_summary()

  return {
    "table": table,
    "model": model,
    "diagnostics": diagnostics,
    "cv": cv,
    "collinearity": collinearity,
    "path": path
  }
