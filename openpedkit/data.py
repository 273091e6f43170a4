import os

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from pyproj import CRS
from shapely.geometry.base import BaseGeometry

from openpedkit.errors import LayerLoadError
from openpedkit.utilities.geometry import clean_geometry, ensure_projected
from openpedkit.utilities.settings import get_target_crs, get_base_dir, get_layer_entry


GEO_EXTENSIONS = ["shp", "geojson", "json", "gpkg", "fgb", "gdb", "zip"]


def load_layer(entry: dict, settings: dict, verbose: bool = False) -> gpd.GeoDataFrame | None:
  """
  Load a vector layer from a file based on instructions, rename its columns, and reproject it to the target CRS.

  The entry follows the convention {"filename": ..., "load": {new_name: original_name}}. Point layers may also be
  read from csv files, in which case the entry must name the coordinate columns ("x", "y") and the "crs" they are
  expressed in.

  :param entry: Dictionary with file loading instructions.
  :type entry: dict
  :param settings: Settings dictionary.
  :type settings: dict
  :param verbose: If True, prints progress information.
  :type verbose: bool, optional
  :returns: The loaded GeoDataFrame in the target CRS, or None if the entry has no filename.
  :rtype: geopandas.GeoDataFrame or None
  :raises LayerLoadError: If the file is missing or malformed, a column is missing, or the CRS is undefined.
  """
  filename = entry.get("filename", "")
  if filename == "":
    return None
  path = os.path.join(get_base_dir(settings), filename)
  if not os.path.exists(path):
    raise LayerLoadError(f"Layer file not found: \"{path}\"")
  ext = str(path).split(".")[-1].lower()

  if verbose:
    print(f"Loading \"{path}\"...")

  try:
    if ext == "parquet":
      gdf = gpd.read_parquet(path)
    elif ext == "csv":
      gdf = _read_csv_points(path, entry)
    elif ext in GEO_EXTENSIONS:
      gdf = gpd.read_file(path)
    else:
      raise LayerLoadError(f"Unsupported file extension: {ext}")
  except LayerLoadError:
    raise
  except Exception as e:
    raise LayerLoadError(f"Could not read layer \"{path}\": {e}") from e

  gdf = _rename_columns(gdf, entry.get("load", {}), path)
  gdf = clean_geometry(gdf, verbose=verbose)
  return reproject(gdf, get_target_crs(settings))


def load_table(entry: dict, settings: dict, verbose: bool = False) -> pd.DataFrame | None:
  """
  Load a plain attribute table (no geometry) from a csv or parquet file and rename its columns.

  :raises LayerLoadError: If the file is missing, unreadable, or lacks a requested column.
  """
  filename = entry.get("filename", "")
  if filename == "":
    return None
  path = os.path.join(get_base_dir(settings), filename)
  if not os.path.exists(path):
    raise LayerLoadError(f"Table file not found: \"{path}\"")
  ext = str(path).split(".")[-1].lower()

  if verbose:
    print(f"Loading \"{path}\"...")

  # identifiers such as census GEOIDs must keep their leading zeroes
  dtype_map = {original: "str" for new, original in entry.get("load", {}).items() if new == "geoid"}
  try:
    if ext == "csv":
      df = pd.read_csv(path, dtype=dtype_map)
    elif ext == "parquet":
      df = pd.read_parquet(path)
    else:
      raise LayerLoadError(f"Unsupported file extension: {ext}")
  except LayerLoadError:
    raise
  except Exception as e:
    raise LayerLoadError(f"Could not read table \"{path}\": {e}") from e

  df = _rename_columns(df, entry.get("load", {}), path)
  if "geoid" in df:
    df["geoid"] = df["geoid"].astype("string")
  return df


def load_layers(settings: dict, verbose: bool = False) -> dict:
  """
  Load every layer named in settings.data.layers. Ridership sources are returned as a nested dictionary keyed by
  transit mode.

  :raises LayerLoadError: If a required layer has no filename.
  """
  required = ["district", "study_area", "blocks", "population", "employment", "buildings", "streets", "transit_hubs",
    "retail", "sensors"]
  tables = ["population", "employment"]

  layers = {}
  for key in required:
    entry = get_layer_entry(settings, key)
    if entry.get("filename", "") == "":
      raise LayerLoadError(f"Required layer '{key}' has no filename in settings.data.layers")
    if key in tables:
      layers[key] = load_table(entry, settings, verbose)
    else:
      layers[key] = load_layer(entry, settings, verbose)

  ridership = {}
  for mode, entry in get_layer_entry(settings, "ridership").items():
    gdf = load_layer(entry, settings, verbose)
    if gdf is None:
      continue
    ridership[mode] = gdf
  if len(ridership) == 0:
    raise LayerLoadError("No ridership sources found in settings.data.layers.ridership")
  layers["ridership"] = ridership
  return layers


def reproject(gdf: gpd.GeoDataFrame, crs) -> gpd.GeoDataFrame:
  """
  Reproject a GeoDataFrame to the given CRS. Reprojecting to the CRS the layer already has returns an unchanged copy.

  :raises LayerLoadError: If the layer's CRS is undefined.
  """
  if gdf.crs is None:
    raise LayerLoadError("Layer has no CRS defined; refusing to assume one")
  try:
    target = ensure_projected(crs)
  except ValueError as e:
    raise LayerLoadError(str(e)) from e
  if gdf.crs.equals(target):
    return gdf.copy()
  return gdf.to_crs(target)


def clip(gdf: gpd.GeoDataFrame, boundary: gpd.GeoDataFrame | gpd.GeoSeries | BaseGeometry, predicate: str = "intersects") -> gpd.GeoDataFrame:
  """
  Select the features of gdf that intersect (or lie within) a boundary. Features are kept whole, not cut.

  :param gdf: The layer to clip.
  :param boundary: Boundary polygon(s). A GeoDataFrame/GeoSeries is reprojected to gdf's CRS and dissolved first; a
    bare shapely geometry is assumed to share gdf's CRS.
  :param predicate: "intersects" or "within".
  :returns: The selected rows.
  """
  if predicate not in ["intersects", "within"]:
    raise ValueError(f"Invalid clip predicate: {predicate}")

  if isinstance(boundary, (gpd.GeoDataFrame, gpd.GeoSeries)):
    boundary = reproject(boundary, gdf.crs)
    geom = shapely.union_all(np.asarray(boundary.geometry.values))
  else:
    geom = boundary

  if predicate == "intersects":
    mask = gdf.geometry.intersects(geom)
  else:
    mask = gdf.geometry.within(geom)
  return gdf[mask].copy()


def _read_csv_points(path: str, entry: dict) -> gpd.GeoDataFrame:
  x = entry.get("x")
  y = entry.get("y")
  crs = entry.get("crs")
  if x is None or y is None:
    raise LayerLoadError(f"csv layer \"{path}\" must name its coordinate columns with \"x\" and \"y\"")
  if crs is None:
    raise LayerLoadError(f"csv layer \"{path}\" has no \"crs\"; refusing to assume one")
  df = pd.read_csv(path)
  for col in [x, y]:
    if col not in df:
      raise LayerLoadError(f"Coordinate column '{col}' not found in \"{path}\"")
  return gpd.GeoDataFrame(
    df.drop(columns=[x, y]),
    geometry=gpd.points_from_xy(df[x], df[y]),
    crs=CRS.from_user_input(crs)
  )


def _rename_columns(df: pd.DataFrame, load_map: dict, path: str) -> pd.DataFrame:
  rename_map = {}
  for new_name, original in load_map.items():
    if original not in df:
      raise LayerLoadError(f"Column '{original}' (for '{new_name}') not found in \"{path}\"")
    rename_map[original] = new_name
  return df.rename(columns=rename_map)
