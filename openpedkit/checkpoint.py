import os
import pickle
from typing import Any

import geopandas as gpd
import pandas as pd


DEFAULT_CHECKPOINT_DIR = "out/checkpoints"


def from_checkpoint(path: str, func: callable, params: dict, use_checkpoint: bool = True, out_dir: str = DEFAULT_CHECKPOINT_DIR) -> Any:
  """
  Return the cached result of a pipeline stage if one exists, otherwise run the stage and cache its result.

  :param path: Checkpoint name, without extension.
  :param func: Function computing the stage.
  :param params: Keyword arguments for func.
  :param use_checkpoint: If False, always recompute (the result is still written).
  :param out_dir: Directory holding checkpoints.
  """
  if use_checkpoint and exists_checkpoint(path, out_dir):
    return read_checkpoint(path, out_dir)
  result = func(**params)
  write_checkpoint(result, path, out_dir)
  return result


def exists_checkpoint(path: str, out_dir: str = DEFAULT_CHECKPOINT_DIR) -> bool:
  for ext in ["parquet", "pickle"]:
    if os.path.exists(f"{out_dir}/{path}.{ext}"):
      return True
  return False


def read_checkpoint(path: str, out_dir: str = DEFAULT_CHECKPOINT_DIR) -> Any:
  full_path = f"{out_dir}/{path}.parquet"
  if os.path.exists(full_path):
    try:
      return gpd.read_parquet(full_path)
    except ValueError:
      # no geo metadata: a plain table
      return pd.read_parquet(full_path)
  with open(f"{out_dir}/{path}.pickle", "rb") as file:
    return pickle.load(file)


def write_checkpoint(data: Any, path: str, out_dir: str = DEFAULT_CHECKPOINT_DIR):
  os.makedirs(out_dir, exist_ok=True)
  if isinstance(data, gpd.GeoDataFrame):
    data.to_parquet(f"{out_dir}/{path}.parquet", engine="pyarrow")
  elif isinstance(data, pd.DataFrame):
    data.to_parquet(f"{out_dir}/{path}.parquet", engine="pyarrow")
  else:
    with open(f"{out_dir}/{path}.pickle", "wb") as file:
      pickle.dump(data, file)


def delete_checkpoints(prefix: str, out_dir: str = DEFAULT_CHECKPOINT_DIR):
  os.makedirs(out_dir, exist_ok=True)
  for file in os.listdir(out_dir):
    if file.startswith(prefix):
      os.remove(f"{out_dir}/{file}")
