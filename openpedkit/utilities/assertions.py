import numpy as np
import pandas as pd


def series_are_equal(a: pd.Series, b: pd.Series, epsilon: float = 1e-6) -> bool:
  """
  Compares two series value by value. Missing values must line up exactly: a missing entry on one side never equals a
  zero (or any number) on the other.
  """
  if len(a) != len(b):
    return False

  a_na = pd.isna(a).to_numpy()
  b_na = pd.isna(b).to_numpy()
  if not np.array_equal(a_na, b_na):
    return False

  a_vals = a[~a_na].to_numpy()
  b_vals = b[~b_na].to_numpy()

  a_is_num = pd.api.types.is_numeric_dtype(a.dtype)
  b_is_num = pd.api.types.is_numeric_dtype(b.dtype)

  if a_is_num and b_is_num:
    # compare floats with epsilon:
    if len(a_vals) == 0:
      return True
    return bool(np.max(np.abs(a_vals.astype(np.float64) - b_vals.astype(np.float64))) < epsilon)

  return bool(np.array_equal(a_vals, b_vals))


def dfs_are_equal(a: pd.DataFrame, b: pd.DataFrame, primary_key=None, epsilon: float = 1e-6) -> bool:
  if primary_key is not None:
    a = a.sort_values(by=primary_key).reset_index(drop=True)
    b = b.sort_values(by=primary_key).reset_index(drop=True)

  if set(a.columns) != set(b.columns):
    print(f"Columns do not match: A={list(a.columns)}, B={list(b.columns)}")
    return False
  if len(a) != len(b):
    print(f"Row counts do not match: A={len(a)}, B={len(b)}")
    return False
  for col in a.columns:
    if col == "geometry":
      continue
    if not series_are_equal(a[col], b[col], epsilon):
      print(f"Column {col} does not match, look:")
      print(a[col])
      print(b[col])
      return False
  return True
