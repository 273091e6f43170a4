import numpy as np
import pandas as pd


def to_nullable_float(values) -> pd.Series:
  """
  Convert a series or array to pandas' nullable Float64 dtype, turning NaN into pd.NA so that "missing" survives joins
  and arithmetic instead of being confused with a number.
  """
  series = values if isinstance(values, pd.Series) else pd.Series(values)
  series = pd.to_numeric(series, errors="coerce")
  return series.astype("Float64")


def div_field_z_safe(numerator: pd.Series | np.ndarray, denominator: pd.Series | np.ndarray) -> pd.Series:
  """
  Perform a divide-by-zero-safe division of two series or arrays, replacing division by zero with missing.

  Missing values in either operand stay missing in the result.

  :param numerator: Numerator series or array.
  :type numerator: pandas.Series or numpy.ndarray
  :param denominator: Denominator series or array.
  :type denominator: pandas.Series or numpy.ndarray
  :returns: The result of the division as a nullable Float64 series.
  :rtype: pandas.Series
  """
  numerator = to_nullable_float(numerator)
  denominator = to_nullable_float(denominator)
  denominator.index = numerator.index

  # Get the index of all rows where the denominator is zero.
  idx_denominator_zero = denominator.eq(0).fillna(False).astype(bool)

  result = pd.Series(pd.NA, index=numerator.index, dtype="Float64")
  result[~idx_denominator_zero] = numerator[~idx_denominator_zero] / denominator[~idx_denominator_zero]
  return result


def div_z_safe(df: pd.DataFrame, numerator: str, denominator: str) -> pd.Series:
  """
  Perform a divide-by-zero-safe division of two columns in a DataFrame, replacing division by zero with missing.

  :param df: Input DataFrame.
  :param numerator: Name of the column to use as the numerator.
  :param denominator: Name of the column to use as the denominator.
  :returns: A nullable Float64 series with the result of the safe division.
  """
  return div_field_z_safe(df[numerator], df[denominator])


def left_join_on_key(df: pd.DataFrame, df_right: pd.DataFrame, key: str = "street_id") -> pd.DataFrame:
  """
  Left join df_right onto df by key, preserving every row and the row order of df. Rows without a match receive
  missing values.

  :raises ValueError: If either side has duplicate keys, or if the right side would overwrite existing columns.
  """
  if key not in df or key not in df_right:
    raise ValueError(f"Both dataframes must contain the key column '{key}'")
  n_dupes_left = df[key].duplicated().sum()
  n_dupes_right = df_right[key].duplicated().sum()
  if n_dupes_left > 0 or n_dupes_right > 0:
    raise ValueError(f"Found {n_dupes_left} duplicate keys on the left and {n_dupes_right} on the right. Cannot join on '{key}'.")

  right = df_right
  if "geometry" in right.columns:
    right = pd.DataFrame(right.drop(columns=["geometry"]))

  overlap = [col for col in right.columns if col in df.columns and col != key]
  if len(overlap) > 0:
    raise ValueError(f"Columns {overlap} already exist in the base dataframe")

  result = df.merge(right, on=key, how="left")
  result.index = df.index
  return result


def rows_with_all(df: pd.DataFrame, fields: list[str]) -> pd.Series:
  """
  Boolean mask of rows where every one of the given fields is present (non-missing).
  """
  mask = pd.Series(True, index=df.index)
  for field in fields:
    if field not in df:
      raise ValueError(f"Field '{field}' not found in dataframe")
    mask &= df[field].notna()
  return mask.astype(bool)
