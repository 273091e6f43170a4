import warnings

import numpy as np
import pandas as pd
from esda.moran import Moran
from libpysal.weights import KNN
from sklearn.decomposition import PCA
from sklearn.metrics import mean_squared_error, mean_absolute_error
from sklearn.preprocessing import StandardScaler
from statsmodels.stats.outliers_influence import variance_inflation_factor


def calc_rmse(predictions: np.ndarray, ground_truth: np.ndarray) -> float:
  return float(np.sqrt(mean_squared_error(ground_truth, predictions)))


def calc_mae(predictions: np.ndarray, ground_truth: np.ndarray) -> float:
  return float(mean_absolute_error(ground_truth, predictions))


def calc_knn_weights(coords: np.ndarray, k: int = 6) -> KNN:
  """
  Row-standardized k-nearest-neighbor spatial weights.

  :param coords: (n, 2) array of point coordinates.
  :param k: Number of neighbors per observation.
  :returns: libpysal weights object over the n points.
  :raises ValueError: If there are not more observations than neighbors.
  """
  coords = np.asarray(coords, dtype=np.float64)
  if len(coords) <= k:
    raise ValueError(f"Need more than {k} observations to build {k}-nearest-neighbor weights, got {len(coords)}")
  w = KNN.from_array(coords, k=k)
  w.transform = "r"
  return w


def calc_morans_i(
    values: np.ndarray,
    coords: np.ndarray,
    k: int = 6,
    permutations: int = 999,
    seed: int = 777,
    two_tailed: bool = True
) -> dict:
  """
  Calculate Moran's I for a set of values observed at point locations, using row-standardized k-nearest-neighbor
  weights.

  Two p-values are reported:

  - p_sim: from a conditional permutation test (folded, in the direction of the observed statistic).
  - p_rand: from the normal approximation under the randomization assumption.

  :param values: Array of n values (e.g. model residuals).
  :param coords: (n, 2) array of coordinates.
  :param k: Number of neighbors.
  :param permutations: Number of random permutations for p_sim.
  :param seed: Random seed for reproducibility.
  :param two_tailed: If True, p_rand is two-tailed.
  :returns: dict with keys I, expected, z_rand, p_rand, p_sim, n, k.
  """
  y = np.asarray(values, dtype=np.float64)
  n = len(y)
  w = calc_knn_weights(coords, k)

  if np.all(y == y[0]):
    warnings.warn("All values are identical; Moran's I is undefined")
    return {"I": float("nan"), "expected": -1.0 / (n - 1), "z_rand": float("nan"), "p_rand": float("nan"),
      "p_sim": float("nan"), "n": n, "k": k}

  np.random.seed(seed)
  moran = Moran(y, w, transformation="r", permutations=permutations, two_tailed=two_tailed)
  return {
    "I": float(moran.I),
    "expected": float(moran.EI),
    "z_rand": float(moran.z_rand),
    "p_rand": float(moran.p_rand),
    "p_sim": float(moran.p_sim),
    "n": n,
    "k": k
  }


def calc_vif(X: pd.DataFrame) -> pd.DataFrame:
  """
  Calculate the Variance Inflation Factor (VIF) for each variable in a DataFrame.

  :param X: Input features DataFrame (no missing values).
  :type X: pandas.DataFrame
  :returns: A DataFrame with variables and their VIF values.
  :rtype: pandas.DataFrame
  """
  vif_data = pd.DataFrame()
  vif_data["variable"] = X.columns

  if len(X.values) < 5:
    warnings.warn("Can't calculate VIF for less than 5 samples")
    vif_data["vif"] = [float('nan')] * len(X.columns)
    return vif_data

  values = X.astype(np.float64).to_numpy()
  vif_data["vif"] = [variance_inflation_factor(values, i) for i in range(X.shape[1])]
  return vif_data


def calc_pca_variance(X: pd.DataFrame) -> pd.DataFrame:
  """
  Share of variance explained by each principal component of the standardized variables.

  :param X: Input features DataFrame (no missing values).
  :returns: DataFrame with component, explained, cumulative.
  """
  X = X.astype(np.float64)
  X = X.loc[:, X.nunique() > 1]
  if X.shape[1] == 0:
    raise ValueError("All columns are constant; PCA cannot be computed.")
  scaled = StandardScaler().fit_transform(X.to_numpy())
  pca = PCA().fit(scaled)
  explained = pca.explained_variance_ratio_
  return pd.DataFrame({
    "component": [f"PC{i + 1}" for i in range(len(explained))],
    "explained": explained,
    "cumulative": np.cumsum(explained)
  })
