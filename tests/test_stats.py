import numpy as np
import pandas as pd
import pytest

from openpedkit.utilities.stats import calc_knn_weights, calc_morans_i, calc_rmse, calc_mae, calc_vif, calc_pca_variance


def _grid(size: int = 10) -> np.ndarray:
  xs, ys = np.meshgrid(np.arange(size, dtype=float), np.arange(size, dtype=float))
  # jitter so nearest-neighbor distances never tie
  rng = np.random.default_rng(0)
  return np.column_stack([xs.ravel(), ys.ravel()]) + rng.uniform(-0.1, 0.1, (size * size, 2))


def test_knn_weights_row_standardized():
  coords = _grid()
  W = calc_knn_weights(coords, k=6).sparse
  assert W.shape == (100, 100)
  assert np.allclose(np.asarray(W.sum(axis=1)).ravel(), 1.0)
  assert (W.diagonal() == 0).all()
  assert ((W > 0).sum(axis=1) == 6).all()


def test_knn_weights_too_few_points():
  with pytest.raises(ValueError):
    calc_knn_weights(_grid(2), k=6)


def test_morans_i_matches_definition():
  coords = _grid()
  values = np.random.default_rng(5).normal(0, 1, len(coords))
  result = calc_morans_i(values, coords, k=6, permutations=99)

  W = calc_knn_weights(coords, k=6).sparse.toarray()
  z = values - values.mean()
  expected_i = (len(z) / W.sum()) * (z @ W @ z) / (z @ z)
  assert result["I"] == pytest.approx(expected_i)
  assert result["expected"] == pytest.approx(-1 / 99)


def test_morans_i_clustered():
  coords = _grid()
  # a smooth east-west gradient is strongly autocorrelated
  values = coords[:, 0]
  result = calc_morans_i(values, coords, k=6, permutations=999, seed=777)
  print("")
  print(result)
  assert result["I"] > 0.5
  assert result["p_sim"] < 0.01
  assert result["p_rand"] < 0.01
  assert result["z_rand"] > 0


def test_morans_i_random():
  coords = _grid()
  values = np.random.default_rng(42).normal(0, 1, len(coords))
  result = calc_morans_i(values, coords, k=6, permutations=999, seed=777)
  assert abs(result["I"]) < 0.2
  assert result["p_sim"] > 0.01


def test_morans_i_reproducible():
  coords = _grid()
  values = np.random.default_rng(3).normal(0, 1, len(coords))
  a = calc_morans_i(values, coords, permutations=199, seed=777)
  b = calc_morans_i(values, coords, permutations=199, seed=777)
  assert a["p_sim"] == b["p_sim"]


def test_error_metrics():
  predictions = np.array([1.0, 2.0, 3.0])
  truth = np.array([1.0, 4.0, 0.0])
  assert calc_mae(predictions, truth) == pytest.approx(5 / 3)
  assert calc_rmse(predictions, truth) == pytest.approx(np.sqrt(13 / 3))


def test_vif_and_pca():
  rng = np.random.default_rng(11)
  a = rng.normal(0, 1, 50)
  X = pd.DataFrame({"a": a, "b": a * 2 + rng.normal(0, 0.01, 50), "c": rng.normal(0, 1, 50)})
  vif = calc_vif(X).set_index("variable")["vif"]
  assert vif["a"] > 100
  assert vif["b"] > 100

  pca = calc_pca_variance(X)
  # two of the three standardized variables are nearly the same
  assert pca["explained"].iloc[0] > 0.6
  assert pca["cumulative"].iloc[1] > 0.99


def test_morans_i_randomization_variance():
  coords = _grid()
  values = np.random.default_rng(8).normal(0, 1, len(coords))
  result = calc_morans_i(values, coords, k=6, permutations=99)

  # variance under randomization, with the kurtosis term
  W = calc_knn_weights(coords, k=6).sparse.toarray()
  n = len(values)
  z = values - values.mean()
  s0 = W.sum()
  s1 = 0.5 * ((W + W.T) ** 2).sum()
  s2 = ((W.sum(axis=1) + W.sum(axis=0)) ** 2).sum()
  b2 = n * (z ** 4).sum() / (z @ z) ** 2
  a = n * ((n * n - 3 * n + 3) * s1 - n * s2 + 3 * s0 * s0)
  b = b2 * ((n * n - n) * s1 - 2 * n * s2 + 6 * s0 * s0)
  var_rand = (a - b) / ((n - 1) * (n - 2) * (n - 3) * s0 * s0) - (1 / (n - 1)) ** 2

  assert result["z_rand"] == pytest.approx((result["I"] + 1 / (n - 1)) / np.sqrt(var_rand), rel=1e-6)


def test_morans_i_constant_values():
  with pytest.warns(UserWarning):
    result = calc_morans_i(np.ones(20), _grid(5)[:20], k=6, permutations=9)
  assert np.isnan(result["I"])
