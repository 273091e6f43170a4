import warnings
from dataclasses import dataclass

import geopandas as gpd
import numpy as np
import pandas as pd
import statsmodels.api as sm
from joblib import Parallel, delayed
from sklearn.model_selection import LeaveOneOut
from statsmodels.genmod.generalized_linear_model import GLMResults

from openpedkit.errors import SingularFitError
from openpedkit.utilities.data import rows_with_all
from openpedkit.utilities.geometry import get_midpoints
from openpedkit.utilities.stats import calc_rmse, calc_mae, calc_morans_i, calc_vif, calc_pca_variance


# Fixed predictor set, chosen offline from the wider candidate set with a PCA and collinearity check
# (see collinearity_report).
MODEL_PREDICTORS = ["local_integ", "n_jobs", "riders_400"]

# The pseudo-R² is computed on a variant that also includes the corridor flag and keeps the response unrounded.
PSEUDO_R2_PREDICTORS = MODEL_PREDICTORS + ["high_ped_type"]

RESPONSE = "mean_ped"


class PedModel:
  """
  A fitted quasi-Poisson GLM (log link) of weekly pedestrian volume.

  Attributes:
      fitted_model (GLMResults): The statsmodels result; its scale is the Pearson chi-squared dispersion estimate.
      predictors (list[str]): Predictor columns, in design-matrix order (after the constant).
      round_response (bool): Whether the response was rounded to integer counts before fitting.
      n_obs (int): Number of rows the model was fitted on.
  """

  def __init__(self, fitted_model: GLMResults, predictors: list[str], round_response: bool, n_obs: int):
    self.fitted_model = fitted_model
    self.predictors = predictors
    self.round_response = round_response
    self.n_obs = n_obs

  @property
  def params(self) -> pd.Series:
    return self.fitted_model.params

  @property
  def dispersion(self) -> float:
    return float(self.fitted_model.scale)


@dataclass
class CVResult:
  """
  Result of leave-one-out cross-validation. Entry i of every array belongs to the i-th held-out row.

  Attributes:
      street_id (np.ndarray): Held-out street ids.
      observed (np.ndarray): Observed mean_ped of each held-out street.
      predicted (np.ndarray): Prediction for each street from the model fitted without it.
      train_sizes (np.ndarray): Number of rows each model was fitted on.
      n_fits (int): Number of models fitted.
      rmse (float): Root mean squared error over held-out predictions.
      mae (float): Mean absolute error over held-out predictions.
  """
  street_id: np.ndarray
  observed: np.ndarray
  predicted: np.ndarray
  train_sizes: np.ndarray
  n_fits: int
  rmse: float
  mae: float

  def to_dataframe(self) -> pd.DataFrame:
    return pd.DataFrame({
      "street_id": self.street_id,
      "observed": self.observed,
      "predicted": self.predicted,
      "error": self.predicted - self.observed
    })


def _design_matrix(rows: pd.DataFrame, predictors: list[str]) -> pd.DataFrame:
  X = pd.DataFrame(rows[predictors]).astype(np.float64)
  return sm.add_constant(X, has_constant="add")


def _check_design(X: pd.DataFrame):
  n_rows, n_cols = X.shape
  if n_rows < n_cols:
    raise SingularFitError(f"Cannot fit {n_cols} coefficients from {n_rows} rows")
  rank = np.linalg.matrix_rank(X.to_numpy())
  if rank < n_cols:
    constant = [col for col in X.columns if col != "const" and X[col].nunique() <= 1]
    raise SingularFitError(f"Design matrix is rank deficient (rank {rank} < {n_cols} columns); constant predictors: {constant}")


def fit(rows: pd.DataFrame, predictors: list[str] = None, round_response: bool = True, verbose: bool = False) -> PedModel:
  """
  Fit a quasi-Poisson GLM with log link on the streets that carry an observed mean_ped.

  The response is round(mean_ped), treating weekly volumes as counts; the Pearson chi-squared scale relaxes the
  Poisson variance = mean constraint to allow overdispersion. Rows missing the response or any predictor are left out
  with a warning.

  :param rows: Modeling rows with "mean_ped" and every predictor column.
  :param predictors: Predictor columns. Defaults to MODEL_PREDICTORS.
  :param round_response: If False, the unrounded mean_ped is used as the response.
  :param verbose: If True, prints the fitted coefficients.
  :returns: The fitted PedModel.
  :raises SingularFitError: If the predictors are collinear or degenerate, or the solver fails.
  """
  if predictors is None:
    predictors = MODEL_PREDICTORS
  predictors = list(predictors)

  complete = rows_with_all(rows, predictors + [RESPONSE])
  n_dropped = (~complete).sum()
  if n_dropped > 0:
    warnings.warn(f"Leaving {n_dropped} rows with a missing response or predictor out of the fit")
  df = rows[complete]

  y = df[RESPONSE].astype(np.float64).to_numpy()
  if (y < 0).any():
    raise ValueError("mean_ped must be non-negative")
  if round_response:
    y = np.round(y)

  X = _design_matrix(df, predictors)
  _check_design(X)

  try:
    with warnings.catch_warnings():
      warnings.simplefilter("ignore", RuntimeWarning)
      result = sm.GLM(y, X, family=sm.families.Poisson(link=sm.families.links.Log())).fit(scale="X2")
  except (np.linalg.LinAlgError, ValueError) as e:
    raise SingularFitError(f"GLM fit failed: {e}") from e

  if not np.all(np.isfinite(result.params)):
    raise SingularFitError("GLM fit produced non-finite coefficients")

  if verbose:
    print(f"--> fitted quasi-Poisson GLM on {len(y)} streets, dispersion = {result.scale:.2f}")
    for name, value in result.params.items():
      print(f"----> {name}: {value:.6g}")

  return PedModel(result, predictors, round_response, len(y))


def predict(model: PedModel, rows: pd.DataFrame) -> np.ndarray:
  """
  Predict mean weekly pedestrian volume on the response scale (the exponentiated linear predictor).

  Rows do not need a response. A row missing any predictor gets NaN: no covariate data means no prediction, not zero.

  :param model: A fitted PedModel.
  :param rows: Rows with every predictor column.
  :returns: Array of predictions aligned with rows.
  """
  complete = rows_with_all(rows, model.predictors).to_numpy()
  result = np.full(len(rows), np.nan)
  if complete.any():
    X = _design_matrix(rows[complete], model.predictors)
    result[complete] = np.asarray(model.fitted_model.predict(X), dtype=np.float64)
  if not complete.all():
    warnings.warn(f"{(~complete).sum()} rows have missing predictors; their predictions are missing")
  return result


def predict_partition(model: PedModel, prediction_rows: pd.DataFrame) -> pd.DataFrame:
  """
  Fill mean_ped on the prediction partition with model predictions and flag the rows as predicted.
  """
  df = prediction_rows.copy()
  df[RESPONSE] = pd.array(predict(model, df), dtype="Float64")
  df["mean_ped_predicted"] = True
  return df


def calc_pseudo_r2(rows: pd.DataFrame, predictors: list[str] = None) -> float:
  """
  Deviance-based pseudo-R² (1 - residual deviance / null deviance) of the unrounded variant of the model.
  """
  if predictors is None:
    predictors = PSEUDO_R2_PREDICTORS
  model = fit(rows, predictors, round_response=False)
  result = model.fitted_model
  return float(1.0 - result.deviance / result.null_deviance)


def diagnose(
    model: PedModel,
    rows: gpd.GeoDataFrame,
    k: int = 6,
    permutations: int = 999,
    seed: int = 777,
    pseudo_r2_predictors: list[str] = None,
    verbose: bool = False
) -> dict:
  """
  Fit diagnostics on the training rows: pseudo-R², RMSE and MAE of fitted against observed volumes, and Moran's I of
  the residuals over a 6-nearest-neighbor weights matrix built from street midpoints.

  :param model: The fitted PedModel.
  :param rows: The training rows (GeoDataFrame, for the residual locations).
  :param k: Number of neighbors in the spatial weights.
  :param permutations: Number of permutations for the resampling p-value.
  :param seed: Random seed for the permutations.
  :param pseudo_r2_predictors: Predictors of the pseudo-R² variant. Defaults to PSEUDO_R2_PREDICTORS.
  :param verbose: If True, prints the diagnostics.
  :returns: dict with pseudo_r2, rmse, mae, dispersion, n, and morans_i (a dict, see calc_morans_i).
  """
  complete = rows_with_all(rows, model.predictors + [RESPONSE])
  df = rows[complete]
  observed = df[RESPONSE].astype(np.float64).to_numpy()
  fitted = predict(model, df)
  residuals = observed - fitted

  try:
    pseudo_r2 = calc_pseudo_r2(rows, pseudo_r2_predictors)
  except SingularFitError as e:
    warnings.warn(f"Pseudo-R² variant could not be fitted: {e}")
    pseudo_r2 = float("nan")

  midpoints = get_midpoints(df)
  coords = np.column_stack([midpoints.x.to_numpy(), midpoints.y.to_numpy()])
  try:
    morans_i = calc_morans_i(residuals, coords, k=k, permutations=permutations, seed=seed)
  except ValueError as e:
    warnings.warn(f"Moran's I of residuals not computed: {e}")
    morans_i = None

  results = {
    "pseudo_r2": pseudo_r2,
    "rmse": calc_rmse(fitted, observed),
    "mae": calc_mae(fitted, observed),
    "dispersion": model.dispersion,
    "n": len(observed),
    "morans_i": morans_i
  }

  if verbose:
    print("Model diagnostics:")
    print(f"--> n = {results['n']}")
    print(f"--> pseudo R² = {results['pseudo_r2']:.3f}")
    print(f"--> RMSE = {results['rmse']:,.1f}")
    print(f"--> MAE = {results['mae']:,.1f}")
    print(f"--> dispersion = {results['dispersion']:.2f}")
    if morans_i is not None:
      print(f"--> residual Moran's I = {morans_i['I']:.4f} (p_sim = {morans_i['p_sim']:.4f}, p_rand = {morans_i['p_rand']:.4f})")
  return results


def _loo_fold(df: pd.DataFrame, train_idx: np.ndarray, test_idx: np.ndarray, predictors: list[str]) -> tuple[float, int]:
  model = fit(df.iloc[train_idx], predictors)
  prediction = predict(model, df.iloc[test_idx])
  return float(prediction[0]), len(train_idx)


def cross_validate(rows: pd.DataFrame, predictors: list[str] = None, n_jobs: int = 1, verbose: bool = False) -> CVResult:
  """
  Leave-one-out cross-validation: refit the model once per row with that row held out, predict it, and aggregate the
  error over all held-out rows.

  :param rows: Modeling rows with "street_id", "mean_ped" and the predictors.
  :param predictors: Predictor columns. Defaults to MODEL_PREDICTORS.
  :param n_jobs: Number of parallel workers (joblib).
  :param verbose: If True, prints the cross-validated error.
  :returns: The CVResult.
  """
  if predictors is None:
    predictors = MODEL_PREDICTORS
  predictors = list(predictors)

  complete = rows_with_all(rows, predictors + [RESPONSE])
  df = pd.DataFrame(rows[complete]).reset_index(drop=True)

  if verbose:
    print(f"Running leave-one-out cross-validation on {len(df)} streets...")

  splits = list(LeaveOneOut().split(df))
  results = Parallel(n_jobs=n_jobs)(
    delayed(_loo_fold)(df, train_idx, test_idx, predictors) for train_idx, test_idx in splits
  )

  predicted = np.array([r[0] for r in results])
  train_sizes = np.array([r[1] for r in results])
  observed = df[RESPONSE].astype(np.float64).to_numpy()

  result = CVResult(
    street_id=df["street_id"].to_numpy(),
    observed=observed,
    predicted=predicted,
    train_sizes=train_sizes,
    n_fits=len(results),
    rmse=calc_rmse(predicted, observed),
    mae=calc_mae(predicted, observed)
  )
  if verbose:
    print(f"--> LOOCV RMSE = {result.rmse:,.1f}, MAE = {result.mae:,.1f} over {result.n_fits} fits")
  return result


def collinearity_report(rows: pd.DataFrame, candidates: list[str], verbose: bool = False) -> dict:
  """
  Variance inflation factors and PCA explained variance over a candidate predictor set, the check used to settle on
  MODEL_PREDICTORS. Candidates missing on every row are skipped with a warning. Only rows where every remaining
  candidate is present are used.

  :returns: dict with "vif" and "pca" DataFrames. Both are empty when no usable candidate is left.
  """
  candidates = [c for c in candidates if c in rows]
  all_missing = [c for c in candidates if rows[c].isna().all()]
  if len(all_missing) > 0:
    warnings.warn(f"Skipping collinearity candidates missing on every row: {all_missing}")
    candidates = [c for c in candidates if c not in all_missing]

  complete = rows_with_all(rows, candidates)
  X = pd.DataFrame(rows.loc[complete, candidates]).astype(np.float64)
  X = X.loc[:, X.nunique() > 1]

  if X.shape[1] == 0:
    warnings.warn("No usable collinearity candidates; skipping the collinearity check")
    return {
      "vif": pd.DataFrame({"variable": pd.Series(dtype=object), "vif": pd.Series(dtype=np.float64)}),
      "pca": pd.DataFrame({
        "component": pd.Series(dtype=object),
        "explained": pd.Series(dtype=np.float64),
        "cumulative": pd.Series(dtype=np.float64)
      })
    }

  vif = calc_vif(sm.add_constant(X, has_constant="add"))
  vif = vif[vif["variable"].ne("const")].reset_index(drop=True)
  pca = calc_pca_variance(X)

  if verbose:
    print("Collinearity check:")
    for _, row in vif.iterrows():
      print(f"--> VIF {row['variable']}: {row['vif']:.2f}")
    for _, row in pca.iterrows():
      print(f"--> {row['component']}: {row['explained']:.3f} (cumulative {row['cumulative']:.3f})")
  return {"vif": vif, "pca": pca}
