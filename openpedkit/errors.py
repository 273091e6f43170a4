class LayerLoadError(ValueError):
  """
  Raised when an input layer is missing, malformed, or has no defined CRS. Fatal: aborts the run.
  """
  pass


class SpatialJoinAmbiguity(ValueError):
  """
  Raised when a feature matches zero reference features where a non-missing result is required.
  """
  pass


class SingularFitError(ValueError):
  """
  Raised when the regression design matrix is collinear or otherwise degenerate.
  """
  pass
