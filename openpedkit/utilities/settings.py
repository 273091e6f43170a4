import json
import os

from openpedkit import corrections


def load_settings(settings_file: str | None = "settings.json", settings_object: dict = None) -> dict:
  """
  Load the locality's settings and merge them over the packaged template.

  :param settings_file: Path to a JSON settings file. Ignored if settings_object is given.
  :param settings_object: Optional settings dictionary to use instead of reading a file.
  :returns: The fully resolved settings dictionary.
  """
  if settings_object is None:
    with open(settings_file, "r") as f:
      settings_object = json.load(f)
  template = load_settings_template()
  # merge settings with template; settings will overwrite template values
  settings = merge_settings(template, settings_object)
  return process_settings(settings)


def load_settings_template() -> dict:
  path = os.path.join(os.path.dirname(os.path.dirname(__file__)), "settings.template.json")
  with open(path, "r") as f:
    return json.load(f)


def process_settings(settings: dict) -> dict:
  s = settings.copy()

  # Step 1: remove any and all keys that are prefixed with the string "__":
  s = remove_comments_from_settings(s)

  # Step 2: do variable replacement:
  s = replace_variables(s)

  return s


def remove_comments_from_settings(s: dict, comment_token: str = "__") -> dict:
  result = {}
  for key, entry in s.items():
    if key.startswith(comment_token):
      continue
    if isinstance(entry, dict):
      entry = remove_comments_from_settings(entry, comment_token)
    result[key] = entry
  return result


def merge_settings(template: dict, local: dict) -> dict:
  """
  Recursively merge local settings over a template. Dictionaries are merged key by key; any other local value replaces
  the template value outright (lists included, since a radius or predictor list is a complete specification).
  """
  merged = template.copy()
  for key, entry_l in local.items():
    entry_t = template.get(key)
    if isinstance(entry_t, dict) and isinstance(entry_l, dict):
      merged[key] = merge_settings(entry_t, entry_l)
    else:
      merged[key] = entry_l
  return merged


def replace_variables(settings: dict, var_token: str = "$$") -> dict:
  """
  Replace every string value of the form "$$path.to.value" with the value found at that path in the settings.
  Replacement repeats until nothing changes, so variables may point at other variables.
  """
  result = settings
  failsafe = 999
  changes = 1
  while changes > 0 and failsafe > 0:
    result, changes = _replace_variables(result, result, var_token)
    failsafe -= 1
  if changes > 0:
    raise ValueError("Settings contain a circular variable reference")
  return result


def _replace_variables(node, settings: dict, var_token: str):
  if isinstance(node, str):
    if node.startswith(var_token):
      var_name = node[len(var_token):]
      value = lookup_variable_in_settings(settings, var_name.split("."))
      if value is None:
        raise ValueError(f"Settings variable '{var_name}' could not be resolved")
      return value, 1
    return node, 0

  if isinstance(node, dict):
    changes = 0
    result = {}
    for key, entry in node.items():
      result[key], _changes = _replace_variables(entry, settings, var_token)
      changes += _changes
    return result, changes

  if isinstance(node, list):
    changes = 0
    result = []
    for entry in node:
      replacement, _changes = _replace_variables(entry, settings, var_token)
      result.append(replacement)
      changes += _changes
    return result, changes

  return node, 0


def lookup_variable_in_settings(s: dict, path: list[str]):
  if len(path) == 0 or not isinstance(s, dict):
    return None
  first_bit = path[0]
  if first_bit not in s:
    return None
  if len(path) == 1:
    return s[first_bit]
  return lookup_variable_in_settings(s[first_bit], path[1:])


def get_target_crs(s: dict) -> str:
  crs = s.get("locality", {}).get("crs", None)
  if crs is None or crs == "":
    raise ValueError("Could not find settings.locality.crs!")
  return crs


def get_layer_entry(s: dict, key: str) -> dict:
  layers = s.get("data", {}).get("layers", {})
  if key not in layers:
    raise ValueError(f"No layer '{key}' found in settings.data.layers")
  return layers[key]


def get_base_dir(s: dict) -> str:
  return s.get("data", {}).get("base_dir", "in")


def get_aggregation_settings(s: dict) -> dict:
  return s.get("aggregation", {})


def get_transit_settings(s: dict) -> dict:
  return s.get("transit", {})


def get_modeling_settings(s: dict) -> dict:
  return s.get("modeling", {})


def get_output_settings(s: dict) -> dict:
  return s.get("output", {})


def get_corrections(s: dict) -> dict:
  """
  Returns the manual data corrections to apply. A settings.corrections section replaces the named defaults in
  openpedkit.corrections entry by entry.
  """
  c = s.get("corrections", {})
  overrides = c.get("employer_overrides", {})
  return {
    "employer_base_jobs": overrides.get("base_jobs", corrections.EMPLOYER_BASE_JOBS),
    "employer_overrides": {
      "full": overrides.get("full", corrections.EMPLOYER_BLOCKS_FULL),
      "double": overrides.get("double", corrections.EMPLOYER_BLOCKS_DOUBLE),
      "half": overrides.get("half", corrections.EMPLOYER_BLOCKS_HALF),
    },
    "street_job_overrides": _int_keys(c.get("street_job_overrides", corrections.STREET_JOB_OVERRIDES)),
    "street_height_corrections": _int_keys(c.get("street_height_corrections", corrections.STREET_HEIGHT_CORRECTIONS)),
    "high_ped_corridor_types": c.get("high_ped_corridor_types", corrections.HIGH_PED_CORRIDOR_TYPES),
  }


def _int_keys(d: dict) -> dict:
  # JSON object keys are always strings; street ids are integers
  return {int(k): v for k, v in d.items()}
