import pytest

from openpedkit import corrections
from openpedkit.utilities.settings import merge_settings, replace_variables, load_settings, get_corrections, \
  remove_comments_from_settings


def test_merge():
  print("")
  template = {
    "version": "abc",
    "radii": [250, 400, 500],
    "aggregation": {
      "vertex_buffer_ft": 5,
      "retail_buffer_ft": 60,
      "nested": {"a": 1}
    }
  }
  local = {
    "version": "def",
    "radii": [400],
    "aggregation": {
      "retail_buffer_ft": 100,
      "nested": {"b": 2}
    },
    "extra": "new"
  }
  merged = merge_settings(template, local)
  print(merged)

  assert merged["version"] == "def"
  # lists are replaced, not concatenated
  assert merged["radii"] == [400]
  assert merged["aggregation"]["vertex_buffer_ft"] == 5
  assert merged["aggregation"]["retail_buffer_ft"] == 100
  assert merged["aggregation"]["nested"] == {"a": 1, "b": 2}
  assert merged["extra"] == "new"
  # inputs are untouched
  assert template["aggregation"]["retail_buffer_ft"] == 60


def test_remove_comments():
  s = {"__comment": "x", "a": {"__note": "y", "b": 1}}
  assert remove_comments_from_settings(s) == {"a": {"b": 1}}


def test_replace_variables():
  s = {
    "locality": {"crs": "EPSG:2272"},
    "layers": {"streets": {"crs": "$$locality.crs"}},
    "alias": "$$layers.streets.crs",
    "list": ["$$locality.crs", 5]
  }
  result = replace_variables(s)
  assert result["layers"]["streets"]["crs"] == "EPSG:2272"
  assert result["alias"] == "EPSG:2272"
  assert result["list"] == ["EPSG:2272", 5]


def test_replace_variables_unresolved():
  with pytest.raises(ValueError):
    replace_variables({"a": "$$does.not.exist"})


def test_replace_variables_circular():
  with pytest.raises(ValueError):
    replace_variables({"a": "$$b", "b": "$$a"})


def test_load_settings_template_defaults():
  s = load_settings(settings_object={"locality": {"name": "Center City"}})
  assert s["locality"]["name"] == "Center City"
  assert s["locality"]["crs"] == "EPSG:2272"
  assert s["aggregation"]["ridership_radii_m"] == [250, 400, 500]
  assert s["modeling"]["predictors"] == ["local_integ", "n_jobs", "riders_400"]
  assert "__comment" not in s


def test_corrections_defaults_and_overrides():
  c = get_corrections({})
  assert c["employer_base_jobs"] == corrections.EMPLOYER_BASE_JOBS
  assert c["street_job_overrides"] == {1748: 8400.0}
  assert c["street_height_corrections"] == {2210: 38.0, 2975: 52.0}

  # json keys arrive as strings
  c = get_corrections({"corrections": {"street_height_corrections": {"12": 40.0}}})
  assert c["street_height_corrections"] == {12: 40.0}
  assert c["street_job_overrides"] == {1748: 8400.0}
