"""
Manual data corrections
-----------------------
Every hand-entered numeric override used by the pipeline lives here as a named constant, so the exact effect of each
correction can be asserted in tests and reviewed in one place. A locality's settings.corrections section may replace
any of them (see openpedkit.utilities.settings.get_corrections).
"""

# A single large employer reports its whole workforce at one address, but its campus spans several census blocks.
# Its job count is redistributed by hand: blocks in the "full" class receive the base count, "double" blocks twice the
# base count, and "half" blocks half of it. These values replace whatever the employment source reports.
EMPLOYER_BASE_JOBS = 1216.0

EMPLOYER_BLOCKS_FULL = [
  "421010369001000",
  "421010369001001",
  "421010369001004",
]

EMPLOYER_BLOCKS_DOUBLE = [
  "421010369001002",
]

EMPLOYER_BLOCKS_HALF = [
  "421010369001003",
  "421010369001005",
]

EMPLOYER_OVERRIDE_MULTIPLIERS = {
  "full": 1.0,
  "double": 2.0,
  "half": 0.5,
}

# A major employer is missing from the employment source altogether; the street segment fronting it is given its
# published headcount directly. {street_id: n_jobs}
STREET_JOB_OVERRIDES = {
  1748: 8400.0,
}

# Building heights entered with the wrong units in the footprint layer. {street_id: bldg_height}
STREET_HEIGHT_CORRECTIONS = {
  2210: 38.0,
  2975: 52.0,
}

# Corridor categories treated as high pedestrian streets (high_ped_type = 1)
HIGH_PED_CORRIDOR_TYPES = [
  "High-Volume Pedestrian",
  "Civic/Ceremonial Street",
  "Walkable Commercial Corridor",
]
