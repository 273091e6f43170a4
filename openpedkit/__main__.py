import argparse

from openpedkit.pipeline import run_pipeline
from openpedkit.utilities.settings import load_settings


def main(argv: list[str] = None):
  parser = argparse.ArgumentParser(
    prog="openpedkit",
    description="Estimate weekly pedestrian volumes on every street segment of a district."
  )
  parser.add_argument("settings", nargs="?", default="settings.json", help="Path to the locality's settings.json")
  parser.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")
  args = parser.parse_args(argv)

  settings = load_settings(args.settings)
  run_pipeline(settings, verbose=not args.quiet)


if __name__ == "__main__":
  main()
