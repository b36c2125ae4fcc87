"""Allow running the scheduler as: python -m market_integrity.scheduler [--config path]."""

import argparse

from market_integrity.scheduler.runner import main

parser = argparse.ArgumentParser(description="Market resolution scheduler")
parser.add_argument("--config", default=None, help="Path to config.yaml")
args = parser.parse_args()
main(config_path=args.config)
