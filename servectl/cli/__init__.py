"""servectl.cli: argparse entrypoints."""
