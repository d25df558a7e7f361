#!/usr/bin/env python3
"""
metafunc_tools - Main CLI Interface

Differential abundance of metagenomic functional genes between health states.

Available Commands:
  normalize   - Convert raw counts to RPKG and log2-RPKG
  diff        - Full differential abundance analysis (optionally with enrichment)
  enrich      - Gene-set enrichment on an existing differential abundance result

Example Usage:
  metafunc-tools normalize --abundance-file counts.tsv --metadata-file metadata.csv --lengths-file lengths.tsv
  metafunc-tools diff --abundance-file counts.tsv --metadata-file metadata.csv --lengths-file lengths.tsv
  metafunc-tools enrich --results-file DifferentialAbundance/differential_abundance.csv --gene-sets ko_to_module.tsv

For more information on any command, use:
  metafunc-tools [command] --help
"""

import sys
import argparse
import logging
import warnings

from metafunc_tools.cli import diff_cli, enrich_cli, normalize_cli

logger = logging.getLogger('metafunc_tools')

COMMANDS = {
    'normalize': (normalize_cli, "Running Normalization..."),
    'diff': (diff_cli, "Running Differential Analysis..."),
    'enrich': (enrich_cli, "Running Enrichment..."),
}


def print_help():
    parser = argparse.ArgumentParser(
        description="metafunc_tools - Differential abundance of metagenomic functional genes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.print_help()


def main(argv=None):
    """
    Main entry point for metafunc_tools CLI.
    
    Parses the command name and dispatches the remaining arguments to the
    appropriate module.
    """
    warnings.filterwarnings("ignore", category=FutureWarning)
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    
    if argv is None:
        argv = sys.argv[1:]
    
    if not argv or argv[0] in ('--help', '-h'):
        print_help()
        return 0
    
    command, rest = argv[0], argv[1:]
    if command not in COMMANDS:
        logger.error(f"Unknown command: {command}")
        print("\nAvailable commands:")
        print("  normalize  - Convert raw counts to RPKG and log2-RPKG")
        print("  diff       - Run differential abundance analysis")
        print("  enrich     - Run gene-set enrichment on differential abundance results")
        print("\nFor more information on any command, use:")
        print("  metafunc-tools [command] --help")
        return 1
    
    module, message = COMMANDS[command]
    logger.info(message)
    return module.main(rest)


if __name__ == "__main__":
    sys.exit(main())
