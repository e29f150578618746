#!/usr/bin/env python3
"""
wildEpiOmics site builder
=========================

Builds the static catalog of wildlife DNA-methylation studies.

Pipeline:
  data/*.yaml  ->  NCBI taxonomy (+ GBIF fallback)  ->  Crossref BibTeX  ->  dist/

Modes:
  build     - Full build into dist/ (default)
  enrich    - Enrich study records with taxonomy and write them to JSON
  bibtex    - Refresh public/bibtex.json only
  validate  - Check the study records in data/

Usage:
  python build_site.py                              # full build of the current directory
  python build_site.py --root site/ build --no-gbif
  python build_site.py build --refresh              # ignore taxonomy cache and old bibtex.json
  python build_site.py enrich -o enriched.json
  python build_site.py validate
"""

import argparse
import json
import logging
import os
import sys

from wildepiomics.config import BuildConfig
from wildepiomics.orchestrator import BuildError, BuildOrchestrator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _config_from_args(args) -> BuildConfig:
    return BuildConfig.from_env(
        args.root,
        data_dir=getattr(args, "data_dir", None),
        dist_dir=getattr(args, "dist_dir", None),
        overrides_path=getattr(args, "overrides", None),
        use_gbif=False if getattr(args, "no_gbif", False) else None,
        refresh=True if getattr(args, "refresh", False) else None,
        strict=True if getattr(args, "strict", False) else None,
    )


def _require_data(config: BuildConfig) -> None:
    if not os.path.isdir(config.data_dir):
        logger.error("Data directory not found: %s", config.data_dir)
        sys.exit(1)


def cmd_build(args):
    """Full site build."""
    config = _config_from_args(args)
    _require_data(config)
    try:
        BuildOrchestrator(config).run()
    except BuildError as exc:
        logger.error("Build aborted: %s", exc)
        sys.exit(1)
    logger.info("Build complete!")


def cmd_enrich(args):
    """Enrich records and write them to a JSON file."""
    config = _config_from_args(args)
    _require_data(config)
    try:
        records = BuildOrchestrator(config).enrich_only()
    except BuildError as exc:
        logger.error("Enrichment aborted: %s", exc)
        sys.exit(1)

    output = args.output or os.path.join(config.root, "enriched_studies.json")
    cleaned = [{k: v for k, v in r.items() if not k.startswith("_")} for r in records]
    with open(output, "w", encoding="utf-8") as f:
        json.dump(cleaned, f, indent=2, ensure_ascii=False, default=str)
    logger.info("Saved %d enriched records to %s", len(cleaned), output)


def cmd_bibtex(args):
    """Refresh public/bibtex.json."""
    config = _config_from_args(args)
    _require_data(config)
    try:
        BuildOrchestrator(config).bibtex_only()
    except BuildError as exc:
        logger.error("BibTeX refresh aborted: %s", exc)
        sys.exit(1)


def cmd_validate(args):
    """Validate the study records; exit 1 on any issue."""
    from wildepiomics.loading.study_loader import StudyLoader
    from wildepiomics.validation.study_validator import StudyValidator

    config = _config_from_args(args)
    _require_data(config)

    loader = StudyLoader(config.data_dir)
    records = loader.load()
    problems = StudyValidator().validate_all(records)

    total_issues = sum(len(v) for v in problems.values())
    logger.info("")
    logger.info("Validation complete: %d records, %d issues, %d unparsed files",
                len(records), total_issues, len(loader.failed_files))
    if problems or loader.failed_files:
        sys.exit(1)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="wildEpiOmics static site builder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--root", default=".", help="Site root (default: current directory)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Build command")

    # ---- build ----
    p_build = subparsers.add_parser("build", help="Full site build into dist/")
    p_build.add_argument("--data-dir", help="Study records directory (default: <root>/data)")
    p_build.add_argument("--dist-dir", help="Output directory (default: <root>/dist)")
    p_build.add_argument("--no-gbif", action="store_true", help="Disable the GBIF fallback")
    p_build.add_argument("--refresh", action="store_true",
                         help="Ignore the taxonomy cache and previous bibtex.json")
    p_build.add_argument("--strict", action="store_true",
                         help="Abort when any record fails validation")
    p_build.add_argument("--overrides", help="YAML file of per-TaxID taxonomy overrides")

    # ---- enrich ----
    p_enrich = subparsers.add_parser("enrich", help="Enrich records and write JSON")
    p_enrich.add_argument("--data-dir", help="Study records directory")
    p_enrich.add_argument("--output", "-o", help="Output JSON file")
    p_enrich.add_argument("--no-gbif", action="store_true")
    p_enrich.add_argument("--refresh", action="store_true")
    p_enrich.add_argument("--strict", action="store_true")
    p_enrich.add_argument("--overrides", help="YAML file of per-TaxID taxonomy overrides")

    # ---- bibtex ----
    p_bibtex = subparsers.add_parser("bibtex", help="Refresh public/bibtex.json")
    p_bibtex.add_argument("--data-dir", help="Study records directory")
    p_bibtex.add_argument("--refresh", action="store_true",
                          help="Refetch every entry instead of reusing bibtex.json")

    # ---- validate ----
    p_validate = subparsers.add_parser("validate", help="Validate study records")
    p_validate.add_argument("--data-dir", help="Study records directory")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command in (None, "build"):
        cmd_build(args)
    elif args.command == "enrich":
        cmd_enrich(args)
    elif args.command == "bibtex":
        cmd_bibtex(args)
    elif args.command == "validate":
        cmd_validate(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
