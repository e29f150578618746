"""
Build orchestrator -- wires the stages together.

    data/*.yaml  ->  normalize + validate  ->  taxonomy enrichment
                 ->  BibTeX map            ->  dist/ site

Each stage is usable on its own (``enrich_only``, ``fetch_bibtex``) so the
CLI can refresh one part of the site without the others.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .citations.bibtex_fetcher import BibtexFetcher
from .config import BuildConfig
from .export.site_builder import SiteBuilder
from .loading.study_loader import StudyLoader
from .taxonomy.cache import TaxonomyCache
from .taxonomy.gbif_client import GBIFClient
from .taxonomy.ncbi_client import NCBITaxonomyClient
from .taxonomy.resolver import TaxonomyResolver, load_overrides
from .validation.study_validator import StudyValidator

logger = logging.getLogger(__name__)


class BuildError(Exception):
    """A build cannot go ahead; nothing has been written."""


class NoStudyRecords(BuildError):
    """The data directory yielded no study records."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        super().__init__(f"No study records found in {data_dir}")


class ValidationFailed(BuildError):
    """Raised in strict mode when any study record has issues."""

    def __init__(self, issues: Dict[int, List[str]]):
        self.issues = issues
        super().__init__(f"{len(issues)} study record(s) failed validation")


@dataclass
class BuildReport:
    """Summary of one build, logged at the end of a run."""
    entries: int = 0
    enriched: int = 0
    bibtex_entries: int = 0
    empty_citations: List[str] = field(default_factory=list)
    validation_issues: Dict[int, List[str]] = field(default_factory=dict)
    taxonomy_misses: List[int] = field(default_factory=list)
    failed_files: List[str] = field(default_factory=list)
    index_path: Optional[str] = None

    def log_summary(self) -> None:
        logger.info("=" * 60)
        logger.info("BUILD SUMMARY")
        logger.info("=" * 60)
        logger.info("Entries:            %d", self.entries)
        logger.info("Taxonomy enriched:  %d", self.enriched)
        logger.info("BibTeX entries:     %d", self.bibtex_entries)
        if self.empty_citations:
            logger.info("Missing citations:  %d (%s)", len(self.empty_citations),
                        ", ".join(self.empty_citations[:5]))
        if self.taxonomy_misses:
            logger.info("Incomplete taxa:    %d (%s)", len(self.taxonomy_misses),
                        ", ".join(str(t) for t in self.taxonomy_misses[:5]))
        if self.validation_issues:
            logger.info("Records w/ issues:  %d", len(self.validation_issues))
        if self.failed_files:
            logger.info("Unparsed files:     %s", ", ".join(self.failed_files))
        if self.index_path:
            logger.info("Output:             %s", self.index_path)


class BuildOrchestrator:
    """Run the full build (or parts of it) for one site root."""

    def __init__(self, config: BuildConfig, *,
                 resolver: TaxonomyResolver = None,
                 bibtex_fetcher: BibtexFetcher = None):
        self.config = config
        self.loader = StudyLoader(config.data_dir)
        self.validator = StudyValidator()
        self.site_builder = SiteBuilder(config)
        self._resolver = resolver
        self._bibtex_fetcher = bibtex_fetcher

    @property
    def resolver(self) -> TaxonomyResolver:
        """Lazy-initialize the taxonomy resolver."""
        if self._resolver is None:
            config = self.config
            overrides = None
            if config.overrides_path:
                try:
                    overrides = load_overrides(config.overrides_path)
                except (OSError, ValueError) as exc:
                    raise BuildError(f"Bad overrides file: {exc}") from exc
            self._resolver = TaxonomyResolver(
                NCBITaxonomyClient(
                    api_key=config.ncbi_api_key,
                    attempts=config.attempts,
                    backoff=config.backoff,
                    timeout=config.timeout,
                    request_delay=config.request_delay,
                    user_agent=config.user_agent,
                ),
                GBIFClient(
                    attempts=config.attempts,
                    backoff=config.backoff,
                    timeout=config.timeout,
                    user_agent=config.user_agent,
                ) if config.use_gbif else None,
                cache=TaxonomyCache(config.cache_path),
                overrides=overrides,
                use_gbif=config.use_gbif,
                refresh=config.refresh,
            )
        return self._resolver

    @property
    def bibtex_fetcher(self) -> BibtexFetcher:
        """Lazy-initialize the BibTeX fetcher."""
        if self._bibtex_fetcher is None:
            self._bibtex_fetcher = BibtexFetcher(
                mailto=self.config.mailto,
                timeout=self.config.timeout,
                request_delay=self.config.request_delay,
                user_agent=self.config.user_agent,
            )
        return self._bibtex_fetcher

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def load(self, report: BuildReport) -> List[Dict[str, Any]]:
        """Load, normalize and validate study records."""
        records = self.loader.load()
        report.failed_files = list(self.loader.failed_files)
        report.entries = len(records)
        if not records:
            raise NoStudyRecords(self.config.data_dir)

        report.validation_issues = self.validator.validate_all(records)
        if report.validation_issues:
            logger.warning("%d of %d records have validation issues",
                           len(report.validation_issues), len(records))
            if self.config.strict:
                raise ValidationFailed(report.validation_issues)
        return records

    def enrich(self, records: List[Dict[str, Any]], report: BuildReport) -> None:
        logger.info("Enriching taxonomy (NCBI%s)...",
                    " + GBIF fallback" if self.config.use_gbif else "")
        report.enriched = self.resolver.enrich(records)
        report.taxonomy_misses = list(self.resolver.misses)

    def fetch_bibtex(self, records: List[Dict[str, Any]],
                     report: BuildReport) -> Dict[str, str]:
        logger.info("Fetching BibTeX...")
        existing = self.site_builder.load_bibtex()
        bib_map = self.bibtex_fetcher.build_map(
            records, existing=existing, refresh=self.config.refresh,
        )
        report.bibtex_entries = len(bib_map)
        report.empty_citations = [doi for doi, bib in bib_map.items() if not bib]
        return bib_map

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self) -> BuildReport:
        """Full build: load -> validate -> enrich -> cite -> render."""
        logger.info("Building site from %s", self.config.root)
        report = BuildReport()
        records = self.load(report)
        self.enrich(records, report)
        bib_map = self.fetch_bibtex(records, report)
        report.index_path = self.site_builder.build(records, bib_map)
        report.log_summary()
        return report

    def enrich_only(self) -> List[Dict[str, Any]]:
        """Load and enrich records without touching the site output."""
        report = BuildReport()
        records = self.load(report)
        self.enrich(records, report)
        report.log_summary()
        return records

    def bibtex_only(self) -> Dict[str, str]:
        """Refresh ``public/bibtex.json`` only."""
        report = BuildReport()
        records = self.load(report)
        bib_map = self.fetch_bibtex(records, report)
        self.site_builder.write_bibtex(bib_map)
        report.log_summary()
        return bib_map
