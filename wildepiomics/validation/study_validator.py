"""
Study record normalization and validation.

Problems this solves:
  - DOI variants: "10.1234/foo", "doi:10.1234/foo", "https://doi.org/10.1234/foo"
  - Numeric fields typed as strings in YAML ("taxid: '8467'")
  - Records missing the fields the page needs to render a card

Usage:
    validator = StudyValidator()
    validator.normalize(record)          # mutates in-place
    issues = validator.validate(record)  # list of human-readable problems
"""

import logging
import re
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("doi", "taxid", "method")

_DOI_PATTERN = re.compile(r"^10\.\d{4,}/\S+$")
_DOI_PREFIXES = (
    "https://doi.org/", "http://doi.org/",
    "https://dx.doi.org/", "http://dx.doi.org/",
    "doi:",
)


def clean_doi(doi: Any) -> str:
    """Reduce a DOI to bare ``10.xxxx/yyyy`` form ("" for empty input)."""
    doi = str(doi or "").strip()
    for prefix in _DOI_PREFIXES:
        if doi.lower().startswith(prefix):
            doi = doi[len(prefix):]
            break
    return doi.strip().rstrip(" .,;")


def _as_int(value: Any) -> Any:
    """Coerce numeric strings to int; anything else is returned unchanged."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


class StudyValidator:
    """Canonicalize and check study records."""

    def normalize(self, record: Dict[str, Any]) -> None:
        """Normalize identifiers in a record.  Mutates in-place."""
        if record.get("doi"):
            record["doi"] = clean_doi(record["doi"])
        for key in ("taxid", "individuals"):
            if key in record:
                record[key] = _as_int(record[key])
        for key in ("method", "data_url"):
            if isinstance(record.get(key), str):
                record[key] = record[key].strip()

    def validate(self, record: Dict[str, Any]) -> List[str]:
        """Return a list of problems with *record* (empty when valid)."""
        issues = []
        for key in REQUIRED_FIELDS:
            if record.get(key) in (None, ""):
                issues.append(f"missing required field '{key}'")

        doi = record.get("doi")
        if doi and not _DOI_PATTERN.match(str(doi)):
            issues.append(f"malformed DOI '{doi}'")

        taxid = record.get("taxid")
        if taxid not in (None, ""):
            if isinstance(taxid, bool) or not isinstance(taxid, int) or taxid <= 0:
                issues.append(f"taxid must be a positive integer, got {taxid!r}")

        individuals = record.get("individuals")
        if individuals is not None:
            if (isinstance(individuals, bool) or not isinstance(individuals, int)
                    or individuals < 0):
                issues.append(
                    f"individuals must be a non-negative integer, got {individuals!r}"
                )

        data_url = record.get("data_url")
        if data_url and not str(data_url).lower().startswith(("http://", "https://")):
            issues.append(f"data_url is not an http(s) URL: '{data_url}'")

        return issues

    def validate_all(self, records: List[Dict[str, Any]]) -> Dict[int, List[str]]:
        """Normalize and validate every record.

        Returns
        -------
        dict
            Record index -> issues, for records that have any.  A DOI seen
            on an earlier record is reported on each later one.
        """
        problems: Dict[int, List[str]] = {}
        seen_dois: Dict[str, int] = {}
        for i, record in enumerate(records):
            self.normalize(record)
            issues = self.validate(record)

            doi = record.get("doi")
            if doi:
                key = str(doi).lower()
                if key in seen_dois:
                    issues.append(f"duplicate DOI '{doi}' (first seen in record {seen_dois[key]})")
                else:
                    seen_dois[key] = i

            if issues:
                problems[i] = issues
                source = record.get("_source_file", "?")
                for issue in issues:
                    logger.warning("  %s [%d]: %s", source, i, issue)
        return problems
