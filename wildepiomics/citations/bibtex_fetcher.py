"""
BibTeX retrieval per DOI.

Two sources, tried in order:
  1. Crossref transform endpoint (returns ready-made BibTeX)
  2. doi.org content negotiation for CSL-JSON, converted locally

A DOI that neither source can resolve maps to an empty string so the
page still lists the study; the download button just skips it.

Usage:
    from wildepiomics.citations.bibtex_fetcher import BibtexFetcher
    fetcher = BibtexFetcher(mailto="you@example.com")
    bib_map = fetcher.build_map(records, existing=previous_map)
"""

import logging
import re
import time
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests

from ..validation.study_validator import clean_doi

logger = logging.getLogger(__name__)

_CROSSREF_BIBTEX = "https://api.crossref.org/works/{doi}/transform/application/x-bibtex"
_DOI_RESOLVER = "https://doi.org/{doi}"
_CSL_JSON = "application/vnd.citationstyles.csl+json"


def csl_to_bibtex(csl: Dict[str, Any]) -> str:
    """Render a CSL-JSON item as a BibTeX ``@article`` entry."""
    doi = csl.get("DOI") or ""
    key = re.sub(r"\W+", "_", doi) if doi else "entry"

    names = []
    for a in csl.get("author") or []:
        if not isinstance(a, dict):
            continue
        name = f"{a.get('family') or ''}, {a.get('given') or ''}".strip(" ,")
        # Consortia and groups carry only a literal name
        name = name or (a.get("literal") or "").strip()
        if name:
            names.append(name)
    authors = " and ".join(names)

    year = ""
    date_parts = (csl.get("issued") or {}).get("date-parts") or []
    if date_parts and date_parts[0]:
        year = date_parts[0][0] or ""

    journal = csl.get("container-title") or ""
    if isinstance(journal, list):
        journal = journal[0] if journal else ""

    title = csl.get("title") or ""
    if isinstance(title, list):
        title = title[0] if title else ""

    return "\n".join([
        f"@article{{{key},",
        f"  title = {{{title}}},",
        f"  author = {{{authors}}},",
        f"  journal = {{{journal}}},",
        f"  year = {{{year}}},",
        f"  volume = {{{csl.get('volume') or ''}}},",
        f"  number = {{{csl.get('issue') or ''}}},",
        f"  pages = {{{csl.get('page') or ''}}},",
        f"  doi = {{{doi}}}",
        "}",
    ])


class BibtexFetcher:
    """Fetch BibTeX entries for DOIs with Crossref + CSL-JSON fallback."""

    def __init__(self, mailto: str = "wildepiomics@example.com", *,
                 timeout: float = 15.0, request_delay: float = 0.35,
                 user_agent: str = None):
        self.mailto = mailto
        self.timeout = timeout
        self._delay = request_delay
        self._headers = {
            "User-Agent": user_agent or f"wildEpiOmics (mailto:{mailto})",
        }
        self._last_call = 0.0
        self._cache: Dict[str, str] = {}
        self.failed: List[str] = []

    def fetch(self, doi: str) -> str:
        """Return BibTeX for *doi*, or "" when no source has it."""
        doi = clean_doi(doi)
        if not doi:
            return ""
        if doi in self._cache:
            return self._cache[doi]

        bib = self._from_crossref(doi)
        if not bib:
            csl = self._fetch_csl(doi)
            if csl:
                logger.info("   CSL-JSON fallback used for %s", doi)
                bib = csl_to_bibtex(csl)
        if not bib:
            logger.warning("No BibTeX available for %s", doi)
            self.failed.append(doi)
            bib = ""

        self._cache[doi] = bib
        return bib

    def build_map(self, records: Iterable[Dict[str, Any]],
                  existing: Optional[Dict[str, str]] = None,
                  refresh: bool = False) -> Dict[str, str]:
        """Build ``{doi: bibtex}`` for every record with a DOI.

        Parameters
        ----------
        existing : dict, optional
            A previous map (usually the last ``bibtex.json``).  Non-empty
            entries are reused instead of refetched unless *refresh*.
        """
        reuse = {} if refresh else {k: v for k, v in (existing or {}).items() if v}
        bib_map: Dict[str, str] = {}
        reused = 0
        for entry in records:
            doi = entry.get("doi")
            if not doi or doi in bib_map:
                continue
            if doi in reuse:
                bib_map[doi] = reuse[doi]
                reused += 1
                continue
            logger.debug("Fetching BibTeX for %s", doi)
            bib_map[doi] = self.fetch(doi)
        if reused:
            logger.info("Reused %d BibTeX entries from previous build", reused)
        return bib_map

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _from_crossref(self, doi: str) -> str:
        self._rate_limit()
        try:
            resp = requests.get(
                _CROSSREF_BIBTEX.format(doi=quote(doi, safe="")),
                headers=self._headers,
                timeout=self.timeout,
            )
            self._last_call = time.time()
            if resp.status_code != 200:
                logger.debug("Crossref HTTP %d for %s", resp.status_code, doi)
                return ""
            text = (resp.text or "").strip()
            if text and not text.startswith("<"):
                return text
        except requests.RequestException as exc:
            logger.warning("Crossref BibTeX failed for %s: %s", doi, exc)
        return ""

    def _fetch_csl(self, doi: str) -> Optional[Dict[str, Any]]:
        self._rate_limit()
        headers = dict(self._headers, Accept=_CSL_JSON)
        try:
            resp = requests.get(
                _DOI_RESOLVER.format(doi=quote(doi, safe="/")),
                headers=headers,
                timeout=self.timeout,
                allow_redirects=True,
            )
            self._last_call = time.time()
            if resp.status_code != 200:
                logger.debug("doi.org HTTP %d for %s", resp.status_code, doi)
                return None
            data = resp.json()
            return data if isinstance(data, dict) else None
        except (requests.RequestException, ValueError) as exc:
            logger.warning("CSL fallback failed for %s: %s", doi, exc)
            return None

    def _rate_limit(self):
        elapsed = time.time() - self._last_call
        if elapsed < self._delay:
            time.sleep(self._delay - elapsed)
