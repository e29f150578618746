"""
NCBI Datasets v2 taxonomy client.

A single taxon lookup returns the organism name, rank, common names and
the lineage as a list of ancestor TaxIDs (root first).  Resolving order
and class means looking up ancestors one by one, so every response is
cached per TaxID; studies on related species share most of their lineage.

Rate limits: 5 requests/second without an API key, 10 with one.

Usage:
    from wildepiomics.taxonomy.ncbi_client import NCBITaxonomyClient
    client = NCBITaxonomyClient(api_key="...")
    node = client.fetch_taxon(8467)
    node["organism_name"]   # "Chelonia mydas"
"""

import logging
import time
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

_DATASETS_BASE = "https://api.ncbi.nlm.nih.gov/datasets/v2/taxonomy/taxon"


class NCBITaxonomyClient:
    """Fetch taxonomy nodes from the NCBI Datasets API."""

    def __init__(self, api_key: str = None, *,
                 attempts: int = 3,
                 backoff: float = 0.5,
                 timeout: float = 15.0,
                 request_delay: float = 0.35,
                 user_agent: str = None):
        """
        Parameters
        ----------
        api_key : str, optional
            NCBI API key, sent as the ``api-key`` header.
        attempts : int
            Tries per TaxID before giving up.
        backoff : float
            Base delay in seconds; attempt *i* waits ``backoff * (i + 1)``.
        """
        self.api_key = api_key
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.timeout = timeout
        self._delay = request_delay if not api_key else min(request_delay, 0.11)
        self._user_agent = user_agent
        self._last_call = 0.0
        self._cache: Dict[int, Optional[Dict[str, Any]]] = {}
        self.calls = 0

    def fetch_taxon(self, taxid: int) -> Optional[Dict[str, Any]]:
        """Return the ``taxonomy`` object for *taxid*, or None.

        Returns
        -------
        dict or None
            The first ``taxonomy_nodes[].taxonomy`` entry, with keys such as
            ``tax_id``, ``organism_name``, ``rank``, ``lineage``,
            ``genbank_common_name``, ``common_name`` and, on newer API
            versions, ``classification``.
        """
        try:
            taxid = int(taxid)
        except (TypeError, ValueError):
            return None

        if taxid in self._cache:
            return self._cache[taxid]

        node = self._fetch(taxid)
        self._cache[taxid] = node
        return node

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fetch(self, taxid: int) -> Optional[Dict[str, Any]]:
        url = f"{_DATASETS_BASE}/{taxid}"
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["api-key"] = self.api_key
        if self._user_agent:
            headers["User-Agent"] = self._user_agent

        for i in range(self.attempts):
            self._rate_limit()
            try:
                resp = requests.get(url, headers=headers, timeout=self.timeout)
                self._last_call = time.time()
                self.calls += 1
                if resp.status_code == 200:
                    nodes = (resp.json() or {}).get("taxonomy_nodes") or []
                    if nodes and nodes[0].get("taxonomy"):
                        return nodes[0]["taxonomy"]
                    logger.debug("NCBI: no taxonomy node for %s", taxid)
                    return None
                if resp.status_code == 404:
                    logger.debug("NCBI: TaxID %s not found", taxid)
                    return None
                logger.debug("NCBI HTTP %d for %s (attempt %d/%d)",
                             resp.status_code, taxid, i + 1, self.attempts)
            except (requests.RequestException, ValueError) as exc:
                if i == self.attempts - 1:
                    logger.warning("NCBI lookup failed for %s: %s", taxid, exc)
                    return None
                logger.debug("NCBI error for %s (attempt %d/%d): %s",
                             taxid, i + 1, self.attempts, exc)
            if i < self.attempts - 1:
                time.sleep(self.backoff * (i + 1))

        logger.warning("NCBI lookup gave up on %s after %d attempts", taxid, self.attempts)
        return None

    def _rate_limit(self):
        elapsed = time.time() - self._last_call
        if elapsed < self._delay:
            time.sleep(self._delay - elapsed)
