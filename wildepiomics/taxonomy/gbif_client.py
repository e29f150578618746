"""
GBIF species-match client, used as the fallback classification source.

NCBI lineages often lack Linnaean class ranks (turtles sit under
unranked clades such as Sauropsida), whereas the GBIF backbone always
places a species in a class and an order.

The match endpoint has answered in two shapes over time:

  v2:  {"usage": {"key": ..., "canonicalName": ...},
        "classification": [{"name": "Reptilia", "rank": "CLASS"}, ...]}
  v1:  {"usageKey": ..., "matchType": "EXACT",
        "class": "Reptilia", "order": "Testudines", ...}

Both are flattened to ``{"class": "Reptilia", "order": "Testudines", ...}``.
"""

import logging
import time
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

_GBIF_MATCH_URL = "https://api.gbif.org/v2/species/match"
_FLAT_RANKS = ("kingdom", "phylum", "class", "order", "family", "genus", "species")


class GBIFClient:
    """Look up a scientific name in the GBIF backbone taxonomy."""

    def __init__(self, *, attempts: int = 3, backoff: float = 0.5,
                 timeout: float = 15.0, request_delay: float = 0.2,
                 user_agent: str = None):
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.timeout = timeout
        self._delay = request_delay
        self._user_agent = user_agent
        self._last_call = 0.0
        self._cache: Dict[str, Optional[Dict[str, str]]] = {}

    def match(self, scientific_name: str) -> Optional[Dict[str, str]]:
        """Return ``{rank: name}`` for the best backbone match, or None."""
        name = (scientific_name or "").strip()
        if not name:
            logger.debug("GBIF: no scientific name provided")
            return None

        if name in self._cache:
            return self._cache[name]

        result = self._fetch(name)
        self._cache[name] = result
        return result

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fetch(self, name: str) -> Optional[Dict[str, str]]:
        headers = {"User-Agent": self._user_agent} if self._user_agent else {}
        logger.info("   GBIF fallback -> %s", name)

        for i in range(self.attempts):
            self._rate_limit()
            try:
                resp = requests.get(
                    _GBIF_MATCH_URL,
                    params={"scientificName": name},
                    headers=headers,
                    timeout=self.timeout,
                )
                self._last_call = time.time()
                if resp.status_code == 200:
                    classification = self.parse_match(resp.json() or {})
                    if classification:
                        logger.info("   GBIF matched %s (%d ranks)",
                                    name, len(classification))
                    else:
                        logger.info("   GBIF: no match for %s", name)
                    return classification
                logger.debug("GBIF HTTP %d for %s (attempt %d/%d)",
                             resp.status_code, name, i + 1, self.attempts)
            except (requests.RequestException, ValueError) as exc:
                logger.debug("GBIF error for %s (attempt %d/%d): %s",
                             name, i + 1, self.attempts, exc)
            if i < self.attempts - 1:
                time.sleep(self.backoff * (i + 1))

        logger.warning("GBIF lookup failed for %s after %d attempts", name, self.attempts)
        return None

    @staticmethod
    def parse_match(data: Dict[str, Any]) -> Optional[Dict[str, str]]:
        """Flatten a species-match response into ``{rank: name}``."""
        # v2 shape
        usage = data.get("usage")
        if isinstance(usage, dict) and usage.get("key"):
            flat = {}
            for entry in data.get("classification") or []:
                rank = str(entry.get("rank") or "").lower()
                if rank and entry.get("name") and rank not in flat:
                    flat[rank] = entry["name"]
            return flat or None

        # v1 shape
        if data.get("usageKey") and data.get("matchType", "NONE") != "NONE":
            flat = {rank: data[rank] for rank in _FLAT_RANKS if data.get(rank)}
            return flat or None

        return None

    def _rate_limit(self):
        elapsed = time.time() - self._last_call
        if elapsed < self._delay:
            time.sleep(self._delay - elapsed)
