"""
Persistent JSON cache of resolved taxonomy records, keyed by TaxID.

Resolving one species costs a lookup per lineage ancestor (30+ calls for
a vertebrate), so resolved records are written back to disk and reused
on the next build.
"""

import json
import logging
import os
import tempfile
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class TaxonomyCache:
    """TaxID -> resolved record, persisted as a single JSON object."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._data: Dict[str, Dict[str, Any]] = {}
        self._dirty = False
        if path:
            self._load()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, taxid) -> bool:
        return str(taxid) in self._data

    def get(self, taxid) -> Optional[Dict[str, Any]]:
        entry = self._data.get(str(taxid))
        return dict(entry) if entry is not None else None

    def put(self, taxid, record: Dict[str, Any]) -> None:
        self._data[str(taxid)] = dict(record)
        self._dirty = True

    def clear(self) -> None:
        if self._data:
            self._dirty = True
        self._data = {}

    def save(self) -> None:
        """Write the cache if it changed.  No-op without a path."""
        if not self.path or not self._dirty:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, ensure_ascii=False, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        self._dirty = False
        logger.debug("Saved %d taxonomy cache entries to %s", len(self._data), self.path)

    # ------------------------------------------------------------------
    def _load(self):
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable taxonomy cache %s: %s", self.path, exc)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed taxonomy cache %s", self.path)
            return
        self._data = {str(k): v for k, v in data.items() if isinstance(v, dict)}
        logger.info("Taxonomy cache loaded: %d entries", len(self._data))
