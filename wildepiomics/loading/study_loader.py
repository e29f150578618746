"""
Study record loader.

Every ``.yaml``, ``.yml`` or ``.json`` file in the data directory holds
either one study mapping or a list of them:

    doi: 10.1111/mec.16000
    taxid: 8467
    individuals: 48
    method: RRBS
    data_url: https://www.ncbi.nlm.nih.gov/geo/query/acc.cgi?acc=GSE000000

A file that fails to parse is logged and skipped so one bad entry never
blocks the rest of the site.
"""

import json
import logging
import os
from typing import Any, Dict, List

import yaml

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".yaml", ".yml", ".json")


class StudyLoader:
    """Read study records from a directory of YAML / JSON files."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self.failed_files: List[str] = []

    def load(self) -> List[Dict[str, Any]]:
        """Return all study records, in file-name order."""
        records: List[Dict[str, Any]] = []
        self.failed_files = []
        if not os.path.isdir(self.data_dir):
            logger.warning("Data directory not found: %s", self.data_dir)
            return records

        for name in sorted(os.listdir(self.data_dir)):
            ext = os.path.splitext(name)[1].lower()
            if ext not in SUPPORTED_EXTENSIONS:
                continue
            path = os.path.join(self.data_dir, name)
            if not os.path.isfile(path):
                continue
            try:
                records.extend(self.parse_file(path))
            except (OSError, ValueError, yaml.YAMLError) as exc:
                logger.error("Failed parsing %s: %s", name, exc)
                self.failed_files.append(name)

        logger.info("Loaded %d study records from %s", len(records), self.data_dir)
        return records

    @staticmethod
    def parse_file(path: str) -> List[Dict[str, Any]]:
        """Parse one data file into a list of records.

        Raises
        ------
        OSError, ValueError, yaml.YAMLError
            When the file cannot be read or parsed.
        """
        name = os.path.basename(path)
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()

        if name.lower().endswith(".json"):
            parsed = json.loads(content) if content.strip() else None
        else:
            parsed = yaml.safe_load(content)

        if parsed is None:
            logger.warning("Skipping empty data file: %s", name)
            return []

        items = parsed if isinstance(parsed, list) else [parsed]
        records = []
        for i, item in enumerate(items):
            if not isinstance(item, dict):
                logger.warning("Skipping non-mapping item %d in %s", i, name)
                continue
            record = dict(item)
            record["_source_file"] = name
            records.append(record)
        return records
