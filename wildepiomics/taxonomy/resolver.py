"""
Taxonomy resolution: TaxID -> species, order, class, common name.

Resolution order (first hit per field wins, later steps only fill gaps):
  1. In-memory / on-disk cache of previously resolved TaxIDs
  2. NCBI taxon node: species name and common name
  3. NCBI ``classification`` block (order / class names, newer API versions)
  4. Lineage scan: nearest ancestor whose rank is exactly "order" / "class"
  5. Class heuristics:
       a. nearest sub/super/infraclass between the phylum and the order
       b. well-known vertebrate class names anywhere in the lineage
  6. GBIF backbone match on the species name
  7. Per-TaxID overrides (built-in, extendable from a YAML file)

NCBI deliberately leaves some Linnaean ranks out: reptiles have no class
node at all (Testudines sits under unranked Sauropsida clades), which is
why steps 5-7 exist.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

import yaml

from .cache import TaxonomyCache
from .gbif_client import GBIFClient
from .ncbi_client import NCBITaxonomyClient

logger = logging.getLogger(__name__)

CLASS_KEYWORDS = (
    "reptilia", "aves", "mammalia", "amphibia",
    "actinopteri", "actinopterygii", "chondrichthyes",
)
CLASS_LIKE_RANKS = ("subclass", "infraclass", "superclass")

# Species whose NCBI lineage carries no class node.
TAXONOMY_OVERRIDES: Dict[int, Dict[str, str]] = {
    8467: {"class": "Reptilia", "order": "Testudines"},     # Caretta caretta
    8469: {"class": "Reptilia", "order": "Testudines"},     # Chelonia mydas
    27794: {"class": "Reptilia", "order": "Testudines"},    # Dermochelys coriacea
    8496: {"class": "Reptilia", "order": "Crocodylia"},     # Alligator mississippiensis
    8502: {"class": "Reptilia", "order": "Crocodylia"},     # Crocodylus porosus
}

_OVERRIDE_FIELDS = ("species", "order", "class", "common_name")


@dataclass
class TaxonomyRecord:
    """Resolved taxonomy for one TaxID."""
    taxid: int
    species: Optional[str] = None
    order: Optional[str] = None
    class_: Optional[str] = None
    common_name: Optional[str] = None
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["class"] = data.pop("class_")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaxonomyRecord":
        return cls(
            taxid=int(data["taxid"]),
            species=data.get("species"),
            order=data.get("order"),
            class_=data.get("class", data.get("class_")),
            common_name=data.get("common_name"),
            source=data.get("source") or "",
        )

    @property
    def complete(self) -> bool:
        return bool(self.species and self.order and self.class_)


def load_overrides(path: str) -> Dict[int, Dict[str, str]]:
    """Read ``{taxid: {field: value}}`` overrides from a YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Cannot parse overrides file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Overrides file must hold a mapping: {path}")

    overrides: Dict[int, Dict[str, str]] = {}
    for key, fields in data.items():
        if not isinstance(fields, dict):
            logger.warning("Ignoring override for %s: expected a mapping", key)
            continue
        try:
            taxid = int(key)
        except (TypeError, ValueError):
            logger.warning("Ignoring override for %r: key is not a TaxID", key)
            continue
        overrides[taxid] = {
            k: v for k, v in fields.items() if k in _OVERRIDE_FIELDS and v
        }
    logger.info("Loaded %d taxonomy overrides from %s", len(overrides), path)
    return overrides


class TaxonomyResolver:
    """Resolve TaxIDs through NCBI, heuristics, GBIF and overrides."""

    def __init__(self, ncbi: NCBITaxonomyClient = None,
                 gbif: Optional[GBIFClient] = None, *,
                 cache: TaxonomyCache = None,
                 overrides: Dict[int, Dict[str, str]] = None,
                 use_gbif: bool = True,
                 refresh: bool = False):
        self.ncbi = ncbi if ncbi is not None else NCBITaxonomyClient()
        self.gbif = gbif if gbif is not None else (GBIFClient() if use_gbif else None)
        self.use_gbif = use_gbif
        self.cache = cache if cache is not None else TaxonomyCache(None)
        self.refresh = refresh
        self.overrides = dict(TAXONOMY_OVERRIDES)
        if overrides:
            self.overrides.update(overrides)
        self._resolved: Dict[int, TaxonomyRecord] = {}
        self.misses: List[int] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, taxid: int) -> TaxonomyRecord:
        """Resolve one TaxID.  Never raises on service failures."""
        taxid = int(taxid)
        if taxid in self._resolved:
            return self._resolved[taxid]

        record = None
        if not self.refresh:
            cached = self.cache.get(taxid)
            if cached:
                record = TaxonomyRecord.from_dict(cached)
                if record.complete:
                    logger.debug("Taxonomy cache hit for %s (%s)", taxid, record.species)
                else:
                    logger.debug("Ignoring incomplete cache entry for %s", taxid)
                    record = None

        if record is None:
            record = self._resolve_remote(taxid)
            if record.complete:
                self.cache.put(taxid, record.to_dict())

        record = self._apply_overrides(record)
        if not record.complete:
            self.misses.append(taxid)
        self._resolved[taxid] = record
        logger.info("   FINAL %s: species=%r order=%r class=%r (%s)",
                    taxid, record.species, record.order, record.class_,
                    record.source or "none")
        return record

    def enrich(self, records: Iterable[Dict[str, Any]]) -> int:
        """Merge resolved taxonomy into each record that has a taxid.

        Returns the number of records enriched.
        """
        count = 0
        for entry in records:
            taxid = entry.get("taxid")
            if taxid in (None, ""):
                continue
            try:
                resolved = self.resolve(taxid)
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping taxonomy for invalid taxid %r: %s", taxid, exc)
                continue
            except Exception as exc:
                logger.warning("Taxonomy enrichment failed for %s: %s", taxid, exc)
                continue
            data = resolved.to_dict()
            data.pop("taxid")
            entry.update(data)
            count += 1
        self.cache.save()
        return count

    # ------------------------------------------------------------------
    # Resolution steps
    # ------------------------------------------------------------------

    def _resolve_remote(self, taxid: int) -> TaxonomyRecord:
        record = TaxonomyRecord(taxid=taxid)
        sources: List[str] = []

        node = self.ncbi.fetch_taxon(taxid)
        if node:
            logger.info("Processing %s (%s)", taxid, node.get("organism_name"))
            record.species = node.get("organism_name")
            record.common_name = node.get("genbank_common_name") or node.get("common_name")
            sources.append("ncbi")

            if self._from_classification(record, node):
                sources.append("ncbi-classification")

            if not (record.order and record.class_):
                lineage = self._walk_lineage(taxid, node, stop_when_complete=record)
                if self._from_lineage_ranks(record, lineage):
                    sources.append("ncbi-lineage")
                if not record.class_ and self._class_heuristics(record, lineage):
                    sources.append("ncbi-heuristic")
        else:
            logger.warning("NCBI has no taxon for %s", taxid)

        if (self.use_gbif and self.gbif is not None and record.species
                and not (record.order and record.class_)):
            if self._from_gbif(record):
                sources.append("gbif")

        record.source = "+".join(sources)
        return record

    @staticmethod
    def _from_classification(record: TaxonomyRecord, node: Dict[str, Any]) -> bool:
        """Read order / class from the node's ``classification`` block."""
        classification = node.get("classification")
        if not isinstance(classification, dict):
            return False

        def _name(rank):
            value = classification.get(rank)
            if isinstance(value, dict):
                return value.get("name")
            return value if isinstance(value, str) else None

        found = False
        if not record.order and _name("order"):
            record.order = _name("order")
            found = True
        if not record.class_ and _name("class"):
            record.class_ = _name("class")
            found = True
        return found

    def _walk_lineage(self, taxid: int, node: Dict[str, Any],
                      stop_when_complete: TaxonomyRecord = None) -> List[Dict[str, Any]]:
        """Fetch ancestor nodes, nearest first.

        Stops as soon as both an order and a class rank are known, counting
        those already filled on *stop_when_complete*.
        """
        lineage_ids = node.get("lineage")
        if not isinstance(lineage_ids, list):
            return []

        ancestors = []
        seen_ranks = set()
        if stop_when_complete is not None:
            if stop_when_complete.order:
                seen_ranks.add("order")
            if stop_when_complete.class_:
                seen_ranks.add("class")

        for lt in reversed(lineage_ids):
            try:
                lt = int(lt)
            except (TypeError, ValueError):
                continue
            if lt < 10 or lt == taxid:
                continue
            ancestor = self.ncbi.fetch_taxon(lt)
            if not ancestor:
                continue
            ancestors.append(ancestor)
            seen_ranks.add(str(ancestor.get("rank") or "").lower())
            if {"order", "class"} <= seen_ranks:
                break
        return ancestors

    @staticmethod
    def _from_lineage_ranks(record: TaxonomyRecord,
                            lineage: List[Dict[str, Any]]) -> bool:
        found = False
        for ancestor in lineage:
            rank = str(ancestor.get("rank") or "").lower()
            if rank == "order" and not record.order:
                record.order = ancestor.get("organism_name")
                found = True
            elif rank == "class" and not record.class_:
                record.class_ = ancestor.get("organism_name")
                found = True
        return found

    @staticmethod
    def _class_heuristics(record: TaxonomyRecord,
                          lineage: List[Dict[str, Any]]) -> bool:
        """Infer a class when NCBI has no class-ranked ancestor."""
        ranks = [str(a.get("rank") or "").lower() for a in lineage]

        # a. class-like rank between the phylum and the order
        if record.order and "phylum" in ranks:
            names = [a.get("organism_name") for a in lineage]
            start = names.index(record.order) + 1 if record.order in names else 0
            end = ranks.index("phylum")
            for ancestor, rank in zip(lineage[start:end], ranks[start:end]):
                if rank in CLASS_LIKE_RANKS:
                    record.class_ = ancestor.get("organism_name")
                    logger.info("  HEURISTIC CLASS: %s (%s below phylum)",
                                record.class_, rank)
                    return True

        # b. well-known class names
        for ancestor in lineage:
            name = str(ancestor.get("organism_name") or "")
            if any(keyword in name.lower() for keyword in CLASS_KEYWORDS):
                record.class_ = name
                logger.info("  KEYWORD CLASS: %s", name)
                return True
        return False

    def _from_gbif(self, record: TaxonomyRecord) -> bool:
        classification = self.gbif.match(record.species)
        if not classification:
            return False
        found = False
        if not record.order and classification.get("order"):
            record.order = classification["order"]
            found = True
        if not record.class_ and classification.get("class"):
            record.class_ = classification["class"]
            found = True
        return found

    def _apply_overrides(self, record: TaxonomyRecord) -> TaxonomyRecord:
        fields = self.overrides.get(record.taxid)
        if not fields:
            return record
        data = record.to_dict()
        changed = False
        for key in _OVERRIDE_FIELDS:
            if fields.get(key) and data.get(key) != fields[key]:
                data[key] = fields[key]
                changed = True
        if not changed:
            return record
        sources = [s for s in data["source"].split("+") if s]
        if "override" not in sources:
            sources.append("override")
        data["source"] = "+".join(sources)
        return TaxonomyRecord.from_dict(data)
