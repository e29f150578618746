"""
wildEpiOmics static-site builder for wildlife DNA-methylation studies.

Architecture:
  - loading/    : YAML / JSON study records from the data directory
  - validation/ : identifier normalization and record checks
  - taxonomy/   : NCBI Datasets lookup, GBIF fallback, lineage heuristics, cache
  - citations/  : Crossref BibTeX with CSL-JSON fallback
  - export/     : Jinja2 page rendering and dist/ assembly
  - orchestrator: wires the stages into one build
"""

__version__ = "1.0.0"
