"""
Static site assembly.

Output layout (under ``dist/``):
  index.html            rendered template with the dataset embedded
  script.js, style.css  client assets (site root copy wins over packaged default)
  public/bibtex.json    DOI -> BibTeX map used by the download button
  public/studies.json   the enriched dataset, for reuse outside the page

Templates are rendered with Jinja2.  Templates written for the old
placeholder build keep working: ``<!-- INJECT_DATA -->`` is replaced with
the same data script after rendering.
"""

import json
import logging
import os
import shutil
from datetime import date
from typing import Any, Dict, List

from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup

from ..config import BuildConfig

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
PACKAGED_TEMPLATES = os.path.join(_PACKAGE_DIR, "templates")
PACKAGED_STATIC = os.path.join(_PACKAGE_DIR, "static")

TEMPLATE_NAME = "template.html"
INJECT_MARKER = "<!-- INJECT_DATA -->"
ASSETS = ("style.css", "script.js")


def public_entries(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop private (``_``-prefixed) keys before records leave the build."""
    return [{k: v for k, v in r.items() if not str(k).startswith("_")} for r in records]


def embed_json(value: Any) -> str:
    """Serialize *value* for inclusion inside a ``<script>`` element."""
    text = json.dumps(value, indent=2, ensure_ascii=False, default=str)
    return text.replace("</", "<\\/")


def data_script(entries: List[Dict[str, Any]]) -> Markup:
    """The ``<script>`` elements that carry the dataset into the page."""
    payload = embed_json({"entries": entries})
    legacy = embed_json(entries)
    return Markup(
        f'<script id="entries" type="application/json">{payload}</script>\n'
        f"<script>window.__DATA__ = {legacy};</script>"
    )


class SiteBuilder:
    """Write the BibTeX map and assemble ``dist/``."""

    def __init__(self, config: BuildConfig):
        self.config = config
        self.env = Environment(
            loader=FileSystemLoader([config.root, PACKAGED_TEMPLATES]),
            autoescape=select_autoescape(["html"]),
            keep_trailing_newline=True,
        )

    def build(self, records: List[Dict[str, Any]], bib_map: Dict[str, str]) -> str:
        """Build the site.  Returns the path of the written ``index.html``."""
        entries = public_entries(records)
        dist_dir = self.config.dist_dir
        dist_public = os.path.join(dist_dir, "public")

        self.write_bibtex(bib_map)

        os.makedirs(dist_public, exist_ok=True)

        index_path = os.path.join(dist_dir, "index.html")
        with open(index_path, "w", encoding="utf-8") as f:
            f.write(self.render(entries))

        self._copy_assets(dist_dir)
        self._copy_public(dist_public)

        with open(os.path.join(dist_public, "studies.json"), "w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2, ensure_ascii=False, default=str)

        logger.info("Site written to %s", dist_dir)
        return index_path

    def write_bibtex(self, bib_map: Dict[str, str]) -> str:
        """Write ``public/bibtex.json`` under the site root."""
        os.makedirs(self.config.public_dir, exist_ok=True)
        path = os.path.join(self.config.public_dir, "bibtex.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(bib_map, f, indent=2, ensure_ascii=False)
        logger.info("Wrote %d BibTeX entries to %s", len(bib_map), path)
        return path

    def load_bibtex(self) -> Dict[str, str]:
        """Read the previous ``public/bibtex.json`` ({} when absent or bad)."""
        path = os.path.join(self.config.public_dir, "bibtex.json")
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable %s: %s", path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def render(self, entries: List[Dict[str, Any]]) -> str:
        """Render the page template for *entries*."""
        template = self.env.get_template(TEMPLATE_NAME)
        script = data_script(entries)
        html = template.render(
            entries=entries,
            data_script=script,
            generated=date.today().isoformat(),
            counts=self._counts(entries),
        )
        return html.replace(INJECT_MARKER, str(script))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _counts(entries: List[Dict[str, Any]]) -> Dict[str, int]:
        return {
            "studies": len(entries),
            "species": len({e.get("taxid") for e in entries if e.get("taxid")}),
            "orders": len({e.get("order") for e in entries if e.get("order")}),
            "classes": len({e.get("class") for e in entries if e.get("class")}),
            "methods": len({e.get("method") for e in entries if e.get("method")}),
        }

    def _copy_assets(self, dist_dir: str) -> None:
        for name in ASSETS:
            src = os.path.join(self.config.root, name)
            if not os.path.exists(src):
                src = os.path.join(PACKAGED_STATIC, name)
            if os.path.exists(src):
                shutil.copyfile(src, os.path.join(dist_dir, name))

    def _copy_public(self, dist_public: str) -> None:
        public_dir = self.config.public_dir
        if not os.path.isdir(public_dir):
            return
        for name in os.listdir(public_dir):
            src = os.path.join(public_dir, name)
            if os.path.isfile(src):
                shutil.copyfile(src, os.path.join(dist_public, name))
