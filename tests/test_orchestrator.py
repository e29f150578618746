"""End-to-end build tests with the network replaced by fakes."""

import json

import pytest

from wildepiomics.config import BuildConfig
from wildepiomics.orchestrator import (
    BuildError,
    BuildOrchestrator,
    NoStudyRecords,
    ValidationFailed,
)
from wildepiomics.taxonomy.resolver import TaxonomyResolver

NODES = {
    900001: {"tax_id": 900001, "organism_name": "Macaca testa", "rank": "SPECIES",
             "classification": {"order": {"name": "Primates"},
                                "class": {"name": "Mammalia"}}},
}


class FakeNCBI:
    def fetch_taxon(self, taxid):
        return NODES.get(int(taxid))


class FakeFetcher:
    def __init__(self):
        self.calls = []

    def build_map(self, records, existing=None, refresh=False):
        self.calls.append({"existing": existing, "refresh": refresh})
        return {r["doi"]: ("" if r["doi"].endswith("missing") else f"@article{{{r['doi']}}}")
                for r in records if r.get("doi")}


@pytest.fixture
def site(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    (data / "a.yaml").write_text(
        "doi: https://doi.org/10.1000/macaque\ntaxid: '900001'\n"
        "individuals: 12\nmethod: RRBS\ndata_url: https://example.org/a\n"
    )
    (data / "b.yaml").write_text("doi: 10.1000/missing\ntaxid: 900002\nmethod: WGBS\n")
    return tmp_path


def _orchestrator(root, **config_kwargs):
    config = BuildConfig(root=str(root), **config_kwargs)
    resolver = TaxonomyResolver(FakeNCBI(), None, use_gbif=False)
    return BuildOrchestrator(config, resolver=resolver, bibtex_fetcher=FakeFetcher())


class TestBuildOrchestrator:

    def test_full_run(self, site):
        report = _orchestrator(site).run()
        assert report.entries == 2
        assert report.enriched == 2
        assert report.bibtex_entries == 2
        assert report.empty_citations == ["10.1000/missing"]
        assert report.taxonomy_misses == [900002]
        assert report.validation_issues == {}
        assert (site / "dist" / "index.html").exists()

        studies = json.loads((site / "dist" / "public" / "studies.json").read_text())
        assert studies[0]["doi"] == "10.1000/macaque"
        assert studies[0]["taxid"] == 900001
        assert studies[0]["order"] == "Primates"
        assert studies[0]["class"] == "Mammalia"
        assert studies[1]["species"] is None

    def test_previous_bibtex_passed_as_existing(self, site):
        (site / "public").mkdir()
        (site / "public" / "bibtex.json").write_text(json.dumps({"10.1000/macaque": "@old"}))
        orchestrator = _orchestrator(site, refresh=True)
        orchestrator.run()
        call = orchestrator.bibtex_fetcher.calls[0]
        assert call["existing"] == {"10.1000/macaque": "@old"}
        assert call["refresh"] is True

    def test_validation_issues_reported(self, site):
        (site / "data" / "c.yaml").write_text("doi: nope\ntaxid: 1\nmethod: RRBS\n")
        report = _orchestrator(site).run()
        assert report.entries == 3
        assert list(report.validation_issues) == [2]

    def test_strict_mode_aborts(self, site):
        (site / "data" / "c.yaml").write_text("doi: nope\ntaxid: 1\nmethod: RRBS\n")
        with pytest.raises(ValidationFailed) as excinfo:
            _orchestrator(site, strict=True).run()
        assert 2 in excinfo.value.issues
        assert not (site / "dist").exists()

    def test_enrich_only_leaves_site_untouched(self, site):
        records = _orchestrator(site).enrich_only()
        assert records[0]["species"] == "Macaca testa"
        assert not (site / "dist").exists()
        assert not (site / "public").exists()

    def test_bibtex_only(self, site):
        bib_map = _orchestrator(site).bibtex_only()
        saved = json.loads((site / "public" / "bibtex.json").read_text())
        assert saved == bib_map
        assert not (site / "dist").exists()

    def test_lazy_default_components(self, tmp_path):
        config = BuildConfig(root=str(tmp_path), use_gbif=False)
        orchestrator = BuildOrchestrator(config)
        assert orchestrator.resolver.gbif is None
        assert orchestrator.resolver.cache.path == config.cache_path
        assert orchestrator.bibtex_fetcher.mailto == config.mailto

    def test_no_records_leaves_previous_output(self, site):
        for path in (site / "data").iterdir():
            path.unlink()
        (site / "data" / "broken.yaml").write_text("doi: [unclosed\n")
        (site / "public").mkdir()
        bibtex = site / "public" / "bibtex.json"
        bibtex.write_text(json.dumps({"10.1000/macaque": "@article{x}"}))

        orchestrator = _orchestrator(site)
        with pytest.raises(NoStudyRecords):
            orchestrator.run()
        with pytest.raises(NoStudyRecords):
            orchestrator.bibtex_only()
        assert json.loads(bibtex.read_text()) == {"10.1000/macaque": "@article{x}"}
        assert orchestrator.bibtex_fetcher.calls == []
        assert not (site / "dist").exists()

    def test_bad_overrides_file_is_build_error(self, site):
        overrides = site / "overrides.yaml"
        overrides.write_text("8469: [unclosed\n")
        config = BuildConfig(root=str(site), use_gbif=False)
        assert config.overrides_path == str(overrides)
        with pytest.raises(BuildError):
            BuildOrchestrator(config).resolver
