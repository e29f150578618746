"""Tests for the YAML / JSON study loader."""

import json

import pytest

from wildepiomics.loading.study_loader import StudyLoader

TURTLE_YAML = """\
doi: 10.1111/mec.16000
taxid: 8469
individuals: 48
method: RRBS
data_url: https://www.ncbi.nlm.nih.gov/geo/query/acc.cgi?acc=GSE000001
notes: |
  Blood samples from nesting females.
"""


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / "data"
    d.mkdir()
    return d


class TestStudyLoader:

    def test_missing_directory(self, tmp_path):
        assert StudyLoader(str(tmp_path / "nope")).load() == []

    def test_yaml_record(self, data_dir):
        (data_dir / "turtle.yaml").write_text(TURTLE_YAML)
        records = StudyLoader(str(data_dir)).load()
        assert len(records) == 1
        assert records[0]["taxid"] == 8469
        assert records[0]["method"] == "RRBS"
        assert records[0]["notes"].startswith("Blood samples")
        assert records[0]["_source_file"] == "turtle.yaml"

    def test_json_and_yml_and_case_insensitive_ext(self, data_dir):
        (data_dir / "a.json").write_text(json.dumps({"doi": "10.1000/a", "taxid": 1}))
        (data_dir / "b.yml").write_text("doi: 10.1000/b\ntaxid: 2\n")
        (data_dir / "c.YAML").write_text("doi: 10.1000/c\ntaxid: 3\n")
        (data_dir / "README.md").write_text("# not data")
        records = StudyLoader(str(data_dir)).load()
        assert [r["doi"] for r in records] == ["10.1000/a", "10.1000/b", "10.1000/c"]

    def test_list_files_contribute_each_mapping(self, data_dir):
        (data_dir / "many.yaml").write_text(
            "- doi: 10.1000/x\n  taxid: 1\n- doi: 10.1000/y\n  taxid: 2\n- just a string\n"
        )
        records = StudyLoader(str(data_dir)).load()
        assert [r["doi"] for r in records] == ["10.1000/x", "10.1000/y"]

    def test_bad_file_is_skipped(self, data_dir):
        (data_dir / "a.yaml").write_text(TURTLE_YAML)
        (data_dir / "b.json").write_text("{broken json")
        (data_dir / "c.yaml").write_text("doi: [unclosed\n")
        loader = StudyLoader(str(data_dir))
        records = loader.load()
        assert len(records) == 1
        assert loader.failed_files == ["b.json", "c.yaml"]

    def test_empty_files_are_skipped(self, data_dir):
        (data_dir / "empty.yaml").write_text("")
        (data_dir / "empty.json").write_text("   ")
        assert StudyLoader(str(data_dir)).load() == []

    def test_subdirectories_ignored(self, data_dir):
        (data_dir / "nested.yaml").mkdir()
        assert StudyLoader(str(data_dir)).load() == []

    def test_unknown_keys_preserved(self, data_dir):
        (data_dir / "a.yaml").write_text("doi: 10.1000/a\ntaxid: 1\ntissue: blood\n")
        assert StudyLoader(str(data_dir)).load()[0]["tissue"] == "blood"
