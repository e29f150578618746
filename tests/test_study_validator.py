"""Tests for study record normalization and validation."""

from wildepiomics.validation.study_validator import StudyValidator, clean_doi


def _valid():
    return {
        "doi": "10.1111/mec.16000",
        "taxid": 8469,
        "individuals": 48,
        "method": "RRBS",
        "data_url": "https://example.org/data",
    }


class TestCleanDoi:

    def test_prefixes(self):
        assert clean_doi("10.1111/mec.16000") == "10.1111/mec.16000"
        assert clean_doi("https://doi.org/10.1111/mec.16000") == "10.1111/mec.16000"
        assert clean_doi("http://dx.doi.org/10.1111/mec.16000") == "10.1111/mec.16000"
        assert clean_doi("DOI:10.1111/mec.16000") == "10.1111/mec.16000"
        assert clean_doi(" doi:10.1111/mec.16000. ") == "10.1111/mec.16000"

    def test_empty(self):
        assert clean_doi("") == ""
        assert clean_doi(None) == ""


class TestNormalize:

    def test_numeric_strings_coerced(self):
        record = {"doi": "doi:10.1000/x", "taxid": " 8469 ", "individuals": "12",
                  "method": " WGBS "}
        StudyValidator().normalize(record)
        assert record == {"doi": "10.1000/x", "taxid": 8469, "individuals": 12,
                          "method": "WGBS"}

    def test_non_numeric_left_alone(self):
        record = {"taxid": "abc"}
        StudyValidator().normalize(record)
        assert record["taxid"] == "abc"


class TestValidate:

    def test_valid_record(self):
        assert StudyValidator().validate(_valid()) == []

    def test_individuals_optional(self):
        record = _valid()
        del record["individuals"]
        del record["data_url"]
        assert StudyValidator().validate(record) == []

    def test_missing_required(self):
        issues = StudyValidator().validate({"individuals": 3})
        assert "missing required field 'doi'" in issues
        assert "missing required field 'taxid'" in issues
        assert "missing required field 'method'" in issues

    def test_malformed_doi(self):
        record = dict(_valid(), doi="mec.16000")
        assert StudyValidator().validate(record) == ["malformed DOI 'mec.16000'"]

    def test_bad_taxid(self):
        for taxid in ("abc", 0, -5, True, 12.5):
            issues = StudyValidator().validate(dict(_valid(), taxid=taxid))
            assert len(issues) == 1
            assert issues[0].startswith("taxid must be a positive integer")

    def test_bad_individuals(self):
        issues = StudyValidator().validate(dict(_valid(), individuals=-1))
        assert issues[0].startswith("individuals must be a non-negative integer")

    def test_bad_data_url(self):
        issues = StudyValidator().validate(dict(_valid(), data_url="ftp://example.org"))
        assert issues == ["data_url is not an http(s) URL: 'ftp://example.org'"]


class TestValidateAll:

    def test_reports_only_problem_records(self):
        records = [_valid(), dict(_valid(), doi="10.1111/other", method="")]
        problems = StudyValidator().validate_all(records)
        assert list(problems) == [1]

    def test_duplicate_doi(self):
        records = [_valid(), dict(_valid(), doi="https://doi.org/10.1111/MEC.16000")]
        problems = StudyValidator().validate_all(records)
        assert list(problems) == [1]
        assert "duplicate DOI" in problems[1][0]

    def test_normalizes_in_place(self):
        records = [dict(_valid(), taxid="8469")]
        assert StudyValidator().validate_all(records) == {}
        assert records[0]["taxid"] == 8469
