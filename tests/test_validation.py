"""Unit tests for validation.py - Observed document validation."""

from conftest import observed_for
from validation import validate_observed_document


class TestValidateObservedDocument:
    """Tests for validate_observed_document function."""

    def test_valid_document(self, observed_document):
        is_valid, error = validate_observed_document(observed_document)
        assert is_valid is True
        assert error is None

    def test_tls_document(self, tls_cluster):
        is_valid, _ = validate_observed_document(observed_for(tls_cluster))
        assert is_valid is True

    def test_minimal_document(self):
        is_valid, _ = validate_observed_document({"metadata": {"name": "demo"}, "spec": {}})
        assert is_valid is True

    def test_missing_spec(self, observed_document):
        del observed_document["spec"]
        is_valid, error = validate_observed_document(observed_document)
        assert is_valid is False
        assert "(root)" in error
        assert "'spec' is a required property" in error

    def test_spec_not_an_object(self, observed_document):
        observed_document["spec"] = ["size", 3]
        is_valid, error = validate_observed_document(observed_document)
        assert is_valid is False
        assert error.startswith("spec:")

    def test_missing_name(self, observed_document):
        del observed_document["metadata"]["name"]
        is_valid, error = validate_observed_document(observed_document)
        assert is_valid is False
        assert "metadata" in error

    def test_multiple_errors_joined(self):
        is_valid, error = validate_observed_document(
            {"metadata": {"name": 42}, "spec": "nope"}
        )
        assert is_valid is False
        assert "metadata.name" in error
        assert "spec" in error
        assert ";" in error

    def test_not_a_mapping(self):
        is_valid, error = validate_observed_document(None)
        assert is_valid is False
        assert "is not of type 'object'" in error
