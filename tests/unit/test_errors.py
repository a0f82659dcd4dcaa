"""Tests for error types and sanitization utilities."""

from __future__ import annotations

from kubernetes.client.exceptions import ApiException

from apiserver_encryption_operator.utils.errors import (
    AggregateError,
    EncryptionError,
    KeyStateInvalidError,
    is_already_exists,
    is_conflict,
    is_not_found,
    is_not_found_or_conflict,
    new_aggregate,
    sanitize_dict,
    sanitize_error_message,
    sanitize_exception,
)


class TestAggregate:
    """Test cases for aggregated errors."""

    def test_no_errors(self):
        """Test that nothing to aggregate gives None."""
        assert new_aggregate([]) is None
        assert new_aggregate([None, None]) is None

    def test_single_error_message(self):
        """Test that a single error keeps its message."""
        aggregate = new_aggregate([None, ValueError("boom")])

        assert isinstance(aggregate, AggregateError)
        assert str(aggregate) == "boom"

    def test_multiple_errors_message(self):
        """Test the message of several errors."""
        aggregate = new_aggregate([ValueError("a"), ValueError("b")])

        assert str(aggregate) == "[a, b]"
        assert len(aggregate.errors) == 2

    def test_filter_out(self):
        """Test filtering errors out of an aggregate."""
        aggregate = new_aggregate([ApiException(status=404), ValueError("kept")])

        filtered = aggregate.filter_out(is_not_found)

        assert str(filtered) == "kept"
        assert new_aggregate([ApiException(status=404)]).filter_out(is_not_found) is None

    def test_hierarchy(self):
        """Test that all errors are encryption errors."""
        assert issubclass(KeyStateInvalidError, EncryptionError)
        assert issubclass(AggregateError, EncryptionError)


class TestApiErrorClassification:
    """Test cases for API error helpers."""

    def test_not_found(self):
        """Test not found detection."""
        assert is_not_found(ApiException(status=404))
        assert not is_not_found(ApiException(status=409))
        assert not is_not_found(ValueError("404"))

    def test_conflict(self):
        """Test conflict detection."""
        assert is_conflict(ApiException(status=409))
        assert is_not_found_or_conflict(ApiException(status=409))
        assert is_not_found_or_conflict(ApiException(status=404))
        assert not is_not_found_or_conflict(ApiException(status=500))

    def test_already_exists(self):
        """Test that only AlreadyExists conflicts count."""
        error = ApiException(status=409)
        error.body = '{"reason": "AlreadyExists"}'
        assert is_already_exists(error)

        error.body = '{"reason": "Conflict"}'
        assert not is_already_exists(error)

        assert not is_already_exists(ApiException(status=404))


class TestSanitizeErrorMessage:
    """Test cases for sanitize_error_message function."""

    def test_sanitize_secret_value(self):
        """Test that secret values are sanitized."""
        message = "Error: secret: c2VjcmV0LWtleS1tYXRlcmlhbA=="
        result = sanitize_error_message(message)
        assert "c2VjcmV0LWtleS1tYXRlcmlhbA==" not in result
        assert "[REDACTED]" in result

    def test_sanitize_key_data(self):
        """Test that key data fields are sanitized."""
        message = "data: encryption.apiserver.operator.openshift.io-key: AAECAwQFBgcICQ=="
        result = sanitize_error_message(message)
        assert "AAECAwQFBgcICQ==" not in result
        assert "[REDACTED]" in result

    def test_no_sensitive_data(self):
        """Test that messages without sensitive data are unchanged."""
        message = "resource secrets is not served by the API server"
        assert sanitize_error_message(message) == message

    def test_key_names_are_kept(self):
        """Test that key secret names are not redacted."""
        message = "Secret openshift-kube-apiserver-core-secrets-encryption-3 deleted"
        assert sanitize_error_message(message) == message


class TestSanitizeException:
    """Test cases for sanitize_exception function."""

    def test_api_exception_drops_body(self):
        """Test that API exception bodies are not included."""
        error = ApiException(status=500, reason="Internal Server Error")
        error.body = '{"data": {"key": "c2VjcmV0"}}'

        result = sanitize_exception(error)

        assert result == "(500) Internal Server Error"

    def test_plain_exception(self):
        """Test sanitizing a plain exception."""
        assert sanitize_exception(ValueError("plain")) == "plain"


class TestSanitizeDict:
    """Test cases for sanitize_dict function."""

    def test_sensitive_fields_redacted(self):
        """Test that sensitive fields are redacted."""
        data = {"name": "key-1", "material": "AAEC", "nested": {"token": "abc"}}

        result = sanitize_dict(data)

        assert result["name"] == "key-1"
        assert result["material"] == "[REDACTED]"
        assert result["nested"]["token"] == "[REDACTED]"

    def test_additional_sensitive_keys(self):
        """Test redacting additional keys."""
        result = sanitize_dict({"custom": "value", "other": 1}, sensitive_keys={"custom"})

        assert result == {"custom": "[REDACTED]", "other": 1}
