"""
Tests for credential validation, redaction and the credential store.
"""

import logging

import pytest

from scoresnap_guard.core.errors import (
    CredentialError,
    CredentialErrorKind,
    ErrorKind,
    InferenceError,
)
from scoresnap_guard.core.security import (
    KeyValidationError,
    RedactingFilter,
    get_logger,
    install_redaction,
    is_valid_api_key,
    redact,
    validate_api_key,
)
from scoresnap_guard.sdk.credentials import API_KEY_ENV_VAR, InMemoryCredentialStore

VALID_KEY = "sk-ant-api03-" + "Zx9_-abc" * 5


class TestKeyValidation:
    """Test the API key format check."""

    def test_valid_key(self):
        assert validate_api_key(VALID_KEY) is None
        assert is_valid_api_key(VALID_KEY) is True

    @pytest.mark.parametrize("key", [None, "", "   \n"])
    def test_empty_key(self, key):
        assert validate_api_key(key) == KeyValidationError.EMPTY

    def test_too_short(self):
        assert validate_api_key("sk-ant-api03-abc") == KeyValidationError.INVALID_LENGTH

    def test_too_long(self):
        assert validate_api_key("sk-ant-api03-" + "a" * 100) == KeyValidationError.INVALID_LENGTH

    def test_wrong_prefix(self):
        key = "sk-proj-" + "a" * 40
        assert validate_api_key(key) == KeyValidationError.INVALID_FORMAT

    def test_illegal_characters(self):
        key = "sk-ant-api03-" + "a" * 30 + "!@#$%^&*"
        assert validate_api_key(key) == KeyValidationError.INVALID_FORMAT


class TestRedaction:
    """Test masking of credentials in free text and log records."""

    def test_api_key_is_masked(self):
        text = f"request failed with key {VALID_KEY} attached"
        assert redact(text) == "request failed with key [API_KEY] attached"

    @pytest.mark.parametrize("text, expected", [
        ("Authorization: Bearer abc.def-123", "Authorization: [SENSITIVE_DATA]"),
        ("https://example.com/?key=abc123", "https://example.com/?[SENSITIVE_DATA]"),
        ("callback?token=xyz_789&page=2", "callback?[SENSITIVE_DATA]&page=2"),
    ])
    def test_other_secrets_are_masked(self, text, expected):
        assert redact(text) == expected

    def test_plain_text_unchanged(self):
        assert redact("Analysis completed in 2.1s") == "Analysis completed in 2.1s"

    def test_filter_scrubs_message_and_args(self):
        record = logging.LogRecord(
            "test", logging.WARNING, __file__, 1,
            "key %s failed: %s", (VALID_KEY, ValueError(f"bad {VALID_KEY}")), None
        )

        assert RedactingFilter().filter(record) is True
        message = record.getMessage()

        assert VALID_KEY not in message
        assert message == "key [API_KEY] failed: bad [API_KEY]"

    def test_filter_keeps_non_string_args(self):
        record = logging.LogRecord(
            "test", logging.INFO, __file__, 1, "attempt %d of %d", (1, 3), None
        )
        RedactingFilter().filter(record)
        assert record.getMessage() == "attempt 1 of 3"

    def test_module_logger_redacts(self, caplog):
        logger = get_logger("scoresnap_guard.tests.redaction")

        with caplog.at_level(logging.INFO, logger="scoresnap_guard.tests.redaction"):
            logger.info("using %s", VALID_KEY)

        assert VALID_KEY not in caplog.text
        assert "[API_KEY]" in caplog.text

    def test_get_logger_attaches_one_filter(self):
        logger = get_logger("scoresnap_guard.tests.single")
        get_logger("scoresnap_guard.tests.single")
        assert sum(isinstance(f, RedactingFilter) for f in logger.filters) == 1

    def test_install_redaction_on_handlers(self):
        logger = logging.getLogger("scoresnap_guard.tests.handlers")
        handler = logging.NullHandler()
        logger.addHandler(handler)
        try:
            install_redaction(logger)
            install_redaction(logger)
            assert sum(isinstance(f, RedactingFilter) for f in handler.filters) == 1
        finally:
            logger.removeHandler(handler)

    def test_error_message_is_redacted(self):
        error = InferenceError(ErrorKind.NETWORK_FAILURE, f"echo {VALID_KEY}", status_code=None)
        assert VALID_KEY not in str(error)
        assert VALID_KEY not in repr(error)
        assert str(error) == "Network request failed: echo [API_KEY]"

    def test_error_message_with_status(self):
        error = InferenceError(ErrorKind.CLIENT_ERROR, status_code=401)
        assert str(error) == "Request rejected by server (HTTP 401)"


class TestCredentialStore:
    """Test the in-memory credential store."""

    def test_set_and_get(self):
        store = InMemoryCredentialStore()
        store.set(f"\n {VALID_KEY} \n")
        assert store.get() == VALID_KEY

    def test_get_when_empty(self):
        with pytest.raises(CredentialError) as excinfo:
            InMemoryCredentialStore().get()
        assert excinfo.value.kind == CredentialErrorKind.NOT_FOUND

    def test_set_rejects_malformed_key(self):
        store = InMemoryCredentialStore()
        with pytest.raises(CredentialError) as excinfo:
            store.set("not-a-key")
        assert excinfo.value.kind == CredentialErrorKind.INVALID_FORMAT
        with pytest.raises(CredentialError):
            store.get()

    def test_clear(self):
        store = InMemoryCredentialStore(VALID_KEY)
        store.clear()
        with pytest.raises(CredentialError):
            store.get()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv(API_KEY_ENV_VAR, VALID_KEY)
        assert InMemoryCredentialStore.from_env().get() == VALID_KEY

    def test_from_env_unset(self, monkeypatch):
        monkeypatch.delenv(API_KEY_ENV_VAR, raising=False)
        with pytest.raises(CredentialError) as excinfo:
            InMemoryCredentialStore.from_env().get()
        assert excinfo.value.kind == CredentialErrorKind.NOT_FOUND

    def test_rejected_key_not_logged(self, caplog):
        bad_key = "sk-ant-api03-" + "a" * 30 + "!!"
        with caplog.at_level(logging.DEBUG):
            with pytest.raises(CredentialError):
                InMemoryCredentialStore(bad_key)
        assert bad_key not in caplog.text
