"""
Tests for OAuth token encryption and the error taxonomy.
"""

import pytest
from cryptography.fernet import Fernet

from drivelink.core.encryption import TokenEncryptionError, TokenEncryptionService
from drivelink.core.exceptions import (
    ProviderError,
    QuotaExceededError,
    RateLimitedError,
    WebhookValidationError,
)


class TestTokenEncryptionService:
    """Fernet round trip and failure modes."""

    def test_round_trip(self, mock_settings):
        service = TokenEncryptionService.from_settings(mock_settings)
        encrypted = service.encrypt_token('{"access_token": "abc"}')

        assert "abc" not in encrypted
        assert service.decrypt_token(encrypted) == '{"access_token": "abc"}'

    def test_missing_key(self):
        with pytest.raises(TokenEncryptionError, match="not configured"):
            TokenEncryptionService(None)

    def test_invalid_key(self):
        with pytest.raises(TokenEncryptionError, match="Invalid OAuth encryption key"):
            TokenEncryptionService("not-a-fernet-key")

    def test_wrong_key_cannot_decrypt(self, mock_settings):
        encrypted = TokenEncryptionService.from_settings(mock_settings).encrypt_token("secret")
        other = TokenEncryptionService(Fernet.generate_key().decode())

        with pytest.raises(TokenEncryptionError, match="Invalid token or key"):
            other.decrypt_token(encrypted)

    def test_empty_values_rejected(self, mock_settings):
        service = TokenEncryptionService.from_settings(mock_settings)
        with pytest.raises(TokenEncryptionError):
            service.encrypt_token("")
        with pytest.raises(TokenEncryptionError):
            service.decrypt_token("")


class TestExceptions:
    """Status mapping of the error taxonomy."""

    def test_webhook_validation_is_400(self):
        error = WebhookValidationError("channel token mismatch")
        assert error.status_code == 400
        assert error.to_dict()["code"] == "WEBHOOK_VALIDATION_ERROR"

    def test_rate_limited_is_429(self):
        error = RateLimitedError("drive", "quota cool-down in effect")
        assert error.status_code == 429
        assert error.service_type == "drive"

    def test_provider_error_retryable(self):
        assert ProviderError(503, "unavailable").is_retryable
        assert ProviderError(429, "slow down").is_retryable
        assert not ProviderError(404, "not found").is_retryable

    def test_quota_error_keeps_provider_payload(self):
        base = ProviderError(403, "quota", reasons=["userRateLimitExceeded"])
        error = QuotaExceededError("drive", QuotaExceededError.SCOPE_USER, base)

        assert isinstance(error, ProviderError)
        assert error.status == 403
        assert error.reasons == ["userRateLimitExceeded"]
        assert error.scope == "user"
        assert error.error_code == "QUOTA_EXCEEDED"
