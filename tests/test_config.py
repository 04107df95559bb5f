"""Tests for Settings defaults and validation."""

import pytest
from pydantic import ValidationError


class TestSettings:
    def test_defaults(self, monkeypatch):
        from chatshield.config import Settings

        for name in ("PII_MAX_BATCH_CHARS", "PII_PERSISTENCE_MODE", "PII_TYPES", "RATE_LIMIT_PER_MINUTE"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings()
        assert settings.PII_MAX_BATCH_CHARS == 500
        assert settings.PII_PERSISTENCE_MODE == "detections"
        assert settings.PII_MASK_CHAR == "•"
        assert settings.RATE_LIMIT_PER_MINUTE == 10
        assert "email" in settings.PII_TYPES

    def test_env_override(self, monkeypatch):
        from chatshield.config import Settings

        monkeypatch.setenv("PII_MAX_BATCH_CHARS", "400")
        monkeypatch.setenv("PII_TYPES", '["email", "name"]')
        settings = Settings()
        assert settings.PII_MAX_BATCH_CHARS == 400
        assert settings.PII_TYPES == ["email", "name"]

    def test_unknown_pii_type_rejected(self):
        from chatshield.config import Settings

        with pytest.raises(ValidationError, match="unknown types"):
            Settings(PII_TYPES=["email", "shoe_size"])

    def test_batch_chars_must_be_positive(self):
        from chatshield.config import Settings

        with pytest.raises(ValidationError, match="PII_MAX_BATCH_CHARS"):
            Settings(PII_MAX_BATCH_CHARS=0)

    def test_persistence_mode_validated(self):
        from chatshield.config import Settings

        with pytest.raises(ValidationError, match="PII_PERSISTENCE_MODE"):
            Settings(PII_PERSISTENCE_MODE="database")

    def test_mask_char_single_character(self):
        from chatshield.config import Settings

        with pytest.raises(ValidationError, match="single character"):
            Settings(PII_MASK_CHAR="**")

    def test_get_settings_cached(self):
        from chatshield.config import get_settings

        assert get_settings() is get_settings()

    def test_secrets_not_in_repr(self):
        from chatshield.config import Settings

        settings = Settings(GOOGLE_API_KEY="super-secret", API_KEY="also-secret")
        assert "super-secret" not in repr(settings)
        assert settings.API_KEY.get_secret_value() == "also-secret"


class TestBuildServices:
    def test_ai_detector_wired_when_enabled(self, make_services):
        services = make_services()
        assert services.detector is not None
        assert services.detector.circuit_breaker is not None
        assert services.scanner.enabled is True

    def test_regex_only(self, make_services):
        services = make_services(PII_AI_DETECTION_ENABLED=False)
        assert services.detector is None
        assert services.scanner.enabled is True

    def test_detection_disabled(self, make_services):
        services = make_services(PII_DETECTION_ENABLED=False)
        assert services.detector is None
        assert services.scanner.enabled is False
