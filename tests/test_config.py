"""Configuration tests: relying-party validation and environment loading."""

from __future__ import annotations

import pytest

from keyceremony.app import create_app
from keyceremony.config import ConfigurationError, Settings, relying_party_problems


class TestRelyingPartyProblems:
    @pytest.mark.parametrize(
        ("rp_id", "origin"),
        [
            ("localhost", "http://localhost:5173"),
            ("example.com", "https://example.com"),
            ("example.com", "https://login.example.com"),
            ("login.example.com", "https://login.example.com:8443"),
        ],
    )
    def test_consistent_pairs(self, rp_id, origin):
        assert relying_party_problems(rp_id, origin) == []

    @pytest.mark.parametrize(
        ("rp_id", "origin", "fragment"),
        [
            ("example.com", "http://example.com", "http"),
            ("example.com", "ftp://example.com", "https"),
            ("example.com", "https://example.com/login", "path"),
            ("other.com", "https://example.com", "suffix"),
            ("ample.com", "https://example.com", "suffix"),
            ("https://example.com", "https://example.com", "bare host"),
            ("", "https://example.com", "bare host"),
            ("example.com", "https://", "no host"),
        ],
    )
    def test_inconsistent_pairs(self, rp_id, origin, fragment):
        problems = relying_party_problems(rp_id, origin)
        assert problems
        assert any(fragment in p for p in problems)


class TestSettings:
    def test_defaults(self):
        s = Settings()
        assert s.rp_name == "WebAuthn Demo"
        assert s.challenge_ttl_seconds == 300
        assert s.challenge_bytes == 32
        assert s.default_transports == ["internal"]
        assert s.allow_counterless_authenticators is False
        assert s.store_backend == "memory"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("KEYCEREMONY_RP_ID", "example.com")
        monkeypatch.setenv("KEYCEREMONY_ORIGIN", "https://example.com")
        monkeypatch.setenv("KEYCEREMONY_CHALLENGE_TTL_SECONDS", "60")
        s = Settings()
        assert s.effective_rp_id() == "example.com"
        assert s.effective_origin() == "https://example.com"
        assert s.challenge_ttl_seconds == 60

    @pytest.mark.parametrize(
        ("field", "value"),
        [("challenge_ttl_seconds", 0), ("challenge_bytes", 8), ("store_backend", "redis")],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValueError):
            Settings(**{field: value})

    def test_development_falls_back_to_localhost(self):
        s = Settings(env="development")
        with pytest.warns(UserWarning):
            assert s.effective_rp_id() == "localhost"
        with pytest.warns(UserWarning):
            assert s.effective_origin() == "http://localhost:5173"

    def test_production_requires_rp_id_and_origin(self):
        s = Settings(env="production")
        with pytest.raises(RuntimeError, match="RP_ID"):
            s.effective_rp_id()
        with pytest.raises(RuntimeError, match="ORIGIN"):
            s.effective_origin()

    def test_cors_defaults_to_origin(self):
        s = Settings(rp_id="example.com", origin="https://example.com")
        assert s.effective_cors_origins() == ["https://example.com"]
        s = Settings(origin="https://example.com", cors_origins=["https://a.example.com"])
        assert s.effective_cors_origins() == ["https://a.example.com"]


class TestStartupValidation:
    def test_validate_relying_party(self):
        Settings(rp_id="example.com", origin="https://app.example.com").validate_relying_party()
        with pytest.raises(ConfigurationError):
            Settings(rp_id="example.org", origin="https://example.com").validate_relying_party()

    def test_app_refuses_mismatched_relying_party(self):
        with pytest.raises(ConfigurationError, match="suffix"):
            create_app(Settings(rp_id="example.org", origin="https://example.com"))

    def test_app_accepts_matching_relying_party(self):
        app = create_app(Settings(rp_id="example.com", origin="https://example.com"))
        assert app.state.settings.rp_id == "example.com"
