"""Settings parsing, runtime wiring and session cache key layout."""

import pytest
from pydantic import ValidationError

from medialist.config import Settings, get_settings, reset_settings_cache
from medialist.service.runtime import (
    _mask_url_password,
    get_runtime,
    reset_runtime_for_tests,
)
from medialist.storage.memory import MemoryCache, MemoryStore
from medialist.storage.redis_cache import session_key, user_sessions_key


class TestSettings:
    def test_from_env_reads_declared_names(self, monkeypatch):
        monkeypatch.setenv("STORE_TIMEOUT_SECONDS", "1.5")
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test,")
        settings = Settings.from_env()
        assert settings.store_timeout_seconds == 1.5
        assert settings.cors_allow_origins == ["http://a.test", "http://b.test"]

    def test_timeouts_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(cache_timeout_seconds=0)

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        reset_settings_cache()
        first = get_settings()
        assert get_settings() is first
        monkeypatch.setenv("JWT_ISSUER", "someone-else")
        reset_settings_cache()
        assert get_settings().jwt_issuer == "someone-else"


class TestRuntime:
    def test_test_mode_uses_memory_backends(self):
        runtime = get_runtime()
        assert isinstance(runtime.store, MemoryStore)
        assert isinstance(runtime.cache, MemoryCache)

    def test_services_share_one_store(self):
        runtime = get_runtime()
        assert runtime.users.store is runtime.store
        assert runtime.lists.store is runtime.store
        assert runtime.ownership.lists is runtime.lists
        assert runtime.tags.users is runtime.users

    def test_reset_refused_outside_test_mode(self, monkeypatch):
        monkeypatch.setenv("TEST_MODE", "false")
        with pytest.raises(RuntimeError):
            reset_runtime_for_tests()
        monkeypatch.setenv("TEST_MODE", "true")
        reset_runtime_for_tests()

    def test_missing_redis_without_fallback_is_fatal(self, monkeypatch):
        from medialist.service.runtime import Runtime

        monkeypatch.setenv("TEST_MODE", "false")
        monkeypatch.setenv("ALLOW_REDIS_FALLBACK_DEV", "false")
        monkeypatch.setenv("REDIS_URL", "")
        reset_settings_cache()
        try:
            with pytest.raises(RuntimeError):
                Runtime()
        finally:
            reset_settings_cache()

    @pytest.mark.parametrize(
        "url,expected",
        [
            (None, None),
            ("redis://localhost:6379/0", "redis://localhost:6379/0"),
            ("redis://:hunter2@cache:6379/1", "redis://:***@cache:6379/1"),
            ("postgresql://app:pw@db/medialist", "postgresql://app:***@db/medialist"),
        ],
    )
    def test_mask_url_password(self, url, expected):
        assert _mask_url_password(url) == expected


class TestSessionKeys:
    def test_session_key_hashes_token(self):
        """Raw tokens never appear in cache keys."""
        key = session_key("header.payload.signature")
        assert key.startswith("medialist:session:")
        assert "payload" not in key
        assert len(key.rsplit(":", 1)[1]) == 64

    def test_session_key_is_stable(self):
        assert session_key("t") == session_key("t")
        assert session_key("t") != session_key("u")

    def test_user_sessions_key(self):
        assert user_sessions_key("u1") == "medialist:user_sessions:u1"


class TestLogRedaction:
    def test_credentials_and_contact_details_masked(self):
        from medialist.logging import _redact_pii

        event = _redact_pii(
            None,
            "info",
            {
                "event": "token_refreshed",
                "refresh_token": "abcdefghij",
                "email": "a@b",
                "user_id": "u-123456",
            },
        )
        assert event["event"] == "token_refreshed"
        assert event["refresh_token"] == "ab***ij"
        assert event["email"] == "***"
        assert event["user_id"] == "u-123456"
