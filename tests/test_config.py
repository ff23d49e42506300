"""Tests for configuration loading."""

from pathlib import Path

import pytest

from image_studio.config import (
    CREDENTIAL_SLOTS,
    DEFAULT_BASE_URL,
    FEATURE_KEY_MAP,
    Settings,
    load_credentials,
)
from image_studio.models import FEATURES


class TestSlots:
    def test_ten_slots_default_first(self):
        assert len(CREDENTIAL_SLOTS) == 10
        assert CREDENTIAL_SLOTS[0] == "GEMINI_API_KEY"
        assert CREDENTIAL_SLOTS[-1] == "GEMINI_API_KEY_9"

    def test_more_slots_than_features(self):
        assert len(CREDENTIAL_SLOTS) > len(FEATURE_KEY_MAP)


class TestFeatureMap:
    def test_total_over_features(self):
        assert set(FEATURE_KEY_MAP) == FEATURES

    def test_one_to_one(self):
        assert len(set(FEATURE_KEY_MAP.values())) == len(FEATURE_KEY_MAP)

    def test_read_only(self):
        with pytest.raises(TypeError):
            FEATURE_KEY_MAP["default"] = "GEMINI_API_KEY_9"  # type: ignore[index]

    def test_fallback_only_slots(self):
        assert "GEMINI_API_KEY_8" not in FEATURE_KEY_MAP.values()
        assert "GEMINI_API_KEY_9" not in FEATURE_KEY_MAP.values()


class TestLoadCredentials:
    def test_from_mapping(self):
        slots = load_credentials(environ={"GEMINI_API_KEY": "a", "GEMINI_API_KEY_3": " b "})
        assert slots["GEMINI_API_KEY"] == "a"
        assert slots["GEMINI_API_KEY_3"] == "b"
        assert slots["GEMINI_API_KEY_1"] == ""
        assert list(slots) == list(CREDENTIAL_SLOTS)

    def test_legacy_alias(self):
        slots = load_credentials(environ={"NEXT_PUBLIC_GOOGLE_GEMINI_API_KEY_2": "legacy"})
        assert slots["GEMINI_API_KEY_2"] == "legacy"

    def test_primary_name_wins_over_alias(self):
        slots = load_credentials(environ={
            "GEMINI_API_KEY_2": "primary",
            "NEXT_PUBLIC_GOOGLE_GEMINI_API_KEY_2": "legacy",
        })
        assert slots["GEMINI_API_KEY_2"] == "primary"

    def test_from_env_file(self, tmp_path, monkeypatch):
        for slot in CREDENTIAL_SLOTS:
            monkeypatch.delenv(slot, raising=False)
        monkeypatch.delenv("NEXT_PUBLIC_GOOGLE_GEMINI_API_KEY_4", raising=False)
        env = tmp_path / ".env"
        env.write_text("GEMINI_API_KEY=from-file\nNEXT_PUBLIC_GOOGLE_GEMINI_API_KEY_4=four\n")
        slots = load_credentials(env)
        assert slots["GEMINI_API_KEY"] == "from-file"
        assert slots["GEMINI_API_KEY_4"] == "four"

    def test_process_env_wins_over_file(self, tmp_path, monkeypatch):
        env = tmp_path / ".env"
        env.write_text("GEMINI_API_KEY=from-file\n")
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        assert load_credentials(env)["GEMINI_API_KEY"] == "from-env"

    def test_missing_env_file_is_fine(self, tmp_path):
        slots = load_credentials(tmp_path / "nope.env")
        assert set(slots) == set(CREDENTIAL_SLOTS)


class TestSettings:
    def test_defaults(self):
        s = Settings.from_env(environ={})
        assert s.max_attempts == 3
        assert s.reset_interval == 3600.0
        assert s.base_url == DEFAULT_BASE_URL
        assert s.image_model == "gemini-2.5-flash-image-preview"
        assert s.dispatch_log is None

    def test_overrides(self):
        s = Settings.from_env(environ={
            "IMAGE_STUDIO_MAX_ATTEMPTS": "5",
            "IMAGE_STUDIO_TIMEOUT": "12.5",
            "IMAGE_STUDIO_BASE_URL": "http://localhost:9999/v1beta/",
            "IMAGE_STUDIO_DISPATCH_LOG": "logs/dispatch.log",
            "IMAGE_STUDIO_PORT": "9000",
        })
        assert s.max_attempts == 5
        assert s.timeout == 12.5
        assert s.base_url == "http://localhost:9999/v1beta"
        assert s.dispatch_log == Path("logs/dispatch.log")
        assert s.port == 9000

    def test_bad_integer(self):
        with pytest.raises(ValueError, match="IMAGE_STUDIO_MAX_ATTEMPTS"):
            Settings.from_env(environ={"IMAGE_STUDIO_MAX_ATTEMPTS": "three"})
