from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.core.config import AppConfig, alchemy_api_key, load_config


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("CHAINTAX_CONFIG", raising=False)
    cfg, path = load_config()
    assert path is None
    assert cfg == AppConfig()
    assert cfg.provider.page_size == 100
    assert cfg.notifications.max_review_messages == 3


def test_yaml_file_from_env(tmp_path, monkeypatch):
    p = tmp_path / "custom.yaml"
    p.write_text(
        "provider:\n"
        "  max_pages: 3\n"
        "classifier:\n"
        "  extra_dex_routers: ['0xrouter']\n"
        "notifications:\n"
        "  max_review_messages: 1\n"
    )
    monkeypatch.setenv("CHAINTAX_CONFIG", str(p))
    cfg, path = load_config()
    assert path == str(p)
    assert cfg.provider.max_pages == 3
    assert cfg.provider.page_size == 100
    assert cfg.classifier.extra_dex_routers == ["0xrouter"]
    assert cfg.notifications.max_review_messages == 1


def test_empty_file_is_defaults(tmp_path):
    p = tmp_path / "chaintax.yaml"
    p.write_text("")
    cfg, _ = load_config(p)
    assert cfg == AppConfig()


def test_invalid_values_rejected(tmp_path):
    p = tmp_path / "chaintax.yaml"
    p.write_text("provider:\n  page_size: 0\n")
    with pytest.raises(ValidationError):
        load_config(p)


def test_blank_api_key_is_missing(monkeypatch):
    monkeypatch.setenv("ALCHEMY_API_KEY", "  ")
    assert alchemy_api_key() is None
    monkeypatch.setenv("ALCHEMY_API_KEY", "abc")
    assert alchemy_api_key() == "abc"
