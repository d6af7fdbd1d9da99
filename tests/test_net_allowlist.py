from __future__ import annotations

import pytest

from src.adapters.base import ProviderError
from src.core.net import allowed_outbound_hosts, assert_url_allowed, http_request


def test_default_hosts_allowed(monkeypatch):
    monkeypatch.delenv("ALLOWED_OUTBOUND_HOSTS", raising=False)
    assert_url_allowed("https://eth-mainnet.g.alchemy.com/v2/key")
    assert_url_allowed("https://api.telegram.org/botX/sendMessage")


def test_http_and_unknown_hosts_blocked(monkeypatch):
    monkeypatch.delenv("ALLOWED_OUTBOUND_HOSTS", raising=False)
    with pytest.raises(ProviderError, match="only https"):
        assert_url_allowed("http://eth-mainnet.g.alchemy.com/v2/key")
    with pytest.raises(ProviderError, match="evil.example.com"):
        assert_url_allowed("https://evil.example.com/")


def test_env_override_normalizes_entries(monkeypatch):
    monkeypatch.setenv("ALLOWED_OUTBOUND_HOSTS", "https://Node.Example.com:8443/rpc, other.example.org ,")
    assert allowed_outbound_hosts() == {"node.example.com", "other.example.org"}
    assert_url_allowed("https://node.example.com/rpc")
    with pytest.raises(ProviderError, match="overrides defaults"):
        assert_url_allowed("https://api.telegram.org/")


def test_network_disabled(monkeypatch):
    monkeypatch.setenv("NETWORK_ENABLED", "0")
    with pytest.raises(ProviderError, match="Network disabled"):
        http_request("https://eth-mainnet.g.alchemy.com/v2/secret-key")
