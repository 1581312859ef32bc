"""Unit tests for environment configuration."""

from pathlib import Path

import pytest

from haproxy_ctl.config import DEFAULT_API_URL, load_config
from haproxy_ctl.models import ConfigError

ENV_VARS = [
    "CLOUDFLARE_API_TOKEN",
    "CLOUDFLARE_ZONE_ID",
    "CLOUDFLARE_API_URL",
    "CLOUDFLARE_PAGE_SIZE",
    "API_TIMEOUT",
    "DNS_FILTER",
    "DNS_RECORDS_FILE",
    "FORCE_OVERWRITE",
    "HAPROXY_CFG",
    "MIN_NODES",
    "NODE_ID",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self) -> None:
        config = load_config()

        assert config.api_token == ""
        assert config.api_url == DEFAULT_API_URL
        assert config.page_size == 1000
        assert config.force_overwrite is False
        assert config.haproxy_cfg == Path("/etc/haproxy/haproxy.cfg")
        assert config.records_file == Path("cloudflare/dns-records.yml")
        assert config.min_nodes == 2

    def test_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLOUDFLARE_API_TOKEN", " token \n")
        monkeypatch.setenv("CLOUDFLARE_API_URL", "https://cf.example.test/v4/")
        monkeypatch.setenv("FORCE_OVERWRITE", "true")
        monkeypatch.setenv("API_TIMEOUT", "2.5")
        monkeypatch.setenv("DNS_FILTER", "api")

        config = load_config()

        assert config.api_token == "token"
        assert config.api_url == "https://cf.example.test/v4"
        assert config.force_overwrite is True
        assert config.api_timeout == 2.5
        assert config.dns_filter == "api"

    def test_bad_number(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLOUDFLARE_PAGE_SIZE", "lots")

        with pytest.raises(ConfigError, match="CLOUDFLARE_PAGE_SIZE"):
            load_config()

    def test_page_size_positive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CLOUDFLARE_PAGE_SIZE", "0")

        with pytest.raises(ConfigError):
            load_config()
