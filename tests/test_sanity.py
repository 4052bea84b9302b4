# SAP B1 Query MCP Server
# File: tests/test_sanity.py
# Version: v2

"""Basic sanity tests for configuration and connection models."""

from sap_b1_mcp import __version__
from sap_b1_mcp.config import B1Config
from sap_b1_mcp.models import ConnectionCredentials, normalize_server_url


def test_config_from_env_minimal() -> None:
    config = B1Config.from_env()
    assert config is not None
    assert config.mock_mode is False
    assert config.verify_tls is True
    assert config.page_size == 1000
    assert config.llm_configured is False


def test_config_from_env_clamps_and_falls_back(monkeypatch) -> None:
    monkeypatch.setenv("B1_PAGE_SIZE", "0")
    monkeypatch.setenv("B1_MAX_TOTAL_ROWS", "not-a-number")
    monkeypatch.setenv("B1_MOCK_MODE", "yes")
    monkeypatch.setenv("B1_VERIFY_TLS", "off")

    config = B1Config.from_env()
    assert config.page_size == 1
    assert config.max_total_rows == 100000
    assert config.mock_mode is True
    assert config.verify_tls is False


def test_version_is_a_string() -> None:
    assert isinstance(__version__, str) and __version__


def test_normalize_server_url_strips_known_suffixes() -> None:
    expected = "https://host:50000"
    assert normalize_server_url("https://host:50000/") == expected
    assert normalize_server_url(" https://host:50000/b1s/v1 ") == expected
    assert normalize_server_url("https://host:50000/b1s/v1/Login") == expected


def test_identity_excludes_password() -> None:
    a = ConnectionCredentials("https://host:50000", "DB", "user", password="one")
    b = ConnectionCredentials("https://host:50000/b1s/v1", "DB", "user", password="two")
    assert a.identity == b.identity
    assert "one" not in repr(a)


def test_credentials_from_dict_accepts_camel_case_keys(config) -> None:
    creds = ConnectionCredentials.from_dict(
        {"sapServer": "https://other:50000", "companyDB": "OTHER", "userName": "u"},
        config,
    )
    assert creds.base_url == "https://other:50000"
    assert creds.company_db == "OTHER"
    assert creds.username == "u"
    # Falls back to the configured password when none is given.
    assert creds.password == "secret"
