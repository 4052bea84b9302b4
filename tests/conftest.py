# SAP B1 Query MCP Server
# File: tests/conftest.py
# Version: v1

from __future__ import annotations

import pytest

from sap_b1_mcp.config import B1Config
from sap_b1_mcp.models import ConnectionCredentials


class FakeClock:
    """Manually advanced replacement for time.time()."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(**overrides) -> B1Config:
    values = dict(
        server_url="https://b1.example.com:50000",
        company_db="SBODEMOUS",
        username="manager",
        password="secret",
        mock_mode=False,
    )
    values.update(overrides)
    return B1Config(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_b1_config():
    """Factory fixture: B1Config with test defaults, fields overridable."""
    return make_config


@pytest.fixture
def config() -> B1Config:
    return make_config()


@pytest.fixture
def credentials() -> ConnectionCredentials:
    return ConnectionCredentials(
        server_url="https://b1.example.com:50000/b1s/v1",
        company_db="SBODEMOUS",
        username="manager",
        password="secret",
    )


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep real B1_/OPENAI_ settings from leaking into tests."""
    for name in (
        "B1_SERVER_URL",
        "B1_COMPANY_DB",
        "B1_USERNAME",
        "B1_PASSWORD",
        "B1_MOCK_MODE",
        "B1_VERIFY_TLS",
        "B1_PAGE_SIZE",
        "B1_MAX_TOTAL_ROWS",
        "OPENAI_API_KEY",
        "OPENAI_MODEL",
        "OPENAI_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
