# SAP B1 Query MCP Server
# File: config.py
# Version: v3

"""Configuration loading for the SAP B1 Query MCP Server."""

from __future__ import annotations

from dataclasses import dataclass
import os


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int_env(
    name: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Parse an int environment variable with clamping and safe fallback."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = int(default)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = int(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


def _parse_float_env(name: str, default: float, min_value: float = 0.1) -> float:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return float(default)
    try:
        value = float(str(raw).strip())
    except ValueError:
        return float(default)
    return max(value, min_value)


@dataclass
class B1Config:
    """Configuration values required to talk to the SAP B1 Service Layer.

    Groups:
    - default connection (server / company DB / user / password / TLS)
    - pagination policy (page size, empty-page tolerance, safety ceiling)
    - per-call HTTP timeouts
    - LLM endpoint used for query generation and chart advice
    """

    server_url: str | None
    company_db: str | None
    username: str | None
    password: str | None
    mock_mode: bool

    verify_tls: bool = True

    # Pagination policy
    page_size: int = 1000
    max_total_rows: int = 100000
    empty_page_tolerance: int = 3
    same_count_warn_streak: int = 5
    empty_page_probe_stride: int = 20

    # Timeouts (seconds), one per kind of upstream call
    login_timeout: float = 30.0
    fetch_timeout: float = 10.0
    analysis_timeout: float = 30.0

    # Session cache hygiene
    sweep_interval_seconds: int = 300

    # LLM (OpenAI-compatible chat completions)
    openai_api_key: str | None = None
    openai_model: str = "gpt-3.5-turbo"
    openai_base_url: str = "https://api.openai.com/v1"
    llm_timeout: float = 30.0

    @property
    def llm_configured(self) -> bool:
        return bool(self.openai_api_key and len(self.openai_api_key.strip()) >= 20)

    @classmethod
    def from_env(cls) -> "B1Config":
        """Create configuration from environment variables."""
        server_url = os.getenv("B1_SERVER_URL")
        company_db = os.getenv("B1_COMPANY_DB")
        username = os.getenv("B1_USERNAME")
        password = os.getenv("B1_PASSWORD")

        mock_mode = _parse_bool_env("B1_MOCK_MODE", default=False)
        verify_tls = _parse_bool_env("B1_VERIFY_TLS", default=True)

        page_size = _parse_int_env("B1_PAGE_SIZE", default=1000, min_value=1, max_value=10000)
        max_total_rows = _parse_int_env(
            "B1_MAX_TOTAL_ROWS", default=100000, min_value=1, max_value=1000000
        )
        empty_page_tolerance = _parse_int_env(
            "B1_EMPTY_PAGE_TOLERANCE", default=3, min_value=1, max_value=100
        )
        same_count_warn_streak = _parse_int_env(
            "B1_SAME_COUNT_WARN_STREAK", default=5, min_value=1, max_value=1000
        )
        empty_page_probe_stride = _parse_int_env(
            "B1_EMPTY_PAGE_PROBE_STRIDE", default=20, min_value=1, max_value=10000
        )

        login_timeout = _parse_float_env("B1_LOGIN_TIMEOUT_SECONDS", 30.0)
        fetch_timeout = _parse_float_env("B1_FETCH_TIMEOUT_SECONDS", 10.0)
        analysis_timeout = _parse_float_env("B1_ANALYSIS_TIMEOUT_SECONDS", 30.0)

        sweep_interval_seconds = _parse_int_env(
            "B1_SWEEP_INTERVAL_SECONDS", default=300, min_value=1, max_value=86400
        )

        return cls(
            server_url=server_url,
            company_db=company_db,
            username=username,
            password=password,
            mock_mode=mock_mode,
            verify_tls=verify_tls,
            page_size=page_size,
            max_total_rows=max_total_rows,
            empty_page_tolerance=empty_page_tolerance,
            same_count_warn_streak=same_count_warn_streak,
            empty_page_probe_stride=empty_page_probe_stride,
            login_timeout=login_timeout,
            fetch_timeout=fetch_timeout,
            analysis_timeout=analysis_timeout,
            sweep_interval_seconds=sweep_interval_seconds,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL") or "gpt-3.5-turbo",
            openai_base_url=(os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1").rstrip("/"),
            llm_timeout=_parse_float_env("OPENAI_TIMEOUT_SECONDS", 30.0),
        )
