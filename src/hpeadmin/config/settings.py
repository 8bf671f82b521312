"""
Configuration settings for the HPE GreenLake / Compute Ops Management admin client.
Reads `.env` (and `.env.example` as a fallback) into a frozen settings object.
"""

import logging
import os
from dataclasses import dataclass

from dotenv import dotenv_values, load_dotenv

DEFAULT_GLP_BASE_URL = "https://global.api.greenlake.hpe.com"
DEFAULT_TOKEN_URL = "https://sso.common.cloud.hpe.com/as/token.oauth2"
DEFAULT_COM_REGIONS = ("us-west", "eu-central", "ap-northeast")

_TRUTHY = {"1", "true", "TRUE", "yes", "YES"}

logger = logging.getLogger(__name__)


def _load_env_files() -> None:
    load_dotenv(override=False)

    # `.env.example` ships with blank placeholders; only non-blank values may
    # fill in variables that are still unset.
    if not os.environ.get("HPE_CLIENT_ID"):
        example_path = os.path.abspath(".env.example")
        if os.path.exists(example_path):
            for k, v in (dotenv_values(example_path) or {}).items():
                if not k or not v:
                    continue
                if not os.environ.get(k):
                    os.environ[k] = v


@dataclass(frozen=True, slots=True)
class HPEAdminSettings:
    client_id: str | None
    client_secret: str | None
    workspace_id: str | None
    tokens_path: str
    glp_base_url: str
    token_url: str
    com_regions: tuple[str, ...]
    timeout_seconds: int
    page_limit: int
    log_level: str
    debug: bool


def load_settings() -> HPEAdminSettings:
    _load_env_files()

    regions_raw = os.environ.get("HPE_COM_REGIONS")
    if regions_raw:
        com_regions = tuple(r.strip() for r in regions_raw.split(",") if r.strip())
    else:
        com_regions = DEFAULT_COM_REGIONS

    return HPEAdminSettings(
        client_id=os.environ.get("HPE_CLIENT_ID") or None,
        client_secret=os.environ.get("HPE_CLIENT_SECRET") or None,
        workspace_id=os.environ.get("HPE_WORKSPACE_ID") or None,
        tokens_path=os.environ.get("HPE_TOKENS_PATH") or os.path.abspath(".env_hpe_tokens.json"),
        glp_base_url=(os.environ.get("HPE_GLP_BASE_URL") or DEFAULT_GLP_BASE_URL).rstrip("/"),
        token_url=os.environ.get("HPE_TOKEN_URL") or DEFAULT_TOKEN_URL,
        com_regions=com_regions,
        timeout_seconds=int(os.environ.get("HPE_HTTP_TIMEOUT_SECONDS") or "30"),
        page_limit=int(os.environ.get("HPE_PAGE_LIMIT") or "100"),
        log_level=os.environ.get("HPE_LOG_LEVEL") or "WARNING",
        debug=os.environ.get("HPE_DEBUG") in _TRUTHY,
    )


def configure_logging(level: str | int = "WARNING") -> None:
    """Configure root logging for CLI runs."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.debug("Logging configured at level %s", logging.getLevelName(level))
