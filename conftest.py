"""Pytest configuration.

Ensures `src.*` can be imported consistently during test collection.
"""

import sys
from pathlib import Path

import pytest


def _prepend_sys_path(path: Path) -> None:
    resolved = str(path.resolve())
    if resolved not in sys.path:
        sys.path.insert(0, resolved)


REPO_ROOT = Path(__file__).resolve().parent

# Allow importing `src.*` package explicitly.
_prepend_sys_path(REPO_ROOT)


@pytest.fixture
def hpe_env_vars(monkeypatch, tmp_path):
    """Isolated environment for settings/client tests (no real .env, no real tokens)."""
    values = {
        "HPE_CLIENT_ID": "test_client_id",
        "HPE_CLIENT_SECRET": "test_client_secret",
        "HPE_WORKSPACE_ID": "0123456789abcdef0123456789abcdef",
        "HPE_TOKENS_PATH": str(tmp_path / "tokens.json"),
        "HPE_COM_REGIONS": "us-west,eu-central",
        "HPE_HTTP_TIMEOUT_SECONDS": "5",
        "HPE_PAGE_LIMIT": "2",
    }
    monkeypatch.chdir(tmp_path)
    for k, v in values.items():
        monkeypatch.setenv(k, v)
    return values
