"""Fetch an HPE GreenLake access token with API client credentials.

What this does:
- Runs the OAuth2 client-credentials grant against the HPE SSO token endpoint
- Saves the token to `.env_hpe_tokens.json` (ignored by this repo's .gitignore)

Prereqs (env vars):
- HPE_CLIENT_ID
- HPE_CLIENT_SECRET          (personal API client created in the GreenLake workspace)

Optional:
- HPE_TOKENS_PATH            [default: .env_hpe_tokens.json]
- HPE_TOKEN_URL              [default: https://sso.common.cloud.hpe.com/as/token.oauth2]

Run:
  python scripts/glp_auth_local.py
"""

from __future__ import annotations

from pathlib import Path
import sys

# Ensure `import src.*` works when running as `python scripts/...` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from src.hpeadmin.config.settings import load_settings
from src.hpeadmin.integrations.errors import SessionError
from src.hpeadmin.integrations.greenlake_client import GreenLakeClient


def main() -> None:
    settings = load_settings()
    if not settings.client_id or not settings.client_secret:
        raise SystemExit(
            "Missing env var HPE_CLIENT_ID or HPE_CLIENT_SECRET. Put them in your .env/.env.example before running."
        )

    client = GreenLakeClient.from_settings(settings)

    print("Requesting access token...")
    try:
        tokens = client.fetch_tokens()
    except SessionError as e:
        raise SystemExit(str(e))

    print("\nSuccess. Token saved to:")
    print(f"   {settings.tokens_path}")
    if tokens.expires_in:
        print(f"   (expires in {tokens.expires_in // 60} minutes; it is refetched automatically)")
    print("\nNext: run the smoke test:")
    print("  python scripts/glp_api_smoke_test.py")


if __name__ == "__main__":
    main()
