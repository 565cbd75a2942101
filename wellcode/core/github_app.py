"""GitHub App JWT generation and installation tokens"""

import base64
import logging
import time
from typing import Optional

import httpx
import jwt

from wellcode.config import Settings, get_settings

logger = logging.getLogger(__name__)


def load_private_key(raw_key: str) -> str:
    """
    Normalize the configured private key to PEM text.

    Accepts PEM (with real or escaped newlines) or a single-line base64 PEM.
    """
    if "\\n" in raw_key:
        raw_key = raw_key.replace("\\n", "\n")
    if raw_key.startswith("-----BEGIN"):
        return raw_key
    try:
        return base64.b64decode(raw_key).decode("utf-8")
    except Exception:
        raise ValueError("Invalid GITHUB_APP_PRIVATE_KEY format")


def create_github_app_jwt(settings: Optional[Settings] = None) -> str:
    """
    Create a JWT for GitHub App authentication.

    Returns:
        Encoded RS256 JWT valid for ten minutes

    Raises:
        ValueError: If GITHUB_APP_ID or GITHUB_APP_PRIVATE_KEY is not set
    """
    settings = settings or get_settings()
    if not settings.github_app_id:
        raise ValueError("GITHUB_APP_ID is not set")
    if not settings.github_app_private_key:
        raise ValueError("GITHUB_APP_PRIVATE_KEY is not set")

    pem_key = load_private_key(settings.github_app_private_key)

    now = int(time.time())
    payload = {
        "iat": now - 60,  # clock skew allowance
        "exp": now + (10 * 60),
        "iss": settings.github_app_id,
    }
    return jwt.encode(payload, pem_key, algorithm="RS256")


async def create_installation_token(installation_id: int, settings: Optional[Settings] = None) -> dict:
    """
    Create an installation access token for a GitHub App installation.

    Returns:
        GitHub's response: {"token": "ghs_xxx", "expires_at": ..., "permissions": {...}}

    Raises:
        httpx.HTTPError: If the API request fails
    """
    settings = settings or get_settings()
    app_jwt = create_github_app_jwt(settings)

    url = f"{settings.github_api_base}/app/installations/{installation_id}/access_tokens"
    headers = {
        "Authorization": f"Bearer {app_jwt}",
        "Accept": "application/vnd.github+json",
    }

    async with httpx.AsyncClient(timeout=settings.github_timeout) as client:
        response = await client.post(url, headers=headers)
        response.raise_for_status()
        return response.json()


async def get_installation_token(installation_id: int, settings: Optional[Settings] = None) -> Optional[str]:
    """Installation token, or None when authentication fails"""
    logger.info(f"Getting installation token for ID {installation_id}")
    try:
        data = await create_installation_token(installation_id, settings)
    except Exception as e:
        logger.error(f"Failed to get installation token for {installation_id}: {e}")
        return None
    return data.get("token")
