# gallery/credentials.py
"""
Provider credential resolution.

Order:
  1. OPENAI_API_KEY from the environment
  2. GET OPENAI_KEY_FALLBACK_URL, whose body is the raw key

Env vars:
  OPENAI_API_KEY=...
  OPENAI_KEY_FALLBACK_URL=...   (empty string disables the fallback)
  CREDENTIAL_FETCH_TIMEOUT=10
"""

import os

import httpx

from gallery import monitoring
from gallery.errors import MissingCredential

DEFAULT_FALLBACK_URL = "https://ai-gallery.convex.site/api-key"
CREDENTIAL_FETCH_TIMEOUT = float(os.getenv("CREDENTIAL_FETCH_TIMEOUT", "10"))


def _fallback_url() -> str:
    return os.getenv("OPENAI_KEY_FALLBACK_URL", DEFAULT_FALLBACK_URL).strip()


def fetch_fallback_key(url: str, timeout: float = CREDENTIAL_FETCH_TIMEOUT) -> str:
    """Fetch the shared key; raises httpx errors as-is."""
    with httpx.Client(timeout=timeout) as client:
        response = client.get(url, follow_redirects=True)
    response.raise_for_status()
    key = response.text.strip()
    if not key:
        raise ValueError(f"Empty credential returned by {url}")
    return key


def resolve_credential() -> str:
    """Return the operator key, else the shared fallback key."""
    # read per call so a key added to the environment is picked up without restart
    key = os.getenv("OPENAI_API_KEY", "").strip()
    if key:
        return key

    url = _fallback_url()
    if not url:
        raise MissingCredential("OPENAI_API_KEY environment variable not set and no fallback configured")
    try:
        key = fetch_fallback_key(url)
    except Exception as e:
        monitoring.logger.warning("Fallback credential fetch failed", extra={"url": url, "error": str(e)})
        raise MissingCredential(str(e)) from e
    monitoring.logger.info("Using fallback provider credential", extra={"url": url})
    return key
