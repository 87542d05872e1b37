# gallery/llm_wrapper.py
"""
Centralized OpenAI wrapper for the generation worker.

chat_completion returns a standardized dict:
{
  "text": "<assistant text>",
  "model": "<model used>",
  "response_id": "<model response id if available>",
  "raw": <raw response object>
}
generate_image returns the URL of the single generated image and
download_image fetches it.

Configuration (env vars):
  GALLERY_TEXT_MODEL=...     (default: gpt-3.5-turbo)
  GALLERY_IMAGE_MODEL=...    (default: dall-e-3)
  IMAGE_DOWNLOAD_TIMEOUT=60
  MOCK_OPENAI=false          (dev/tests only: echo prompts, no provider calls, no key lookup)

Provider failures surface as ProviderHTTPError, download failures as
MediaDownloadError. The SDK's own retries are disabled.
"""

import os
import time
import hashlib
from typing import Dict, Any, List, Optional, Tuple

import httpx
import openai
from openai import OpenAI

from gallery.errors import ProviderHTTPError, MediaDownloadError

MOCK_OPENAI = os.getenv("MOCK_OPENAI", "false").lower() in ("1", "true", "yes")

TEXT_MODEL = os.getenv("GALLERY_TEXT_MODEL", "gpt-3.5-turbo")
IMAGE_MODEL = os.getenv("GALLERY_IMAGE_MODEL", "dall-e-3")
IMAGE_SIZE = "1024x1024"
IMAGE_DOWNLOAD_TIMEOUT = float(os.getenv("IMAGE_DOWNLOAD_TIMEOUT", "60"))

MOCK_IMAGE_SCHEME = "mock://"
# 1x1 transparent PNG
MOCK_PNG = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


def _client(api_key: str) -> OpenAI:
    return OpenAI(api_key=api_key, max_retries=0)


def _provider_error(e: Exception) -> ProviderHTTPError:
    if isinstance(e, openai.APIStatusError):
        return ProviderHTTPError(f"OpenAI API error: HTTP {e.status_code}", status_code=e.status_code)
    return ProviderHTTPError(f"OpenAI API error: {e}")


# ---------------------------------------------------------------------------
# OpenAI backend
# ---------------------------------------------------------------------------
def _real_openai_chat_completion(messages: List[Dict[str, str]], model: str,
                                 api_key: str) -> Dict[str, Any]:
    try:
        resp = _client(api_key).chat.completions.create(model=model, messages=messages)
    except openai.OpenAIError as e:
        raise _provider_error(e) from e
    choices = getattr(resp, "choices", None) or []
    text = choices[0].message.content if choices else None
    if text is None:
        raise ProviderHTTPError("OpenAI API error: response has no completion content")
    rid = getattr(resp, "id", None)
    return {"text": text, "model": model, "response_id": rid, "raw": resp}


def _real_openai_image(prompt: str, model: str, size: str, api_key: str) -> str:
    try:
        resp = _client(api_key).images.generate(model=model, prompt=prompt, n=1, size=size)
    except openai.OpenAIError as e:
        raise _provider_error(e) from e
    data = getattr(resp, "data", None) or []
    url = data[0].url if data else None
    if not url:
        raise ProviderHTTPError("OpenAI API error: response has no image url")
    return url


# ---------------------------------------------------------------------------
# Mock backend
# ---------------------------------------------------------------------------
def _mock_llm(messages: List[Dict[str, str]], model: str, **kwargs) -> Dict[str, Any]:
    """
    Deterministic mock used in dev/tests. Returns the concatenation of user messages as text,
    and a deterministic response_id based on time.
    """
    user_texts = [m["content"] for m in messages if m["role"] == "user"]
    text = ("\n\n").join(user_texts)[:1000]  # truncated
    rid = f"mock-{model}-{int(time.time() * 1000)}"
    return {"text": text, "model": model, "response_id": rid, "raw": {"mock": True}}


def _mock_image(prompt: str) -> str:
    return MOCK_IMAGE_SCHEME + hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def chat_completion(messages: List[Dict[str, str]], api_key: str,
                    model: Optional[str] = None) -> Dict[str, Any]:
    """
    messages: list of {role, content}
    model: override model string
    Returns: dict with keys 'text','model','response_id','raw'
    """
    model = model or TEXT_MODEL
    if MOCK_OPENAI:
        return _mock_llm(messages, model=model)
    return _real_openai_chat_completion(messages, model=model, api_key=api_key)


def generate_image(prompt: str, api_key: str, model: Optional[str] = None,
                   size: str = IMAGE_SIZE) -> str:
    """Request exactly one image and return its (temporary) URL."""
    model = model or IMAGE_MODEL
    if MOCK_OPENAI:
        return _mock_image(prompt)
    return _real_openai_image(prompt, model=model, size=size, api_key=api_key)


def download_image(url: str, timeout: float = IMAGE_DOWNLOAD_TIMEOUT) -> Tuple[bytes, str]:
    """Fetch generated image bytes. Returns (data, content_type)."""
    if MOCK_OPENAI and url.startswith(MOCK_IMAGE_SCHEME):
        return MOCK_PNG, "image/png"
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.get(url, follow_redirects=True)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise MediaDownloadError(f"Image download error: {e}") from e
    if response.status_code != 200:
        raise MediaDownloadError(f"Image download error: HTTP {response.status_code}",
                                 status_code=response.status_code)
    content_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
    return response.content, content_type
