"""Gemini REST client: POST /models/{model}:generateContent with the key as query param.

A GeminiClient is cheap: it binds one key to a shared httpx.AsyncClient and
is rebuilt for every dispatch attempt.
"""

from __future__ import annotations

from typing import Optional

import httpx

from image_studio.config import DEFAULT_BASE_URL
from image_studio.errors import ProviderError
from image_studio.models import InlineImage
from image_studio.security import scrub_url

IMAGE_MODALITIES = ("IMAGE", "TEXT")


def _safe_json(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    error = _safe_json(response).get("error") or {}
    if not isinstance(error, dict):
        error = {"message": str(error)}
    message = error.get("message") or response.reason_phrase or f"HTTP {response.status_code}"
    raise ProviderError(
        status_code=response.status_code,
        message=scrub_url(str(message)),
        status=str(error.get("status") or ""),
    )


def text_part(text: str) -> dict:
    return {"text": text}


class GeminiClient:
    def __init__(self, api_key: str, http: httpx.AsyncClient, base_url: str = DEFAULT_BASE_URL):
        self._api_key = api_key
        self._http = http
        self.base_url = base_url.rstrip("/")

    def __repr__(self) -> str:
        return f"GeminiClient(base_url={self.base_url!r})"

    async def generate_content(
        self,
        model: str,
        parts: list[dict],
        response_modalities: Optional[tuple[str, ...]] = None,
    ) -> dict:
        body: dict = {"contents": [{"role": "user", "parts": parts}]}
        if response_modalities:
            body["generationConfig"] = {"responseModalities": list(response_modalities)}
        try:
            resp = await self._http.post(
                f"{self.base_url}/models/{model}:generateContent",
                params={"key": self._api_key},
                json=body,
            )
        except httpx.HTTPError as exc:
            # httpx errors may embed the request URL, key included
            raise ProviderError(0, scrub_url(f"{type(exc).__name__}: {exc}")) from None
        _raise_for_status(resp)
        return _safe_json(resp)


def _parts(response: dict) -> list[dict]:
    out: list[dict] = []
    for candidate in response.get("candidates") or []:
        content = (candidate or {}).get("content") or {}
        out.extend(p for p in content.get("parts") or [] if isinstance(p, dict))
    return out


def first_image(response: dict) -> Optional[InlineImage]:
    """First inline image in a generateContent response, if any."""
    for part in _parts(response):
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            return InlineImage(mime_type=mime, data=inline["data"])
    return None


def collect_text(response: dict) -> str:
    return "".join(p["text"] for p in _parts(response) if isinstance(p.get("text"), str))
