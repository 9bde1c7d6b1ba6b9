from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)
SAFETY_THRESHOLD = "BLOCK_MEDIUM_AND_ABOVE"


class GeminiError(RuntimeError):
    pass


def _candidate_text(data: Any) -> str:
    """Text of the first part of the first candidate, or "" when any level is missing."""
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts or not isinstance(parts[0], dict):
        return ""
    return parts[0].get("text") or ""


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta/models/",
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout_sec: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_sec = timeout_sec

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _payload(self, prompt: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
                "candidateCount": 1,
                "stopSequences": [],
            },
            "safetySettings": [
                {"category": category, "threshold": SAFETY_THRESHOLD} for category in SAFETY_CATEGORIES
            ],
        }

    def generate_content(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        if not self.api_key:
            raise GeminiError("API key not set. Please configure your Gemini API key.")

        url = f"{self.base_url}{self.model}:generateContent?key={self.api_key}"
        payload = self._payload(
            prompt,
            self.temperature if temperature is None else temperature,
            self.max_tokens if max_tokens is None else max_tokens,
        )

        try:
            response = requests.post(url, json=payload, timeout=self.timeout_sec)
        except requests.Timeout as error:
            raise GeminiError("Request timeout. Please try again.") from error
        except requests.RequestException as error:
            raise GeminiError(f"API request failed: {error}") from error

        if not response.ok:
            detail = ""
            try:
                detail = response.json().get("error", {}).get("message", "")
            except ValueError:
                pass
            raise GeminiError(f"API request failed: {response.status_code} {response.reason}. {detail}".strip())

        try:
            data = response.json()
        except ValueError as error:
            raise GeminiError("No content generated") from error
        text = _candidate_text(data)
        if not text:
            raise GeminiError("No content generated")
        return text

    def health_check(self) -> Dict[str, str]:
        if not self.api_key:
            return {"status": "error", "message": "API key not configured"}
        try:
            self.generate_content("Hello", max_tokens=10)
        except GeminiError as error:
            return {"status": "error", "message": str(error)}
        return {"status": "ok", "message": "API is working"}
