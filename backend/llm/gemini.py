import requests
from requests.exceptions import ConnectionError, ConnectTimeout, HTTPError, ReadTimeout, Timeout

from backend.llm.base import LLMError, LLMTimeout, LLMUnavailable

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiClient:
    """Schema-constrained generateContent calls over the Gemini REST API."""

    def __init__(self, api_key: str, model: str, timeout: float = 20.0, session=None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, body: dict) -> dict:
        url = f"{GEMINI_BASE_URL}/models/{self.model}:generateContent"
        try:
            resp = self.session.post(
                url,
                params={"key": self.api_key},
                json=body,
                timeout=(min(5.0, self.timeout), self.timeout),
            )
            resp.raise_for_status()
            return resp.json() or {}
        except ReadTimeout as e:
            raise LLMTimeout(f"gemini_read_timeout: {e}") from e
        except (ConnectTimeout, ConnectionError) as e:
            raise LLMUnavailable(f"gemini_connection_error: {e}") from e
        except HTTPError as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            raise LLMError(f"gemini_http_error status={status}") from e
        except Timeout as e:
            raise LLMTimeout(f"gemini_timeout: {e}") from e
        except ValueError as e:
            raise LLMError(f"gemini_bad_response: {e}") from e
        except requests.RequestException as e:
            raise LLMUnavailable(f"gemini_request_error: {type(e).__name__}: {e}") from e

    @staticmethod
    def _text(data: dict) -> str:
        if not isinstance(data, dict):
            raise LLMError(f"gemini_bad_response: expected object, got {type(data).__name__}")
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback") or {}
            raise LLMError(f"gemini_no_candidates block={feedback.get('blockReason')}")
        try:
            parts = (candidates[0].get("content") or {}).get("parts") or []
            return "".join(p.get("text") or "" for p in parts).strip()
        except (AttributeError, KeyError, TypeError) as e:
            raise LLMError(f"gemini_bad_response: {type(e).__name__}: {e}") from e

    def generate_json(self, prompt: str, schema: dict) -> str:
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
                "temperature": 0,
            },
        }
        return self._text(self._post(body))
