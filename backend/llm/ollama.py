import json
import time

import requests
from requests.exceptions import ConnectionError, ConnectTimeout, HTTPError, ReadTimeout, Timeout

from backend.llm.base import LLMError, LLMTimeout, LLMUnavailable

OLLAMA_RETRIES = 1
EXTRACTION_TEMPERATURE = 0.0


class OllamaClient:
    def __init__(self, base_url: str, model: str, timeout: float = 20.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def is_healthy(self) -> bool:
        try:
            r = self.session.get(f"{self.base_url}/api/tags", timeout=(1, 2))
            return r.status_code == 200
        except requests.RequestException:
            return False

    def generate(self, prompt: str, fmt: str | None = None) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": EXTRACTION_TEMPERATURE},
        }
        if fmt:
            payload["format"] = fmt

        connect_timeout = min(5.0, self.timeout)
        read_timeout = max(1.0, self.timeout)
        last_exc: Exception | None = None
        for attempt in range(OLLAMA_RETRIES + 1):
            try:
                resp = self.session.post(
                    f"{self.base_url}/api/generate",
                    json=payload,
                    timeout=(connect_timeout, read_timeout),
                )
                resp.raise_for_status()
                data = resp.json() or {}
                if not isinstance(data, dict):
                    raise LLMError(f"ollama_bad_response: expected object, got {type(data).__name__}")
                return (data.get("response") or "").strip()

            except ReadTimeout as e:
                raise LLMTimeout(f"ollama_read_timeout: {e}") from e

            except (ConnectTimeout, ConnectionError) as e:
                last_exc = e
                if attempt < OLLAMA_RETRIES:
                    time.sleep(0.5)
                    continue
                raise LLMUnavailable(f"ollama_connection_error: {e}") from e

            except HTTPError as e:
                last_exc = e
                status = getattr(getattr(e, "response", None), "status_code", None)
                if status and status >= 500 and attempt < OLLAMA_RETRIES:
                    time.sleep(0.5)
                    continue
                raise LLMError(f"ollama_http_error status={status}: {e}") from e

            except Timeout as e:
                raise LLMTimeout(f"ollama_timeout: {e}") from e

            except ValueError as e:
                raise LLMError(f"ollama_bad_response: {e}") from e

            except requests.RequestException as e:
                raise LLMUnavailable(f"ollama_request_error: {type(e).__name__}: {e}") from e

        raise LLMUnavailable(f"ollama_failed: {last_exc}") from last_exc

    def generate_json(self, prompt: str, schema: dict) -> str:
        # ollama's json mode does not enforce a schema, so it rides along in the prompt
        full_prompt = (
            f"{prompt}\n\nReturn ONLY valid JSON matching this schema:\n"
            f"{json.dumps(schema, indent=2)}\nOutput JSON only. No explanation."
        )
        return self.generate(full_prompt, fmt="json")
