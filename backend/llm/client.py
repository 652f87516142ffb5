from backend.config import Settings
from backend.llm.gemini import GeminiClient
from backend.llm.ollama import OllamaClient


def build_llm_client(settings: Settings, session=None) -> GeminiClient | OllamaClient | None:
    """Returns a client exposing generate_json(prompt, schema), or None when no provider is usable."""
    provider = settings.llm_provider
    if provider == "gemini":
        if not settings.gemini_api_key:
            print("LLM_DISABLED reason=missing_gemini_api_key")
            return None
        return GeminiClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout=settings.call_timeout,
            session=session,
        )
    if provider == "ollama":
        client = OllamaClient(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout=settings.call_timeout,
            session=session,
        )
        if not client.is_healthy():
            print(f"LLM_DISABLED reason=ollama_unreachable base_url={settings.ollama_base_url}")
            return None
        return client
    print(f"LLM_DISABLED reason=provider_{provider or 'none'}")
    return None
