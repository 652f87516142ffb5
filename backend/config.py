import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_ENV_PATH = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(_ENV_PATH)
load_dotenv()

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_FEEDS_PATH = REPO_ROOT / "runner" / "ingest" / "feeds.json"
DEFAULT_USER_AGENT = (
    "OpportunityRadarBot/1.0 (+https://opportunity-radar.local) "
    "Mozilla/5.0 (compatible; OpportunityRadarBot/1.0)"
)


def get_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def get_str(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    supabase_url: str | None = None
    supabase_key: str | None = None
    llm_provider: str = "gemini"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3"
    tavily_api_key: str | None = None
    cron_secret: str | None = None
    max_new_per_run: int = 10
    enrich_batch_size: int = 3
    run_budget_sec: int = 60
    request_timeout_sec: int = 20
    verify_limit: int = 25
    verify_failure_threshold: int = 3
    verify_include_blocked: bool = False
    reaper_mode: str = "expire"
    feeds_path: Path = DEFAULT_FEEDS_PATH
    user_agent: str = DEFAULT_USER_AGENT

    @property
    def call_timeout(self) -> float:
        # every network call must finish well inside the host's execution window
        budget_share = max(1.0, self.run_budget_sec / 4)
        return float(min(self.request_timeout_sec, budget_share))


def load_settings() -> Settings:
    reaper_mode = (get_str("REAPER_MODE", "expire") or "expire").lower()
    if reaper_mode not in {"expire", "delete"}:
        reaper_mode = "expire"
    return Settings(
        supabase_url=get_str("SUPABASE_URL"),
        supabase_key=get_str("SUPABASE_SERVICE_ROLE_KEY") or get_str("SUPABASE_KEY"),
        llm_provider=(get_str("LLM_PROVIDER", "gemini") or "gemini").lower(),
        gemini_api_key=get_str("GEMINI_API_KEY"),
        gemini_model=get_str("GEMINI_MODEL", "gemini-1.5-flash") or "gemini-1.5-flash",
        ollama_base_url=get_str("OLLAMA_BASE_URL", "http://localhost:11434")
        or "http://localhost:11434",
        ollama_model=get_str("OLLAMA_MODEL", "llama3") or "llama3",
        tavily_api_key=get_str("TAVILY_API_KEY"),
        cron_secret=get_str("CRON_SECRET"),
        max_new_per_run=max(1, get_int("MAX_NEW_PER_RUN", 10) or 10),
        enrich_batch_size=max(1, get_int("ENRICH_BATCH_SIZE", 3) or 3),
        run_budget_sec=max(1, get_int("RUN_BUDGET_SEC", 60) or 60),
        request_timeout_sec=max(1, get_int("REQUEST_TIMEOUT_SEC", 20) or 20),
        verify_limit=min(max(get_int("VERIFY_LIMIT", 25) or 25, 1), 200),
        verify_failure_threshold=max(1, get_int("VERIFY_FAILURE_THRESHOLD", 3) or 3),
        verify_include_blocked=get_bool("VERIFY_INCLUDE_BLOCKED", False),
        reaper_mode=reaper_mode,
        feeds_path=Path(get_str("FEEDS_PATH") or DEFAULT_FEEDS_PATH),
        user_agent=get_str("USER_AGENT", DEFAULT_USER_AGENT) or DEFAULT_USER_AGENT,
    )
