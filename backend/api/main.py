import sys

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from backend.config import Settings, load_settings
from backend.errors import ConfigurationError
from backend.models import parse_program_type
from runner.jobs import discover, hunt, reap, verify

app = FastAPI(title="Opportunity Radar API")

VERCEL_CRON_PREFIX = "vercel-cron/"


def get_settings() -> Settings:
    return load_settings()


def require_cron(
    settings: Settings = Depends(get_settings),
    x_cron_secret: str | None = Header(default=None),
    user_agent: str | None = Header(default=None),
):
    if not settings.cron_secret:
        return
    if x_cron_secret == settings.cron_secret:
        return
    if (user_agent or "").startswith(VERCEL_CRON_PREFIX):
        return
    raise HTTPException(status_code=401, detail="Unauthorized")


@app.exception_handler(HTTPException)
async def http_error(request: Request, exc: HTTPException):
    return JSONResponse({"ok": False, "error": exc.detail}, status_code=exc.status_code)


def _run(job_name: str, fn, *args, **kwargs):
    try:
        result = fn(*args, **kwargs)
    except ConfigurationError as e:
        print(f"CRON_CONFIG_ERROR job={job_name} error={e}", file=sys.stderr)
        return JSONResponse({"ok": False, "error": str(e)}, status_code=500)
    except Exception as e:
        print(
            f"CRON_FAIL job={job_name} err={type(e).__name__} msg={str(e)[:200]}",
            file=sys.stderr,
        )
        return JSONResponse({"ok": False, "error": str(e) or type(e).__name__}, status_code=500)
    return JSONResponse({"ok": True, **result}, status_code=200)


@app.get("/health")
def health():
    return {"ok": True}


@app.api_route("/cron/discover", methods=["GET", "POST"], dependencies=[Depends(require_cron)])
def cron_discover(
    program_type: str | None = Query(default=None),
    settings: Settings = Depends(get_settings),
):
    return _run("discover", discover.run_job, settings, parse_program_type(program_type))


@app.api_route("/cron/verify", methods=["GET", "POST"], dependencies=[Depends(require_cron)])
def cron_verify(
    program_type: str | None = Query(default=None),
    limit: int | None = Query(default=None),
    settings: Settings = Depends(get_settings),
):
    if limit is not None:
        limit = min(max(limit, 1), 200)
    return _run("verify", verify.run_job, settings, parse_program_type(program_type), limit)


@app.api_route("/cron/reap", methods=["GET", "POST"], dependencies=[Depends(require_cron)])
def cron_reap(settings: Settings = Depends(get_settings)):
    return _run("reap", reap.run_job, settings)


@app.api_route("/cron/hunt", methods=["GET", "POST"], dependencies=[Depends(require_cron)])
def cron_hunt(
    program_type: str | None = Query(default=None),
    settings: Settings = Depends(get_settings),
):
    return _run("hunt", hunt.run_job, settings, parse_program_type(program_type))
