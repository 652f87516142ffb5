import argparse
import os
import subprocess
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]

# name -> (module, timeout env var, default timeout seconds)
JOBS = {
    "discover": ("runner.jobs.discover", "DISCOVER_TIMEOUT", 300),
    "hunt": ("runner.jobs.hunt", "HUNT_TIMEOUT", 300),
    "verify": ("runner.jobs.verify", "VERIFY_TIMEOUT", 300),
    "reap": ("runner.jobs.reap", "REAP_TIMEOUT", 120),
}
DEFAULT_ORDER = ["discover", "hunt", "verify", "reap"]


def run_job(name: str, module: str, timeout_env: str, default_timeout: int) -> int:
    print(f"Running {name}...")
    env = os.environ.copy()
    existing = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = f"{REPO_ROOT}{os.pathsep}{existing}" if existing else str(REPO_ROOT)
    try:
        timeout_sec = int(env.get(timeout_env, str(default_timeout)))
    except ValueError:
        timeout_sec = default_timeout
    try:
        subprocess.run(
            [sys.executable, "-m", module],
            cwd=REPO_ROOT,
            env=env,
            check=True,
            timeout=timeout_sec,
        )
        print(f"Job ok: {name}")
        return 0
    except subprocess.TimeoutExpired:
        print(f"Job timed out: {name} after {timeout_sec}s", file=sys.stderr)
        return 1
    except subprocess.CalledProcessError as e:
        print(f"Job failed: {name} ({e.returncode})", file=sys.stderr)
        return e.returncode or 1


def selected_jobs(only: list[str] | None, env: dict | None = None) -> list[str]:
    env = os.environ if env is None else env
    if only:
        return [name for name in DEFAULT_ORDER if name in only]
    # search hunting is opt-in by credential
    return [name for name in DEFAULT_ORDER if name != "hunt" or env.get("TAVILY_API_KEY")]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the opportunity jobs in sequence")
    parser.add_argument("--only", nargs="+", choices=sorted(JOBS), help="Run just these jobs")
    args = parser.parse_args(argv)

    failures = 0
    for name in selected_jobs(args.only):
        module, timeout_env, default_timeout = JOBS[name]
        if run_job(name, module, timeout_env, default_timeout) != 0:
            failures += 1

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
