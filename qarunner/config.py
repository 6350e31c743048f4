"""Runtime settings for the test-case runner, read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"

EXECUTABLE_ENV_VARS = ("CHROME_PATH", "GOOGLE_CHROME_SHIM", "CHROME_BIN")

MAX_CONCURRENCY = 10


@dataclass(frozen=True)
class Settings:
    """Immutable run-level configuration."""

    base_url: str = DEFAULT_BASE_URL
    executable_path: str | None = None
    test_timeout_ms: int = 60000
    http_timeout_ms: int = 15000
    nav_settle_ms: int = 1000
    browser_start_timeout_ms: int = 5000
    concurrency: int = 5


def clamp_concurrency(value: object, default: int = 5) -> int:
    try:
        n = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        n = default
    if n <= 0:
        n = default
    return max(1, min(MAX_CONCURRENCY, n))


def resolve_base_url(env: dict[str, str] | None = None) -> str:
    env = os.environ if env is None else env
    for key in ("QA_BASE_URL", "NEXT_PUBLIC_APP_URL", "NEXTAUTH_URL"):
        if env.get(key):
            return env[key].rstrip("/")
    vercel = env.get("VERCEL_URL")
    if vercel:
        return (vercel if vercel.startswith("http") else f"https://{vercel}").rstrip("/")
    return DEFAULT_BASE_URL


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """Build Settings from environment variables, falling back to defaults."""
    env = os.environ if env is None else env
    defaults = Settings()

    executable = None
    for key in EXECUTABLE_ENV_VARS:
        if env.get(key):
            executable = env[key]
            break

    return Settings(
        base_url=resolve_base_url(env),
        executable_path=executable,
        test_timeout_ms=_int_env(env, "QA_TEST_TIMEOUT_MS", defaults.test_timeout_ms, minimum=1),
        http_timeout_ms=_int_env(env, "QA_HTTP_TIMEOUT_MS", defaults.http_timeout_ms, minimum=1),
        nav_settle_ms=_int_env(env, "QA_NAV_SETTLE_MS", defaults.nav_settle_ms),
        browser_start_timeout_ms=_int_env(
            env, "QA_BROWSER_START_TIMEOUT_MS", defaults.browser_start_timeout_ms, minimum=1
        ),
        concurrency=clamp_concurrency(env.get("QA_CONCURRENCY"), defaults.concurrency),
    )


def _int_env(env, key: str, default: int, minimum: int = 0) -> int:
    """Read a non-negative integer; timeouts pass minimum=1 since 0 would expire at once."""
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", key, raw, default)
        return default
    if value < minimum:
        logger.warning("Ignoring %s=%r (must be at least %d), using %d", key, raw, minimum, default)
        return default
    return value
