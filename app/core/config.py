from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
AuthzMode = Literal["owner", "delegated"]

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off", "")


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


def _getenv_seconds(name: str, default: str) -> float:
    raw = _getenv(name, default)
    try:
        seconds = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if seconds <= 0:
        raise ValueError(f"{name} must be positive (got {raw!r})")
    return seconds


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    redis_url: str | None
    badge_owner: str
    authz_mode: AuthzMode = "owner"
    authz_delegate_url: str | None = None
    notify_timeout_seconds: float = 2.0
    authz_delegate_timeout_seconds: float = 2.0
    jwt_public_key_file: str | None = None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def uses_delegated_authz(self) -> bool:
        return self.authz_mode == "delegated"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")
    authz_mode_raw = _getenv("AUTHZ_MODE", "owner").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if authz_mode_raw not in ("owner", "delegated"):
        raise ValueError(f"AUTHZ_MODE must be owner|delegated (got {authz_mode_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    notify_timeout = _getenv_seconds("NOTIFY_TIMEOUT_SECONDS", "2.0")
    delegate_timeout = _getenv_seconds("AUTHZ_DELEGATE_TIMEOUT_SECONDS", "2.0")
    # The owner identity is the JWT subject allowed to award badges.
    badge_owner = _getenv("BADGE_OWNER", "badge-owner")
    if not badge_owner:
        raise ValueError("BADGE_OWNER must be a non-empty identity")

    redis_url = _getenv("REDIS_URL", "") or None
    authz_delegate_url = _getenv("AUTHZ_DELEGATE_URL", "") or None
    jwt_public_key_file = _getenv("JWT_PUBLIC_KEY_FILE", "") or None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv_bool("LOG_JSON", False),
        port=port,
        redis_url=redis_url,
        badge_owner=badge_owner,
        authz_mode=authz_mode_raw,
        authz_delegate_url=authz_delegate_url,
        notify_timeout_seconds=notify_timeout,
        authz_delegate_timeout_seconds=delegate_timeout,
        jwt_public_key_file=jwt_public_key_file,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
