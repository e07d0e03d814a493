from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized in {"1", "true", "yes", "y", "on"}


def _read_optional(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip() or None


def _read_optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


def _load_env_file() -> None:
    candidates: list[Path] = []
    explicit = os.getenv("TMS_ENV_FILE")
    if explicit:
        candidates.append(Path(explicit))

    candidates.append(Path.cwd() / ".env")
    candidates.append(Path(__file__).resolve().parents[2] / ".env")

    env_path = next((path for path in candidates if path.exists() and path.is_file()), None)
    if env_path is None:
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key:
            os.environ.setdefault(key, value)


def _normalize_base_url(raw: str) -> str:
    text = raw.strip()
    if "://" not in text:
        text = f"https://{text}"
    parts = urlsplit(text)
    if not parts.scheme or not parts.netloc:
        raise RuntimeError(f"Invalid SUPABASE_URL: {raw}")
    return f"{parts.scheme}://{parts.netloc}"


def _parse_header_pair(raw: str | None) -> tuple[str, str] | None:
    """Parse ``name: value`` into a lowercase header name and its expected value."""
    if raw is None or not raw.strip():
        return None
    if ":" not in raw:
        raise RuntimeError(f"Invalid TRUSTED_SCHEDULER_HEADER (expected 'name: value'): {raw}")
    name, value = raw.split(":", 1)
    return name.strip().lower(), value.strip()


def _parse_hhmm(name: str, raw: str) -> str:
    text = raw.strip()
    hours, _, minutes = text.partition(":")
    if not (hours.isdigit() and minutes.isdigit() and 0 <= int(hours) < 24 and 0 <= int(minutes) < 60):
        raise RuntimeError(f"Invalid {name} (expected HH:MM): {raw}")
    return f"{int(hours):02d}:{int(minutes):02d}"


@dataclass(frozen=True)
class Settings:
    supabase_url: str | None
    supabase_service_role_key: str | None
    supabase_request_timeout_ms: int
    webhook_timeout_ms: int
    cron_secret: str | None
    trusted_scheduler_header: tuple[str, str] | None
    manual_window_minutes: int
    default_notification_time: str
    tax_reminder_grouping: str
    app_base_url: str
    worker_log_level: str
    delivery_log_enabled: bool

    @classmethod
    def from_env(cls) -> "Settings":
        _load_env_file()
        supabase_url_raw = os.getenv("SUPABASE_URL")
        supabase_url = _normalize_base_url(supabase_url_raw) if supabase_url_raw else None
        window = _read_optional_int("MANUAL_WINDOW_MINUTES")
        return cls(
            supabase_url=supabase_url,
            supabase_service_role_key=_read_optional("SUPABASE_SERVICE_ROLE_KEY"),
            supabase_request_timeout_ms=int(os.getenv("SUPABASE_REQUEST_TIMEOUT_MS", "15000")),
            webhook_timeout_ms=int(os.getenv("WEBHOOK_TIMEOUT_MS", "5000")),
            cron_secret=_read_optional("CRON_SECRET"),
            trusted_scheduler_header=_parse_header_pair(os.getenv("TRUSTED_SCHEDULER_HEADER", "x-vercel-cron: 1")),
            manual_window_minutes=max(1, window if window is not None else 5),
            default_notification_time=_parse_hhmm(
                "DEFAULT_NOTIFICATION_TIME", os.getenv("DEFAULT_NOTIFICATION_TIME", "10:00")
            ),
            tax_reminder_grouping=os.getenv("TAX_REMINDER_GROUPING", "per_tax").strip().lower(),
            app_base_url=os.getenv("APP_BASE_URL", "https://tms.watercharging.com/").strip(),
            worker_log_level=os.getenv("WORKER_LOG_LEVEL", "INFO"),
            delivery_log_enabled=_parse_bool(os.getenv("DELIVERY_LOG_ENABLED"), True),
        )
