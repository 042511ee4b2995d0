"""
Runtime configuration read from the environment (and an optional .env file).

    BOT_PORT                  - webhook port (default: 3001)
    BOT_WEBHOOK_SECRET        - expected x-webhook-secret header (optional)
    ALLOWED_GROUPS            - comma-separated group JIDs (empty = all groups)
    WHATSAPP_CHANNEL          - "evolution" or "simulator" (default: evolution)
    EVOLUTION_API_URL, EVOLUTION_API_KEY, EVOLUTION_INSTANCE
                              - required when WHATSAPP_CHANNEL=evolution
    CAJURONA_STORE            - "sqlite" or "supabase" (default: sqlite)
    DB_PATH                   - SQLite database path (default: data/cajurona.db)
    SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY
                              - required when CAJURONA_STORE=supabase
    LOG_LEVEL                 - logging level name (default: INFO)
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace

from dotenv import load_dotenv


class ConfigError(Exception):
    """A required setting is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    port: int = 3001
    webhook_secret: str | None = None
    allowed_groups: tuple[str, ...] = ()
    whatsapp_channel: str = "evolution"
    evolution_url: str = ""
    evolution_key: str = ""
    evolution_instance: str = ""
    store: str = "sqlite"
    db_path: str = "data/cajurona.db"
    supabase_url: str = ""
    supabase_key: str = ""
    log_level: str = "INFO"


def _require(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "").strip()
    if not value:
        raise ConfigError(f"environment variable {name!r} is not set")
    return value


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from `env`, or from os.environ after loading .env when
    no mapping is given.  Raises ConfigError naming the first missing
    variable the selected adapters need.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    try:
        port = int(env.get("BOT_PORT", "3001"))
    except ValueError:
        raise ConfigError(f"BOT_PORT must be an integer, got {env.get('BOT_PORT')!r}")

    allowed_groups = tuple(
        g.strip() for g in env.get("ALLOWED_GROUPS", "").split(",") if g.strip()
    )

    channel = env.get("WHATSAPP_CHANNEL", "evolution")
    if channel not in ("evolution", "simulator"):
        raise ConfigError(f"Unknown WhatsApp channel: {channel!r}")

    store = env.get("CAJURONA_STORE", "sqlite")
    if store not in ("sqlite", "supabase"):
        raise ConfigError(f"Unknown store: {store!r}")

    settings = Settings(
        port=port,
        webhook_secret=env.get("BOT_WEBHOOK_SECRET") or None,
        allowed_groups=allowed_groups,
        whatsapp_channel=channel,
        store=store,
        db_path=env.get("DB_PATH", "data/cajurona.db"),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )

    if channel == "evolution":
        settings = replace(
            settings,
            evolution_url=_require(env, "EVOLUTION_API_URL"),
            evolution_key=_require(env, "EVOLUTION_API_KEY"),
            evolution_instance=_require(env, "EVOLUTION_INSTANCE"),
        )
    if store == "supabase":
        settings = replace(
            settings,
            supabase_url=_require(env, "SUPABASE_URL"),
            supabase_key=_require(env, "SUPABASE_SERVICE_ROLE_KEY"),
        )
    return settings
