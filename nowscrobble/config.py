"""
Configuration via environment variables.

load_settings() reads everything once and raises ConfigError for values the
process cannot start with. Cleanup patterns are only checked later, where a
bad one is skipped with a warning.
"""

from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Tuple

from nowscrobble.errors import ConfigError
from nowscrobble.listenbrainz_client import DEFAULT_API_URL
from nowscrobble.text_cleanup import DEFAULT_PATTERNS

log = logging.getLogger("config")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class LastFMSettings:
    api_key: str
    api_secret: str
    session_key: str | None = None
    username: str | None = None
    password_md5: str | None = None


@dataclass(frozen=True)
class ListenBrainzSettings:
    name: str
    token: str
    api_url: str = DEFAULT_API_URL


@dataclass(frozen=True)
class Settings:
    bluos_host: str = "127.0.0.1"
    bluos_port: int = 11000
    poll_interval: int = 5
    scrobble_threshold: int = 50
    grace_period: float = 10.0
    sweep_interval: float = 30.0
    retry_base: float = 30.0
    retry_ceiling: float = 3600.0
    retry_max_attempts: int = 8
    retention_seconds: float = 86400.0
    scrobble_cache_path: str = "/data/scrobble_queue.json"
    scrobble_cache_limit: int = 500
    app_decisions_path: str = "/data/app_decisions.json"
    prompt_for_new_apps: bool = True
    scrobble_unknown: bool = True
    allowed_apps: Tuple[str, ...] = ()
    ignored_apps: Tuple[str, ...] = ()
    cleanup_enabled: bool = True
    cleanup_patterns: Tuple[str, ...] = tuple(DEFAULT_PATTERNS)
    lastfm: LastFMSettings | None = None
    listenbrainz: Tuple[ListenBrainzSettings, ...] = field(default_factory=tuple)


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _number(env: Mapping[str, str], name: str, default, kind=int, minimum=None, maximum=None):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = kind(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be at most {maximum}, got {value}")
    return value


def _list(env: Mapping[str, str], name: str) -> Tuple[str, ...]:
    raw = env.get(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _patterns(env: Mapping[str, str]) -> Tuple[str, ...]:
    raw = env.get("CLEANUP_PATTERNS")
    if raw is None or raw.strip() == "":
        return tuple(DEFAULT_PATTERNS)
    try:
        patterns = json.loads(raw)
    except ValueError as e:
        raise ConfigError(f"CLEANUP_PATTERNS must be a JSON list: {e}") from None
    if not isinstance(patterns, list):
        raise ConfigError("CLEANUP_PATTERNS must be a JSON list of regex strings")
    return tuple(patterns)


def _lastfm(env: Mapping[str, str]) -> LastFMSettings | None:
    api_key = env.get("LASTFM_API_KEY")
    api_secret = env.get("LASTFM_API_SECRET")
    if not _bool(env, "LASTFM_ENABLED", bool(api_key)):
        return None
    if not api_key or not api_secret:
        raise ConfigError("LASTFM_API_KEY and LASTFM_API_SECRET are required when Last.fm is enabled")
    settings = LastFMSettings(
        api_key=api_key,
        api_secret=api_secret,
        session_key=env.get("LASTFM_SESSION_KEY") or None,
        username=env.get("LASTFM_USERNAME") or None,
        password_md5=env.get("LASTFM_PASSWORD_MD5") or None,
    )
    if not (settings.session_key or (settings.username and settings.password_md5)):
        raise ConfigError("Provide LASTFM_SESSION_KEY or LASTFM_USERNAME + LASTFM_PASSWORD_MD5")
    return settings


def _listenbrainz(env: Mapping[str, str]) -> Tuple[ListenBrainzSettings, ...]:
    instances: List[ListenBrainzSettings] = []
    prefixes = ["LISTENBRAINZ_"] + [f"LISTENBRAINZ_{n}_" for n in range(2, 10)]
    for i, prefix in enumerate(prefixes, start=1):
        token = env.get(f"{prefix}TOKEN")
        if not token:
            continue
        default_name = "ListenBrainz" if i == 1 else f"ListenBrainz {i}"
        api_url = env.get(f"{prefix}API_URL") or DEFAULT_API_URL
        instances.append(ListenBrainzSettings(
            name=env.get(f"{prefix}NAME") or default_name, token=token, api_url=api_url))
    names = [lb.name for lb in instances]
    if len(set(names)) != len(names):
        raise ConfigError(f"ListenBrainz instance names must be unique, got {names}")
    return tuple(instances)


def load_settings(env: Mapping[str, str] = os.environ) -> Settings:
    poll_interval = _number(env, "POLL_INTERVAL", 5, minimum=1)
    allowed = _list(env, "ALLOWED_APPS")
    ignored = _list(env, "IGNORED_APPS")
    overlap = sorted(set(allowed) & set(ignored))
    if overlap:
        raise ConfigError(f"App id(s) {', '.join(overlap)} appear in both ALLOWED_APPS and IGNORED_APPS")

    settings = Settings(
        bluos_host=env.get("BLUOS_HOST", "127.0.0.1"),
        bluos_port=_number(env, "BLUOS_PORT", 11000, minimum=1, maximum=65535),
        poll_interval=poll_interval,
        scrobble_threshold=_number(env, "SCROBBLE_THRESHOLD", 50, minimum=1, maximum=100),
        # one missed poll still counts as the same session
        grace_period=_number(env, "GRACE_PERIOD", 2.0 * poll_interval, kind=float, minimum=0),
        sweep_interval=_number(env, "SWEEP_INTERVAL", 30.0, kind=float, minimum=1),
        retry_base=_number(env, "RETRY_BASE", 30.0, kind=float, minimum=1),
        retry_ceiling=_number(env, "RETRY_CEILING", 3600.0, kind=float, minimum=1),
        retry_max_attempts=_number(env, "RETRY_MAX_ATTEMPTS", 8, minimum=1),
        retention_seconds=_number(env, "RETENTION_SECONDS", 86400.0, kind=float, minimum=0),
        scrobble_cache_path=env.get("SCROBBLE_CACHE_PATH", "/data/scrobble_queue.json"),
        scrobble_cache_limit=_number(env, "SCROBBLE_CACHE_LIMIT", 500, minimum=1),
        app_decisions_path=env.get("APP_DECISIONS_PATH", "/data/app_decisions.json"),
        prompt_for_new_apps=_bool(env, "PROMPT_FOR_NEW_APPS", True),
        scrobble_unknown=_bool(env, "SCROBBLE_UNKNOWN", True),
        allowed_apps=allowed,
        ignored_apps=ignored,
        cleanup_enabled=_bool(env, "CLEANUP_ENABLED", True),
        cleanup_patterns=_patterns(env),
        lastfm=_lastfm(env),
        listenbrainz=_listenbrainz(env),
    )
    if settings.lastfm is not None and any(lb.name == "lastfm" for lb in settings.listenbrainz):
        raise ConfigError("The name 'lastfm' is taken by the Last.fm backend")
    if settings.retry_ceiling < settings.retry_base:
        raise ConfigError("RETRY_CEILING must not be smaller than RETRY_BASE")
    if settings.lastfm is None and not settings.listenbrainz:
        log.warning("No scrobbling services are enabled")
    return settings
