from __future__ import annotations

import os
import re
import secrets
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

TEST_BASE_URL = 'https://test.api.amadeus.com'
PRODUCTION_BASE_URL = 'https://api.amadeus.com'

FORM_MAP_PREFIX = 'FORM_MAP_'

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


def project_root_dir() -> Path:
    # For dev runs, keep config.env next to the source files.
    return Path(__file__).resolve().parent


def _candidate_dotenv_paths() -> list[Path]:
    """Return candidate locations for config.env.

    Precedence rule (first existing file wins):
    1) next to the sources
    2) current working directory
    """
    candidates: list[Path] = [project_root_dir() / 'config.env']
    try:
        candidates.append(Path.cwd() / 'config.env')
    except OSError:
        pass

    # De-dup while preserving order
    out: list[Path] = []
    seen: set[str] = set()
    for p in candidates:
        key = str(p.resolve())
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out


def dotenv_path() -> Path:
    """Return the first existing config.env candidate, otherwise the dev default."""
    for p in _candidate_dotenv_paths():
        if p.is_file():
            return p
    return project_root_dir() / 'config.env'


def _is_placeholder(value: str) -> bool:
    v = (value or '').strip()
    if not v:
        return True
    # Only reject obvious placeholders, not values that could be real credentials
    return v.lower() in {'x', 'y', 'your_api_key', 'your_api_secret',
                         'youramadeusapikeyhere', 'youramadeusapisecrethere',
                         'placeholder', 'example', 'changeme'}


def load_dotenv_once() -> Optional[Path]:
    """Load config.env if present.

    config.env wins over the process environment when the API credentials
    there are missing or placeholders.
    """
    env_path = dotenv_path()
    if not env_path.is_file():
        return None

    current_key = (os.getenv('AMADEUS_API_KEY') or '').strip()
    current_secret = (os.getenv('AMADEUS_API_SECRET') or '').strip()
    should_override = _is_placeholder(current_key) or _is_placeholder(current_secret)

    load_dotenv(dotenv_path=str(env_path), override=should_override)
    return env_path


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _is_page_url(value: str) -> bool:
    return bool(re.match(r'^https?://[^\s/$.?#].[^\s]*$', value or '', re.IGNORECASE))


def _form_field_map() -> Dict[str, int]:
    """Collect FORM_MAP_<FIELD>=<numeric id> entries.

    Non-numeric ids are skipped with a warning.
    """
    mapping: Dict[str, int] = {}
    for name, raw in os.environ.items():
        if not name.startswith(FORM_MAP_PREFIX):
            continue
        field_name = name[len(FORM_MAP_PREFIX):].lower()
        value = raw.strip()
        if not value:
            continue
        if not value.isdigit():
            logger.warning(f"Ignoring {name}: form field id must be numeric")
            continue
        mapping[field_name] = int(value)
    return mapping


@dataclass(frozen=True)
class Credentials:
    key: str
    secret: str
    environment: str = 'test'

    @property
    def is_complete(self) -> bool:
        return bool(self.key and self.secret)

    @property
    def base_url(self) -> str:
        return PRODUCTION_BASE_URL if self.environment == 'production' else TEST_BASE_URL


@dataclass(frozen=True)
class LoadedConfig:
    """Settings read once at startup and passed to whatever needs them.

    form_id and form_field_map are carried for the external booking-form tool
    on the booking page; this service only reports them in diagnostics.
    """
    credentials: Credentials
    loaded_from: Optional[Path] = None
    currency_code: str = 'USD'
    booking_page_url: str = ''
    hotel_search_enabled: bool = False
    debug_mode: bool = False
    nonce_secret: str = ''
    cache_db_path: str = 'travel_cache.db'
    city_translations_path: Optional[Path] = None
    form_id: Optional[int] = None
    form_field_map: Dict[str, int] = field(default_factory=dict)
    trust_remote_user: bool = False

    @property
    def has_credentials(self) -> bool:
        return self.credentials.is_complete


def load_config() -> LoadedConfig:
    """Load settings from environment variables and/or config.env.

    config.env may contain:
      - AMADEUS_API_KEY, AMADEUS_API_SECRET, AMADEUS_API_ENV=test|production
      - CURRENCY_CODE, BOOKING_PAGE_URL
      - HOTEL_SEARCH_ENABLED, DEBUG_MODE
      - NONCE_SECRET, CACHE_DB_PATH, CITY_TRANSLATIONS_PATH
      - FORM_ID and FORM_MAP_<FIELD>=<numeric field id>
      - TRUST_REMOTE_USER (take the user id from a fronting proxy's X-Remote-User)

    We only read config.env; we never modify it.
    """
    loaded_from = load_dotenv_once()

    key = (os.getenv('AMADEUS_API_KEY') or '').strip()
    secret = (os.getenv('AMADEUS_API_SECRET') or '').strip()
    environment = (os.getenv('AMADEUS_API_ENV') or 'test').strip().lower()

    # Treat placeholder values as "not configured".
    if key and _is_placeholder(key):
        logger.warning("AMADEUS_API_KEY contains a placeholder value. Set your real key in config.env")
        key = ''
    if secret and _is_placeholder(secret):
        logger.warning("AMADEUS_API_SECRET contains a placeholder value. Set your real secret in config.env")
        secret = ''

    if environment not in {'test', 'production'}:
        logger.warning(f"Unknown AMADEUS_API_ENV '{environment}', using test")
        environment = 'test'

    booking_page_url = (os.getenv('BOOKING_PAGE_URL') or '').strip()
    if booking_page_url and not _is_page_url(booking_page_url):
        logger.warning("BOOKING_PAGE_URL is not an http(s) URL, ignoring it")
        booking_page_url = ''

    nonce_secret = (os.getenv('NONCE_SECRET') or '').strip()
    if not nonce_secret:
        # Nonces issued by this process stop validating after a restart.
        nonce_secret = secrets.token_hex(32)

    translations = (os.getenv('CITY_TRANSLATIONS_PATH') or '').strip()
    form_id = (os.getenv('FORM_ID') or '').strip()

    return LoadedConfig(
        credentials=Credentials(key=key, secret=secret, environment=environment),
        loaded_from=loaded_from,
        currency_code=(os.getenv('CURRENCY_CODE') or 'USD').strip().upper(),
        booking_page_url=booking_page_url,
        hotel_search_enabled=_env_flag('HOTEL_SEARCH_ENABLED'),
        debug_mode=_env_flag('DEBUG_MODE'),
        nonce_secret=nonce_secret,
        cache_db_path=(os.getenv('CACHE_DB_PATH') or 'travel_cache.db').strip(),
        city_translations_path=Path(translations) if translations else None,
        form_id=int(form_id) if form_id.isdigit() else None,
        form_field_map=_form_field_map(),
        trust_remote_user=_env_flag('TRUST_REMOTE_USER'),
    )


def _mask(s: str) -> str:
    if not s:
        return ''
    if len(s) <= 6:
        return '*' * len(s)
    return f"{s[:3]}***{s[-3:]}"


def config_diagnostics(cfg: Optional[LoadedConfig] = None) -> str:
    """Human-readable diagnostics for config/env loading (no secrets leaked)."""
    cfg = cfg or load_config()

    lines = []
    lines.append(f"CWD: {Path.cwd()}")
    lines.append(f"Resolved config.env: {dotenv_path()}")
    lines.append("Candidates searched:")
    for p in _candidate_dotenv_paths():
        lines.append(f"  - {p} (exists={p.is_file()})")

    lines.append(f"Loaded from: {cfg.loaded_from}")
    lines.append(f"Environment: {cfg.credentials.environment} ({cfg.credentials.base_url})")
    lines.append(f"AMADEUS_API_KEY: {_mask(cfg.credentials.key)}")
    lines.append(f"AMADEUS_API_SECRET: {_mask(cfg.credentials.secret)}")
    lines.append(f"Currency: {cfg.currency_code}")
    lines.append(f"Booking page: {cfg.booking_page_url or '(not set)'}")
    lines.append(f"Hotel search enabled: {cfg.hotel_search_enabled}")
    lines.append(f"Form field mappings: {len(cfg.form_field_map)}")
    return "\n".join(lines)
