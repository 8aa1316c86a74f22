"""roster_sync.config

Process configuration: credentials and endpoints from the environment,
tunables (column layout, property names, pacing, retry) from an optional
YAML file.

Everything is validated up front by load_settings(); a ConfigError is
raised before any run starts.

Usage:
    from pathlib import Path
    from roster_sync.config import load_settings

    settings = load_settings(os.environ, Path("config/sync.yml"))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import pytz
import yaml

from roster_sync.contact_export import MAILGUN_API_URL, MailSettings
from roster_sync.members import DEFAULT_KEYWORDS, VALID_LAYOUT_MODES, Keywords, LayoutConfig
from roster_sync.normalize import DEFAULT_COUNTRY_CODE
from roster_sync.notion_client import NotionCredentials, PropertyNames

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REQUIRED_ENV_VARS = (
    "ROSTER_CSV_URL",
    "NOTION_TOKEN",
    "NOTION_DB",
    "MAILGUN_API_KEY",
    "MAILGUN_DOMAIN",
    "EXPORT_RECIPIENT",
)

VALID_YAML_SECTIONS = frozenset({
    "layout", "phone", "notion", "pacing", "retry", "feed", "export", "http",
})

DEFAULT_TIMEZONE = "Asia/Jakarta"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigError(ValueError):
    """Raised when required configuration is missing or invalid."""


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 5
    base_delay_seconds: float = 1.0
    retry_all_errors: bool = False


@dataclass(frozen=True)
class SyncSettings:
    csv_url: str
    notion: NotionCredentials
    mail: MailSettings
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    property_names: PropertyNames = field(default_factory=PropertyNames)
    retry: RetrySettings = field(default_factory=RetrySettings)
    pacing_delay_seconds: float = 0.35
    page_size: int = 100
    cache_bust: bool = True
    http_timeout_seconds: int = 30
    timezone: str = DEFAULT_TIMEZONE


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_yaml_config(path: Path) -> dict[str, Any]:
    """Read and shape-check the YAML tunables file."""
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    unknown = set(data) - VALID_YAML_SECTIONS
    if unknown:
        raise ConfigError(f"{path}: unknown sections {sorted(unknown)}")
    for section, value in data.items():
        if value is not None and not isinstance(value, dict):
            raise ConfigError(f"{path}: section {section!r} must be a mapping")
    return data


def _keywords(raw: Any) -> dict[str, Keywords]:
    merged = dict(DEFAULT_KEYWORDS)
    if not raw:
        return merged
    if not isinstance(raw, dict):
        raise ConfigError("layout.keywords must be a mapping")
    for name, alternatives in raw.items():
        if name not in DEFAULT_KEYWORDS:
            raise ConfigError(f"layout.keywords: unknown column {name!r}")
        if not isinstance(alternatives, list) or not alternatives:
            raise ConfigError(f"layout.keywords.{name} must be a non-empty list")
        parsed: list[tuple[str, ...]] = []
        for alt in alternatives:
            fragments = [alt] if isinstance(alt, str) else alt
            if not isinstance(fragments, list) or not all(isinstance(f, str) and f for f in fragments):
                raise ConfigError(f"layout.keywords.{name}: invalid entry {alt!r}")
            parsed.append(tuple(f.lower() for f in fragments))
        merged[name] = tuple(parsed)
    return merged


def _flag(section: dict[str, Any], path: str, key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{path}.{key} must be true or false, got {value!r}")
    return value


def _layout(data: dict[str, Any], country_code: str) -> LayoutConfig:
    section = data.get("layout") or {}
    mode = section.get("mode", "auto")
    if mode not in VALID_LAYOUT_MODES:
        raise ConfigError(f"layout.mode must be one of {VALID_LAYOUT_MODES}, got {mode!r}")
    try:
        name_indices = tuple(int(i) for i in section.get("name_indices", (3, 4)))
        return LayoutConfig(
            mode=mode,
            id_index=int(section.get("id_index", 0)),
            name_indices=name_indices,
            phone_start_index=int(section.get("phone_start_index", 5)),
            min_columns=int(section.get("min_columns", 4)),
            keywords=_keywords(section.get("keywords")),
            country_code=country_code,
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid layout section: {exc}") from exc


def load_settings(env: Mapping[str, str], config_path: Path | None = None) -> SyncSettings:
    """Build SyncSettings from environment + optional YAML file.

    Raises:
        ConfigError: a required env var is missing/blank or the YAML is invalid.
    """
    missing = [name for name in REQUIRED_ENV_VARS if not (env.get(name) or "").strip()]
    if missing:
        raise ConfigError(f"missing required environment variables: {', '.join(missing)}")

    data = load_yaml_config(config_path) if config_path else {}

    phone = data.get("phone") or {}
    country_code = str(phone.get("country_code", DEFAULT_COUNTRY_CODE)).lstrip("+")
    if not country_code.isdigit():
        raise ConfigError(f"phone.country_code must be digits, got {country_code!r}")

    notion = data.get("notion") or {}
    props = notion.get("properties") or {}
    retry = data.get("retry") or {}
    pacing = data.get("pacing") or {}
    feed = data.get("feed") or {}
    export = data.get("export") or {}
    http = data.get("http") or {}

    domain = env["MAILGUN_DOMAIN"].strip()
    try:
        settings = SyncSettings(
            csv_url=env["ROSTER_CSV_URL"].strip(),
            notion=NotionCredentials(
                token=env["NOTION_TOKEN"].strip(),
                database_id=env["NOTION_DB"].strip(),
            ),
            mail=MailSettings(
                api_key=env["MAILGUN_API_KEY"].strip(),
                domain=domain,
                sender=(env.get("EXPORT_SENDER") or "").strip() or f"Roster Sync <mailgun@{domain}>",
                recipient=env["EXPORT_RECIPIENT"].strip(),
                attachment_name=str(export.get("attachment_name", "roster-contacts.vcf")),
                base_url=(env.get("MAILGUN_BASE_URL") or "").strip() or MAILGUN_API_URL,
            ),
            layout=_layout(data, country_code),
            property_names=PropertyNames(
                identifier=str(props.get("identifier", "Member ID")),
                name=str(props.get("name", "First Name")),
                phone=str(props.get("phone", "Mobile Phone")),
            ),
            retry=RetrySettings(
                max_attempts=int(retry.get("max_attempts", 5)),
                base_delay_seconds=float(retry.get("base_delay_seconds", 1.0)),
                retry_all_errors=_flag(retry, "retry", "retry_all_errors", False),
            ),
            pacing_delay_seconds=float(pacing.get("delay_seconds", 0.35)),
            page_size=int(notion.get("page_size", 100)),
            cache_bust=_flag(feed, "feed", "cache_bust", True),
            http_timeout_seconds=int(http.get("timeout_seconds", 30)),
            timezone=(env.get("SYNC_TIMEZONE") or "").strip() or DEFAULT_TIMEZONE,
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid configuration value: {exc}") from exc

    validate_settings(settings)
    return settings


def validate_settings(settings: SyncSettings) -> None:
    """Raise ConfigError on out-of-range tunables."""
    if settings.retry.max_attempts < 1:
        raise ConfigError("retry.max_attempts must be >= 1")
    if settings.retry.base_delay_seconds < 0:
        raise ConfigError("retry.base_delay_seconds must be >= 0")
    if settings.pacing_delay_seconds < 0:
        raise ConfigError("pacing.delay_seconds must be >= 0")
    if not 1 <= settings.page_size <= 100:
        raise ConfigError("notion.page_size must be between 1 and 100")
    if settings.layout.min_columns < 1:
        raise ConfigError("layout.min_columns must be >= 1")
    if not settings.layout.name_indices:
        raise ConfigError("layout.name_indices must not be empty")
    try:
        pytz.timezone(settings.timezone)
    except pytz.UnknownTimeZoneError as exc:
        raise ConfigError(f"SYNC_TIMEZONE is not a known timezone: {settings.timezone!r}") from exc
    if not settings.csv_url.startswith(("http://", "https://")):
        raise ConfigError(f"ROSTER_CSV_URL must be an http(s) URL, got {settings.csv_url!r}")
