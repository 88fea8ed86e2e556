from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from book_enricher.core.matching import DEFAULT_THRESHOLDS, MatchThresholds
from book_enricher.core.regions import DEFAULT_REGION, REGIONS

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "enricher.yaml"
DEFAULT_CACHE_PATH = ".book_enricher_cache.jsonl"
PROVIDER_NAMES = ("google_books", "amazon", "open_library")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _strip_inline_comment(val: str) -> str:
    in_single = False
    in_double = False
    for i, ch in enumerate(val):
        if ch == "'" and not in_double:
            in_single = not in_single
            continue
        if ch == '"' and not in_single:
            in_double = not in_double
            continue
        if ch == "#" and not in_single and not in_double:
            return val[:i].rstrip()
    return val.rstrip()


def _parse_env_file(path: Path) -> None:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("could not read .env | path=%s | err=%s", path, e)
        return
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        k, v = line.split("=", 1)
        k = k.strip()
        v = _strip_inline_comment(v.strip())
        if len(v) >= 2 and v[0] == v[-1] and v[0] in ("'", '"'):
            v = v[1:-1]
        if k and k not in os.environ:
            os.environ[k] = v


def load_dotenv(path: str = ".env") -> Optional[str]:
    """
    Loads environment variables from a .env file. Existing variables win.

    Search order:
    1) ENV_PATH (if set)
    2) explicit `path` (relative to CWD or absolute)
    3) project root (parent of the book_enricher package directory)
    4) current working directory

    Returns the resolved .env path used, or None if not found.
    """
    candidates: List[Path] = []
    override = os.getenv("ENV_PATH")
    if override:
        candidates.append(Path(override).expanduser())

    p = Path(path).expanduser()
    candidates.append(p if p.is_absolute() else (Path.cwd() / p))
    candidates.append(Path(__file__).resolve().parent.parent / ".env")
    candidates.append(Path.cwd() / ".env")

    seen = set()
    for c in candidates:
        c = c.resolve()
        if str(c) in seen:
            continue
        seen.add(str(c))
        if c.is_file():
            _parse_env_file(c)
            return str(c)
    return None


def env_flag(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return default


@dataclass(frozen=True)
class ProviderSettings:
    enabled: bool
    priority: int


def _default_providers() -> Dict[str, ProviderSettings]:
    return {
        "google_books": ProviderSettings(enabled=True, priority=1),
        "amazon": ProviderSettings(enabled=False, priority=2),
        "open_library": ProviderSettings(enabled=True, priority=3),
    }


@dataclass
class Settings:
    default_region: str = DEFAULT_REGION
    associate_tags: Dict[str, str] = field(default_factory=dict)
    thresholds: MatchThresholds = DEFAULT_THRESHOLDS
    providers: Dict[str, ProviderSettings] = field(default_factory=_default_providers)

    scrape_delay_s: float = 3.0
    audit_delay_s: float = 3.0
    google_rate_per_sec: float = 5.0
    timeout_s: int = 15

    cache_path: Optional[str] = DEFAULT_CACHE_PATH
    google_api_key: Optional[str] = None
    pa_api_enabled: bool = False
    pa_api_access_key: Optional[str] = None
    pa_api_secret_key: Optional[str] = None

    def validate(self) -> None:
        if self.default_region.upper() not in REGIONS:
            raise SystemExit(f"Unknown default_region: {self.default_region}")
        for code in self.associate_tags:
            if code.upper() not in REGIONS:
                raise SystemExit(f"associate_tags: unknown region {code}")
        for f in fields(self.thresholds):
            value = getattr(self.thresholds, f.name)
            if not 0.0 <= value <= 1.0:
                raise SystemExit(f"thresholds.{f.name} must be between 0 and 1 (got {value})")
        for name in self.providers:
            if name not in PROVIDER_NAMES:
                raise SystemExit(f"Unknown provider in settings: {name}")
        if self.scrape_delay_s < 0 or self.audit_delay_s < 0:
            raise SystemExit("Delays must be >= 0 seconds.")
        if self.google_rate_per_sec <= 0:
            raise SystemExit("google_rate_per_sec must be > 0.")
        if self.timeout_s <= 0:
            raise SystemExit("timeout_s must be > 0.")


def _read_settings_file(path: Path) -> dict:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except FileNotFoundError as e:
        raise SystemExit(f"Settings file not found: {path}") from e
    except (OSError, yaml.YAMLError) as e:
        raise SystemExit(f"Failed to read settings file: {path} ({e})") from e
    if not isinstance(data, dict):
        raise SystemExit(f"Settings file must be a mapping: {path}")
    logger.info("Loaded settings file: %s", path)
    return data


def _thresholds_from(data: dict) -> MatchThresholds:
    raw = data.get("thresholds") or {}
    known = {f.name for f in fields(MatchThresholds)}
    unknown = set(raw) - known
    if unknown:
        raise SystemExit(f"Unknown thresholds: {', '.join(sorted(unknown))}")
    try:
        return replace(DEFAULT_THRESHOLDS, **{k: float(v) for k, v in raw.items()})
    except (TypeError, ValueError) as e:
        raise SystemExit(f"Invalid thresholds: {e}") from e


def _providers_from(data: dict) -> Dict[str, ProviderSettings]:
    out = _default_providers()
    for name, cfg in (data.get("providers") or {}).items():
        base = out.get(name, ProviderSettings(enabled=True, priority=99))
        cfg = cfg or {}
        out[name] = ProviderSettings(
            enabled=bool(cfg.get("enabled", base.enabled)),
            priority=int(cfg.get("priority", base.priority)),
        )
    return out


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Build Settings from the YAML file (explicit path, else enricher.yaml in
    the CWD when present) and then the environment, which wins.
    """
    data: dict = {}
    if path:
        data = _read_settings_file(Path(path))
    else:
        default_path = Path.cwd() / DEFAULT_SETTINGS_FILE
        if default_path.exists():
            data = _read_settings_file(default_path)

    tags = {str(k).upper(): str(v) for k, v in (data.get("associate_tags") or {}).items()}
    env_tag = (os.getenv("AMAZON_ASSOCIATE_TAG") or "").strip()
    default_region = str(data.get("default_region") or DEFAULT_REGION).upper()
    if default_region == "GB":
        default_region = "UK"
    if env_tag:
        tags[default_region] = env_tag

    try:
        providers = _providers_from(data)
    except (AttributeError, TypeError, ValueError) as e:
        raise SystemExit(f"Invalid providers section: {e}") from e
    providers["amazon"] = replace(
        providers["amazon"], enabled=env_flag("AMAZON_SCRAPER_SEARCH_ENABLED", providers["amazon"].enabled)
    )
    providers["open_library"] = replace(
        providers["open_library"], enabled=env_flag("OPEN_LIBRARY_ENABLED", providers["open_library"].enabled)
    )

    try:
        settings = Settings(
            default_region=default_region,
            associate_tags=tags,
            thresholds=_thresholds_from(data),
            providers=providers,
            scrape_delay_s=float(data.get("scrape_delay_s", 3.0)),
            audit_delay_s=float(data.get("audit_delay_s", 3.0)),
            google_rate_per_sec=float(data.get("google_rate_per_sec", 5.0)),
            timeout_s=int(data.get("timeout_s", 15)),
            cache_path=(os.getenv("BOOK_ENRICHER_CACHE") or "").strip() or data.get("cache_path") or DEFAULT_CACHE_PATH,
            google_api_key=(os.getenv("GOOGLE_BOOKS_API_KEY") or "").strip() or None,
            pa_api_enabled=env_flag("AMAZON_PA_API_ENABLED", bool(data.get("pa_api_enabled", False))),
            pa_api_access_key=(os.getenv("AMAZON_PA_API_ACCESS_KEY") or "").strip() or None,
            pa_api_secret_key=(os.getenv("AMAZON_PA_API_SECRET_KEY") or "").strip() or None,
        )
    except (TypeError, ValueError) as e:
        raise SystemExit(f"Invalid settings value: {e}") from e
    settings.validate()
    return settings
