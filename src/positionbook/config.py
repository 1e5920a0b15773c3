"""Runtime configuration: ``config.json`` in the data directory, plus environment overrides.

Recognised environment variables (a ``.env`` file is honoured by the CLI):

    POSITIONBOOK_DATA_DIR        where the primary JSON files live
    POSITIONBOOK_BASE_CURRENCY   reporting currency, e.g. "KRW"
    SUPABASE_URL                 enables the Supabase mirror when set
    SUPABASE_ANON_KEY            together with SUPABASE_URL

Example ``config.json``::

    {
        "base_currency": "KRW",
        "mirror": {"type": "directory", "path": "~/Dropbox/positionbook"},
        "mirror_timeout": 5,
        "exchange_rates": {"USD/KRW": "1385.5"}
    }
"""

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Mapping

from .currency import Currency, FixedExchangeRateManager, parse_currency
from .models import to_decimal
from .reconciliation import make_symbol_shape_policy
from .service import PortfolioService
from .storage import JsonDirectoryMirror, JsonFileRepository, MirrorStore, PersistenceGateway, SupabaseMirror

DEFAULT_DATA_DIR = Path.home() / ".positionbook"
CONFIG_FILENAME = "config.json"
MIRROR_TYPES = ("none", "directory", "supabase")


@dataclass
class Settings:
    """Resolved configuration for one run."""

    data_dir: Path = DEFAULT_DATA_DIR
    base_currency: Currency = Currency.KRW
    local_currency: Currency = Currency.KRW
    foreign_currency: Currency = Currency.USD
    mirror: dict = field(default_factory=dict)
    mirror_timeout: float = 10.0
    exchange_rates: dict[tuple[Currency, Currency], Decimal] = field(default_factory=dict)

    @property
    def mirror_type(self) -> str:
        return str(self.mirror.get("type") or "none").lower()


def _load_config(config_path: Path) -> dict:
    """Read a JSON config file. Missing or unreadable files yield an empty dict."""
    if not config_path.exists():
        return {}
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        print(f"[Config] Ignoring {config_path}: {e}", flush=True)
        return {}
    return data if isinstance(data, dict) else {}


def _parse_exchange_rates(raw: Mapping[str, object]) -> dict[tuple[Currency, Currency], Decimal]:
    """Parse {"USD/KRW": "1340"} style entries."""
    rates = {}
    for pair, value in raw.items():
        source, _, target = pair.partition("/")
        if not target:
            raise ValueError(f"Exchange rate key must look like 'USD/KRW', got '{pair}'")
        rates[(parse_currency(source, Currency.USD), parse_currency(target, Currency.USD))] = to_decimal(value, pair)
    return rates


def load_config(config_path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from a config file and the environment.

    Environment variables win over the file, which wins over the defaults.

    Args:
        config_path: Explicit config file. Defaults to ``config.json`` in the
            data directory.
        environ: Environment to read (defaults to os.environ).

    Returns:
        The resolved Settings.

    Raises:
        ValueError: If a currency code, exchange rate or mirror type is invalid.
    """
    env = os.environ if environ is None else environ
    env_data_dir = env.get("POSITIONBOOK_DATA_DIR")

    if config_path is None:
        config_path = Path(env_data_dir or DEFAULT_DATA_DIR).expanduser() / CONFIG_FILENAME
    raw = _load_config(Path(config_path))

    data_dir = Path(env_data_dir or raw.get("data_dir") or DEFAULT_DATA_DIR).expanduser()

    mirror = dict(raw.get("mirror") or {})
    if env.get("SUPABASE_URL") and env.get("SUPABASE_ANON_KEY"):
        mirror.setdefault("type", "supabase")
        if str(mirror["type"]).lower() == "supabase":
            mirror["url"] = env["SUPABASE_URL"]
            mirror["api_key"] = env["SUPABASE_ANON_KEY"]

    settings = Settings(
        data_dir=data_dir,
        base_currency=parse_currency(env.get("POSITIONBOOK_BASE_CURRENCY") or raw.get("base_currency"), Currency.KRW),
        local_currency=parse_currency(raw.get("local_currency"), Currency.KRW),
        foreign_currency=parse_currency(raw.get("foreign_currency"), Currency.USD),
        mirror=mirror,
        mirror_timeout=float(raw.get("mirror_timeout", 10.0)),
        exchange_rates=_parse_exchange_rates(raw.get("exchange_rates") or {}),
    )
    if settings.mirror_type not in MIRROR_TYPES:
        raise ValueError(f"Unknown mirror type '{settings.mirror_type}', expected one of {', '.join(MIRROR_TYPES)}")
    return settings


def build_mirror(settings: Settings) -> MirrorStore | None:
    mirror_type = settings.mirror_type
    if mirror_type == "directory":
        path = settings.mirror.get("path")
        if not path:
            raise ValueError("A directory mirror needs a 'path'")
        return JsonDirectoryMirror(Path(path).expanduser())
    if mirror_type == "supabase":
        return SupabaseMirror(
            settings.mirror.get("url"),
            settings.mirror.get("api_key"),
            user_id=settings.mirror.get("user_id", "default_user"),
            timeout=settings.mirror_timeout,
        )
    return None


def build_gateway(settings: Settings) -> PersistenceGateway:
    """Wire the primary JSON store in data_dir to the configured mirror."""
    return PersistenceGateway(
        primary=JsonFileRepository(settings.data_dir),
        mirror=build_mirror(settings),
        mirror_timeout=settings.mirror_timeout,
    )


def build_service(settings: Settings) -> PortfolioService:
    return PortfolioService(
        build_gateway(settings),
        currency_policy=make_symbol_shape_policy(settings.local_currency, settings.foreign_currency),
        base_currency=settings.base_currency,
        rates=FixedExchangeRateManager(settings.exchange_rates),
    )
