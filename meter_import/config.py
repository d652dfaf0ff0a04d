# meter_import/config.py
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

from meter_import.lib.import_core.models import AdapterAddress, UtilityType

load_dotenv()

GAS_BRENNWERT_DEFAULT = 11.5  # kWh/m³
GAS_Z_ZAHL_DEFAULT = 0.95


def env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw.replace(",", "."))
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class ImportSettings:
    """Backend import settings pulled from environment variables."""

    gas_brennwert: float = GAS_BRENNWERT_DEFAULT
    gas_z_zahl: float = GAS_Z_ZAHL_DEFAULT
    prices: Dict[UtilityType, float] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "ImportSettings":
        return cls(
            gas_brennwert=env_float("GAS_BRENNWERT", GAS_BRENNWERT_DEFAULT) or GAS_BRENNWERT_DEFAULT,
            gas_z_zahl=env_float("GAS_Z_ZAHL", GAS_Z_ZAHL_DEFAULT) or GAS_Z_ZAHL_DEFAULT,
            prices={t: env_float(f"{t.name}_PRICE", 0.0) for t in UtilityType},
        )

    def price_for(self, utility_type: UtilityType) -> float:
        return self.prices.get(utility_type, 0.0)


@dataclass(frozen=True)
class Config:
    """Application configuration pulled from environment variables."""

    ADAPTER_NAME: str = os.getenv("ADAPTER_NAME", "utility-monitor")
    ADAPTER_INSTANCE: int = int(os.getenv("ADAPTER_INSTANCE", "0"))
    USE_LAMBDA: bool = env_flag("USE_LAMBDA")
    USE_DYNAMODB: bool = env_flag("USE_DYNAMODB")
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", "meter_import/data"))
    SECRET_KEY: str = os.getenv("FLASK_SECRET_KEY", "")
    MAX_SESSIONS: int = int(os.getenv("MAX_IMPORT_SESSIONS", "1000"))

    @property
    def endpoint(self) -> AdapterAddress:
        return AdapterAddress(self.ADAPTER_NAME, self.ADAPTER_INSTANCE)


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application-wide logging only once."""

    if not logging.getLogger().handlers:
        logging.basicConfig(level=level)
    logging.getLogger("meter_import").setLevel(level)
