# meter_import/lib/import_core/models.py
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict

IMPORT_COMMAND = "importCSV"
IMPORT_FORMAT = "generic"


class UtilityType(str, Enum):
    GAS = "gas"
    WATER = "water"
    ELECTRICITY = "electricity"
    PV = "pv"


@dataclass(frozen=True)
class AdapterAddress:
    adapter_name: str
    instance_id: int

    def __str__(self) -> str:
        return f"{self.adapter_name}.{self.instance_id}"

    @classmethod
    def parse(cls, text: str) -> "AdapterAddress":
        """
        Parse 'utility-monitor.0' into AdapterAddress('utility-monitor', 0).
        """
        name, _, instance = text.rpartition(".")
        if not name or not instance.isdigit():
            raise ValueError(f"Invalid adapter address: {text!r}")
        return cls(adapter_name=name, instance_id=int(instance))


@dataclass(frozen=True)
class ImportRequest:
    utility_type: UtilityType
    import_name: str
    content: str
    format: str = IMPORT_FORMAT

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": self.utility_type.value,
            "meterName": self.import_name,
            "content": self.content,
            "format": self.format,
        }


@dataclass(frozen=True)
class ImportResult:
    count: int
    first: str
    last: str

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "first": self.first, "last": self.last}


@dataclass
class MeterReading:
    timestamp: datetime
    value: float
