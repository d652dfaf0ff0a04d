"""
Local history storage used when DynamoDB is disabled.

All meters live in one JSON document (history.json) inside the data
directory:

    {
        "gas.historic": {
            "type": "gas",
            "meterName": "historic",
            "lastImport": 1700000000000,
            "history": {"2022": {"consumption": 1234.5, "volume": 113.0, "costs": 0.0, "count": 12}}
        }
    }
"""
import json
import threading
from pathlib import Path
from typing import Dict


class LocalHistoryStore:
    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.data_dir / "history.json"
        self._lock = threading.Lock()

    def _load(self) -> Dict:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _save(self, doc: Dict) -> None:
        tmp = self.path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2, sort_keys=True)
        tmp.replace(self.path)

    def ensure_meter(self, utility_type: str, meter_name: str) -> None:
        with self._lock:
            doc = self._load()
            key = f"{utility_type}.{meter_name}"
            if key not in doc:
                doc[key] = {"type": utility_type, "meterName": meter_name, "lastImport": 0, "history": {}}
                self._save(doc)

    def write_year(self, utility_type: str, meter_name: str, year: int, stats, include_volume: bool = False) -> None:
        with self._lock:
            doc = self._load()
            meter = doc.setdefault(
                f"{utility_type}.{meter_name}",
                {"type": utility_type, "meterName": meter_name, "lastImport": 0, "history": {}},
            )
            entry = {"consumption": stats.consumption, "costs": stats.costs, "count": stats.count}
            if include_volume:
                entry["volume"] = stats.volume
            # re-importing a year replaces it
            meter["history"][str(year)] = entry
            self._save(doc)

    def set_last_import(self, utility_type: str, meter_name: str, timestamp_ms: int) -> None:
        with self._lock:
            doc = self._load()
            key = f"{utility_type}.{meter_name}"
            doc.setdefault(key, {"type": utility_type, "meterName": meter_name, "history": {}})
            doc[key]["lastImport"] = timestamp_ms
            self._save(doc)

    def get_history(self, utility_type: str, meter_name: str) -> Dict:
        with self._lock:
            meter = self._load().get(f"{utility_type}.{meter_name}")
        if not meter:
            return {}
        return {"lastImport": meter.get("lastImport", 0), "history": meter.get("history", {})}
