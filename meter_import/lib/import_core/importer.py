# meter_import/lib/import_core/importer.py
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from .csv_parser import decode_content, parse_readings
from .errors import MeterImportError
from .history import HistoryAggregator
from .models import IMPORT_COMMAND, IMPORT_FORMAT, ImportResult, UtilityType
from .payload import coerce_utility_type, validate_import_name

logger = logging.getLogger(__name__)


class ImportManager:
    """
    Backend side of the import: answers 'importCSV' messages.

    The store is any object offering ensure_meter, write_year,
    set_last_import and get_history (DynamoDBService, LocalHistoryStore).
    """

    def __init__(self, store, settings):
        self.store = store
        self.settings = settings

    def handle_message(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        event: {"command": "importCSV", "message": {type, meterName, content, format}}
        Always answers with a single dict: the summary or {"error": ...}.
        """
        command = (event or {}).get("command")
        if command != IMPORT_COMMAND:
            return {"error": f"Unknown command: {command}"}

        message = event.get("message") or {}
        utility_type = message.get("type")
        meter_name = message.get("meterName")
        fmt = message.get("format") or IMPORT_FORMAT
        logger.info("Starting CSV import for %s.%s (format: %s)", utility_type, meter_name, fmt)

        try:
            result = self.process_import(utility_type, meter_name, message.get("content") or "", fmt)
        except (MeterImportError, ValueError) as e:
            logger.error("Failed to process CSV: %s", e)
            return {"error": str(e)}
        except Exception as e:
            # storage failures are answered like content errors
            logger.exception("Import of %s.%s failed", utility_type, meter_name)
            return {"error": str(e) or e.__class__.__name__}

        response = {"success": True}
        response.update(result.to_dict())
        return response

    def process_import(self, utility_type, meter_name: str, content: str, fmt: str = IMPORT_FORMAT,
                       now: Optional[datetime] = None) -> ImportResult:
        utype = coerce_utility_type(utility_type)
        name = validate_import_name(meter_name)
        now = now or datetime.now()

        readings = parse_readings(decode_content(content), utype)
        aggregator = HistoryAggregator(readings, utype, self.settings)
        first, last = aggregator.readings[0].timestamp, aggregator.readings[-1].timestamp
        logger.info("Found %d valid records from %s to %s", len(readings), first.date(), last.date())

        self.store.ensure_meter(utype.value, name)
        for year, stats in aggregator.yearly_stats(now.year).items():
            self.store.write_year(utype.value, name, year, stats, include_volume=utype is UtilityType.GAS)
        self.store.set_last_import(utype.value, name, int(time.time() * 1000))

        return ImportResult(
            count=len(aggregator.readings),
            first=first.date().isoformat(),
            last=last.date().isoformat(),
        )
