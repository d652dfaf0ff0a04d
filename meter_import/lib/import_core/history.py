# meter_import/lib/import_core/history.py
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List

from .models import MeterReading, UtilityType


def round_half_up(value: float, decimals: int = 2) -> float:
    quantum = Decimal(1).scaleb(-decimals)
    # go through str() so 2.675 stays 2.675 instead of its binary neighbour
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass
class YearStats:
    consumption: float = 0.0
    volume: float = 0.0
    costs: float = 0.0
    count: int = 0


class HistoryAggregator:
    def __init__(self, readings: List[MeterReading], utility_type: UtilityType, settings):
        # Ensure readings are sorted by timestamp
        self.readings = sorted(readings, key=lambda r: r.timestamp)
        self.utility_type = utility_type
        self.settings = settings

    def yearly_stats(self, current_year: int) -> Dict[int, YearStats]:
        """
        Sums reading values per calendar year for every year before
        current_year. The running year is left to live metering.

        Gas values are in kWh; the volume in m³ is value / (brennwert * z-Zahl).
        Costs use the configured price of the utility type.
        """
        totals = defaultdict(YearStats)
        is_gas = self.utility_type is UtilityType.GAS
        factor = self.settings.gas_brennwert * self.settings.gas_z_zahl

        for r in self.readings:
            year = r.timestamp.year
            if year >= current_year:
                continue
            stats = totals[year]
            stats.consumption += r.value
            if is_gas:
                stats.volume += r.value / factor
            stats.count += 1

        price = self.settings.price_for(self.utility_type)
        result = {}
        for year, stats in sorted(totals.items()):
            result[year] = YearStats(
                consumption=round_half_up(stats.consumption),
                volume=round_half_up(stats.volume),
                costs=round_half_up(stats.consumption * price),
                count=stats.count,
            )
        return result
