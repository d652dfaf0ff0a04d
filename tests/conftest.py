import base64
import os
import tempfile
from pathlib import Path

import pytest

os.environ["USE_LAMBDA"] = "false"
os.environ["USE_DYNAMODB"] = "false"
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="meter-import-tests-"))
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret")

from meter_import.config import ImportSettings
from meter_import.lib.import_core.models import UtilityType

SAMPLE_CSV = Path(__file__).parent / "sample.csv"


@pytest.fixture
def sample_path():
    return SAMPLE_CSV


@pytest.fixture
def sample_text():
    return SAMPLE_CSV.read_text(encoding="utf-8")


@pytest.fixture
def to_data_url():
    def encode(text: str) -> str:
        return "data:text/csv;base64," + base64.b64encode(text.encode("utf-8")).decode("ascii")
    return encode


@pytest.fixture
def settings():
    return ImportSettings(gas_brennwert=11.5, gas_z_zahl=0.95, prices={UtilityType.GAS: 0.1})
