# meter_import/run_local.py
import sys
import tempfile
from pathlib import Path

from meter_import.config import Config, ImportSettings, configure_logging
from meter_import.lib.import_core.dispatcher import ImportDispatcher
from meter_import.lib.import_core.importer import ImportManager
from meter_import.lib.import_core.session import ImportSession
from meter_import.lib.local_store import LocalHistoryStore
from meter_import.lib.local_transport import LocalTransport


def main(csv_path, utility_type, meter_name, data_dir=None):
    config = Config()
    store = LocalHistoryStore(Path(data_dir) if data_dir else config.DATA_DIR)
    transport = LocalTransport()
    transport.register(config.endpoint, ImportManager(store, ImportSettings.from_env()).handle_message)

    import_session = ImportSession(ImportDispatcher(transport, config.endpoint))
    import_session.select_files([Path(csv_path)])
    import_session.utility_type = utility_type
    import_session.import_name = meter_name

    result = import_session.submit()
    if result is None:
        print(f"Import failed: {import_session.error}")
        return 1

    print(f"Imported {result.count} records from {result.first} to {result.last}")
    for year, stats in sorted(store.get_history(utility_type, meter_name)["history"].items()):
        print(f" - {year}: {stats}")
    return 0


if __name__ == "__main__":
    configure_logging()
    if len(sys.argv) < 4:
        print("usage: python -m meter_import.run_local FILE TYPE NAME [DATA_DIR]")
        sys.exit(2)
    data_dir = sys.argv[4] if len(sys.argv) > 4 else tempfile.mkdtemp(prefix="meter-import-")
    sys.exit(main(sys.argv[1], sys.argv[2], sys.argv[3], data_dir))
