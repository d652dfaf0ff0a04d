# meter_import/lib/import_core/session.py
from typing import Any, Dict, Iterable, Optional, Union

from .dispatcher import ImportDispatcher
from .errors import ImportInProgressError, MeterImportError
from .models import ImportResult, UtilityType
from .payload import FileSelection, build_import_request, display_name


class ImportSession:
    """
    Caller-side state of the import form: the selected file, the chosen
    utility type and import name, and the single result or error on display.

    A successful import clears the file and the name; a failed one keeps
    them so the caller can correct and resubmit.
    """

    def __init__(self, dispatcher: ImportDispatcher):
        self.dispatcher = dispatcher
        self.selection = FileSelection()
        self.utility_type: Union[UtilityType, str] = UtilityType.GAS
        self.import_name = ""
        self.result: Optional[ImportResult] = None
        self.error: Optional[str] = None

    def select_files(self, files: Iterable) -> None:
        files = list(files)
        if not files:
            return
        self.selection.select(files)
        self.result = None
        self.error = None

    def submit(self) -> Optional[ImportResult]:
        if self.selection.current is None:
            return None

        file = self.selection.current
        utility_type = self.utility_type
        import_name = self.import_name

        try:
            result = self.dispatcher.run(
                lambda: build_import_request(file, utility_type, import_name)
            )
        except ImportInProgressError:
            # the pending attempt owns the display
            raise
        except MeterImportError as e:
            self.result = None
            self.error = e.message
            return None

        self.result = result
        self.error = None
        self.selection.clear()
        self.import_name = ""
        return result

    def status(self) -> Dict[str, Any]:
        utility_type = self.utility_type.value if isinstance(self.utility_type, UtilityType) else self.utility_type
        return {
            "state": self.dispatcher.state.value,
            "outcome": self.dispatcher.outcome.value if self.dispatcher.outcome else None,
            "file": display_name(self.selection.current),
            "type": utility_type,
            "meterName": self.import_name,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }
