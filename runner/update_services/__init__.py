"""Windows Update selection-and-install workflow."""

from .config import RunOptions
from .errors import CatalogUnavailable, ProviderCallFailed, WindowsUpdateError
from .models import SelectionSet, SkipReason, StageResult, Update, UpdateIdentity, UpdateResult
from .reboot import RebootState, decide_reboot
from .result_codes import OperationResultCode, describe_result_code
from .selection import select_updates
from .windows_update_service import TASK_TYPE, WindowsUpdateWorkflow, run_windows_update
from .wua_provider import PowerShellUpdateProvider, UpdateProvider, UpdateSession, build_criteria

__all__ = [
    "CatalogUnavailable",
    "OperationResultCode",
    "PowerShellUpdateProvider",
    "ProviderCallFailed",
    "RebootState",
    "RunOptions",
    "SelectionSet",
    "SkipReason",
    "StageResult",
    "TASK_TYPE",
    "Update",
    "UpdateIdentity",
    "UpdateProvider",
    "UpdateResult",
    "UpdateSession",
    "WindowsUpdateError",
    "WindowsUpdateWorkflow",
    "build_criteria",
    "decide_reboot",
    "describe_result_code",
    "run_windows_update",
    "select_updates",
]
