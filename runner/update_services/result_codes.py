"""Result-code and HRESULT translation for Windows Update operations."""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any, Dict

logger = logging.getLogger(__name__)


class OperationResultCode(IntEnum):
    """OperationResultCode as returned by IDownloadResult/IInstallationResult.

    Any value outside the documented range is folded into UNEXPECTED.
    """

    UNEXPECTED = -1
    NOT_STARTED = 0
    IN_PROGRESS = 1
    SUCCEEDED = 2
    SUCCEEDED_WITH_ERRORS = 3
    FAILED = 4
    ABORTED = 5

    @classmethod
    def from_value(cls, value: Any) -> "OperationResultCode":
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            logger.debug(f"Unknown operation result code: {value!r}")
            return cls.UNEXPECTED


_RESULT_DESCRIPTIONS: Dict[OperationResultCode, str] = {
    OperationResultCode.SUCCEEDED: "Succeeded",
    OperationResultCode.SUCCEEDED_WITH_ERRORS: "Succeeded with errors",
    OperationResultCode.FAILED: "Failed",
    OperationResultCode.ABORTED: "Cancelled",
    OperationResultCode.NOT_STARTED: "Unexpected (not started)",
    OperationResultCode.IN_PROGRESS: "Unexpected (in progress)",
    OperationResultCode.UNEXPECTED: "Unexpected",
}


def describe_result_code(code: OperationResultCode) -> str:
    return _RESULT_DESCRIPTIONS[code]


def log_level_for(code: OperationResultCode) -> int:
    """Logging level used when reporting a stage or per-update result."""
    if code == OperationResultCode.SUCCEEDED:
        return logging.INFO
    if code == OperationResultCode.SUCCEEDED_WITH_ERRORS:
        return logging.WARNING
    return logging.ERROR


# The update handler needs content that was not part of the first download.
WU_E_UH_NEEDANOTHERDOWNLOAD = 0x8024200C

KNOWN_HRESULTS: Dict[int, str] = {
    0x00000000: "S_OK",
    0x80240016: "WU_E_INSTALL_NOT_ALLOWED",
    0x80240017: "WU_E_NOT_APPLICABLE",
    0x8024001E: "WU_E_SERVICE_STOP",
    0x80240020: "WU_E_NO_INTERACTIVE_USER",
    0x80240022: "WU_E_ALL_UPDATES_FAILED",
    0x80240024: "WU_E_NO_UPDATE",
    0x8024002B: "WU_E_LEGACYSERVER",
    0x8024200B: "WU_E_UH_INSTALLERFAILURE",
    WU_E_UH_NEEDANOTHERDOWNLOAD: "WU_E_UH_NEEDANOTHERDOWNLOAD",
    0x80242016: "WU_E_UH_POSTREBOOTUNEXPECTEDSTATE",
    0x80246007: "WU_E_DM_NOTDOWNLOADED",
    0x80246008: "WU_E_DM_FAILTOCONNECTTOBITS",
    0x80070005: "E_ACCESSDENIED",
    0x8007000E: "E_OUTOFMEMORY",
    0x80070422: "ERROR_SERVICE_DISABLED",
}


def normalize_hresult(value: Any) -> int:
    """Return an HRESULT as an unsigned 32-bit integer.

    COM reports HRESULTs as signed Int32 (e.g. -2145116148), so both forms are
    accepted.
    """
    try:
        return int(value or 0) & 0xFFFFFFFF
    except (TypeError, ValueError):
        return 0


def format_hresult(value: Any) -> str:
    code = normalize_hresult(value)
    name = KNOWN_HRESULTS.get(code)
    return f"0x{code:08X} ({name})" if name else f"0x{code:08X}"


def needs_another_download(hresult: Any) -> bool:
    return normalize_hresult(hresult) == WU_E_UH_NEEDANOTHERDOWNLOAD
