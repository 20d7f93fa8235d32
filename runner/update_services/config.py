"""Run options for the Windows Update workflow.

Options come from a task dict (``{"type": "windows_update", ...}``) or the
command line; a few defaults can be overridden from the environment
(optionally populated from a ``.env`` file by the runner):

  PATCHRUNNER_LOG_DIR          directory for the default log file
  PATCHRUNNER_REBOOT_DELAY     seconds to wait before requesting a restart
  PATCHRUNNER_REBOOT_TIMEOUT   shutdown.exe /t value for the restart
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

LOG_DIR_ENV = "PATCHRUNNER_LOG_DIR"
REBOOT_DELAY_ENV = "PATCHRUNNER_REBOOT_DELAY"
REBOOT_TIMEOUT_ENV = "PATCHRUNNER_REBOOT_TIMEOUT"

DEFAULT_LOG_NAME = "Get-WindowsUpdates.log"
DEFAULT_REBOOT_DELAY = 15
DEFAULT_REBOOT_TIMEOUT = 60


def default_log_dir() -> Path:
    env_dir = os.environ.get(LOG_DIR_ENV)
    if env_dir:
        return Path(env_dir)
    if os.name == "nt":
        program_data = os.environ.get("ProgramData") or r"C:\ProgramData"
        return Path(program_data) / "patchrunner" / "logs"
    return Path.home() / ".patchrunner" / "logs"


def default_log_path() -> Path:
    return default_log_dir() / DEFAULT_LOG_NAME


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using {default}")
        return default


def default_reboot_delay() -> int:
    return _env_int(REBOOT_DELAY_ENV, DEFAULT_REBOOT_DELAY)


def default_reboot_timeout() -> int:
    return _env_int(REBOOT_TIMEOUT_ENV, DEFAULT_REBOOT_TIMEOUT)


@dataclass
class RunOptions:
    include_optional_updates: bool = False
    exclude_reboot_required: bool = False
    microsoft_update: bool = False
    no_download: bool = False
    no_install: bool = False
    show_details: bool = False
    reboot: bool = False
    auto_accept_eula: bool = False
    log_path: Optional[str] = None
    reboot_delay_seconds: int = field(default_factory=default_reboot_delay)
    reboot_timeout_seconds: int = field(default_factory=default_reboot_timeout)

    @classmethod
    def from_task(cls, task: Dict[str, Any]) -> "RunOptions":
        """Build options from a task dict; unknown keys are ignored."""
        options = cls(
            include_optional_updates=bool(task.get("include_optional_updates", False)),
            exclude_reboot_required=bool(task.get("exclude_reboot_required", False)),
            microsoft_update=bool(task.get("microsoft_update", False)),
            no_download=bool(task.get("no_download", False)),
            no_install=bool(task.get("no_install", False)),
            show_details=bool(task.get("show_details", False)),
            reboot=bool(task.get("reboot", False)),
            auto_accept_eula=bool(task.get("auto_accept_eula", False)),
            log_path=task.get("log_path") or None,
        )
        if task.get("reboot_delay_seconds") is not None:
            options.reboot_delay_seconds = max(0, int(task["reboot_delay_seconds"]))
        if task.get("reboot_timeout_seconds") is not None:
            options.reboot_timeout_seconds = max(0, int(task["reboot_timeout_seconds"]))
        return options

    def resolved_log_path(self) -> Path:
        return Path(self.log_path) if self.log_path else default_log_path()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
