"""Reboot decision taken once after the install stage."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Optional

from sentry_config import add_breadcrumb
from subprocess_utils import request_system_restart

logger = logging.getLogger(__name__)


class RebootState(str, Enum):
    NO_REBOOT_NEEDED = "NoRebootNeeded"
    REBOOT_NEEDED_DEFERRED = "RebootNeededDeferred"
    REBOOT_NEEDED_IMMEDIATE = "RebootNeededImmediate"


def decide_reboot(reboot_required: bool, auto_reboot: bool) -> RebootState:
    if not reboot_required:
        return RebootState.NO_REBOOT_NEEDED
    if auto_reboot:
        return RebootState.REBOOT_NEEDED_IMMEDIATE
    return RebootState.REBOOT_NEEDED_DEFERRED


def apply_reboot_decision(
    state: RebootState,
    delay_seconds: int,
    timeout_seconds: int,
    restart: Optional[Callable[[int], object]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Log the decision and, for an immediate reboot, request the restart.

    The restart is fire-and-forget: once shutdown.exe has accepted it, the
    runner carries on to exit. Returns True if a restart was requested.
    """
    if state == RebootState.NO_REBOOT_NEEDED:
        logger.info("No reboot required")
        return False

    if state == RebootState.REBOOT_NEEDED_DEFERRED:
        logger.info("A reboot is required to complete the installation; please restart manually")
        return False

    logger.info(
        f"A reboot is required; restarting in {delay_seconds} seconds "
        f"(shutdown timeout {timeout_seconds} seconds)"
    )
    add_breadcrumb(
        "Requesting system restart",
        category="reboot",
        level="info",
        delay_seconds=delay_seconds,
        timeout_seconds=timeout_seconds,
    )
    if delay_seconds > 0:
        sleep(delay_seconds)
    (restart or request_system_restart)(timeout_seconds)
    return True
