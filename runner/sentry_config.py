"""Sentry error tracking for the update runner.

Tracking is only switched on when a DSN is configured through
``PATCHRUNNER_SENTRY_DSN``. Until ``init_sentry`` succeeds every helper in this
module is a no-op, so the workflow can record breadcrumbs and spans
unconditionally.

Events carry a ``host`` context describing the machine being patched (OS
build, Windows Update service state, free space on the system drive and
uptime) collected with psutil when Sentry starts.
"""

import logging
import os
import platform
import sys
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

import psutil
import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

SENTRY_DSN_ENV = "PATCHRUNNER_SENTRY_DSN"
SENTRY_ENV_ENV = "PATCHRUNNER_ENV"
VERSION_ENV = "PATCHRUNNER_VERSION"

WUA_SERVICE_NAME = "wuauserv"

logger = logging.getLogger(__name__)

_sentry_initialized = False


def detect_environment() -> str:
    """Return 'development' or 'production'.

    ``PATCHRUNNER_ENV`` wins; otherwise a frozen executable counts as
    production and anything else as development.
    """
    value = os.environ.get(SENTRY_ENV_ENV, "").strip().lower()
    if value in ("production", "prod"):
        return "production"
    if value in ("development", "dev"):
        return "development"
    return "production" if getattr(sys, "frozen", False) else "development"


def _update_service_state() -> Dict[str, Any]:
    if not hasattr(psutil, "win_service_get"):
        return {"available": False}
    try:
        info = psutil.win_service_get(WUA_SERVICE_NAME).as_dict()
    except (psutil.Error, OSError) as e:
        return {"available": False, "error": str(e)}
    return {
        "available": True,
        "status": info.get("status"),
        "start_type": info.get("start_type"),
    }


def _system_drive_usage() -> Dict[str, Any]:
    # Windows Update stages its downloads on the system drive.
    path = os.environ.get("SystemDrive", "C:") + "\\" if os.name == "nt" else "/"
    try:
        usage = psutil.disk_usage(path)
    except (psutil.Error, OSError) as e:
        return {"path": path, "error": str(e)}
    return {
        "path": path,
        "free_gb": round(usage.free / (1024**3), 2),
        "percent_used": usage.percent,
    }


def get_system_context() -> Dict[str, Any]:
    """Describe the host being updated."""
    context: Dict[str, Any] = {
        "os": platform.system(),
        "os_release": platform.release(),
        "os_build": platform.version(),
        "architecture": platform.machine(),
        "python": platform.python_version(),
        "frozen": bool(getattr(sys, "frozen", False)),
        "update_service": _update_service_state(),
        "system_drive": _system_drive_usage(),
    }
    try:
        context["uptime_hours"] = round((time.time() - psutil.boot_time()) / 3600, 1)
        context["memory_available_gb"] = round(psutil.virtual_memory().available / (1024**3), 2)
    except (psutil.Error, OSError) as e:
        logger.debug(f"Failed to collect host metrics: {e}")
    return context


def init_sentry(
    enabled: bool = True,
    send_pii: bool = False,
    traces_sample_rate: float = 1.0,
    send_system_info: bool = True,
    dsn: Optional[str] = None,
) -> bool:
    """Initialize the Sentry SDK. Safe to call multiple times.

    Args:
        enabled: Whether to enable Sentry tracking
        send_pii: Whether to include PII like hostname/username
        traces_sample_rate: Performance monitoring sample rate, 0.0-1.0
        send_system_info: Whether to attach the host context to events
        dsn: Sentry DSN; defaults to ``PATCHRUNNER_SENTRY_DSN``

    Returns:
        bool: True if Sentry is initialized, False otherwise
    """
    global _sentry_initialized

    if not enabled:
        logger.debug("Sentry is disabled")
        return False
    if _sentry_initialized:
        return True

    dsn = dsn or os.environ.get(SENTRY_DSN_ENV)
    if not dsn:
        logger.debug(f"{SENTRY_DSN_ENV} not set, Sentry tracking disabled")
        return False

    environment = detect_environment()
    host = get_system_context() if send_system_info else {}

    def before_send(event, hint):
        if host:
            event.setdefault("contexts", {})["host"] = host
            tags = event.setdefault("tags", {})
            tags["os_build"] = host.get("os_build", "unknown")
            tags["wuauserv"] = host["update_service"].get("status", "unknown")
        return event

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=f"patchrunner@{os.environ.get(VERSION_ENV, 'dev')}",
            traces_sample_rate=traces_sample_rate,
            send_default_pii=send_pii,
            before_send=before_send,
            # Log records become breadcrumbs only; events are sent explicitly.
            integrations=[LoggingIntegration(level=logging.INFO, event_level=None)],
        )
    except Exception as e:  # noqa: BLE001
        logger.error(f"Failed to initialize Sentry: {e}")
        return False

    _sentry_initialized = True
    logger.debug(f"Sentry initialized ({environment})")
    return True


@contextmanager
def _task_scope(task_type: str, task_data, extra_context, fingerprint: str):
    with sentry_sdk.new_scope() as scope:
        scope.fingerprint = [task_type, fingerprint]
        scope.set_tag("task_type", task_type)
        if task_data:
            scope.set_context("task", {"type": task_type, "data": task_data})
        for key, value in (extra_context or {}).items():
            scope.set_context(key, value)
        yield scope


def capture_task_exception(
    exception: BaseException,
    task_type: str,
    task_data: Optional[Dict[str, Any]] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Report an exception that aborted a task.

    Events group by task type and exception class, so provider call failures
    and unexpected crashes show up as separate issues.
    """
    if not _sentry_initialized:
        return None
    error_type = exception.__class__.__name__
    with _task_scope(task_type, task_data, extra_context, error_type) as scope:
        scope.set_tag("error_type", error_type)
        return sentry_sdk.capture_exception(exception)


def capture_task_failure(
    task_type: str,
    failure_reason: str,
    task_data: Optional[Dict[str, Any]] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Report a task that finished with status "failure" without raising."""
    if not _sentry_initialized:
        return None
    with _task_scope(task_type, task_data, extra_context, "task_failure"):
        return sentry_sdk.capture_message(f"{task_type}: {failure_reason}", level="error")


@contextmanager
def create_task_span(task_type: str, task_data: Optional[Dict[str, Any]] = None):
    """Run the enclosed block inside a Sentry transaction.

    Yields the transaction, or None when Sentry is off.
    """
    if not _sentry_initialized:
        yield None
        return
    with sentry_sdk.start_transaction(op="task", name=f"task.{task_type}") as transaction:
        transaction.set_tag("task_type", task_type)
        if task_data:
            transaction.set_data("task_data", task_data)
        yield transaction


def add_breadcrumb(message: str, category: str = "info", level: str = "info", **data):
    if not _sentry_initialized:
        return
    sentry_sdk.add_breadcrumb(category=category, message=message, level=level, data=data)
