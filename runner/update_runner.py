"""Command-line runner for the Windows Update workflow.

Parses the run options, sets up the log file and Sentry, runs the
``windows_update`` task and optionally writes the final JSON report. Windows
elevation is requested automatically when needed.

Exit codes:
  0  clean run, including "no updates found" and per-update failures
  1  unexpected error
  2  the update provider could not be reached or initialised
  3  an update provider call failed
"""

import argparse
import ctypes
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from dotenv import find_dotenv, load_dotenv

from log_config import configure_logging, flush_logs
from sentry_config import add_breadcrumb, capture_task_exception, init_sentry
from update_services.config import RunOptions, default_log_path
from update_services.errors import ProviderCallFailed
from update_services.windows_update_service import TASK_TYPE, run_windows_update

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_PROVIDER_UNAVAILABLE = 2
EXIT_PROVIDER_CALL_FAILED = 3


def is_admin() -> bool:
    """Return True if the current process is running with administrator rights."""
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
    except (AttributeError, OSError):
        return False


def relaunch_elevated(argv: List[str]) -> int:
    """Attempt to relaunch this executable elevated.

    Returns Windows-style error code on failure; returns 0 if the relaunch was
    initiated successfully (this process should then exit).
    """
    params = " ".join([f'"{a}"' for a in argv])
    shell_execute = ctypes.windll.shell32.ShellExecuteW  # type: ignore[attr-defined]
    shell_execute.restype = ctypes.c_void_p
    rc = shell_execute(None, "runas", sys.executable, params, None, 1)
    # Per docs, >32 indicates success; <=32 are error codes
    if rc is None or rc <= 32:
        # Access denied is reported as ERROR_CANCELLED (user refused elevation)
        return 1223 if rc == 5 else int(rc or 1)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Search for, download and install Windows updates."
    )
    parser.add_argument(
        "--include-optional-updates",
        action="store_true",
        help="Also consider optional (browse-only) updates.",
    )
    parser.add_argument(
        "--exclude-reboot-required",
        action="store_true",
        help="Only consider updates that do not require a reboot.",
    )
    parser.add_argument(
        "--microsoft-update",
        action="store_true",
        help="Search Microsoft Update (drivers and other Microsoft products).",
    )
    parser.add_argument("--no-download", action="store_true", help="Skip downloading updates.")
    parser.add_argument(
        "--no-install",
        action="store_true",
        help="Skip installing updates; selected updates are still downloaded.",
    )
    parser.add_argument(
        "--show-details",
        action="store_true",
        help="Log every property of each update instead of a one-line description.",
    )
    parser.add_argument(
        "--reboot",
        action="store_true",
        help="Restart automatically when the installation requires it.",
    )
    parser.add_argument(
        "--auto-accept-eula",
        action="store_true",
        help="Accept pending license agreements instead of skipping those updates.",
    )
    parser.add_argument(
        "--log-path",
        dest="log_path",
        default=None,
        help=f"Log file to append to (default: {str(default_log_path()).replace('%', '%%')}).",
    )
    parser.add_argument(
        "--reboot-delay",
        dest="reboot_delay_seconds",
        type=int,
        default=None,
        help="Seconds to wait before requesting the restart.",
    )
    parser.add_argument(
        "--reboot-timeout",
        dest="reboot_timeout_seconds",
        type=int,
        default=None,
        help="Timeout passed to shutdown.exe when requesting the restart.",
    )
    parser.add_argument(
        "--output-file",
        "-o",
        dest="output_file",
        default=None,
        help="Optional path to write the final JSON report.",
    )
    parser.add_argument("--no-sentry", action="store_true", help="Disable Sentry error tracking.")
    parser.add_argument(
        "--no-elevate",
        action="store_true",
        help="Do not prompt for administrator rights on Windows.",
    )
    return parser


def task_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    task: Dict[str, Any] = {
        "type": TASK_TYPE,
        "include_optional_updates": args.include_optional_updates,
        "exclude_reboot_required": args.exclude_reboot_required,
        "microsoft_update": args.microsoft_update,
        "no_download": args.no_download,
        "no_install": args.no_install,
        "show_details": args.show_details,
        "reboot": args.reboot,
        "auto_accept_eula": args.auto_accept_eula,
        "log_path": args.log_path,
    }
    if args.reboot_delay_seconds is not None:
        task["reboot_delay_seconds"] = args.reboot_delay_seconds
    if args.reboot_timeout_seconds is not None:
        task["reboot_timeout_seconds"] = args.reboot_timeout_seconds
    return task


def load_environment() -> None:
    """Load ``.env`` from the runner directory, then from the working directory."""
    load_dotenv(os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))
    load_dotenv(find_dotenv(usecwd=True))


def log_result(result: Dict[str, Any]) -> None:
    summary = result.get("summary") or {}
    hr = summary.get("human_readable") or {}
    logging.info("=" * 50)
    logging.info(f"Windows Update result: {hr.get('verdict', 'unknown').upper()} ({result.get('status')})")
    if hr.get("summary_line"):
        logging.info(f"Summary: {hr['summary_line']}")
    if "duration_seconds" in summary:
        logging.info(f"Completed in {summary['duration_seconds']:.1f} seconds")
    logging.info("=" * 50)


def write_report(path: str, result: Dict[str, Any]) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(result, f, indent=2)


def main(argv: Optional[List[str]] = None) -> int:
    """Entrypoint: parse options, run the update workflow, return the exit code."""
    load_environment()
    args = build_parser().parse_args(argv)
    task = task_from_args(args)

    log_path = RunOptions.from_task(task).resolved_log_path()
    try:
        configure_logging(log_path)
    except OSError as e:
        configure_logging(None)
        logging.error(f"Failed to open log file '{log_path}': {e}")
    flush_logs()

    if os.name == "nt" and not args.no_elevate and not is_admin():
        logging.info("Attempting to elevate privileges via UAC prompt...")
        code = relaunch_elevated(sys.argv[0:] if argv is None else [sys.argv[0], *argv])
        if code != 0:
            logging.error(f"Elevation failed or cancelled (code {code})")
            return code
        return EXIT_OK

    if init_sentry(enabled=not args.no_sentry):
        add_breadcrumb("Update runner starting", category="lifecycle", level="info")

    try:
        result = run_windows_update(task)
    except ProviderCallFailed as e:
        logging.error(f"Windows Update run aborted: {e}")
        flush_logs()
        return EXIT_PROVIDER_CALL_FAILED
    except Exception as e:  # noqa: BLE001
        logging.exception(f"Unexpected error during Windows Update run: {e}")
        capture_task_exception(e, TASK_TYPE, task_data=task)
        flush_logs()
        return EXIT_UNEXPECTED

    log_result(result)
    if args.output_file:
        try:
            write_report(args.output_file, result)
            logging.info(f"Report written to {args.output_file}")
        except OSError as e:
            logging.error(f"Failed to write report '{args.output_file}': {e}")
    flush_logs()

    if result.get("status") == "failure":
        return EXIT_PROVIDER_UNAVAILABLE
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
