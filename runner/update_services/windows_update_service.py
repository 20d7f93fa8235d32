"""Windows Update service using the Windows Update Agent.

Runs the update workflow as a strictly sequential pipeline:
  1) Search the catalog for not-installed software updates
  2) Select the updates eligible for this run (hidden, EULA, user input and
     exclusive-installation rules)
  3) Download the selection as one batch
  4) Install whatever the provider reports as downloaded, as one batch
  5) Decide once whether to reboot

Task schema (dict expected):
  type: "windows_update"
  include_optional_updates: bool (optional, default False) also search browse-only updates
  exclude_reboot_required: bool (optional, default False) skip updates that need a reboot
  microsoft_update: bool (optional, default False) search Microsoft Update (drivers/products)
  no_download: bool (optional, default False) skip the download stage
  no_install: bool (optional, default False) skip the install stage
  show_details: bool (optional, default False) log a full dump of each update
  reboot: bool (optional, default False) restart automatically when required
  auto_accept_eula: bool (optional, default False) accept pending EULAs
  reboot_delay_seconds / reboot_timeout_seconds: int (optional)

Return dict structure:
  {
    task_type: "windows_update",
    status: "success" | "failure" | "completed_with_errors",
    summary: {
      criteria,
      catalog: { count_total, count_windows, count_driver, items: [...] },
      selection: { count_selected, skipped: [ { Title, KB, Reason } ... ] },
      download: { result, result_code, count_downloaded, items: [...] } | None,
      install: {
        result, result_code, reboot_required, count_installed, count_failed,
        count_needs_more_content, items: [...]
      } | None,
      reboot: { state, restart_requested },
      human_readable: { verdict, notes: [], summary_line },
      timings: { search_seconds, download_seconds, install_seconds, total_seconds },
      duration_seconds
    }
  }
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from sentry_config import (
    add_breadcrumb,
    capture_task_exception,
    capture_task_failure,
    create_task_span,
)

from .config import RunOptions
from .errors import CatalogUnavailable, ProviderCallFailed, WindowsUpdateError
from .models import StageResult, Update, UpdateResult
from .reboot import RebootState, apply_reboot_decision, decide_reboot
from .result_codes import (
    OperationResultCode,
    describe_result_code,
    format_hresult,
    log_level_for,
    needs_another_download,
)
from .selection import select_updates
from .wua_provider import PowerShellUpdateProvider, UpdateProvider, build_criteria

logger = logging.getLogger(__name__)

TASK_TYPE = "windows_update"


def format_size(num_bytes: int) -> str:
    if not num_bytes or num_bytes <= 0:
        return "0 B"
    sizes = ["B", "KB", "MB", "GB", "TB"]
    size = float(num_bytes)
    order = 0
    while size >= 1024 and order < len(sizes) - 1:
        size /= 1024
        order += 1
    return f"{round(size, 2)} {sizes[order]}"


def _item(update: Update, result: Optional[UpdateResult] = None) -> Dict[str, Any]:
    item = {
        "Title": update.title,
        "KB": update.kb,
        "Size": format_size(update.max_download_size),
        "Category": ", ".join(update.category_names),
        "IsDriver": update.is_driver,
    }
    if result is not None:
        item["Result"] = describe_result_code(result.result_code)
        item["HResult"] = format_hresult(result.hresult)
    return item


class WindowsUpdateWorkflow:
    """Query, select, download, install and reboot decision for one run."""

    def __init__(
        self,
        provider: UpdateProvider,
        options: RunOptions,
        restart: Optional[Callable[[int], object]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.options = options
        self.restart = restart
        self.sleep = sleep
        self.had_errors = False

    def run(self) -> Dict[str, Any]:
        """Run the workflow and return the result summary.

        Raises CatalogUnavailable if the provider cannot be reached and
        ProviderCallFailed if a provider call fails unexpectedly; the provider
        session is released either way.
        """
        options = self.options
        started = time.time()
        criteria = build_criteria(options.include_optional_updates, options.exclude_reboot_required)
        logger.debug(f"Windows Update options: {options.to_dict()}")
        logger.debug(f"Search criteria: {criteria}")

        summary: Dict[str, Any] = {
            "criteria": criteria,
            "catalog": {"count_total": 0, "count_windows": 0, "count_driver": 0, "items": []},
            "selection": {"count_selected": 0, "skipped": []},
            "download": None,
            "install": None,
            "reboot": {"state": RebootState.NO_REBOOT_NEEDED.value, "restart_requested": False},
            "timings": {},
        }
        timings = summary["timings"]
        install_result: Optional[StageResult] = None

        with self.provider.open_session() as session:
            t0 = time.time()
            catalog = self._call("search", session.search, criteria)
            timings["search_seconds"] = round(time.time() - t0, 2)
            summary["catalog"] = {
                "count_total": len(catalog),
                "count_windows": sum(1 for u in catalog if not u.is_driver),
                "count_driver": sum(1 for u in catalog if u.is_driver),
                "items": [_item(u) for u in catalog],
            }
            add_breadcrumb("Update search completed", category="task", level="info", count=len(catalog))

            if not catalog:
                logger.info("No updates found")
                return self._finish(summary, "up-to-date", started)

            logger.info(f"Found {len(catalog)} update(s)")
            for update in catalog:
                self._describe(update)

            outcome = select_updates(
                catalog,
                auto_accept_eula=options.auto_accept_eula,
                accept_eula=lambda u: self._call("accept_eula", session.accept_eula, u),
            )
            selected = outcome.selection.updates
            summary["selection"] = {
                "count_selected": len(selected),
                "skipped": [
                    {"Title": s.update.title, "KB": s.update.kb, "Reason": s.reason.value}
                    for s in outcome.skipped
                ],
            }
            if not selected:
                logger.info("No updates selected; skipping download and install")
                return self._finish(summary, "nothing-selected", started)

            logger.info(f"Selected {len(selected)} update(s) for this run")
            add_breadcrumb("Updates selected", category="task", level="info", count=len(selected))

            downloaded: List[Update] = []
            if options.no_download:
                logger.info("Skipping downloads")
            else:
                t1 = time.time()
                download_result = self._call("download", session.download, selected)
                timings["download_seconds"] = round(time.time() - t1, 2)
                self._report_stage(download_result, selected)
                downloaded = download_result.downloaded_updates
                summary["download"] = {
                    "result": describe_result_code(download_result.result_code),
                    "result_code": int(download_result.result_code),
                    "count_downloaded": len(downloaded),
                    "items": [_item(u, download_result.result_for(u)) for u in selected],
                }

            if options.no_install:
                logger.info("Skipping installs")
            elif not downloaded:
                logger.info("Skipping installs; no updates were downloaded")
            else:
                t2 = time.time()
                install_result = self._call("install", session.install, downloaded)
                timings["install_seconds"] = round(time.time() - t2, 2)
                self._report_stage(install_result, downloaded)
                summary["install"] = self._install_summary(install_result, downloaded)

        # The session is released before the reboot is requested.
        reboot_required = bool(install_result and install_result.reboot_required)
        state = decide_reboot(reboot_required, options.reboot)
        restart_requested = False
        try:
            restart_requested = apply_reboot_decision(
                state,
                options.reboot_delay_seconds,
                options.reboot_timeout_seconds,
                restart=self.restart,
                sleep=self.sleep,
            )
        except (OSError, subprocess.CalledProcessError) as e:
            logger.error(f"Failed to request a system restart: {e}")
            self.had_errors = True
        summary["reboot"] = {"state": state.value, "restart_requested": restart_requested}

        if self.had_errors:
            verdict = "completed-with-errors"
        elif install_result is not None:
            verdict = "updated"
        elif summary["download"]:
            verdict = "download-only"
        else:
            verdict = "download-skipped"
        return self._finish(summary, verdict, started)

    def _call(self, operation: str, func: Callable, *args):
        try:
            return func(*args)
        except ProviderCallFailed as e:
            logger.error(str(e))
            raise
        except WindowsUpdateError:
            raise
        except Exception as e:  # noqa: BLE001
            logger.error(f"{operation} failed: {e}")
            raise ProviderCallFailed(operation, str(e)) from e

    def _describe(self, update: Update) -> None:
        if not self.options.show_details:
            logger.info(f"  - {update}")
            return
        behavior = update.installation_behavior
        logger.info(f"Update: {update.title}")
        logger.info(f"  Identity: {update.identity}")
        logger.info(f"  KB articles: {update.kb or 'none'}")
        logger.info(f"  Categories: {', '.join(update.category_names) or 'none'}")
        logger.info(
            f"  Impact: {behavior.impact.name}; reboot behavior: {behavior.reboot_behavior.name}; "
            f"can request user input: {behavior.can_request_user_input}"
        )
        logger.info(f"  Deployment action: {update.deployment_action.name}")
        logger.info(
            f"  Hidden: {update.is_hidden}; EULA accepted: {update.eula_accepted}; "
            f"downloaded: {update.is_downloaded}"
        )
        logger.info(f"  Download size: {format_size(update.max_download_size)}")
        if update.description:
            logger.info(f"  Description: {' '.join(update.description.split())}")

    def _report_stage(self, result: StageResult, submitted: Sequence[Update]) -> None:
        """Log the aggregate result and one outcome line per submitted update."""
        operation = result.operation.capitalize()
        logger.log(
            log_level_for(result.result_code),
            f"{operation} result: {describe_result_code(result.result_code)}",
        )
        add_breadcrumb(
            f"{operation} completed",
            category="task",
            level="info",
            result=describe_result_code(result.result_code),
        )
        if result.result_code != OperationResultCode.SUCCEEDED:
            self.had_errors = True

        for update in submitted:
            item = result.result_for(update)
            if item is None:
                self.had_errors = True
                logger.warning(f"No {result.operation} result reported for update: {update}")
                continue
            if result.operation == "install" and needs_another_download(item.hresult):
                self.had_errors = True
                logger.warning(
                    f"Update needs additional downloaded content: {update}; "
                    "re-run to finish installing it"
                )
                continue
            message = f"{operation} {describe_result_code(item.result_code).lower()}: {update}"
            if item.hresult:
                message += f" [{format_hresult(item.hresult)}]"
            if not item.succeeded:
                self.had_errors = True
            logger.log(log_level_for(item.result_code), message)

    def _install_summary(self, result: StageResult, submitted: Sequence[Update]) -> Dict[str, Any]:
        items = [result.result_for(u) for u in submitted]
        return {
            "result": describe_result_code(result.result_code),
            "result_code": int(result.result_code),
            "reboot_required": result.reboot_required,
            "count_installed": sum(1 for i in items if i is not None and i.succeeded),
            "count_failed": sum(1 for i in items if i is None or not i.succeeded),
            "count_needs_more_content": sum(
                1 for i in items if i is not None and needs_another_download(i.hresult)
            ),
            "items": [_item(u, r) for u, r in zip(submitted, items)],
        }

    def _finish(self, summary: Dict[str, Any], verdict: str, started: float) -> Dict[str, Any]:
        notes = []
        catalog = summary["catalog"]
        if catalog["count_total"]:
            notes.append(f"Found: {catalog['count_total']}")
        skipped = summary["selection"]["skipped"]
        if skipped:
            notes.append(f"Skipped: {len(skipped)}")
        if summary["download"]:
            notes.append(f"Downloaded: {summary['download']['count_downloaded']}")
        install = summary["install"]
        if install:
            notes.append(f"Installed: {install['count_installed']}")
            if install["count_failed"]:
                notes.append(f"Failed: {install['count_failed']}")
        if summary["reboot"]["state"] != RebootState.NO_REBOOT_NEEDED.value:
            notes.append("Reboot required")

        summary["human_readable"] = {
            "verdict": verdict,
            "notes": notes,
            "summary_line": "; ".join(notes),
        }
        summary["timings"]["total_seconds"] = round(time.time() - started, 2)
        return summary


def run_windows_update(
    task: Dict[str, Any],
    provider: Optional[UpdateProvider] = None,
    restart: Optional[Callable[[int], object]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Search for, download and install Windows updates.

    Returns the structured task result. A provider that cannot be reached
    yields ``status: "failure"``; an unexpected provider call failure is
    reported to Sentry and re-raised.
    """
    options = RunOptions.from_task(task)
    add_breadcrumb(
        "Starting Windows Update",
        category="task",
        level="info",
        include_optional_updates=options.include_optional_updates,
        reboot=options.reboot,
    )
    start_time = time.time()

    with create_task_span(TASK_TYPE, task):
        try:
            if provider is None:
                if os.name != "nt":
                    raise CatalogUnavailable("Windows Update is only supported on Windows")
                provider = PowerShellUpdateProvider(microsoft_update=options.microsoft_update)
            workflow = WindowsUpdateWorkflow(provider, options, restart=restart, sleep=sleep)
            summary = workflow.run()
        except CatalogUnavailable as e:
            logger.error(f"Windows Update is unavailable: {e}")
            capture_task_failure(TASK_TYPE, str(e), task_data=task)
            return {
                "task_type": TASK_TYPE,
                "status": "failure",
                "summary": {
                    "error": str(e),
                    "duration_seconds": round(time.time() - start_time, 2),
                },
            }
        except ProviderCallFailed as e:
            capture_task_exception(
                e, TASK_TYPE, task_data=task, extra_context={"provider": {"operation": e.operation}}
            )
            raise

    summary["duration_seconds"] = round(time.time() - start_time, 2)
    status = "completed_with_errors" if workflow.had_errors else "success"
    add_breadcrumb(
        f"Windows Update completed: {status}",
        category="task",
        level="info" if status == "success" else "warning",
        verdict=summary["human_readable"]["verdict"],
        reboot_state=summary["reboot"]["state"],
        duration_seconds=summary["duration_seconds"],
    )
    return {"task_type": TASK_TYPE, "status": status, "summary": summary}


__all__ = ["WindowsUpdateWorkflow", "run_windows_update", "format_size", "TASK_TYPE"]
