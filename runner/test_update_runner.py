from __future__ import annotations

import json

import pytest

import update_runner
from update_services.errors import ProviderCallFailed


@pytest.fixture
def runner_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(update_runner, "load_environment", lambda: None)
    calls = []

    def install(result=None, error=None):
        def fake_run(task):
            calls.append(task)
            if error is not None:
                raise error
            return result

        monkeypatch.setattr(update_runner, "run_windows_update", fake_run)
        return calls

    return install


def _result(status="success", verdict="updated"):
    return {
        "task_type": "windows_update",
        "status": status,
        "summary": {
            "human_readable": {"verdict": verdict, "summary_line": "Found: 1 | Installed: 1"},
            "duration_seconds": 1.5,
        },
    }


def _argv(tmp_path, *extra):
    return ["--no-sentry", "--no-elevate", "--log-path", str(tmp_path / "wu.log"), *extra]


def test_flags_map_onto_the_task() -> None:
    args = update_runner.build_parser().parse_args(
        [
            "--include-optional-updates",
            "--exclude-reboot-required",
            "--microsoft-update",
            "--no-download",
            "--show-details",
            "--reboot",
            "--auto-accept-eula",
            "--reboot-delay",
            "0",
        ]
    )

    task = update_runner.task_from_args(args)

    assert task["type"] == "windows_update"
    assert task["include_optional_updates"] and task["exclude_reboot_required"]
    assert task["microsoft_update"] and task["no_download"] and not task["no_install"]
    assert task["show_details"] and task["reboot"] and task["auto_accept_eula"]
    assert task["reboot_delay_seconds"] == 0
    assert "reboot_timeout_seconds" not in task


def test_successful_run_exits_zero_and_writes_report(runner_env, tmp_path) -> None:
    calls = runner_env(result=_result())
    report = tmp_path / "out" / "report.json"

    code = update_runner.main(_argv(tmp_path, "-o", str(report)))

    assert code == update_runner.EXIT_OK
    assert calls[0]["log_path"] == str(tmp_path / "wu.log")
    assert json.loads(report.read_text(encoding="utf-8"))["status"] == "success"
    log_text = (tmp_path / "wu.log").read_text(encoding="utf-8")
    assert "Windows Update result: UPDATED (success)" in log_text


def test_per_update_failures_still_exit_zero(runner_env, tmp_path) -> None:
    runner_env(result=_result("completed_with_errors", "completed-with-errors"))

    assert update_runner.main(_argv(tmp_path)) == update_runner.EXIT_OK


def test_unavailable_provider_exits_two(runner_env, tmp_path) -> None:
    runner_env(result={"task_type": "windows_update", "status": "failure", "summary": {}})

    assert update_runner.main(_argv(tmp_path)) == update_runner.EXIT_PROVIDER_UNAVAILABLE


def test_provider_call_failure_exits_three(runner_env, tmp_path) -> None:
    runner_env(error=ProviderCallFailed("install", "COM exception"))

    code = update_runner.main(_argv(tmp_path))

    assert code == update_runner.EXIT_PROVIDER_CALL_FAILED
    log_text = (tmp_path / "wu.log").read_text(encoding="utf-8")
    assert "[ERROR] Windows Update run aborted: install failed: COM exception" in log_text


def test_unexpected_error_exits_one(runner_env, tmp_path) -> None:
    runner_env(error=KeyError("boom"))

    assert update_runner.main(_argv(tmp_path)) == update_runner.EXIT_UNEXPECTED


def test_default_log_path_follows_log_dir_setting(
    runner_env, tmp_path, monkeypatch: pytest.MonkeyPatch
) -> None:
    runner_env(result=_result())
    monkeypatch.setenv("PATCHRUNNER_LOG_DIR", str(tmp_path / "logs"))

    code = update_runner.main(["--no-sentry", "--no-elevate"])

    assert code == update_runner.EXIT_OK
    log_text = (tmp_path / "logs" / "Get-WindowsUpdates.log").read_text(encoding="utf-8")
    assert "Windows Update result: UPDATED (success)" in log_text


def test_no_install_help_mentions_downloads() -> None:
    help_text = " ".join(update_runner.build_parser().format_help().split())

    assert "selected updates are still downloaded" in help_text
