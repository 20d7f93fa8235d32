from __future__ import annotations

from pathlib import Path

import pytest

from update_services.config import (
    DEFAULT_LOG_NAME,
    RunOptions,
    default_log_dir,
    default_log_path,
)


def test_task_defaults() -> None:
    options = RunOptions.from_task({"type": "windows_update"})

    assert not any(
        [
            options.include_optional_updates,
            options.exclude_reboot_required,
            options.microsoft_update,
            options.no_download,
            options.no_install,
            options.show_details,
            options.reboot,
            options.auto_accept_eula,
        ]
    )
    assert options.reboot_delay_seconds == 15
    assert options.reboot_timeout_seconds == 60
    assert options.resolved_log_path() == default_log_path()


def test_task_values_override_defaults(tmp_path) -> None:
    options = RunOptions.from_task(
        {
            "reboot": True,
            "no_install": True,
            "reboot_delay_seconds": 0,
            "reboot_timeout_seconds": "120",
            "log_path": str(tmp_path / "wu.log"),
        }
    )

    assert options.reboot and options.no_install
    assert options.reboot_delay_seconds == 0
    assert options.reboot_timeout_seconds == 120
    assert options.resolved_log_path() == tmp_path / "wu.log"
    assert options.to_dict()["reboot"] is True


def test_negative_delays_are_clamped() -> None:
    options = RunOptions.from_task({"reboot_delay_seconds": -5})

    assert options.reboot_delay_seconds == 0


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("PATCHRUNNER_LOG_DIR", str(tmp_path))
    monkeypatch.setenv("PATCHRUNNER_REBOOT_DELAY", "30")
    monkeypatch.setenv("PATCHRUNNER_REBOOT_TIMEOUT", "not-a-number")

    options = RunOptions()

    assert default_log_dir() == Path(tmp_path)
    assert options.resolved_log_path() == Path(tmp_path) / DEFAULT_LOG_NAME
    assert options.reboot_delay_seconds == 30
    assert options.reboot_timeout_seconds == 60
