from __future__ import annotations

import logging

import pytest

from update_services.reboot import RebootState, apply_reboot_decision, decide_reboot
from update_service_test_utils import RestartRecorder, SleepRecorder


@pytest.mark.parametrize("auto_reboot", [True, False])
def test_no_reboot_needed_regardless_of_flag(auto_reboot: bool) -> None:
    assert decide_reboot(False, auto_reboot) is RebootState.NO_REBOOT_NEEDED


def test_reboot_required_with_opt_in_is_immediate() -> None:
    assert decide_reboot(True, True) is RebootState.REBOOT_NEEDED_IMMEDIATE


def test_reboot_required_without_opt_in_is_deferred() -> None:
    assert decide_reboot(True, False) is RebootState.REBOOT_NEEDED_DEFERRED


def test_immediate_reboot_waits_then_requests_restart(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="update_services.reboot")
    restart = RestartRecorder()
    sleep = SleepRecorder()

    requested = apply_reboot_decision(
        RebootState.REBOOT_NEEDED_IMMEDIATE, 30, 90, restart=restart, sleep=sleep
    )

    assert requested is True
    assert sleep.delays == [30]
    assert restart.timeouts == [90]
    assert any("restarting in 30 seconds" in r.getMessage() for r in caplog.records)


def test_zero_delay_does_not_sleep() -> None:
    restart = RestartRecorder()
    sleep = SleepRecorder()

    apply_reboot_decision(RebootState.REBOOT_NEEDED_IMMEDIATE, 0, 5, restart=restart, sleep=sleep)

    assert sleep.delays == []
    assert restart.timeouts == [5]


@pytest.mark.parametrize(
    "state, expected_message",
    [
        (RebootState.NO_REBOOT_NEEDED, "No reboot required"),
        (RebootState.REBOOT_NEEDED_DEFERRED, "restart manually"),
    ],
)
def test_other_states_never_request_restart(
    state: RebootState, expected_message: str, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger="update_services.reboot")
    restart = RestartRecorder()
    sleep = SleepRecorder()

    requested = apply_reboot_decision(state, 10, 20, restart=restart, sleep=sleep)

    assert requested is False
    assert restart.timeouts == []
    assert sleep.delays == []
    assert [r.levelno for r in caplog.records] == [logging.INFO]
    assert expected_message in caplog.records[0].getMessage()
