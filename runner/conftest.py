from __future__ import annotations

import logging

import pytest

import log_config


@pytest.fixture(autouse=True)
def _reset_runner_logging():
    """Drop handlers installed by configure_logging so log files get closed."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, log_config._HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch):
    for name in (
        "PATCHRUNNER_LOG_DIR",
        "PATCHRUNNER_REBOOT_DELAY",
        "PATCHRUNNER_REBOOT_TIMEOUT",
        "PATCHRUNNER_SENTRY_DSN",
    ):
        monkeypatch.delenv(name, raising=False)
