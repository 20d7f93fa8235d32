from __future__ import annotations

import logging
import re

from log_config import configure_logging, flush_logs

LINE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z -- \[(?P<level>[A-Z]+)\] (?P<msg>.*)$")


def test_lines_are_timestamped_in_utc_with_level(tmp_path) -> None:
    log_path = tmp_path / "logs" / "nested" / "Get-WindowsUpdates.log"

    assert configure_logging(log_path) == log_path
    logging.getLogger("update_services").info("Found 2 update(s)")
    logging.getLogger("update_services").warning("Skipping update that requires user input: X")
    flush_logs()

    lines = log_path.read_text(encoding="utf-8").splitlines()
    matches = [LINE_RE.match(line) for line in lines]
    assert all(matches)
    assert [(m["level"], m["msg"]) for m in matches] == [
        ("INFO", "Found 2 update(s)"),
        ("WARNING", "Skipping update that requires user input: X"),
    ]


def test_log_file_is_appended_across_runs(tmp_path) -> None:
    log_path = tmp_path / "run.log"
    log_path.write_text("2026-01-01T00:00:00Z -- [INFO] earlier run\n", encoding="utf-8")

    configure_logging(log_path)
    logging.info("second run")
    flush_logs()

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert lines[0].endswith("earlier run")
    assert lines[1].endswith("[INFO] second run")


def test_reconfiguring_does_not_duplicate_lines(tmp_path) -> None:
    log_path = tmp_path / "run.log"

    configure_logging(log_path)
    configure_logging(log_path)
    logging.info("once")
    flush_logs()

    assert log_path.read_text(encoding="utf-8").count("once") == 1


def test_stderr_only_when_no_path(capsys) -> None:
    assert configure_logging(None) is None

    logging.error("Windows Update is unavailable")

    err = capsys.readouterr().err
    assert LINE_RE.match(err.strip())
    assert "[ERROR] Windows Update is unavailable" in err
