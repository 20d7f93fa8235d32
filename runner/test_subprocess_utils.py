from __future__ import annotations

import subprocess

import pytest

import subprocess_utils
from subprocess_utils import _parse_json_output, request_system_restart


def test_json_is_found_among_other_output() -> None:
    res = _parse_json_output('WARNING: banner\n{"ok": true, "updates": []}\n', "", 0)

    assert res["ok"] is True
    assert res["data"] == {"ok": True, "updates": []}


def test_nonzero_exit_is_not_ok_but_keeps_data() -> None:
    res = _parse_json_output('{"ok": false, "error": "boom"}', "[WU] failed", 1)

    assert res["ok"] is False
    assert res["data"]["error"] == "boom"
    assert res["exit_code"] == 1


@pytest.mark.parametrize("stdout", ["", "no json here", "{not json}"])
def test_missing_or_broken_json_is_an_error(stdout: str) -> None:
    res = _parse_json_output(stdout, "", 0)

    assert res["ok"] is False
    assert "JSON" in res["error"]


def test_restart_uses_planned_hotfix_reason(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    def fake_run(command, **kwargs):
        seen["command"] = command
        seen["check"] = kwargs.get("check")
        return subprocess.CompletedProcess(command, 0, "", "")

    monkeypatch.setattr(subprocess_utils.subprocess, "run", fake_run)

    request_system_restart(30, comment="patching")

    assert seen["command"] == [
        "shutdown.exe", "/r", "/t", "30", "/d", "p:2:17", "/c", "patching",
    ]
    assert seen["check"] is True
