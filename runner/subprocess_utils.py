"""Utility functions for running PowerShell and system commands.

PowerShell scripts report progress on stderr with a ``[WU]`` prefix and emit a
single JSON object on stdout. Progress lines are relayed to the logger as they
arrive so long-running downloads and installs stay visible in the log.
"""

import json
import logging
import os
import subprocess
import sys
import tempfile
import threading
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

POWERSHELL_EXE = "powershell.exe"
SHUTDOWN_EXE = "shutdown.exe"

# Operating System: Hot fix (Planned)
RESTART_REASON = "p:2:17"

PROGRESS_PREFIX = "[WU]"


def powershell_command(ps1_path: str) -> List[str]:
    return [
        POWERSHELL_EXE,
        "-NoProfile",
        "-NonInteractive",
        "-ExecutionPolicy",
        "Bypass",
        "-File",
        ps1_path,
    ]


def run_powershell_json(
    script_text: str, workdir: Optional[str] = None
) -> Dict[str, Any]:
    """Run a PowerShell script file and parse its JSON stdout.

    The script is written to ``workdir`` (or the temp directory) and removed
    afterwards. Blocks until the script exits; no timeout is applied.

    Returns dict with keys: ok(bool), data|error(str), exit_code(int), stdout, stderr.
    """
    with tempfile.NamedTemporaryFile(
        "w", delete=False, suffix=".ps1", encoding="utf-8-sig", dir=workdir
    ) as tf:
        tf.write(script_text)
        ps1_path = tf.name

    try:
        try:
            proc = subprocess.Popen(
                powershell_command(ps1_path),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            return {
                "ok": False,
                "error": f"Could not start PowerShell: {e}",
                "exit_code": None,
                "stdout": "",
                "stderr": "",
            }

        stderr_lines: List[str] = []

        def read_stderr():
            for line in iter(proc.stderr.readline, ""):  # type: ignore[union-attr]
                line = line.rstrip()
                if not line:
                    continue
                stderr_lines.append(line)
                if line.startswith(PROGRESS_PREFIX):
                    logger.info(line[len(PROGRESS_PREFIX):].strip())
                    flush_stderr()

        stderr_thread = threading.Thread(target=read_stderr, daemon=True)
        stderr_thread.start()

        stdout = proc.stdout.read() if proc.stdout else ""  # type: ignore[union-attr]
        exit_code = proc.wait()
        stderr_thread.join(timeout=2.0)
        stderr = "\n".join(stderr_lines)

        return _parse_json_output(stdout, stderr, exit_code)
    finally:
        try:
            os.unlink(ps1_path)
        except OSError as e:
            logger.debug(f"Could not remove script {ps1_path}: {e}")


def _parse_json_output(stdout: str, stderr: str, exit_code: int) -> Dict[str, Any]:
    # Find JSON in stdout (may have extra output before/after)
    json_start = stdout.find("{")
    json_end = stdout.rfind("}") + 1
    if json_start < 0 or json_end <= json_start:
        return {
            "ok": False,
            "error": "No JSON object found in PowerShell output",
            "exit_code": exit_code,
            "stdout": stdout,
            "stderr": stderr,
        }
    try:
        parsed = json.loads(stdout[json_start:json_end])
    except json.JSONDecodeError as e:
        logger.debug(f"stdout preview: {stdout[:500]}")
        return {
            "ok": False,
            "error": f"Failed to parse PowerShell JSON output: {e}",
            "exit_code": exit_code,
            "stdout": stdout,
            "stderr": stderr,
        }
    return {
        "ok": exit_code == 0,
        "data": parsed,
        "exit_code": exit_code,
        "stdout": stdout,
        "stderr": stderr,
    }


def request_system_restart(
    timeout_seconds: int, comment: str = "Restarting to complete Windows Update installation"
) -> subprocess.CompletedProcess:
    """Ask Windows to restart after ``timeout_seconds``.

    Returns as soon as shutdown.exe has scheduled the restart.
    """
    command = [
        SHUTDOWN_EXE,
        "/r",
        "/t",
        str(max(0, int(timeout_seconds))),
        "/d",
        RESTART_REASON,
        "/c",
        comment,
    ]
    logger.debug(f"Requesting restart: {' '.join(command)}")
    return subprocess.run(
        command,
        stdin=subprocess.DEVNULL,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        check=True,
    )


def flush_stderr():
    """Flush stderr to ensure real-time log delivery."""
    try:
        sys.stderr.flush()
    except (OSError, ValueError):
        pass
