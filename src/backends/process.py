# src/backends/process.py — v1
"""Async subprocess helper shared by command stages and CLI-driven backends."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_TERMINATE_GRACE_S = 10.0


@dataclass
class ProcessResult:
    """Exit status and combined stdout/stderr of one subprocess."""

    argv: list[str]
    exit_code: int
    output: str
    duration_ms: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


async def run_process(
    argv: list[str],
    cwd: Path | str | None = None,
    env: dict[str, str] | None = None,
    stdin: str | None = None,
    timeout_s: float | None = None,
) -> ProcessResult:
    """Run argv to completion and capture its output.

    On timeout the process is terminated (then killed after a grace period)
    and the result is flagged ``timed_out``. A missing executable raises
    FileNotFoundError.
    """
    start = time.monotonic()
    proc_env = {**os.environ, **env} if env else None
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=str(cwd) if cwd is not None else None,
        env=proc_env,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    payload = stdin.encode("utf-8") if stdin is not None else None
    timed_out = False
    try:
        out, _ = await asyncio.wait_for(proc.communicate(payload), timeout=timeout_s)
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning("Process timed out after %.0fs: %s", timeout_s, argv[0])
        proc.terminate()
        try:
            out, _ = await asyncio.wait_for(proc.communicate(), timeout=_TERMINATE_GRACE_S)
        except asyncio.TimeoutError:
            proc.kill()
            out, _ = await proc.communicate()

    return ProcessResult(
        argv=list(argv),
        exit_code=proc.returncode if proc.returncode is not None else -1,
        output=(out or b"").decode("utf-8", errors="replace"),
        duration_ms=int((time.monotonic() - start) * 1000),
        timed_out=timed_out,
    )


def redact(text: str, secrets: list[str]) -> str:
    """Mask secret values before output reaches logs or results."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text
