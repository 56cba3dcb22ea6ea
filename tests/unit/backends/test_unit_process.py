# tests/unit/backends/test_unit_process.py — v1
"""Tests for backends/process.py — async subprocess helper."""

from __future__ import annotations

import sys

import pytest

from shipline.backends.process import redact, run_process


class TestRunProcess:
    @pytest.mark.asyncio
    async def test_captures_combined_output(self):
        result = await run_process([
            sys.executable, "-c",
            "import sys; print('out'); print('err', file=sys.stderr)",
        ])
        assert result.ok
        assert "out" in result.output
        assert "err" in result.output

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        result = await run_process([sys.executable, "-c", "raise SystemExit(3)"])
        assert result.exit_code == 3
        assert not result.ok

    @pytest.mark.asyncio
    async def test_cwd_and_env(self, tmp_path):
        result = await run_process(
            [sys.executable, "-c", "import os; print(os.getcwd()); print(os.environ['STAGE_VAR'])"],
            cwd=tmp_path,
            env={"STAGE_VAR": "hello"},
        )
        assert result.ok
        assert "hello" in result.output
        assert tmp_path.name in result.output

    @pytest.mark.asyncio
    async def test_stdin(self):
        result = await run_process(
            [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
            stdin="secret",
        )
        assert "SECRET" in result.output

    @pytest.mark.asyncio
    async def test_timeout(self):
        result = await run_process(
            [sys.executable, "-c", "import time; time.sleep(10)"], timeout_s=0.3
        )
        assert result.timed_out
        assert not result.ok

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        with pytest.raises(FileNotFoundError):
            await run_process(["definitely-not-a-real-binary-xyz"])


class TestRedact:
    def test_masks_secrets(self):
        assert redact("token=abc123 ok", ["abc123"]) == "token=*** ok"

    def test_ignores_empty(self):
        assert redact("text", ["", "zzz"]) == "text"
