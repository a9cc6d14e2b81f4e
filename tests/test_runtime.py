"""Tests for the process runner and compose client."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from docstack_ops.config.models import StackConfig
from docstack_ops.runtime.compose import ComposeClient, ComposeQueryError, parse_ps_output
from docstack_ops.runtime.runner import COMMAND_NOT_FOUND, CommandResult, ProcessRunner

from fakes import fail, ok

# ─── ProcessRunner ───


class TestProcessRunner:
    @pytest.mark.asyncio
    async def test_captures_output(self):
        result = await ProcessRunner().run([sys.executable, "-c", "print('hello')"], timeout=30)
        assert result.ok
        assert result.text.strip() == "hello"

    @pytest.mark.asyncio
    async def test_nonzero_exit(self):
        result = await ProcessRunner().run(
            [sys.executable, "-c", "import sys; sys.stderr.write('bad thing\\n'); sys.exit(3)"],
            timeout=30,
        )
        assert not result.ok
        assert result.returncode == 3
        assert result.error_text == "bad thing"

    @pytest.mark.asyncio
    async def test_command_not_found(self):
        result = await ProcessRunner().run(["docstack-definitely-not-a-command"])
        assert result.returncode == COMMAND_NOT_FOUND
        assert "command not found" in result.error_text

    @pytest.mark.asyncio
    async def test_timeout_kills(self):
        result = await ProcessRunner().run([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)
        assert result.timed_out
        assert not result.ok
        assert "timed out" in result.error_text

    @pytest.mark.asyncio
    async def test_stdin_and_stdout_files(self, tmp_path: Path):
        source = tmp_path / "in.txt"
        source.write_bytes(b"payload bytes")
        target = tmp_path / "out.txt"
        result = await ProcessRunner().run(
            [sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"],
            stdin_path=source,
            stdout_path=target,
            timeout=30,
        )
        assert result.ok
        assert target.read_bytes() == b"PAYLOAD BYTES"

    @pytest.mark.asyncio
    async def test_input_bytes(self):
        result = await ProcessRunner().run(
            [sys.executable, "-c", "import sys; print(len(sys.stdin.read()))"],
            input=b"12345",
            timeout=30,
        )
        assert result.text.strip() == "5"


# ─── ps parsing ───


class TestParsePsOutput:
    def test_array(self):
        rows = parse_ps_output(json.dumps([{"Service": "db", "State": "running"}]))
        assert rows == [{"Service": "db", "State": "running"}]

    def test_json_lines(self):
        raw = '{"Service": "db", "State": "running"}\n{"Service": "broker", "State": "exited"}\n'
        assert [r["Service"] for r in parse_ps_output(raw)] == ["db", "broker"]

    def test_empty(self):
        assert parse_ps_output("  \n") == []


# ─── ComposeClient ───


def _client(result: CommandResult) -> tuple[ComposeClient, AsyncMock]:
    runner = ProcessRunner()
    runner.run = AsyncMock(return_value=result)  # type: ignore[method-assign]
    stack = StackConfig(name="paperless", project_dir="/srv/paperless", compose_file="compose.yml")
    return ComposeClient(stack, runner), runner.run


class TestComposeClient:
    @pytest.mark.asyncio
    async def test_container_state_running(self):
        row = {"Service": "db", "State": "running", "Health": "healthy", "Name": "paperless-db-1", "ExitCode": 0}
        client, run = _client(ok(json.dumps(row)))
        state = await client.container_state("db")
        assert state is not None
        assert state.state == "running"
        assert state.health == "healthy"
        assert state.name == "paperless-db-1"

        args = run.call_args.args[0]
        assert args[:6] == ["docker", "compose", "-f", "compose.yml", "-p", "paperless"]
        assert args[6:] == ["ps", "--all", "--format", "json", "db"]
        assert run.call_args.kwargs["cwd"] == Path("/srv/paperless")

    @pytest.mark.asyncio
    async def test_container_state_exit_code(self):
        client, _ = _client(ok(json.dumps([{"Service": "db", "State": "exited", "ExitCode": 137}])))
        state = await client.container_state("db")
        assert state is not None
        assert state.exit_code == 137

    @pytest.mark.asyncio
    async def test_no_container(self):
        client, _ = _client(ok(""))
        assert await client.container_state("db") is None

    @pytest.mark.asyncio
    async def test_runtime_error_raises(self):
        client, _ = _client(fail("Cannot connect to the Docker daemon"))
        with pytest.raises(ComposeQueryError, match="Docker daemon"):
            await client.container_state("db")

    @pytest.mark.asyncio
    async def test_garbage_output_raises(self):
        client, _ = _client(ok("not json"))
        with pytest.raises(ComposeQueryError):
            await client.container_state("db")

    @pytest.mark.asyncio
    async def test_exec_uses_no_tty(self, tmp_path: Path):
        client, run = _client(ok())
        target = tmp_path / "dump.sql"
        await client.exec("db", ["pg_dump", "-U", "paperless"], timeout=60, stdout_path=target)
        args = run.call_args.args[0]
        assert args[6:] == ["exec", "-T", "db", "pg_dump", "-U", "paperless"]
        assert run.call_args.kwargs["stdout_path"] == target
        assert run.call_args.kwargs["timeout"] == 60

    @pytest.mark.asyncio
    async def test_lifecycle_commands(self):
        client, run = _client(ok())
        await client.up()
        assert run.call_args.args[0][6:] == ["up", "-d"]
        await client.up(["db"])
        assert run.call_args.args[0][6:] == ["up", "-d", "db"]
        await client.stop(["webserver"])
        assert run.call_args.args[0][6:] == ["stop", "webserver"]
        await client.pull()
        assert run.call_args.args[0][6:] == ["pull"]
