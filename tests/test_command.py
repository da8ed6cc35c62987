"""Tests for the subprocess command adapter (real processes)."""

import sys

import pytest

from stageflow.engine.command import SubprocessCommandAdapter
from stageflow.engine.exceptions import TimeoutFailure

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")


@pytest.mark.asyncio
async def test_captures_stdout_and_exit_code():
    adapter = SubprocessCommandAdapter()

    result = await adapter.execute("echo hello", "", {})

    assert result.succeeded
    assert result.exit_code == 0
    assert result.stdout.strip() == "hello"


@pytest.mark.asyncio
async def test_non_zero_exit_is_a_result():
    adapter = SubprocessCommandAdapter()

    result = await adapter.execute("echo broken >&2; exit 3", "", {})

    assert not result.succeeded
    assert result.exit_code == 3
    assert "broken" in result.stderr


@pytest.mark.asyncio
async def test_environment_is_passed_to_process():
    adapter = SubprocessCommandAdapter(inherit_environ=False)

    result = await adapter.execute('printf "%s" "$IMAGE_TAG"', "", {"IMAGE_TAG": "1.4.2"})

    assert result.stdout == "1.4.2"


@pytest.mark.asyncio
async def test_working_directory(tmp_path):
    (tmp_path / "marker.txt").write_text("present")
    adapter = SubprocessCommandAdapter()

    result = await adapter.execute("cat marker.txt", str(tmp_path), {})

    assert result.stdout == "present"


@pytest.mark.asyncio
async def test_missing_working_directory_raises(tmp_path):
    adapter = SubprocessCommandAdapter()

    with pytest.raises(FileNotFoundError, match="does-not-exist"):
        await adapter.execute("true", str(tmp_path / "does-not-exist"), {})


@pytest.mark.asyncio
async def test_timeout_kills_process():
    adapter = SubprocessCommandAdapter()

    with pytest.raises(TimeoutFailure) as exc_info:
        await adapter.execute("sleep 5", "", {}, timeout=0.2)

    assert exc_info.value.seconds == 0.2


@pytest.mark.asyncio
async def test_direct_execution_without_shell():
    adapter = SubprocessCommandAdapter(shell=False)

    result = await adapter.execute("echo '$HOME' literal", "", {})

    assert result.stdout.strip() == "$HOME literal"
