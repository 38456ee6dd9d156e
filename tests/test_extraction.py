import asyncio
import json
import os

import pytest

from streamgate.config.settings import ExtractionConfig
from streamgate.core.errors import SpawnError
from streamgate.services import extraction
from streamgate.services.extraction import (
    ExtractionCommandBuilder,
    ProcessState,
    SubprocessExecutor,
)
from streamgate.services.formats import resolve
from tests.conftest import write_script

HOSTILE_URLS = [
    'https://example.com/watch?v=abc"; rm -rf /',
    "https://example.com/watch?v=`id`",
    "https://example.com/watch?v=$(touch pwned)&list=x|cat /etc/passwd",
    "https://example.com/a b'c\\d>out.txt",
]


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def test_stream_command_ends_with_source_url():
    settings = ExtractionConfig(binary="yt-dlp", socket_timeout=7, retries=1)
    plan = resolve("audio")
    url = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    cmd = ExtractionCommandBuilder.build_stream_command(url, plan, settings)

    assert cmd[0] == "yt-dlp"
    assert cmd[-1] == url
    assert cmd[cmd.index("-o") + 1] == "-"
    assert cmd[cmd.index("--socket-timeout") + 1] == "7"
    assert cmd[cmd.index("--retries") + 1] == "1"
    assert "--no-playlist" in cmd
    assert "--match-filter" in cmd
    for arg in plan.extraction_args:
        assert arg in cmd


def test_live_filter_is_optional():
    settings = ExtractionConfig(enable_live_streams=True)
    cmd = ExtractionCommandBuilder.build_stream_command("https://example.com/v", resolve("video"), settings)
    assert "--match-filter" not in cmd


@pytest.mark.asyncio
@pytest.mark.parametrize("url", HOSTILE_URLS)
async def test_url_reaches_binary_as_one_literal_argument(extractor, tmp_path, url):
    settings = ExtractionConfig(binary=extractor("echo_args"))
    cwd = os.getcwd()
    os.chdir(tmp_path)
    try:
        process = await extraction.start(url, resolve("video"), settings)
        output = await asyncio.wait_for(process.stdout.read(), timeout=10)
        await process.wait(timeout=10)
    finally:
        os.chdir(cwd)

    argv = json.loads(output)
    assert argv[-1] == url
    assert argv == process.cmd[1:]
    assert not (tmp_path / "pwned").exists()
    assert not (tmp_path / "out.txt").exists()
    assert process.state is ProcessState.EXITED_OK


@pytest.mark.asyncio
async def test_missing_binary_raises_spawn_error(tmp_path):
    settings = ExtractionConfig(binary=str(tmp_path / "no-such-extractor"))
    with pytest.raises(SpawnError) as exc_info:
        await extraction.start("https://example.com/v", resolve("video"), settings)
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_non_executable_binary_raises_spawn_error(tmp_path):
    path = tmp_path / "not-executable"
    path.write_text("#!/bin/sh\necho hi\n")
    os.chmod(path, 0o644)

    with pytest.raises(SpawnError):
        await extraction.start("https://example.com/v", resolve("video"), ExtractionConfig(binary=str(path)))


@pytest.mark.asyncio
async def test_terminate_kills_and_reaps_running_process(extractor):
    settings = ExtractionConfig(binary=extractor("endless"))
    process = await extraction.start("https://example.com/v", resolve("video"), settings)
    assert await process.stdout.read(1024)
    assert process.state is ProcessState.RUNNING

    await asyncio.wait_for(process.terminate(grace=2.0), timeout=10)

    assert process.state is ProcessState.KILLED
    assert process.reaped
    assert not pid_alive(process.pid)

    # Second call is a no-op
    returncode = await process.terminate(grace=2.0)
    assert returncode == process.returncode
    await process.discard_output()


@pytest.mark.asyncio
async def test_terminate_after_natural_exit_is_noop(extractor):
    settings = ExtractionConfig(binary=extractor("fail"))
    process = await extraction.start("https://example.com/v", resolve("video"), settings)
    await process.stderr.read()
    await process.wait(timeout=10)

    assert process.state is ProcessState.EXITED_ERROR
    assert await process.terminate() == 1
    assert process.state is ProcessState.EXITED_ERROR


@pytest.mark.asyncio
async def test_terminate_escalates_to_sigkill(tmp_path):
    stubborn = write_script(tmp_path, "stubborn", """
        import signal, sys, time
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        sys.stdout.write("ready")
        sys.stdout.flush()
        time.sleep(60)
    """)
    process = await extraction.start("https://example.com/v", resolve("video"), ExtractionConfig(binary=stubborn))
    assert await process.stdout.read(5) == b"ready"

    await asyncio.wait_for(process.terminate(grace=0.5), timeout=10)

    assert process.state is ProcessState.KILLED
    assert process.returncode < 0
    assert not pid_alive(process.pid)


@pytest.mark.asyncio
async def test_graceful_exit_on_sigterm_is_not_reported_as_killed(tmp_path):
    graceful = write_script(tmp_path, "graceful", """
        import signal, sys, time
        signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))
        sys.stdout.write("ready")
        sys.stdout.flush()
        time.sleep(60)
    """)
    process = await extraction.start("https://example.com/v", resolve("video"), ExtractionConfig(binary=graceful))
    assert await process.stdout.read(5) == b"ready"

    assert await asyncio.wait_for(process.terminate(grace=2.0), timeout=10) == 0

    assert process.state is ProcessState.EXITED_OK
    assert process.reaped


@pytest.mark.asyncio
async def test_subprocess_executor_collects_output(extractor):
    result = await SubprocessExecutor.run([extractor("echo_args"), "--version"], timeout=10)
    assert result.returncode == 0
    assert json.loads(result.stdout) == ["--version"]


@pytest.mark.asyncio
async def test_subprocess_executor_times_out(extractor):
    with pytest.raises(asyncio.TimeoutError):
        await SubprocessExecutor.run([extractor("silent")], timeout=0.5)
