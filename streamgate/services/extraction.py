import asyncio
import os
import signal
from enum import Enum
from typing import List, NamedTuple, Optional

from streamgate.config.settings import ExtractionConfig
from streamgate.core.errors import SpawnError
from streamgate.services.formats import FormatPlan


class CompletedProcess(NamedTuple):
    """Subprocess result"""
    returncode: int
    stdout: bytes
    stderr: bytes


class SubprocessExecutor:
    """Execute short-lived subprocesses with consistent error handling"""

    @staticmethod
    async def run(
        cmd: List[str],
        timeout: float,
        capture_stderr: bool = True
    ) -> CompletedProcess:
        """
        Run subprocess with timeout and proper cleanup.
        The child is killed and reaped on timeout or any other failure.
        """
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE if capture_stderr else asyncio.subprocess.DEVNULL,
            stdin=asyncio.subprocess.DEVNULL
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout
            )

            return CompletedProcess(
                returncode=process.returncode,
                stdout=stdout,
                stderr=stderr if capture_stderr else b""
            )

        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        except BaseException:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise


class ExtractionCommandBuilder:
    """Build extractor argument vectors"""

    @staticmethod
    def build_stream_command(
        source_url: str,
        plan: FormatPlan,
        settings: ExtractionConfig
    ) -> List[str]:
        """
        Build the command writing media to stdout.
        The source URL is always the final, separate argument.
        """
        cmd = [
            settings.binary,
            '-o', '-',
            '--no-playlist',
            '--socket-timeout', str(settings.socket_timeout),
            '--retries', str(settings.retries),
        ]

        if not settings.enable_live_streams:
            cmd.extend(['--match-filter', '!is_live'])

        # Progress and other chatter must stay off stdout
        cmd.append('--no-progress')
        cmd.append('--quiet')

        cmd.extend(plan.extraction_args)
        cmd.append(source_url)

        return cmd

    @staticmethod
    def build_version_command(settings: ExtractionConfig) -> List[str]:
        return [settings.binary, '--version']


class ProcessState(Enum):
    RUNNING = "running"
    EXITED_OK = "exited_ok"
    EXITED_ERROR = "exited_error"
    KILLED = "killed"


class ExtractionProcess:
    """One live extractor subprocess, owned by a single request"""

    def __init__(self, process: asyncio.subprocess.Process, cmd: List[str]):
        self._process = process
        self.cmd = cmd
        self._killed = False
        self._reaped = False

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        return self._process.stderr

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def state(self) -> ProcessState:
        if self._process.returncode is None:
            return ProcessState.RUNNING
        if self._killed and self._process.returncode < 0:
            return ProcessState.KILLED
        if self._process.returncode == 0:
            return ProcessState.EXITED_OK
        return ProcessState.EXITED_ERROR

    @property
    def reaped(self) -> bool:
        return self._reaped

    async def wait(self, timeout: Optional[float] = None) -> int:
        """Wait for exit; raises asyncio.TimeoutError when `timeout` elapses first"""
        if timeout is None:
            returncode = await self._process.wait()
        else:
            returncode = await asyncio.wait_for(self._process.wait(), timeout=timeout)
        self._reaped = True
        return returncode

    async def terminate(self, grace: float = 5.0) -> Optional[int]:
        """
        SIGTERM, then SIGKILL after `grace` seconds, then reap.
        Idempotent; a no-op once the process has exited and been reaped.
        """
        if self._process.returncode is not None:
            if not self._reaped:
                await self.wait()
            return self._process.returncode

        self._killed = self._signal_group(signal.SIGTERM)

        try:
            return await self.wait(timeout=grace)
        except asyncio.TimeoutError:
            self._killed = self._signal_group(signal.SIGKILL) or self._killed
            return await self.wait()

    async def discard_output(self, timeout: float = 1.0) -> None:
        """Drop unread stdout so the pipe reaches EOF and its descriptor closes"""
        try:
            await asyncio.wait_for(_read_to_eof(self._process.stdout), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    def _signal_group(self, sig: int) -> bool:
        """Signal the extractor and its helpers; False when nothing was signalled"""
        # The extractor runs in its own session; signal helpers such as ffmpeg too
        try:
            os.killpg(self._process.pid, sig)
        except ProcessLookupError:
            return False
        except PermissionError:
            try:
                self._process.send_signal(sig)
            except ProcessLookupError:
                return False
        return True


async def _read_to_eof(stream: asyncio.StreamReader, read_size: int = 64 * 1024) -> None:
    while await stream.read(read_size):
        pass


async def start(source_url: str, plan: FormatPlan, settings: ExtractionConfig) -> ExtractionProcess:
    """Spawn the extractor for `source_url` without a shell"""
    cmd = ExtractionCommandBuilder.build_stream_command(source_url, plan, settings)

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            start_new_session=True
        )
    except FileNotFoundError as e:
        raise SpawnError("Extraction binary not found", details=str(e)) from e
    except PermissionError as e:
        raise SpawnError("Extraction binary is not executable", details=str(e)) from e
    except (OSError, ValueError) as e:
        raise SpawnError("Failed to start extraction process", details=str(e)) from e

    return ExtractionProcess(process, cmd)
