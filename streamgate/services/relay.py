import asyncio
from enum import Enum
from typing import AsyncIterator, Optional

from fastapi import Request
from fastapi.responses import StreamingResponse
from starlette.requests import ClientDisconnect
from starlette.types import Receive, Scope, Send

from streamgate.config.settings import ExtractionConfig
from streamgate.core.logging import log_debug, log_error, log_info, log_warning
from streamgate.infra.concurrency import ExtractionSlot
from streamgate.services.diagnostics import DiagnosticBuffer
from streamgate.services.extraction import ExtractionProcess
from streamgate.services.formats import FormatPlan


class RelayOutcome(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CLIENT_ABORTED = "client_aborted"


class StreamTruncated(Exception):
    """
    Raised from the body after headers were sent.
    Aborting the response is the only way left to tell the client.
    """


async def relay_chunks(stream: asyncio.StreamReader, chunk_size: int) -> AsyncIterator[bytes]:
    """
    Yield bounded chunks from `stream`.
    The next read waits until the consumer took the previous chunk.
    """
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            return
        yield chunk


class RelaySession:
    """Binds one extraction process to one HTTP response body"""

    def __init__(
        self,
        request: Request,
        process: ExtractionProcess,
        diagnostics: DiagnosticBuffer,
        diagnostics_task: "asyncio.Task[DiagnosticBuffer]",
        slot: Optional[ExtractionSlot],
        settings: ExtractionConfig,
        first_chunk: bytes = b"",
    ):
        self.request = request
        self.process = process
        self.diagnostics = diagnostics
        self.diagnostics_task = diagnostics_task
        self.slot = slot
        self.settings = settings
        self.bytes_sent = 0
        self.outcome: Optional[RelayOutcome] = None
        self.first_chunk = first_chunk
        self._close_task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._close_task is not None and self._close_task.done()

    async def body(self) -> AsyncIterator[bytes]:
        try:
            if self.first_chunk:
                chunk, self.first_chunk = self.first_chunk, b""
                yield chunk
                self.bytes_sent += len(chunk)

            async for chunk in relay_chunks(self.process.stdout, self.settings.chunk_size):
                yield chunk
                self.bytes_sent += len(chunk)

            await self._finish()
        except (asyncio.CancelledError, GeneratorExit):
            self.mark_aborted()
            raise
        finally:
            await self.close()

    def mark_aborted(self) -> None:
        if self.outcome is None:
            self.outcome = RelayOutcome.CLIENT_ABORTED

    async def _finish(self) -> None:
        try:
            returncode = await self.process.wait(timeout=self.settings.exit_timeout)
        except asyncio.TimeoutError:
            log_warning(self.request, f"Extractor closed stdout but did not exit (pid {self.process.pid})")
            returncode = await self.process.terminate(self.settings.terminate_grace)

        if returncode == 0:
            self.outcome = RelayOutcome.COMPLETED
            log_info(self.request, f"Stream completed: {self.bytes_sent} bytes")
            return

        self.outcome = RelayOutcome.FAILED
        await self.join_diagnostics(timeout=1.0)
        log_error(
            self.request,
            f"Extractor exited with code {returncode} after {self.bytes_sent} bytes",
            stderr=self.diagnostics.tail(),
        )
        raise StreamTruncated(f"Extractor exited with code {returncode}")

    async def close(self) -> None:
        """
        Release everything the session owns.
        Safe to call repeatedly and from concurrent paths; teardown runs to
        completion even if the caller is cancelled.
        """
        if self._close_task is None:
            self._close_task = asyncio.ensure_future(self._teardown())
        await asyncio.shield(self._close_task)

    async def _teardown(self) -> None:
        try:
            self.mark_aborted()
            if self.process.returncode is None:
                log_info(self.request, f"Terminating extractor (pid {self.process.pid}) after {self.bytes_sent} bytes")
            await self.process.terminate(self.settings.terminate_grace)
            await self.process.discard_output()
            await self.join_diagnostics(timeout=self.settings.terminate_grace)
        finally:
            if self.slot is not None:
                self.slot.release()
            log_debug(
                self.request,
                f"Relay closed: outcome={self.outcome.value} state={self.process.state.value} bytes={self.bytes_sent}",
            )

    async def join_diagnostics(self, timeout: float) -> None:
        if self.diagnostics_task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self.diagnostics_task), timeout=timeout)
        except asyncio.TimeoutError:
            self.diagnostics_task.cancel()
            try:
                await self.diagnostics_task
            except asyncio.CancelledError:
                pass


class RelayResponse(StreamingResponse):
    """Streaming response that always closes its relay session"""

    def __init__(self, session: RelaySession, plan: FormatPlan):
        headers = {
            'Content-Disposition': plan.content_disposition,
            'X-Content-Type-Options': 'nosniff',
            'Cache-Control': 'no-cache',
            'Accept-Ranges': 'none',
        }
        super().__init__(session.body(), media_type=plan.content_type, headers=headers)
        self.session = session

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except ClientDisconnect:
            self.session.mark_aborted()
        finally:
            await self.body_iterator.aclose()
            await self.session.close()
            if self.session.outcome is RelayOutcome.CLIENT_ABORTED:
                log_info(self.session.request, f"Client disconnected after {self.session.bytes_sent} bytes")
