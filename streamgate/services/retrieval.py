import asyncio
from typing import Callable

from fastapi import Request

from streamgate.config.settings import Config
from streamgate.core.errors import ExtractionFailure, ResourceExhausted
from streamgate.core.logging import log_info, log_warning
from streamgate.infra.concurrency import ExtractionLimiter
from streamgate.models.request import RetrievalRequest
from streamgate.services import extraction
from streamgate.services.diagnostics import DiagnosticBuffer, drain
from streamgate.services.formats import FormatPlan, resolve
from streamgate.services.relay import RelayOutcome, RelaySession


class RetrievalService:
    """
    Drives one retrieval from a resolved plan to a committed stream.

    Spawning -> probe -> Streaming. Anything that fails before the first byte
    is committed becomes a structured error, with every resource released
    before the error leaves this class.
    """

    def __init__(self, config: Config, limiter: ExtractionLimiter):
        self.config = config
        self.limiter = limiter

    def resolve_plan(self, retrieval: RetrievalRequest) -> FormatPlan:
        token = retrieval.format
        if token is None:
            token = self.config.extraction.default_format
        return resolve(token)

    async def open(
        self,
        request: Request,
        retrieval: RetrievalRequest,
        plan: FormatPlan,
        _: Callable[..., str],
    ) -> RelaySession:
        settings = self.config.extraction

        slot = await self.limiter.try_acquire()
        if slot is None:
            raise ResourceExhausted(_("error.server_busy", max=self.limiter.max_concurrent))

        try:
            process = await extraction.start(retrieval.url, plan, settings)
        except BaseException:
            slot.release()
            raise

        log_info(request, _("log.spawned", pid=process.pid))

        buffer = DiagnosticBuffer(settings.stderr_cap)
        diagnostics_task = asyncio.ensure_future(drain(process.stderr, buffer))
        session = RelaySession(
            request=request,
            process=process,
            diagnostics=buffer,
            diagnostics_task=diagnostics_task,
            slot=slot,
            settings=settings,
        )

        try:
            session.first_chunk = await self._probe(session, _)
        except ExtractionFailure:
            session.outcome = RelayOutcome.FAILED
            await session.close()
            raise
        except BaseException:
            await session.close()
            raise

        return session

    async def _probe(self, session: RelaySession, _: Callable[..., str]) -> bytes:
        """
        Hold the response until the extractor writes its first chunk.
        Headers are never committed on an empty body: exiting or staying silent
        past `first_byte_timeout` ends in a structured error instead.
        """
        settings = self.config.extraction
        process = session.process

        try:
            chunk = await asyncio.wait_for(
                process.stdout.read(settings.chunk_size),
                timeout=settings.first_byte_timeout
            )
        except asyncio.TimeoutError:
            log_warning(
                session.request,
                f"No output from extractor (pid {process.pid}) within {settings.first_byte_timeout}s"
            )
            await process.terminate(settings.terminate_grace)
            await session.join_diagnostics(timeout=1.0)
            raise ExtractionFailure(
                _("error.first_byte_timeout", seconds=settings.first_byte_timeout),
                details=session.diagnostics.tail() or None
            )

        if chunk:
            return chunk

        try:
            returncode = await process.wait(timeout=settings.exit_timeout)
        except asyncio.TimeoutError:
            returncode = await process.terminate(settings.terminate_grace)
        await session.join_diagnostics(timeout=1.0)

        details = session.diagnostics.tail() or None
        if returncode == 0:
            raise ExtractionFailure(_("error.no_output"), details=details)
        raise ExtractionFailure(_("error.extraction_failed", code=returncode), details=details)
