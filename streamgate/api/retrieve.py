from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError

from streamgate.core.errors import InvalidRequest, UrlBlocked
from streamgate.core.logging import log_info
from streamgate.core.security import SecurityValidator, UrlValidationResult
from streamgate.infra.rate_limit import rate_limiter
from streamgate.models.internal import FormatInfo
from streamgate.models.request import RetrievalRequest
from streamgate.models.response import ErrorResponse, FormatsResponse
from streamgate.services.formats import resolve, supported_formats
from streamgate.services.relay import RelayResponse
from streamgate.utils.locale import get_translator, safe_url_for_log

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.get(
    "/retrieve",
    responses=ERROR_RESPONSES,
    dependencies=[Depends(rate_limiter)],
)
async def retrieve(
    request: Request,
    url: Optional[str] = Query(None, description="Source media URL"),
    format_token: Optional[str] = Query(None, alias="format", description="Format token"),
):
    """Stream extracted media for `url` in the requested format"""
    _ = get_translator(request)
    config = request.app.state.config
    service = request.app.state.retrieval

    if not url:
        raise InvalidRequest(_("error.missing_url"))

    try:
        retrieval = RetrievalRequest(url=url, format=format_token)
    except ValidationError as e:
        reason = e.errors()[0].get("msg", "Invalid format") if e.errors() else "Invalid format"
        raise InvalidRequest(_("error.invalid_url", reason=reason))

    plan = service.resolve_plan(retrieval)

    validation_result = await SecurityValidator.validate_url(
        retrieval.url,
        config.security,
        request.app.state.runtime.redis
    )
    if validation_result == UrlValidationResult.BLOCKED:
        raise UrlBlocked(_("error.private_ip"))
    if validation_result == UrlValidationResult.INVALID:
        raise InvalidRequest(_("error.invalid_url", reason="Invalid host"))

    log_info(request, _("log.starting_stream", url=safe_url_for_log(retrieval.url), format=plan.token))

    session = await service.open(request, retrieval, plan, _)
    return RelayResponse(session, plan)


@router.get("/formats", response_model=FormatsResponse)
async def list_formats(request: Request):
    """Recognized format tokens"""
    formats = []
    for token in supported_formats():
        plan = resolve(token)
        formats.append(FormatInfo(token=plan.token, content_type=plan.content_type, file_ext=plan.file_ext))
    return FormatsResponse(default=request.app.state.config.extraction.default_format, formats=formats)
