from typing import List, Optional

from pydantic import BaseModel

from .internal import FormatInfo


class ErrorResponse(BaseModel):
    """Error body for every non-streamed failure"""
    error: str
    details: Optional[str] = None


class FormatsResponse(BaseModel):
    """Recognized format tokens"""
    default: str
    formats: List[FormatInfo]
