from pydantic import BaseModel, ConfigDict, Field, validator
from typing import Optional
from urllib.parse import urlparse


class RetrievalRequest(BaseModel):
    """Accepted retrieval request; immutable once validated"""
    model_config = ConfigDict(frozen=True)

    url: str = Field(..., min_length=1, description="Source media URL")
    format: Optional[str] = Field(None, description="Format token (audio, video, mp3, ...); default when absent")

    @validator('url')
    def validate_url_syntax(cls, v):
        """Validate URL syntax only (SSRF check done at endpoint)"""
        if any(ord(ch) < 32 or ord(ch) == 127 for ch in v):
            raise ValueError("URL contains control characters")
        parsed = urlparse(v)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError("Invalid URL format")
        return v
