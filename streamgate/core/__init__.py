from .errors import (
    ExtractionFailure,
    GatewayError,
    InvalidFormat,
    InvalidRequest,
    ResourceExhausted,
    SpawnError,
    UrlBlocked,
)

__all__ = [
    "ExtractionFailure",
    "GatewayError",
    "InvalidFormat",
    "InvalidRequest",
    "ResourceExhausted",
    "SpawnError",
    "UrlBlocked",
]
