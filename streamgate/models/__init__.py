from .internal import FormatInfo
from .request import RetrievalRequest
from .response import ErrorResponse, FormatsResponse

__all__ = ["ErrorResponse", "FormatInfo", "FormatsResponse", "RetrievalRequest"]
