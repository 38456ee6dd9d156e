from pydantic import BaseModel


class FormatInfo(BaseModel):
    """Public description of a format token"""
    token: str
    content_type: str
    file_ext: str
