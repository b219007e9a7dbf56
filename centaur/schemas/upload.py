"""
Upload Schemas
"""
from pydantic import BaseModel


class UploadResponse(BaseModel):
    path: str
    filename: str
    content_type: str
    size: int
