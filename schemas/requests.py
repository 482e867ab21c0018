# User value: This file helps users get clear request shapes for subtitle translation.
from pydantic import BaseModel, Field
from typing import Optional


class UploadUrlRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    target_lang: str = Field(..., min_length=1, max_length=16)
    model: Optional[str] = None


class ConfirmUploadRequest(BaseModel):
    job_id: str = Field(..., min_length=1, max_length=64)
