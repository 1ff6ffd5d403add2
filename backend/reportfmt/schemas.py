from __future__ import annotations

import base64
import binascii
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ReportFormatFileIn(BaseModel):
    """A file of a report format with base64 encoded content."""

    name: str
    content: str = ""

    @field_validator("content")
    @classmethod
    def _content_is_base64(cls, value: str) -> str:
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("content must be base64") from exc
        return value

    def decoded(self) -> bytes:
        return base64.b64decode(self.content)


class ReportFormatParamIn(BaseModel):
    name: str
    type: Optional[str] = None
    value: Optional[str] = None
    default: Optional[str] = None
    min: Optional[str] = None
    max: Optional[str] = None
    options: List[str] = Field(default_factory=list)


class ReportFormatCreate(BaseModel):
    """Payload for importing a report format."""

    # purpose: mirror the importer bundle: identity, files, params and optional signature
    id: str
    name: str
    extension: str = ""
    content_type: str = ""
    summary: str = ""
    description: str = ""
    signature: Optional[str] = None
    files: List[ReportFormatFileIn] = Field(default_factory=list)
    params: List[ReportFormatParamIn] = Field(default_factory=list)


class ReportFormatCopy(BaseModel):
    name: Optional[str] = None


class ReportFormatUpdate(BaseModel):
    name: Optional[str] = None
    summary: Optional[str] = None
    active: Optional[bool] = None
    predefined: Optional[bool] = None
    param_name: Optional[str] = None
    param_value: Optional[str] = None


class ReportFormatParamOut(BaseModel):
    name: str
    type: str
    value: str
    default: str
    min: Optional[int] = None
    max: Optional[int] = None
    options: List[str] = Field(default_factory=list)


class ReportFormatOut(BaseModel):
    id: str
    name: str
    owner_id: Optional[str] = None
    extension: str
    content_type: str
    summary: str
    description: str
    trust: str
    trust_time: Optional[datetime] = None
    active: bool
    predefined: bool = False
    in_use: bool = False
    creation_time: Optional[datetime] = None
    modification_time: Optional[datetime] = None
    params: List[ReportFormatParamOut] = Field(default_factory=list)


class ReportFormatTrashOut(ReportFormatOut):
    original_id: Optional[str] = None


class ReportFormatAlertOut(BaseModel):
    id: str
    name: str
