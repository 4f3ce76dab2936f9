"""
Opaque pagination tokens.

A token is the unpadded URL-safe base64 encoding of a cursor model's JSON.
The encoding is an implementation detail; callers must treat tokens as
opaque strings.
"""

from __future__ import annotations

import base64
import binascii
from datetime import date, datetime
from typing import Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidCursorFormatError

CursorT = TypeVar("CursorT", bound="BaseCursor")


class BaseCursor(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class OffsetCursor(BaseCursor):
    offset: int = Field(ge=0)


class BrowserFeatureCountCursor(BaseCursor):
    """Resume point for the cumulative feature count series."""

    last_release_date: datetime
    # cumulative count up to and including last_release_date
    last_cumulative_count: int = Field(ge=0)


class MissingOneImplCursor(BaseCursor):
    release_date: datetime


class NotificationChannelCursor(BaseCursor):
    last_id: str
    last_updated_at: datetime


class SubscriptionCursor(BaseCursor):
    last_id: str
    last_updated_at: datetime


class ChromeDailyUsageCursor(BaseCursor):
    last_date: date


class UserSavedSearchesCursor(BaseCursor):
    # names are not unique; the id breaks ties
    last_id: str
    last_name: str


def encode_cursor(cursor: BaseCursor) -> str:
    data = cursor.model_dump_json().encode("utf-8")
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def decode_cursor(token: str, model: Type[CursorT]) -> CursorT:
    """
    Decode a token produced by encode_cursor.

    Raises:
        InvalidCursorFormatError: For bad base64, bad JSON or a payload that
            does not validate against ``model``.
    """
    try:
        raw = token.encode("ascii")
        padded = raw + b"=" * (-len(raw) % 4)
        data = base64.b64decode(padded, altchars=b"-_", validate=True)
    except (UnicodeEncodeError, binascii.Error, ValueError) as exc:
        raise InvalidCursorFormatError(f"cursor is not valid base64: {exc}") from exc
    try:
        return model.model_validate_json(data)
    except ValidationError as exc:
        raise InvalidCursorFormatError(f"cursor payload is invalid: {exc}") from exc
