"""
Media items a module can send to the hub in a ``medias`` event.

Every item carries an absolute URL. Images and videos are links with a
different ``type``; attachments also name the file to save it as.
"""

from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from .contracts import WireEvent

_URL = TypeAdapter(AnyUrl)
_ILLEGAL_FILENAME = re.compile(r'[\\/:*?"<>|]')


class Link(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["link"] = "link"
    url: str

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        # Validated as a URL but sent as given; AnyUrl normalizes on dump.
        try:
            _URL.validate_python(value)
        except ValidationError as exc:
            raise ValueError(f"Invalid URL: {value}") from exc
        return value


class Image(Link):
    type: Literal["image"] = "image"


class Video(Link):
    type: Literal["video"] = "video"


class Attachment(Link):
    type: Literal["attachment"] = "attachment"
    filename: str

    @field_validator("filename")
    @classmethod
    def _plain_filename(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Filename must be a non-empty string.")
        if _ILLEGAL_FILENAME.search(value):
            raise ValueError(f"Filename contains invalid characters: {value}")
        return value


Media = Annotated[Link | Image | Video | Attachment, Field(discriminator="type")]


class MediasEvent(WireEvent):
    """Outbound batch of media items."""

    type: str = "medias"
    medias: list[Media] = Field(default_factory=list)


__all__ = ["Attachment", "Image", "Link", "Media", "MediasEvent", "Video"]
