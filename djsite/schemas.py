"""Shared pydantic schemas."""

from __future__ import annotations

import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

VideoType = Literal["upload", "youtube", "vimeo"]
EventStatus = Literal["upcoming", "ongoing", "completed", "cancelled"]
SettingType = Literal["text", "image", "json", "boolean"]

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SETTING_DEFAULTS: Dict[str, str] = {
    "site_name": "DJ Name",
    "site_tagline": "Feel the Beat",
    "hero_title": "DJ NAME",
    "hero_subtitle": "Turning nights into unforgettable experiences",
    "about_text": "",
    "contact_email": "",
    "contact_phone": "",
    "location_city": "",
    "location_state": "",
    "instagram_url": "",
    "youtube_url": "",
    "soundcloud_url": "",
    "spotify_url": "",
    "hero_video_url": "",
    "hero_image_url": "",
}


class _Record(BaseModel):
    """Read-only projection of a backend row."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    created_at: datetime | None = None


class AlbumRecord(_Record):
    title: str
    description: str | None = None
    cover_image_url: str | None = None
    is_published: bool = False
    updated_at: datetime | None = None


class PhotoRecord(_Record):
    album_id: str | None = None
    title: str | None = None
    description: str | None = None
    url: str
    thumbnail_url: str | None = None
    storage_path: str | None = None
    width: int | None = None
    height: int | None = None
    size_bytes: int | None = None
    is_published: bool = True
    display_order: int = 0
    updated_at: datetime | None = None


class VideoRecord(_Record):
    title: str
    description: str | None = None
    url: str
    thumbnail_url: str | None = None
    storage_path: str | None = None
    video_type: VideoType = "upload"
    external_id: str | None = None
    duration_seconds: int | None = None
    is_featured: bool = False
    is_published: bool = True
    display_order: int = 0
    updated_at: datetime | None = None


class EventRecord(_Record):
    title: str
    description: str | None = None
    venue: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = "Brasil"
    event_date: date
    start_time: time | None = None
    end_time: time | None = None
    cover_image_url: str | None = None
    ticket_url: str | None = None
    ticket_price: Decimal | None = None
    is_featured: bool = False
    is_published: bool = True
    status: EventStatus = "upcoming"
    updated_at: datetime | None = None


class SiteSettingRecord(_Record):
    key: str
    value: str | None = None
    type: SettingType = "text"
    description: str | None = None


class ContactMessageRecord(_Record):
    name: str
    email: str
    phone: str | None = None
    subject: str | None = None
    message: str
    event_type: str | None = None
    event_date: date | None = None
    is_read: bool = False
    is_archived: bool = False


def _required_text(value: str, label: str) -> str:
    cleaned = value.strip() if isinstance(value, str) else ""
    if not cleaned:
        raise ValueError(f"{label} is required")
    return cleaned


def _optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class AlbumPayload(BaseModel):
    title: str
    description: str | None = None
    cover_image_url: str | None = None
    is_published: bool = True

    @field_validator("title")
    @classmethod
    def _title(cls, value: str) -> str:
        return _required_text(value, "Title")

    @field_validator("description", "cover_image_url")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return _optional_text(value)


class PhotoUpdatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    album_id: str | None = None
    display_order: int = Field(default=0, ge=0)
    is_published: bool = True

    @field_validator("title", "description", "album_id")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return _optional_text(value)


class VideoPayload(BaseModel):
    title: str
    description: str | None = None
    video_type: VideoType = "youtube"
    url: str
    cover_image_url: str | None = None
    storage_path: str | None = None
    is_featured: bool = False
    is_published: bool = True

    @field_validator("title")
    @classmethod
    def _title(cls, value: str) -> str:
        return _required_text(value, "Title")

    @field_validator("url")
    @classmethod
    def _url(cls, value: str) -> str:
        return _required_text(value, "Video URL")

    @field_validator("description", "cover_image_url", "storage_path")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return _optional_text(value)


class EventPayload(BaseModel):
    title: str
    event_date: date
    description: str | None = None
    venue: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    start_time: time | None = None
    end_time: time | None = None
    ticket_url: str | None = None
    ticket_price: Decimal | None = Field(default=None, ge=0)
    is_featured: bool = False
    is_published: bool = True

    @field_validator("title")
    @classmethod
    def _title(cls, value: str) -> str:
        return _required_text(value, "Title")

    @field_validator("description", "venue", "address", "city", "state", "ticket_url")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return _optional_text(value)


class ContactPayload(BaseModel):
    """Public contact form submission."""

    name: str
    email: str
    message: str
    phone: str | None = None
    subject: str | None = None
    event_type: str | None = None
    event_date: date | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        return _required_text(value, "Name")

    @field_validator("message")
    @classmethod
    def _message(cls, value: str) -> str:
        return _required_text(value, "Message")

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        cleaned = _required_text(value, "Email")
        if not _EMAIL_PATTERN.match(cleaned):
            raise ValueError("Please enter a valid email address")
        return cleaned

    @field_validator("phone", "subject", "event_type")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        return _optional_text(value)


class SettingsPayload(BaseModel):
    values: Dict[str, str] = Field(default_factory=dict)


class BulkDeletePayload(BaseModel):
    ids: List[str] = Field(min_length=1)


class LoginPayload(BaseModel):
    email: str
    password: str


class DashboardStats(BaseModel):
    total_photos: int = 0
    total_videos: int = 0
    total_events: int = 0
    unread_messages: int = 0
