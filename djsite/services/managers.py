"""Admin create/read/update/delete flows for site content."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, Iterator, List, Literal, Sequence, Tuple, TypeVar

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

from djsite.schemas import (
    SETTING_DEFAULTS,
    AlbumPayload,
    AlbumRecord,
    ContactMessageRecord,
    DashboardStats,
    EventPayload,
    EventRecord,
    PhotoRecord,
    PhotoUpdatePayload,
    VideoPayload,
    VideoRecord,
)
from djsite.services.gateway import DataGateway, GatewayError, Query
from djsite.services.storage import StorageError, StorageGateway, build_object_path
from djsite.services.video_links import extract_video_id, thumbnail_url

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

MessageFilter = Literal["all", "unread", "archived"]

_PHOTO_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
_DEFAULT_MAX_COVER_BYTES = 5 * 1024 * 1024


class AdminActionError(RuntimeError):
    """A backend failure with a message meant for the admin user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AdminValidationError(ValueError):
    """Input rejected before any backend call."""


class ConfirmationRequired(Exception):
    """Destructive action attempted without explicit confirmation."""


class RecordNotFound(LookupError):
    """The requested row does not exist."""


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class StoredObject:
    url: str
    storage_path: str


@dataclass
class PhotoUploadReport:
    uploaded: List[PhotoRecord] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PhotoListing:
    photos: List[PhotoRecord]
    albums: List[AlbumRecord]


@dataclass(frozen=True)
class MessageListing:
    messages: List[ContactMessageRecord]
    unread_count: int


@contextmanager
def _reporting(message: str) -> Iterator[None]:
    """Turn backend failures into an ``AdminActionError`` carrying ``message``."""

    try:
        yield
    except (GatewayError, StorageError) as exc:
        logger.error("%s: %s", message, exc)
        raise AdminActionError(message) from exc


def _require_confirmation(confirm: bool) -> None:
    if not confirm:
        raise ConfirmationRequired("Please confirm this deletion")


def _image_size(data: bytes) -> Tuple[int, int] | None:
    try:
        with Image.open(BytesIO(data)) as image:
            return image.size
    except (UnidentifiedImageError, OSError):
        return None


def _validate_cover(upload: UploadedFile, max_bytes: int) -> None:
    if not upload.content_type.startswith("image/"):
        raise AdminValidationError("Please select a valid image")
    if not upload.data:
        raise AdminValidationError("Empty file uploaded")
    if len(upload.data) > max_bytes:
        raise AdminValidationError(
            f"The image must be smaller than {max_bytes // (1024 * 1024)}MB"
        )


class _TableManager:
    table: str

    def __init__(self, gateway: DataGateway, storage: StorageGateway | None = None) -> None:
        self._gateway = gateway
        self._storage = storage

    async def _fetch(self, row_id: str, model: type[RecordT]) -> RecordT:
        rows = await self._gateway.select(Query(self.table).where(id=row_id).limit(1))
        if not rows:
            raise RecordNotFound(f"{self.table} row {row_id} not found")
        return model.model_validate(rows[0])

    async def _store(self, bucket: str, upload: UploadedFile) -> StoredObject:
        if self._storage is None:
            raise AdminActionError("File storage is not configured")
        path = build_object_path(bucket, upload.filename)
        url = await self._storage.upload(bucket, path, upload.data, upload.content_type)
        return StoredObject(url=url, storage_path=path)

    async def _discard_blobs(self, bucket: str, paths: Sequence[str]) -> None:
        """Remove stored files; a failure leaves them orphaned and is only logged."""

        paths = [path for path in paths if path]
        if not paths or self._storage is None:
            return
        try:
            await self._storage.remove(bucket, paths)
        except StorageError as exc:
            logger.warning("Could not remove %d object(s) from %s: %s", len(paths), bucket, exc)


class AlbumsManager(_TableManager):
    table = "albums"

    def __init__(
        self,
        gateway: DataGateway,
        storage: StorageGateway | None = None,
        *,
        max_cover_bytes: int = _DEFAULT_MAX_COVER_BYTES,
    ) -> None:
        super().__init__(gateway, storage)
        self._max_cover_bytes = max_cover_bytes

    async def list(self) -> List[AlbumRecord]:
        with _reporting("Error loading albums"):
            rows = await self._gateway.select(
                Query(self.table).order("created_at", descending=True)
            )
        return [AlbumRecord.model_validate(row) for row in rows]

    async def create(self, payload: AlbumPayload) -> AlbumRecord:
        with _reporting("Error saving album"):
            row = await self._gateway.insert(self.table, payload.model_dump())
        return AlbumRecord.model_validate(row)

    async def update(self, album_id: str, payload: AlbumPayload) -> AlbumRecord:
        with _reporting("Error saving album"):
            row = await self._gateway.update(self.table, album_id, payload.model_dump())
        if row is None:
            raise RecordNotFound(f"Album {album_id} not found")
        return AlbumRecord.model_validate(row)

    async def delete(self, album_id: str, *, confirm: bool) -> None:
        _require_confirmation(confirm)
        with _reporting("Error deleting album"):
            photos = await self._gateway.select(Query("photos").where(album_id=album_id))
            await self._discard_blobs("photos", [row.get("storage_path") for row in photos])
            # Photo rows follow the album through the cascading foreign key.
            if not await self._gateway.delete(self.table, album_id):
                raise RecordNotFound(f"Album {album_id} not found")

    async def upload_cover(self, upload: UploadedFile) -> StoredObject:
        _validate_cover(upload, self._max_cover_bytes)
        with _reporting("Error uploading cover image"):
            return await self._store("covers", upload)


class PhotosManager(_TableManager):
    table = "photos"

    async def list(self) -> PhotoListing:
        with _reporting("Error loading photos"):
            photos, albums = await asyncio.gather(
                self._gateway.select(Query(self.table).order("created_at", descending=True)),
                self._gateway.select(Query("albums").order("title")),
            )
        return PhotoListing(
            photos=[PhotoRecord.model_validate(row) for row in photos],
            albums=[AlbumRecord.model_validate(row) for row in albums],
        )

    async def upload(
        self, files: Sequence[UploadedFile], *, album_id: str | None = None
    ) -> PhotoUploadReport:
        """Store each file and insert its row; one failure does not stop the rest."""

        if not files:
            raise AdminValidationError("At least one image is required")
        for upload in files:
            if upload.content_type not in _PHOTO_TYPES:
                raise AdminValidationError(f"Unsupported file type: {upload.filename}")
            if not upload.data:
                raise AdminValidationError(f"Empty file uploaded: {upload.filename}")

        report = PhotoUploadReport()
        for upload in files:
            try:
                stored = await self._store("photos", upload)
                size = _image_size(upload.data)
                row = await self._gateway.insert(
                    self.table,
                    {
                        "title": upload.filename.rsplit(".", 1)[0] or None,
                        "url": stored.url,
                        "storage_path": stored.storage_path,
                        "width": size[0] if size else None,
                        "height": size[1] if size else None,
                        "size_bytes": len(upload.data),
                        "album_id": album_id or None,
                        "is_published": True,
                        "display_order": 0,
                    },
                )
            except (GatewayError, StorageError, AdminActionError) as exc:
                logger.error("Error uploading %s: %s", upload.filename, exc)
                report.failed.append(upload.filename)
                continue
            report.uploaded.append(PhotoRecord.model_validate(row))
        return report

    async def update(self, photo_id: str, payload: PhotoUpdatePayload) -> PhotoRecord:
        with _reporting("Error updating photo"):
            row = await self._gateway.update(self.table, photo_id, payload.model_dump())
        if row is None:
            raise RecordNotFound(f"Photo {photo_id} not found")
        return PhotoRecord.model_validate(row)

    async def toggle_published(self, photo_id: str) -> PhotoRecord:
        with _reporting("Error updating photo"):
            photo = await self._fetch(photo_id, PhotoRecord)
            row = await self._gateway.update(
                self.table, photo_id, {"is_published": not photo.is_published}
            )
        if row is None:
            raise RecordNotFound(f"Photo {photo_id} not found")
        return PhotoRecord.model_validate(row)

    async def delete(self, photo_id: str, *, confirm: bool) -> None:
        _require_confirmation(confirm)
        with _reporting("Error deleting photo"):
            photo = await self._fetch(photo_id, PhotoRecord)
            await self._discard_blobs("photos", [photo.storage_path or ""])
            await self._gateway.delete(self.table, photo_id)

    async def delete_many(self, photo_ids: Sequence[str], *, confirm: bool) -> int:
        _require_confirmation(confirm)
        if not photo_ids:
            raise AdminValidationError("Select at least one photo")
        with _reporting("Error deleting photos"):
            rows = await self._gateway.select(Query(self.table))
            wanted = set(photo_ids)
            paths = [row.get("storage_path") for row in rows if row["id"] in wanted]
            await self._discard_blobs("photos", paths)
            return await self._gateway.delete_many(self.table, list(photo_ids))


class VideosManager(_TableManager):
    table = "videos"

    def __init__(
        self,
        gateway: DataGateway,
        storage: StorageGateway | None = None,
        *,
        max_cover_bytes: int = _DEFAULT_MAX_COVER_BYTES,
    ) -> None:
        super().__init__(gateway, storage)
        self._max_cover_bytes = max_cover_bytes

    async def list(self) -> List[VideoRecord]:
        with _reporting("Error loading videos"):
            rows = await self._gateway.select(
                Query(self.table)
                .order("is_featured", descending=True)
                .order("created_at", descending=True)
            )
        return [VideoRecord.model_validate(row) for row in rows]

    async def create(self, payload: VideoPayload) -> VideoRecord:
        values = self._values(payload)
        with _reporting("Error saving video"):
            row = await self._gateway.insert(self.table, values)
            if payload.is_featured:
                await self._gateway.set_exclusive_flag(self.table, "is_featured", row["id"])
                row["is_featured"] = True
        return VideoRecord.model_validate(row)

    async def update(self, video_id: str, payload: VideoPayload) -> VideoRecord:
        values = self._values(payload)
        with _reporting("Error saving video"):
            row = await self._gateway.update(self.table, video_id, values)
            if row is not None and payload.is_featured:
                await self._gateway.set_exclusive_flag(self.table, "is_featured", video_id)
                row["is_featured"] = True
        if row is None:
            raise RecordNotFound(f"Video {video_id} not found")
        return VideoRecord.model_validate(row)

    async def upload_file(self, upload: UploadedFile) -> StoredObject:
        if not upload.content_type.startswith("video/"):
            raise AdminValidationError("Please select a valid video file")
        if not upload.data:
            raise AdminValidationError("Empty file uploaded")
        with _reporting("Error uploading video"):
            return await self._store("videos", upload)

    async def upload_cover(self, upload: UploadedFile) -> StoredObject:
        _validate_cover(upload, self._max_cover_bytes)
        with _reporting("Error uploading cover image"):
            return await self._store("covers", upload)

    async def toggle_published(self, video_id: str) -> VideoRecord:
        with _reporting("Error updating video"):
            video = await self._fetch(video_id, VideoRecord)
            row = await self._gateway.update(
                self.table, video_id, {"is_published": not video.is_published}
            )
        if row is None:
            raise RecordNotFound(f"Video {video_id} not found")
        return VideoRecord.model_validate(row)

    async def toggle_featured(self, video_id: str) -> VideoRecord:
        """Feature a video (unfeaturing every other one) or clear its flag."""

        with _reporting("Error updating video"):
            video = await self._fetch(video_id, VideoRecord)
            if video.is_featured:
                await self._gateway.update(self.table, video_id, {"is_featured": False})
            else:
                await self._gateway.set_exclusive_flag(self.table, "is_featured", video_id)
            return await self._fetch(video_id, VideoRecord)

    async def delete(self, video_id: str, *, confirm: bool) -> None:
        _require_confirmation(confirm)
        with _reporting("Error deleting video"):
            video = await self._fetch(video_id, VideoRecord)
            await self._discard_blobs("videos", [video.storage_path or ""])
            await self._gateway.delete(self.table, video_id)

    @staticmethod
    def _values(payload: VideoPayload) -> Dict[str, object]:
        external_id = extract_video_id(payload.url, payload.video_type)
        if payload.video_type != "upload" and not external_id:
            raise AdminValidationError("Invalid video URL")
        return {
            "title": payload.title,
            "description": payload.description,
            "video_type": payload.video_type,
            "external_id": external_id,
            "url": payload.url,
            "storage_path": payload.storage_path if payload.video_type == "upload" else None,
            "thumbnail_url": payload.cover_image_url
            or thumbnail_url(payload.video_type, external_id),
            "is_featured": False,
            "is_published": payload.is_published,
        }


class EventsManager(_TableManager):
    table = "events"

    async def list(self) -> List[EventRecord]:
        with _reporting("Error loading events"):
            rows = await self._gateway.select(Query(self.table).order("event_date"))
        return [EventRecord.model_validate(row) for row in rows]

    async def create(self, payload: EventPayload) -> EventRecord:
        with _reporting("Error saving event"):
            row = await self._gateway.insert(self.table, self._values(payload))
        return EventRecord.model_validate(row)

    async def update(self, event_id: str, payload: EventPayload) -> EventRecord:
        with _reporting("Error saving event"):
            row = await self._gateway.update(self.table, event_id, self._values(payload))
        if row is None:
            raise RecordNotFound(f"Event {event_id} not found")
        return EventRecord.model_validate(row)

    async def toggle_published(self, event_id: str) -> EventRecord:
        return await self._toggle(event_id, "is_published")

    async def toggle_featured(self, event_id: str) -> EventRecord:
        return await self._toggle(event_id, "is_featured")

    async def delete(self, event_id: str, *, confirm: bool) -> None:
        _require_confirmation(confirm)
        with _reporting("Error deleting event"):
            if not await self._gateway.delete(self.table, event_id):
                raise RecordNotFound(f"Event {event_id} not found")

    async def _toggle(self, event_id: str, column: str) -> EventRecord:
        with _reporting("Error updating event"):
            event = await self._fetch(event_id, EventRecord)
            row = await self._gateway.update(
                self.table, event_id, {column: not getattr(event, column)}
            )
        if row is None:
            raise RecordNotFound(f"Event {event_id} not found")
        return EventRecord.model_validate(row)

    @staticmethod
    def _values(payload: EventPayload) -> Dict[str, object]:
        values = payload.model_dump()
        values["status"] = "upcoming"
        return values


class MessagesManager(_TableManager):
    table = "contact_messages"

    async def list(self, view: MessageFilter = "all") -> MessageListing:
        with _reporting("Error loading messages"):
            rows = await self._gateway.select(
                Query(self.table).order("created_at", descending=True)
            )
        messages = [ContactMessageRecord.model_validate(row) for row in rows]
        if view == "unread":
            visible = [message for message in messages if not message.is_read]
        elif view == "archived":
            visible = [message for message in messages if message.is_archived]
        else:
            visible = [message for message in messages if not message.is_archived]
        unread = sum(1 for message in messages if not message.is_read)
        return MessageListing(messages=visible, unread_count=unread)

    async def open(self, message_id: str) -> ContactMessageRecord:
        """Return a message, marking it read on first view."""

        with _reporting("Error loading message"):
            message = await self._fetch(message_id, ContactMessageRecord)
            if message.is_read:
                return message
            row = await self._gateway.update(self.table, message_id, {"is_read": True})
        if row is None:
            raise RecordNotFound(f"Message {message_id} not found")
        return ContactMessageRecord.model_validate(row)

    async def toggle_archive(self, message_id: str) -> ContactMessageRecord:
        with _reporting("Error archiving message"):
            message = await self._fetch(message_id, ContactMessageRecord)
            row = await self._gateway.update(
                self.table, message_id, {"is_archived": not message.is_archived}
            )
        if row is None:
            raise RecordNotFound(f"Message {message_id} not found")
        return ContactMessageRecord.model_validate(row)

    async def mark_all_read(self) -> int:
        with _reporting("Error marking messages"):
            return await self._gateway.update_where(
                self.table, {"is_read": False}, {"is_read": True}
            )

    async def delete(self, message_id: str, *, confirm: bool) -> None:
        _require_confirmation(confirm)
        with _reporting("Error deleting message"):
            if not await self._gateway.delete(self.table, message_id):
                raise RecordNotFound(f"Message {message_id} not found")


class SettingsManager(_TableManager):
    table = "site_settings"

    async def load(self) -> Dict[str, str]:
        with _reporting("Error loading settings"):
            rows = await self._gateway.select(Query(self.table))
        stored = {str(row["key"]): row.get("value") or "" for row in rows}
        values = {key: stored.get(key) or default for key, default in SETTING_DEFAULTS.items()}
        for key, value in stored.items():
            values.setdefault(key, value)
        return values

    async def save(self, key: str, value: str) -> None:
        await self.save_many({key: value})

    async def save_many(self, values: Dict[str, str]) -> None:
        unknown = sorted(set(values) - set(SETTING_DEFAULTS))
        if unknown:
            raise AdminValidationError(f"Unknown setting: {', '.join(unknown)}")
        with _reporting("Error saving settings"):
            for key, value in values.items():
                await self._gateway.upsert(
                    self.table,
                    {"key": key, "value": value.strip(), "type": "text"},
                    conflict_column="key",
                )


class DashboardService:
    """Headline counts for the admin landing page."""

    def __init__(self, gateway: DataGateway | None) -> None:
        self._gateway = gateway

    async def stats(self) -> DashboardStats:
        if self._gateway is None:
            return DashboardStats()
        try:
            photos, videos, events, unread = await asyncio.gather(
                self._gateway.count("photos"),
                self._gateway.count("videos"),
                self._gateway.count("events"),
                self._gateway.count("contact_messages", {"is_read": False}),
            )
        except GatewayError as exc:
            logger.warning("Error loading dashboard stats: %s", exc)
            return DashboardStats()
        return DashboardStats(
            total_photos=photos,
            total_videos=videos,
            total_events=events,
            unread_messages=unread,
        )
