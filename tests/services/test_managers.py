import asyncio
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import List, Sequence

import pytest
from PIL import Image
from pydantic import ValidationError

from djsite.schemas import AlbumPayload, EventPayload, PhotoUpdatePayload, VideoPayload
from djsite.services.gateway import InMemoryGateway, Query
from djsite.services.managers import (
    AdminActionError,
    AdminValidationError,
    AlbumsManager,
    ConfirmationRequired,
    DashboardService,
    EventsManager,
    MessagesManager,
    PhotosManager,
    RecordNotFound,
    SettingsManager,
    UploadedFile,
    VideosManager,
)
from djsite.services.storage import LocalStorage, StorageError
from tests.helpers import FlakyGateway, run


class RecordingStorage:
    def __init__(self, *, fail_remove: bool = False, fail_upload: Sequence[str] = ()) -> None:
        self.fail_remove = fail_remove
        self.fail_upload = set(fail_upload)
        self.uploaded: List[str] = []
        self.removed: List[List[str]] = []

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        if any(path.endswith(suffix) for suffix in self.fail_upload):
            raise StorageError(f"upload of {path} failed")
        self.uploaded.append(path)
        return f"https://cdn.test/{path}"

    async def remove(self, bucket: str, paths: Sequence[str]) -> None:
        if self.fail_remove:
            raise StorageError("storage offline")
        self.removed.append(list(paths))


def _png(width: int = 4, height: int = 3) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color="purple").save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


# Albums


def test_album_create_list_and_update(gateway, storage) -> None:
    manager = AlbumsManager(gateway, storage)

    async def scenario():
        first = await manager.create(AlbumPayload(title="  Tour 2024 "))
        await asyncio.sleep(0.001)
        await manager.create(AlbumPayload(title="Festival", description=""))
        await manager.update(first.id, AlbumPayload(title="Tour 2024 (edited)", is_published=False))
        return await manager.list()

    albums = run(scenario())

    assert [album.title for album in albums] == ["Festival", "Tour 2024 (edited)"]
    assert albums[0].description is None
    assert albums[1].is_published is False


def test_album_payload_requires_title() -> None:
    with pytest.raises(ValidationError) as excinfo:
        AlbumPayload(title="   ")
    assert "Title is required" in str(excinfo.value)


def test_album_delete_requires_confirmation(gateway, storage) -> None:
    manager = AlbumsManager(gateway, storage)
    album = run(manager.create(AlbumPayload(title="Keep")))

    with pytest.raises(ConfirmationRequired):
        run(manager.delete(album.id, confirm=False))

    assert len(run(manager.list())) == 1


def test_album_delete_removes_photo_blobs_and_rows(gateway, storage) -> None:
    albums = AlbumsManager(gateway, storage)
    photos = PhotosManager(gateway, storage)

    async def scenario():
        album = await albums.create(AlbumPayload(title="Tour"))
        await photos.upload(
            [UploadedFile("a.png", "image/png", _png()), UploadedFile("b.png", "image/png", _png())],
            album_id=album.id,
        )
        await albums.delete(album.id, confirm=True)
        return await gateway.select(Query("photos"))

    remaining = run(scenario())

    assert remaining == []
    assert len(storage.removed) == 1
    assert len(storage.removed[0]) == 2


def test_album_cover_validation(gateway, storage) -> None:
    manager = AlbumsManager(gateway, storage, max_cover_bytes=10)

    with pytest.raises(AdminValidationError):
        run(manager.upload_cover(UploadedFile("notes.txt", "text/plain", b"hello")))
    with pytest.raises(AdminValidationError):
        run(manager.upload_cover(UploadedFile("big.png", "image/png", b"x" * 11)))

    stored = run(manager.upload_cover(UploadedFile("ok.png", "image/png", b"x" * 10)))
    assert stored.storage_path.startswith("covers/")
    assert stored.storage_path.endswith(".png")


# Photos


def test_photo_upload_reads_dimensions_and_reports_failures(gateway) -> None:
    storage = RecordingStorage(fail_upload=[".gif"])
    manager = PhotosManager(gateway, storage)

    report = run(
        manager.upload(
            [
                UploadedFile("stage.png", "image/png", _png(8, 6)),
                UploadedFile("crowd.gif", "image/gif", b"GIF89a"),
            ]
        )
    )

    assert [photo.title for photo in report.uploaded] == ["stage"]
    assert report.uploaded[0].width == 8
    assert report.uploaded[0].height == 6
    assert report.uploaded[0].size_bytes == len(_png(8, 6))
    assert report.failed == ["crowd.gif"]


def test_photo_upload_validates_before_storing(gateway, storage) -> None:
    manager = PhotosManager(gateway, storage)

    with pytest.raises(AdminValidationError):
        run(manager.upload([UploadedFile("doc.pdf", "application/pdf", b"%PDF")]))
    with pytest.raises(AdminValidationError):
        run(manager.upload([]))

    assert storage.uploaded == []


def test_photo_delete_with_failing_blob_removal_still_deletes_row(gateway) -> None:
    storage = RecordingStorage(fail_remove=True)
    manager = PhotosManager(gateway, storage)

    async def scenario():
        report = await manager.upload([UploadedFile("set.png", "image/png", _png())])
        await manager.delete(report.uploaded[0].id, confirm=True)
        return await manager.list()

    listing = run(scenario())

    assert listing.photos == []


def test_photo_toggle_update_and_bulk_delete(gateway, storage) -> None:
    manager = PhotosManager(gateway, storage)

    async def scenario():
        report = await manager.upload(
            [UploadedFile(f"{name}.png", "image/png", _png()) for name in ("a", "b", "c")]
        )
        ids = [photo.id for photo in report.uploaded]
        toggled = await manager.toggle_published(ids[0])
        edited = await manager.update(
            ids[1], PhotoUpdatePayload(title="Main stage", display_order=2)
        )
        deleted = await manager.delete_many(ids[:2], confirm=True)
        remaining = await manager.list()
        return toggled, edited, deleted, remaining

    toggled, edited, deleted, remaining = run(scenario())

    assert toggled.is_published is False
    assert edited.title == "Main stage"
    assert edited.display_order == 2
    assert deleted == 2
    assert [photo.title for photo in remaining.photos] == ["c"]
    assert len(storage.removed[-1]) == 2


def test_photo_bulk_delete_requires_confirmation(gateway, storage) -> None:
    manager = PhotosManager(gateway, storage)
    report = run(manager.upload([UploadedFile("a.png", "image/png", _png())]))

    with pytest.raises(ConfirmationRequired):
        run(manager.delete_many([report.uploaded[0].id], confirm=False))

    assert len(run(manager.list()).photos) == 1


def test_photo_listing_sorts_albums_by_title(gateway, storage) -> None:
    albums = AlbumsManager(gateway, storage)
    photos = PhotosManager(gateway, storage)

    async def scenario():
        for title in ("Zebra", "Alpha", "Mid"):
            await albums.create(AlbumPayload(title=title))
        return await photos.list()

    listing = run(scenario())

    assert [album.title for album in listing.albums] == ["Alpha", "Mid", "Zebra"]


# Videos


def test_video_create_extracts_id_and_thumbnail(gateway, storage) -> None:
    manager = VideosManager(gateway, storage)

    video = run(
        manager.create(
            VideoPayload(title="Boiler set", url="https://www.youtube.com/watch?v=dQw4w9WgXcQ")
        )
    )

    assert video.external_id == "dQw4w9WgXcQ"
    assert video.thumbnail_url == "https://img.youtube.com/vi/dQw4w9WgXcQ/maxresdefault.jpg"


def test_video_create_rejects_unparseable_link(gateway, storage) -> None:
    manager = VideosManager(gateway, storage)

    with pytest.raises(AdminValidationError, match="Invalid video URL"):
        run(manager.create(VideoPayload(title="Bad", url="https://example.com/video")))

    assert run(manager.list()) == []


def test_uploaded_video_keeps_its_storage_path(gateway, storage) -> None:
    manager = VideosManager(gateway, storage)

    async def scenario():
        stored = await manager.upload_file(UploadedFile("live.mp4", "video/mp4", b"\x00\x01"))
        video = await manager.create(
            VideoPayload(
                title="Live",
                video_type="upload",
                url=stored.url,
                storage_path=stored.storage_path,
                cover_image_url="https://cdn.test/cover.jpg",
            )
        )
        return stored, video

    stored, video = run(scenario())

    assert video.storage_path == stored.storage_path
    assert video.thumbnail_url == "https://cdn.test/cover.jpg"
    with pytest.raises(AdminValidationError):
        run(manager.upload_file(UploadedFile("notes.txt", "text/plain", b"x")))


def test_featured_toggle_interleaving_keeps_at_most_one(gateway, storage) -> None:
    manager = VideosManager(gateway, storage)

    async def scenario():
        ids = []
        for name in ("A", "B", "C"):
            video = await manager.create(
                VideoPayload(title=name, url=f"https://vimeo.com/{len(ids) + 100}", video_type="vimeo")
            )
            ids.append(video.id)
        await asyncio.gather(manager.toggle_featured(ids[1]), manager.toggle_featured(ids[2]))
        return ids, await manager.list()

    ids, videos = run(scenario())

    featured = [video.id for video in videos if video.is_featured]
    assert len(featured) <= 1
    assert set(featured) <= {ids[1], ids[2]}


def test_featured_toggle_moves_and_clears_flag(gateway, storage) -> None:
    manager = VideosManager(gateway, storage)

    async def scenario():
        a = await manager.create(VideoPayload(title="A", url="https://vimeo.com/1", video_type="vimeo", is_featured=True))
        b = await manager.create(VideoPayload(title="B", url="https://vimeo.com/2", video_type="vimeo"))
        moved = await manager.toggle_featured(b.id)
        after_move = await manager.list()
        cleared = await manager.toggle_featured(b.id)
        return a, moved, after_move, cleared

    a, moved, after_move, cleared = run(scenario())

    assert moved.is_featured is True
    assert [video.title for video in after_move if video.is_featured] == ["B"]
    assert after_move[0].title == "B"
    assert cleared.is_featured is False


def test_video_delete_removes_blob_best_effort(gateway) -> None:
    storage = RecordingStorage(fail_remove=True)
    manager = VideosManager(gateway, storage)

    async def scenario():
        stored = await manager.upload_file(UploadedFile("live.mp4", "video/mp4", b"\x00"))
        video = await manager.create(
            VideoPayload(title="Live", video_type="upload", url=stored.url, storage_path=stored.storage_path)
        )
        await manager.delete(video.id, confirm=True)
        return await manager.list()

    assert run(scenario()) == []


# Events


def test_events_are_listed_by_date_and_toggle(gateway) -> None:
    manager = EventsManager(gateway)

    async def scenario():
        late = await manager.create(EventPayload(title="Late", event_date=date(2031, 5, 1)))
        await manager.create(EventPayload(title="Early", event_date=date(2031, 1, 1), city=" "))
        toggled = await manager.toggle_featured(late.id)
        hidden = await manager.toggle_published(late.id)
        return toggled, hidden, await manager.list()

    toggled, hidden, events = run(scenario())

    assert [event.title for event in events] == ["Early", "Late"]
    assert events[0].city is None
    assert events[0].status == "upcoming"
    assert toggled.is_featured is True
    assert hidden.is_published is False


def test_event_payload_requires_valid_date() -> None:
    with pytest.raises(ValidationError):
        EventPayload(title="Party", event_date="not-a-date")
    with pytest.raises(ValidationError):
        EventPayload(title="", event_date="2031-01-01")


def test_event_update_of_missing_row(gateway) -> None:
    manager = EventsManager(gateway)

    with pytest.raises(RecordNotFound):
        run(manager.update("missing", EventPayload(title="X", event_date=date(2031, 1, 1))))


def test_event_delete_requires_confirmation(gateway) -> None:
    manager = EventsManager(gateway)
    event = run(manager.create(EventPayload(title="Keep", event_date=date(2031, 1, 1))))

    with pytest.raises(ConfirmationRequired):
        run(manager.delete(event.id, confirm=False))
    run(manager.delete(event.id, confirm=True))

    assert run(manager.list()) == []


# Messages


def _seed_messages(gateway: InMemoryGateway):
    async def scenario():
        rows = []
        for index, (read, archived) in enumerate([(False, False), (True, False), (False, True)]):
            rows.append(
                await gateway.insert(
                    "contact_messages",
                    {
                        "name": f"Fan {index}",
                        "email": f"fan{index}@example.com",
                        "message": "Play at my wedding?",
                        "is_read": read,
                        "is_archived": archived,
                    },
                )
            )
            await asyncio.sleep(0.001)
        return rows

    return run(scenario())


def test_message_filters_and_unread_count(gateway) -> None:
    _seed_messages(gateway)
    manager = MessagesManager(gateway)

    inbox = run(manager.list("all"))
    unread = run(manager.list("unread"))
    archived = run(manager.list("archived"))

    assert [message.name for message in inbox.messages] == ["Fan 1", "Fan 0"]
    assert {message.name for message in unread.messages} == {"Fan 0", "Fan 2"}
    assert [message.name for message in archived.messages] == ["Fan 2"]
    assert inbox.unread_count == 2


def test_opening_a_message_marks_it_read(gateway) -> None:
    rows = _seed_messages(gateway)
    manager = MessagesManager(gateway)

    opened = run(manager.open(rows[0]["id"]))

    assert opened.is_read is True
    assert run(manager.list()).unread_count == 1


def test_archive_toggle_and_mark_all_read(gateway) -> None:
    rows = _seed_messages(gateway)
    manager = MessagesManager(gateway)

    archived = run(manager.toggle_archive(rows[0]["id"]))
    changed = run(manager.mark_all_read())

    assert archived.is_archived is True
    assert changed == 2
    assert run(manager.list()).unread_count == 0


# Settings


def test_settings_load_with_defaults_and_save(gateway) -> None:
    manager = SettingsManager(gateway)

    run(manager.save("site_name", "  DJ Nova "))
    run(manager.save_many({"hero_title": "NOVA", "site_name": "DJ Nova II"}))
    values = run(manager.load())

    assert values["site_name"] == "DJ Nova II"
    assert values["hero_title"] == "NOVA"
    assert values["site_tagline"] == "Feel the Beat"
    rows = run(gateway.select(Query("site_settings")))
    assert len(rows) == 2
    assert {row["type"] for row in rows} == {"text"}


def test_unknown_setting_keys_are_rejected(gateway) -> None:
    manager = SettingsManager(gateway)

    with pytest.raises(AdminValidationError):
        run(manager.save("favourite_colour", "purple"))

    assert run(gateway.select(Query("site_settings"))) == []


# Failures and dashboard


def test_backend_failure_becomes_action_error() -> None:
    gateway = FlakyGateway()
    gateway.failing.add("insert")
    manager = AlbumsManager(gateway, RecordingStorage())

    with pytest.raises(AdminActionError) as excinfo:
        run(manager.create(AlbumPayload(title="Tour")))

    assert excinfo.value.message == "Error saving album"
    gateway.failing.clear()
    assert run(manager.list()) == []


def test_photo_row_delete_failure_is_reported_after_blob_removal() -> None:
    gateway = FlakyGateway()
    storage = RecordingStorage()
    manager = PhotosManager(gateway, storage)
    report = run(manager.upload([UploadedFile("a.png", "image/png", _png())]))
    gateway.failing.add("delete")

    with pytest.raises(AdminActionError):
        run(manager.delete(report.uploaded[0].id, confirm=True))

    assert len(storage.removed) == 1
    gateway.failing.clear()
    assert len(run(manager.list()).photos) == 1


def test_dashboard_counts(gateway, storage) -> None:
    _seed_messages(gateway)
    run(PhotosManager(gateway, storage).upload([UploadedFile("a.png", "image/png", _png())]))

    stats = run(DashboardService(gateway).stats())

    assert stats.total_photos == 1
    assert stats.total_videos == 0
    assert stats.unread_messages == 2


def test_dashboard_without_backend_is_zero() -> None:
    stats = run(DashboardService(None).stats())
    assert stats.total_photos == stats.total_videos == stats.total_events == 0

    gateway = FlakyGateway()
    gateway.failing.add("count")
    assert run(DashboardService(gateway).stats()).unread_messages == 0


def test_local_storage_round_trip_through_manager(gateway, tmp_path: Path) -> None:
    storage = LocalStorage(tmp_path, "/media")
    manager = PhotosManager(gateway, storage)

    report = run(manager.upload([UploadedFile("night.png", "image/png", _png())]))
    photo = report.uploaded[0]

    assert photo.url.startswith("/media/photos/photos/")
    assert (tmp_path / "photos" / photo.storage_path).exists()
    run(manager.delete(photo.id, confirm=True))
    assert not (tmp_path / "photos" / photo.storage_path).exists()
