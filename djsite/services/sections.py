"""Data for the public page sections.

Each section checks the preloaded snapshot first and reads the gateway itself
when the relevant part of the snapshot is missing or empty.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Literal, Optional

from djsite.schemas import (
    SETTING_DEFAULTS,
    AlbumRecord,
    ContactMessageRecord,
    ContactPayload,
    EventRecord,
    PhotoRecord,
    VideoRecord,
)
from djsite.services.content import ContentReader
from djsite.services.gateway import DataGateway, GatewayError
from djsite.services.preload import SnapshotBundle
from djsite.services.video_links import embed_url

logger = logging.getLogger(__name__)

EventView = Literal["upcoming", "past"]
SnapshotGetter = Callable[[], Optional[SnapshotBundle]]


class ContactUnavailable(RuntimeError):
    """The contact form cannot be delivered right now."""


@dataclass(frozen=True)
class GallerySection:
    photos: List[PhotoRecord]
    albums: List[AlbumRecord]
    selected_album: str | None = None


@dataclass(frozen=True)
class VideoCard:
    video: VideoRecord
    embed_url: str


@dataclass(frozen=True)
class VideosSection:
    featured: VideoCard | None
    others: List[VideoCard]


@dataclass(frozen=True)
class EventCard:
    event: EventRecord
    label: str


@dataclass(frozen=True)
class EventsSection:
    upcoming: List[EventCard]
    past: List[EventCard]
    view: EventView = "upcoming"

    @property
    def visible(self) -> List[EventCard]:
        return self.upcoming if self.view == "upcoming" else self.past


def event_label(event_date: date, today: date) -> str:
    if event_date == today:
        return "Today"
    if event_date < today:
        return "Past"
    return "Soon"


class SectionDataService:
    def __init__(
        self,
        gateway: DataGateway | None,
        snapshot: SnapshotGetter | None = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._gateway = gateway
        self._reader = ContentReader(gateway)
        self._snapshot: SnapshotGetter = snapshot or (lambda: None)
        self._today = today

    def using(self, snapshot: SnapshotGetter) -> "SectionDataService":
        """Return a copy that reads from one page load's preload snapshot."""

        return SectionDataService(self._gateway, snapshot, today=self._today)

    async def site_settings(self) -> Dict[str, str]:
        """Return every setting key, with defaults filling blanks."""

        bundle = self._snapshot()
        if bundle is not None and bundle.settings:
            stored: Dict[str, str] = dict(bundle.settings)
        else:
            stored = (await self._reader.site_settings()).value
        values = dict(SETTING_DEFAULTS)
        values.update({key: value for key, value in stored.items() if value})
        return values

    async def gallery(self, album_id: str | None = None) -> GallerySection:
        bundle = self._snapshot()
        if bundle is not None and bundle.photos:
            photos = list(bundle.photos)
            albums = (await self._reader.published_albums()).value
        else:
            photo_result, album_result = await asyncio.gather(
                self._reader.published_photos(), self._reader.published_albums()
            )
            photos, albums = photo_result.value, album_result.value

        known = {album.id for album in albums}
        selected = album_id if album_id in known else None
        if selected is not None:
            photos = [photo for photo in photos if photo.album_id == selected]
        return GallerySection(photos=photos, albums=albums, selected_album=selected)

    async def videos(self) -> VideosSection:
        bundle = self._snapshot()
        if bundle is not None and bundle.videos:
            videos = list(bundle.videos)
        else:
            videos = (await self._reader.published_videos()).value

        cards = [
            VideoCard(video, embed_url(video.video_type, video.external_id, video.url))
            for video in videos
        ]
        featured = next((card for card in cards if card.video.is_featured), None)
        others = [card for card in cards if not card.video.is_featured]
        return VideosSection(featured=featured, others=others)

    async def events(self, view: EventView = "upcoming") -> EventsSection:
        bundle = self._snapshot()
        if bundle is not None and bundle.events:
            events = list(bundle.events)
        else:
            events = (await self._reader.published_events()).value

        today = self._today()
        upcoming: List[EventCard] = []
        past: List[EventCard] = []
        for event in events:
            card = EventCard(event, event_label(event.event_date, today))
            if event.event_date >= today:
                upcoming.append(card)
            else:
                past.append(card)
        past.reverse()
        return EventsSection(upcoming=upcoming, past=past, view=view)

    async def submit_contact(self, payload: ContactPayload) -> ContactMessageRecord:
        if self._gateway is None:
            raise ContactUnavailable("Messages cannot be sent right now. Please email us instead.")
        values = payload.model_dump()
        values.update(is_read=False, is_archived=False)
        try:
            row = await self._gateway.insert("contact_messages", values)
        except GatewayError as exc:
            logger.error("Storing contact message failed: %s", exc)
            raise ContactUnavailable(
                "Your message could not be sent. Please try again later."
            ) from exc
        logger.info("Contact message received from %s", payload.email)
        return ContactMessageRecord.model_validate(row)
