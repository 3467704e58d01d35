"""Read access for public content with a uniform three-way outcome."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, List, Literal, TypeVar

from pydantic import ValidationError

from djsite.schemas import AlbumRecord, EventRecord, PhotoRecord, VideoRecord
from djsite.services.gateway import DataGateway, GatewayError, Query

logger = logging.getLogger(__name__)

T = TypeVar("T")

FetchStatus = Literal["success", "empty", "error"]


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """Outcome of a read: a value, nothing to show, or a failure reason."""

    status: FetchStatus
    value: T
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "error"

    @classmethod
    def of(cls, value: T) -> "FetchResult[T]":
        return cls("success" if value else "empty", value)

    @classmethod
    def failed(cls, empty: T, reason: str) -> "FetchResult[T]":
        return cls("error", empty, reason)


class ContentReader:
    """Single data-access layer used by the preloader and the page sections."""

    def __init__(self, gateway: DataGateway | None) -> None:
        self._gateway = gateway

    @property
    def configured(self) -> bool:
        return self._gateway is not None

    async def site_settings(self) -> FetchResult[Dict[str, str]]:
        def convert(rows: List[dict]) -> Dict[str, str]:
            return {str(row["key"]): row.get("value") or "" for row in rows}

        return await self._read("settings", Query("site_settings"), convert, {})

    async def published_photos(self, limit: int | None = None) -> FetchResult[List[PhotoRecord]]:
        query = Query("photos").where(is_published=True).order("display_order")
        if limit is not None:
            query = query.limit(limit)
        return await self._read("photos", query, _records(PhotoRecord), [])

    async def published_videos(self, limit: int | None = None) -> FetchResult[List[VideoRecord]]:
        query = (
            Query("videos")
            .where(is_published=True)
            .order("is_featured", descending=True)
            .order("display_order")
        )
        if limit is not None:
            query = query.limit(limit)
        return await self._read("videos", query, _records(VideoRecord), [])

    async def published_events(self, limit: int | None = None) -> FetchResult[List[EventRecord]]:
        query = Query("events").where(is_published=True).order("event_date")
        if limit is not None:
            query = query.limit(limit)
        return await self._read("events", query, _records(EventRecord), [])

    async def published_albums(self) -> FetchResult[List[AlbumRecord]]:
        query = Query("albums").where(is_published=True).order("created_at", descending=True)
        return await self._read("albums", query, _records(AlbumRecord), [])

    async def _read(
        self,
        label: str,
        query: Query,
        convert: Callable[[List[dict]], T],
        empty: T,
    ) -> FetchResult[T]:
        if self._gateway is None:
            return FetchResult("empty", empty)
        try:
            rows = await self._gateway.select(query)
            value = convert(rows)
        except (GatewayError, ValidationError, KeyError) as exc:
            logger.warning("Reading %s failed: %s", label, exc)
            return FetchResult.failed(empty, str(exc))
        return FetchResult.of(value)


def _records(model: type[T]) -> Callable[[List[dict]], List[T]]:
    def convert(rows: List[dict]) -> List[T]:
        return [model.model_validate(row) for row in rows]  # type: ignore[attr-defined]

    return convert


async def guarded(
    label: str, action: Callable[[], Awaitable[T]], fallback: T
) -> T:
    """Await ``action`` and fall back on any ordinary failure."""

    try:
        return await action()
    except Exception as exc:  # noqa: BLE001 - passive reads must never break a page
        logger.warning("%s failed: %s", label, exc)
        return fallback


