"""YouTube/Vimeo link parsing."""

from __future__ import annotations

import re

_YOUTUBE_ID = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?)/|.*[?&]v=)|youtu\.be/)([^\"&?/\s]{11})"
)
_VIMEO_ID = re.compile(r"vimeo\.com/(?:video/)?(\d+)")


def extract_video_id(url: str, video_type: str) -> str | None:
    """Return the platform id embedded in ``url``, if any."""

    if not url:
        return None
    if video_type == "youtube":
        match = _YOUTUBE_ID.search(url)
    elif video_type == "vimeo":
        match = _VIMEO_ID.search(url)
    else:
        return None
    return match.group(1) if match else None


def thumbnail_url(video_type: str, external_id: str | None) -> str | None:
    if video_type == "youtube" and external_id:
        return f"https://img.youtube.com/vi/{external_id}/maxresdefault.jpg"
    return None


def embed_url(video_type: str, external_id: str | None, url: str) -> str:
    """Player URL for the showreel lightbox."""

    if video_type == "youtube" and external_id:
        return f"https://www.youtube.com/embed/{external_id}?autoplay=1"
    if video_type == "vimeo" and external_id:
        return f"https://player.vimeo.com/video/{external_id}?autoplay=1"
    return url
