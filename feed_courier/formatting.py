"""Render normalized items as Discord webhook payloads."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from .schemas import NormalizedItem

DEFAULT_USERNAME = "Media Bot"
DEFAULT_ICON = "📌"
DEFAULT_COLOR = 0x529ECC
BULK_DELETE_COLOR = 0xF56565

TITLE_LIMIT = 250
DESCRIPTION_LIMIT = 2000
FIELD_VALUE_LIMIT = 1024
MAX_TAGS = 10
# Discord caps a message at 10 embeds; the primary message carries the first image.
MAX_FOLLOWUP_IMAGES = 9

POST_TYPE_ICONS: dict[str, str] = {
    "photo": "📷",
    "video": "🎬",
    "text": "📝",
    "quote": "💬",
    "link": "🔗",
    "audio": "🎵",
    "chat": "💭",
    "answer": "❓",
}

POST_TYPE_COLORS: dict[str, int] = {
    "photo": 0x529ECC,
    "video": 0xE74C3C,
    "text": 0x35465C,
    "quote": 0x9B59B6,
    "link": 0x3498DB,
    "audio": 0xE91E63,
    "chat": 0x2ECC71,
    "answer": 0xF39C12,
}

VIDEO_LINE_PREFIX = "\n\n🎬 "
HIDDEN_VIDEO_TEXT = "Video (link hidden)"

_PROVIDER_DOMAIN = re.compile(r"tumblr\.com", re.IGNORECASE)
_DIRECT_MEDIA = re.compile(r"\.(mp4|webm|mov|m4v)(\?|$)", re.IGNORECASE)
_MENTION = re.compile(r"@[\w-]+")
_LEADING_HANDLE = re.compile(r"^[\w-]+:\s*")
_PROVIDER_URL = re.compile(r"https?://[\w-]+\.tumblr\.com\S*", re.IGNORECASE)
_PROVIDER_HOST = re.compile(r"[\w-]+\.tumblr\.com", re.IGNORECASE)
_ATTRIBUTIONS = (
    re.compile(r"reblogged\s+from\s+[\w-]+", re.IGNORECASE),
    re.compile(r"via\s+[\w-]+", re.IGNORECASE),
    re.compile(r"source:\s*[\w-]+", re.IGNORECASE),
)
_POSTED_BY = re.compile(r"posted\s+by\s+[\w-]+", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_NO_WORD_CHARACTERS = re.compile(r"^[\s\W]*$")


def is_provider_url(url: str | None) -> bool:
    return bool(url) and _PROVIDER_DOMAIN.search(url) is not None


def is_direct_media(url: str | None) -> bool:
    return bool(url) and _DIRECT_MEDIA.search(url) is not None


def truncate(text: str | None, max_length: int) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def sanitize_title(title: str | None) -> str:
    """Strip handles, attributions and provider links from a title."""

    if not title:
        return "New Post"
    clean = _MENTION.sub("", title)
    clean = _LEADING_HANDLE.sub("", clean)
    for pattern in _ATTRIBUTIONS:
        clean = pattern.sub("", clean)
    clean = _PROVIDER_URL.sub("", clean)
    clean = _PROVIDER_HOST.sub("", clean)
    clean = _WHITESPACE.sub(" ", clean).strip()
    if len(clean) < 3 or _NO_WORD_CHARACTERS.match(clean):
        return "New Post"
    return clean


def sanitize_text(text: str | None) -> str:
    """Strip handles, attributions and provider links from free text."""

    if not text:
        return ""
    clean = _MENTION.sub("", text)
    clean = _PROVIDER_URL.sub("[link]", clean)
    clean = _PROVIDER_HOST.sub("", clean)
    for pattern in (*_ATTRIBUTIONS, _POSTED_BY):
        clean = pattern.sub("", clean)
    return _WHITESPACE.sub(" ", clean).strip()


def video_line(video_url: str) -> str:
    if is_provider_url(video_url):
        return f"{VIDEO_LINE_PREFIX}{HIDDEN_VIDEO_TEXT}"
    return f"{VIDEO_LINE_PREFIX}{video_url}"


def build_embed(
    item: NormalizedItem,
    *,
    stable_id: str | None = None,
    hide_user_info: bool = True,
    blog_info: dict[str, Any] | None = None,
    include_video_line: bool = True,
) -> dict[str, Any]:
    """Build the primary embed for ``item``.

    With ``hide_user_info`` set, no post URL, author block or tags are attached
    and the description is scrubbed of handles and provider links. Provider
    hosted video URLs never appear in the embed.
    """

    icon = POST_TYPE_ICONS.get(item.kind, DEFAULT_ICON)
    footer_parts = [f"{item.note_count} notes", item.kind]
    if stable_id:
        footer_parts.insert(0, f"ID: {stable_id}")

    embed: dict[str, Any] = {
        "title": f"{icon} {truncate(sanitize_title(item.title), TITLE_LIMIT)}",
        "color": POST_TYPE_COLORS.get(item.kind, DEFAULT_COLOR),
        "timestamp": datetime.fromtimestamp(item.timestamp, tz=timezone.utc).isoformat(),
        "footer": {"text": " • ".join(footer_parts)},
    }

    if not hide_user_info:
        if item.url and not is_provider_url(item.url):
            embed["url"] = item.url
        if blog_info or item.blog_name:
            author_name = (blog_info or {}).get("title") or item.blog_name
            embed["author"] = {"name": author_name}

    description = item.summary
    if description and hide_user_info:
        description = sanitize_text(description)
    description = truncate(description, DESCRIPTION_LIMIT)
    if item.video and include_video_line:
        description += video_line(item.video)
    if description:
        embed["description"] = description

    if item.images:
        embed["image"] = {"url": item.images[0]}

    fields: list[dict[str, Any]] = []
    if stable_id:
        fields.append({"name": "Media ID", "value": str(stable_id), "inline": True})
    if not hide_user_info and item.tags:
        tags_text = " ".join(f"#{tag}" for tag in item.tags[:MAX_TAGS])
        fields.append({"name": "Tags", "value": truncate(tags_text, FIELD_VALUE_LIMIT), "inline": False})
    if fields:
        embed["fields"] = fields

    return embed


def build_post_message(
    item: NormalizedItem,
    *,
    stable_id: str | None = None,
    hide_user_info: bool = True,
    username: str = DEFAULT_USERNAME,
    blog_info: dict[str, Any] | None = None,
    include_video_line: bool = True,
) -> dict[str, Any]:
    embed = build_embed(
        item,
        stable_id=stable_id,
        hide_user_info=hide_user_info,
        blog_info=blog_info,
        include_video_line=include_video_line,
    )
    return {"username": username, "embeds": [embed]}


def build_gallery_followup(
    item: NormalizedItem, *, username: str = DEFAULT_USERNAME
) -> dict[str, Any] | None:
    """Image-only embeds for up to nine images after the first, or ``None``."""

    extra = item.images[1 : 1 + MAX_FOLLOWUP_IMAGES]
    if not extra:
        return None
    return {"username": username, "embeds": [{"image": {"url": url}} for url in extra]}


def build_video_followup(
    item: NormalizedItem, *, username: str = DEFAULT_USERNAME
) -> dict[str, Any] | None:
    """A bare ``content`` message carrying the video URL when it is safe to disclose.

    Non-provider URLs are always posted so the sink can auto-embed them.
    Provider-hosted URLs are posted only when they point at a direct media
    file; player pages and iframes would reveal the original post.
    """

    if not item.video:
        return None
    if is_provider_url(item.video) and not is_direct_media(item.video):
        return None
    return {"username": username, "content": item.video}


def build_notification(
    title: str,
    description: str,
    *,
    color: int = DEFAULT_COLOR,
    username: str = DEFAULT_USERNAME,
) -> dict[str, Any]:
    return {
        "username": username,
        "embeds": [
            {
                "title": title,
                "description": description,
                "color": color,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ],
    }
