"""Reshape raw Tumblr posts into :class:`NormalizedItem` records.

Posts arrive in several overlapping shapes: legacy direct fields (``photos``,
``video_url``, ``player``, ``body``), structured content blocks (``content``),
reblog trails whose entries carry either blocks or raw HTML, and the legacy
``reblog`` object with ``comment`` and ``tree_html``. Each field is resolved by
an ordered list of extractor strategies; the first strategy that yields a
value wins, so the order of each list is the precedence.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from typing import Any

from .schemas import NormalizedItem
from .utils.html import (
    find_image_urls,
    find_src_attribute,
    find_video_url,
    has_image_markup,
    has_video_markup,
    is_tracking_url,
    strip_html,
)

Post = dict[str, Any]
Strategy = Callable[[Post], Any]

TITLE_LIMIT = 100
SUMMARY_LIMIT = 300

_BLOCK_KINDS = {"video": "video", "image": "photo", "audio": "audio"}
_IMAGE_EXTENSION = re.compile(r"\.(jpe?g|png|gif|webp|bmp)(\?|#|$)", re.IGNORECASE)


# Source locations


def _blocks(container: Any) -> list[dict[str, Any]]:
    content = container.get("content") if isinstance(container, dict) else None
    if isinstance(content, list):
        return [block for block in content if isinstance(block, dict)]
    return []


def _walk_blocks(blocks: list[dict[str, Any]]) -> Iterator[dict[str, Any]]:
    """Yield blocks depth-first, descending into nested ``content`` lists."""

    for block in blocks:
        yield block
        nested = _blocks(block)
        if nested:
            yield from _walk_blocks(nested)


def _trail(post: Post) -> list[dict[str, Any]]:
    trail = post.get("trail")
    if isinstance(trail, list):
        return [entry for entry in trail if isinstance(entry, dict)]
    return []


def _trail_html(post: Post) -> list[str]:
    """Raw HTML carried by trail entries (legacy ``content_raw`` or string ``content``)."""

    fragments: list[str] = []
    for entry in _trail(post):
        for key in ("content_raw", "content"):
            value = entry.get(key)
            if isinstance(value, str) and value:
                fragments.append(value)
                break
    return fragments


def _quote_html(post: Post) -> list[str]:
    reblog = post.get("reblog")
    if not isinstance(reblog, dict):
        return []
    return [value for value in (reblog.get("comment"), reblog.get("tree_html")) if value]


def _html_sources(post: Post) -> list[str]:
    """HTML fragments in scan order: trail, quote comment/tree, caption, body."""

    sources = _trail_html(post) + _quote_html(post)
    for key in ("caption", "body"):
        value = post.get(key)
        if isinstance(value, str) and value:
            sources.append(value)
    return sources


def _widest_url(media: Any) -> str | None:
    if isinstance(media, list):
        candidates = [entry for entry in media if isinstance(entry, dict) and entry.get("url")]
        if not candidates:
            return None
        return max(candidates, key=lambda entry: entry.get("width") or 0)["url"]
    if isinstance(media, dict):
        return media.get("url")
    return None


def _photo_url(photo: Any) -> str | None:
    if not isinstance(photo, dict):
        return None
    original = photo.get("original_size")
    if isinstance(original, dict) and original.get("url"):
        return original["url"]
    alt_sizes = photo.get("alt_sizes")
    if isinstance(alt_sizes, list) and alt_sizes and isinstance(alt_sizes[0], dict):
        return alt_sizes[0].get("url")
    return photo.get("url")


# Kind detection


def _kind_from_blocks(blocks: list[dict[str, Any]]) -> str | None:
    for block in blocks:
        kind = _BLOCK_KINDS.get(block.get("type"))
        if kind:
            return kind
    return None


def _kind_from_content(post: Post) -> str | None:
    return _kind_from_blocks(_blocks(post))


def _kind_from_trail(post: Post) -> str | None:
    for entry in _trail(post):
        kind = _kind_from_blocks(_blocks(entry))
        if kind:
            return kind
    return None


def _kind_from_html(post: Post) -> str | None:
    for html in _html_sources(post):
        if has_video_markup(html):
            return "video"
        if has_image_markup(html):
            return "photo"
    return None


def _kind_from_legacy_fields(post: Post) -> str | None:
    if post.get("photos"):
        return "photo"
    if post.get("video_url") or post.get("player"):
        return "video"
    if post.get("audio_url"):
        return "audio"
    return None


def _kind_from_provider(post: Post) -> str | None:
    return post.get("type")


KIND_STRATEGIES: tuple[Strategy, ...] = (
    _kind_from_content,
    _kind_from_trail,
    _kind_from_html,
    _kind_from_legacy_fields,
    _kind_from_provider,
)


# Images


def _images_from_photos(post: Post) -> list[str]:
    return [url for url in map(_photo_url, post.get("photos") or []) if url]


def _images_from_blocks(blocks: list[dict[str, Any]]) -> list[str]:
    urls: list[str] = []
    for block in _walk_blocks(blocks):
        if block.get("type") == "image":
            url = _widest_url(block.get("media"))
            if url:
                urls.append(url)
    return urls


def _images_from_content(post: Post) -> list[str]:
    return _images_from_blocks(_blocks(post))


def _images_from_trail(post: Post) -> list[str]:
    urls: list[str] = []
    for entry in _trail(post):
        urls.extend(_images_from_blocks(_blocks(entry)))
    for html in _trail_html(post):
        urls.extend(find_image_urls(html))
    return urls


def _images_from_quote(post: Post) -> list[str]:
    urls: list[str] = []
    for html in _quote_html(post):
        urls.extend(find_image_urls(html))
    return urls


def _images_from_caption(post: Post) -> list[str]:
    return find_image_urls(post.get("caption"))


def _images_from_body(post: Post) -> list[str]:
    return find_image_urls(post.get("body"))


def _images_from_photoset(post: Post) -> list[str]:
    return [url for url in map(_photo_url, post.get("photoset") or []) if url]


def _images_from_source_url(post: Post) -> list[str]:
    for key in ("source_url", "link_url"):
        url = post.get(key)
        if isinstance(url, str) and _IMAGE_EXTENSION.search(url) and not is_tracking_url(url):
            return [url]
    return []


IMAGE_STRATEGIES: tuple[Strategy, ...] = (
    _images_from_photos,
    _images_from_content,
    _images_from_trail,
    _images_from_quote,
    _images_from_caption,
    _images_from_body,
    _images_from_photoset,
    _images_from_source_url,
)


# Video


def _video_from_legacy_url(post: Post) -> str | None:
    return post.get("video_url") or None


def _video_from_blocks(blocks: list[dict[str, Any]]) -> str | None:
    for block in _walk_blocks(blocks):
        if block.get("type") != "video":
            continue
        url = (
            block.get("url")
            or _widest_url(block.get("media"))
            or block.get("embed_url")
            or find_src_attribute(block.get("embed_html"))
        )
        if url:
            return url
    return None


def _video_from_content(post: Post) -> str | None:
    return _video_from_blocks(_blocks(post))


def _video_from_trail_blocks(post: Post) -> str | None:
    for entry in _trail(post):
        url = _video_from_blocks(_blocks(entry))
        if url:
            return url
    return None


def _video_from_trail_html(post: Post) -> str | None:
    for html in _trail_html(post):
        url = find_video_url(html)
        if url:
            return url
    return None


def _video_from_quote(post: Post) -> str | None:
    for html in _quote_html(post):
        url = find_video_url(html)
        if url:
            return url
    return None


def _video_from_player(post: Post) -> str | None:
    players = post.get("player")
    if not isinstance(players, list):
        return None
    embeds = [player for player in players if isinstance(player, dict) and player.get("embed_code")]
    if not embeds:
        return None
    best = max(embeds, key=lambda player: player.get("width") or 0)
    return find_src_attribute(best["embed_code"])


def _video_from_caption(post: Post) -> str | None:
    return find_video_url(post.get("caption"))


def _video_from_body(post: Post) -> str | None:
    return find_video_url(post.get("body"))


VIDEO_STRATEGIES: tuple[Strategy, ...] = (
    _video_from_legacy_url,
    _video_from_content,
    _video_from_trail_blocks,
    _video_from_trail_html,
    _video_from_quote,
    _video_from_player,
    _video_from_caption,
    _video_from_body,
)


# Text


def _text_blocks(post: Post) -> list[str]:
    return [
        block["text"]
        for block in _blocks(post)
        if block.get("type") == "text" and isinstance(block.get("text"), str) and block["text"]
    ]


def _title_from_field(post: Post) -> str | None:
    return post.get("title") or None


def _title_from_summary(post: Post) -> str | None:
    summary = post.get("summary")
    return summary[:TITLE_LIMIT] if summary else None


def _title_from_caption(post: Post) -> str | None:
    return strip_html(post.get("caption"))[:TITLE_LIMIT] or None


def _title_from_body(post: Post) -> str | None:
    return strip_html(post.get("body"))[:TITLE_LIMIT] or None


def _title_from_text_block(post: Post) -> str | None:
    blocks = _text_blocks(post)
    return blocks[0][:TITLE_LIMIT] if blocks else None


def _title_placeholder(post: Post) -> str:
    return f"{post.get('type') or 'unknown'} post"


TITLE_STRATEGIES: tuple[Strategy, ...] = (
    _title_from_field,
    _title_from_summary,
    _title_from_caption,
    _title_from_body,
    _title_from_text_block,
    _title_placeholder,
)


def _summary_from_field(post: Post) -> str | None:
    return post.get("summary") or None


def _summary_from_caption(post: Post) -> str | None:
    return strip_html(post.get("caption")) or None


def _summary_from_body(post: Post) -> str | None:
    return strip_html(post.get("body")) or None


def _summary_from_text(post: Post) -> str | None:
    text = post.get("text")
    return text if isinstance(text, str) and text else None


def _summary_from_source(post: Post) -> str | None:
    source = post.get("source_title")
    return f"Source: {source}" if source else None


def _summary_from_text_blocks(post: Post) -> str | None:
    return " ".join(_text_blocks(post)) or None


SUMMARY_STRATEGIES: tuple[Strategy, ...] = (
    _summary_from_field,
    _summary_from_caption,
    _summary_from_body,
    _summary_from_text,
    _summary_from_source,
    _summary_from_text_blocks,
)


def _first(strategies: tuple[Strategy, ...], post: Post) -> Any:
    for strategy in strategies:
        value = strategy(post)
        if value:
            return value
    return None


def detect_kind(post: Post) -> str:
    """Return the media kind implied by the post's content, not just its ``type`` field."""

    return _first(KIND_STRATEGIES, post) or "text"


def extract_images(post: Post) -> list[str]:
    images: list[str] = []
    for strategy in IMAGE_STRATEGIES:
        for url in strategy(post):
            if url not in images:
                images.append(url)
    return images


def extract_video(post: Post) -> str | None:
    return _first(VIDEO_STRATEGIES, post)


def extract_title(post: Post) -> str:
    return _first(TITLE_STRATEGIES, post)


def extract_summary(post: Post) -> str:
    text = _first(SUMMARY_STRATEGIES, post) or ""
    if len(text) > SUMMARY_LIMIT:
        return text[:SUMMARY_LIMIT] + "..."
    return text


def remote_id(post: Post) -> str:
    """Return the provider-assigned id used as the deduplication key."""

    return str(post.get("id_string") or post.get("id"))


def normalize_post(post: Post) -> NormalizedItem:
    """Build a :class:`NormalizedItem` from a raw post. Pure; performs no I/O."""

    trail = _trail(post)
    return NormalizedItem(
        id=remote_id(post),
        kind=detect_kind(post),
        original_kind=post.get("type") or "unknown",
        timestamp=int(post.get("timestamp") or 0),
        url=post.get("post_url"),
        blog_name=post.get("blog_name"),
        title=extract_title(post),
        summary=extract_summary(post),
        images=extract_images(post),
        video=extract_video(post),
        note_count=int(post.get("note_count") or 0),
        tags=[str(tag) for tag in post.get("tags") or []],
        is_reblog=bool(post.get("reblogged_from_name")) or bool(trail),
    )
