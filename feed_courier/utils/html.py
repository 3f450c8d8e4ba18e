"""HTML scanning helpers built on BeautifulSoup."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

DEFAULT_PARSER = "html.parser"

TRACKING_MARKERS: tuple[str, ...] = (
    "pixel",
    "beacon",
    "tracking",
    "/impixu",
    "1x1",
    "spacer.gif",
)

VIDEO_TAGS: tuple[str, ...] = ("video", "iframe", "embed")

_WHITESPACE = re.compile(r"\s+")
_TAG = re.compile(r"<[^>]*>")


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, DEFAULT_PARSER)


def strip_html(html: str | None) -> str:
    """Replace every tag with a single space and collapse whitespace."""

    if not html:
        return ""
    spaced = _TAG.sub(" ", html)
    text = _soup(spaced).get_text()
    return _WHITESPACE.sub(" ", text).strip()


def is_tracking_url(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in TRACKING_MARKERS)


def _first_srcset_url(srcset: str) -> str | None:
    for candidate in srcset.split(","):
        parts = candidate.strip().split()
        if parts:
            return parts[0]
    return None


def find_image_urls(html: str | None) -> list[str]:
    """Return image URLs referenced by ``<img>`` and ``<source srcset>`` tags.

    Lazy-load ``data-src`` attributes are honoured and tracking pixels are skipped.
    """

    if not html:
        return []
    urls: list[str] = []
    for tag in _soup(html).find_all(["img", "source"]):
        candidates: list[str | None] = []
        if tag.name == "img":
            candidates.extend([tag.get("src"), tag.get("data-src")])
        elif tag.parent is None or tag.parent.name != "video":
            srcset = tag.get("srcset")
            if srcset:
                candidates.append(_first_srcset_url(srcset))
        for url in candidates:
            if url and not is_tracking_url(url) and url not in urls:
                urls.append(url)
    return urls


def has_video_markup(html: str | None) -> bool:
    if not html:
        return False
    return _soup(html).find(VIDEO_TAGS) is not None


def has_image_markup(html: str | None) -> bool:
    if not html:
        return False
    return _soup(html).find("img") is not None


def find_video_url(html: str | None) -> str | None:
    """Return the first playable source among ``<video>``, ``<iframe>`` and ``<embed>`` tags."""

    if not html:
        return None
    for tag in _soup(html).find_all(VIDEO_TAGS):
        if tag.name == "video":
            source = tag.find("source", src=True)
            if source is not None:
                return source["src"]
        src = tag.get("src")
        if src:
            return src
    return None


def find_src_attribute(html: str | None) -> str | None:
    """Return the first ``src`` attribute of any tag in ``html``."""

    if not html:
        return None
    tag = _soup(html).find(src=True)
    return tag["src"] if tag is not None else None
