"""Tests for webhook payload rendering."""

from __future__ import annotations

import pytest

from feed_courier.formatting import (
    BULK_DELETE_COLOR,
    DESCRIPTION_LIMIT,
    HIDDEN_VIDEO_TEXT,
    MAX_FOLLOWUP_IMAGES,
    build_embed,
    build_gallery_followup,
    build_notification,
    build_post_message,
    build_video_followup,
    sanitize_text,
    sanitize_title,
    truncate,
)
from feed_courier.schemas import NormalizedItem


def _item(**overrides) -> NormalizedItem:
    data = {
        "id": "1",
        "kind": "photo",
        "original_kind": "photo",
        "timestamp": 1_700_000_000,
        "url": "https://example.com/post/1",
        "blog_name": "testblog",
        "title": "Sunset",
        "summary": "A nice evening",
        "note_count": 3,
        "tags": ["sky", "evening"],
    }
    data.update(overrides)
    return NormalizedItem(**data)


class TestSanitizing:
    """Handle and attribution scrubbing."""

    @pytest.mark.parametrize(
        ("title", "expected"),
        [
            ("alice: Sunset photos", "Sunset photos"),
            ("Look at https://someone.tumblr.com/post/1 now", "Look at now"),
            ("Great shot via somebody", "Great shot"),
            ("@bob", "New Post"),
            ("!!", "New Post"),
            (None, "New Post"),
        ],
    )
    def test_sanitize_title(self, title, expected):
        """Identifying fragments are removed and empty results get a placeholder."""

        assert sanitize_title(title) == expected

    def test_sanitize_text_replaces_provider_links(self):
        """Provider links become a neutral marker."""

        assert sanitize_text("Check https://blog.tumblr.com/post/2 via someone") == "Check [link]"

    def test_truncate(self):
        """Long text is cut to the limit including the ellipsis."""

        assert truncate("abcdefgh", 6) == "abc..."
        assert truncate("abc", 6) == "abc"
        assert truncate(None, 6) == ""


class TestEmbed:
    """The primary embed."""

    def test_hidden_user_info(self):
        """No permalink, author or tags are attached by default."""

        embed = build_embed(_item(summary="Photo by @alice"), stable_id="stable-1")

        assert embed["title"] == "📷 Sunset"
        assert "url" not in embed
        assert "author" not in embed
        assert embed["description"] == "Photo by"
        assert embed["fields"] == [{"name": "Media ID", "value": "stable-1", "inline": True}]
        assert embed["footer"] == {"text": "ID: stable-1 • 3 notes • photo"}
        assert embed["timestamp"].startswith("2023-11-14T22:13:20")

    def test_shown_user_info(self):
        """Permalink, author and tags appear when user info is shown."""

        embed = build_embed(_item(), hide_user_info=False, blog_info={"title": "Test Blog"})

        assert embed["url"] == "https://example.com/post/1"
        assert embed["author"] == {"name": "Test Blog"}
        assert embed["fields"][0]["value"] == "#sky #evening"
        assert embed["footer"] == {"text": "3 notes • photo"}

    def test_provider_permalink_is_never_linked(self):
        """Provider permalinks stay hidden even when user info is shown."""

        embed = build_embed(_item(url="https://testblog.tumblr.com/post/1"), hide_user_info=False)

        assert "url" not in embed

    def test_provider_video_link_is_hidden(self):
        """Provider video URLs are replaced in the description."""

        embed = build_embed(_item(kind="video", video="https://www.tumblr.com/video/testblog/1/500"))

        assert embed["description"].endswith(HIDDEN_VIDEO_TEXT)
        assert "tumblr.com" not in embed["description"]

    def test_external_video_link_is_shown(self):
        """Other video URLs are printed in the description."""

        embed = build_embed(_item(kind="video", video="https://cdn.example/v.mp4"))

        assert embed["description"].endswith("https://cdn.example/v.mp4")

    def test_first_image_and_long_description(self):
        """The first image is embedded and the description is bounded."""

        embed = build_embed(_item(images=["https://img.example/1.jpg"], summary="y" * 5000))

        assert embed["image"] == {"url": "https://img.example/1.jpg"}
        assert len(embed["description"]) == DESCRIPTION_LIMIT

    def test_post_message_sets_username(self):
        """The display name wraps the single embed."""

        message = build_post_message(_item(), username="Relay Bot")

        assert message["username"] == "Relay Bot"
        assert len(message["embeds"]) == 1


class TestFollowups:
    """Messages sent after the primary embed."""

    def test_gallery_is_capped(self):
        """At most nine additional images are sent."""

        images = [f"https://img.example/{index}.jpg" for index in range(12)]

        followup = build_gallery_followup(_item(images=images))

        assert len(followup["embeds"]) == MAX_FOLLOWUP_IMAGES
        assert followup["embeds"][0] == {"image": {"url": "https://img.example/1.jpg"}}

    def test_single_image_has_no_gallery(self):
        """One image fits in the primary embed."""

        assert build_gallery_followup(_item(images=["https://img.example/1.jpg"])) is None

    @pytest.mark.parametrize(
        ("video", "posted"),
        [
            ("https://cdn.example/v.mp4", True),
            ("https://va.media.tumblr.com/tumblr_abc.mp4", True),
            ("https://www.tumblr.com/video/testblog/1/500", False),
            (None, False),
        ],
    )
    def test_video_followup(self, video, posted):
        """Only URLs that do not reveal the original post are posted."""

        followup = build_video_followup(_item(kind="video", video=video))

        assert (followup is not None) is posted
        if posted:
            assert followup["content"] == video


def test_bulk_delete_notification():
    """Notifications carry a single titled embed."""

    message = build_notification("Bulk Delete Triggered", "Clear the channel", color=BULK_DELETE_COLOR)

    (embed,) = message["embeds"]
    assert embed["title"] == "Bulk Delete Triggered"
    assert embed["color"] == 0xF56565
    assert embed["description"] == "Clear the channel"
