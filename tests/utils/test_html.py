"""Tests for HTML scanning helpers."""

import pytest

from feed_courier.utils.html import (
    find_image_urls,
    find_src_attribute,
    find_video_url,
    has_image_markup,
    has_video_markup,
    is_tracking_url,
    strip_html,
)


class TestStripHtml:
    """Tag removal and whitespace collapsing."""

    def test_replaces_tags_with_spaces(self):
        """Adjacent block elements do not run words together."""
        assert strip_html("<p>one</p><p>two</p>") == "one two"

    def test_decodes_entities(self):
        """Entities become their characters."""
        assert strip_html("Fish &amp; chips") == "Fish & chips"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_input(self, value):
        """Nothing in, nothing out."""
        assert strip_html(value) == ""


class TestFindImageUrls:
    """Image discovery in free-form HTML."""

    def test_collects_src_and_lazy_src(self):
        """Both ``src`` and ``data-src`` are honoured, without duplicates."""
        html = '<img src="https://a.test/1.jpg"><img data-src="https://a.test/2.jpg"><img src="https://a.test/1.jpg">'

        assert find_image_urls(html) == ["https://a.test/1.jpg", "https://a.test/2.jpg"]

    def test_skips_tracking_pixels(self):
        """Known tracking markers are filtered out."""
        html = '<img src="https://t.test/pixel.gif"><img src="https://a.test/photo.png">'

        assert find_image_urls(html) == ["https://a.test/photo.png"]

    def test_uses_first_srcset_candidate(self):
        """``<source srcset>`` contributes its first URL."""
        html = '<picture><source srcset="https://a.test/big.webp 2x, https://a.test/small.webp 1x"></picture>'

        assert find_image_urls(html) == ["https://a.test/big.webp"]

    def test_ignores_video_sources(self):
        """``<source>`` tags inside ``<video>`` are not images."""
        html = '<video><source srcset="https://a.test/clip.mp4"></video>'

        assert find_image_urls(html) == []


class TestVideoMarkup:
    """Video discovery in free-form HTML."""

    def test_video_source_preferred(self):
        """A ``<video>`` element yields its first ``<source src>``."""
        html = '<video poster="p.jpg"><source src="https://v.test/clip.mp4" type="video/mp4"></video>'

        assert has_video_markup(html) is True
        assert find_video_url(html) == "https://v.test/clip.mp4"

    def test_iframe_src(self):
        """Embedded players are found through their ``src``."""
        html = '<iframe src="https://player.test/embed/1"></iframe>'

        assert find_video_url(html) == "https://player.test/embed/1"
        assert find_src_attribute(html) == "https://player.test/embed/1"

    def test_plain_text_has_no_media(self):
        """Markup without media tags reports nothing."""
        html = "<p>nothing to see</p>"

        assert has_video_markup(html) is False
        assert has_image_markup(html) is False
        assert find_video_url(html) is None
        assert find_src_attribute(html) is None


def test_is_tracking_url_is_case_insensitive():
    """Markers match regardless of case."""
    assert is_tracking_url("https://cdn.test/Tracking/1X1.gif") is True
    assert is_tracking_url("https://cdn.test/photo.jpg") is False
