"""
Tests for image ID helpers.
"""

import pytest

from utils.image_id import same_image, short_image_id, strip_image_id

FULL = "sha256:" + "abc123def456" + "0" * 52


@pytest.mark.unit
def test_strip_image_id():
    assert strip_image_id(FULL) == "abc123def456" + "0" * 52
    assert strip_image_id("  SHA256:ABC ") == "abc"


@pytest.mark.unit
def test_short_image_id():
    assert short_image_id(FULL) == "abc123def456"
    assert short_image_id(None) == "none"
    assert short_image_id("") == "none"


@pytest.mark.unit
def test_same_image_ignores_prefix():
    assert same_image(FULL, FULL[len("sha256:"):]) is True


@pytest.mark.unit
def test_same_image_compares_full_digest():
    """Two images sharing a 12-char prefix are still different content."""
    other = "sha256:" + "abc123def456" + "1" * 52
    assert same_image(FULL, other) is False


@pytest.mark.unit
@pytest.mark.parametrize('left,right', [(None, FULL), (FULL, None), ("", "")])
def test_same_image_missing_is_false(left, right):
    assert same_image(left, right) is False
