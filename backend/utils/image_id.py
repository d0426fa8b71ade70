"""
Image ID Utilities

Docker image IDs come in multiple formats:
- Full SHA256: "sha256:abc123def456..." (71 chars)
- Bare hex: "abc123def456..." (64 chars)
- Short ID: "abc123def456" (12 chars)

Comparisons always use the full hex digest; the short form is only for logs.
"""

from typing import Optional


def strip_image_id(image_id: str) -> str:
    """Drop the "sha256:" prefix and normalize case."""
    return image_id.strip().lower().replace('sha256:', '')


def short_image_id(image_id: Optional[str]) -> str:
    """
    12-char display form of an image ID.

    Examples:
        >>> short_image_id("sha256:abc123def456789")
        'abc123def456'
        >>> short_image_id(None)
        'none'
    """
    if not image_id:
        return 'none'
    return strip_image_id(image_id)[:12]


def same_image(left: Optional[str], right: Optional[str]) -> bool:
    """True if both IDs are present and name the same content."""
    if not left or not right:
        return False
    return strip_image_id(left) == strip_image_id(right)
