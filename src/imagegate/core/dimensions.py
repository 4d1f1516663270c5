"""Dimension resolution for image generation requests.

Callers may describe the size they want in several partial ways: an explicit
``width`` and/or ``height``, an ``aspectRatio`` string, and a ``longEdge``
hint.  :func:`resolve_dimensions` turns any combination of those (including
none, or garbage) into one concrete ``(width, height)`` pair that the backend
will accept.

Precedence
----------
1. Width and height both usable: taken as given; ratio and long edge ignored.
2. Width only: ``height = round(width / ratio)``.
3. Height only: ``width = round(height * ratio)``.
4. Neither: the long edge goes on the dominant axis of the ratio
   (width when ``ratio >= 1``, height otherwise) and the other side is derived.

Every side, explicit or derived, is rounded half-up, clamped to
``[min_dim, max_dim]`` and snapped to a multiple of ``alignment``.  A side that
still cannot be resolved falls back to ``default_dim``.

The resolver is total and pure: it never raises and the same input always
gives the same output.

Usage
-----
::

    from imagegate.core.dimensions import resolve_dimensions

    dims = resolve_dimensions(aspect_ratio="16:9", long_edge=1920, alignment=8)
    assert (dims.width, dims.height) == (1920, 1080)
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

MIN_DIM = 256
MAX_DIM = 2048
DEFAULT_DIM = 1024
DEFAULT_LONG_EDGE = 1024

_RATIO_DELIMITER = re.compile(r"[:/]")


@dataclass(frozen=True)
class ResolvedDimensions:
    """Final image size handed to the backend."""

    width: int
    height: int

    def as_tuple(self) -> tuple[int, int]:
        return self.width, self.height


def _round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (2.5 -> 3, -2.5 -> -2)."""
    return math.floor(value + 0.5)


def _to_number(value: Any) -> float | None:
    """Coerce a JSON scalar to a finite float, or ``None``.

    Numbers and numeric strings are accepted.  Digit-group underscores
    (``"1_000"``) are not, and booleans are rejected even though they are
    ``int`` subclasses.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text or "_" in text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    elif isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _snap(value: int, alignment: int, min_dim: int, max_dim: int) -> int:
    """Snap an already clamped side to the nearest multiple of *alignment*.

    The result stays inside ``[min_dim, max_dim]`` whenever the range holds a
    multiple of *alignment*, and is never smaller than *alignment* itself.
    """
    if alignment <= 1:
        return value
    snapped = _round_half_up(value / alignment) * alignment
    if snapped > max_dim:
        snapped -= alignment
    if snapped < min_dim:
        snapped += alignment
    return max(alignment, snapped)


def parse_dimension(
    value: Any,
    *,
    min_dim: int = MIN_DIM,
    max_dim: int = MAX_DIM,
    alignment: int = 1,
) -> int | None:
    """Normalize one side of the image.

    Args:
        value: Raw request value (number, numeric string, or anything else).
        min_dim: Smallest allowed side in pixels.
        max_dim: Largest allowed side in pixels.
        alignment: Snap the result to a multiple of this (1 disables).

    Returns:
        The rounded, clamped and aligned side, or ``None`` when *value* is
        absent, non-numeric, non-finite, or not positive.
    """
    number = _to_number(value)
    if number is None or number <= 0:
        return None
    clamped = min(max_dim, max(min_dim, _round_half_up(number)))
    return _snap(clamped, alignment, min_dim, max_dim)


def parse_aspect_ratio(value: Any) -> float | None:
    """Parse an aspect ratio given as ``"16:9"``, ``"4/3"`` or ``"1.777"``.

    Returns:
        The positive finite width/height ratio, or ``None`` for anything that
        is not a string describing one.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None

    if ":" in text or "/" in text:
        # Fields past the second are ignored: "16:9:3" reads as 16:9.
        parts = _RATIO_DELIMITER.split(text, maxsplit=2)
        numerator = _to_number(parts[0])
        denominator = _to_number(parts[1])
        if numerator is None or denominator is None:
            return None
        if numerator <= 0 or denominator <= 0:
            return None
        ratio = numerator / denominator
        return ratio if math.isfinite(ratio) and ratio > 0 else None

    ratio = _to_number(text)
    if ratio is None or ratio <= 0:
        return None
    return ratio


def resolve_dimensions(
    width: Any = None,
    height: Any = None,
    aspect_ratio: Any = None,
    long_edge: Any = None,
    *,
    min_dim: int = MIN_DIM,
    max_dim: int = MAX_DIM,
    alignment: int = 1,
    default_dim: int = DEFAULT_DIM,
    default_long_edge: int = DEFAULT_LONG_EDGE,
) -> ResolvedDimensions:
    """Resolve partial sizing inputs into a concrete width and height.

    Args:
        width: Requested width, if any.
        height: Requested height, if any.
        aspect_ratio: Requested width/height ratio string, if any.  Unusable
            values mean a square ratio.
        long_edge: Length of the longer side when neither width nor height is
            usable.  Defaults to *default_long_edge*.
        min_dim: Smallest allowed side in pixels.
        max_dim: Largest allowed side in pixels.
        alignment: Snap both sides to a multiple of this (1 disables).
        default_dim: Side used when nothing else could be resolved.
        default_long_edge: Long edge used when *long_edge* is unusable.

    Returns:
        A :class:`ResolvedDimensions` with both sides in ``[min_dim, max_dim]``.
    """

    def normalize(value: Any) -> int | None:
        return parse_dimension(value, min_dim=min_dim, max_dim=max_dim, alignment=alignment)

    w = normalize(width)
    h = normalize(height)
    ratio = parse_aspect_ratio(aspect_ratio) or 1.0
    edge = normalize(long_edge) or normalize(default_long_edge)

    # Derived sides go through normalize() unrounded; it rounds half-up and
    # rejects the infinite results of extreme ratios.
    if w and not h:
        h = normalize(w / ratio)
    elif h and not w:
        w = normalize(h * ratio)
    elif not w and not h and edge:
        if ratio >= 1:
            w = edge
            h = normalize(edge / ratio)
        else:
            h = edge
            w = normalize(edge * ratio)

    fallback = normalize(default_dim) or min_dim
    return ResolvedDimensions(width=w or fallback, height=h or fallback)
