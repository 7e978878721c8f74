"""Screening of descriptor matches by their distances."""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence, TypeVar

DEFAULT_DISTANCE_FLOOR = 30.0


class _HasDistance(Protocol):
    distance: float


M = TypeVar("M", bound=_HasDistance)


def min_max_distance(matches: Iterable[_HasDistance]) -> tuple[float, float]:
    """Return the smallest and the largest distance among the matches."""
    distances = [float(m.distance) for m in matches]
    if not distances:
        raise ValueError("no matches to measure")
    return min(distances), max(distances)


def filter_matches(
    matches: Sequence[M], floor: float = DEFAULT_DISTANCE_FLOOR
) -> list[M]:
    """Keep the matches whose distance is at most ``max(2 * min_distance, floor)``.

    The floor guards against a minimum distance that happens to be very small.
    The order of the matches is preserved.
    """
    matches = list(matches)
    if not matches:
        return []
    min_dist, _ = min_max_distance(matches)
    threshold = max(2.0 * min_dist, float(floor))
    return [m for m in matches if m.distance <= threshold]