"""Course geometry helpers used to prepare map overlays."""

from collections.abc import Sequence
from dataclasses import dataclass

from kronotrack.domain.models import TrackGeometry, TrackMarker, TrackPoint

# Extra room above the course leaves space for the form panel overlay.
NORTH_PADDING_FACTOR = 0.5
SIDE_PADDING_FACTOR = 0.15


@dataclass(frozen=True)
class BoundingBox:
    """Geographic bounding box."""

    north: float
    east: float
    south: float
    west: float


@dataclass(frozen=True)
class MarkerStyle:
    """Presentation hints for a course marker kind."""

    label: str
    icon: str
    color: str


MARKER_STYLES: dict[str, MarkerStyle] = {
    "food": MarkerStyle(label="Food", icon="dining", color="#FF9800"),
    "water": MarkerStyle(label="Water", icon="water_drop", color="#2196F3"),
    "signal": MarkerStyle(label="Signal", icon="emoji_people", color="#E53935"),
    "start": MarkerStyle(label="Start", icon="flag", color="#2ECC40"),
}
FALLBACK_MARKER_STYLE = MarkerStyle(
    label="Point of interest", icon="place", color="#9E9E9E"
)


def padded_bounding_box(points: Sequence[TrackPoint]) -> BoundingBox | None:
    """Return the course bounding box padded for display, or None."""
    if not points:
        return None
    latitudes = [point.latitude for point in points]
    longitudes = [point.longitude for point in points]
    north, south = max(latitudes), min(latitudes)
    east, west = max(longitudes), min(longitudes)
    lat_span = north - south
    lon_span = east - west
    return BoundingBox(
        north=north + lat_span * NORTH_PADDING_FACTOR,
        east=east + lon_span * SIDE_PADDING_FACTOR,
        south=south,
        west=west - lon_span * SIDE_PADDING_FACTOR,
    )


def catmull_rom(points: Sequence[TrackPoint], segments: int = 10) -> list[TrackPoint]:
    """Smooth a polyline with a Catmull-Rom spline.

    Each segment between consecutive points is sampled ``segments + 1`` times,
    end points included. The first and last points act as their own outer
    control points.
    """
    if len(points) < 2 or segments < 1:  # noqa: PLR2004
        return list(points)
    result: list[TrackPoint] = []
    last = len(points) - 1
    for index in range(last):
        p0 = points[index - 1] if index > 0 else points[index]
        p1 = points[index]
        p2 = points[index + 1]
        p3 = points[index + 2] if index + 2 <= last else points[index + 1]
        for step in range(segments + 1):
            t = step / segments
            result.append(
                TrackPoint(
                    latitude=_spline(
                        p0.latitude, p1.latitude, p2.latitude, p3.latitude, t
                    ),
                    longitude=_spline(
                        p0.longitude, p1.longitude, p2.longitude, p3.longitude, t
                    ),
                )
            )
    return result


def _spline(p0: float, p1: float, p2: float, p3: float, t: float) -> float:
    t2 = t * t
    t3 = t2 * t
    return 0.5 * (
        2 * p1
        + (-p0 + p2) * t
        + (2 * p0 - 5 * p1 + 4 * p2 - p3) * t2
        + (-p0 + 3 * p1 - 3 * p2 + p3) * t3
    )


def marker_style(marker_type: str) -> MarkerStyle:
    """Return the style for a marker kind, falling back for unknown kinds."""
    return MARKER_STYLES.get(marker_type, FALLBACK_MARKER_STYLE)


def markers_with_start(geometry: TrackGeometry) -> list[TrackMarker]:
    """Return drawable markers with the start flag last so it stays on top."""
    others = [marker for marker in geometry.markers if marker.type != "start"]
    starts = [marker for marker in geometry.markers if marker.type == "start"]
    if not starts and geometry.points:
        first = geometry.points[0]
        starts = [TrackMarker(first.latitude, first.longitude, "start")]
    return others + starts
