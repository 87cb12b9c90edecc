"""Geometry kernel for visit cluster shapes.

The planar functions work on points given as ``(x, y)`` tuples. The trajectory
helpers accept lat/lng points, project them into a local metric frame (or a
straight lng/lat plane for topological tests) and delegate to the planar
functions. Area and overlap are grid-sampling estimates, accurate to roughly 2%
at the default 100 x 100 resolution.
"""

from __future__ import annotations

import itertools
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
from pyproj import Geod

from .config import DEFAULT_GRID_SIZE
from .errors import DegenerateGeometryError

XY = Tuple[float, float]
BBox = Tuple[float, float, float, float]  # (min_x, max_x, min_y, max_y)

_GEOD = Geod(ellps="WGS84")


class LatLng(NamedTuple):
    """A single geographic point in decimal degrees."""

    latitude: float
    longitude: float


LatLngLike = Union[LatLng, Mapping[str, float], Sequence[float]]


def as_latlng(point: LatLngLike) -> LatLng:
    """Coerce a mapping with latitude/longitude keys or a (lat, lng) pair."""

    if isinstance(point, LatLng):
        return point
    if isinstance(point, Mapping):
        return LatLng(float(point["latitude"]), float(point["longitude"]))
    return LatLng(float(point[0]), float(point[1]))


# ---------------------------------------------------------------------------
# Planar (x/y) primitives
# ---------------------------------------------------------------------------


def _cross(o: XY, a: XY, b: XY) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull(points: Iterable[XY]) -> List[XY]:
    """Return the convex hull of planar points as a counter-clockwise ring.

    Uses Andrew's monotone chain. Duplicates are dropped; one or two distinct
    points, or a fully collinear set, yield a 1-2 point ring.
    """

    unique = sorted({(float(x), float(y)) for x, y in points})
    if not unique:
        raise DegenerateGeometryError("Convex hull requires at least one point.")
    if len(unique) <= 2:
        return unique

    lower: List[XY] = []
    for point in unique:
        while len(lower) >= 2 and _cross(lower[-2], lower[-1], point) <= 0:
            lower.pop()
        lower.append(point)

    upper: List[XY] = []
    for point in reversed(unique):
        while len(upper) >= 2 and _cross(upper[-2], upper[-1], point) <= 0:
            upper.pop()
        upper.append(point)

    return lower[:-1] + upper[:-1]


def bounding_box(polygon: Sequence[XY]) -> BBox:
    """Return ``(min_x, max_x, min_y, max_y)`` of a point sequence."""

    xs = [p[0] for p in polygon]
    ys = [p[1] for p in polygon]
    return min(xs), max(xs), min(ys), max(ys)


def point_in_polygon(point: XY, polygon: Sequence[XY], bbox: Optional[BBox] = None) -> bool:
    """Even-odd ray casting test with a bounding-box fast reject.

    Pass a precomputed ``bbox`` when testing many points against one polygon.
    """

    x, y = point
    min_x, max_x, min_y, max_y = bbox if bbox is not None else bounding_box(polygon)
    if x < min_x or x > max_x or y < min_y or y > max_y:
        return False

    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi <= y < yj) or (yj <= y < yi):
            if x < (xj - xi) * (y - yi) / (yj - yi) + xi:
                inside = not inside
        j = i
    return inside


def points_in_polygon(polygon: Sequence[XY], xs: np.ndarray, ys: np.ndarray, bbox: Optional[BBox] = None) -> np.ndarray:
    """Vectorised :func:`point_in_polygon` over coordinate arrays."""

    min_x, max_x, min_y, max_y = bbox if bbox is not None else bounding_box(polygon)
    candidate = (xs >= min_x) & (xs <= max_x) & (ys >= min_y) & (ys <= max_y)
    inside = np.zeros(xs.shape, dtype=bool)

    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        # Horizontal edges never straddle a sample row.
        if yi != yj:
            straddles = ((yi <= ys) & (ys < yj)) | ((yj <= ys) & (ys < yi))
            crossing_x = (xj - xi) * (ys - yi) / (yj - yi) + xi
            inside ^= straddles & (xs < crossing_x)
        j = i
    return inside & candidate


def _sample_grid(bbox: BBox, size: int) -> Tuple[np.ndarray, np.ndarray]:
    """Evenly spaced ``size x size`` sample points at the cell centres of ``bbox``."""

    min_x, max_x, min_y, max_y = bbox
    ticks = (np.arange(size, dtype=float) + 0.5) / size
    grid_x, grid_y = np.meshgrid(min_x + ticks * (max_x - min_x), min_y + ticks * (max_y - min_y))
    return grid_x.ravel(), grid_y.ravel()


def polygon_area(polygon: Sequence[XY], size: int = DEFAULT_GRID_SIZE) -> float:
    """Approximate area of a polygon by sampling its bounding box on a grid."""

    polygon = [(float(x), float(y)) for x, y in polygon]
    if len(polygon) < 3:
        return 0.0
    bbox = bounding_box(polygon)
    width, height = bbox[1] - bbox[0], bbox[3] - bbox[2]
    if width <= 0 or height <= 0:
        return 0.0

    xs, ys = _sample_grid(bbox, size)
    within = points_in_polygon(polygon, xs, ys, bbox)
    return float(within.mean()) * width * height


def _boxes_disjoint(b1: BBox, b2: BBox) -> bool:
    return b2[0] > b1[1] or b1[0] > b2[1] or b2[2] > b1[3] or b1[2] > b2[3]


def _union_box(b1: BBox, b2: BBox) -> BBox:
    return min(b1[0], b2[0]), max(b1[1], b2[1]), min(b1[2], b2[2]), max(b1[3], b2[3])


def polygon_overlap(polygon1: Sequence[XY], polygon2: Sequence[XY], size: int = DEFAULT_GRID_SIZE) -> float:
    """Approximate fraction of ``polygon1`` that is also covered by ``polygon2``."""

    polygon1 = [(float(x), float(y)) for x, y in polygon1]
    polygon2 = [(float(x), float(y)) for x, y in polygon2]
    if len(polygon1) < 3 or len(polygon2) < 3:
        return 0.0

    bbox1, bbox2 = bounding_box(polygon1), bounding_box(polygon2)
    if _boxes_disjoint(bbox1, bbox2):
        return 0.0

    grid_box = _union_box(bbox1, bbox2)
    if grid_box[1] - grid_box[0] <= 0 or grid_box[3] - grid_box[2] <= 0:
        return 0.0

    xs, ys = _sample_grid(grid_box, size)
    within_1 = points_in_polygon(polygon1, xs, ys, bbox1)
    within_2 = points_in_polygon(polygon2, xs, ys, bbox2)
    n_within_1 = int(within_1.sum())
    if n_within_1 == 0:
        return 0.0
    return float((within_1 & within_2).sum()) / n_within_1


def _mean_xy(points: Sequence[XY]) -> XY:
    return float(np.mean([p[0] for p in points])), float(np.mean([p[1] for p in points]))


def centroid(points: Iterable[XY]) -> XY:
    """Centroid of the convex hull of ``points`` via the signed-area formula.

    Falls back to the arithmetic mean of the unique points when the hull
    degenerates (fewer than four unique points, a shared x or y, or a
    vanishing signed area).
    """

    unique = list(dict.fromkeys((float(x), float(y)) for x, y in points))
    if not unique:
        raise DegenerateGeometryError("Centroid requires at least one point.")
    if len(unique) < 4 or len({p[0] for p in unique}) == 1 or len({p[1] for p in unique}) == 1:
        return _mean_xy(unique)

    hull = convex_hull(unique)
    ring = hull + [hull[0]]
    centroid_x, centroid_y, signed_area = 0.0, 0.0, 0.0
    for (x0, y0), (x1, y1) in zip(ring[:-1], ring[1:]):
        a = (x0 * y1) - (x1 * y0)
        signed_area += a
        centroid_x += (x0 + x1) * a
        centroid_y += (y0 + y1) * a

    signed_area *= 0.5
    if abs(signed_area) < 1e-15:
        return _mean_xy(unique)
    return centroid_x / (6.0 * signed_area), centroid_y / (6.0 * signed_area)


# ---------------------------------------------------------------------------
# Trajectory (lat/lng) helpers
# ---------------------------------------------------------------------------


def distance_between(point1: LatLngLike, point2: LatLngLike) -> float:
    """Geodesic distance in metres between two lat/lng points."""

    p1, p2 = as_latlng(point1), as_latlng(point2)
    _, _, dist = _GEOD.inv(p1.longitude, p1.latitude, p2.longitude, p2.latitude)
    return float(dist)


def to_local_xy(points: Iterable[LatLngLike], origin: Optional[LatLngLike] = None) -> List[XY]:
    """Project lat/lng points to metres east (x) and north (y) of ``origin``.

    The origin defaults to the minimum latitude and longitude of the set. Only
    valid for the small extents of a single visit cluster.
    """

    latlngs = [as_latlng(p) for p in points]
    if not latlngs:
        return []
    if origin is None:
        origin = LatLng(min(p.latitude for p in latlngs), min(p.longitude for p in latlngs))
    origin = as_latlng(origin)

    lats = np.array([p.latitude for p in latlngs], dtype=float)
    lngs = np.array([p.longitude for p in latlngs], dtype=float)
    origin_lats = np.full(lats.shape, origin.latitude)
    origin_lngs = np.full(lngs.shape, origin.longitude)

    _, _, north = _GEOD.inv(origin_lngs, lats, origin_lngs, origin_lats)
    _, _, east = _GEOD.inv(lngs, origin_lats, origin_lngs, origin_lats)
    y = np.sign(lats - origin.latitude) * np.asarray(north, dtype=float)
    x = np.sign(lngs - origin.longitude) * np.asarray(east, dtype=float)
    return [(float(xi), float(yi)) for xi, yi in zip(x, y)]


def _straight_xy(points: Iterable[LatLngLike]) -> List[XY]:
    return [(p.longitude, p.latitude) for p in map(as_latlng, points)]


def _from_straight_xy(points: Iterable[XY]) -> List[LatLng]:
    return [LatLng(latitude=y, longitude=x) for x, y in points]


def location_bounding_box(points: Iterable[LatLngLike], overscan: float = 0.0) -> Dict[str, float]:
    """Bounding box of lat/lng points, optionally grown by ``overscan`` of each span."""

    latlngs = [as_latlng(p) for p in points]
    if not latlngs:
        raise DegenerateGeometryError("Bounding box requires at least one point.")
    lats = [p.latitude for p in latlngs]
    lngs = [p.longitude for p in latlngs]
    box = {"max_lat": max(lats), "max_lng": max(lngs), "min_lat": min(lats), "min_lng": min(lngs)}

    if overscan > 0:
        lat_overscan = abs(box["max_lat"] - box["min_lat"]) * overscan
        lng_overscan = abs(box["max_lng"] - box["min_lng"]) * overscan
        box["max_lat"] += lat_overscan
        box["max_lng"] += lng_overscan
        box["min_lat"] -= lat_overscan
        box["min_lng"] -= lng_overscan
    return box


def location_area(points: Iterable[LatLngLike], size: int = DEFAULT_GRID_SIZE) -> float:
    """Approximate area in square metres of the convex hull of lat/lng points."""

    xy_points = to_local_xy(points)
    if not xy_points:
        return 0.0
    return polygon_area(convex_hull(xy_points), size)


def location_radius(points: Iterable[LatLngLike]) -> float:
    """Largest pairwise distance in metres within a lat/lng point set."""

    latlngs = [as_latlng(p) for p in points]
    if not latlngs:
        raise DegenerateGeometryError("Radius requires at least one point.")
    if len(latlngs) == 1:
        return 0.0
    return max(distance_between(a, b) for a, b in itertools.combinations(latlngs, 2))


def location_mean(points: Iterable[LatLngLike]) -> LatLng:
    """Arithmetic mean of lat/lng points."""

    latlngs = [as_latlng(p) for p in points]
    if not latlngs:
        raise DegenerateGeometryError("Mean location requires at least one point.")
    return LatLng(
        float(np.mean([p.latitude for p in latlngs])),
        float(np.mean([p.longitude for p in latlngs])),
    )


def location_centroid(points: Iterable[LatLngLike]) -> LatLng:
    """Centroid of the convex hull of lat/lng points."""

    x, y = centroid(_straight_xy(points))
    return LatLng(latitude=y, longitude=x)


def location_hull(points: Iterable[LatLngLike]) -> List[LatLng]:
    """Convex hull of lat/lng points, computed in the straight lng/lat plane."""

    return _from_straight_xy(convex_hull(_straight_xy(points)))


def dice_overlap(points: Sequence[LatLngLike], polygon: Sequence[LatLngLike], size: int = DEFAULT_GRID_SIZE) -> float:
    """Dice coefficient between the convex hull of ``points`` and ``polygon``."""

    latlngs = [as_latlng(p) for p in points]
    ring = [as_latlng(p) for p in polygon]
    if not latlngs or not ring:
        raise DegenerateGeometryError("Dice overlap requires two non-empty point sets.")
    combined = latlngs + ring
    origin = LatLng(min(p.latitude for p in combined), min(p.longitude for p in combined))

    hull_xy = convex_hull(to_local_xy(latlngs, origin))
    polygon_xy = to_local_xy(ring, origin)
    if len(hull_xy) < 3 or len(polygon_xy) < 3:
        return 0.0

    bbox1, bbox2 = bounding_box(hull_xy), bounding_box(polygon_xy)
    grid_box = _union_box(bbox1, bbox2)
    if grid_box[1] - grid_box[0] <= 0 or grid_box[3] - grid_box[2] <= 0:
        return 0.0
    xs, ys = _sample_grid(grid_box, size)
    within_1 = points_in_polygon(hull_xy, xs, ys, bbox1)
    within_2 = points_in_polygon(polygon_xy, xs, ys, bbox2)
    total = int(within_1.sum() + within_2.sum())
    if total == 0:
        return 0.0
    return 2.0 * float((within_1 & within_2).sum()) / total


def shapes_intersect(shape1: Sequence[LatLngLike], shape2: Sequence[LatLngLike], size: int = DEFAULT_GRID_SIZE) -> bool:
    """Whether two lat/lng shapes touch, contain one another or overlap."""

    xy1, xy2 = _straight_xy(shape1), _straight_xy(shape2)
    if len(xy1) == 1 and len(xy2) == 1:
        return xy1[0] == xy2[0]
    if set(xy1) & set(xy2):
        return True
    if len(xy1) == 1:
        return point_in_polygon(xy1[0], xy2)
    if len(xy2) == 1:
        return point_in_polygon(xy2[0], xy1)

    bbox1, bbox2 = bounding_box(xy1), bounding_box(xy2)
    if _boxes_disjoint(bbox1, bbox2):
        return False
    if any(point_in_polygon(p, xy2, bbox2) for p in xy1) or any(point_in_polygon(p, xy1, bbox1) for p in xy2):
        return True
    return polygon_overlap(xy1, xy2, size) > 0.0
