import numpy as np
import pytest

from context_tree.errors import DegenerateGeometryError
from context_tree.geometry import (
    LatLng,
    centroid,
    convex_hull,
    dice_overlap,
    distance_between,
    location_area,
    location_bounding_box,
    location_centroid,
    location_mean,
    location_radius,
    point_in_polygon,
    points_in_polygon,
    polygon_area,
    polygon_overlap,
    shapes_intersect,
    to_local_xy,
)
from tests.helpers import square

UNIT_SQUARE = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]


def test_hull_drops_interior_points():
    hull = convex_hull(UNIT_SQUARE + [(0.5, 0.5), (0.2, 0.7)])
    assert set(hull) == set(UNIT_SQUARE)


def test_hull_of_convex_polygon_is_itself():
    pentagon = [(0.0, 0.0), (2.0, 0.0), (3.0, 1.5), (1.0, 3.0), (-1.0, 1.5)]
    shuffled = [pentagon[3], pentagon[0], pentagon[4], pentagon[0], pentagon[2], pentagon[1]]
    hull = convex_hull(shuffled)
    assert len(hull) == len(pentagon)
    assert set(hull) == set(pentagon)


def test_hull_degenerate_inputs():
    assert convex_hull([(1, 1)]) == [(1.0, 1.0)]
    assert convex_hull([(1, 1), (1, 1), (2, 3)]) == [(1.0, 1.0), (2.0, 3.0)]
    assert convex_hull([(0, 0), (1, 1), (2, 2), (3, 3)]) == [(0.0, 0.0), (3.0, 3.0)]
    with pytest.raises(DegenerateGeometryError):
        convex_hull([])


def test_unit_square_area_within_two_percent():
    assert abs(polygon_area(UNIT_SQUARE, size=100) - 1.0) < 0.02


def test_triangle_and_rectangle_area():
    assert polygon_area([(0, 0), (1, 0), (0, 1)]) == pytest.approx(0.5, rel=0.02)
    assert polygon_area([(0, 0), (2, 0), (2, 3), (0, 3)]) == pytest.approx(6.0, rel=0.02)


def test_degenerate_area_is_zero():
    assert polygon_area([(0, 0), (1, 1)]) == 0.0
    assert polygon_area([(0, 0), (1, 0), (2, 0)]) == 0.0


def test_point_in_polygon():
    assert point_in_polygon((0.5, 0.5), UNIT_SQUARE)
    assert not point_in_polygon((1.5, 0.5), UNIT_SQUARE)
    assert not point_in_polygon((0.5, -0.1), UNIT_SQUARE, bbox=(0.0, 1.0, 0.0, 1.0))


def test_vectorised_membership_matches_scalar():
    polygon = [(0.0, 0.0), (4.0, 1.0), (3.0, 4.0), (1.0, 3.0)]
    xs, ys = np.meshgrid(np.linspace(-0.5, 4.5, 23), np.linspace(-0.5, 4.5, 19))
    xs, ys = xs.ravel(), ys.ravel()
    expected = [point_in_polygon((x, y), polygon) for x, y in zip(xs, ys)]
    assert points_in_polygon(polygon, xs, ys).tolist() == expected


def test_polygon_overlap():
    shifted = [(0.5, 0.0), (1.5, 0.0), (1.5, 1.0), (0.5, 1.0)]
    far_away = [(5.0, 5.0), (6.0, 5.0), (6.0, 6.0)]
    assert polygon_overlap(UNIT_SQUARE, UNIT_SQUARE) == pytest.approx(1.0)
    assert polygon_overlap(UNIT_SQUARE, shifted) == pytest.approx(0.5, abs=0.03)
    assert polygon_overlap(UNIT_SQUARE, far_away) == 0.0


def test_centroid():
    cx, cy = centroid(UNIT_SQUARE + [(0.5, 0.5)])
    assert cx == pytest.approx(0.5)
    assert cy == pytest.approx(0.5)
    # Too few unique points: arithmetic mean.
    assert centroid([(0, 0), (3, 0), (0, 3)]) == pytest.approx((1.0, 1.0))
    # Shared x: arithmetic mean.
    assert centroid([(1, 0), (1, 1), (1, 2), (1, 5)]) == pytest.approx((1.0, 2.0))
    with pytest.raises(DegenerateGeometryError):
        centroid([])


def test_distance_between_one_degree_latitude():
    assert distance_between((0.0, 0.0), (1.0, 0.0)) == pytest.approx(110574.0, abs=100.0)


def test_local_projection_axes():
    points = [LatLng(52.0, 0.1), LatLng(52.001, 0.1), LatLng(52.0, 0.101)]
    xy = to_local_xy(points)
    assert xy[0] == (0.0, 0.0)
    assert xy[1][0] == pytest.approx(0.0, abs=1e-6)
    assert xy[1][1] == pytest.approx(distance_between(points[0], points[1]), rel=1e-6)
    assert xy[2][0] == pytest.approx(distance_between(points[0], points[2]), rel=1e-6)


def test_location_area_of_small_square():
    corners = square(52.0, 0.1, 0.001)
    width = distance_between(corners[0], corners[3])
    height = distance_between(corners[0], corners[1])
    assert location_area(corners) == pytest.approx(width * height, rel=0.02)
    assert location_area(corners[:1]) == 0.0


def test_location_helpers():
    corners = square(10.0, 20.0, 0.002)
    box = location_bounding_box(corners, overscan=0.5)
    assert box["min_lat"] == pytest.approx(9.999)
    assert box["max_lng"] == pytest.approx(20.003)
    assert location_radius(corners[:2]) == pytest.approx(distance_between(corners[0], corners[1]))
    assert location_radius(corners[:1]) == 0.0
    center = location_centroid(corners + [{"latitude": 10.001, "longitude": 20.001}])
    assert center.latitude == pytest.approx(10.001)
    assert center.longitude == pytest.approx(20.001)


def test_location_mean_averages_points():
    mean = location_mean(square(10.0, 20.0, 0.002) + [{"latitude": 10.006, "longitude": 20.006}])
    assert mean.latitude == pytest.approx(10.0024)
    assert mean.longitude == pytest.approx(20.0024)
    with pytest.raises(DegenerateGeometryError):
        location_mean([])


def test_dice_overlap_identical_shapes():
    corners = square(52.0, 0.1, 0.001)
    assert dice_overlap(corners, corners) == pytest.approx(1.0)
    assert dice_overlap(corners, square(53.0, 0.1, 0.001)) == 0.0


def test_shapes_intersect():
    a = [LatLng(**p) for p in square(52.0, 0.1, 0.001)]
    overlapping = [LatLng(**p) for p in square(52.0005, 0.1005, 0.001)]
    disjoint = [LatLng(**p) for p in square(52.01, 0.1, 0.001)]
    assert shapes_intersect(a, overlapping)
    assert not shapes_intersect(a, disjoint)
    assert shapes_intersect([LatLng(52.0005, 0.1005)], a)
    assert shapes_intersect([LatLng(1.0, 2.0)], [LatLng(1.0, 2.0)])
    assert not shapes_intersect([LatLng(1.0, 2.0)], [LatLng(1.0, 2.1)])
    # Shared corner only.
    corner = a[2]
    touching = [
        corner,
        LatLng(corner.latitude + 0.001, corner.longitude),
        LatLng(corner.latitude + 0.001, corner.longitude + 0.001),
    ]
    assert shapes_intersect(a, touching)
