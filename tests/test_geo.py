import pytest

from voicepins.geo import MAX_PIN_OFFSET_METERS, clamp_offset, haversine_distance, total_distance


def test_haversine_known_distance():
    # one degree of latitude on a 6371 km sphere
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111194.93, rel=1e-6)
    assert haversine_distance(43.65, -79.38, 43.65, -79.38) == 0


def test_total_distance_follows_given_order():
    pts = [(0, 0), (0, 1), (0, 0)]
    leg = haversine_distance(0, 0, 0, 1)
    assert total_distance(pts) == pytest.approx(2 * leg)
    assert total_distance(pts[:1]) == 0
    assert total_distance([]) == 0


def test_clamp_offset_keeps_near_points():
    assert clamp_offset(43.65, -79.38, 43.6502, -79.3802) == (43.6502, -79.3802)


def test_clamp_offset_pulls_far_points_back():
    lat, lng = clamp_offset(43.65, -79.38, 43.66, -79.37)
    assert haversine_distance(43.65, -79.38, lat, lng) == pytest.approx(MAX_PIN_OFFSET_METERS, rel=1e-3)
