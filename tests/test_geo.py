"""Tests for distance, bounding boxes and ward routing."""

from conftest import OUTSIDE_WARD, WARD_CENTER, offset_north

from app.models.ward import Ward
from app.services.geo import bounding_box, haversine, resolve_ward, ward_contains


class TestHaversine:
    def test_zero_distance(self):
        assert haversine(28.65, 77.19, 28.65, 77.19) == 0

    def test_meridian_offset_matches_requested_meters(self):
        lat, lon = offset_north(*WARD_CENTER, 50)
        assert abs(haversine(*WARD_CENTER, lat, lon) - 50) < 0.01

    def test_symmetric(self):
        a = haversine(28.6, 77.2, 19.07, 72.87)
        b = haversine(19.07, 72.87, 28.6, 77.2)
        assert abs(a - b) < 1e-6

    def test_delhi_to_mumbai_is_about_1150km(self):
        d = haversine(28.6139, 77.2090, 19.0760, 72.8777)
        assert 1_140_000 < d < 1_160_000


class TestBoundingBox:
    def test_box_contains_circle(self):
        min_lat, max_lat, min_lon, max_lon = bounding_box(*WARD_CENTER, 50)
        north = offset_north(*WARD_CENTER, 49.9)
        assert min_lat < north[0] < max_lat
        assert min_lon < WARD_CENTER[1] < max_lon

    def test_pole_clamps_longitude(self):
        _, _, min_lon, max_lon = bounding_box(90.0, 0.0, 50)
        assert max_lon - min_lon == 360.0


class TestWardRouting:
    def test_point_inside(self, db, ward):
        assert resolve_ward(db, *WARD_CENTER).id == ward.id

    def test_point_outside_is_unrouted(self, db, ward):
        assert resolve_ward(db, *OUTSIDE_WARD) is None

    def test_no_coordinate(self, db, ward):
        assert resolve_ward(db, None, None) is None

    def test_point_on_boundary_is_not_inside(self, ward):
        assert not ward_contains(ward, 28.64, 77.19)

    def test_unreadable_boundary_is_skipped(self, db, ward):
        broken = Ward(name="Broken", boundary={"type": "Polygon"})
        db.add(broken)
        db.commit()
        assert not ward_contains(broken, *WARD_CENTER)
        assert resolve_ward(db, *WARD_CENTER).id == ward.id

    def test_lowest_id_wins_on_overlap(self, db, ward):
        db.add(Ward(name="Overlap", boundary=ward.boundary))
        db.commit()
        assert resolve_ward(db, *WARD_CENTER).id == ward.id
