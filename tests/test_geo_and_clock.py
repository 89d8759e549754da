"""
Tests for GPS geofence checks and the time/money helpers.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend_careconnect.core.clock import round_half_up, to_unix
from backend_careconnect.core.exceptions import ValidationError
from backend_careconnect.jobs.geo import (
    allowed_radius,
    check_geofence,
    distance_meters,
    parse_geo,
)

JOB_LAT, JOB_LNG = 13.7563, 100.5018


def test_parse_geo_requires_both_coordinates():
    assert parse_geo(None) is None
    assert parse_geo({"lat": 13.7}) is None
    point = parse_geo({"lat": "13.7", "lng": 100.5, "accuracy_m": None})
    assert (point.lat, point.lng, point.accuracy_m) == (13.7, 100.5, 0.0)


@pytest.mark.parametrize("raw", [{"lat": 91, "lng": 0}, {"lat": 0, "lng": 181}, {"lat": "north", "lng": 0}])
def test_parse_geo_rejects_bad_coordinates(raw):
    with pytest.raises(ValidationError):
        parse_geo(raw)


def test_distance_one_degree_latitude():
    assert distance_meters(0, 0, 1, 0) == pytest.approx(111_195, rel=1e-3)


def test_allowed_radius_is_capped():
    assert allowed_radius(None, 1000) == 1000
    assert allowed_radius(200, 1000) == 200
    assert allowed_radius(5000, 1000) == 1000


def test_point_inside_radius_has_no_indicators():
    point = check_geofence(parse_geo({"lat": JOB_LAT, "lng": JOB_LNG}), JOB_LAT, JOB_LNG, 200, 1000)
    assert point.fraud_indicators == []


def test_point_in_accuracy_margin_is_flagged():
    # ~330 m north of the job
    point = parse_geo({"lat": JOB_LAT + 0.003, "lng": JOB_LNG, "accuracy_m": 150})
    check_geofence(point, JOB_LAT, JOB_LNG, 200, 1000)
    assert point.fraud_indicators == ["low_accuracy", "near_geofence_edge"]


def test_point_outside_allowance_rejected():
    point = parse_geo({"lat": JOB_LAT + 0.01, "lng": JOB_LNG})
    with pytest.raises(ValidationError) as exc_info:
        check_geofence(point, JOB_LAT, JOB_LNG, 200, 1000)
    assert exc_info.value.message.startswith("GPS distance too far (")
    assert exc_info.value.details["allowed_m"] == 200


def test_job_without_location_accepts_any_point():
    point = check_geofence(parse_geo({"lat": 0, "lng": 0}), None, None, None, 1000)
    assert point.fraud_indicators == []


def test_round_half_up():
    assert round_half_up(38.8) == 39
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(387.5) == 388


def test_to_unix():
    assert to_unix(datetime(1970, 1, 2, tzinfo=timezone.utc)) == 86400
    assert to_unix(datetime(1970, 1, 2)) == 86400
    assert to_unix(12.9) == 12
