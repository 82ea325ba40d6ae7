import pytest

from wsm.utils.geo import location_key, parse_location_key, round_coordinate


def test_nearby_readings_share_a_location_key():
    assert location_key(40.7128, -74.0060) == "lat=40.713,lon=-74.006"
    assert location_key(40.71276, -74.00601) == "lat=40.713,lon=-74.006"


def test_different_rounded_coordinates_differ():
    assert location_key(40.7124, -74.0060) != location_key(40.7126, -74.0060)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (1.0005, 1.001),
        (-1.0005, -1.001),
        (2.675, 2.675),
        (-0.0001, 0.0),
        (12.3, 12.3),
    ],
)
def test_round_coordinate_half_away_from_zero(raw, expected):
    assert round_coordinate(raw) == expected


def test_negative_zero_is_normalized():
    assert location_key(-0.0001, 0.0001) == "lat=0.000,lon=0.000"


def test_parse_location_key():
    assert parse_location_key("lat=40.713,lon=-74.006") == (40.713, -74.006)
    assert parse_location_key("lat=abc,lon=1.5") == (0.0, 1.5)
    assert parse_location_key(None) == (0.0, 0.0)
