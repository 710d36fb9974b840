import math

import pytest

from roofmeasure.pitch import (
    MAX_PITCH_DEGREES,
    area_to_squares,
    classify_complexity,
    degrees_to_pitch_ratio,
    extract_state_from_address,
    nearest_standard_pitch,
    order_squares,
    parse_pitch_info,
    pitch_category,
    pitch_multiplier_from_degrees,
    pitch_multiplier_from_ratio,
    pitch_ratio_to_degrees,
    pitch_to_ratio,
    regional_pitch_estimate,
    validate_multiplier,
    weighted_average_pitch,
)


def test_flat_roof_multiplier_is_one():
    assert pitch_multiplier_from_degrees(0) == 1.0


def test_multiplier_formula():
    """sqrt(tan^2 + 1) at a few known angles."""
    assert pitch_multiplier_from_degrees(45) == pytest.approx(math.sqrt(2))
    assert pitch_multiplier_from_degrees(30) == pytest.approx(math.sqrt(math.tan(math.radians(30)) ** 2 + 1))
    assert pitch_multiplier_from_ratio(6) == pytest.approx(1.118, abs=1e-3)


def test_multiplier_non_decreasing():
    values = [pitch_multiplier_from_degrees(d / 2) for d in range(0, 180)]
    assert all(b >= a for a, b in zip(values, values[1:]))


def test_multiplier_clamps_input():
    assert pitch_multiplier_from_degrees(-10) == 1.0
    assert pitch_multiplier_from_degrees(95) == pitch_multiplier_from_degrees(MAX_PITCH_DEGREES)
    assert math.isfinite(pitch_multiplier_from_degrees(90))


def test_ratio_degree_conversions():
    assert pitch_ratio_to_degrees(12) == pytest.approx(45.0)
    assert degrees_to_pitch_ratio(pitch_ratio_to_degrees(6)) == pytest.approx(6.0)
    assert pitch_to_ratio(26.57) == "6.0:12"
    assert pitch_to_ratio(0) == "0:12"


def test_area_to_squares_is_exact():
    assert area_to_squares(2345) == 23.45
    assert area_to_squares(0) == 0


def test_order_squares_rounds_up_to_bundles():
    assert order_squares(23.45) == pytest.approx(71 / 3)
    assert order_squares(20.0) == 20.0


def test_nearest_standard_pitch():
    assert nearest_standard_pitch(18) == "4:12"
    assert nearest_standard_pitch(1) == "0:12"


def test_validate_multiplier():
    assert validate_multiplier(6, 1.118)
    assert not validate_multiplier(6, 1.3)
    # not in the table
    assert validate_multiplier(13, 2.0)


@pytest.mark.parametrize("degrees,expected", [
    (3, "flat"),
    (15, "low"),
    (25, "medium"),
    (40, "steep"),
    (50, "very-steep"),
])
def test_pitch_category(degrees, expected):
    assert pitch_category(degrees) == expected


def test_parse_pitch_info():
    assert parse_pitch_info("6/12") == pytest.approx(pitch_ratio_to_degrees(6))
    assert parse_pitch_info("Predominant pitch 8:12") == pytest.approx(pitch_ratio_to_degrees(8))
    assert parse_pitch_info("18 degrees") == 18.0
    assert parse_pitch_info("22.5") == 22.5
    assert parse_pitch_info("Unknown") is None
    assert parse_pitch_info("") is None


def test_weighted_average_pitch():
    assert weighted_average_pitch([(20, 100), (40, 300)]) == pytest.approx(35.0)
    assert weighted_average_pitch([]) == 0.0


def test_classify_complexity():
    assert classify_complexity(4) == "simple"
    assert classify_complexity(5) == "moderate"
    assert classify_complexity(8) == "moderate"
    assert classify_complexity(9) == "complex"


def test_extract_state_from_address():
    assert extract_state_from_address("1600 Grant St, Denver, CO 80203") == "CO"
    assert extract_state_from_address("123 Main St, Austin, TX") == "TX"
    assert extract_state_from_address("1 Hill Rd, Morgantown, West Virginia") == "WV"
    assert extract_state_from_address("Somewhere without a state") is None
    assert extract_state_from_address(None) is None


def test_regional_pitch_estimate():
    estimate = regional_pitch_estimate("1600 Grant St, Denver, CO 80203")
    assert estimate["state_code"] == "CO"
    assert estimate["climate_zone"] == "snow-load"
    assert estimate["pitch_ratio"] == 6
    assert estimate["pitch_degrees"] == pytest.approx(pitch_ratio_to_degrees(6))
    assert estimate["confidence"] == 70

    unknown = regional_pitch_estimate("Nowhere")
    assert unknown["state_code"] is None
    assert unknown["pitch_ratio"] == 5
    assert unknown["confidence"] == 50
