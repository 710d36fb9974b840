import pytest
import requests

from roofmeasure.errors import ConfigurationError
from roofmeasure.models import ImageryQuality, Location, MeasurementSource, ProviderFailure
from roofmeasure.pitch import SQFT_PER_SQM, pitch_multiplier_from_degrees, pitch_ratio_to_degrees
from roofmeasure.providers import (
    FootprintEstimationProvider,
    GoogleSolarProvider,
    InstantRooferProvider,
    OpenStreetMapProvider,
    UnconfiguredProvider,
    format_imagery_date,
    polygon_area_sqm,
)

DENVER = Location(39.7392, -104.9903, "1600 Grant St, Denver, CO 80203")

SOLAR_PAYLOAD = {
    "imageryQuality": "HIGH",
    "imageryDate": {"year": 2025, "month": 6, "day": 1},
    "solarPotential": {
        "roofSegmentStats": [
            {"pitchDegrees": 20.0, "stats": {"areaMeters2": 60.0, "groundAreaMeters2": 56.0}},
            {"pitchDegrees": 30.0, "stats": {"areaMeters2": 40.0, "groundAreaMeters2": 35.0}},
        ]
    },
}


def _square(lat, lng, side_m):
    d_lat = side_m / 110540
    d_lng = side_m / (111320 * 0.7687)
    return [
        {"lat": lat, "lon": lng},
        {"lat": lat + d_lat, "lon": lng},
        {"lat": lat + d_lat, "lon": lng + d_lng},
        {"lat": lat, "lon": lng + d_lng},
    ]


# --------------------------------------------------------------------------
# Google Solar
# --------------------------------------------------------------------------

def test_solar_success(mock_session, make_response):
    """Surface area is the sum of sloped segments; footprint the sum of ground areas."""
    mock_session.request.return_value = make_response(200, SOLAR_PAYLOAD)
    provider = GoogleSolarProvider("AIza-test", ImageryQuality.HIGH, session=mock_session)

    m = provider.attempt(DENVER)

    assert m.source == MeasurementSource.GOOGLE_SOLAR
    assert m.total_area_sq_ft == pytest.approx(91.0 * SQFT_PER_SQM)
    assert m.adjusted_area_sq_ft == pytest.approx(100.0 * SQFT_PER_SQM)
    assert m.pitch_degrees == pytest.approx(24.0)
    assert m.segment_count == 2
    assert m.imagery_quality == ImageryQuality.HIGH
    assert m.imagery_date == "2025-06-01"
    assert m.confidence == 90
    assert not m.has_lidar


def test_solar_sends_required_quality(mock_session, make_response):
    mock_session.request.return_value = make_response(200, SOLAR_PAYLOAD)
    GoogleSolarProvider("AIza-test", ImageryQuality.MEDIUM, session=mock_session).attempt(DENVER)

    params = mock_session.request.call_args.kwargs["params"]
    assert params["requiredQuality"] == "MEDIUM"
    assert params["location.latitude"] == DENVER.lat
    assert params["key"] == "AIza-test"


def test_solar_not_found(mock_session, make_response):
    mock_session.request.return_value = make_response(404)
    outcome = GoogleSolarProvider("AIza-test", session=mock_session).attempt(DENVER)
    assert outcome == ProviderFailure("No HIGH quality imagery available for this location")


def test_solar_http_error(mock_session, make_response):
    mock_session.request.return_value = make_response(500, text="backend error")
    outcome = GoogleSolarProvider("AIza-test", session=mock_session).attempt(DENVER)
    assert outcome == ProviderFailure("API error: HTTP 500")


def test_solar_request_exception(mock_session):
    mock_session.request.side_effect = requests.exceptions.InvalidURL("bad url")
    outcome = GoogleSolarProvider("AIza-test", session=mock_session).attempt(DENVER)
    assert isinstance(outcome, ProviderFailure)
    assert outcome.reason.startswith("API error:")


def test_solar_retries_transient_errors(mock_session, make_response, no_retry_wait):
    mock_session.request.side_effect = [
        requests.ConnectionError("reset"),
        requests.ConnectionError("reset"),
        make_response(200, SOLAR_PAYLOAD),
    ]
    outcome = GoogleSolarProvider("AIza-test", session=mock_session).attempt(DENVER)

    assert mock_session.request.call_count == 3
    assert outcome.source == MeasurementSource.GOOGLE_SOLAR
    assert outcome.segment_count == 2


def test_solar_gives_up_after_three_attempts(mock_session, no_retry_wait):
    mock_session.request.side_effect = requests.Timeout("read timed out")
    outcome = GoogleSolarProvider("AIza-test", session=mock_session).attempt(DENVER)

    assert mock_session.request.call_count == 3
    assert outcome == ProviderFailure("API error: read timed out")


def test_solar_does_not_retry_other_request_errors(mock_session):
    mock_session.request.side_effect = requests.exceptions.InvalidURL("bad url")
    GoogleSolarProvider("AIza-test", session=mock_session).attempt(DENVER)
    assert mock_session.request.call_count == 1


def test_solar_invalid_json(mock_session, make_response):
    mock_session.request.return_value = make_response(200, ValueError("not json"))
    outcome = GoogleSolarProvider("AIza-test", session=mock_session).attempt(DENVER)
    assert outcome == ProviderFailure("API error: invalid JSON response")


def test_solar_without_segments(mock_session, make_response):
    mock_session.request.return_value = make_response(200, {"imageryQuality": "HIGH"})
    outcome = GoogleSolarProvider("AIza-test", session=mock_session).attempt(DENVER)
    assert outcome == ProviderFailure("No building data available for this location")


def test_solar_requires_key():
    with pytest.raises(ConfigurationError):
        GoogleSolarProvider("")


def test_format_imagery_date():
    assert format_imagery_date({"year": 2024, "month": 5, "day": 3}) == "2024-05-03"
    assert format_imagery_date({}) is None
    assert format_imagery_date(None) is None


# --------------------------------------------------------------------------
# Instant Roofer
# --------------------------------------------------------------------------

def test_instant_roofer_success(mock_session, make_response):
    mock_session.request.return_value = make_response(200, {
        "totalAreaSqFt": 2000.0,
        "pitchDegrees": 26.57,
        "segmentCount": 6,
        "imageryDate": "2026-03-01",
    })
    provider = InstantRooferProvider("ir-key", session=mock_session)

    m = provider.attempt(DENVER)

    assert m.has_lidar
    assert m.confidence == 95
    assert m.source == MeasurementSource.INSTANT_ROOFER
    assert m.adjusted_area_sq_ft == pytest.approx(2000.0 * pitch_multiplier_from_degrees(26.57))
    assert m.segment_count == 6
    headers = mock_session.request.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer ir-key"


def test_instant_roofer_no_coverage(mock_session, make_response):
    mock_session.request.return_value = make_response(404)
    outcome = InstantRooferProvider("ir-key", session=mock_session).attempt(DENVER)
    assert outcome == ProviderFailure("No LiDAR coverage for this location")


def test_instant_roofer_requires_key():
    with pytest.raises(ConfigurationError):
        InstantRooferProvider(None)


# --------------------------------------------------------------------------
# OpenStreetMap
# --------------------------------------------------------------------------

def test_polygon_area_sqm():
    ring = [{"lat": 0, "lon": 0}, {"lat": 0.001, "lon": 0}, {"lat": 0.001, "lon": 0.001}, {"lat": 0, "lon": 0.001}]
    assert polygon_area_sqm(ring) == pytest.approx(111.32 * 110.54, rel=1e-3)
    assert polygon_area_sqm(ring[:2]) == 0.0


def test_osm_picks_closest_building(mock_session, make_response):
    near = {"tags": {"building": "house"}, "geometry": _square(DENVER.lat, DENVER.lng, 10)}
    far = {"tags": {"building": "warehouse"}, "geometry": _square(DENVER.lat + 0.0004, DENVER.lng, 40)}
    mock_session.request.return_value = make_response(200, {"elements": [far, near]})

    m = OpenStreetMapProvider(session=mock_session).attempt(DENVER)

    assert m.source == MeasurementSource.OPENSTREETMAP
    assert m.total_area_sq_ft == pytest.approx(100 * SQFT_PER_SQM, rel=0.01)
    assert m.pitch_degrees == 18.4
    assert m.confidence == 60
    assert "house" in m.warning
    assert mock_session.request.call_args.args[0] == "POST"


def test_osm_no_buildings(mock_session, make_response):
    mock_session.request.return_value = make_response(200, {"elements": []})
    outcome = OpenStreetMapProvider(session=mock_session).attempt(DENVER)
    assert outcome == ProviderFailure("No building footprint found in OpenStreetMap for this location")


# --------------------------------------------------------------------------
# Footprint estimation / unconfigured
# --------------------------------------------------------------------------

def test_footprint_estimation_needs_address():
    outcome = FootprintEstimationProvider(lambda loc: 1800.0).attempt(Location(39.7, -104.9))
    assert outcome == ProviderFailure("Address required for footprint estimation")


def test_footprint_estimation_needs_lookup():
    assert FootprintEstimationProvider().attempt(DENVER) == \
        ProviderFailure("Insufficient data for footprint estimation")
    assert FootprintEstimationProvider(lambda loc: None).attempt(DENVER) == \
        ProviderFailure("Insufficient data for footprint estimation")


def test_footprint_estimation_uses_regional_pitch():
    location = Location(30.27, -97.74, "123 Main St, Austin, TX")
    m = FootprintEstimationProvider(lambda loc: 1800.0).attempt(location)

    assert m.source == MeasurementSource.FOOTPRINT_ESTIMATION
    assert m.pitch_degrees == pytest.approx(pitch_ratio_to_degrees(4))
    assert m.adjusted_area_sq_ft == pytest.approx(1800.0 * pitch_multiplier_from_degrees(m.pitch_degrees))
    assert m.confidence == 45


def test_unconfigured_provider_always_fails():
    provider = UnconfiguredProvider(MeasurementSource.GOOGLE_SOLAR, "Google Solar API key not configured")
    assert provider.attempt(DENVER) == ProviderFailure("Google Solar API key not configured")
