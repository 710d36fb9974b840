from datetime import datetime, timezone

import pytest

from roofmeasure.models import (
    ConfidenceLevel,
    GAFCalibrationResult,
    ImageryQuality,
    MeasurementSource,
)
from roofmeasure.validation import (
    cross_validate,
    pairwise_deviation_pct,
    source_agreement,
    validate_measurement,
    variance_pct,
)

UPLOADED = datetime(2026, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def solar(make_measurement):
    return make_measurement(footprint=2000.0, multiplier=1.0)


@pytest.fixture
def osm(make_measurement):
    return make_measurement(footprint=2500.0, multiplier=1.0, source=MeasurementSource.OPENSTREETMAP,
                            confidence=60, quality=None)


def test_single_candidate_passes_through(solar):
    result = cross_validate([solar])

    assert result.final_measurement is solar
    assert result.agreement_score == 100
    assert result.discrepancies == []
    assert result.recommendation
    assert len(result.sources) == 1


def test_empty_input_requires_manual_tracing():
    result = cross_validate([])

    assert result.final_measurement.adjusted_area_sq_ft == 0
    assert result.final_measurement.source == MeasurementSource.MANUAL_TRACING
    assert result.agreement_score == 0
    assert result.confidence_level == ConfidenceLevel.LOW
    assert "Manual tracing" in result.recommendation


def test_discrepancy_above_threshold(solar, osm):
    result = cross_validate([osm, solar])

    # 500 / 2250 = 22.2% of the pair mean
    assert len(result.discrepancies) == 1
    assert result.discrepancies[0].deviation_pct == pytest.approx(22.22, abs=0.01)
    assert result.agreement_score == pytest.approx(77.78, abs=0.01)
    # solar is more trusted than OSM
    assert result.final_measurement is solar


def test_threshold_is_configurable(make_measurement):
    a = make_measurement(footprint=2000.0, multiplier=1.0)
    b = make_measurement(footprint=2200.0, multiplier=1.0, source=MeasurementSource.OPENSTREETMAP)

    assert cross_validate([a, b]).discrepancies == []
    assert len(cross_validate([a, b], threshold_pct=5.0).discrepancies) == 1


def test_calibration_reference_selects_closest(solar, osm):
    calibration = GAFCalibrationResult(1.2, 1, UPLOADED, exact_match=True, reference_area_sq_ft=2450.0)
    result = cross_validate([solar, osm], calibration)

    assert result.final_measurement is osm
    assert result.confidence_level == ConfidenceLevel.HIGH


def test_ties_keep_input_order(make_measurement):
    first = make_measurement(footprint=2000.0)
    second = make_measurement(footprint=2100.0)
    assert cross_validate([first, second]).final_measurement is first
    assert cross_validate([second, first]).final_measurement is second


def test_lidar_candidate_gives_high_level(make_measurement, osm):
    lidar = make_measurement(footprint=2300.0, multiplier=1.0, source=MeasurementSource.INSTANT_ROOFER,
                             confidence=95, quality=None, has_lidar=True)
    result = cross_validate([osm, lidar])
    assert result.final_measurement is lidar
    assert result.confidence_level == ConfidenceLevel.HIGH


def test_low_confidence_single_source(make_measurement):
    weak = make_measurement(source=MeasurementSource.FOOTPRINT_ESTIMATION, confidence=35,
                            quality=ImageryQuality.UNKNOWN)
    assert cross_validate([weak]).confidence_level == ConfidenceLevel.LOW


def test_source_agreement():
    assert source_agreement([]) == 0
    assert source_agreement([1800.0]) == 100
    assert source_agreement([2000.0, 2000.0]) == 100
    assert source_agreement([1000.0, 3000.0]) == 0


def test_deviation_helpers():
    assert pairwise_deviation_pct(0, 0) == 0
    assert variance_pct(110, 100) == pytest.approx(10)
    assert variance_pct(5, 0) == 0


def test_validate_measurement_statuses(make_measurement):
    primary = make_measurement(footprint=2000.0, multiplier=1.0)
    secondaries = [
        make_measurement(footprint=2050.0, multiplier=1.0, source=MeasurementSource.OPENSTREETMAP),
        make_measurement(footprint=2200.0, multiplier=1.0, source=MeasurementSource.FOOTPRINT_ESTIMATION),
        make_measurement(footprint=2600.0, multiplier=1.0, source=MeasurementSource.MANUAL_TRACING),
    ]

    result = validate_measurement(primary, secondaries)

    assert [c.status for c in result.checks] == ["agrees", "minor-variance", "significant-variance"]
    assert result.overall == "discrepancy-detected"
    assert len(result.warnings) == 1
    assert "manual-tracing differs by 30.0%" in result.warnings[0]


def test_validate_measurement_overall(make_measurement):
    primary = make_measurement(footprint=2000.0, multiplier=1.0)
    close = make_measurement(footprint=2040.0, multiplier=1.0, source=MeasurementSource.OPENSTREETMAP)

    assert validate_measurement(primary, []).overall == "unvalidated"
    assert validate_measurement(primary, [close]).overall == "validated"
