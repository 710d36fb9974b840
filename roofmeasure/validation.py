"""
Cross-validation of measurement candidates.

Candidates are never averaged together. One candidate is chosen as the final
measurement (closest to calibration ground truth when there is one, otherwise
the most trusted source) and the rest are used to flag disagreements.
"""

import logging
from itertools import combinations
from typing import Dict, List, Optional, Sequence

from roofmeasure.models import (
    ConfidenceLevel,
    CrossValidationResult,
    Discrepancy,
    GAFCalibrationResult,
    MeasurementResult,
    MeasurementSource,
    SourceComparison,
    ValidationCheck,
    ValidationResult,
    manual_tracing_placeholder,
)

log = logging.getLogger(__name__)

# How much each source is trusted when several disagree (higher = better)
SOURCE_TRUST: Dict[MeasurementSource, float] = {
    MeasurementSource.INSTANT_ROOFER: 0.98,
    MeasurementSource.GOOGLE_SOLAR: 0.90,
    MeasurementSource.MANUAL_TRACING: 0.85,
    MeasurementSource.OPENSTREETMAP: 0.60,
    MeasurementSource.FOOTPRINT_ESTIMATION: 0.50,
}

DISCREPANCY_THRESHOLD_PCT = 15.0
AGREES_THRESHOLD_PCT = 5.0


def variance_pct(value: float, reference: float) -> float:
    """Signed percentage difference of value from reference (0 for a zero reference)."""
    if reference == 0:
        return 0.0
    return (value - reference) / reference * 100


def pairwise_deviation_pct(a: float, b: float) -> float:
    """Absolute difference of two areas as a percentage of their mean."""
    mean = (a + b) / 2
    if mean == 0:
        return 0.0
    return abs(a - b) / mean * 100


def source_agreement(areas: Sequence[float]) -> float:
    """
    0-100 agreement between areas: 100 minus the largest pairwise deviation.
    One area agrees with itself (100); no areas give 0.
    """
    if not areas:
        return 0.0
    if len(areas) == 1:
        return 100.0
    worst = max(pairwise_deviation_pct(a, b) for a, b in combinations(areas, 2))
    return max(0.0, 100.0 - worst)


def select_final(
    candidates: Sequence[MeasurementResult],
    calibration: Optional[GAFCalibrationResult] = None,
) -> MeasurementResult:
    """
    Pick the final candidate.

    With a calibration reference area, the candidate closest to it wins.
    Otherwise the most trusted source wins. Ties keep input order, so the
    tiered primary stays first among equals.
    """
    indexed = list(enumerate(candidates))
    reference = calibration.reference_area_sq_ft if calibration else None

    if reference:
        best = min(indexed, key=lambda im: (
            abs(im[1].adjusted_area_sq_ft - reference),
            -SOURCE_TRUST.get(im[1].source, 0.0),
            im[0],
        ))
    else:
        best = min(indexed, key=lambda im: (-SOURCE_TRUST.get(im[1].source, 0.0), im[0]))
    return best[1]


def _confidence_level(
    candidates: Sequence[MeasurementResult],
    agreement: float,
    calibration: Optional[GAFCalibrationResult],
) -> ConfidenceLevel:
    if calibration is not None and calibration.exact_match:
        return ConfidenceLevel.HIGH
    if any(m.has_lidar for m in candidates):
        return ConfidenceLevel.HIGH
    if len(candidates) >= 2 and agreement >= 95:
        return ConfidenceLevel.HIGH

    best_confidence = max(m.confidence for m in candidates)
    if len(candidates) == 1:
        if best_confidence >= 80:
            return ConfidenceLevel.HIGH
        if best_confidence < 60:
            return ConfidenceLevel.LOW
        return ConfidenceLevel.MODERATE

    if agreement >= 85 or best_confidence >= 85:
        return ConfidenceLevel.HIGH
    if agreement >= 70 or best_confidence >= 70:
        return ConfidenceLevel.MODERATE
    return ConfidenceLevel.LOW


def build_recommendation(
    level: ConfidenceLevel,
    discrepancies: Sequence[Discrepancy],
    source_count: int,
    calibration: Optional[GAFCalibrationResult] = None,
) -> str:
    if level == ConfidenceLevel.HIGH:
        if calibration is not None and calibration.exact_match:
            return "Measurements calibrated against a historical report for this address. High accuracy expected."
        if source_count >= 2:
            return "Measurements from multiple sources with good agreement. Suitable for quoting."
        return "Single high-quality source. Consider uploading a historical report for verification."
    if level == ConfidenceLevel.MODERATE:
        if discrepancies:
            return "Some discrepancy between sources. Manual verification recommended before final quote."
        return "Moderate confidence in measurements. Consider a site visit for verification."
    return "Low confidence in measurements. Manual roof measurement or report upload strongly recommended."


def cross_validate(
    candidates: Sequence[MeasurementResult],
    calibration: Optional[GAFCalibrationResult] = None,
    threshold_pct: float = DISCREPANCY_THRESHOLD_PCT,
) -> CrossValidationResult:
    """
    Compare one or more candidates and choose the final measurement.

    A single candidate passes through unchanged with agreement 100. With
    several, every pair whose adjusted areas differ by more than
    ``threshold_pct`` is reported as a Discrepancy.
    """
    if not candidates:
        return CrossValidationResult(
            final_measurement=manual_tracing_placeholder(),
            agreement_score=0.0,
            discrepancies=[],
            recommendation="Unable to obtain measurements. Manual tracing or site visit required.",
            sources=[],
            confidence_level=ConfidenceLevel.LOW,
        )

    final = select_final(candidates, calibration)
    agreement = source_agreement([m.adjusted_area_sq_ft for m in candidates])

    discrepancies = []
    for a, b in combinations(candidates, 2):
        deviation = pairwise_deviation_pct(a.adjusted_area_sq_ft, b.adjusted_area_sq_ft)
        if deviation > threshold_pct:
            discrepancies.append(Discrepancy(
                first_source=a.source,
                second_source=b.source,
                first_area_sq_ft=a.adjusted_area_sq_ft,
                second_area_sq_ft=b.adjusted_area_sq_ft,
                deviation_pct=deviation,
            ))

    sources = [
        SourceComparison(
            source=m.source,
            adjusted_area_sq_ft=m.adjusted_area_sq_ft,
            weight=SOURCE_TRUST.get(m.source, 0.0),
            variance_from_final=variance_pct(m.adjusted_area_sq_ft, final.adjusted_area_sq_ft),
        )
        for m in candidates
    ]

    level = _confidence_level(candidates, agreement, calibration)
    if discrepancies:
        log.info("Cross-validation found %d discrepancies (agreement %.1f)",
                 len(discrepancies), agreement)

    return CrossValidationResult(
        final_measurement=final,
        agreement_score=agreement,
        discrepancies=discrepancies,
        recommendation=build_recommendation(level, discrepancies, len(candidates), calibration),
        sources=sources,
        confidence_level=level,
    )


def validate_measurement(
    primary: MeasurementResult,
    secondaries: Sequence[MeasurementResult],
) -> ValidationResult:
    """
    Check a primary measurement against secondary sources without blending.

    Each secondary is rated agrees (<=5%), minor-variance (<=15%) or
    significant-variance; significant ones add a warning.
    """
    checks: List[ValidationCheck] = []
    warnings: List[str] = []

    for secondary in secondaries:
        variance = variance_pct(secondary.adjusted_area_sq_ft, primary.adjusted_area_sq_ft)
        if abs(variance) <= AGREES_THRESHOLD_PCT:
            status = "agrees"
        elif abs(variance) <= DISCREPANCY_THRESHOLD_PCT:
            status = "minor-variance"
        else:
            status = "significant-variance"
            warnings.append(
                f"{secondary.source.value} differs by {abs(variance):.1f}% from "
                f"primary source ({primary.source.value})"
            )
        checks.append(ValidationCheck(
            source=secondary.source,
            adjusted_area_sq_ft=secondary.adjusted_area_sq_ft,
            variance_from_primary=variance,
            status=status,
        ))

    if not checks:
        overall = "unvalidated"
    elif warnings:
        overall = "discrepancy-detected"
    else:
        overall = "validated"

    return ValidationResult(primary_measurement=primary, checks=checks,
                            warnings=warnings, overall=overall)
