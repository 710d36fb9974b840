"""
Accuracy check.

Flags measurements that probably need correcting before they are quoted:
low confidence, disagreement with other sources, a zip code where open
footprint data is known to be poor, a default pitch standing in for real
pitch data, and very small buildings. Each issue lowers an overall score
from 100 by its impact.
"""

import re
from typing import List, Optional, Sequence

from roofmeasure.models import (
    AccuracyAction,
    AccuracyAssessment,
    AccuracyIssue,
    MeasurementResult,
    MeasurementSource,
    Severity,
)
from roofmeasure.providers import DEFAULT_BUILDING_PITCH

CONFIDENCE_THRESHOLD = 80
DISCREPANCY_THRESHOLD_PCT = 15.0
MIN_BUILDING_AREA_SQ_FT = 500.0

# Rural New England zip codes where OpenStreetMap footprints are sparse or outdated
PROBLEMATIC_ZIP_CODES = {
    "01005", "01007", "01008", "01010", "01011", "01012",
    "01050", "01053", "01054", "01056", "01057", "01070", "01071",
    "05401", "05602", "05701",
    "03301", "03431", "03561",
    "04101", "04401", "04501",
}

# zip -> typical under-measurement in percent
UNDER_MEASUREMENT_ZIP_CODES = {
    "01008": 20.4,
}

_ZIP_RE = re.compile(r"\b(\d{5})(?:-\d{4})?\b")


def extract_zip_code(address: Optional[str]) -> Optional[str]:
    """Last 5-digit zip in the address, or None."""
    if not address:
        return None
    matches = _ZIP_RE.findall(address)
    return matches[-1] if matches else None


def max_discrepancy_pct(primary: MeasurementResult, others: Sequence[MeasurementResult]) -> float:
    """Largest difference of another source from the primary, as % of the primary."""
    if not others or primary.adjusted_area_sq_ft <= 0:
        return 0.0
    return max(
        abs(o.adjusted_area_sq_ft - primary.adjusted_area_sq_ft) / primary.adjusted_area_sq_ft * 100
        for o in others
    )


def detect_accuracy_issues(
    measurement: MeasurementResult,
    confidence_score: int,
    others: Sequence[MeasurementResult] = (),
    zip_code: Optional[str] = None,
    confidence_threshold: int = CONFIDENCE_THRESHOLD,
    discrepancy_threshold_pct: float = DISCREPANCY_THRESHOLD_PCT,
) -> AccuracyAssessment:
    issues: List[AccuracyIssue] = []

    if confidence_score < confidence_threshold:
        if confidence_score < 60:
            severity = Severity.HIGH
        elif confidence_score < 70:
            severity = Severity.MEDIUM
        else:
            severity = Severity.LOW
        issues.append(AccuracyIssue(
            "low-confidence", severity,
            f"Confidence {confidence_score}% is below {confidence_threshold}%",
            confidence_threshold - confidence_score,
        ))

    discrepancy = max_discrepancy_pct(measurement, others)
    if discrepancy > discrepancy_threshold_pct:
        issues.append(AccuracyIssue(
            "source-discrepancy", Severity.HIGH if discrepancy > 25 else Severity.MEDIUM,
            f"Sources differ by {discrepancy:.1f}% (threshold {discrepancy_threshold_pct:.0f}%)",
            discrepancy,
        ))

    zip5 = zip_code[:5] if zip_code else None
    if zip5 in PROBLEMATIC_ZIP_CODES:
        issues.append(AccuracyIssue(
            "problematic-zip-code", Severity.MEDIUM,
            f"Zip code {zip5} has known footprint data gaps", 10,
        ))

    if measurement.source == MeasurementSource.OPENSTREETMAP and \
            measurement.pitch_degrees in (0, DEFAULT_BUILDING_PITCH):
        issues.append(AccuracyIssue(
            "estimated-pitch", Severity.LOW, "Default pitch used instead of measured pitch", 5,
        ))

    if 0 < measurement.total_area_sq_ft < MIN_BUILDING_AREA_SQ_FT:
        issues.append(AccuracyIssue(
            "small-building", Severity.LOW,
            f"Very small building ({measurement.total_area_sq_ft:,.0f} sq ft)", 5,
        ))

    overall = max(0.0, 100.0 - sum(i.impact for i in issues))
    needs_correction = (
        any(i.severity == Severity.HIGH for i in issues)
        or overall < 70
        or len(issues) >= 3
    )
    return AccuracyAssessment(
        needs_correction=needs_correction,
        overall_score=overall,
        recommended_action=_recommended_action(issues, overall, zip5),
        issues=issues,
    )


def _recommended_action(issues: List[AccuracyIssue], overall: float, zip5: Optional[str]) -> AccuracyAction:
    if overall < 50:
        return AccuracyAction.MANUAL_REVIEW
    if zip5 in UNDER_MEASUREMENT_ZIP_CODES:
        return AccuracyAction.CALIBRATE
    if any(i.kind == "source-discrepancy" or i.severity == Severity.HIGH for i in issues):
        return AccuracyAction.TRACE_FOOTPRINT
    if any(i.severity == Severity.MEDIUM for i in issues):
        return AccuracyAction.CALIBRATE
    return AccuracyAction.NONE
