"""
Confidence scoring.

Turns quality signals into a 0-100 score and a low / moderate / high level.
Each signal nudges the score independently from a base of 70:

  - exact historical calibration   +25 (regional calibration +5)
  - LiDAR-backed measurement       +20
  - imagery quality                HIGH +10, MEDIUM 0, LOW -15, UNKNOWN -10
  - imagery age                    <=1y +5, <=2y 0, <=3y -5, older -10
  - roof complexity (segments)     <=4 +5, <=8 0, <=12 -5, more -10
  - pitch                          <=5 deg +5, <=33.7 0, <=45 -5, steeper -15
  - multi-source agreement         >=95 +15, >=90 +10, >=80 +5, else -5

A single source with nothing corroborating it (no LiDAR, no exact
calibration, no second source) is capped at SINGLE_SOURCE_CAP. The impacts
are summed and clamped to 0-100 once, so the score is monotonic in every
corroborating signal. No clock or other hidden state is read here.
"""

from datetime import date, datetime
from typing import List, Optional, Union

from roofmeasure.models import (
    ConfidenceFactor,
    ConfidenceLevel,
    ConfidenceResult,
    ConfidenceSignals,
    ImageryQuality,
)

BASE_SCORE = 70
SINGLE_SOURCE_CAP = 90
HIGH_THRESHOLD = 75
MODERATE_THRESHOLD = 60
MANUAL_BASELINE_SCORE = 85

LEVEL_LABELS = {
    ConfidenceLevel.HIGH: "High Confidence",
    ConfidenceLevel.MODERATE: "Moderate Confidence",
    ConfidenceLevel.LOW: "Low Confidence - Manual Verification Recommended",
}

_QUALITY_IMPACT = {
    ImageryQuality.HIGH: (10, "High quality satellite imagery"),
    ImageryQuality.MEDIUM: (0, "Medium quality satellite imagery"),
    ImageryQuality.LOW: (-15, "Low quality satellite imagery reduces accuracy"),
    ImageryQuality.UNKNOWN: (-10, "Unknown imagery quality"),
}


def confidence_level(score: float) -> ConfidenceLevel:
    if score >= HIGH_THRESHOLD:
        return ConfidenceLevel.HIGH
    if score >= MODERATE_THRESHOLD:
        return ConfidenceLevel.MODERATE
    return ConfidenceLevel.LOW


def imagery_age_years(imagery_date: Optional[Union[str, date]], as_of: date) -> Optional[float]:
    """Age of imagery in years at ``as_of``; None when the date is missing or unparseable."""
    if not imagery_date:
        return None
    if isinstance(imagery_date, str):
        try:
            imagery_date = datetime.strptime(imagery_date[:10], "%Y-%m-%d").date()
        except ValueError:
            return None
    if isinstance(imagery_date, datetime):
        imagery_date = imagery_date.date()
    return max(0.0, (as_of - imagery_date).days / 365.25)


def _freshness(age: float):
    if age <= 1:
        return 5, "Recent imagery (< 1 year old)"
    if age <= 2:
        return 0, "Moderately recent imagery (1-2 years old)"
    if age <= 3:
        return -5, "Older imagery (2-3 years old)"
    return -10, "Outdated imagery (> 3 years old)"


def _complexity(segments: int):
    if segments <= 4:
        return 5, "Simple roof structure (<=4 segments)"
    if segments <= 8:
        return 0, "Moderate roof complexity (5-8 segments)"
    if segments <= 12:
        return -5, "Complex roof structure (9-12 segments)"
    return -10, "Very complex roof structure (>12 segments)"


def _pitch(degrees: float):
    if degrees <= 5:
        return 5, "Flat or low-slope roof (easy to measure)"
    if degrees <= 33.7:
        return 0, "Standard pitch range"
    if degrees <= 45:
        return -5, "Steep pitch may affect measurement accuracy"
    return -15, "Very steep pitch significantly reduces accuracy"


def _agreement(source_count: int, agreement: float):
    if agreement >= 95:
        return 15, f"{source_count} sources agree within 5%"
    if agreement >= 90:
        return 10, f"{source_count} sources agree within 10%"
    if agreement >= 80:
        return 5, f"{source_count} sources agree within 20%"
    return -5, "Significant discrepancy between sources"


def score_confidence(signals: ConfidenceSignals) -> ConfidenceResult:
    """Combine quality signals into a ConfidenceResult. Deterministic for equal input."""
    factors: List[ConfidenceFactor] = []

    def add(name: str, impact_and_text):
        impact, description = impact_and_text
        factors.append(ConfidenceFactor(name=name, impact=impact, description=description))

    if signals.has_calibration:
        if signals.calibration_exact_match:
            add("Historical Calibration", (25, "Historical report for this address provides calibration"))
        else:
            add("Historical Calibration", (5, "Regional calibration from nearby historical reports"))

    if signals.has_lidar:
        add("LiDAR Data", (20, "LiDAR-based measurements available"))

    if signals.imagery_quality is not None:
        add("Imagery Quality", _QUALITY_IMPACT[signals.imagery_quality])

    if signals.imagery_age_years is not None:
        add("Imagery Freshness", _freshness(signals.imagery_age_years))

    if signals.segment_count is not None:
        add("Roof Complexity", _complexity(signals.segment_count))

    if signals.pitch_degrees is not None:
        add("Pitch Analysis", _pitch(signals.pitch_degrees))

    multi_source = signals.source_count is not None and signals.source_count > 1
    if multi_source:
        add("Source Agreement", _agreement(signals.source_count, signals.source_agreement_pct or 0.0))

    score = BASE_SCORE + sum(f.impact for f in factors)

    corroborated = signals.has_lidar or signals.calibration_exact_match or multi_source
    if not corroborated and score > SINGLE_SOURCE_CAP:
        score = SINGLE_SOURCE_CAP
        factors.append(ConfidenceFactor(
            name="Single Source",
            impact=0,
            description=f"Uncorroborated single source capped at {SINGLE_SOURCE_CAP}",
        ))

    score = int(round(min(100, max(0, score))))
    level = confidence_level(score)
    return ConfidenceResult(score=score, level=level, label=LEVEL_LABELS[level], factors=factors)


def manual_baseline_confidence() -> ConfidenceResult:
    """Fixed confidence given to user-traced measurements."""
    level = confidence_level(MANUAL_BASELINE_SCORE)
    return ConfidenceResult(
        score=MANUAL_BASELINE_SCORE,
        level=level,
        label=LEVEL_LABELS[level],
        factors=[ConfidenceFactor(
            name="Manual Tracing",
            impact=MANUAL_BASELINE_SCORE - BASE_SCORE,
            description="User-traced roof outline (accuracy depends on tracing care)",
        )],
    )


def manual_tracing_required_confidence() -> ConfidenceResult:
    """Confidence for a result that still needs the user to trace the roof."""
    return ConfidenceResult(
        score=0,
        level=ConfidenceLevel.LOW,
        label=LEVEL_LABELS[ConfidenceLevel.LOW],
        factors=[ConfidenceFactor(
            name="No Measurement",
            impact=-BASE_SCORE,
            description="No automated source could measure this roof; manual tracing required",
        )],
    )
