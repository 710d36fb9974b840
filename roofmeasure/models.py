"""
Value objects shared by the measurement engine.

Every result type here is a frozen dataclass. Adjustments (tier stamping,
calibration) always go through ``dataclasses.replace`` and hand back a new
value; nothing is mutated after a provider or the engine produced it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from roofmeasure.pitch import SQFT_PER_SQM, area_to_squares, classify_complexity


# ==============================================================================
# ENUMERATIONS
# ==============================================================================

class MeasurementSource(str, Enum):
    """Where a measurement came from."""
    INSTANT_ROOFER = "instant-roofer"
    GOOGLE_SOLAR = "google-solar"
    OPENSTREETMAP = "openstreetmap"
    FOOTPRINT_ESTIMATION = "footprint-estimation"
    MANUAL_TRACING = "manual-tracing"


class ImageryQuality(str, Enum):
    """Imagery quality as reported by the Solar API."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"

    @property
    def rank(self) -> int:
        return _QUALITY_RANK[self]

    def meets(self, floor: "ImageryQuality") -> bool:
        """True when this quality is at least ``floor``."""
        return self.rank >= floor.rank

    @classmethod
    def parse(cls, value: Optional[str]) -> "ImageryQuality":
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).upper())
        except ValueError:
            # Solar API also reports BASE for the lowest imagery tier
            return cls.LOW if str(value).upper() == "BASE" else cls.UNKNOWN


_QUALITY_RANK = {
    ImageryQuality.UNKNOWN: 0,
    ImageryQuality.LOW: 1,
    ImageryQuality.MEDIUM: 2,
    ImageryQuality.HIGH: 3,
}


class RoofComplexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ConfidenceLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AccuracyAction(str, Enum):
    """Follow-up suggested by the accuracy check."""
    NONE = "none"
    TRACE_FOOTPRINT = "trace-footprint"
    MANUAL_REVIEW = "manual-review"
    CALIBRATE = "calibrate"


# ==============================================================================
# MEASUREMENTS
# ==============================================================================

@dataclass(frozen=True)
class Location:
    """A point to measure, with the street address when the caller has one."""
    lat: float
    lng: float
    address: Optional[str] = None


@dataclass(frozen=True)
class MeasurementResult:
    """One source's roof measurement."""
    total_area_sq_m: float          # raw (footprint) area
    total_area_sq_ft: float         # raw (footprint) area
    adjusted_area_sq_ft: float      # pitch-adjusted surface area
    squares: float                  # adjusted area / 100
    pitch_degrees: float
    pitch_multiplier: float
    segment_count: int
    complexity: RoofComplexity
    source: MeasurementSource
    confidence: float               # 0-100
    imagery_quality: Optional[ImageryQuality] = None
    imagery_date: Optional[str] = None   # ISO YYYY-MM-DD
    has_lidar: bool = False
    warning: Optional[str] = None
    tier: Optional[int] = None


def build_measurement(
    footprint_sq_ft: float,
    pitch_degrees: float,
    pitch_multiplier: float,
    segment_count: int,
    source: MeasurementSource,
    confidence: float,
    imagery_quality: Optional[ImageryQuality] = None,
    imagery_date: Optional[str] = None,
    has_lidar: bool = False,
    warning: Optional[str] = None,
    tier: Optional[int] = None,
) -> MeasurementResult:
    """
    Assemble a MeasurementResult from a footprint and a pitch multiplier.

    All producers go through here so the area invariants hold:
      adjusted_area_sq_ft = total_area_sq_ft * pitch_multiplier
      squares             = adjusted_area_sq_ft / 100
    """
    adjusted = footprint_sq_ft * pitch_multiplier
    return MeasurementResult(
        total_area_sq_m=footprint_sq_ft / SQFT_PER_SQM,
        total_area_sq_ft=footprint_sq_ft,
        adjusted_area_sq_ft=adjusted,
        squares=area_to_squares(adjusted),
        pitch_degrees=pitch_degrees,
        pitch_multiplier=pitch_multiplier,
        segment_count=segment_count,
        complexity=RoofComplexity(classify_complexity(segment_count)),
        source=source,
        confidence=confidence,
        imagery_quality=imagery_quality,
        imagery_date=imagery_date,
        has_lidar=has_lidar,
        warning=warning,
        tier=tier,
    )


def manual_tracing_placeholder() -> MeasurementResult:
    """Zero-area result signalling that the user has to trace the roof."""
    return MeasurementResult(
        total_area_sq_m=0.0,
        total_area_sq_ft=0.0,
        adjusted_area_sq_ft=0.0,
        squares=0.0,
        pitch_degrees=0.0,
        pitch_multiplier=1.0,
        segment_count=0,
        complexity=RoofComplexity.SIMPLE,
        source=MeasurementSource.MANUAL_TRACING,
        confidence=0.0,
        warning="Manual tracing required - trace the roof outline to calculate area",
        tier=7,
    )


# ==============================================================================
# TIERS
# ==============================================================================

@dataclass(frozen=True)
class TierDescriptor:
    number: int
    name: str
    accuracy: str     # e.g. "92-95%"


@dataclass(frozen=True)
class ProviderFailure:
    """Failure outcome of a single provider attempt."""
    reason: str


ProviderOutcome = Union[MeasurementResult, ProviderFailure]


@dataclass(frozen=True)
class TierFailure:
    tier: int
    tier_name: str
    reason: str


@dataclass(frozen=True)
class TieredMeasurementResult:
    """Outcome of the tier waterfall."""
    measurement: MeasurementResult
    tier_used: int
    tier_name: str
    higher_tier_failures: List[TierFailure] = field(default_factory=list)
    fallbacks_available: List[str] = field(default_factory=list)

    @property
    def manual_tracing_required(self) -> bool:
        return self.measurement.source == MeasurementSource.MANUAL_TRACING \
            and self.measurement.adjusted_area_sq_ft == 0


# ==============================================================================
# CROSS-VALIDATION
# ==============================================================================

@dataclass(frozen=True)
class SourceComparison:
    source: MeasurementSource
    adjusted_area_sq_ft: float
    weight: float
    variance_from_final: float    # percent, signed


@dataclass(frozen=True)
class Discrepancy:
    """A pair of candidates whose adjusted areas disagree beyond the threshold."""
    first_source: MeasurementSource
    second_source: MeasurementSource
    first_area_sq_ft: float
    second_area_sq_ft: float
    deviation_pct: float

    def describe(self) -> str:
        return (
            f"{self.first_source.value} ({self.first_area_sq_ft:,.0f} sq ft) and "
            f"{self.second_source.value} ({self.second_area_sq_ft:,.0f} sq ft) "
            f"differ by {self.deviation_pct:.1f}%"
        )


@dataclass(frozen=True)
class CrossValidationResult:
    final_measurement: MeasurementResult
    agreement_score: float
    discrepancies: List[Discrepancy] = field(default_factory=list)
    recommendation: str = ""
    sources: List[SourceComparison] = field(default_factory=list)
    confidence_level: ConfidenceLevel = ConfidenceLevel.MODERATE


@dataclass(frozen=True)
class ValidationCheck:
    source: MeasurementSource
    adjusted_area_sq_ft: float
    variance_from_primary: float
    status: str    # agrees, minor-variance, significant-variance


@dataclass(frozen=True)
class ValidationResult:
    primary_measurement: MeasurementResult
    checks: List[ValidationCheck] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    overall: str = "unvalidated"   # validated, unvalidated, discrepancy-detected


# ==============================================================================
# CONFIDENCE
# ==============================================================================

@dataclass(frozen=True)
class ConfidenceSignals:
    """Quality signals the confidence scorer combines. Unset signals are skipped."""
    imagery_quality: Optional[ImageryQuality] = None
    imagery_age_years: Optional[float] = None
    segment_count: Optional[int] = None
    pitch_degrees: Optional[float] = None
    source_count: Optional[int] = None
    source_agreement_pct: Optional[float] = None
    has_calibration: bool = False
    calibration_exact_match: bool = False
    has_lidar: bool = False


@dataclass(frozen=True)
class ConfidenceFactor:
    name: str
    impact: int
    description: str


@dataclass(frozen=True)
class ConfidenceResult:
    score: int
    level: ConfidenceLevel
    label: str
    factors: List[ConfidenceFactor] = field(default_factory=list)


# ==============================================================================
# ACCURACY CHECK
# ==============================================================================

@dataclass(frozen=True)
class AccuracyIssue:
    kind: str
    severity: Severity
    description: str
    impact: float


@dataclass(frozen=True)
class AccuracyAssessment:
    """Rule-based check of whether a measurement likely needs correcting."""
    needs_correction: bool
    overall_score: float
    recommended_action: AccuracyAction
    issues: List[AccuracyIssue] = field(default_factory=list)

    @property
    def reasons(self) -> List[str]:
        return [issue.description for issue in self.issues]


# ==============================================================================
# CALIBRATION
# ==============================================================================

@dataclass(frozen=True)
class GAFReport:
    """A professionally measured (ground-truth) roof report."""
    id: str
    address: str
    lat: float
    lng: float
    total_squares: float
    total_area_sq_ft: float
    report_date: str
    uploaded_at: datetime
    estimated_area_sq_ft: Optional[float] = None
    pitch_info: str = "Unknown"
    facet_count: int = 1
    waste_factor: float = 0.0

    @property
    def ratio(self) -> Optional[float]:
        """Verified / estimated area, when the estimate was recorded."""
        if not self.estimated_area_sq_ft:
            return None
        return self.total_area_sq_ft / self.estimated_area_sq_ft


@dataclass(frozen=True)
class RegionalCalibration:
    region_code: str
    lat: float
    lng: float
    radius_miles: float
    calibration_factor: float
    sample_count: int
    last_updated: datetime
    average_variance: float = 0.0


@dataclass(frozen=True)
class GAFCalibrationResult:
    calibration_factor: float
    based_on_reports: int
    last_calibrated: datetime
    exact_match: bool = False
    reference_area_sq_ft: Optional[float] = None
    region_code: Optional[str] = None


@dataclass(frozen=True)
class ReportComparison:
    calculated_sq_ft: float
    report_sq_ft: float
    difference: float
    difference_pct: float
    calibration_applied: bool = False
    adjusted_sq_ft: Optional[float] = None


# ==============================================================================
# PIPELINE OUTPUT
# ==============================================================================

@dataclass(frozen=True)
class MeasurementReport:
    """Everything the full pipeline produces for one request."""
    measurement: MeasurementResult
    cross_validation: CrossValidationResult
    confidence: ConfidenceResult
    tier_used: int
    tiered: Optional[TieredMeasurementResult] = None
    calibration: Optional[GAFCalibrationResult] = None
    recommendations: List[str] = field(default_factory=list)
    manual_tracing_required: bool = False
    accuracy: Optional[AccuracyAssessment] = None
