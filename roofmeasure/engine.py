"""
Measurement engine.

Complete pipeline for one location:
  1. Tier waterfall (LiDAR -> Solar HIGH/MEDIUM/LOW -> OSM -> footprint -> manual)
  2. Historical calibration lookup
  3. Cross-validation of the resolved measurement
  4. Confidence scoring from the measurement's quality signals
  5. Calibration applied to the final area
  6. Recommendations for the estimator

Usage:
    engine = MeasurementEngine.from_env()
    report = engine.measure(lat=39.7392, lng=-104.9903, address="1600 Grant St, Denver, CO")
    print(report.measurement.squares, report.confidence.level)
"""

import logging
from dataclasses import replace
from datetime import date
from typing import List, Optional, Sequence

import requests

from roofmeasure.accuracy import detect_accuracy_issues, extract_zip_code
from roofmeasure.calibration import (
    CalibrationEngine,
    CalibrationStore,
    InMemoryCalibrationStore,
    apply_calibration,
)
from roofmeasure.confidence import (
    imagery_age_years,
    manual_baseline_confidence,
    manual_tracing_required_confidence,
    score_confidence,
)
from roofmeasure.config import Credentials, EngineSettings, extract_api_key_from_image
from roofmeasure.errors import ConfigurationError, InputValidationError
from roofmeasure.models import (
    AccuracyAction,
    AccuracyAssessment,
    ConfidenceLevel,
    ConfidenceResult,
    ConfidenceSignals,
    CrossValidationResult,
    GAFCalibrationResult,
    ImageryQuality,
    Location,
    MeasurementReport,
    MeasurementResult,
    MeasurementSource,
    TieredMeasurementResult,
    build_measurement,
)
from roofmeasure.pitch import DEFAULT_MANUAL_PITCH_DEGREES, pitch_multiplier_from_degrees
from roofmeasure.providers import FootprintLookup, MeasurementProvider
from roofmeasure.resolver import (
    MANUAL_TIER,
    Tier,
    TierResolver,
    build_default_tiers,
    build_source_providers,
    collect_all_sources,
    validate_coordinates,
)
from roofmeasure.validation import cross_validate

log = logging.getLogger(__name__)


ACCURACY_ACTION_TEXT = {
    AccuracyAction.MANUAL_REVIEW: "Accuracy check failed, review this measurement manually",
    AccuracyAction.TRACE_FOOTPRINT: "Accuracy check failed, trace the roof outline to verify the footprint",
    AccuracyAction.CALIBRATE: "Accuracy check failed, upload a professional report nearby to calibrate",
    AccuracyAction.NONE: "Accuracy check failed, verify this measurement before quoting",
}


def build_recommendations(
    confidence: ConfidenceResult,
    cross_validation: CrossValidationResult,
    calibration: Optional[GAFCalibrationResult],
    manual_tracing_required: bool = False,
    accuracy: Optional[AccuracyAssessment] = None,
) -> List[str]:
    """Actionable next steps for the estimator, most important first."""
    recommendations = []
    if cross_validation.recommendation:
        recommendations.append(cross_validation.recommendation)

    if manual_tracing_required:
        recommendations.append("Manual tracing required: trace the roof outline on the map to calculate area")

    if confidence.level == ConfidenceLevel.LOW:
        recommendations.append("Upload a professional roof report for this address to calibrate measurements")
        recommendations.append("Consider professional on-site measurement for accurate quoting")
    elif confidence.level == ConfidenceLevel.MODERATE and calibration is None:
        recommendations.append("Upload a historical report for this area to improve accuracy")

    if cross_validation.discrepancies:
        details = "; ".join(d.describe() for d in cross_validation.discrepancies)
        recommendations.append(f"Review discrepancies: {details}")

    if accuracy is not None and accuracy.needs_correction:
        reasons = "; ".join(accuracy.reasons)
        recommendations.append(f"{ACCURACY_ACTION_TEXT[accuracy.recommended_action]} ({reasons})")

    return recommendations


class MeasurementEngine:
    """
    Facade over the resolver, cross-validator, confidence scorer and
    calibration engine.

    Nothing here reads the environment or prints; credentials, the
    calibration store and (for tests) tiers or providers are injected.
    """

    def __init__(
        self,
        credentials: Optional[Credentials] = None,
        calibration_store: Optional[CalibrationStore] = None,
        settings: Optional[EngineSettings] = None,
        tiers: Optional[Sequence[Tier]] = None,
        source_providers: Optional[Sequence[MeasurementProvider]] = None,
        session: Optional[requests.Session] = None,
        footprint_lookup: Optional[FootprintLookup] = None,
    ):
        self.credentials = credentials or Credentials()
        self.settings = settings or EngineSettings()
        self.calibration_store = calibration_store or InMemoryCalibrationStore(
            self.settings.exact_match_tolerance_miles)
        self.calibration = CalibrationEngine(self.calibration_store, self.settings)

        if tiers is None:
            tiers = build_default_tiers(self.credentials, self.settings, session, footprint_lookup)
        self.resolver = TierResolver(tiers)

        if source_providers is None:
            source_providers = build_source_providers(self.credentials, self.settings, session,
                                                      footprint_lookup)
        self.source_providers = list(source_providers)

    @classmethod
    def from_env(cls, **kwargs) -> "MeasurementEngine":
        """Create engine using environment variables."""
        return cls(credentials=Credentials.from_env(), **kwargs)

    @classmethod
    def from_image(cls, image_path: str, **kwargs) -> "MeasurementEngine":
        """Create engine by extracting a Google API key from an image via OCR."""
        api_key = extract_api_key_from_image(image_path)
        if not api_key:
            raise ConfigurationError(f"Could not extract API key from image: {image_path}")
        return cls(credentials=Credentials(google_api_key=api_key), **kwargs)

    # --------------------------------------------------------------------------
    # ENTRY POINTS
    # --------------------------------------------------------------------------

    def resolve_tiered(self, lat: float, lng: float, address: Optional[str] = None) -> TieredMeasurementResult:
        return self.resolver.resolve(Location(lat, lng, address))

    def cross_validate(
        self,
        candidates: Sequence[MeasurementResult],
        calibration: Optional[GAFCalibrationResult] = None,
    ) -> CrossValidationResult:
        return cross_validate(candidates, calibration, self.settings.discrepancy_threshold_pct)

    def score_confidence(self, signals: ConfidenceSignals) -> ConfidenceResult:
        return score_confidence(signals)

    def get_calibration(
        self,
        lat: float,
        lng: float,
        candidate_area_sq_ft: float,
        address: Optional[str] = None,
    ) -> Optional[GAFCalibrationResult]:
        return self.calibration.get_calibration(lat, lng, candidate_area_sq_ft, address)

    def check_accuracy(
        self,
        measurement: MeasurementResult,
        confidence_score: int,
        others: Sequence[MeasurementResult] = (),
        address: Optional[str] = None,
    ) -> AccuracyAssessment:
        return detect_accuracy_issues(
            measurement,
            confidence_score,
            others,
            zip_code=extract_zip_code(address),
            discrepancy_threshold_pct=self.settings.discrepancy_threshold_pct,
        )

    def manual_measurement(self, area_sq_ft: float, pitch_degrees: Optional[float] = None) -> MeasurementResult:
        """
        Measurement from a user-traced footprint.

        area_sq_ft must be positive; pitch defaults to 20 degrees and must lie
        in [0, 90). The result is stamped tier 7 with the manual baseline
        confidence.
        """
        if area_sq_ft is None or not area_sq_ft > 0:
            raise InputValidationError("Valid manual area is required")
        if pitch_degrees is None:
            pitch_degrees = DEFAULT_MANUAL_PITCH_DEGREES
        if not 0 <= pitch_degrees < 90:
            raise InputValidationError("Pitch must be between 0 and 90 degrees")

        return build_measurement(
            footprint_sq_ft=float(area_sq_ft),
            pitch_degrees=float(pitch_degrees),
            pitch_multiplier=pitch_multiplier_from_degrees(pitch_degrees),
            segment_count=1,
            source=MeasurementSource.MANUAL_TRACING,
            confidence=manual_baseline_confidence().score,
            tier=MANUAL_TIER,
        )

    # --------------------------------------------------------------------------
    # PIPELINES
    # --------------------------------------------------------------------------

    def measure(
        self,
        lat: float,
        lng: float,
        address: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> MeasurementReport:
        """Run the full pipeline for one location."""
        as_of = as_of or date.today()
        tiered = self.resolve_tiered(lat, lng, address)
        primary = tiered.measurement
        manual_required = tiered.manual_tracing_required

        calibration = None
        if not manual_required:
            calibration = self.get_calibration(lat, lng, primary.adjusted_area_sq_ft, address)

        cross = self.cross_validate([primary], calibration)

        if manual_required:
            confidence = manual_tracing_required_confidence()
        else:
            confidence = self.score_confidence(ConfidenceSignals(
                imagery_quality=primary.imagery_quality,
                imagery_age_years=imagery_age_years(primary.imagery_date, as_of),
                segment_count=primary.segment_count,
                pitch_degrees=primary.pitch_degrees,
                source_count=len(cross.sources),
                source_agreement_pct=cross.agreement_score,
                has_calibration=calibration is not None,
                calibration_exact_match=calibration is not None and calibration.exact_match,
                has_lidar=primary.has_lidar,
            ))

        final = apply_calibration(cross.final_measurement, calibration)
        log.info("Measured (%s, %s): tier %d, %.0f sq ft, confidence %d",
                 lat, lng, tiered.tier_used, final.adjusted_area_sq_ft, confidence.score)

        accuracy = None
        if not manual_required:
            accuracy = self.check_accuracy(final, confidence.score, address=address)

        return MeasurementReport(
            measurement=final,
            cross_validation=cross,
            confidence=confidence,
            tier_used=tiered.tier_used,
            tiered=tiered,
            calibration=calibration,
            recommendations=build_recommendations(confidence, cross, calibration, manual_required, accuracy),
            manual_tracing_required=manual_required,
            accuracy=accuracy,
        )

    def submit_manual(
        self,
        area_sq_ft: float,
        pitch_degrees: Optional[float] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        address: Optional[str] = None,
    ) -> MeasurementReport:
        """
        Manual tracing path: skips the waterfall, goes through single-candidate
        validation and carries the fixed manual confidence. Coordinates, when
        given, enable calibration.
        """
        measurement = self.manual_measurement(area_sq_ft, pitch_degrees)

        calibration = None
        if lat is not None and lng is not None:
            validate_coordinates(lat, lng)
            calibration = self.get_calibration(lat, lng, measurement.adjusted_area_sq_ft, address)

        cross = self.cross_validate([measurement], calibration)
        confidence = manual_baseline_confidence()
        final = apply_calibration(cross.final_measurement, calibration)

        return MeasurementReport(
            measurement=final,
            cross_validation=cross,
            confidence=confidence,
            tier_used=MANUAL_TIER,
            calibration=calibration,
            recommendations=build_recommendations(confidence, cross, calibration),
        )

    def measure_all_sources(
        self,
        lat: float,
        lng: float,
        address: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> MeasurementReport:
        """
        Legacy mode: query every source at once and cross-validate them.
        Falls back to a manual-tracing result when no source returns data.
        """
        as_of = as_of or date.today()
        location = Location(lat, lng, address)
        candidates, failures = collect_all_sources(location, self.source_providers,
                                                   self.settings.max_workers)
        for source, reason in failures:
            log.info("%s unavailable: %s", source.value, reason)

        if not candidates:
            cross = self.cross_validate([])
            confidence = manual_tracing_required_confidence()
            return MeasurementReport(
                measurement=cross.final_measurement,
                cross_validation=cross,
                confidence=confidence,
                tier_used=MANUAL_TIER,
                recommendations=build_recommendations(confidence, cross, None, True),
                manual_tracing_required=True,
            )

        reference_area = candidates[0].adjusted_area_sq_ft
        calibration = self.get_calibration(lat, lng, reference_area, address)
        cross = self.cross_validate(candidates, calibration)
        primary = cross.final_measurement

        confidence = self.score_confidence(ConfidenceSignals(
            imagery_quality=primary.imagery_quality,
            imagery_age_years=imagery_age_years(primary.imagery_date, as_of),
            segment_count=primary.segment_count,
            pitch_degrees=primary.pitch_degrees,
            source_count=len(candidates),
            source_agreement_pct=cross.agreement_score,
            has_calibration=calibration is not None,
            calibration_exact_match=calibration is not None and calibration.exact_match,
            has_lidar=any(c.has_lidar for c in candidates),
        ))

        final = apply_calibration(primary, calibration)
        tier_used = primary.tier or _tier_for_measurement(primary)
        others = [c for c in candidates if c.source != primary.source]
        accuracy = self.check_accuracy(primary, confidence.score, others, address)
        return MeasurementReport(
            measurement=replace(final, tier=tier_used),
            cross_validation=cross,
            confidence=confidence,
            tier_used=tier_used,
            calibration=calibration,
            recommendations=build_recommendations(confidence, cross, calibration, accuracy=accuracy),
            accuracy=accuracy,
        )


def _tier_for_measurement(measurement: MeasurementResult) -> int:
    """Tier a legacy-mode measurement would have resolved at; Solar by imagery quality."""
    if measurement.source == MeasurementSource.GOOGLE_SOLAR:
        quality = measurement.imagery_quality or ImageryQuality.UNKNOWN
        if quality.meets(ImageryQuality.HIGH):
            return 2
        if quality.meets(ImageryQuality.MEDIUM):
            return 3
        return 4
    return {
        MeasurementSource.INSTANT_ROOFER: 1,
        MeasurementSource.OPENSTREETMAP: 5,
        MeasurementSource.FOOTPRINT_ESTIMATION: 6,
    }.get(measurement.source, MANUAL_TIER)
