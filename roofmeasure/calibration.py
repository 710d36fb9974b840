"""
Historical calibration.

Professionally measured reports (ground truth) are kept alongside the area
the engine originally estimated for the same roof. The ratio of the two is a
calibration factor: for a new measurement nearby, the engine multiplies its
adjusted area by the factor learned from those reports.

Lookup order:
  1. exact match: a report for the same (normalized) address, within
     a tenth of a mile of the coordinates
  2. regional bucket: aggregated factor of the 0.1 degree grid cell
  3. nearby reports: proximity-weighted factor of reports within 15 miles

No calibration (None) is the normal outcome for most locations, not an error.
"""

import json
import logging
import math
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from roofmeasure.config import EngineSettings
from roofmeasure.errors import InputValidationError
from roofmeasure.models import (
    GAFCalibrationResult,
    GAFReport,
    MeasurementResult,
    RegionalCalibration,
    ReportComparison,
)
from roofmeasure.pitch import SQFT_PER_SQUARE, area_to_squares

log = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959.0
REGION_RADIUS_MILES = 10.0

# one bad report must not swing a measurement by more than this
MIN_FACTOR = 0.5
MAX_FACTOR = 1.5


# ==============================================================================
# GEOGRAPHY HELPERS
# ==============================================================================

def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (math.sin(d_lat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2)
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def region_code(lat: float, lng: float) -> str:
    """0.1 degree grid cell (roughly 7-11 miles across), e.g. "39.7,-104.9"."""
    return f"{round(lat * 10) / 10},{round(lng * 10) / 10}"


def normalize_address(address: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    cleaned = re.sub(r"[.,#]", " ", (address or "").lower())
    return " ".join(cleaned.split())


def clamp_factor(factor: float) -> float:
    return min(MAX_FACTOR, max(MIN_FACTOR, factor))


# ==============================================================================
# REPORT INPUT
# ==============================================================================

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def _coerce_number(value) -> Optional[float]:
    """None stays None; numbers and numeric strings become floats."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise TypeError(f"not a number: {value!r}")
    return float(value)


def validate_report_input(
    address: Optional[str],
    lat: Optional[float],
    lng: Optional[float],
    total_squares: Optional[float],
    report_date: Optional[str],
) -> List[str]:
    """Return a list of problems with a report submission (empty when valid)."""
    errors = []
    if not isinstance(address, str) or not address.strip():
        errors.append("Address is required")
    if not _is_number(lat) or not -90 <= lat <= 90:
        errors.append("Valid latitude is required")
    if not _is_number(lng) or not -180 <= lng <= 180:
        errors.append("Valid longitude is required")
    if not _is_number(total_squares) or total_squares <= 0:
        errors.append("Total squares must be a positive number")
    if not report_date:
        errors.append("Report date is required")
    return errors


def compare_with_report(
    calculated_sq_ft: float,
    report: GAFReport,
    calibration_factor: Optional[float] = None,
) -> ReportComparison:
    """How far a calculated area is from a report's verified area."""
    report_sq_ft = report.total_area_sq_ft
    difference = calculated_sq_ft - report_sq_ft
    applied = bool(calibration_factor) and calibration_factor != 1.0
    return ReportComparison(
        calculated_sq_ft=calculated_sq_ft,
        report_sq_ft=report_sq_ft,
        difference=difference,
        difference_pct=difference / report_sq_ft * 100 if report_sq_ft else 0.0,
        calibration_applied=applied,
        adjusted_sq_ft=calculated_sq_ft * calibration_factor if applied else None,
    )


# ==============================================================================
# STORES
# ==============================================================================

class CalibrationStore(ABC):
    """Read side of wherever historical reports live."""

    @abstractmethod
    def find_exact_report(self, address: str, lat: float, lng: float) -> Optional[GAFReport]:
        ...

    @abstractmethod
    def find_regional_calibration(self, lat: float, lng: float) -> Optional[RegionalCalibration]:
        ...

    @abstractmethod
    def find_nearby(self, lat: float, lng: float, radius_miles: float) -> List[GAFReport]:
        """Reports within the radius, nearest first."""


class InMemoryCalibrationStore(CalibrationStore):
    """
    Dict-backed store. Saving a report also refreshes its region bucket.
    Good for tests, the CLI, and seeding from a JSON export.
    """

    def __init__(self, exact_match_tolerance_miles: float = 0.1):
        self.exact_match_tolerance_miles = exact_match_tolerance_miles
        self._reports: Dict[str, GAFReport] = {}
        self._regions: Dict[str, RegionalCalibration] = {}

    def save_report(
        self,
        address: str,
        lat: float,
        lng: float,
        total_squares: float,
        report_date: str,
        estimated_area_sq_ft: Optional[float] = None,
        pitch_info: str = "Unknown",
        facet_count: int = 1,
        waste_factor: float = 0.0,
        uploaded_at: Optional[datetime] = None,
    ) -> GAFReport:
        errors = validate_report_input(address, lat, lng, total_squares, report_date)
        if errors:
            raise InputValidationError("; ".join(errors))

        report = GAFReport(
            id=uuid.uuid4().hex,
            address=address,
            lat=lat,
            lng=lng,
            total_squares=total_squares,
            total_area_sq_ft=total_squares * SQFT_PER_SQUARE,
            report_date=report_date,
            uploaded_at=uploaded_at or datetime.now(timezone.utc),
            estimated_area_sq_ft=estimated_area_sq_ft,
            pitch_info=pitch_info,
            facet_count=facet_count,
            waste_factor=waste_factor,
        )
        self._reports[report.id] = report
        self._refresh_region(region_code(lat, lng))
        log.info("Saved report %s for %s", report.id, address)
        return report

    def _refresh_region(self, code: str):
        members = [r for r in self._reports.values() if region_code(r.lat, r.lng) == code]
        ratios = [r.ratio for r in members if r.ratio]
        factor = sum(ratios) / len(ratios) if ratios else 1.0
        variance = sum(abs(x - 1.0) for x in ratios) / len(ratios) * 100 if ratios else 0.0
        self._regions[code] = RegionalCalibration(
            region_code=code,
            lat=sum(r.lat for r in members) / len(members),
            lng=sum(r.lng for r in members) / len(members),
            radius_miles=REGION_RADIUS_MILES,
            calibration_factor=factor,
            sample_count=len(ratios),
            last_updated=max(r.uploaded_at for r in members),
            average_variance=variance,
        )

    def get_report(self, report_id: str) -> Optional[GAFReport]:
        return self._reports.get(report_id)

    def all_regional_calibrations(self) -> List[RegionalCalibration]:
        return list(self._regions.values())

    def clear(self):
        self._reports.clear()
        self._regions.clear()

    def find_exact_report(self, address: str, lat: float, lng: float) -> Optional[GAFReport]:
        wanted = normalize_address(address)
        if not wanted:
            return None
        matches = [
            r for r in self._reports.values()
            if normalize_address(r.address) == wanted
            and haversine_miles(lat, lng, r.lat, r.lng) <= self.exact_match_tolerance_miles
        ]
        if not matches:
            return None
        return max(matches, key=lambda r: r.uploaded_at)

    def find_regional_calibration(self, lat: float, lng: float) -> Optional[RegionalCalibration]:
        best = None
        best_distance = math.inf
        for region in self._regions.values():
            distance = haversine_miles(lat, lng, region.lat, region.lng)
            if distance <= region.radius_miles and distance < best_distance:
                best, best_distance = region, distance
        return best

    def find_nearby(self, lat: float, lng: float, radius_miles: float) -> List[GAFReport]:
        with_distance = [
            (haversine_miles(lat, lng, r.lat, r.lng), r) for r in self._reports.values()
        ]
        return [r for d, r in sorted(with_distance, key=lambda x: x[0]) if d <= radius_miles]

    def load_reports_json(self, path: str) -> int:
        """
        Seed the store from a JSON list of report objects with keys address,
        lat, lng, total_squares, report_date and optionally
        estimated_area_sq_ft, pitch_info, facet_count, waste_factor.
        Returns the number of reports loaded.
        """
        with open(path, "r", encoding="utf-8") as f:
            rows = json.load(f)
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise InputValidationError(f"{path}: expected a JSON list of report objects")
        for index, row in enumerate(rows):
            try:
                lat = _coerce_number(row.get("lat"))
                lng = _coerce_number(row.get("lng"))
                total_squares = _coerce_number(row.get("total_squares"))
                estimated = _coerce_number(row.get("estimated_area_sq_ft"))
            except (TypeError, ValueError):
                raise InputValidationError(f"{path}: report {index + 1} has a non-numeric field")
            self.save_report(
                address=row.get("address"),
                lat=lat,
                lng=lng,
                total_squares=total_squares,
                report_date=row.get("report_date"),
                estimated_area_sq_ft=estimated,
                pitch_info=row.get("pitch_info", "Unknown"),
                facet_count=row.get("facet_count", 1),
                waste_factor=row.get("waste_factor", 0.0),
            )
        return len(rows)


# ==============================================================================
# CALIBRATION ENGINE
# ==============================================================================

class CalibrationEngine:
    """Looks up and applies historical calibration for a location."""

    def __init__(self, store: CalibrationStore, settings: Optional[EngineSettings] = None):
        self.store = store
        self.settings = settings or EngineSettings()

    def get_calibration(
        self,
        lat: float,
        lng: float,
        candidate_area_sq_ft: float,
        address: Optional[str] = None,
    ) -> Optional[GAFCalibrationResult]:
        """Best available calibration for the location, or None."""
        if address:
            exact = self._exact(address, lat, lng, candidate_area_sq_ft)
            if exact is not None:
                return exact

        region = self.store.find_regional_calibration(lat, lng)
        if region is not None and region.sample_count >= self.settings.min_regional_samples:
            log.debug("Regional calibration %s (%d samples)", region.region_code, region.sample_count)
            return GAFCalibrationResult(
                calibration_factor=clamp_factor(region.calibration_factor),
                based_on_reports=region.sample_count,
                last_calibrated=region.last_updated,
                exact_match=False,
                region_code=region.region_code,
            )

        return self._nearby(lat, lng)

    def _exact(self, address: str, lat: float, lng: float,
               candidate_area_sq_ft: float) -> Optional[GAFCalibrationResult]:
        report = self.store.find_exact_report(address, lat, lng)
        if report is None:
            return None

        ratio = report.ratio
        if ratio is None and candidate_area_sq_ft > 0:
            ratio = report.total_area_sq_ft / candidate_area_sq_ft
        if ratio is None:
            return None

        log.info("Exact historical report %s found for %s", report.id, address)
        return GAFCalibrationResult(
            calibration_factor=clamp_factor(ratio),
            based_on_reports=1,
            last_calibrated=report.uploaded_at,
            exact_match=True,
            reference_area_sq_ft=report.total_area_sq_ft,
            region_code=region_code(report.lat, report.lng),
        )

    def _nearby(self, lat: float, lng: float) -> Optional[GAFCalibrationResult]:
        reports = [
            r for r in self.store.find_nearby(lat, lng, self.settings.calibration_radius_miles)
            if r.ratio
        ]
        if len(reports) < self.settings.min_regional_samples:
            return None

        total_weight = 0.0
        weighted_sum = 0.0
        for report in reports:
            weight = 1 / (1 + haversine_miles(lat, lng, report.lat, report.lng))
            total_weight += weight
            weighted_sum += weight * report.ratio

        return GAFCalibrationResult(
            calibration_factor=clamp_factor(weighted_sum / total_weight),
            based_on_reports=len(reports),
            last_calibrated=max(r.uploaded_at for r in reports),
            exact_match=False,
            region_code=region_code(lat, lng),
        )


def apply_calibration(
    measurement: MeasurementResult,
    calibration: Optional[GAFCalibrationResult],
) -> MeasurementResult:
    """
    New measurement with the calibration factor applied to the adjusted area
    (squares follow). No calibration, or a factor of 1.0, returns the input.
    """
    if calibration is None or calibration.calibration_factor == 1.0:
        return measurement
    adjusted = measurement.adjusted_area_sq_ft * calibration.calibration_factor
    return replace(measurement, adjusted_area_sq_ft=adjusted, squares=area_to_squares(adjusted))
