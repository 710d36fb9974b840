"""Roof area and pitch measurement: tiered sources, cross-validation, confidence and calibration."""

from roofmeasure.accuracy import detect_accuracy_issues
from roofmeasure.calibration import CalibrationEngine, InMemoryCalibrationStore, apply_calibration
from roofmeasure.confidence import score_confidence
from roofmeasure.config import Credentials, EngineSettings
from roofmeasure.engine import MeasurementEngine
from roofmeasure.errors import ConfigurationError, InputValidationError, RoofMeasureError
from roofmeasure.models import (
    ConfidenceLevel,
    ConfidenceSignals,
    ImageryQuality,
    MeasurementResult,
    MeasurementSource,
)
from roofmeasure.pitch import area_to_squares, pitch_multiplier_from_degrees
from roofmeasure.resolver import resolve_tiered
from roofmeasure.validation import cross_validate

__version__ = "1.0.0"
