"""Exception types raised by the measurement engine."""


class RoofMeasureError(Exception):
    """Base class for all roofmeasure errors."""


class InputValidationError(RoofMeasureError, ValueError):
    """Caller supplied invalid input (coordinates, manual area, report fields)."""


class ConfigurationError(RoofMeasureError, ValueError):
    """A provider or engine was built without a required credential."""
