"""
Pitch and area math.

Pure, stateless helpers for converting roof pitch into area multipliers and
square footage into roofing squares. One "square" is 100 sq ft of roof
surface. Pitch is handled in three forms:
  - degrees from horizontal (what imagery and LiDAR providers report)
  - rise:12 ratio (what contractors write, e.g. "6:12")
  - multiplier (surface area / footprint area)
"""

import math
import re
from typing import Dict, Iterable, Optional, Tuple


# ==============================================================================
# CONSTANTS
# ==============================================================================

SQFT_PER_SQM = 10.7639
SQFT_PER_SQUARE = 100.0

# tan() blows up at 90 degrees; anything steeper than this is treated as this
MAX_PITCH_DEGREES = 89.9

DEFAULT_MANUAL_PITCH_DEGREES = 20.0

# Standard rise:12 pitches with their angle and multiplier, used to sanity
# check calculated multipliers and to label pitches for display
STANDARD_PITCH_MULTIPLIERS: Dict[str, Tuple[float, float]] = {
    "0:12": (0.0, 1.0),
    "1:12": (4.76, 1.003),
    "2:12": (9.46, 1.014),
    "3:12": (14.04, 1.031),
    "4:12": (18.43, 1.054),
    "5:12": (22.62, 1.083),
    "6:12": (26.57, 1.118),
    "7:12": (30.26, 1.158),
    "8:12": (33.69, 1.202),
    "9:12": (36.87, 1.250),
    "10:12": (39.81, 1.302),
    "11:12": (42.51, 1.357),
    "12:12": (45.0, 1.414),
    "14:12": (49.40, 1.537),
    "16:12": (53.13, 1.667),
    "18:12": (56.31, 1.803),
}


# ==============================================================================
# PITCH CONVERSIONS
# ==============================================================================

def _clamp_degrees(degrees: float) -> float:
    return min(max(degrees, 0.0), MAX_PITCH_DEGREES)


def degrees_to_pitch_ratio(degrees: float) -> float:
    """Pitch angle -> rise per 12 units of run."""
    return math.tan(math.radians(_clamp_degrees(degrees))) * 12


def pitch_ratio_to_degrees(pitch_ratio: float) -> float:
    """Rise per 12 units of run -> pitch angle."""
    return math.degrees(math.atan(pitch_ratio / 12))


def pitch_multiplier_from_ratio(pitch_ratio: float) -> float:
    """
    Surface-area multiplier for a rise:12 pitch.
    Formula: sqrt((rise / 12)^2 + 1)
    """
    return math.sqrt((pitch_ratio / 12) ** 2 + 1)


def pitch_multiplier_from_degrees(degrees: float) -> float:
    """
    Surface-area multiplier for a pitch angle.

    A pitched roof has more surface than its horizontal projection; the
    multiplier is sqrt(tan(pitch)^2 + 1), i.e. 1 / cos(pitch). Returns 1.0 for
    flat roofs and grows with the angle. Negative input is treated as flat,
    input above MAX_PITCH_DEGREES as MAX_PITCH_DEGREES.
    """
    return pitch_multiplier_from_ratio(degrees_to_pitch_ratio(degrees))


def pitch_to_ratio(degrees: float) -> str:
    """
    Convert pitch degrees to contractor X:12 format, rounded to 0.1.
    e.g. 26.57 -> "6.0:12"
    """
    if degrees <= 0 or degrees >= 90:
        return "0:12"
    rise = degrees_to_pitch_ratio(degrees)
    return f"{round(rise * 10) / 10}:12"


def nearest_standard_pitch(degrees: float) -> str:
    """Closest entry of STANDARD_PITCH_MULTIPLIERS, e.g. 18 -> "4:12"."""
    nearest = "0:12"
    min_diff = abs(degrees)
    for label, (std_degrees, _) in STANDARD_PITCH_MULTIPLIERS.items():
        diff = abs(degrees - std_degrees)
        if diff < min_diff:
            min_diff = diff
            nearest = label
    return nearest


def validate_multiplier(pitch_ratio: float, multiplier: float) -> bool:
    """
    Check a multiplier against the standard table (within 1%).
    Pitches not in the table are accepted as-is.
    """
    key = f"{pitch_ratio:g}:12"
    standard = STANDARD_PITCH_MULTIPLIERS.get(key)
    if standard is None:
        return True
    std_multiplier = standard[1]
    return abs(multiplier - std_multiplier) / std_multiplier * 100 <= 1


def pitch_category(degrees: float) -> str:
    """flat / low / medium / steep / very-steep."""
    if degrees <= 5:
        return "flat"
    if degrees <= 18.5:     # up to 4:12
        return "low"
    if degrees <= 33.7:     # up to 8:12
        return "medium"
    if degrees <= 45:       # up to 12:12
        return "steep"
    return "very-steep"


def parse_pitch_info(pitch_info: str) -> Optional[float]:
    """
    Parse a free-text pitch into degrees.
    Accepts "4:12", "4/12", "18 degrees", "18°" and plain numbers (degrees).
    """
    if not pitch_info:
        return None
    ratio_match = re.search(r"(\d+(?:\.\d+)?)\s*[:/]\s*12", pitch_info)
    if ratio_match:
        return pitch_ratio_to_degrees(float(ratio_match.group(1)))
    degree_match = re.search(r"(\d+(?:\.\d+)?)\s*(?:degrees?|deg|°)", pitch_info, re.IGNORECASE)
    if degree_match:
        return float(degree_match.group(1))
    try:
        return float(pitch_info.strip())
    except ValueError:
        return None


# ==============================================================================
# AREA HELPERS
# ==============================================================================

def area_to_squares(area_sq_ft: float) -> float:
    """Square feet -> roofing squares (1 square = 100 sq ft)."""
    return area_sq_ft / SQFT_PER_SQUARE


def order_squares(squares: float) -> float:
    """
    Round squares up for ordering. Shingles ship 3 bundles to the square, so
    orders go up in thirds of a square.
    """
    bundles = math.ceil(round(squares * 3, 6))
    return bundles / 3


def adjusted_area(footprint_sq_ft: float, pitch_degrees: float) -> float:
    """Footprint area corrected for pitch."""
    return footprint_sq_ft * pitch_multiplier_from_degrees(pitch_degrees)


def weighted_average_pitch(segments: Iterable[Tuple[float, float]]) -> float:
    """
    Area-weighted average pitch.
    ``segments`` yields (pitch_degrees, area) pairs; returns 0 with no area.
    """
    weighted_sum = 0.0
    total_area = 0.0
    for pitch_degrees, area in segments:
        weighted_sum += pitch_degrees * area
        total_area += area
    return weighted_sum / total_area if total_area > 0 else 0.0


def classify_complexity(segment_count: int) -> str:
    """simple (<=4 facets), moderate (<=8), complex (more)."""
    if segment_count <= 4:
        return "simple"
    if segment_count <= 8:
        return "moderate"
    return "complex"


# ==============================================================================
# REGIONAL PITCH DEFAULTS
# ==============================================================================

# state -> (climate zone, default rise, min rise, max rise)
STATE_PITCH_DATA: Dict[str, Tuple[str, int, int, int]] = {
    # Snow load regions: steeper roofs to shed snow
    "MA": ("snow-load", 7, 6, 8), "NH": ("snow-load", 8, 6, 9),
    "VT": ("snow-load", 8, 6, 9), "ME": ("snow-load", 8, 6, 9),
    "CT": ("snow-load", 6, 5, 8), "RI": ("snow-load", 6, 5, 8),
    "NY": ("snow-load", 6, 5, 8), "PA": ("snow-load", 6, 5, 8),
    "MI": ("snow-load", 7, 6, 9), "WI": ("snow-load", 7, 6, 8),
    "MN": ("snow-load", 7, 6, 9), "ND": ("snow-load", 7, 6, 8),
    "SD": ("snow-load", 6, 5, 8), "MT": ("snow-load", 7, 6, 9),
    "WY": ("snow-load", 7, 6, 9), "CO": ("snow-load", 6, 5, 8),
    "ID": ("snow-load", 6, 5, 8), "UT": ("snow-load", 6, 5, 8),
    "IA": ("snow-load", 6, 5, 7), "NE": ("snow-load", 5, 4, 7),
    "OH": ("snow-load", 6, 5, 7), "IN": ("snow-load", 5, 4, 7),
    "IL": ("snow-load", 5, 4, 7), "AK": ("snow-load", 9, 8, 12),
    # Mild climate: low-slope roofs
    "FL": ("mild", 4, 3, 5), "TX": ("mild", 4, 3, 5), "AZ": ("mild", 3, 2, 4),
    "NM": ("mild", 3, 2, 5), "NV": ("mild", 3, 2, 5), "LA": ("mild", 4, 3, 5),
    "MS": ("mild", 4, 3, 5), "AL": ("mild", 4, 3, 5), "GA": ("mild", 4, 3, 5),
    "SC": ("mild", 4, 3, 5), "HI": ("mild", 4, 3, 5),
    # Moderate climate
    "CA": ("moderate", 5, 4, 6), "OR": ("moderate", 5, 4, 7),
    "WA": ("moderate", 5, 4, 7), "NJ": ("moderate", 5, 4, 6),
    "DE": ("moderate", 5, 4, 6), "MD": ("moderate", 5, 4, 6),
    "VA": ("moderate", 5, 4, 6), "WV": ("moderate", 5, 4, 7),
    "NC": ("moderate", 5, 4, 6), "TN": ("moderate", 5, 4, 6),
    "KY": ("moderate", 5, 4, 6), "MO": ("moderate", 5, 4, 6),
    "KS": ("moderate", 4, 3, 6), "OK": ("moderate", 4, 3, 5),
    "AR": ("moderate", 4, 3, 6), "DC": ("moderate", 5, 4, 6),
}

DEFAULT_STATE_PITCH = ("unknown", 5, 4, 6)

STATE_NAMES: Dict[str, str] = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID",
    "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT",
    "vermont": "VT", "virginia": "VA", "washington": "WA", "west virginia": "WV",
    "wisconsin": "WI", "wyoming": "WY", "district of columbia": "DC",
}


def extract_state_from_address(address: Optional[str]) -> Optional[str]:
    """
    Find a US state code in an address.
    Tries "City, ST 12345", then "City, ST", then a spelled-out state name.
    """
    if not address:
        return None

    zip_match = re.search(r",\s*([A-Z]{2})\s+\d{5}", address, re.IGNORECASE)
    if zip_match:
        return zip_match.group(1).upper()

    state_match = re.search(r",\s*([A-Z]{2})\s*(?:,|$)", address, re.IGNORECASE)
    if state_match:
        return state_match.group(1).upper()

    lower = address.lower()
    # longest names first so "west virginia" wins over "virginia"
    for name in sorted(STATE_NAMES, key=len, reverse=True):
        if name in lower:
            return STATE_NAMES[name]
    return None


def regional_pitch_estimate(address: Optional[str]) -> Dict[str, object]:
    """
    Default pitch for the state an address is in.

    Returns state_code, climate_zone, pitch_ratio, pitch_degrees and a
    confidence (70 when the state is known, 50 otherwise).
    """
    state = extract_state_from_address(address)
    zone, rise, rise_min, rise_max = STATE_PITCH_DATA.get(state or "", DEFAULT_STATE_PITCH)
    return {
        "state_code": state,
        "climate_zone": zone,
        "pitch_ratio": rise,
        "pitch_range": (rise_min, rise_max),
        "pitch_degrees": pitch_ratio_to_degrees(rise),
        "confidence": 70 if state in STATE_PITCH_DATA else 50,
    }
