"""
Credentials and engine settings.

The engine never reads the process environment on its own. Callers build a
``Credentials`` value (directly, from env vars, or by OCR-ing a screenshot of
a key) and pass it in, which keeps the engine testable with fake keys.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

log = logging.getLogger(__name__)

# Google API key format
API_KEY_PATTERN = r"AIza[0-9A-Za-z\-_]{35}"


@dataclass(frozen=True)
class Credentials:
    """API keys for the measurement providers. Missing keys disable their tiers."""
    google_api_key: Optional[str] = None
    instant_roofer_api_key: Optional[str] = None
    maps_api_key: Optional[str] = None

    @property
    def geocoding_key(self) -> Optional[str]:
        return self.maps_api_key or self.google_api_key

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Credentials":
        """Read GOOGLE_SOLAR_API_KEY / GOOGLE_API_KEY, INSTANT_ROOFER_API_KEY, GOOGLE_MAPS_API_KEY."""
        env = os.environ if environ is None else environ
        return cls(
            google_api_key=env.get("GOOGLE_SOLAR_API_KEY") or env.get("GOOGLE_API_KEY") or None,
            instant_roofer_api_key=env.get("INSTANT_ROOFER_API_KEY") or None,
            maps_api_key=env.get("GOOGLE_MAPS_API_KEY") or None,
        )


@dataclass(frozen=True)
class EngineSettings:
    request_timeout: float = 30.0
    discrepancy_threshold_pct: float = 15.0
    calibration_radius_miles: float = 15.0
    exact_match_tolerance_miles: float = 0.1
    min_regional_samples: int = 3
    max_workers: int = 4


def extract_api_key_from_text(text: str) -> Optional[str]:
    """Extract a Google API key from plain text (config files, env dumps, etc.)."""
    matches = re.findall(API_KEY_PATTERN, text or "")
    if matches:
        return matches[0]
    return None


def extract_api_key_from_image(image_path: str) -> Optional[str]:
    """
    Extract a Google API key from a screenshot using OCR.
    Searches the recognised text for AIza[0-9A-Za-z-_]{35}.

    Needs the Tesseract binary on PATH in addition to Pillow and pytesseract.
    """
    from PIL import Image
    import pytesseract

    if not os.path.exists(image_path):
        log.error("Image file not found: %s", image_path)
        return None

    with Image.open(image_path) as image:
        text = pytesseract.image_to_string(image)

    api_key = extract_api_key_from_text(text)
    if api_key:
        log.info("Extracted API key from image: %s...%s", api_key[:10], api_key[-4:])
    else:
        log.warning("No API key pattern (AIza...) found in %s", image_path)
    return api_key
