"""
Measurement providers.

Each provider exposes one capability, ``attempt(location)``, returning either
a MeasurementResult or a ProviderFailure with a human readable reason. HTTP
and parsing errors are turned into failures here; the resolver only ever sees
the two outcomes.

HTTP clients retry transient network errors (connection resets, timeouts)
with tenacity before giving up. Retrying is their concern, not the resolver's.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from roofmeasure.errors import ConfigurationError
from roofmeasure.models import (
    ImageryQuality,
    Location,
    MeasurementSource,
    ProviderFailure,
    ProviderOutcome,
    build_measurement,
)
from roofmeasure.pitch import (
    SQFT_PER_SQM,
    pitch_multiplier_from_degrees,
    regional_pitch_estimate,
    weighted_average_pitch,
)

log = logging.getLogger(__name__)

# Google Solar API endpoint
SOLAR_API_URL = "https://solar.googleapis.com/v1/buildingInsights:findClosest"

# Instant Roofer LiDAR measurement endpoint
INSTANT_ROOFER_API_URL = "https://api.instantroofer.com/v1/measurements"

OVERPASS_API_URL = "https://overpass-api.de/api/interpreter"

TRANSIENT_ERRORS = (requests.ConnectionError, requests.Timeout)

# OSM building tag -> assumed pitch in degrees (OSM has no pitch data)
BUILDING_TYPE_PITCH = {
    "house": 18.4,          # 4:12, conservative residential default
    "residential": 18.4,
    "detached": 22.0,
    "apartments": 15.0,
    "commercial": 5.0,
    "industrial": 3.0,
    "retail": 5.0,
    "warehouse": 3.0,
    "garage": 18.4,
    "shed": 15.0,
    "yes": 18.4,
}
DEFAULT_BUILDING_PITCH = 18.4


class MeasurementProvider(ABC):
    """A source that can try to measure the roof at a location."""

    source: MeasurementSource

    @abstractmethod
    def attempt(self, location: Location) -> ProviderOutcome:
        """Return a MeasurementResult, or a ProviderFailure saying why not."""


class UnconfiguredProvider(MeasurementProvider):
    """Stand-in for a provider whose credentials are missing. Always fails."""

    def __init__(self, source: MeasurementSource, reason: str):
        self.source = source
        self.reason = reason

    def attempt(self, location: Location) -> ProviderOutcome:
        return ProviderFailure(self.reason)


class HttpProvider(MeasurementProvider):
    """Shared plumbing for providers backed by a JSON HTTP API."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 30.0):
        self.session = session or requests.Session()
        self.timeout = timeout

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        return self.session.request(method, url, timeout=self.timeout, **kwargs)

    def _request_json(self, method: str, url: str, not_found_reason: str,
                      **kwargs) -> Tuple[Optional[Dict[str, Any]], Optional[ProviderFailure]]:
        """Send a request; return (payload, None) or (None, failure)."""
        try:
            resp = self._send(method, url, **kwargs)
        except requests.RequestException as e:
            log.warning("%s request failed: %s", self.source.value, e)
            return None, ProviderFailure(f"API error: {e}")

        if resp.status_code == 404:
            return None, ProviderFailure(not_found_reason)
        if resp.status_code != 200:
            log.warning("%s returned HTTP %s: %s", self.source.value, resp.status_code, resp.text[:300])
            return None, ProviderFailure(f"API error: HTTP {resp.status_code}")

        try:
            return resp.json(), None
        except ValueError:
            return None, ProviderFailure("API error: invalid JSON response")


# ==============================================================================
# TIER 1: LiDAR (Instant Roofer)
# ==============================================================================

class InstantRooferProvider(HttpProvider):
    """LiDAR-derived measurements from the Instant Roofer API."""

    source = MeasurementSource.INSTANT_ROOFER

    def __init__(self, api_key: str, session: Optional[requests.Session] = None,
                 timeout: float = 30.0, url: str = INSTANT_ROOFER_API_URL):
        if not api_key:
            raise ConfigurationError("Instant Roofer API key not configured")
        super().__init__(session, timeout)
        self.api_key = api_key
        self.url = url

    def attempt(self, location: Location) -> ProviderOutcome:
        data, failure = self._request_json(
            "GET", self.url,
            not_found_reason="No LiDAR coverage for this location",
            params={"lat": location.lat, "lng": location.lng},
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if failure:
            return failure

        footprint_sq_ft = data.get("totalAreaSqFt") or (data.get("totalAreaSqM") or 0) * SQFT_PER_SQM
        if not footprint_sq_ft:
            return ProviderFailure("LiDAR data not available for this location")

        pitch_deg = data.get("pitchDegrees") or 0.0
        multiplier = data.get("pitchMultiplier") or pitch_multiplier_from_degrees(pitch_deg)

        return build_measurement(
            footprint_sq_ft=footprint_sq_ft,
            pitch_degrees=pitch_deg,
            pitch_multiplier=multiplier,
            segment_count=data.get("segmentCount") or 1,
            source=self.source,
            confidence=95,
            imagery_date=data.get("imageryDate"),
            has_lidar=True,
        )


# ==============================================================================
# TIERS 2-4: GOOGLE SOLAR API
# ==============================================================================

def format_imagery_date(raw: Optional[Dict[str, Any]]) -> Optional[str]:
    """{"year": 2024, "month": 5, "day": 3} -> "2024-05-03"."""
    if not raw or not raw.get("year"):
        return None
    return f"{raw['year']}-{str(raw.get('month', 1)).zfill(2)}-{str(raw.get('day', 1)).zfill(2)}"


def parse_solar_segments(solar_data: Dict[str, Any]) -> List[Tuple[float, float, float]]:
    """
    Parse Solar API roofSegmentStats into (pitch_degrees, footprint_sqm, surface_sqm).

    stats.areaMeters2 is the sloped surface of a segment and
    stats.groundAreaMeters2 its horizontal footprint. Older responses lack the
    ground area; it is then recovered as surface * cos(pitch).
    """
    raw_segments = solar_data.get("solarPotential", {}).get("roofSegmentStats", [])

    segments = []
    for seg in raw_segments:
        pitch_deg = seg.get("pitchDegrees") or 0.0
        stats = seg.get("stats", {})
        surface_sqm = stats.get("areaMeters2") or 0.0
        footprint_sqm = stats.get("groundAreaMeters2")
        if footprint_sqm is None:
            footprint_sqm = surface_sqm / pitch_multiplier_from_degrees(pitch_deg)
        segments.append((pitch_deg, footprint_sqm, surface_sqm))
    return segments


class GoogleSolarProvider(HttpProvider):
    """
    Google Solar API buildingInsights:findClosest.

    ``required_quality`` is passed to the API as requiredQuality; the API
    answers 404 when it has no imagery at or above that quality.
    """

    source = MeasurementSource.GOOGLE_SOLAR

    def __init__(self, api_key: str, required_quality: ImageryQuality = ImageryQuality.HIGH,
                 session: Optional[requests.Session] = None, timeout: float = 30.0):
        if not api_key:
            raise ConfigurationError("Google Solar API key not configured")
        super().__init__(session, timeout)
        self.api_key = api_key
        self.required_quality = required_quality

    def attempt(self, location: Location) -> ProviderOutcome:
        quality = self.required_quality.value
        data, failure = self._request_json(
            "GET", SOLAR_API_URL,
            not_found_reason=f"No {quality} quality imagery available for this location",
            params={
                "location.latitude": location.lat,
                "location.longitude": location.lng,
                "requiredQuality": quality,
                "key": self.api_key,
            },
        )
        if failure:
            return failure

        segments = parse_solar_segments(data)
        footprint_sqm = sum(s[1] for s in segments)
        surface_sqm = sum(s[2] for s in segments)
        if not segments or footprint_sqm <= 0:
            return ProviderFailure("No building data available for this location")

        avg_pitch = weighted_average_pitch((s[0], s[2]) for s in segments)
        # effective multiplier keeps adjusted == footprint * multiplier exact
        multiplier = surface_sqm / footprint_sqm

        imagery_quality = ImageryQuality.parse(data.get("imageryQuality"))
        confidence = 85
        if imagery_quality == ImageryQuality.HIGH:
            confidence += 5
        elif imagery_quality == ImageryQuality.LOW:
            confidence -= 10

        return build_measurement(
            footprint_sq_ft=footprint_sqm * SQFT_PER_SQM,
            pitch_degrees=avg_pitch,
            pitch_multiplier=multiplier,
            segment_count=len(segments),
            source=self.source,
            confidence=confidence,
            imagery_quality=imagery_quality,
            imagery_date=format_imagery_date(data.get("imageryDate")),
        )


# ==============================================================================
# TIER 5: OPENSTREETMAP FOOTPRINT
# ==============================================================================

def polygon_area_sqm(geometry: List[Dict[str, float]]) -> float:
    """
    Shoelace area of a lat/lon ring in square meters.
    Uses a local equirectangular projection, fine at building scale.
    """
    if not geometry or len(geometry) < 3:
        return 0.0

    area = 0.0
    n = len(geometry)
    for i in range(n):
        j = (i + 1) % n
        x1 = geometry[i]["lon"] * 111320 * math.cos(math.radians(geometry[i]["lat"]))
        y1 = geometry[i]["lat"] * 110540
        x2 = geometry[j]["lon"] * 111320 * math.cos(math.radians(geometry[j]["lat"]))
        y2 = geometry[j]["lat"] * 110540
        area += x1 * y2 - x2 * y1
    return abs(area / 2)


def _centroid(geometry: List[Dict[str, float]]) -> Tuple[float, float]:
    lat = sum(p["lat"] for p in geometry) / len(geometry)
    lon = sum(p["lon"] for p in geometry) / len(geometry)
    return lat, lon


class OpenStreetMapProvider(HttpProvider):
    """
    Building footprint from the Overpass API plus an assumed pitch.
    OSM only knows the footprint, so the pitch multiplier is always applied.
    """

    source = MeasurementSource.OPENSTREETMAP

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 30.0,
                 search_radius_m: int = 50, url: str = OVERPASS_API_URL):
        super().__init__(session, timeout)
        self.search_radius_m = search_radius_m
        self.url = url

    def attempt(self, location: Location) -> ProviderOutcome:
        query = (
            f'[out:json];way(around:{self.search_radius_m},{location.lat},{location.lng})'
            f'["building"];out geom;'
        )
        data, failure = self._request_json(
            "POST", self.url,
            not_found_reason="No building footprint found in OpenStreetMap for this location",
            data={"data": query},
        )
        if failure:
            return failure

        buildings = [e for e in data.get("elements", []) if len(e.get("geometry") or []) >= 3]
        if not buildings:
            return ProviderFailure("No building footprint found in OpenStreetMap for this location")

        def distance(element):
            lat, lon = _centroid(element["geometry"])
            return (lat - location.lat) ** 2 + (lon - location.lng) ** 2

        building = min(buildings, key=distance)
        footprint_sqm = polygon_area_sqm(building["geometry"])
        if footprint_sqm <= 0:
            return ProviderFailure("OpenStreetMap footprint has no area")

        building_type = (building.get("tags") or {}).get("building", "yes").lower()
        pitch_deg = BUILDING_TYPE_PITCH.get(building_type, DEFAULT_BUILDING_PITCH)

        return build_measurement(
            footprint_sq_ft=footprint_sqm * SQFT_PER_SQM,
            pitch_degrees=pitch_deg,
            pitch_multiplier=pitch_multiplier_from_degrees(pitch_deg),
            segment_count=1,
            source=self.source,
            confidence=60,
            warning=(
                f"Pitch estimated from building type '{building_type}'; "
                "actual roof area may vary significantly"
            ),
        )


# ==============================================================================
# TIER 6: ADDRESS-ONLY FOOTPRINT ESTIMATION
# ==============================================================================

FootprintLookup = Callable[[Location], Optional[float]]


class FootprintEstimationProvider(MeasurementProvider):
    """
    Rough estimate from the address alone.

    Footprint square footage comes from ``footprint_lookup`` (assessor
    records, listing data, ...); pitch is the regional default for the
    address's state.
    """

    source = MeasurementSource.FOOTPRINT_ESTIMATION

    def __init__(self, footprint_lookup: Optional[FootprintLookup] = None):
        self.footprint_lookup = footprint_lookup

    def attempt(self, location: Location) -> ProviderOutcome:
        if not location.address:
            return ProviderFailure("Address required for footprint estimation")
        if self.footprint_lookup is None:
            return ProviderFailure("Insufficient data for footprint estimation")

        footprint_sq_ft = self.footprint_lookup(location)
        if not footprint_sq_ft or footprint_sq_ft <= 0:
            return ProviderFailure("Insufficient data for footprint estimation")

        estimate = regional_pitch_estimate(location.address)
        pitch_deg = estimate["pitch_degrees"]
        state = estimate["state_code"] or "unknown state"

        return build_measurement(
            footprint_sq_ft=footprint_sq_ft,
            pitch_degrees=pitch_deg,
            pitch_multiplier=pitch_multiplier_from_degrees(pitch_deg),
            segment_count=1,
            source=self.source,
            confidence=45 if estimate["state_code"] else 35,
            warning=f"Footprint from records; pitch is the regional default for {state}",
        )
