"""
Tier resolver.

Walks the measurement tiers from most to least accurate and stops at the
first one that yields a viable measurement. Every tier that was tried and
failed on the way is kept as a TierFailure, so callers can show why a better
source was not used.

Tier Priority:
  1. LiDAR (Instant Roofer API)        95-98%
  2. Google Solar API (HIGH imagery)   92-95%
  3. Google Solar API (MEDIUM imagery) 85-90%
  4. Google Solar API (LOW imagery)    75-85%
  5. OpenStreetMap + estimated pitch   50-70%
  6. Building footprint estimation     40-60%
  7. Manual polygon tracing            85-95% (user dependent)

The walk is strictly sequential: lower tiers hit paid or rate-limited APIs
and are only called when everything above them failed.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

import requests

from roofmeasure.config import Credentials, EngineSettings
from roofmeasure.errors import InputValidationError
from roofmeasure.models import (
    ImageryQuality,
    Location,
    MeasurementResult,
    MeasurementSource,
    ProviderFailure,
    ProviderOutcome,
    TierDescriptor,
    TieredMeasurementResult,
    TierFailure,
    manual_tracing_placeholder,
)
from roofmeasure.providers import (
    FootprintEstimationProvider,
    FootprintLookup,
    GoogleSolarProvider,
    InstantRooferProvider,
    MeasurementProvider,
    OpenStreetMapProvider,
    UnconfiguredProvider,
)
from roofmeasure.validation import SOURCE_TRUST

log = logging.getLogger(__name__)

MANUAL_TIER = 7

TIERS: Dict[int, TierDescriptor] = {
    1: TierDescriptor(1, "LiDAR (Instant Roofer)", "95-98%"),
    2: TierDescriptor(2, "Google Solar API (HIGH)", "92-95%"),
    3: TierDescriptor(3, "Google Solar API (MEDIUM)", "85-90%"),
    4: TierDescriptor(4, "Google Solar API (LOW)", "75-85%"),
    5: TierDescriptor(5, "OpenStreetMap + Estimated Pitch", "50-70%"),
    6: TierDescriptor(6, "Building Footprint Estimation", "40-60%"),
    7: TierDescriptor(7, "Manual Polygon Tracing", "85-95%"),
}

def tier_name(tier: int) -> str:
    return TIERS[tier].name if tier in TIERS else "Unknown"


def tier_accuracy(tier: int) -> str:
    return TIERS[tier].accuracy if tier in TIERS else "Unknown"


def validate_coordinates(lat: float, lng: float) -> None:
    """Raise InputValidationError unless lat/lng are finite and in range."""
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        raise InputValidationError("Valid latitude and longitude are required")
    if lat_f != lat_f or lng_f != lng_f:
        raise InputValidationError("Valid latitude and longitude are required")
    if not (-90 <= lat_f <= 90 and -180 <= lng_f <= 180):
        raise InputValidationError("Coordinates out of valid range")


# ==============================================================================
# TIERS
# ==============================================================================

@dataclass(frozen=True)
class Tier:
    """A ranked source: descriptor, provider capability and viability floor."""
    descriptor: TierDescriptor
    provider: MeasurementProvider
    min_imagery_quality: Optional[ImageryQuality] = None

    @property
    def number(self) -> int:
        return self.descriptor.number

    def evaluate(
        self,
        location: Location,
        outcomes: Optional[Dict[MeasurementProvider, ProviderOutcome]] = None,
    ) -> Union[MeasurementResult, TierFailure]:
        """
        Run the provider and judge the result against this tier's floor.

        ``outcomes`` memoizes provider results for one resolution, so tiers
        sharing a provider (Solar HIGH/MEDIUM/LOW) trigger a single call and
        all judge the same answer, errors included.
        """
        if outcomes is not None and self.provider in outcomes:
            outcome = outcomes[self.provider]
        else:
            try:
                outcome = self.provider.attempt(location)
            except Exception as e:
                log.exception("Tier %d provider raised", self.number)
                outcome = ProviderFailure(f"API error: {e}")
            if outcomes is not None:
                outcomes[self.provider] = outcome

        if isinstance(outcome, ProviderFailure):
            return self._failure(outcome.reason)

        if outcome.adjusted_area_sq_ft <= 0:
            return self._failure("No data: provider returned zero roof area")

        if self.min_imagery_quality is not None:
            quality = outcome.imagery_quality or ImageryQuality.UNKNOWN
            if not quality.meets(self.min_imagery_quality):
                return self._failure(
                    f"Only {quality.value} quality imagery available "
                    f"(not {self.min_imagery_quality.value})"
                )

        return replace(outcome, tier=self.number)

    def _failure(self, reason: str) -> TierFailure:
        return TierFailure(tier=self.number, tier_name=self.descriptor.name, reason=reason)


def build_default_tiers(
    credentials: Credentials,
    settings: Optional[EngineSettings] = None,
    session: Optional[requests.Session] = None,
    footprint_lookup: Optional[FootprintLookup] = None,
) -> List[Tier]:
    """
    Tiers 1-6 wired to the real HTTP providers.
    Tiers whose API key is missing get an UnconfiguredProvider.
    """
    settings = settings or EngineSettings()
    timeout = settings.request_timeout

    if credentials.instant_roofer_api_key:
        lidar = InstantRooferProvider(credentials.instant_roofer_api_key, session, timeout)
    else:
        lidar = UnconfiguredProvider(MeasurementSource.INSTANT_ROOFER,
                                     "Instant Roofer API key not configured")

    tiers = [Tier(TIERS[1], lidar)]

    # one Solar call serves tiers 2-4; each tier judges the returned imagery quality
    if credentials.google_api_key:
        solar = GoogleSolarProvider(credentials.google_api_key, ImageryQuality.LOW, session, timeout)
    else:
        solar = UnconfiguredProvider(MeasurementSource.GOOGLE_SOLAR,
                                     "Google Solar API key not configured")
    for number, quality in ((2, ImageryQuality.HIGH), (3, ImageryQuality.MEDIUM), (4, ImageryQuality.LOW)):
        tiers.append(Tier(TIERS[number], solar, min_imagery_quality=quality))

    tiers.append(Tier(TIERS[5], OpenStreetMapProvider(session, timeout)))
    tiers.append(Tier(TIERS[6], FootprintEstimationProvider(footprint_lookup)))
    return tiers


def build_source_providers(
    credentials: Credentials,
    settings: Optional[EngineSettings] = None,
    session: Optional[requests.Session] = None,
    footprint_lookup: Optional[FootprintLookup] = None,
) -> List[MeasurementProvider]:
    """One provider per source, for collecting every source at once."""
    settings = settings or EngineSettings()
    timeout = settings.request_timeout
    providers: List[MeasurementProvider] = []
    if credentials.instant_roofer_api_key:
        providers.append(InstantRooferProvider(credentials.instant_roofer_api_key, session, timeout))
    if credentials.google_api_key:
        providers.append(GoogleSolarProvider(credentials.google_api_key, ImageryQuality.LOW,
                                             session, timeout))
    providers.append(OpenStreetMapProvider(session, timeout))
    providers.append(FootprintEstimationProvider(footprint_lookup))
    return providers


# ==============================================================================
# RESOLUTION
# ==============================================================================

class TierResolver:
    """Runs the waterfall over an ordered set of tiers."""

    def __init__(self, tiers: Sequence[Tier]):
        numbers = [t.number for t in tiers]
        if numbers != sorted(numbers) or len(set(numbers)) != len(numbers):
            raise ValueError(f"Tiers must have unique ascending numbers, got {numbers}")
        if MANUAL_TIER in numbers:
            raise ValueError("Manual tracing is the implicit last tier; do not pass it")
        self.tiers = list(tiers)

    def resolve(self, location: Location) -> TieredMeasurementResult:
        validate_coordinates(location.lat, location.lng)
        failures: List[TierFailure] = []
        outcomes: Dict[MeasurementProvider, ProviderOutcome] = {}

        for index, tier in enumerate(self.tiers):
            log.debug("Trying tier %d (%s)", tier.number, tier.descriptor.name)
            result = tier.evaluate(location, outcomes)

            if isinstance(result, TierFailure):
                log.info("Tier %d failed: %s", tier.number, result.reason)
                failures.append(result)
                continue

            log.info("Resolved with tier %d (%s)", tier.number, tier.descriptor.name)
            remaining = [t.descriptor.name for t in self.tiers[index + 1:]]
            return TieredMeasurementResult(
                measurement=result,
                tier_used=tier.number,
                tier_name=tier.descriptor.name,
                higher_tier_failures=failures,
                fallbacks_available=remaining + [TIERS[MANUAL_TIER].name],
            )

        log.info("All automated tiers failed; manual tracing required")
        return TieredMeasurementResult(
            measurement=manual_tracing_placeholder(),
            tier_used=MANUAL_TIER,
            tier_name=TIERS[MANUAL_TIER].name,
            higher_tier_failures=failures,
            fallbacks_available=[],
        )


def resolve_tiered(
    lat: float,
    lng: float,
    address: Optional[str] = None,
    credentials: Optional[Credentials] = None,
    tiers: Optional[Sequence[Tier]] = None,
    settings: Optional[EngineSettings] = None,
) -> TieredMeasurementResult:
    """
    Resolve the best available measurement for a location.

    ``tiers`` overrides the default provider wiring (used by tests and by
    callers with their own provider clients); otherwise tiers are built from
    ``credentials``.
    """
    if tiers is None:
        tiers = build_default_tiers(credentials or Credentials(), settings)
    return TierResolver(tiers).resolve(Location(lat, lng, address))


# ==============================================================================
# LEGACY: ALL SOURCES AT ONCE
# ==============================================================================

def collect_all_sources(
    location: Location,
    providers: Sequence[MeasurementProvider],
    max_workers: int = 4,
) -> Tuple[List[MeasurementResult], List[Tuple[MeasurementSource, str]]]:
    """
    Query every provider unconditionally, in parallel.

    Returns (candidates, failures). Candidates are ordered by source trust,
    most trusted first; failures are (source, reason) pairs in provider order.
    """
    validate_coordinates(location.lat, location.lng)

    def run(provider: MeasurementProvider):
        try:
            return provider.attempt(location)
        except Exception as e:
            log.exception("%s provider raised", provider.source.value)
            return ProviderFailure(f"API error: {e}")

    if not providers:
        return [], []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(providers)))) as pool:
        outcomes = list(pool.map(run, providers))

    candidates: List[MeasurementResult] = []
    failures: List[Tuple[MeasurementSource, str]] = []
    for provider, outcome in zip(providers, outcomes):
        if isinstance(outcome, ProviderFailure):
            failures.append((provider.source, outcome.reason))
        elif outcome.adjusted_area_sq_ft <= 0:
            failures.append((provider.source, "No data: provider returned zero roof area"))
        else:
            candidates.append(outcome)

    candidates.sort(key=lambda m: SOURCE_TRUST.get(m.source, 0.0), reverse=True)
    return candidates, failures
