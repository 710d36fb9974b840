"""Google Geocoding client used to turn a street address into coordinates."""

import logging
from typing import Optional, Tuple

import requests

log = logging.getLogger(__name__)

GEOCODING_API_URL = "https://maps.googleapis.com/maps/api/geocode/json"


def geocode_address(
    address: str,
    api_key: str,
    session: Optional[requests.Session] = None,
    timeout: float = 10,
) -> Optional[Tuple[float, float]]:
    """
    Convert street address to lat/lng using Google Geocoding API.
    Returns: (latitude, longitude) or None
    """
    http = session or requests
    try:
        resp = http.get(GEOCODING_API_URL, params={
            "address": address,
            "key": api_key
        }, timeout=timeout)
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        log.error("Geocoding error for '%s': %s", address, e)
        return None

    if data.get("status") == "OK" and data.get("results"):
        loc = data["results"][0]["geometry"]["location"]
        return (loc["lat"], loc["lng"])

    log.warning("Geocoding failed for '%s': %s", address, data.get("status", "unknown"))
    return None
