"""
Reverse geocoding for the customer's chosen location.

Google Geocoding is tried first when an API key is configured; Nominatim is
the fallback. The resolved location is cached in local storage.
"""
from typing import List, Optional

import httpx
import structlog

import config
from schemas import UserLocation
from storage import LocalStorage

logger = structlog.get_logger(__name__)

LOCATION_STORAGE_KEY = "user-selected-location"

GOOGLE_CITY_TYPES = ["locality", "sublocality_level_1", "administrative_area_level_2"]
NOMINATIM_CITY_KEYS = ["city", "town", "village", "suburb"]


def _component(components: List[dict], kind: str) -> str:
    for c in components:
        if kind in c.get("types", []):
            return c.get("long_name", "")
    return ""


def parse_google_result(lat: float, lng: float, result: dict) -> UserLocation:
    components = result.get("address_components", [])
    city = next((v for v in (_component(components, t) for t in GOOGLE_CITY_TYPES) if v), "")
    state = _component(components, "administrative_area_level_1")
    country = _component(components, "country")
    return UserLocation(
        lat=lat,
        lng=lng,
        city=city or "Unknown",
        state=state,
        fullAddress=", ".join(p for p in (city, state, country) if p),
    )


def parse_nominatim_result(lat: float, lng: float, data: dict) -> UserLocation:
    address = data.get("address", {})
    city = next((address[k] for k in NOMINATIM_CITY_KEYS if address.get(k)), "")
    state = address.get("state", "")
    return UserLocation(
        lat=lat,
        lng=lng,
        city=city or "Unknown",
        state=state,
        fullAddress=data.get("display_name") or ", ".join(p for p in (city, state, address.get("country", "")) if p),
    )


def unknown_location(lat: float, lng: float) -> UserLocation:
    return UserLocation(lat=lat, lng=lng, city="Unknown", state="", fullAddress=f"{lat:.4f}, {lng:.4f}")


class ReverseGeocoder:
    def __init__(self, client: Optional[httpx.Client] = None, google_api_key: Optional[str] = None):
        # a client passed in belongs to the caller and is not closed here
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=8.0, headers={"User-Agent": "ahmed-mart/1.0"})
        self.google_api_key = google_api_key if google_api_key is not None else config.GOOGLE_MAPS_API_KEY

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def _google(self, lat: float, lng: float) -> Optional[UserLocation]:
        resp = self.client.get(config.GOOGLE_GEOCODE_URL, params={"latlng": f"{lat},{lng}", "key": self.google_api_key})
        resp.raise_for_status()
        data = resp.json()
        if data.get("status") != "OK" or not data.get("results"):
            return None
        return parse_google_result(lat, lng, data["results"][0])

    def _nominatim(self, lat: float, lng: float) -> Optional[UserLocation]:
        resp = self.client.get(config.NOMINATIM_URL, params={"lat": lat, "lon": lng, "format": "json"})
        resp.raise_for_status()
        data = resp.json()
        if not data or "error" in data:
            return None
        return parse_nominatim_result(lat, lng, data)

    def reverse_geocode(self, lat: float, lng: float) -> UserLocation:
        if self.google_api_key:
            try:
                location = self._google(lat, lng)
                if location:
                    return location
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("google_geocode_failed", lat=lat, lng=lng, error=str(e))
        try:
            location = self._nominatim(lat, lng)
            if location:
                return location
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("nominatim_geocode_failed", lat=lat, lng=lng, error=str(e))
        return unknown_location(lat, lng)


class LocationCache:
    def __init__(self, storage: LocalStorage):
        self.storage = storage

    def get(self) -> Optional[UserLocation]:
        saved = self.storage.get_item(LOCATION_STORAGE_KEY)
        if not saved:
            return None
        try:
            return UserLocation(**saved)
        except (TypeError, ValueError):
            return None

    def save(self, location: UserLocation) -> None:
        self.storage.set_item(LOCATION_STORAGE_KEY, location.model_dump())
