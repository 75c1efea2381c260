# Overview: Best-effort address geocoding over the Google Geocoding API.

from __future__ import annotations

import httpx
from flask import Flask, current_app


GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class GoogleGeocoder:
    def __init__(self, api_key: str, *, timeout_seconds: float = 5.0):
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def geocode(self, address: str) -> dict | None:
        """{"lat", "lng"} for address, or None. Never raises."""
        if not self.enabled or not (address or "").strip():
            return None
        try:
            response = httpx.get(
                GEOCODE_URL,
                params={"address": address, "key": self.api_key},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            current_app.logger.warning("Geocoding failed for %r: %s", address, exc)
            return None
        try:
            if body.get("status") != "OK" or not body.get("results"):
                current_app.logger.info("No geocoding result for %r (status=%s)", address, body.get("status"))
                return None
            location = body["results"][0]["geometry"]["location"]
            return {"lat": float(location["lat"]), "lng": float(location["lng"])}
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as exc:
            current_app.logger.warning("Malformed geocoding response for %r: %r", address, exc)
            return None


def init_geocoder(app: Flask) -> None:
    app.extensions["geocoder"] = GoogleGeocoder(
        app.config.get("GOOGLE_MAPS_API_KEY", ""),
        timeout_seconds=float(app.config.get("GEOCODE_TIMEOUT_SECONDS", 5)),
    )


def get_geocoder():
    return current_app.extensions["geocoder"]


def format_address(meta: dict) -> str:
    parts = [meta.get("address_line1") or meta.get("address"), meta.get("address_line2"),
             meta.get("city"), meta.get("state"), meta.get("postal_code")]
    return ", ".join(str(p).strip() for p in parts if p and str(p).strip())
