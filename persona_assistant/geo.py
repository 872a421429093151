"""Client region and timezone resolution from request headers."""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping
from urllib.parse import quote

import httpx

from persona_assistant.models import GeoInfo

LOGGER = logging.getLogger(__name__)

_COUNTRY_HEADERS = ("x-vercel-ip-country", "cf-ipcountry", "x-country-code")
_TIMEZONE_HEADERS = ("x-vercel-ip-timezone", "cf-timezone", "x-timezone")
_IP_HEADERS = ("x-real-ip", "cf-connecting-ip", "x-client-ip", "x-forwarded", "forwarded-for", "forwarded")

MAINLAND_CHINA = "CN"

COUNTRY_TIMEZONES: dict[str, str] = {
    "CN": "Asia/Shanghai",
    "HK": "Asia/Hong_Kong",
    "TW": "Asia/Taipei",
    "MO": "Asia/Macau",
    "JP": "Asia/Tokyo",
    "KR": "Asia/Seoul",
    "SG": "Asia/Singapore",
    "IN": "Asia/Kolkata",
    "TH": "Asia/Bangkok",
    "VN": "Asia/Ho_Chi_Minh",
    "ID": "Asia/Jakarta",
    "PH": "Asia/Manila",
    "AU": "Australia/Sydney",
    "NZ": "Pacific/Auckland",
    "GB": "Europe/London",
    "IE": "Europe/Dublin",
    "FR": "Europe/Paris",
    "DE": "Europe/Berlin",
    "ES": "Europe/Madrid",
    "IT": "Europe/Rome",
    "NL": "Europe/Amsterdam",
    "BE": "Europe/Brussels",
    "CH": "Europe/Zurich",
    "AT": "Europe/Vienna",
    "SE": "Europe/Stockholm",
    "NO": "Europe/Oslo",
    "DK": "Europe/Copenhagen",
    "FI": "Europe/Helsinki",
    "PL": "Europe/Warsaw",
    "CZ": "Europe/Prague",
    "PT": "Europe/Lisbon",
    "RU": "Europe/Moscow",
    "TR": "Europe/Istanbul",
    "IL": "Asia/Jerusalem",
    "SA": "Asia/Riyadh",
    "AE": "Asia/Dubai",
    "ZA": "Africa/Johannesburg",
    "NG": "Africa/Lagos",
    "EG": "Africa/Cairo",
    "BR": "America/Sao_Paulo",
    "AR": "America/Argentina/Buenos_Aires",
    "CL": "America/Santiago",
    "CO": "America/Bogota",
    "PE": "America/Lima",
    "MX": "America/Mexico_City",
    "CA": "America/Toronto",
    "US": "America/New_York",
}


def get_header(headers: Mapping[str, str], names: tuple[str, ...] | list[str]) -> str:
    """Return the first non-blank header value among names, or an empty string."""

    for name in names:
        value = headers.get(name)
        if value and value.strip():
            return value.strip()
    return ""


def get_client_ip(headers: Mapping[str, str]) -> str:
    forwarded = get_header(headers, ["x-forwarded-for"])
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return get_header(headers, _IP_HEADERS)


def timezone_for_country(country: str | None) -> str | None:
    code = (country or "").strip().upper()
    if not code:
        return None
    return COUNTRY_TIMEZONES.get(code)


def is_valid_timezone_name(value: str) -> bool:
    value = value.strip()
    return bool(value) and "/" in value and not any(ch.isspace() for ch in value)


class GeoResolver:
    """Resolves country and timezone for a request. Never raises."""

    def __init__(self, lookup_base_url: str = "https://ipapi.co", timeout_seconds: float = 1.2) -> None:
        self._lookup_base_url = lookup_base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    async def lookup_country_by_ip(self, ip: str) -> str | None:
        """Look up an ISO country code for ip, or None on any failure."""

        if not ip:
            return None
        url = f"{self._lookup_base_url}/{quote(ip, safe='')}/json/"
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_seconds)) as client:
                resp = await asyncio.wait_for(
                    client.get(url, headers={"Accept": "application/json"}),
                    timeout=self._timeout_seconds,
                )
                if resp.status_code < 200 or resp.status_code >= 300:
                    return None
                data = resp.json()
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as exc:
            LOGGER.info("geo lookup failed for ip=%s: %s", ip, exc)
            return None
        if not isinstance(data, dict):
            return None
        code = str(data.get("country_code") or "").strip().upper()
        return code or None

    async def resolve(self, headers: Mapping[str, str]) -> GeoInfo:
        """Platform geo header first, then IP lookup, then unknown."""

        country_header = get_header(headers, _COUNTRY_HEADERS)
        if country_header:
            code = country_header.upper()
            return GeoInfo(country=code, is_mainland_china=code == MAINLAND_CHINA, source="header")

        looked_up = await self.lookup_country_by_ip(get_client_ip(headers))
        if looked_up:
            return GeoInfo(country=looked_up, is_mainland_china=looked_up == MAINLAND_CHINA, source="ipapi")
        return GeoInfo(country=None, is_mainland_china=False, source="unknown")

    async def infer_timezone(
        self,
        headers: Mapping[str, str],
        fallback: str = "UTC",
        geo: GeoInfo | None = None,
    ) -> str:
        """Direct timezone header, else the country's timezone, else fallback.

        Pass an already resolved geo to avoid a second IP lookup.
        """
        direct = get_header(headers, _TIMEZONE_HEADERS)
        if direct and is_valid_timezone_name(direct):
            return direct
        if geo is None:
            geo = await self.resolve(headers)
        return timezone_for_country(geo.country) or fallback
