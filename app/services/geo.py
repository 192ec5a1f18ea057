from __future__ import annotations

import ipaddress
import os
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import geoip2.database
import geoip2.errors
import maxminddb

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class GeoInfo:
    country: str = "Unknown"
    region: str = ""
    city: str = ""

    def describe(self) -> str:
        return ", ".join(p for p in (self.city, self.region, self.country) if p)

    def as_dict(self) -> dict:
        return {"country": self.country, "region": self.region, "city": self.city}


UNKNOWN = GeoInfo()
LOCALHOST = GeoInfo(country="Localhost")
PRIVATE = GeoInfo(country="Private network")


class GeoLocator(Protocol):
    def lookup(self, ip_address: str) -> GeoInfo: ...


def _parse(ip_address: str):
    try:
        return ipaddress.ip_address((ip_address or "").strip())
    except ValueError:
        return None


def _local(addr) -> Optional[GeoInfo]:
    if addr.is_loopback:
        return LOCALHOST
    if addr.is_private:
        return PRIVATE
    return None


class LocalGeoLocator:
    """Offline locator: loopback and private ranges only, everything else unknown."""

    def lookup(self, ip_address: str) -> GeoInfo:
        addr = _parse(ip_address)
        if addr is None:
            return UNKNOWN
        return _local(addr) or UNKNOWN


class GeoIp2Locator:
    """City lookups against a MaxMind GeoLite2/GeoIP2 database."""

    def __init__(self, reader: Any) -> None:
        self.reader = reader

    def lookup(self, ip_address: str) -> GeoInfo:
        addr = _parse(ip_address)
        if addr is None:
            return UNKNOWN
        local = _local(addr)
        if local is not None:
            return local
        try:
            hit = self.reader.city(str(addr))
        except geoip2.errors.AddressNotFoundError:
            return UNKNOWN
        return GeoInfo(
            country=hit.country.iso_code or hit.country.name or UNKNOWN.country,
            region=hit.subdivisions.most_specific.name or "",
            city=hit.city.name or "",
        )

    def close(self) -> None:
        self.reader.close()


def build_geo_locator(db_path: Optional[str] = None) -> GeoLocator:
    path = db_path if db_path is not None else settings.GEOIP_DB_PATH
    if not path or not os.path.isfile(path):
        logger.info("geoip_database_missing", path=path)
        return LocalGeoLocator()
    try:
        reader = geoip2.database.Reader(path)
    except (OSError, maxminddb.InvalidDatabaseError):
        logger.exception("geoip_database_unreadable", path=path)
        return LocalGeoLocator()
    return GeoIp2Locator(reader)
