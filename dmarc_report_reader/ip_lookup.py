import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import requests
import structlog

from dmarc_report_reader.errors import ErrorCode, ReportError
from dmarc_report_reader.expiring_cache import Cache

logger = structlog.get_logger()

IP_API_FIELDS = "status,message,query,country,countryCode,city,isp,org,as,reverse"


@dataclass(frozen=True)
class GeoData:
    ip: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    isp: Optional[str] = None
    org: Optional[str] = None
    asn: Optional[str] = None
    hostname: Optional[str] = None
    error: bool = False
    message: Optional[str] = None

    @classmethod
    def from_api(cls, item: Mapping[str, Any]) -> "GeoData":
        ip = item.get("query")
        if item.get("status") != "success":
            return cls(ip=ip, error=True, message=item.get("message"))
        return cls(
            ip=ip,
            country=item.get("country") or None,
            country_code=item.get("countryCode") or None,
            city=item.get("city") or None,
            isp=item.get("isp") or None,
            org=item.get("org") or None,
            asn=item.get("as") or None,
            hostname=item.get("reverse") or None,
        )

    @classmethod
    def failed(cls, ip: str, message: Optional[str] = None) -> "GeoData":
        return cls(ip=ip, error=True, message=message)

    @property
    def flag(self) -> str:
        code = self.country_code
        if not code or len(code) != 2 or not code.isascii() or not code.isalpha():
            return ""
        return "".join(chr(0x1F1E6 + ord(c) - ord("A")) for c in code.upper())


@dataclass
class IpLookupConfig:
    enabled: bool = False
    endpoint: str = "http://ip-api.com/batch"
    batch_size: int = 100
    rate_limit_seconds: float = 1.5
    timeout_seconds: float = 10
    cache_ttl_seconds: float = 60 * 60


class IpLookup:
    """Geolocate IP addresses with the ip-api.com batch endpoint.

    Results, including failures, are stored in ``cache`` so that an address
    is requested at most once while its entry lives. Network failures never
    raise; the affected addresses get a ``GeoData`` with ``error`` set.
    """

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        cache: Cache[str, GeoData],
        *,
        session: Optional[requests.Session] = None,
        endpoint: str = "http://ip-api.com/batch",
        batch_size: int = 100,
        rate_limit_seconds: float = 1.5,
        timeout_seconds: float = 10,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.cache = cache
        self.session = session or requests.Session()
        self.endpoint = endpoint
        self.batch_size = batch_size
        self.rate_limit_seconds = rate_limit_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep_fn

    @classmethod
    def from_config(
        cls, config: IpLookupConfig, cache: Cache[str, GeoData], **kwargs
    ) -> "IpLookup":
        return cls(
            cache,
            endpoint=config.endpoint,
            batch_size=config.batch_size,
            rate_limit_seconds=config.rate_limit_seconds,
            timeout_seconds=config.timeout_seconds,
            **kwargs,
        )

    def lookup(self, ip: str) -> GeoData:
        return self.lookup_many([ip])[ip]

    def lookup_many(
        self,
        ips: Iterable[str],
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> Dict[str, GeoData]:
        unique_ips = list(dict.fromkeys(ip for ip in ips if ip))
        results: Dict[str, GeoData] = {}
        uncached: List[str] = []
        for ip in unique_ips:
            cached = self.cache.get(ip)
            if cached is None:
                uncached.append(ip)
            else:
                results[ip] = cached

        for start in range(0, len(uncached), self.batch_size):
            if start > 0:
                self._sleep(self.rate_limit_seconds)
            batch = uncached[start : start + self.batch_size]
            logger.debug(
                "ip_lookup_batch", size=len(batch), offset=start, total=len(uncached)
            )
            for ip, geo in self._lookup_batch(batch).items():
                self.cache.set(ip, geo)
                results[ip] = geo
            if on_progress:
                on_progress(min(start + self.batch_size, len(uncached)), len(uncached))

        return results

    def _lookup_batch(self, batch: List[str]) -> Dict[str, GeoData]:
        try:
            response = self.session.post(
                self.endpoint,
                params={"fields": IP_API_FIELDS},
                json=batch,
                timeout=self.timeout_seconds,
            )
            if response.status_code == 429:
                return self._failed_batch(
                    batch, ReportError(ErrorCode.IP_LOOKUP_RATE_LIMITED, "HTTP 429")
                )
            response.raise_for_status()
            items = response.json()
        except (requests.RequestException, ValueError) as err:
            return self._failed_batch(
                batch, ReportError(ErrorCode.IP_LOOKUP_FAILED, str(err))
            )

        results = {}
        for item in items:
            geo = GeoData.from_api(item)
            if geo.ip:
                results[geo.ip] = geo
        for ip in batch:
            if ip not in results:
                results[ip] = GeoData.failed(ip, "missing from lookup response")
        return results

    @staticmethod
    def _failed_batch(batch: List[str], error: ReportError) -> Dict[str, GeoData]:
        logger.warning(
            "ip_lookup_failed", code=error.code.value, error=str(error), ips=batch
        )
        return {ip: GeoData.failed(ip, error.user_message) for ip in batch}


def format_location(geo: Optional[GeoData]) -> str:
    if geo is None or geo.error:
        return "Unknown"
    parts = [part for part in (geo.flag, geo.city, geo.country) if part]
    return " ".join(parts) or "Unknown"


def format_isp(geo: Optional[GeoData]) -> str:
    if geo is None or geo.error:
        return "Unknown"
    return geo.asn or geo.isp or geo.org or "Unknown"
