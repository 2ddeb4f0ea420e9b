import ipaddress
from dataclasses import dataclass, fields
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Tuple

from dmarc_report_reader.ip_lookup import GeoData
from dmarc_report_reader.report import AnnotatedRecord, Classification, Disposition


class StatusFilter(Enum):
    ALL = "all"
    PASS = "pass"
    FAIL = "fail"
    QUARANTINE = "quarantine"
    REJECT = "reject"


class SortType(Enum):
    COUNT_DESC = "count-desc"
    COUNT_ASC = "count-asc"
    IP = "ip"


@dataclass(frozen=True)
class FilterState:
    status: StatusFilter = StatusFilter.ALL
    domain: str = ""
    ip: str = ""
    country: str = ""
    min_count: int = 0
    hostname: str = ""
    classification: Optional[Classification] = None
    provider: str = ""

    def is_active(self, name: str) -> bool:
        value = getattr(self, name)
        if name == "status":
            return value is not StatusFilter.ALL
        if name == "min_count":
            return value > 0
        return bool(value)


def count_active_filters(state: FilterState) -> int:
    return sum(1 for f in fields(state) if state.is_active(f.name))


def matches_ip_filter(ip: Optional[str], ip_filter: Optional[str]) -> bool:
    """Match ``ip`` against an address prefix or a CIDR network.

    An empty filter or a missing address matches everything. A malformed
    CIDR filter matches nothing.
    """
    if not ip or not ip_filter:
        return True
    ip_filter = ip_filter.strip().lower()
    if "/" in ip_filter:
        try:
            network = ipaddress.ip_network(ip_filter, strict=False)
            return ipaddress.ip_address(ip) in network
        except ValueError:
            return False
    return ip.lower().startswith(ip_filter)


def _matches(
    record: AnnotatedRecord, state: FilterState, geo_map: Mapping[str, GeoData]
) -> bool:
    # pylint: disable=too-many-return-statements
    raw = record.record
    both_pass = raw.evaluated_dkim_pass and raw.evaluated_spf_pass

    if state.status is StatusFilter.PASS and not both_pass:
        return False
    if state.status is StatusFilter.FAIL and both_pass:
        return False
    if (
        state.status is StatusFilter.QUARANTINE
        and raw.disposition is not Disposition.QUARANTINE
    ):
        return False
    if state.status is StatusFilter.REJECT and raw.disposition is not Disposition.REJECT:
        return False

    if state.domain and state.domain.lower() not in (raw.header_from or "").lower():
        return False
    if state.ip and not matches_ip_filter(record.source_ip, state.ip):
        return False
    if state.min_count > 0 and record.count < state.min_count:
        return False

    geo = geo_map.get(record.source_ip or "")
    if state.country:
        country_code = (geo.country_code if geo else None) or ""
        if country_code.upper() != state.country.upper():
            return False
    if state.hostname:
        hostname = (geo.hostname if geo else None) or ""
        if state.hostname.lower() not in hostname.lower():
            return False

    if state.classification is not None:
        classification = (
            record.classification.classification
            if record.classification
            else Classification.UNKNOWN
        )
        if classification is not state.classification:
            return False
    if state.provider:
        provider_id = record.provider.id if record.provider else "unknown"
        if provider_id != state.provider:
            return False

    return True


def filter_records(
    records: Iterable[AnnotatedRecord],
    state: FilterState,
    geo_map: Optional[Mapping[str, GeoData]] = None,
) -> List[AnnotatedRecord]:
    """Keep the records matching every active filter."""
    geo_map = geo_map or {}
    return [record for record in records if _matches(record, state, geo_map)]


def _ip_sort_key(record: AnnotatedRecord) -> Tuple[int, int, str]:
    ip = record.source_ip or ""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return (1, 0, ip)
    return (0, address.version * 2**128 + int(address), ip)


def sort_records(
    records: Iterable[AnnotatedRecord], sort_type: SortType
) -> List[AnnotatedRecord]:
    """Return the records in a new list ordered by ``sort_type``.

    IP sorting is numeric; IPv4 addresses come before IPv6 ones and invalid
    addresses go last.
    """
    if sort_type is SortType.COUNT_DESC:
        return sorted(records, key=lambda r: r.count, reverse=True)
    if sort_type is SortType.COUNT_ASC:
        return sorted(records, key=lambda r: r.count)
    return sorted(records, key=_ip_sort_key)
