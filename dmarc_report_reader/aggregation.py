from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from dmarc_report_reader.ip_lookup import GeoData
from dmarc_report_reader.report import AnnotatedRecord, Disposition, PublishedPolicy

SAFE_THRESHOLD = 98
CAUTION_THRESHOLD = 90
FEW_FAILING_SOURCES = 3
TOP_N = 10


def _percent(part: int, total: int) -> float:
    return part / total * 100 if total > 0 else 0.0


@dataclass
class ReportSummary:
    total_messages: int = 0
    passed_dkim: int = 0
    failed_dkim: int = 0
    passed_spf: int = 0
    failed_spf: int = 0
    passed_both: int = 0
    failed_both: int = 0
    quarantined: int = 0
    rejected: int = 0
    dmarc_aligned: int = 0
    dmarc_failed: int = 0

    def update(self, record: AnnotatedRecord):
        count = record.count
        dkim_pass = record.record.evaluated_dkim_pass
        spf_pass = record.record.evaluated_spf_pass

        self.total_messages += count
        if dkim_pass:
            self.passed_dkim += count
        else:
            self.failed_dkim += count
        if spf_pass:
            self.passed_spf += count
        else:
            self.failed_spf += count
        if dkim_pass and spf_pass:
            self.passed_both += count
        elif not dkim_pass and not spf_pass:
            self.failed_both += count

        disposition = record.record.disposition
        if disposition is Disposition.QUARANTINE:
            self.quarantined += count
        elif disposition is Disposition.REJECT:
            self.rejected += count

        if record.alignment.dmarc_pass:
            self.dmarc_aligned += count
        else:
            self.dmarc_failed += count

    @property
    def dkim_pass_rate(self) -> float:
        return _percent(self.passed_dkim, self.total_messages)

    @property
    def spf_pass_rate(self) -> float:
        return _percent(self.passed_spf, self.total_messages)

    @property
    def overall_pass_rate(self) -> float:
        return _percent(self.passed_both, self.total_messages)

    @property
    def dmarc_pass_rate(self) -> float:
        return _percent(self.dmarc_aligned, self.total_messages)


def summarize(records: Iterable[AnnotatedRecord]) -> ReportSummary:
    summary = ReportSummary()
    for record in records:
        summary.update(record)
    return summary


class ReadinessStatus(Enum):
    NONE_VALUE = "none"
    SAFE = "safe"
    CAUTION = "caution"
    NOT_READY = "not-ready"


@dataclass(frozen=True)
class EnforcementReadiness:
    current_policy: Disposition
    total_messages: int
    aligned_messages: int
    failing_sources: int
    failing_messages: int
    aligned_percent: int
    status: ReadinessStatus
    status_text: str
    recommendation: str


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def calculate_enforcement_readiness(
    records: Iterable[AnnotatedRecord], policy: Optional[PublishedPolicy]
) -> EnforcementReadiness:
    """Assess whether the domain can move to a stricter DMARC policy.

    Every failing record counts as one failing source.
    """
    current_policy = (policy and policy.policy) or Disposition.NONE_VALUE
    total = aligned = failing_sources = failing_messages = 0
    for record in records:
        total += record.count
        if record.alignment.dmarc_pass:
            aligned += record.count
        else:
            failing_messages += record.count
            failing_sources += 1

    aligned_percent = _round_half_up(aligned * 100 / total) if total > 0 else 0

    if current_policy is Disposition.REJECT:
        status = ReadinessStatus.NONE_VALUE
        status_text = "Maximum Enforcement"
        recommendation = (
            "Your domain is already at the strictest DMARC policy (reject). "
            f"{aligned_percent}% of messages are properly aligned. Monitor failing "
            "sources to ensure they are not legitimate senders."
        )
    elif aligned_percent >= SAFE_THRESHOLD:
        status = ReadinessStatus.SAFE
        if current_policy is Disposition.QUARANTINE:
            status_text = "Ready for Reject"
            recommendation = (
                f"With {aligned_percent}% alignment, you can safely move to "
                "p=reject. This will block unauthenticated messages entirely. "
                "Ensure all legitimate sending sources are properly configured "
                "before making this change."
            )
        else:
            status_text = "Ready for Quarantine"
            recommendation = (
                f"With {aligned_percent}% alignment, you can safely move to "
                "p=quarantine. This will send unauthenticated messages to spam "
                "folders. Consider monitoring for a few more reporting periods "
                "before moving to p=reject."
            )
    elif aligned_percent >= CAUTION_THRESHOLD:
        status = ReadinessStatus.CAUTION
        status_text = "Proceed with Caution"
        if failing_sources <= FEW_FAILING_SOURCES:
            recommendation = (
                f"{aligned_percent}% alignment with only {failing_sources} failing "
                "source(s). Review the failing sources - if they are misconfigured "
                "legitimate senders, fix them before increasing enforcement. If "
                "they appear to be unauthorized, you may consider increasing "
                "enforcement."
            )
        else:
            recommendation = (
                f"{aligned_percent}% alignment but {failing_sources} different "
                "sources are failing. Review each failing source before increasing "
                "enforcement. Moving to a stricter policy now may cause delivery "
                "issues for legitimate mail."
            )
    else:
        status = ReadinessStatus.NOT_READY
        status_text = "Not Ready"
        recommendation = (
            f"Only {aligned_percent}% of messages are properly aligned. Do not "
            "increase enforcement at this time. Review and fix the "
            f"{failing_sources} failing source(s) which account for "
            f"{failing_messages:,} message(s). Common issues: missing SPF includes "
            "for third-party senders, unsigned DKIM for some mail flows."
        )

    return EnforcementReadiness(
        current_policy=current_policy,
        total_messages=total,
        aligned_messages=aligned,
        failing_sources=failing_sources,
        failing_messages=failing_messages,
        aligned_percent=aligned_percent,
        status=status,
        status_text=status_text,
        recommendation=recommendation,
    )


@dataclass(frozen=True)
class TopSender:
    ip: str
    count: int
    geo: Optional[GeoData] = None


@dataclass(frozen=True)
class TopCountry:
    code: Optional[str]
    name: str
    count: int


@dataclass
class Analysis:
    top_senders: List[TopSender] = field(default_factory=list)
    top_failures: List[Tuple[str, int]] = field(default_factory=list)
    top_countries: List[TopCountry] = field(default_factory=list)
    top_asns: List[Tuple[str, int]] = field(default_factory=list)


def calculate_analysis(
    records: Sequence[AnnotatedRecord],
    geo_map: Optional[Mapping[str, GeoData]] = None,
) -> Analysis:
    """Top senders, failing header-from domains, countries and ASNs.

    A domain counts as failing when the receiver did not report both DKIM
    and SPF as passing.
    """
    geo_map = geo_map or {}
    ip_counts: Counter = Counter()
    domain_failures: Counter = Counter()
    country_counts: Counter = Counter()
    asn_counts: Counter = Counter()

    for record in records:
        ip = record.source_ip
        if ip:
            ip_counts[ip] += record.count
        if not (record.record.evaluated_dkim_pass and record.record.evaluated_spf_pass):
            domain_failures[record.record.header_from or "unknown"] += record.count

        geo = geo_map.get(ip or "")
        if geo is None or geo.error:
            continue
        if geo.country:
            country_counts[(geo.country_code, geo.country)] += record.count
        if geo.asn:
            asn_counts[geo.asn] += record.count

    return Analysis(
        top_senders=[
            TopSender(ip, count, geo_map.get(ip))
            for ip, count in ip_counts.most_common(TOP_N)
        ],
        top_failures=domain_failures.most_common(TOP_N),
        top_countries=[
            TopCountry(code, name, count)
            for (code, name), count in country_counts.most_common(TOP_N)
        ],
        top_asns=asn_counts.most_common(TOP_N),
    )


def get_unique_ip_count(records: Iterable[AnnotatedRecord]) -> int:
    return len({record.source_ip for record in records if record.source_ip})
