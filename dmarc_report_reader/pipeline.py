from dataclasses import dataclass, replace
from typing import Mapping, Optional, Tuple

import structlog

from dmarc_report_reader.aggregation import (
    EnforcementReadiness,
    ReportSummary,
    calculate_enforcement_readiness,
    summarize,
)
from dmarc_report_reader.alignment import compute_alignment
from dmarc_report_reader.classification import classify_record
from dmarc_report_reader.ip_lookup import GeoData
from dmarc_report_reader.providers import fingerprint_provider
from dmarc_report_reader.report import AnnotatedRecord, Record, Report
from dmarc_report_reader.robustness import compute_robustness_signals

logger = structlog.get_logger()


@dataclass(frozen=True)
class AnalyzedReport:
    report: Report
    records: Tuple[AnnotatedRecord, ...]
    summary: ReportSummary
    enforcement_readiness: EnforcementReadiness

    @property
    def source_ips(self) -> Tuple[str, ...]:
        return tuple(
            dict.fromkeys(r.source_ip for r in self.records if r.source_ip)
        )


def annotate_record(record: Record, report: Report) -> AnnotatedRecord:
    annotated = AnnotatedRecord(
        record=record,
        alignment=compute_alignment(record, report.policy),
        robustness=compute_robustness_signals(record, report.metadata),
    )
    return replace(annotated, classification=classify_record(annotated))


def analyze_report(report: Report) -> AnalyzedReport:
    records = tuple(annotate_record(record, report) for record in report.records)
    logger.debug(
        "analyzed_report",
        report_id=report.metadata and report.metadata.report_id,
        records=len(records),
        failing=sum(1 for r in records if not r.alignment.dmarc_pass),
    )
    return AnalyzedReport(
        report=report,
        records=records,
        summary=summarize(records),
        enforcement_readiness=calculate_enforcement_readiness(records, report.policy),
    )


def apply_geo_data(
    analyzed: AnalyzedReport, geo_map: Mapping[str, GeoData]
) -> AnalyzedReport:
    """Attach the sending provider to each record and classify it again.

    Classification only depends on the record and its provider, so calling
    this repeatedly with the same data gives the same result.
    """
    records = []
    for record in analyzed.records:
        geo: Optional[GeoData] = geo_map.get(record.source_ip or "")
        provider = fingerprint_provider(geo)
        records.append(
            replace(
                record,
                provider=provider,
                classification=classify_record(record, provider),
            )
        )
    logger.debug(
        "applied_geo_data",
        records=len(records),
        known_providers=sum(1 for r in records if r.provider and r.provider.is_known),
    )
    return replace(analyzed, records=tuple(records))
