import csv
import io
import json
from dataclasses import fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from dataclasses_serialization.json import JSONSerializer

from dmarc_report_reader.aggregation import Analysis, ReportSummary
from dmarc_report_reader.filtering import FilterState, count_active_filters
from dmarc_report_reader.ip_lookup import GeoData
from dmarc_report_reader.pipeline import AnalyzedReport
from dmarc_report_reader.report import AnnotatedRecord


# false positive, pylint: disable=no-value-for-parameter
@JSONSerializer.register_serializer(Enum)
def enum_serializer(value: Enum) -> Any:
    return value.value


@JSONSerializer.register_serializer(datetime)
def datetime_serializer(value: datetime) -> str:
    return value.isoformat()


@JSONSerializer.register_serializer(tuple)
def tuple_serializer(value: tuple) -> List[Any]:
    return [JSONSerializer.serialize(item) for item in value]


def _summary_to_dict(summary: ReportSummary) -> Dict[str, Any]:
    data = {f.name: getattr(summary, f.name) for f in fields(summary)}
    data.update(
        dkim_pass_rate=summary.dkim_pass_rate,
        spf_pass_rate=summary.spf_pass_rate,
        overall_pass_rate=summary.overall_pass_rate,
        dmarc_pass_rate=summary.dmarc_pass_rate,
    )
    return data


def _analysis_to_dict(analysis: Analysis) -> Dict[str, Any]:
    return {
        "top_sending_ips": [
            {
                "ip": sender.ip,
                "count": sender.count,
                "location": " ".join(
                    part for part in (sender.geo.city, sender.geo.country) if part
                )
                if sender.geo
                else None,
            }
            for sender in analysis.top_senders
        ],
        "top_failing_domains": [
            {"domain": domain, "count": count}
            for domain, count in analysis.top_failures
        ],
        "top_countries": JSONSerializer.serialize(analysis.top_countries),
        "top_asns": [{"asn": asn, "count": count} for asn, count in analysis.top_asns],
    }


def report_to_dict(
    analyzed: AnalyzedReport,
    records: Optional[Sequence[AnnotatedRecord]] = None,
    filter_state: Optional[FilterState] = None,
    analysis: Optional[Analysis] = None,
    *,
    exported_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """JSON-compatible form of an analyzed report.

    Only ``records`` are included if given, the export metadata still counts
    all records of the report.
    """
    if records is None:
        records = analyzed.records
    filter_state = filter_state or FilterState()
    filters_applied = count_active_filters(filter_state) > 0
    report = analyzed.report

    data: Dict[str, Any] = {
        "version": report.version,
        "report_metadata": JSONSerializer.serialize(report.metadata),
        "policy_published": JSONSerializer.serialize(report.policy),
        "summary": _summary_to_dict(analyzed.summary),
        "enforcement_readiness": JSONSerializer.serialize(
            analyzed.enforcement_readiness
        ),
        "records": JSONSerializer.serialize(list(records)),
        "export_metadata": {
            "exported_at": JSONSerializer.serialize(
                exported_at or datetime.now(timezone.utc)
            ),
            "total_records": len(analyzed.records),
            "filtered_records": len(records),
            "filters_applied": filters_applied,
            "filter_state": JSONSerializer.serialize(filter_state)
            if filters_applied
            else None,
        },
    }
    if analysis is not None:
        data["analysis"] = _analysis_to_dict(analysis)
    return data


def export_json(
    analyzed: AnalyzedReport,
    records: Optional[Sequence[AnnotatedRecord]] = None,
    filter_state: Optional[FilterState] = None,
    analysis: Optional[Analysis] = None,
    *,
    exported_at: Optional[datetime] = None,
) -> str:
    return json.dumps(
        report_to_dict(
            analyzed, records, filter_state, analysis, exported_at=exported_at
        ),
        indent=2,
    )


CSV_COLUMNS = (
    "Source IP",
    "Hostname",
    "Country",
    "City",
    "ISP/ASN",
    "Count",
    "Disposition",
    "DKIM Result",
    "SPF Result",
    "Header From",
    "Envelope From",
    "DKIM Signing Domain",
    "SPF Checked Domain",
    "Pass/Fail",
)


def _pass_status(record: AnnotatedRecord) -> str:
    dkim_pass = record.record.evaluated_dkim_pass
    spf_pass = record.record.evaluated_spf_pass
    if dkim_pass and spf_pass:
        return "PASS"
    if not dkim_pass and not spf_pass:
        return "FAIL"
    return "PARTIAL"


def _csv_row(record: AnnotatedRecord, geo: Optional[GeoData]) -> Dict[str, Any]:
    raw = record.record
    evaluated = raw.policy_evaluated
    geo = geo or GeoData()
    return {
        "Source IP": raw.source_ip or "",
        "Hostname": geo.hostname or "",
        "Country": geo.country or "",
        "City": geo.city or "",
        "ISP/ASN": geo.asn or geo.isp or "",
        "Count": raw.count,
        "Disposition": raw.disposition.value if raw.disposition else "",
        "DKIM Result": (evaluated and evaluated.dkim) or "",
        "SPF Result": (evaluated and evaluated.spf) or "",
        "Header From": raw.header_from or "",
        "Envelope From": raw.envelope_from or "",
        "DKIM Signing Domain": "; ".join(
            d.domain for d in raw.auth_results.dkim if d.domain
        ),
        "SPF Checked Domain": "; ".join(
            s.domain for s in raw.auth_results.spf if s.domain
        ),
        "Pass/Fail": _pass_status(record),
    }


def export_csv(
    records: Sequence[AnnotatedRecord],
    geo_map: Optional[Mapping[str, GeoData]] = None,
) -> str:
    geo_map = geo_map or {}
    output = io.StringIO()
    writer = csv.DictWriter(
        output, fieldnames=CSV_COLUMNS, quoting=csv.QUOTE_ALL, lineterminator="\n"
    )
    writer.writeheader()
    for record in records:
        writer.writerow(_csv_row(record, geo_map.get(record.source_ip or "")))
    return output.getvalue()
