import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, TextIO, Tuple

import structlog

from dmarc_report_reader.aggregation import calculate_analysis
from dmarc_report_reader.alignment import describe_failure_reason
from dmarc_report_reader.classification import get_classification_display
from dmarc_report_reader.deserialization import read_report_file
from dmarc_report_reader.diagnosis import get_record_diagnosis
from dmarc_report_reader.errors import ReportError
from dmarc_report_reader.expiring_cache import ExpiringCache
from dmarc_report_reader.export import export_csv, report_to_dict
from dmarc_report_reader.filtering import (
    FilterState,
    SortType,
    StatusFilter,
    filter_records,
    sort_records,
)
from dmarc_report_reader.ip_lookup import (
    GeoData,
    IpLookup,
    IpLookupConfig,
    format_isp,
    format_location,
)
from dmarc_report_reader.logging import configure_logging
from dmarc_report_reader.pipeline import AnalyzedReport, analyze_report, apply_geo_data
from dmarc_report_reader.report import AnnotatedRecord, Classification

logger = structlog.get_logger()

OUTPUT_FORMATS = ("text", "json", "csv")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dmarc-report-reader",
        description="Read DMARC aggregate reports, check SPF and DKIM alignment "
        "and tell likely spoofing apart from misconfigured legitimate senders.",
    )
    parser.add_argument(
        "files", nargs="+", type=Path, help="Report files (.xml, .gz, .zip, .eml)"
    )
    parser.add_argument(
        "--configuration",
        type=argparse.FileType("r"),
        default=None,
        help="Configuration file",
    )
    parser.add_argument(
        "--debug",
        default=False,
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--lookup-ips",
        default=False,
        action="store_true",
        help="Look up geolocation and provider of source IPs (uses ip-api.com)",
    )
    parser.add_argument(
        "--format", choices=OUTPUT_FORMATS, default="text", help="Output format"
    )
    parser.add_argument(
        "--output",
        type=argparse.FileType("w"),
        default="-",
        help="Output file, standard output by default",
    )
    parser.add_argument(
        "--sort",
        choices=[s.value for s in SortType],
        default=SortType.COUNT_DESC.value,
        help="Record order",
    )

    filters = parser.add_argument_group("filters")
    filters.add_argument(
        "--status", choices=[s.value for s in StatusFilter], default="all"
    )
    filters.add_argument("--domain", default="", help="Header From contains")
    filters.add_argument("--ip", default="", help="Source IP prefix or CIDR")
    filters.add_argument("--country", default="", help="Two-letter country code")
    filters.add_argument("--min-count", type=int, default=0)
    filters.add_argument("--hostname", default="", help="Reverse DNS contains")
    filters.add_argument(
        "--classification", choices=[c.value for c in Classification], default=None
    )
    filters.add_argument("--provider", default="", help="Provider id, e.g. sendgrid")
    return parser


def main(argv: Sequence[str]) -> int:
    args = _build_parser().parse_args(argv)

    configuration = {}
    if args.configuration:
        configuration = json.load(args.configuration)
        args.configuration.close()

    configure_logging(configuration.get("logging", {}), debug=args.debug)

    ip_lookup_config = IpLookupConfig(**configuration.get("ip_lookup", {}))
    if args.lookup_ips:
        ip_lookup_config = replace(ip_lookup_config, enabled=True)
    ip_lookup = None
    if ip_lookup_config.enabled:
        ip_lookup = IpLookup.from_config(
            ip_lookup_config, ExpiringCache(ip_lookup_config.cache_ttl_seconds)
        )

    app = App(
        ip_lookup=ip_lookup,
        filter_state=FilterState(
            status=StatusFilter(args.status),
            domain=args.domain,
            ip=args.ip,
            country=args.country.upper(),
            min_count=args.min_count,
            hostname=args.hostname,
            classification=Classification(args.classification)
            if args.classification
            else None,
            provider=args.provider,
        ),
        sort_type=SortType(args.sort),
        output_format=args.format,
    )
    try:
        return app.run(args.files, args.output)
    finally:
        if args.output is not sys.stdout:
            args.output.close()


def run():
    sys.exit(main(sys.argv[1:]))


class App:
    def __init__(
        self,
        *,
        ip_lookup: Optional[IpLookup] = None,
        filter_state: Optional[FilterState] = None,
        sort_type: SortType = SortType.COUNT_DESC,
        output_format: str = "text",
    ):
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(f"unsupported output format: {output_format}")
        self.ip_lookup = ip_lookup
        self.filter_state = filter_state or FilterState()
        self.sort_type = sort_type
        self.output_format = output_format
        self._seen_reports: Set[Tuple[str, str]] = set()

    def run(self, paths: Sequence[Path], output: TextIO) -> int:
        analyzed = self.analyze_files(paths)
        if not analyzed:
            logger.error("no_report_read", files=[str(p) for p in paths])
            return 1

        geo_map: Dict[str, GeoData] = {}
        if self.ip_lookup:
            geo_map = self.ip_lookup.lookup_many(
                ip for report in analyzed for ip in report.source_ips
            )
            analyzed = [apply_geo_data(report, geo_map) for report in analyzed]

        self.write(analyzed, geo_map, output)
        return 0

    def analyze_files(self, paths: Sequence[Path]) -> List[AnalyzedReport]:
        analyzed = []
        for path in paths:
            try:
                reports = read_report_file(path)
            except (ReportError, OSError) as err:
                logger.warning(
                    "failed_to_read_report",
                    path=str(path),
                    error=str(err),
                    exc_info=err,
                )
                continue
            for report in reports:
                metadata = report.metadata
                if metadata and metadata.org_name and metadata.report_id:
                    key = (metadata.org_name, metadata.report_id)
                    if key in self._seen_reports:
                        logger.info(
                            "skipping_duplicate_report",
                            path=str(path),
                            org_name=key[0],
                            report_id=key[1],
                        )
                        continue
                    self._seen_reports.add(key)
                analyzed.append(analyze_report(report))
        return analyzed

    def select_records(self, analyzed: AnalyzedReport, geo_map: Dict[str, GeoData]):
        return sort_records(
            filter_records(analyzed.records, self.filter_state, geo_map),
            self.sort_type,
        )

    def write(
        self,
        analyzed: Sequence[AnalyzedReport],
        geo_map: Dict[str, GeoData],
        output: TextIO,
    ):
        if self.output_format == "json":
            documents = [
                report_to_dict(
                    report,
                    self.select_records(report, geo_map),
                    self.filter_state,
                    calculate_analysis(report.records, geo_map),
                )
                for report in analyzed
            ]
            json.dump(documents, output, indent=2)
            output.write("\n")
        elif self.output_format == "csv":
            records = [
                record
                for report in analyzed
                for record in self.select_records(report, geo_map)
            ]
            output.write(export_csv(records, geo_map))
        else:
            for report in analyzed:
                output.write(
                    render_text(
                        report, self.select_records(report, geo_map), geo_map
                    )
                )


def render_text(
    analyzed: AnalyzedReport,
    records: Sequence[AnnotatedRecord],
    geo_map: Dict[str, GeoData],
) -> str:
    report = analyzed.report
    metadata = report.metadata
    policy = report.policy
    summary = analyzed.summary
    readiness = analyzed.enforcement_readiness

    lines = []
    if metadata:
        lines.append(f"Report {metadata.report_id or '-'} from {metadata.org_name or '-'}")
        if metadata.date_range and metadata.date_range.begin and metadata.date_range.end:
            lines.append(
                f"Period: {metadata.date_range.begin:%Y-%m-%d %H:%M} to "
                f"{metadata.date_range.end:%Y-%m-%d %H:%M} UTC"
            )
    if policy:
        lines.append(
            f"Policy: {policy.domain or '-'} "
            f"p={policy.policy.value if policy.policy else '-'} "
            f"sp={policy.subdomain_policy.value if policy.subdomain_policy else '-'} "
            f"pct={policy.effective_percentage} "
            f"adkim={policy.adkim.value if policy.adkim else 'r'} "
            f"aspf={policy.aspf.value if policy.aspf else 'r'}"
        )
    lines.append(
        f"Messages: {summary.total_messages}, DMARC pass: {summary.dmarc_aligned} "
        f"({summary.dmarc_pass_rate:.1f}%), DKIM pass: {summary.dkim_pass_rate:.1f}%, "
        f"SPF pass: {summary.spf_pass_rate:.1f}%, quarantined: {summary.quarantined}, "
        f"rejected: {summary.rejected}"
    )
    lines.append(f"Enforcement readiness: {readiness.status_text}")
    lines.append(f"  {readiness.recommendation}")
    lines.append("")

    for record in records:
        alignment = record.alignment
        status = "pass" if alignment.dmarc_pass else "FAIL"
        line = (
            f"{record.source_ip or '-':<39} {record.count:>7} {status:<4} "
            f"{record.record.header_from or '-'}"
        )
        geo = geo_map.get(record.source_ip or "")
        if geo:
            line += f" [{format_location(geo)}, {format_isp(geo)}]"
        lines.append(line)
        if alignment.dmarc_pass:
            continue
        lines.append(f"    {describe_failure_reason(alignment.primary_failure_reason)}")
        if record.classification:
            display = get_classification_display(record.classification.classification)
            lines.append(
                f"    {display.label} ({record.classification.confidence}%)"
            )
        if record.provider and record.provider.is_known:
            lines.append(f"    Provider: {record.provider.name}")
        for diagnosis in get_record_diagnosis(record, policy):
            lines.append(f"    - {diagnosis.title}")
    lines.append("")
    return "\n".join(lines)
