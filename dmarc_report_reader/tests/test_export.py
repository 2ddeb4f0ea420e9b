import csv
import io
import json
from datetime import datetime, timezone

import pytest

from dmarc_report_reader.aggregation import calculate_analysis
from dmarc_report_reader.export import CSV_COLUMNS, export_csv, export_json, report_to_dict
from dmarc_report_reader.filtering import FilterState, StatusFilter, filter_records
from dmarc_report_reader.ip_lookup import GeoData
from dmarc_report_reader.pipeline import analyze_report
from dmarc_report_reader.report import (
    DateRange,
    Disposition,
    Report,
    ReportMetadata,
)
from dmarc_report_reader.tests.sample_records import DEFAULT_POLICY, make_record

EXPORTED_AT = datetime(2021, 1, 1, tzinfo=timezone.utc)

GEO_MAP = {
    "192.0.2.1": GeoData(
        ip="192.0.2.1",
        country="Germany",
        country_code="DE",
        city="Berlin",
        asn="AS64500 Example",
        hostname="mail.example.com",
    ),
}


@pytest.fixture(name="analyzed")
def fixture_analyzed():
    return analyze_report(
        Report(
            version="1.0",
            metadata=ReportMetadata(
                org_name="google.com",
                report_id="12598866915817748661",
                date_range=DateRange(
                    datetime(2020, 12, 7, tzinfo=timezone.utc),
                    datetime(2020, 12, 7, 23, 59, 59, tzinfo=timezone.utc),
                ),
            ),
            policy=DEFAULT_POLICY,
            records=(
                make_record(
                    source_ip="192.0.2.1",
                    count=9,
                    envelope_from="example.com",
                    dkim=[("example.com", "pass"), ("esp.net", "pass")],
                    spf=[("example.com", "pass")],
                    evaluated_dkim="pass",
                    evaluated_spf="pass",
                ),
                make_record(
                    source_ip="198.51.100.1",
                    count=1,
                    spf=[("evil.net", "fail")],
                    evaluated_dkim="fail",
                    evaluated_spf="fail",
                    disposition=Disposition.QUARANTINE,
                ),
            ),
        )
    )


def test_report_to_dict(analyzed):
    data = report_to_dict(analyzed, exported_at=EXPORTED_AT)

    assert data["version"] == "1.0"
    assert data["report_metadata"]["org_name"] == "google.com"
    assert data["report_metadata"]["date_range"]["begin"] == "2020-12-07T00:00:00+00:00"
    assert data["policy_published"]["domain"] == "example.com"
    assert data["policy_published"]["policy"] == "none"
    assert data["summary"]["total_messages"] == 10
    assert data["summary"]["dmarc_pass_rate"] == pytest.approx(90)
    assert data["enforcement_readiness"]["status"] == "caution"
    assert len(data["records"]) == 2
    assert data["records"][0]["alignment"]["dmarc_pass"] is True
    assert data["records"][0]["record"]["auth_results"]["dkim"][1]["domain"] == "esp.net"
    assert data["records"][1]["classification"]["classification"] == "likely_spoof"
    assert data["export_metadata"] == {
        "exported_at": "2021-01-01T00:00:00+00:00",
        "total_records": 2,
        "filtered_records": 2,
        "filters_applied": False,
        "filter_state": None,
    }
    assert "analysis" not in data


def test_report_to_dict_with_filtered_records(analyzed):
    state = FilterState(status=StatusFilter.FAIL)
    records = filter_records(analyzed.records, state)

    data = report_to_dict(
        analyzed,
        records,
        state,
        calculate_analysis(records, GEO_MAP),
        exported_at=EXPORTED_AT,
    )

    assert [r["record"]["source_ip"] for r in data["records"]] == ["198.51.100.1"]
    metadata = data["export_metadata"]
    assert metadata["total_records"] == 2
    assert metadata["filtered_records"] == 1
    assert metadata["filters_applied"] is True
    assert metadata["filter_state"]["status"] == "fail"
    assert data["analysis"]["top_sending_ips"] == [
        {"ip": "198.51.100.1", "count": 1, "location": None}
    ]
    assert data["analysis"]["top_failing_domains"] == [
        {"domain": "example.com", "count": 1}
    ]


def test_export_json_is_valid_json(analyzed):
    exported = export_json(
        analyzed, analysis=calculate_analysis(analyzed.records, GEO_MAP)
    )
    data = json.loads(exported)
    assert data["analysis"]["top_countries"] == [
        {"code": "DE", "name": "Germany", "count": 9}
    ]
    assert data["analysis"]["top_asns"] == [{"asn": "AS64500 Example", "count": 9}]
    assert exported.startswith("{\n  ")


def test_export_csv(analyzed):
    exported = export_csv(analyzed.records, GEO_MAP)

    lines = exported.splitlines()
    assert lines[0] == ",".join(f'"{column}"' for column in CSV_COLUMNS)
    rows = list(csv.DictReader(io.StringIO(exported)))
    assert rows == [
        {
            "Source IP": "192.0.2.1",
            "Hostname": "mail.example.com",
            "Country": "Germany",
            "City": "Berlin",
            "ISP/ASN": "AS64500 Example",
            "Count": "9",
            "Disposition": "none",
            "DKIM Result": "pass",
            "SPF Result": "pass",
            "Header From": "example.com",
            "Envelope From": "example.com",
            "DKIM Signing Domain": "example.com; esp.net",
            "SPF Checked Domain": "example.com",
            "Pass/Fail": "PASS",
        },
        {
            "Source IP": "198.51.100.1",
            "Hostname": "",
            "Country": "",
            "City": "",
            "ISP/ASN": "",
            "Count": "1",
            "Disposition": "quarantine",
            "DKIM Result": "fail",
            "SPF Result": "fail",
            "Header From": "example.com",
            "Envelope From": "",
            "DKIM Signing Domain": "",
            "SPF Checked Domain": "evil.net",
            "Pass/Fail": "FAIL",
        },
    ]


def test_export_csv_marks_partial_passes():
    record = analyze_report(
        Report(records=(make_record(evaluated_dkim="pass", evaluated_spf="fail"),))
    ).records
    assert export_csv(record).splitlines()[1].endswith('"PARTIAL"')


def test_export_csv_quotes_values():
    records = analyze_report(
        Report(records=(make_record(header_from='evil "quoted", inc'),))
    ).records
    rows = list(csv.DictReader(io.StringIO(export_csv(records))))
    assert rows[0]["Header From"] == 'evil "quoted", inc'
