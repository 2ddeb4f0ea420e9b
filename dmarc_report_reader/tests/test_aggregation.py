import pytest

from dmarc_report_reader.aggregation import (
    ReadinessStatus,
    calculate_analysis,
    calculate_enforcement_readiness,
    get_unique_ip_count,
    summarize,
)
from dmarc_report_reader.ip_lookup import GeoData
from dmarc_report_reader.report import Disposition, PublishedPolicy
from dmarc_report_reader.tests.sample_records import annotate, make_record

NONE_POLICY = PublishedPolicy(domain="example.com", policy=Disposition.NONE_VALUE)
QUARANTINE_POLICY = PublishedPolicy(
    domain="example.com", policy=Disposition.QUARANTINE
)
REJECT_POLICY = PublishedPolicy(domain="example.com", policy=Disposition.REJECT)


def passing(count, source_ip="192.0.2.1"):
    return annotate(
        make_record(
            source_ip=source_ip,
            count=count,
            dkim=[("example.com", "pass")],
            evaluated_dkim="pass",
            evaluated_spf="pass",
        )
    )


def failing(count, source_ip="198.51.100.1", header_from="example.com"):
    return annotate(
        make_record(
            source_ip=source_ip,
            count=count,
            header_from=header_from,
            spf=[("evil.net", "fail")],
            evaluated_dkim="fail",
            evaluated_spf="fail",
            disposition=Disposition.QUARANTINE,
        )
    )


def test_summary_counts_messages():
    records = [
        passing(90),
        failing(8),
        annotate(make_record(count=2, evaluated_dkim="pass", evaluated_spf="fail")),
    ]
    summary = summarize(records)

    assert summary.total_messages == 100
    assert (summary.passed_dkim, summary.failed_dkim) == (92, 8)
    assert (summary.passed_spf, summary.failed_spf) == (90, 10)
    assert (summary.passed_both, summary.failed_both) == (90, 8)
    assert summary.quarantined == 8
    assert summary.rejected == 0
    assert (summary.dmarc_aligned, summary.dmarc_failed) == (90, 10)
    assert summary.dkim_pass_rate == pytest.approx(92)
    assert summary.overall_pass_rate == pytest.approx(90)
    assert summary.dmarc_pass_rate == pytest.approx(90)


def test_summary_of_no_records():
    summary = summarize([])
    assert summary.total_messages == 0
    assert summary.dkim_pass_rate == 0
    assert summary.spf_pass_rate == 0
    assert summary.dmarc_pass_rate == 0


@pytest.mark.parametrize(
    "records,policy,status,status_text",
    [
        ([passing(100)], NONE_POLICY, ReadinessStatus.SAFE, "Ready for Quarantine"),
        (
            [passing(98), failing(2)],
            QUARANTINE_POLICY,
            ReadinessStatus.SAFE,
            "Ready for Reject",
        ),
        (
            [passing(90), failing(10)],
            NONE_POLICY,
            ReadinessStatus.CAUTION,
            "Proceed with Caution",
        ),
        ([passing(89), failing(11)], NONE_POLICY, ReadinessStatus.NOT_READY, "Not Ready"),
        (
            [passing(10), failing(90)],
            REJECT_POLICY,
            ReadinessStatus.NONE_VALUE,
            "Maximum Enforcement",
        ),
        (
            [passing(100)],
            REJECT_POLICY,
            ReadinessStatus.NONE_VALUE,
            "Maximum Enforcement",
        ),
        ([], None, ReadinessStatus.NOT_READY, "Not Ready"),
    ],
)
def test_enforcement_readiness_status(records, policy, status, status_text):
    readiness = calculate_enforcement_readiness(records, policy)
    assert readiness.status is status
    assert readiness.status_text == status_text


def test_enforcement_readiness_counts():
    readiness = calculate_enforcement_readiness(
        [passing(90), failing(6), failing(4, source_ip="198.51.100.2")], NONE_POLICY
    )
    assert readiness.current_policy is Disposition.NONE_VALUE
    assert readiness.total_messages == 100
    assert readiness.aligned_messages == 90
    assert readiness.failing_sources == 2
    assert readiness.failing_messages == 10
    assert readiness.aligned_percent == 90


def test_aligned_percent_rounds_half_up():
    readiness = calculate_enforcement_readiness(
        [passing(195), failing(5)], NONE_POLICY
    )
    assert readiness.aligned_percent == 98
    assert readiness.status is ReadinessStatus.SAFE


def test_caution_recommendation_depends_on_number_of_failing_sources():
    few = calculate_enforcement_readiness(
        [passing(95)] + [failing(1) for _ in range(3)], NONE_POLICY
    )
    many = calculate_enforcement_readiness(
        [passing(95)] + [failing(1) for _ in range(4)], NONE_POLICY
    )
    assert "only 3 failing source(s)" in few.recommendation
    assert "4 different sources are failing" in many.recommendation


def test_not_ready_recommendation_mentions_failing_messages():
    readiness = calculate_enforcement_readiness(
        [passing(8900), failing(1100)], NONE_POLICY
    )
    assert readiness.aligned_percent == 89
    assert "1,100 message(s)" in readiness.recommendation


def test_calculate_analysis():
    records = [
        passing(50, source_ip="192.0.2.1"),
        passing(20, source_ip="192.0.2.2"),
        failing(30, source_ip="192.0.2.2", header_from="example.org"),
        failing(5, source_ip="198.51.100.1"),
    ]
    geo_map = {
        "192.0.2.1": GeoData(
            ip="192.0.2.1", country="Germany", country_code="DE", asn="AS1 One"
        ),
        "192.0.2.2": GeoData(
            ip="192.0.2.2", country="France", country_code="FR", asn="AS1 One"
        ),
        "198.51.100.1": GeoData.failed("198.51.100.1"),
    }

    analysis = calculate_analysis(records, geo_map)

    assert [(s.ip, s.count) for s in analysis.top_senders] == [
        ("192.0.2.1", 50),
        ("192.0.2.2", 50),
        ("198.51.100.1", 5),
    ]
    assert analysis.top_senders[0].geo == geo_map["192.0.2.1"]
    assert analysis.top_failures == [("example.org", 30), ("example.com", 5)]
    assert [(c.code, c.count) for c in analysis.top_countries] == [
        ("DE", 50),
        ("FR", 50),
    ]
    assert analysis.top_asns == [("AS1 One", 100)]


def test_calculate_analysis_limits_results():
    records = [passing(i + 1, source_ip=f"192.0.2.{i}") for i in range(15)]
    analysis = calculate_analysis(records)
    assert len(analysis.top_senders) == 10
    assert analysis.top_senders[0].count == 15
    assert analysis.top_countries == []


def test_get_unique_ip_count():
    records = [
        passing(1, "192.0.2.1"),
        failing(1, "192.0.2.1"),
        passing(1, "192.0.2.2"),
        annotate(make_record(source_ip=None)),
    ]
    assert get_unique_ip_count(records) == 2
