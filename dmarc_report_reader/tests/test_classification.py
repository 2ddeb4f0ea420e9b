import pytest

from dmarc_report_reader.classification import (
    SIGNAL_WEIGHTS,
    Signal,
    classify_record,
    classify_records,
    determine_classification,
    get_classification_display,
    get_classification_stats,
)
from dmarc_report_reader.report import (
    UNKNOWN_PROVIDER,
    Classification,
    ClassificationResult,
    ProviderInfo,
)
from dmarc_report_reader.tests.sample_records import annotate, make_record

SENDGRID = ProviderInfo(id="sendgrid", name="SendGrid", category="transactional")


def test_every_signal_has_weights():
    assert set(SIGNAL_WEIGHTS) == set(Signal)


def test_passing_record_is_not_classified():
    record = annotate(
        make_record(count=500, dkim=[("example.com", "pass")], spf=[("x.net", "fail")])
    )
    assert classify_record(record, SENDGRID) == ClassificationResult(
        Classification.UNKNOWN, 0, ("DMARC passed - no classification needed",)
    )


def test_high_volume_unauthenticated_mail_is_likely_spoof():
    record = annotate(
        make_record(count=500, dkim=[("evil.net", "fail")], spf=[("evil.net", "fail")])
    )
    result = classify_record(record, UNKNOWN_PROVIDER)
    assert result.classification is Classification.LIKELY_SPOOF
    # spoof 3 + 1, misconfig 0
    assert result.confidence == min(90, 40 + 4 * 15 + 4 * 5)
    assert "No authentication passed" in result.signals


def test_dkim_pass_via_known_provider_is_likely_misconfig():
    record = annotate(
        make_record(
            count=20,
            dkim=[("sendgrid.net", "pass")],
            spf=[("sendgrid.net", "fail")],
        )
    )
    result = classify_record(record, SENDGRID)
    assert result.classification is Classification.LIKELY_MISCONFIG
    assert result.confidence == 90
    assert "Sent via known provider: SendGrid" in result.signals


def test_softfail_counts_towards_misconfig():
    record = annotate(
        make_record(count=5, spf=[("example.com", "softfail")], dkim=[])
    )
    result = classify_record(record)
    # spoof 3 (both failed), misconfig 1 (softfail)
    assert result.classification is Classification.LIKELY_SPOOF
    assert result.confidence == 40 + 2 * 15 + 4 * 5
    assert len(result.signals) == 2


def test_single_message_failure():
    record = annotate(make_record(count=1, spf=[("evil.net", "fail")]))
    result = classify_record(record)
    assert result.classification is Classification.LIKELY_SPOOF
    assert "Single message failure (likely one-off issue)" in result.signals


def test_unknown_provider_adds_no_signal():
    record = annotate(make_record(count=5, spf=[("esp.net", "pass")]))
    assert classify_record(record, UNKNOWN_PROVIDER) == classify_record(record, None)


def test_classification_is_idempotent():
    record = annotate(make_record(count=50, dkim=[("esp.net", "pass")]))
    assert classify_record(record, SENDGRID) == classify_record(record, SENDGRID)


def test_too_few_signals_are_unknown():
    result = determine_classification(1, 0, ["something"], False)
    assert result.classification is Classification.UNKNOWN
    assert result.confidence == 0
    assert result.signals == ("something",)

    result = determine_classification(0, 0, [], False)
    assert result.signals == ("Insufficient signals for classification",)


def test_ties_are_resolved_towards_misconfig():
    result = determine_classification(3, 3, ["a", "b"], False)
    assert result.classification is Classification.LIKELY_MISCONFIG
    assert result.confidence == 40
    assert result.signals[-1].startswith("Tie-breaker")


def test_small_ties_stay_unknown():
    result = determine_classification(1, 1, ["a", "b"], False)
    assert result.classification is Classification.UNKNOWN
    assert result.confidence == 0


@pytest.mark.parametrize(
    "spoof,misconfig,expected",
    [(2, 0, 80), (3, 1, 90), (0, 3, 90), (1, 2, 70)],
)
def test_confidence(spoof, misconfig, expected):
    assert determine_classification(spoof, misconfig, [], False).confidence == expected


def test_classify_records_uses_provider_of_source_ip():
    records = [
        annotate(make_record(source_ip="192.0.2.1", count=5, dkim=[("esp.net", "pass")])),
        annotate(make_record(source_ip="192.0.2.2", count=5, dkim=[("esp.net", "pass")])),
    ]
    classified = classify_records(records, {"192.0.2.1": SENDGRID})
    assert classified[0].classification == classify_record(records[0], SENDGRID)
    assert classified[1].classification == classify_record(records[1], None)
    assert records[0].classification is None


def test_classification_stats_count_failing_records():
    records = classify_records(
        [
            annotate(make_record(count=500, spf=[("evil.net", "fail")])),
            annotate(make_record(count=7, spf=[("evil.net", "fail")])),
            annotate(make_record(count=3, spf=[("example.com", "pass")])),
        ]
    )
    stats = get_classification_stats(records)
    assert stats.total_failing == 2
    spoof = stats.by_classification[Classification.LIKELY_SPOOF]
    assert (spoof.count, spoof.messages) == (2, 507)
    assert stats.by_classification[Classification.LIKELY_MISCONFIG].count == 0


def test_classification_display():
    assert get_classification_display(Classification.LIKELY_SPOOF).label == "Likely Spoof"
    assert get_classification_display(None).label == "Unknown"
