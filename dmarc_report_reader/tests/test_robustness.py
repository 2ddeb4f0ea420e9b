from dmarc_report_reader.report import (
    AuthResults,
    Confidence,
    DkimAuthResult,
    Record,
    ReportMetadata,
    SpfAuthResult,
)
from dmarc_report_reader.robustness import (
    compute_robustness_signals,
    find_known_receiver,
)
from dmarc_report_reader.tests.sample_records import make_record

GOOGLE = ReportMetadata(
    org_name="google.com", email="noreply-dmarc-support@google.com"
)


def test_complete_record_has_high_confidence():
    record = make_record(
        dkim=[("example.com", "pass")], spf=[("example.com", "pass")]
    )
    signals = compute_robustness_signals(record, None)
    assert signals.confidence is Confidence.HIGH
    assert not signals.missing_auth_results
    assert not signals.incomplete_dkim
    assert not signals.incomplete_spf
    assert signals.receiver_name is None
    assert signals.receiver_quirks == ()


def test_missing_auth_results_lower_confidence():
    signals = compute_robustness_signals(Record(count=1), None)
    assert signals.missing_auth_results
    assert signals.confidence is Confidence.LOW


def test_results_without_domain_are_incomplete():
    record = make_record(dkim=[(None, "pass")], spf=[("example.com", "pass")])
    signals = compute_robustness_signals(record, None)
    assert signals.incomplete_dkim
    assert not signals.incomplete_spf
    assert signals.confidence is Confidence.MEDIUM

    record = make_record(spf=[("", "fail")])
    assert compute_robustness_signals(record, None).incomplete_spf


def test_entries_without_result_are_not_incomplete():
    record = Record(
        count=1,
        auth_results=AuthResults(
            dkim=(DkimAuthResult(domain=None, result=None),),
            spf=(SpfAuthResult(domain=None, result=None),),
        ),
    )
    signals = compute_robustness_signals(record, None)
    assert not signals.missing_auth_results
    assert not signals.incomplete_dkim
    assert signals.confidence is Confidence.HIGH


def test_known_receiver_from_report_metadata():
    signals = compute_robustness_signals(make_record(), GOOGLE)
    assert signals.receiver_name == "Google"
    assert len(signals.receiver_quirks) > 0


def test_find_known_receiver():
    assert find_known_receiver("dmarcreport@microsoft.com").name == "Microsoft"
    assert find_known_receiver("DMARC@Outlook.com").name == "Microsoft"
    assert find_known_receiver("dmarc_support@corp.mail.ru").name == "Mail.ru"
    assert find_known_receiver("reports@example.org") is None
    assert find_known_receiver(None) is None
