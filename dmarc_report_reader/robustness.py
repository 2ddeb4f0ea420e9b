from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dmarc_report_reader.report import (
    Confidence,
    Record,
    ReportMetadata,
    RobustnessSignals,
)


@dataclass(frozen=True)
class KnownReceiver:
    name: str
    quirks: Tuple[str, ...]


# Matched as substrings of the report's contact e-mail, first match wins.
KNOWN_RECEIVERS: Mapping[str, KnownReceiver] = {
    "google.com": KnownReceiver(
        "Google",
        (
            "Reports are generated once per day in UTC",
            "May report SPF for the HELO identity when MAIL FROM is empty",
        ),
    ),
    "yahoo.com": KnownReceiver(
        "Yahoo",
        (
            "May omit envelope_from in identifiers",
            "Report date ranges may overlap between reports",
        ),
    ),
    "microsoft.com": KnownReceiver(
        "Microsoft",
        (
            "May omit auth_results",
            "Often reports policy_evaluated without override reasons",
        ),
    ),
    "outlook.com": KnownReceiver(
        "Microsoft",
        (
            "May omit auth_results",
            "Often reports policy_evaluated without override reasons",
        ),
    ),
    "hotmail.com": KnownReceiver(
        "Microsoft",
        ("May omit auth_results",),
    ),
    "mail.ru": KnownReceiver(
        "Mail.ru",
        ("May report DKIM results without a selector",),
    ),
    "yandex.ru": KnownReceiver(
        "Yandex",
        ("May report SPF results without a scope",),
    ),
}

_CONFIDENCE_ORDER = (Confidence.HIGH, Confidence.MEDIUM, Confidence.LOW)


def _lower_confidence(current: Confidence, new: Confidence) -> Confidence:
    return max(current, new, key=_CONFIDENCE_ORDER.index)


def find_known_receiver(email: Optional[str]) -> Optional[KnownReceiver]:
    if not email:
        return None
    email = email.lower()
    for domain, receiver in KNOWN_RECEIVERS.items():
        if domain in email:
            return receiver
    return None


def compute_robustness_signals(
    record: Record, metadata: Optional[ReportMetadata]
) -> RobustnessSignals:
    """Rate how far the report data for a record can be trusted.

    This says nothing about the authentication outcome, only about whether
    the receiver reported enough to evaluate it.
    """
    dkim = record.auth_results.dkim
    spf = record.auth_results.spf
    confidence = Confidence.HIGH

    missing_auth_results = len(dkim) == 0 and len(spf) == 0
    if missing_auth_results:
        confidence = _lower_confidence(confidence, Confidence.LOW)

    incomplete_dkim = any(d.result and not d.domain for d in dkim)
    incomplete_spf = any(s.result and not s.domain for s in spf)
    if incomplete_dkim or incomplete_spf:
        confidence = _lower_confidence(confidence, Confidence.MEDIUM)

    receiver = find_known_receiver(metadata.email if metadata else None)
    return RobustnessSignals(
        missing_auth_results=missing_auth_results,
        incomplete_dkim=incomplete_dkim,
        incomplete_spf=incomplete_spf,
        receiver_name=receiver.name if receiver else None,
        receiver_quirks=receiver.quirks if receiver else (),
        confidence=confidence,
    )
