"""Heuristic classification of failing records.

Each signal adds fixed weights to a spoof score and a misconfiguration
score. The larger score decides the label, the difference and the total
decide the confidence.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

from dmarc_report_reader.report import (
    RESULT_SOFTFAIL,
    AnnotatedRecord,
    Classification,
    ClassificationResult,
    ProviderInfo,
)

HIGH_VOLUME_THRESHOLD = 100
MAX_CONFIDENCE = 90
TIE_BREAK_MIN_SCORE = 3
MIN_TOTAL_SCORE = 2


class Signal(Enum):
    BOTH_AUTH_FAIL = "both_auth_fail"
    DKIM_PASS_SPF_FAIL = "dkim_pass_spf_fail"
    SPF_PASS_DKIM_FAIL = "spf_pass_dkim_fail"
    SPF_SOFTFAIL = "spf_softfail"
    KNOWN_ESP = "known_esp"
    ALIGNMENT_ONLY_FAIL = "alignment_only_fail"
    HIGH_VOLUME_FAIL = "high_volume_fail"
    SINGLE_MESSAGE = "single_message"


@dataclass(frozen=True)
class SignalWeight:
    spoof: int
    misconfig: int


SIGNAL_WEIGHTS: Mapping[Signal, SignalWeight] = {
    Signal.BOTH_AUTH_FAIL: SignalWeight(spoof=3, misconfig=0),
    Signal.DKIM_PASS_SPF_FAIL: SignalWeight(spoof=0, misconfig=2),
    Signal.SPF_PASS_DKIM_FAIL: SignalWeight(spoof=0, misconfig=2),
    Signal.SPF_SOFTFAIL: SignalWeight(spoof=0, misconfig=1),
    Signal.KNOWN_ESP: SignalWeight(spoof=0, misconfig=3),
    Signal.ALIGNMENT_ONLY_FAIL: SignalWeight(spoof=0, misconfig=2),
    Signal.HIGH_VOLUME_FAIL: SignalWeight(spoof=1, misconfig=0),
    Signal.SINGLE_MESSAGE: SignalWeight(spoof=0, misconfig=1),
}


@dataclass
class _Scores:
    spoof: int = 0
    misconfig: int = 0
    signals: List[str] = field(default_factory=list)

    def add(self, signal: Signal, explanation: str):
        weight = SIGNAL_WEIGHTS[signal]
        self.spoof += weight.spoof
        self.misconfig += weight.misconfig
        self.signals.append(explanation)


def _confidence(winning: int, losing: int) -> int:
    total = winning + losing
    return max(0, min(MAX_CONFIDENCE, 40 + (winning - losing) * 15 + total * 5))


def determine_classification(
    spoof_score: int,
    misconfig_score: int,
    signals: Iterable[str],
    dmarc_pass: bool,
) -> ClassificationResult:
    signals = list(signals)
    if dmarc_pass:
        return ClassificationResult(
            Classification.UNKNOWN, 0, ("DMARC passed - no classification needed",)
        )

    total_score = spoof_score + misconfig_score
    if total_score < MIN_TOTAL_SCORE:
        return ClassificationResult(
            Classification.UNKNOWN,
            0,
            tuple(signals) or ("Insufficient signals for classification",),
        )

    if spoof_score > misconfig_score:
        return ClassificationResult(
            Classification.LIKELY_SPOOF,
            _confidence(spoof_score, misconfig_score),
            tuple(signals),
        )
    if misconfig_score > spoof_score:
        return ClassificationResult(
            Classification.LIKELY_MISCONFIG,
            _confidence(misconfig_score, spoof_score),
            tuple(signals),
        )
    if total_score >= TIE_BREAK_MIN_SCORE:
        # Ties favour the less alarming label.
        signals.append("Tie-breaker: assuming misconfiguration (safer assumption)")
        return ClassificationResult(
            Classification.LIKELY_MISCONFIG, 40, tuple(signals)
        )
    return ClassificationResult(Classification.UNKNOWN, 0, tuple(signals))


def classify_record(
    record: AnnotatedRecord, provider_info: Optional[ProviderInfo] = None
) -> ClassificationResult:
    alignment = record.alignment
    if alignment.dmarc_pass:
        return determine_classification(0, 0, (), True)

    scores = _Scores()
    spf_results = record.record.auth_results.spf
    spf_result = spf_results[0].result if spf_results else None
    count = record.count

    if not alignment.spf_passed and not alignment.dkim_passed:
        scores.add(Signal.BOTH_AUTH_FAIL, "No authentication passed")
    if alignment.dkim_passed and not alignment.spf_passed:
        scores.add(
            Signal.DKIM_PASS_SPF_FAIL,
            "DKIM passed but SPF failed (common with third-party senders)",
        )
    if alignment.spf_passed and not alignment.dkim_passed:
        scores.add(
            Signal.SPF_PASS_DKIM_FAIL,
            "SPF passed but DKIM failed (possible DKIM signing issue)",
        )
    if spf_result == RESULT_SOFTFAIL:
        scores.add(
            Signal.SPF_SOFTFAIL, "SPF softfail indicates transitional configuration"
        )
    if provider_info is not None and provider_info.is_known:
        scores.add(Signal.KNOWN_ESP, f"Sent via known provider: {provider_info.name}")
    if alignment.spf_passed or alignment.dkim_passed:
        scores.add(
            Signal.ALIGNMENT_ONLY_FAIL, "Authentication passed but alignment failed"
        )
    if count > HIGH_VOLUME_THRESHOLD:
        scores.add(
            Signal.HIGH_VOLUME_FAIL,
            f"High volume ({count}) of unauthenticated messages",
        )
    if count == 1:
        scores.add(
            Signal.SINGLE_MESSAGE, "Single message failure (likely one-off issue)"
        )

    return determine_classification(
        scores.spoof, scores.misconfig, scores.signals, alignment.dmarc_pass
    )


def classify_records(
    records: Iterable[AnnotatedRecord],
    provider_map: Optional[Mapping[str, ProviderInfo]] = None,
) -> List[AnnotatedRecord]:
    provider_map = provider_map or {}
    classified = []
    for record in records:
        provider = provider_map.get(record.source_ip or "")
        classified.append(
            replace(record, classification=classify_record(record, provider))
        )
    return classified


@dataclass
class ClassificationCount:
    count: int = 0
    messages: int = 0


@dataclass
class ClassificationStats:
    total_failing: int = 0
    by_classification: Dict[Classification, ClassificationCount] = field(
        default_factory=lambda: {c: ClassificationCount() for c in Classification}
    )

    def update(self, record: AnnotatedRecord):
        self.total_failing += 1
        classification = (
            record.classification.classification
            if record.classification
            else Classification.UNKNOWN
        )
        entry = self.by_classification[classification]
        entry.count += 1
        entry.messages += record.count


def get_classification_stats(records: Iterable[AnnotatedRecord]) -> ClassificationStats:
    stats = ClassificationStats()
    for record in records:
        if not record.alignment.dmarc_pass:
            stats.update(record)
    return stats


@dataclass(frozen=True)
class ClassificationDisplay:
    label: str
    description: str


CLASSIFICATION_DISPLAY: Mapping[Classification, ClassificationDisplay] = {
    Classification.LIKELY_SPOOF: ClassificationDisplay(
        "Likely Spoof", "This record has characteristics of a spoofing attempt"
    ),
    Classification.LIKELY_MISCONFIG: ClassificationDisplay(
        "Likely Misconfig",
        "This record appears to be from a legitimate sender with configuration issues",
    ),
    Classification.UNKNOWN: ClassificationDisplay(
        "Unknown", "Insufficient information to classify this record"
    ),
}


def get_classification_display(
    classification: Optional[Classification],
) -> ClassificationDisplay:
    if classification is None:
        return CLASSIFICATION_DISPLAY[Classification.UNKNOWN]
    return CLASSIFICATION_DISPLAY[classification]
