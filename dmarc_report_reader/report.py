from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple, Type, TypeVar

E = TypeVar("E", bound=Enum)

RESULT_PASS = "pass"
RESULT_FAIL = "fail"
RESULT_SOFTFAIL = "softfail"
RESULT_NEUTRAL = "neutral"
RESULT_NONE = "none"
RESULT_POLICY = "policy"
RESULT_TEMPERROR = "temperror"
RESULT_PERMERROR = "permerror"


class AlignmentMode(Enum):
    RELAXED = "r"
    STRICT = "s"


class Disposition(Enum):
    NONE_VALUE = "none"
    QUARANTINE = "quarantine"
    REJECT = "reject"


class OverrideReasonType(Enum):
    FORWARDED = "forwarded"
    SAMPLED_OUT = "sampled_out"
    TRUSTED_FORWARDER = "trusted_forwarder"
    MAILING_LIST = "mailing_list"
    LOCAL_POLICY = "local_policy"
    OTHER = "other"


class FailureReason(Enum):
    NONE_VALUE = "none"
    BOTH_AUTH_FAIL = "both_auth_fail"
    BOTH_MISALIGNED = "both_misaligned"
    SPF_FAIL_DKIM_MISALIGNED = "spf_fail_dkim_misaligned"
    SPF_MISALIGNED_DKIM_FAIL = "spf_misaligned_dkim_fail"
    SPF_MISALIGNED = "spf_misaligned"
    DKIM_MISALIGNED = "dkim_misaligned"
    UNKNOWN = "unknown"


class Confidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Classification(Enum):
    LIKELY_SPOOF = "likely_spoof"
    LIKELY_MISCONFIG = "likely_legit_misconfig"
    UNKNOWN = "unknown"


def parse_enum(enum_cls: Type[E], value: object) -> Optional[E]:
    """Map a raw report value onto ``enum_cls``, ``None`` if unrecognised."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return None
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        return None


def parse_alignment_mode(value: object) -> Optional[AlignmentMode]:
    if isinstance(value, AlignmentMode):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    if value.strip().lower() in ("s", "strict"):
        return AlignmentMode.STRICT
    return AlignmentMode.RELAXED


@dataclass(frozen=True)
class DateRange:
    begin: Optional[datetime]
    end: Optional[datetime]


@dataclass(frozen=True)
class ReportMetadata:
    org_name: Optional[str] = None
    email: Optional[str] = None
    report_id: Optional[str] = None
    date_range: Optional[DateRange] = None
    extra_contact_info: Optional[str] = None
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PublishedPolicy:
    domain: Optional[str] = None
    adkim: Optional[AlignmentMode] = None
    aspf: Optional[AlignmentMode] = None
    policy: Optional[Disposition] = None
    subdomain_policy: Optional[Disposition] = None
    percentage: Optional[int] = None
    failure_options: Optional[str] = None
    np_policy: Optional[Disposition] = None

    @property
    def effective_percentage(self) -> int:
        return 100 if self.percentage is None else self.percentage


@dataclass(frozen=True)
class DkimAuthResult:
    domain: Optional[str] = None
    result: Optional[str] = None
    selector: Optional[str] = None
    human_result: Optional[str] = None


@dataclass(frozen=True)
class SpfAuthResult:
    domain: Optional[str] = None
    result: Optional[str] = None
    scope: Optional[str] = None


@dataclass(frozen=True)
class AuthResults:
    dkim: Tuple[DkimAuthResult, ...] = ()
    spf: Tuple[SpfAuthResult, ...] = ()


@dataclass(frozen=True)
class Identifiers:
    header_from: Optional[str] = None
    envelope_from: Optional[str] = None
    envelope_to: Optional[str] = None


@dataclass(frozen=True)
class PolicyOverride:
    type: Optional[OverrideReasonType] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class PolicyEvaluated:
    disposition: Optional[Disposition] = None
    dkim: Optional[str] = None
    spf: Optional[str] = None
    reasons: Tuple[PolicyOverride, ...] = ()


@dataclass(frozen=True)
class Record:
    source_ip: Optional[str] = None
    count: int = 0
    policy_evaluated: Optional[PolicyEvaluated] = None
    identifiers: Optional[Identifiers] = None
    auth_results: AuthResults = field(default_factory=AuthResults)

    @property
    def header_from(self) -> Optional[str]:
        return self.identifiers.header_from if self.identifiers else None

    @property
    def envelope_from(self) -> Optional[str]:
        return self.identifiers.envelope_from if self.identifiers else None

    @property
    def disposition(self) -> Optional[Disposition]:
        return self.policy_evaluated.disposition if self.policy_evaluated else None

    @property
    def evaluated_dkim_pass(self) -> bool:
        return (
            self.policy_evaluated is not None
            and self.policy_evaluated.dkim == RESULT_PASS
        )

    @property
    def evaluated_spf_pass(self) -> bool:
        return (
            self.policy_evaluated is not None
            and self.policy_evaluated.spf == RESULT_PASS
        )


@dataclass(frozen=True)
class AlignmentResult:
    spf_passed: bool
    spf_aligned: bool
    spf_domain: Optional[str]
    dkim_passed: bool
    dkim_aligned: bool
    aligned_dkim_domain: Optional[str]
    dkim_domains: Tuple[str, ...]
    dmarc_pass: bool
    primary_failure_reason: FailureReason
    header_from: Optional[str]
    header_envelope_mismatch: bool


@dataclass(frozen=True)
class RobustnessSignals:
    missing_auth_results: bool = False
    incomplete_dkim: bool = False
    incomplete_spf: bool = False
    receiver_name: Optional[str] = None
    receiver_quirks: Tuple[str, ...] = ()
    confidence: Confidence = Confidence.HIGH


@dataclass(frozen=True)
class ClassificationResult:
    classification: Classification
    confidence: int
    signals: Tuple[str, ...]


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str
    category: Optional[str]

    @property
    def is_known(self) -> bool:
        return self.id != UNKNOWN_PROVIDER.id


UNKNOWN_PROVIDER = ProviderInfo(id="unknown", name="Unknown", category=None)


@dataclass(frozen=True)
class AnnotatedRecord:
    """A record together with everything the pipeline derived from it.

    ``alignment`` is computed when the record is read. The remaining fields
    are filled in by later stages; ``provider`` only once geolocation data
    for the source IP is available.
    """

    record: Record
    alignment: AlignmentResult
    robustness: Optional[RobustnessSignals] = None
    classification: Optional[ClassificationResult] = None
    provider: Optional[ProviderInfo] = None

    @property
    def count(self) -> int:
        return self.record.count

    @property
    def source_ip(self) -> Optional[str]:
        return self.record.source_ip


@dataclass(frozen=True)
class Report:
    metadata: Optional[ReportMetadata] = None
    policy: Optional[PublishedPolicy] = None
    records: Tuple[Record, ...] = ()
    version: Optional[str] = None
