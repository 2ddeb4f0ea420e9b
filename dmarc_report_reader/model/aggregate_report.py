"""Bindings for the RFC 7489 ``feedback`` aggregate report schema.

Enumerated values (dispositions, alignment modes, auth results, override
reasons) are bound as plain strings. Receivers do not stick to the schema's
enumerations and an unexpected value must not make the whole report
unreadable, so interpretation happens in :mod:`dmarc_report_reader.report`.
"""

from dataclasses import dataclass, field
from typing import List, Optional

__NAMESPACE__ = "http://dmarc.org/dmarc-xml/0.1"


def _element(*, required: bool = False):
    metadata = {"type": "Element", "namespace": ""}
    if required:
        metadata["required"] = True
    return field(default=None, metadata=metadata)


def _elements():
    return field(
        default_factory=list, metadata={"type": "Element", "namespace": ""}
    )


@dataclass
class DateRangeType:
    begin: Optional[int] = _element(required=True)
    end: Optional[int] = _element(required=True)


@dataclass
class ReportMetadataType:
    org_name: Optional[str] = _element(required=True)
    email: Optional[str] = _element(required=True)
    extra_contact_info: Optional[str] = _element()
    report_id: Optional[str] = _element(required=True)
    date_range: Optional[DateRangeType] = _element(required=True)
    error: List[str] = _elements()


@dataclass
class PolicyPublishedType:
    domain: Optional[str] = _element(required=True)
    adkim: Optional[str] = _element()
    aspf: Optional[str] = _element()
    p: Optional[str] = _element(required=True)
    sp: Optional[str] = _element()
    pct: Optional[int] = _element()
    fo: Optional[str] = _element()
    np: Optional[str] = _element()


@dataclass
class PolicyOverrideReason:
    type: Optional[str] = _element(required=True)
    comment: Optional[str] = _element()


@dataclass
class PolicyEvaluatedType:
    disposition: Optional[str] = _element(required=True)
    dkim: Optional[str] = _element(required=True)
    spf: Optional[str] = _element(required=True)
    reason: List[PolicyOverrideReason] = _elements()


@dataclass
class RowType:
    source_ip: Optional[str] = _element(required=True)
    count: Optional[int] = _element(required=True)
    policy_evaluated: Optional[PolicyEvaluatedType] = _element(required=True)


@dataclass
class IdentifierType:
    envelope_to: Optional[str] = _element()
    envelope_from: Optional[str] = _element()
    header_from: Optional[str] = _element(required=True)


@dataclass
class DkimauthResultType:
    class Meta:
        name = "DKIMAuthResultType"

    domain: Optional[str] = _element(required=True)
    selector: Optional[str] = _element()
    result: Optional[str] = _element(required=True)
    human_result: Optional[str] = _element()


@dataclass
class SpfauthResultType:
    class Meta:
        name = "SPFAuthResultType"

    domain: Optional[str] = _element(required=True)
    scope: Optional[str] = _element()
    result: Optional[str] = _element(required=True)


@dataclass
class AuthResultType:
    dkim: List[DkimauthResultType] = _elements()
    spf: List[SpfauthResultType] = _elements()


@dataclass
class RecordType:
    row: Optional[RowType] = _element(required=True)
    identifiers: Optional[IdentifierType] = _element(required=True)
    auth_results: Optional[AuthResultType] = _element(required=True)


@dataclass
class Feedback:
    class Meta:
        name = "feedback"
        namespace = "http://dmarc.org/dmarc-xml/0.1"

    version: Optional[str] = _element()
    report_metadata: Optional[ReportMetadataType] = _element(required=True)
    policy_published: Optional[PolicyPublishedType] = _element(required=True)
    record: List[RecordType] = _elements()
