"""Human-readable explanations of why a record failed or was treated as it was."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from dmarc_report_reader.report import (
    RESULT_FAIL,
    RESULT_NONE,
    RESULT_PASS,
    AnnotatedRecord,
    Disposition,
    OverrideReasonType,
    PublishedPolicy,
)


@dataclass(frozen=True)
class DispositionOverride:
    reason: OverrideReasonType
    title: str
    explanation: str
    recommendations: Tuple[str, ...]


_OverrideText = Callable[[str, str, PublishedPolicy], str]


def _requested(expected: str, applied: str) -> str:
    return f'Your policy requests "{expected}" but the receiver applied "{applied}".'


_OVERRIDE_EXPLANATIONS: Dict[
    OverrideReasonType, Tuple[str, _OverrideText, Tuple[str, ...]]
] = {
    OverrideReasonType.FORWARDED: (
        "Disposition Override: Message Forwarded",
        lambda expected, applied, _: (
            f"{_requested(expected, applied)} The receiver detected this message "
            "was forwarded, which commonly breaks SPF alignment. Many receivers "
            "reduce enforcement for forwarded mail to avoid blocking legitimate "
            "messages."
        ),
        (
            "This is usually expected behavior for forwarded mail",
            "Consider using ARC (Authenticated Received Chain) if available",
            "DKIM signatures survive forwarding if the message body is unchanged",
        ),
    ),
    OverrideReasonType.MAILING_LIST: (
        "Disposition Override: Mailing List",
        lambda expected, applied, _: (
            f"{_requested(expected, applied)} This message passed through a "
            "mailing list, which typically modifies headers and breaks "
            "authentication. Most receivers relax enforcement for mailing list "
            "traffic."
        ),
        (
            "Mailing lists often modify Subject lines or add footers, breaking DKIM",
            "This is expected behavior and not a configuration problem",
            "Users receiving via mailing lists may see reduced protection",
        ),
    ),
    OverrideReasonType.LOCAL_POLICY: (
        "Disposition Override: Receiver Local Policy",
        lambda expected, applied, _: (
            f"{_requested(expected, applied)} The receiving server has its own "
            "local policy that overrode your DMARC policy. This is at the "
            "receiver's discretion."
        ),
        (
            "Receivers can choose to override DMARC policies",
            "This may be due to whitelisting, user preferences, or reputation",
            "Your DMARC policy is still being honored by most receivers",
        ),
    ),
    OverrideReasonType.SAMPLED_OUT: (
        "Disposition Override: Sampling (pct)",
        lambda expected, applied, policy: (
            f"{_requested(expected, applied)} Your DMARC policy has "
            f"pct={policy.effective_percentage}, meaning only "
            f"{policy.effective_percentage}% of failing messages should be subject "
            "to the policy. This message was in the non-enforced percentage."
        ),
        (
            "This is expected behavior when using pct<100",
            "Increase pct gradually as you gain confidence in your configuration",
            "Once at pct=100, all failing messages will be subject to your policy",
        ),
    ),
    OverrideReasonType.TRUSTED_FORWARDER: (
        "Disposition Override: Trusted Forwarder",
        lambda expected, applied, _: (
            f"{_requested(expected, applied)} The receiver recognized this as "
            "coming from a trusted forwarder and relaxed enforcement."
        ),
        (
            "Trusted forwarders are whitelisted by some receivers",
            "This is similar to ARC-based authentication",
            "Your policy is still honored for direct mail flows",
        ),
    ),
    OverrideReasonType.OTHER: (
        "Disposition Override",
        lambda expected, applied, _: (
            f"{_requested(expected, applied)} The receiver chose to override your "
            "policy for reasons not specified in the report."
        ),
        (
            "Check if the sending IP has good reputation",
            "Receivers may override based on historical sending patterns",
            "This does not necessarily indicate a problem",
        ),
    ),
}


def expected_disposition(
    header_from: Optional[str], policy: PublishedPolicy
) -> Optional[Disposition]:
    """The disposition the published policy asks for.

    Strict subdomains of the policy domain use ``sp`` when it is published.
    """
    is_subdomain = bool(
        header_from
        and policy.domain
        and header_from != policy.domain
        and header_from.endswith("." + policy.domain)
    )
    if is_subdomain and policy.subdomain_policy is not None:
        return policy.subdomain_policy
    return policy.policy


def explain_disposition_override(
    record: AnnotatedRecord, policy: Optional[PublishedPolicy]
) -> Optional[DispositionOverride]:
    if policy is None:
        return None

    expected = expected_disposition(record.record.header_from, policy)
    applied = record.record.disposition
    if expected is None or expected is Disposition.NONE_VALUE:
        return None
    if applied == expected:
        return None
    if record.alignment.dmarc_pass:
        return None

    policy_evaluated = record.record.policy_evaluated
    reasons = policy_evaluated.reasons if policy_evaluated else ()
    reason = next((r.type for r in reasons if r.type is not None), None)
    if reason is None:
        if (
            policy.percentage is not None
            and policy.percentage < 100
            and applied is Disposition.NONE_VALUE
        ):
            reason = OverrideReasonType.SAMPLED_OUT
        else:
            reason = OverrideReasonType.OTHER

    title, explain, recommendations = _OVERRIDE_EXPLANATIONS[reason]
    applied_text = applied.value if applied else "none"
    return DispositionOverride(
        reason=reason,
        title=title,
        explanation=explain(expected.value, applied_text, policy),
        recommendations=recommendations,
    )


class DiagnosisType(Enum):
    DKIM = "dkim"
    SPF = "spf"
    ALIGNMENT = "alignment"
    DISPOSITION = "disposition"
    OVERRIDE = "override"


@dataclass(frozen=True)
class Diagnosis:
    type: DiagnosisType
    title: str
    explanation: str
    recommendations: Tuple[str, ...]
    common_causes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Explanation:
    title: str
    explanation: str
    recommendations: Tuple[str, ...]
    common_causes: Tuple[str, ...] = ()

    def as_diagnosis(self, diagnosis_type: DiagnosisType) -> Diagnosis:
        return Diagnosis(
            diagnosis_type,
            self.title,
            self.explanation,
            self.recommendations,
            self.common_causes,
        )


DKIM_EXPLANATIONS: Dict[str, Explanation] = {
    "fail": Explanation(
        "DKIM Signature Invalid",
        "The DKIM signature on the message could not be verified. This can "
        "happen if the message was modified in transit, the signing key has been "
        "rotated, or the signature was malformed.",
        (
            "Verify your DKIM signing configuration is correct",
            "Check that your DKIM public key DNS record matches your private key",
            "Ensure no mail gateways are modifying message content after signing",
            "If using a third-party sender, verify they are signing with your "
            "domain's key",
        ),
    ),
    "none": Explanation(
        "No DKIM Signature",
        "The message was not signed with DKIM. Without a DKIM signature, "
        "receivers cannot verify the message originated from your domain.",
        (
            "Enable DKIM signing on your mail server",
            "If using a third-party email service, configure them to sign with "
            "your domain",
            "Publish a DKIM public key record in your DNS",
        ),
    ),
    "neutral": Explanation(
        "DKIM Result Neutral",
        "The DKIM signature exists but could not be evaluated, often due to a "
        "missing or inaccessible public key.",
        (
            "Verify your DKIM DNS record is published correctly",
            "Check DNS propagation for your DKIM selector",
            "Ensure the selector in the signature matches your DNS record",
        ),
    ),
    "temperror": Explanation(
        "DKIM Temporary Error",
        "A temporary error occurred during DKIM verification, typically due to "
        "DNS timeout or server issues.",
        (
            "This is usually transient and may resolve on its own",
            "Verify your DNS servers are responsive",
            "Check for any DNS infrastructure issues",
        ),
    ),
    "permerror": Explanation(
        "DKIM Permanent Error",
        "A permanent error in the DKIM configuration prevents verification. The "
        "signature or DNS record is malformed.",
        (
            "Review your DKIM DNS record syntax",
            "Regenerate your DKIM key pair if corrupted",
            "Verify the DKIM signature header format",
        ),
    ),
}

SPF_EXPLANATIONS: Dict[str, Explanation] = {
    "fail": Explanation(
        "SPF Check Failed",
        "The sending IP address is not authorized to send email for this domain. "
        "The IP was explicitly denied by your SPF record.",
        (
            "Add the sending IP or mail server to your SPF record",
            "If using a third-party service, include their SPF mechanism",
            "Review your SPF record: v=spf1 include:_spf.example.com ~all",
            "Check if the sender should be authorized to send for your domain",
        ),
    ),
    "softfail": Explanation(
        "SPF Soft Fail",
        "The sending IP is not explicitly authorized but not strictly denied "
        "(~all). The message is suspicious but not rejected.",
        (
            "Add legitimate senders to your SPF record",
            "Consider using -all (hard fail) once all senders are properly listed",
            "This may indicate a forwarded message or unauthorized sender",
        ),
    ),
    "neutral": Explanation(
        "SPF Neutral",
        "Your SPF record makes no assertion about this IP address (?all). No "
        "authorization decision can be made.",
        (
            "Review your SPF record to properly authorize or deny senders",
            "Replace ?all with ~all or -all for better protection",
        ),
    ),
    "none": Explanation(
        "No SPF Record",
        "No SPF record was found for the sending domain. Receivers cannot verify "
        "which servers are authorized to send email.",
        (
            "Publish an SPF record in your DNS",
            "Example: v=spf1 include:_spf.google.com ~all",
            "List all authorized sending IPs and services",
        ),
    ),
    "temperror": Explanation(
        "SPF Temporary Error",
        "A temporary DNS error prevented SPF verification. This is typically "
        "transient.",
        (
            "Usually resolves automatically",
            "Check your DNS server availability",
            "Verify SPF record is not too complex (max 10 DNS lookups)",
        ),
    ),
    "permerror": Explanation(
        "SPF Permanent Error",
        "The SPF record has a configuration error that prevents evaluation. This "
        "typically means the record is malformed or exceeds DNS lookup limits.",
        (
            "SPF allows maximum 10 DNS lookups (include, a, mx, ptr, exists "
            "mechanisms)",
            'Each "include:" counts as at least 1 lookup, plus any nested includes',
            "Common fix: flatten includes by replacing with ip4/ip6 mechanisms",
            "Check record syntax: must start with v=spf1 and end with ~all or -all",
            "Use an SPF validator tool to diagnose the specific error",
        ),
        (
            "Too many include: mechanisms (e.g., Google + Microsoft + SendGrid = "
            ">10 lookups)",
            "Syntax error in SPF record (missing space, invalid mechanism)",
            "Circular include references between domains",
            "Void lookups (mechanisms that return no DNS results)",
        ),
    ),
}


def get_record_diagnosis(
    record: AnnotatedRecord, policy: Optional[PublishedPolicy]
) -> List[Diagnosis]:
    """Collect every issue worth reporting for ``record``.

    An empty list means the record passed DKIM and SPF without further
    remarks.
    """
    issues = []
    raw = record.record
    policy_evaluated = raw.policy_evaluated

    if policy_evaluated is None or policy_evaluated.dkim != RESULT_PASS:
        dkim = raw.auth_results.dkim
        result = (dkim[0].result if dkim else None) or RESULT_NONE
        explanation = DKIM_EXPLANATIONS.get(result, DKIM_EXPLANATIONS[RESULT_FAIL])
        issues.append(explanation.as_diagnosis(DiagnosisType.DKIM))

    if policy_evaluated is None or policy_evaluated.spf != RESULT_PASS:
        spf = raw.auth_results.spf
        result = (spf[0].result if spf else None) or RESULT_NONE
        explanation = SPF_EXPLANATIONS.get(result, SPF_EXPLANATIONS[RESULT_FAIL])
        issues.append(explanation.as_diagnosis(DiagnosisType.SPF))

    if record.alignment.header_envelope_mismatch:
        issues.append(
            Diagnosis(
                DiagnosisType.ALIGNMENT,
                "Domain Alignment Mismatch",
                f"The From header domain ({raw.header_from or 'unknown'}) does not "
                "match the envelope sender domain "
                f"({raw.envelope_from or 'unknown'}). DMARC requires alignment "
                "between these domains.",
                (
                    "Ensure the envelope From (Return-Path) matches or is a "
                    "subdomain of the header From",
                    "Configure your mail server to use the same domain for both",
                    "If using a third-party sender, set up proper domain alignment",
                    "Check your DMARC policy alignment mode (strict vs relaxed)",
                ),
            )
        )

    if raw.disposition is Disposition.QUARANTINE:
        issues.append(
            Diagnosis(
                DiagnosisType.DISPOSITION,
                "Message Quarantined",
                "The receiving server placed this message in quarantine (spam/junk "
                "folder) due to DMARC policy. Your DMARC policy requested "
                "quarantine for failing messages.",
                (
                    "Fix the underlying DKIM/SPF issues to prevent quarantine",
                    "Review which senders are failing authentication",
                    "Ensure all legitimate email sources are properly configured",
                ),
            )
        )
    elif raw.disposition is Disposition.REJECT:
        issues.append(
            Diagnosis(
                DiagnosisType.DISPOSITION,
                "Message Rejected",
                "The receiving server rejected this message outright due to DMARC "
                "policy failure. Your DMARC policy specifies reject for failing "
                "messages.",
                (
                    "Urgently fix DKIM/SPF configuration for legitimate senders",
                    "These messages were not delivered to recipients",
                    "Consider temporarily relaxing DMARC policy while fixing issues",
                    "Review all authorized senders and their authentication setup",
                ),
            )
        )

    override = explain_disposition_override(record, policy)
    if override is not None:
        issues.append(
            Diagnosis(
                DiagnosisType.OVERRIDE,
                override.title,
                override.explanation,
                override.recommendations,
            )
        )

    return issues
