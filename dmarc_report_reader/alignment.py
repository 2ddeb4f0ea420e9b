from typing import List, Optional

from dmarc_report_reader.domains import domains_align
from dmarc_report_reader.report import (
    RESULT_PASS,
    AlignmentMode,
    AlignmentResult,
    FailureReason,
    PublishedPolicy,
    Record,
)


def _primary_failure_reason(
    *,
    spf_passed: bool,
    dkim_passed: bool,
    has_spf: bool,
    has_dkim: bool,
) -> FailureReason:
    # Branch order matters, the conditions overlap.
    if not spf_passed and not dkim_passed:
        return FailureReason.BOTH_AUTH_FAIL
    if spf_passed and dkim_passed:
        return FailureReason.BOTH_MISALIGNED
    if dkim_passed and has_spf:
        return FailureReason.SPF_FAIL_DKIM_MISALIGNED
    if spf_passed and has_dkim:
        return FailureReason.SPF_MISALIGNED_DKIM_FAIL
    if spf_passed:
        return FailureReason.SPF_MISALIGNED
    if dkim_passed:
        return FailureReason.DKIM_MISALIGNED
    return FailureReason.UNKNOWN


def compute_alignment(
    record: Record, policy: Optional[PublishedPolicy]
) -> AlignmentResult:
    """Evaluate DMARC for a single report record.

    DMARC passes if SPF or DKIM passed and aligned with the header
    From: domain. Only the first SPF result of a record is taken into account;
    for DKIM the first passing and aligned signature wins.
    """
    aspf = (policy and policy.aspf) or AlignmentMode.RELAXED
    adkim = (policy and policy.adkim) or AlignmentMode.RELAXED
    header_from = record.header_from
    auth_results = record.auth_results

    spf_domain = None
    spf_passed = False
    spf_aligned = False
    if auth_results.spf:
        spf = auth_results.spf[0]
        spf_domain = spf.domain
        spf_passed = spf.result == RESULT_PASS
        spf_aligned = spf_passed and domains_align(spf_domain, header_from, aspf)

    dkim_passed = False
    dkim_aligned = False
    aligned_dkim_domain = None
    dkim_domains: List[str] = [d.domain for d in auth_results.dkim if d.domain]
    for dkim in auth_results.dkim:
        if dkim.result != RESULT_PASS:
            continue
        dkim_passed = True
        if domains_align(dkim.domain, header_from, adkim):
            dkim_aligned = True
            aligned_dkim_domain = dkim.domain
            break

    dmarc_pass = spf_aligned or dkim_aligned
    if dmarc_pass:
        reason = FailureReason.NONE_VALUE
    else:
        reason = _primary_failure_reason(
            spf_passed=spf_passed,
            dkim_passed=dkim_passed,
            has_spf=len(auth_results.spf) > 0,
            has_dkim=len(auth_results.dkim) > 0,
        )

    envelope_from = record.envelope_from
    header_envelope_mismatch = bool(
        header_from
        and envelope_from
        and header_from.lower() != envelope_from.lower()
    )

    return AlignmentResult(
        spf_passed=spf_passed,
        spf_aligned=spf_aligned,
        spf_domain=spf_domain,
        dkim_passed=dkim_passed,
        dkim_aligned=dkim_aligned,
        aligned_dkim_domain=aligned_dkim_domain,
        dkim_domains=tuple(dkim_domains),
        dmarc_pass=dmarc_pass,
        primary_failure_reason=reason,
        header_from=header_from,
        header_envelope_mismatch=header_envelope_mismatch,
    )


def describe_failure_reason(reason: FailureReason) -> str:
    return FAILURE_DESCRIPTIONS[reason]


FAILURE_DESCRIPTIONS = {
    FailureReason.NONE_VALUE: "DMARC passed",
    FailureReason.BOTH_AUTH_FAIL: "Neither SPF nor DKIM passed",
    FailureReason.BOTH_MISALIGNED: "SPF and DKIM passed but neither aligned with the From domain",
    FailureReason.SPF_FAIL_DKIM_MISALIGNED: "SPF failed and DKIM passed for a non-aligned domain",
    FailureReason.SPF_MISALIGNED_DKIM_FAIL: "SPF passed for a non-aligned domain and DKIM failed",
    FailureReason.SPF_MISALIGNED: "SPF passed for a non-aligned domain, no DKIM signature",
    FailureReason.DKIM_MISALIGNED: "DKIM passed for a non-aligned domain, no SPF result",
    FailureReason.UNKNOWN: "Unknown failure",
}
