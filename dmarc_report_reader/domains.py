"""Organizational domains and DMARC identifier alignment (RFC 7489, 3.1)."""

from typing import FrozenSet, Optional, Union

from dmarc_report_reader.report import AlignmentMode, parse_alignment_mode

# Not a public suffix list. Domains under a suffix missing here are cut to
# their last two labels.
TWO_PART_TLDS: FrozenSet[str] = frozenset(
    {
        "co.uk",
        "org.uk",
        "me.uk",
        "ltd.uk",
        "plc.uk",
        "net.uk",
        "sch.uk",
        "ac.uk",
        "gov.uk",
        "nhs.uk",
        "police.uk",
        "com.au",
        "net.au",
        "org.au",
        "edu.au",
        "gov.au",
        "asn.au",
        "id.au",
        "co.nz",
        "net.nz",
        "org.nz",
        "govt.nz",
        "ac.nz",
        "co.jp",
        "ne.jp",
        "or.jp",
        "ac.jp",
        "go.jp",
        "co.kr",
        "or.kr",
        "co.in",
        "net.in",
        "org.in",
        "gov.in",
        "ac.in",
        "co.za",
        "org.za",
        "gov.za",
        "com.br",
        "net.br",
        "org.br",
        "gov.br",
        "com.cn",
        "net.cn",
        "org.cn",
        "gov.cn",
        "com.mx",
        "org.mx",
        "gob.mx",
        "com.ar",
        "com.tr",
        "org.tr",
        "gov.tr",
        "com.sg",
        "edu.sg",
        "gov.sg",
        "com.hk",
        "org.hk",
        "com.tw",
        "org.tw",
        "co.il",
        "org.il",
        "ac.il",
        "co.th",
        "in.th",
        "com.my",
        "com.ph",
        "com.pk",
        "com.ua",
        "com.pl",
        "co.id",
        "or.id",
        "com.vn",
        "com.eg",
        "com.sa",
        "co.at",
        "or.at",
        "com.es",
        "com.pt",
        "com.gr",
    }
)


def _normalize(domain: Optional[str]) -> Optional[str]:
    # A trailing dot marks the fully qualified form of the same domain.
    if not domain:
        return None
    return domain.strip().strip(".").lower() or None


def get_organizational_domain(domain: Optional[str]) -> Optional[str]:
    domain = _normalize(domain)
    if domain is None:
        return None
    labels = domain.split(".")
    if len(labels) <= 2:
        return domain
    if ".".join(labels[-2:]) in TWO_PART_TLDS:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def domains_align(
    auth_domain: Optional[str],
    header_from: Optional[str],
    mode: Union[AlignmentMode, str, None] = None,
) -> bool:
    """Check whether an authenticated domain aligns with the From: domain.

    Strict mode requires the two domains to be equal, relaxed mode (the
    default) only requires them to share an organizational domain. A missing
    domain never aligns.
    """
    if parse_alignment_mode(mode) is AlignmentMode.STRICT:
        auth_domain, header_from = _normalize(auth_domain), _normalize(header_from)
    else:
        auth_domain = get_organizational_domain(auth_domain)
        header_from = get_organizational_domain(header_from)
    return auth_domain is not None and auth_domain == header_from
