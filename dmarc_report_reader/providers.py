import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Pattern, Tuple

from dmarc_report_reader.ip_lookup import GeoData
from dmarc_report_reader.report import UNKNOWN_PROVIDER, AnnotatedRecord, ProviderInfo


@dataclass(frozen=True)
class Provider:
    id: str
    name: str
    category: str
    asns: Tuple[str, ...] = ()
    hostnames: Tuple[Pattern[str], ...] = ()
    orgs: Tuple[Pattern[str], ...] = ()

    @property
    def info(self) -> ProviderInfo:
        return ProviderInfo(id=self.id, name=self.name, category=self.category)

    def matches(self, geo: GeoData) -> bool:
        if geo.asn and any(asn in geo.asn for asn in self.asns):
            return True
        if geo.hostname and any(p.search(geo.hostname) for p in self.hostnames):
            return True
        if geo.org and any(p.search(geo.org) for p in self.orgs):
            return True
        return False


def _patterns(*patterns: str, flags: int = 0) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(p, flags) for p in patterns)


# Order matters: the first provider with any matching criterion wins.
# Mailbox providers go before the ESPs since ESPs often run on their
# networks and share organization names.
PROVIDERS: Tuple[Provider, ...] = (
    Provider(
        "google",
        "Google Workspace",
        "enterprise",
        asns=("AS15169", "AS396982"),
        hostnames=_patterns(r"\.google\.com$", r"\.googlemail\.com$", r"\.goog$"),
        orgs=_patterns(r"^Google", flags=re.I),
    ),
    Provider(
        "microsoft",
        "Microsoft 365",
        "enterprise",
        asns=("AS8075", "AS8068"),
        hostnames=_patterns(
            r"\.outlook\.com$", r"\.hotmail\.com$", r"protection\.outlook\.com$"
        ),
        orgs=_patterns(r"^Microsoft", flags=re.I),
    ),
    Provider(
        "amazon_ses",
        "Amazon SES",
        "transactional",
        asns=("AS16509", "AS14618"),
        hostnames=_patterns(r"\.amazonaws\.com$", r"\.amazonses\.com$"),
        orgs=_patterns(r"^Amazon", r"^AWS", flags=re.I),
    ),
    Provider(
        "sendgrid",
        "SendGrid",
        "transactional",
        asns=("AS11377",),
        hostnames=_patterns(r"\.sendgrid\.net$", r"\.sendgrid\.com$"),
        orgs=_patterns(r"SendGrid", r"Twilio", flags=re.I),
    ),
    Provider(
        "mailgun",
        "Mailgun",
        "transactional",
        hostnames=_patterns(r"\.mailgun\.org$", r"\.mailgun\.net$"),
        orgs=_patterns(r"Mailgun", r"Rackspace", r"Sinch", flags=re.I),
    ),
    Provider(
        "mailchimp",
        "Mailchimp",
        "marketing",
        hostnames=_patterns(
            r"\.mcsv\.net$", r"\.mcdlv\.net$", r"\.mailchimp\.com$", r"\.rsgsv\.net$"
        ),
        orgs=_patterns(
            r"Mailchimp", r"The Rocket Science Group", r"Intuit", flags=re.I
        ),
    ),
    Provider(
        "postmark",
        "Postmark",
        "transactional",
        hostnames=_patterns(r"\.postmarkapp\.com$", r"\.mtasv\.net$"),
        orgs=_patterns(r"Postmark", r"Wildbit", r"ActiveCampaign", flags=re.I),
    ),
    Provider(
        "sparkpost",
        "SparkPost",
        "transactional",
        hostnames=_patterns(r"\.sparkpostmail\.com$", r"\.e\.sparkpost\.com$"),
        orgs=_patterns(r"SparkPost", r"Message Systems", r"MessageBird", flags=re.I),
    ),
    Provider(
        "zoho",
        "Zoho Mail",
        "enterprise",
        hostnames=_patterns(r"\.zoho\.com$", r"\.zohomail\.com$", r"\.zohocorp\.com$"),
        orgs=_patterns(r"Zoho", flags=re.I),
    ),
    Provider(
        "fastmail",
        "Fastmail",
        "enterprise",
        hostnames=_patterns(
            r"\.fastmail\.com$", r"\.messagingengine\.com$", r"\.fastmail\.fm$"
        ),
        orgs=_patterns(r"Fastmail", r"Messagingengine", flags=re.I),
    ),
    Provider(
        "mailjet",
        "Mailjet",
        "transactional",
        hostnames=_patterns(r"\.mailjet\.com$"),
        orgs=_patterns(r"Mailjet", flags=re.I),
    ),
    Provider(
        "sendinblue",
        "Brevo (Sendinblue)",
        "marketing",
        hostnames=_patterns(r"\.sendinblue\.com$", r"\.brevo\.com$"),
        orgs=_patterns(r"Sendinblue", r"Brevo", flags=re.I),
    ),
    Provider(
        "constantcontact",
        "Constant Contact",
        "marketing",
        hostnames=_patterns(r"\.constantcontact\.com$", r"\.ccsend\.com$"),
        orgs=_patterns(r"Constant Contact", flags=re.I),
    ),
    Provider(
        "campaignmonitor",
        "Campaign Monitor",
        "marketing",
        hostnames=_patterns(r"\.createsend\.com$", r"\.cmail[0-9]+\.com$"),
        orgs=_patterns(r"Campaign Monitor", flags=re.I),
    ),
    Provider(
        "yahoo",
        "Yahoo Mail",
        "consumer",
        asns=("AS36647", "AS36646"),
        hostnames=_patterns(r"\.yahoo\.com$", r"\.yahoodns\.net$"),
        orgs=_patterns(r"Yahoo", r"Oath", r"Verizon Media", flags=re.I),
    ),
    Provider(
        "protonmail",
        "Proton Mail",
        "enterprise",
        hostnames=_patterns(r"\.protonmail\.ch$", r"\.proton\.me$"),
        orgs=_patterns(r"Proton", flags=re.I),
    ),
    Provider(
        "ovh",
        "OVH",
        "hosting",
        asns=("AS16276",),
        hostnames=_patterns(r"\.ovh\.net$", r"\.ovh\.com$"),
        orgs=_patterns(r"^OVH", flags=re.I),
    ),
    Provider(
        "godaddy",
        "GoDaddy",
        "hosting",
        asns=("AS26496", "AS44273"),
        hostnames=_patterns(r"\.secureserver\.net$", r"\.godaddy\.com$"),
        orgs=_patterns(r"GoDaddy", flags=re.I),
    ),
    Provider(
        "cloudflare",
        "Cloudflare",
        "infrastructure",
        asns=("AS13335",),
        hostnames=_patterns(r"\.cloudflare\.com$"),
        orgs=_patterns(r"Cloudflare", flags=re.I),
    ),
)


@dataclass(frozen=True)
class CategoryInfo:
    label: str
    description: str


CATEGORY_INFO: Mapping[str, CategoryInfo] = {
    "enterprise": CategoryInfo("Enterprise", "Business email service"),
    "transactional": CategoryInfo("Transactional", "Transactional email service"),
    "marketing": CategoryInfo("Marketing", "Email marketing platform"),
    "consumer": CategoryInfo("Consumer", "Consumer email service"),
    "hosting": CategoryInfo("Hosting", "Web hosting provider"),
    "infrastructure": CategoryInfo("Infrastructure", "Cloud/CDN infrastructure"),
}


def fingerprint_provider(geo: Optional[GeoData]) -> ProviderInfo:
    if geo is None or geo.error:
        return UNKNOWN_PROVIDER
    for provider in PROVIDERS:
        if provider.matches(geo):
            return provider.info
    return UNKNOWN_PROVIDER


def fingerprint_providers(
    geo_map: Mapping[str, GeoData],
) -> Dict[str, ProviderInfo]:
    return {ip: fingerprint_provider(geo) for ip, geo in geo_map.items()}


def get_category_info(category: Optional[str]) -> CategoryInfo:
    return CATEGORY_INFO.get(category or "", CategoryInfo("Unknown", ""))


@dataclass
class ProviderUsage:
    provider: ProviderInfo
    count: int = 0
    messages: int = 0


def get_unique_providers(records: Iterable[AnnotatedRecord]) -> List[ProviderUsage]:
    """Known providers seen in ``records``, most messages first."""
    usage: Dict[str, ProviderUsage] = {}
    for record in records:
        if record.provider is None or not record.provider.is_known:
            continue
        entry = usage.setdefault(record.provider.id, ProviderUsage(record.provider))
        entry.count += 1
        entry.messages += record.count
    return sorted(usage.values(), key=lambda u: u.messages, reverse=True)


@dataclass
class ProviderFailureStats:
    total_failing: int = 0
    known_provider_failing: int = 0
    unknown_failing: int = 0
    provider_breakdown: Dict[str, ProviderUsage] = field(default_factory=dict)


def get_provider_failure_stats(
    records: Iterable[AnnotatedRecord],
) -> ProviderFailureStats:
    stats = ProviderFailureStats()
    for record in records:
        if record.alignment.dmarc_pass:
            continue
        stats.total_failing += 1
        if record.provider is None or not record.provider.is_known:
            stats.unknown_failing += 1
            continue
        stats.known_provider_failing += 1
        entry = stats.provider_breakdown.setdefault(
            record.provider.id, ProviderUsage(record.provider)
        )
        entry.count += 1
        entry.messages += record.count
    return stats
