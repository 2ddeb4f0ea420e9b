import gzip
import io
import os.path
import zipfile
import zlib
from datetime import datetime, timezone
from email import policy as email_policy
from email.message import EmailMessage
from email.parser import BytesParser
from pathlib import Path
from typing import Callable, Generator, List, Mapping, Optional, Union
from xml.etree import ElementTree

import structlog
from xsdata.exceptions import ConverterError, ParserError
from xsdata.formats.dataclass.context import XmlContext
from xsdata.formats.dataclass.parsers.config import ParserConfig
from xsdata.formats.dataclass.parsers.xml import XmlParser

from dmarc_report_reader.errors import ErrorCode, ReportError, ReportExtractionError
from dmarc_report_reader.model.aggregate_report import (
    AuthResultType,
    DateRangeType,
    Feedback,
    IdentifierType,
    PolicyEvaluatedType,
    PolicyPublishedType,
    RecordType,
    ReportMetadataType,
)
from dmarc_report_reader.report import (
    AuthResults,
    DateRange,
    Disposition,
    DkimAuthResult,
    Identifiers,
    OverrideReasonType,
    PolicyEvaluated,
    PolicyOverride,
    PublishedPolicy,
    Record,
    Report,
    ReportMetadata,
    SpfAuthResult,
    parse_alignment_mode,
    parse_enum,
)

logger = structlog.get_logger()

MAGIC_GZIP = b"\x1f\x8b"
MAGIC_ZIP = b"PK\x03\x04"
MAGIC_XML_BOM = b"\xef\xbb\xbf"
MAGIC_XML_DECLARATION = b"<?xml"

XmlDocuments = Generator[str, None, None]


def detect_format(data: bytes) -> str:
    if len(data) == 0:
        raise ReportExtractionError(ErrorCode.FILE_EMPTY)
    if len(data) < 4:
        raise ReportExtractionError(
            ErrorCode.FILE_TOO_SMALL, "File too small to determine format"
        )
    if data.startswith(MAGIC_GZIP):
        return "gzip"
    if data.startswith(MAGIC_ZIP):
        return "zip"
    if data.startswith(MAGIC_XML_BOM) or data.startswith(MAGIC_XML_DECLARATION):
        return "xml"
    if data[:100].decode("utf-8", errors="ignore").strip().startswith("<"):
        return "xml"
    raise ReportExtractionError(ErrorCode.FORMAT_UNKNOWN, "Unknown file format")


def handle_application_gzip(_filename: str, gzip_bytes: bytes) -> XmlDocuments:
    try:
        content = gzip.decompress(gzip_bytes)
    except (OSError, EOFError, zlib.error) as err:
        raise ReportExtractionError(
            ErrorCode.GZIP_CORRUPT, f"GZIP decompression failed: {err}"
        ) from err
    yield _decode(content)


def handle_application_zip(_filename: str, zip_bytes: bytes) -> XmlDocuments:
    try:
        with zipfile.ZipFile(io.BytesIO(zip_bytes), "r") as zip_file:
            names = [
                info.filename
                for info in zip_file.infolist()
                if not info.is_dir() and info.filename.lower().endswith(".xml")
            ]
            if not names:
                raise ReportExtractionError(
                    ErrorCode.ZIP_NO_XML, "No XML file found in ZIP archive"
                )
            contents = [zip_file.read(name) for name in names]
    except (zipfile.BadZipFile, RuntimeError, NotImplementedError, zlib.error) as err:
        raise ReportExtractionError(
            ErrorCode.ZIP_INVALID, f"ZIP extraction failed: {err}"
        ) from err
    for content in contents:
        yield _decode(content)


def handle_text_xml(_filename: str, content: bytes) -> XmlDocuments:
    yield _decode(content)


def handle_octet_stream(filename: str, content: bytes) -> XmlDocuments:
    return format_handlers[detect_format(content)](filename, content)


format_handlers: Mapping[str, Callable[[str, bytes], XmlDocuments]] = {
    "gzip": handle_application_gzip,
    "zip": handle_application_zip,
    "xml": handle_text_xml,
}

content_type_handlers: Mapping[str, Callable[[str, bytes], XmlDocuments]] = {
    "application/octet-stream": handle_octet_stream,
    "application/gzip": handle_application_gzip,
    "application/x-gzip": handle_application_gzip,
    "application/zip": handle_application_zip,
    "application/x-zip-compressed": handle_application_zip,
    "application/xml": handle_text_xml,
    "text/xml": handle_text_xml,
}


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as err:
        raise ReportExtractionError(ErrorCode.XML_PARSE_ERROR, str(err)) from err


def extract_xml_from_email(msg: EmailMessage) -> XmlDocuments:
    has_found_a_report = False
    for part in msg.walk():
        if part.get_content_type() in content_type_handlers:
            handler = content_type_handlers[part.get_content_type()]
            content = part.get_payload(decode=True)
            if not content:
                continue
            has_found_a_report = True
            yield from handler(part.get_filename() or "", content)
    if not has_found_a_report:
        from_email = msg.get("from", "<from missing>")
        subject = msg.get("subject", "<no subject>")
        raise ReportExtractionError(
            ErrorCode.EMAIL_NO_REPORT,
            f"Failed to extract report from email by {from_email} with subject '{subject}'.",
            {"from": msg.get("from", None)},
        )


def extract_xml_documents(data: bytes, filename: str = "") -> XmlDocuments:
    """Yield the XML documents contained in a report file.

    The container format is detected from the leading bytes. E-mail files
    have no magic bytes and are recognised by their ``.eml`` extension.
    """
    _, file_extension = os.path.splitext(filename)
    if file_extension.lower() == ".eml":
        msg = BytesParser(policy=email_policy.default).parsebytes(data)
        yield from extract_xml_from_email(msg)
        return
    yield from format_handlers[detect_format(data)](filename, data)


def _strip_namespaces(xml: str) -> str:
    """Drop element namespaces so qualified and unqualified reports read alike."""
    root = ElementTree.fromstring(xml)
    for element in root.iter():
        if element.tag.startswith("{"):
            element.tag = element.tag.split("}", 1)[1]
    return ElementTree.tostring(root, encoding="unicode")


def parse_feedback(xml: str) -> Feedback:
    parser = XmlParser(
        context=XmlContext(), config=ParserConfig(fail_on_unknown_properties=False)
    )
    try:
        if "xmlns" in xml:
            xml = _strip_namespaces(xml)
        feedback = parser.from_string(xml, Feedback)
    except (ParserError, ConverterError, SyntaxError) as err:
        raise ReportError.from_error(err, ErrorCode.XML_PARSE_ERROR) from err
    if (
        feedback.report_metadata is None
        and feedback.policy_published is None
        and not feedback.record
    ):
        raise ReportError(
            ErrorCode.XML_NOT_DMARC, "Invalid DMARC report: missing feedback element"
        )
    return feedback


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _lower(value: Optional[str]) -> Optional[str]:
    value = _clean(value)
    return value.lower() if value else None


def _to_int(value: object) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _to_datetime(timestamp: object) -> Optional[datetime]:
    seconds = _to_int(timestamp)
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _convert_date_range(date_range: Optional[DateRangeType]) -> Optional[DateRange]:
    if date_range is None:
        return None
    return DateRange(
        begin=_to_datetime(date_range.begin), end=_to_datetime(date_range.end)
    )


def _convert_metadata(
    metadata: Optional[ReportMetadataType],
) -> Optional[ReportMetadata]:
    if metadata is None:
        return None
    return ReportMetadata(
        org_name=_clean(metadata.org_name),
        email=_clean(metadata.email),
        report_id=_clean(metadata.report_id),
        date_range=_convert_date_range(metadata.date_range),
        extra_contact_info=_clean(metadata.extra_contact_info),
        errors=tuple(e for e in (_clean(e) for e in metadata.error) if e),
    )


def _convert_policy(policy: Optional[PolicyPublishedType]) -> Optional[PublishedPolicy]:
    if policy is None:
        return None
    return PublishedPolicy(
        domain=_lower(policy.domain),
        adkim=parse_alignment_mode(policy.adkim),
        aspf=parse_alignment_mode(policy.aspf),
        policy=parse_enum(Disposition, policy.p),
        subdomain_policy=parse_enum(Disposition, policy.sp),
        percentage=_to_int(policy.pct),
        failure_options=_clean(policy.fo),
        np_policy=parse_enum(Disposition, policy.np),
    )


def _convert_policy_evaluated(
    evaluated: Optional[PolicyEvaluatedType],
) -> Optional[PolicyEvaluated]:
    if evaluated is None:
        return None
    return PolicyEvaluated(
        disposition=parse_enum(Disposition, evaluated.disposition),
        dkim=_lower(evaluated.dkim),
        spf=_lower(evaluated.spf),
        reasons=tuple(
            PolicyOverride(
                type=parse_enum(OverrideReasonType, reason.type)
                or (OverrideReasonType.OTHER if _clean(reason.type) else None),
                comment=_clean(reason.comment),
            )
            for reason in evaluated.reason
        ),
    )


def _convert_identifiers(identifiers: Optional[IdentifierType]) -> Optional[Identifiers]:
    if identifiers is None:
        return None
    return Identifiers(
        header_from=_lower(identifiers.header_from),
        envelope_from=_lower(identifiers.envelope_from),
        envelope_to=_lower(identifiers.envelope_to),
    )


def _convert_auth_results(auth_results: Optional[AuthResultType]) -> AuthResults:
    if auth_results is None:
        return AuthResults()
    return AuthResults(
        dkim=tuple(
            DkimAuthResult(
                domain=_lower(dkim.domain),
                result=_lower(dkim.result),
                selector=_clean(dkim.selector),
                human_result=_clean(dkim.human_result),
            )
            for dkim in auth_results.dkim
        ),
        spf=tuple(
            SpfAuthResult(
                domain=_lower(spf.domain),
                result=_lower(spf.result),
                scope=_lower(spf.scope),
            )
            for spf in auth_results.spf
        ),
    )


def _convert_record(record: RecordType) -> Record:
    row = record.row
    return Record(
        source_ip=_clean(row.source_ip) if row else None,
        count=max(0, _to_int(row.count) or 0) if row else 0,
        policy_evaluated=_convert_policy_evaluated(row.policy_evaluated)
        if row
        else None,
        identifiers=_convert_identifiers(record.identifiers),
        auth_results=_convert_auth_results(record.auth_results),
    )


def convert_to_report(feedback: Feedback) -> Report:
    return Report(
        version=_clean(feedback.version),
        metadata=_convert_metadata(feedback.report_metadata),
        policy=_convert_policy(feedback.policy_published),
        records=tuple(_convert_record(record) for record in feedback.record),
    )


def parse_report(data: bytes, filename: str = "") -> List[Report]:
    reports = []
    for xml in extract_xml_documents(data, filename):
        report = convert_to_report(parse_feedback(xml))
        logger.debug(
            "parsed_report",
            filename=filename,
            org_name=report.metadata and report.metadata.org_name,
            report_id=report.metadata and report.metadata.report_id,
            records=len(report.records),
        )
        reports.append(report)
    return reports


def read_report_file(path: Union[Path, str]) -> List[Report]:
    path = Path(path)
    with open(path, "rb") as f:
        data = f.read()
    return parse_report(data, path.name)
