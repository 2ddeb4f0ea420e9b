import gzip
import zipfile
import zlib
from enum import Enum
from typing import Any, Mapping, Optional

from xsdata.exceptions import ParserError


class ErrorCode(Enum):
    FILE_EMPTY = "file_empty"
    FILE_TOO_SMALL = "file_too_small"
    FORMAT_UNKNOWN = "format_unknown"
    GZIP_CORRUPT = "gzip_corrupt"
    ZIP_INVALID = "zip_invalid"
    ZIP_NO_XML = "zip_no_xml"
    EMAIL_NO_REPORT = "email_no_report"
    XML_PARSE_ERROR = "xml_parse_error"
    XML_NOT_DMARC = "xml_not_dmarc"
    IP_LOOKUP_FAILED = "ip_lookup_failed"
    IP_LOOKUP_RATE_LIMITED = "ip_lookup_rate_limited"
    UNKNOWN = "unknown"


USER_MESSAGES: Mapping[ErrorCode, str] = {
    ErrorCode.FILE_EMPTY: "The file is empty. Please select a valid DMARC report file.",
    ErrorCode.FILE_TOO_SMALL: "The file is too small to be a valid DMARC report.",
    ErrorCode.FORMAT_UNKNOWN: "Unrecognized file format. Please use .xml, .xml.gz, .zip or .eml files.",
    ErrorCode.GZIP_CORRUPT: "The GZIP file appears to be corrupted and cannot be decompressed.",
    ErrorCode.ZIP_INVALID: "The ZIP file is invalid or corrupted.",
    ErrorCode.ZIP_NO_XML: "No XML files found in the ZIP archive.",
    ErrorCode.EMAIL_NO_REPORT: "The e-mail does not have a DMARC report attached.",
    ErrorCode.XML_PARSE_ERROR: "The XML file could not be parsed. It may be malformed or corrupted.",
    ErrorCode.XML_NOT_DMARC: "The file is not a valid DMARC aggregate report. Missing required elements.",
    ErrorCode.IP_LOOKUP_FAILED: "Failed to lookup IP address information. Some location data may be unavailable.",
    ErrorCode.IP_LOOKUP_RATE_LIMITED: "IP lookup service is rate limited. Please wait and try again.",
    ErrorCode.UNKNOWN: "An unexpected error occurred.",
}


class ReportError(Exception):
    """An error with a code and a message suitable for end users."""

    def __init__(
        self,
        code: ErrorCode,
        technical_message: Optional[str] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        self.code = code
        self.user_message = USER_MESSAGES.get(code, USER_MESSAGES[ErrorCode.UNKNOWN])
        self.technical_message = technical_message
        self.details = dict(details or {})
        super().__init__(technical_message or self.user_message)

    def __str__(self):
        if self.technical_message:
            return f"{self.user_message} ({self.technical_message})"
        return self.user_message

    @classmethod
    def from_error(
        cls, error: BaseException, default_code: ErrorCode = ErrorCode.UNKNOWN
    ) -> "ReportError":
        if isinstance(error, ReportError):
            return error
        if isinstance(error, (gzip.BadGzipFile, zlib.error, EOFError)):
            code = ErrorCode.GZIP_CORRUPT
        elif isinstance(error, zipfile.BadZipFile):
            code = ErrorCode.ZIP_INVALID
        elif isinstance(error, (ParserError, SyntaxError, UnicodeDecodeError)):
            code = ErrorCode.XML_PARSE_ERROR
        else:
            code = default_code
        return cls(code, str(error), {"original_error": type(error).__name__})


class ReportExtractionError(ReportError):
    pass
