# -*- coding: utf-8 -*-

"""A Python package for loading DMARC aggregate and SMTP TLS reports into
a SQL database"""

from __future__ import annotations

import email
import json
import mailbox
import os
import re
import tempfile
import xml.parsers.expat as expat
import zipfile
import zlib
from contextlib import contextmanager
from enum import IntFlag
from glob import glob
from io import BytesIO
from typing import Any, Iterator, List, Optional, Sequence, Union

import mailparser
import xmltodict

from dmarcdb.constants import (
    ALLOWED_DISPOSITION,
    ALLOWED_DKIM_ALIGN,
    ALLOWED_DKIM_RESULT,
    ALLOWED_SPF_ALIGN,
    ALLOWED_SPF_RESULT,
    __version__,
)
from dmarcdb.database import MappingError, ReportDatabase, StoreResult
from dmarcdb.log import logger
from dmarcdb.mail import MailboxConnection
from dmarcdb.types import (
    AggregateRecord,
    AggregateReport,
    ArchiveLocation,
    Report,
    SMTPTLSFailureDetails,
    SMTPTLSReport,
)
from dmarcdb.utils import iso_timestamp_to_sql, is_mbox

logger.debug("dmarcdb v{0}".format(__version__))

xml_header_regex = re.compile(r"^<\?xml .*?>", re.MULTILINE)
xml_schema_regex = re.compile(r"</??xs:schema.*>", re.MULTILINE)

MAGIC_ZIP = b"\x50\x4b\x03\x04"
MAGIC_GZIP = b"\x1f\x8b"

ZIP_CONTENT_TYPES = ("application/zip", "application/x-zip-compressed")
DMARC_GZIP_CONTENT_TYPES = ("application/gzip", "application/x-gzip")
TLS_GZIP_CONTENT_TYPES = ("application/tlsrpt+gzip", "application/tlsrpt+x-gzip")
DMARC_REPORT_CONTENT_TYPES = ("text/xml", "application/xml")
TLS_REPORT_CONTENT_TYPES = ("application/tlsrpt+json", "application/json")

SOURCE_MESSAGE = "message"
SOURCE_REPORT = "report"
SOURCE_ARCHIVE = "archive"
SOURCES = (SOURCE_MESSAGE, SOURCE_REPORT, SOURCE_ARCHIVE)

__all__ = [
    "__version__",
    "ParserError",
    "DecodeError",
    "ParseError",
    "InvalidAggregateReport",
    "InvalidSMTPTLSReport",
    "MappingError",
    "ProcessResult",
    "decode_archive",
    "decode_archive_file",
    "locate_report_archive",
    "extract_report_from_message",
    "parse_aggregate_report_xml",
    "parse_smtp_tls_report_json",
    "process_report",
    "expand_paths",
    "process_files",
    "process_mbox",
    "process_mailbox",
]


class ParserError(RuntimeError):
    """Raised whenever the parser fails for some reason"""


class DecodeError(ParserError):
    """Raised when a zip or gzip archive cannot be decoded"""


class ParseError(ParserError):
    """Raised when a report cannot be parsed"""


class InvalidAggregateReport(ParseError):
    """Raised when an invalid DMARC aggregate report is encountered"""


class InvalidSMTPTLSReport(ParseError):
    """Raised when an invalid SMTP TLS report is encountered"""


class ProcessResult(IntFlag):
    """The outcome of processing one mail, file or archive"""

    VALID = 1
    DELETE = 2
    DATABASE_ERROR = 4


def decode_archive(content: bytes, kind: str) -> bytes:
    """
    Decodes the contents of a zip or gzip archive

    Only the first member of a zip archive is read.

    Args:
        content (bytes): The archive bytes
        kind (str): ``zip``, ``gzip`` or ``none``. With ``none`` the
            archive type is detected from its magic number, and content that
            is neither zip nor gzip is returned unchanged

    Returns:
        bytes: The decoded report

    Raises:
        DecodeError: The archive is corrupt or empty
    """
    if kind == "none":
        if content[: len(MAGIC_ZIP)] == MAGIC_ZIP:
            kind = "zip"
        elif content[: len(MAGIC_GZIP)] == MAGIC_GZIP:
            kind = "gzip"
        else:
            return content

    if kind == "gzip":
        try:
            report = zlib.decompress(content, zlib.MAX_WBITS | 16)
        except zlib.error as error:
            raise DecodeError("Invalid gzip archive: {0}".format(error.__str__()))
        if len(report) == 0:
            raise DecodeError("The gzip archive is empty")
        return report

    if kind == "zip":
        try:
            with zipfile.ZipFile(BytesIO(content)) as _zip:
                members = _zip.namelist()
                if len(members) == 0:
                    raise DecodeError("The zip archive has no members")
                with _zip.open(members[0]) as member:
                    report = member.read()
        except (zipfile.BadZipFile, zlib.error, OSError, EOFError) as error:
            raise DecodeError("Invalid zip archive: {0}".format(error.__str__()))
        if len(report) == 0:
            raise DecodeError("The first member of the zip archive is empty")
        return report

    raise DecodeError("Unknown archive kind {0}".format(kind))


def decode_archive_file(path: str, kind: str) -> bytes:
    """Decodes a zip or gzip archive file"""
    try:
        with open(path, "rb") as archive_file:
            content = archive_file.read()
    except OSError as error:
        raise DecodeError("Unable to read {0}: {1}".format(path, error.__str__()))
    return decode_archive(content, kind)


def _fix_content_type_header(message: bytes) -> bytes:
    # Some gateways emit "ContentType:" without the hyphen
    return message.replace(b"ContentType:", b"Content-Type:", 1)


def _get_subject(message: bytes) -> str:
    try:
        subject = mailparser.parse_from_bytes(message).subject
    except Exception as error:
        logger.debug("Unable to decode the subject: {0}".format(error.__str__()))
        return ""
    return subject or ""


def _save_part(directory: str, index: int, part) -> str:
    path = os.path.join(directory, "part-{0}".format(index))
    with open(path, "wb") as part_file:
        part_file.write(part.get_payload(decode=True) or b"")
    return path


@contextmanager
def locate_report_archive(
    message: bytes, report_type: str = "dmarc"
) -> Iterator[Optional[ArchiveLocation]]:
    """
    Finds the part of an email message that holds a report

    Every part that is considered is written to a temporary directory, which
    is removed when the context exits.

    Args:
        message (bytes): The raw email message
        report_type (str): ``dmarc`` or ``tls``

    Yields:
        ArchiveLocation: The path and archive kind of the report part, or
        ``None`` when the message has no report
    """
    message = _fix_content_type_header(message)
    msg = email.message_from_bytes(message)
    content_type = msg.get_content_type()
    logger.debug(
        "Subject: {0} Content-Type: {1}".format(_get_subject(message), content_type)
    )

    if report_type == "tls":
        gzip_types = TLS_GZIP_CONTENT_TYPES
        zip_types = ()
        report_types = TLS_REPORT_CONTENT_TYPES
    else:
        gzip_types = DMARC_GZIP_CONTENT_TYPES
        zip_types = ZIP_CONTENT_TYPES
        report_types = DMARC_REPORT_CONTENT_TYPES

    with tempfile.TemporaryDirectory(prefix="dmarcdb-") as directory:
        location = None
        if report_type == "dmarc" and content_type == "application/zip":
            location = ArchiveLocation(_save_part(directory, 0, msg), "zip")
        elif content_type in gzip_types:
            location = ArchiveLocation(_save_part(directory, 0, msg), "gzip")
        elif report_type == "tls" and content_type == "application/tlsrpt+json":
            location = ArchiveLocation(_save_part(directory, 0, msg), "none")
        elif msg.is_multipart():
            for index, part in enumerate(msg.get_payload()):
                part_type = part.get_content_type()
                if part_type in gzip_types:
                    location = ArchiveLocation(
                        _save_part(directory, index, part), "gzip"
                    )
                    break
                elif part_type in zip_types:
                    location = ArchiveLocation(_save_part(directory, index, part), "zip")
                elif part_type == "application/octet-stream":
                    filename = part.get_filename() or ""
                    kind = "gzip" if filename.lower().endswith(".gz") else "none"
                    location = ArchiveLocation(_save_part(directory, index, part), kind)
                elif part_type in report_types:
                    location = ArchiveLocation(
                        _save_part(directory, index, part), "none"
                    )
                else:
                    logger.debug("Skipped an unknown attachment ({0})".format(part_type))

        if location is None:
            logger.debug("No report found in the message")
        else:
            logger.debug("Report is in {0} ({1})".format(location.path, location.kind))
        yield location


def extract_report_from_message(
    message: bytes, report_type: str = "dmarc", label: str = "message"
) -> Optional[bytes]:
    """
    Extracts the report from an email message

    Args:
        message (bytes): The raw email message
        report_type (str): ``dmarc`` or ``tls``
        label (str): Names the message in log messages

    Returns:
        bytes: The decoded report, or ``None`` when no report could be found
        or decoded
    """
    with locate_report_archive(message, report_type) as location:
        if location is None:
            return None
        try:
            return decode_archive_file(location.path, location.kind)
        except DecodeError as error:
            subject = _get_subject(_fix_content_type_header(message))
            logger.warning(
                "{0} (Subject: {1}): {2}".format(label, subject, error.__str__())
            )
            return None


def _keep_empty_elements(path, key, value):
    if value is None:
        value = ""
    return key, value


def _as_list(value) -> List[Any]:
    """Returns elements that can be a single item or a list as a list"""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_dict(value) -> dict:
    if isinstance(value, dict):
        return value
    return {}


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _allowed(value, allowed_values) -> str:
    if value in allowed_values:
        return value
    return "unknown"


def _resolve_auth_results(auth_results, allowed_results):
    """Returns the domain(s) and the overall result of DKIM or SPF
    auth results"""
    if isinstance(auth_results, dict):
        domain = auth_results.get("domain")
        if not isinstance(domain, str):
            domain = None
        return domain, _allowed(auth_results.get("result"), allowed_results)

    results = [_as_dict(result) for result in _as_list(auth_results)]
    if len(results) == 0:
        return None, "unknown"

    domains = []
    for result in results:
        domain = result.get("domain")
        domains.append(domain if isinstance(domain, str) else "")
    values = [result.get("result") for result in results]
    if "pass" in values:
        resolved = "pass"
    elif all(value == values[0] for value in values):
        resolved = values[0]
    else:
        resolved = "unknown"

    return "/".join(domains), _allowed(resolved, allowed_results)


def _parse_reason(reason) -> Optional[str]:
    if reason is None or reason == "":
        return None
    if isinstance(reason, list):
        return "/".join(str(_as_dict(item).get("type") or "") for item in reason)
    return _as_dict(reason).get("type")


def _parse_report_record(record: dict) -> AggregateRecord:
    row = _as_dict(record.get("row"))
    policy_evaluated = _as_dict(row.get("policy_evaluated"))
    identifiers = _as_dict(record.get("identifiers"))
    auth_results = record.get("auth_results")
    has_auth_results = isinstance(auth_results, dict)
    auth_results = _as_dict(auth_results)

    dkim_domain, dkim_result = _resolve_auth_results(
        auth_results.get("dkim"), ALLOWED_DKIM_RESULT
    )
    spf_domain, spf_result = _resolve_auth_results(
        auth_results.get("spf"), ALLOWED_SPF_RESULT
    )
    source_ip = row.get("source_ip")

    return {
        "source_ip": source_ip if isinstance(source_ip, str) else "",
        "count": _as_int(row.get("count")),
        "disposition": _allowed(policy_evaluated.get("disposition"), ALLOWED_DISPOSITION),
        "dkim_align": _allowed(policy_evaluated.get("dkim"), ALLOWED_DKIM_ALIGN),
        "spf_align": _allowed(policy_evaluated.get("spf"), ALLOWED_SPF_ALIGN),
        "reason": _parse_reason(policy_evaluated.get("reason")),
        "dkim_domain": dkim_domain,
        "dkim_result": dkim_result,
        "spf_domain": spf_domain,
        "spf_result": spf_result,
        "header_from": identifiers.get("header_from") or None,
        "has_auth_results": has_auth_results,
    }


def parse_aggregate_report_xml(xml: Union[str, bytes]) -> AggregateReport:
    """Parses a DMARC XML report string

    Args:
        xml: A string of DMARC aggregate report XML

    Returns:
        dict: The parsed aggregate DMARC report

    Raises:
        InvalidAggregateReport: The XML is malformed or is not a DMARC
        aggregate report
    """
    if isinstance(xml, bytes):
        xml = xml.decode(errors="ignore")
    raw_xml = xml

    # Replace XML header (sometimes they are invalid)
    xml = xml_header_regex.sub('<?xml version="1.0"?>', xml)
    # Remove invalid schema tags
    xml = xml_schema_regex.sub("", xml)

    try:
        document = xmltodict.parse(xml, postprocessor=_keep_empty_elements)
    except expat.ExpatError as error:
        raise InvalidAggregateReport("Invalid XML: {0}".format(error.__str__()))

    report = document.get("feedback")
    if not isinstance(report, dict):
        raise InvalidAggregateReport("The XML is not a DMARC aggregate report")
    report_metadata = report.get("report_metadata")
    if not isinstance(report_metadata, dict):
        raise InvalidAggregateReport("report_metadata is missing")

    date_range = _as_dict(report_metadata.get("date_range"))
    policies = _as_list(report.get("policy_published"))
    policy_published = _as_dict(policies[0]) if len(policies) > 0 else {}

    org_name = report_metadata.get("org_name")
    report_id = report_metadata.get("report_id")
    records = report.get("record")
    if isinstance(records, dict):
        records = [records]
    elif not isinstance(records, list):
        logger.warning(
            "{0}: {1}: Unexpected record structure ({2}), no records "
            "mapped".format(org_name, report_id, type(records).__name__)
        )
        records = []

    return {
        "org_name": org_name,
        "report_id": report_id,
        "email": report_metadata.get("email") or None,
        "extra_contact_info": report_metadata.get("extra_contact_info") or None,
        "begin": _as_int(date_range.get("begin")),
        "end": _as_int(date_range.get("end")),
        "policy_published": {
            "domain": policy_published.get("domain"),
            "adkim": policy_published.get("adkim") or None,
            "aspf": policy_published.get("aspf") or None,
            "p": policy_published.get("p") or None,
            "sp": policy_published.get("sp") or None,
            "pct": _as_int(policy_published.get("pct")),
        },
        "raw_xml": raw_xml,
        "records": [_parse_report_record(_as_dict(record)) for record in records],
    }


def _parse_smtp_tls_failure_details(failure_details: dict) -> SMTPTLSFailureDetails:
    return {
        "sending_mta_ip": failure_details.get("sending-mta-ip"),
        "receiving_ip": failure_details.get("receiving-ip"),
        "receiving_mx_hostname": failure_details.get("receiving-mx-hostname"),
        "result_type": failure_details.get("result-type"),
        "failed_session_count": _as_int(failure_details.get("failed-session-count")),
    }


def parse_smtp_tls_report_json(report: Union[str, bytes]) -> SMTPTLSReport:
    """Parses an SMTP TLS report

    Only the first policy of the report is used.

    Raises:
        InvalidSMTPTLSReport: The JSON is malformed or is not an SMTP TLS
        report
    """
    if isinstance(report, bytes):
        report = report.decode("utf-8", errors="replace")

    try:
        report_dict = json.loads(report)
    except ValueError as error:
        raise InvalidSMTPTLSReport("Invalid JSON: {0}".format(error.__str__()))
    if not isinstance(report_dict, dict):
        raise InvalidSMTPTLSReport("The JSON is not an SMTP TLS report")
    policies = report_dict.get("policies")
    if not isinstance(policies, list) or len(policies) == 0:
        raise InvalidSMTPTLSReport("The report has no policies")

    policy = _as_dict(policies[0])
    policy_details = _as_dict(policy.get("policy"))
    summary = _as_dict(policy.get("summary"))
    date_range = _as_dict(report_dict.get("date-range"))

    policy_strings = _as_list(policy_details.get("policy-string"))
    policy_mode = ""
    if len(policy_strings) > 1 and policy_strings[1] is not None:
        policy_mode = str(policy_strings[1]).replace("mode: ", "", 1)

    failed_session_count = _as_int(summary.get("total-failure-session-count")) or 0
    failure_details = []
    if failed_session_count != 0:
        details_list = policy.get("failure-details")
        if isinstance(details_list, dict):
            details_list = [details_list]
        elif not isinstance(details_list, list):
            logger.warning(
                "{0}: {1}: mystery type {2}, no failure details mapped".format(
                    report_dict.get("organization-name"),
                    report_dict.get("report-id"),
                    type(details_list).__name__,
                )
            )
            details_list = []
        for details in details_list:
            failure_details.append(_parse_smtp_tls_failure_details(_as_dict(details)))

    return {
        "organization_name": report_dict.get("organization-name"),
        "report_id": report_dict.get("report-id"),
        "contact_info": report_dict.get("contact-info"),
        "begin_date": iso_timestamp_to_sql(date_range.get("start-datetime")),
        "end_date": iso_timestamp_to_sql(date_range.get("end-datetime")),
        "policy_mode": policy_mode,
        "policy_domain": policy_details.get("policy-domain"),
        "successful_session_count": _as_int(
            summary.get("total-successful-session-count")
        ),
        "failed_session_count": failed_session_count,
        "raw_json": report,
        "failure_details": failure_details,
    }


def _load_report(
    content: bytes, report_type: str, source: str, label: str
) -> Optional[Report]:
    if source == SOURCE_MESSAGE:
        report_content = extract_report_from_message(content, report_type, label)
        if report_content is None:
            return None
    elif source == SOURCE_ARCHIVE:
        report_content = decode_archive(content, "none")
    else:
        report_content = content

    if report_type == "tls":
        return parse_smtp_tls_report_json(report_content)
    return parse_aggregate_report_xml(report_content)


def process_report(
    content: bytes,
    label: str,
    *,
    database: ReportDatabase,
    report_type: str = "dmarc",
    source: str = SOURCE_MESSAGE,
    delete_reports: bool = False,
    delete_failed: bool = False,
) -> ProcessResult:
    """
    Extracts, parses and stores the report held by a mail, file or archive

    Args:
        content (bytes): The raw mail, report or archive
        label (str): Names the item in log messages
        database: The report database
        report_type (str): ``dmarc`` or ``tls``
        source (str): ``message``, ``report`` or ``archive``
        delete_reports (bool): Mark processed items for deletion
        delete_failed (bool): Also mark items without a valid report for
            deletion

    Returns:
        ProcessResult: ``VALID`` when a report was found, ``DELETE`` when
        the item should be removed, ``DATABASE_ERROR`` when the report could
        not be stored
    """
    report_name = "DMARC" if report_type == "dmarc" else "TLS"
    report = None
    try:
        report = _load_report(content, report_type, source, label)
    except ParserError as error:
        logger.warning("{0}: {1}".format(label, error.__str__()))

    if report is not None:
        if report_type == "tls":
            stored = database.save_smtp_tls_report(report)
        else:
            stored = database.save_aggregate_report(report)
        if stored == StoreResult.FAILED:
            logger.warning("Skipping {0} due to database errors.".format(label))
            return ProcessResult.VALID | ProcessResult.DATABASE_ERROR

    if delete_reports and (report is not None or delete_failed):
        if report is not None:
            logger.debug("Removing {0} after report has been processed.".format(label))
            return ProcessResult.VALID | ProcessResult.DELETE
        logger.warning(
            "The {0} does not seem to contain a valid {1} report. Skipped and "
            "removed. Content:\n{2}".format(
                label, report_name, content.decode("utf-8", errors="replace")
            )
        )
        return ProcessResult.DELETE

    if report is None:
        logger.warning(
            "The {0} does not seem to contain a valid {1} report. "
            "Skipped.".format(label, report_name)
        )
        return ProcessResult(0)

    return ProcessResult.VALID


def expand_paths(patterns: Sequence[str]) -> List[str]:
    """Expands glob patterns into a sorted list of unique paths"""
    paths = []
    for pattern in patterns:
        matches = glob(pattern)
        if len(matches) == 0:
            logger.warning("No files match {0}".format(pattern))
        paths += matches
    return sorted(set(paths))


def process_files(
    paths: Sequence[str],
    source: str,
    *,
    database: ReportDatabase,
    report_type: str = "dmarc",
    delete_reports: bool = False,
    delete_failed: bool = False,
    progress_bar=None,
) -> int:
    """
    Processes report, message or archive files

    Files are deleted when their result has the ``DELETE`` flag and not the
    ``DATABASE_ERROR`` flag.

    Args:
        paths: File paths or glob patterns
        source (str): ``message``, ``report`` or ``archive``
        database: The report database
        report_type (str): ``dmarc`` or ``tls``
        delete_reports (bool): Delete processed files
        delete_failed (bool): Also delete files without a valid report
        progress_bar: An optional ``tqdm`` progress bar

    Returns:
        int: The number of files processed
    """
    if source not in SOURCES:
        raise ValueError("Unknown source {0}".format(source))

    processed = 0
    for path in expand_paths(paths):
        try:
            with open(path, "rb") as report_file:
                content = report_file.read()
        except OSError as error:
            logger.error("Unable to read {0}: {1}".format(path, error.__str__()))
            continue

        result = process_report(
            content,
            path,
            database=database,
            report_type=report_type,
            source=source,
            delete_reports=delete_reports,
            delete_failed=delete_failed,
        )
        if result & ProcessResult.DELETE and not result & ProcessResult.DATABASE_ERROR:
            logger.info("Removing {0}".format(path))
            try:
                os.unlink(path)
            except OSError as error:
                logger.error(
                    "Unable to remove {0}: {1}".format(path, error.__str__())
                )
        processed += 1
        if progress_bar is not None:
            progress_bar.update(1)

    return processed


def process_mbox(
    path: str,
    *,
    database: ReportDatabase,
    report_type: str = "dmarc",
    delete_reports: bool = False,
    delete_failed: bool = False,
) -> int:
    """
    Processes every message of a mailbox in mbox format

    Removing messages from mbox files is not supported.

    Returns:
        int: The number of messages processed
    """
    if not is_mbox(path):
        logger.warning("{0} is not an mbox file or is empty".format(path))
        return 0

    mbox = mailbox.mbox(path, create=False)
    message_keys = mbox.keys()
    total_messages = len(message_keys)
    logger.debug("Found {0} messages in {1}".format(total_messages, path))
    for i, message_key in enumerate(message_keys):
        logger.info("Processing message {0} of {1}".format(i + 1, total_messages))
        result = process_report(
            mbox.get_bytes(message_key),
            "message #{0} of {1}".format(i + 1, path),
            database=database,
            report_type=report_type,
            source=SOURCE_MESSAGE,
            delete_reports=delete_reports,
            delete_failed=delete_failed,
        )
        if result & ProcessResult.DELETE and not result & ProcessResult.DATABASE_ERROR:
            logger.warning(
                "Removing message #{0} from mbox file is not yet supported.".format(
                    i + 1
                )
            )
    mbox.close()

    return total_messages


def process_mailbox(
    connection: MailboxConnection,
    *,
    database: ReportDatabase,
    folder: str = "INBOX",
    processed_folder: Optional[str] = None,
    error_folder: Optional[str] = None,
    report_type: str = "dmarc",
    delete_reports: bool = False,
    delete_failed: bool = False,
) -> int:
    """
    Fetches and processes reports from a mailbox folder

    Args:
        connection: A mailbox connection
        database: The report database
        folder (str): The folder where reports can be found
        processed_folder (str): Move processed mail to this folder
        error_folder (str): Move mail that failed to this folder
        report_type (str): ``dmarc`` or ``tls``
        delete_reports (bool): Delete processed mail
        delete_failed (bool): Also delete mail without a valid report

    Returns:
        int: The number of messages processed
    """
    messages = connection.fetch_messages(folder)
    total_messages = len(messages)
    logger.info("Found {0} messages in {1}".format(total_messages, folder))

    for i, message_id in enumerate(messages):
        logger.debug(
            "Processing message {0} of {1}: UID {2}".format(
                i + 1, total_messages, message_id
            )
        )
        result = process_report(
            connection.fetch_message(message_id),
            "message UID {0} in {1}".format(message_id, folder),
            database=database,
            report_type=report_type,
            source=SOURCE_MESSAGE,
            delete_reports=delete_reports,
            delete_failed=delete_failed,
        )

        if result & ProcessResult.DATABASE_ERROR:
            if error_folder:
                connection.move_message(message_id, error_folder)
        elif result & ProcessResult.DELETE:
            logger.debug("Deleting message UID {0}".format(message_id))
            connection.delete_message(message_id)
        elif processed_folder:
            if result & ProcessResult.VALID or not error_folder:
                connection.move_message(message_id, processed_folder)
            else:
                connection.move_message(message_id, error_folder)
        elif error_folder and not result & ProcessResult.VALID:
            connection.move_message(message_id, error_folder)

    if total_messages > 0:
        connection.expunge()

    return total_messages
