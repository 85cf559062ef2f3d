from __future__ import absolute_import, print_function, unicode_literals

import base64
import gzip
import ipaddress
import json
import mailbox
import os
import shutil
import tempfile
import unittest
import zipfile
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from glob import glob
from io import BytesIO
from unittest import mock

from sqlalchemy import text

import dmarcdb
import dmarcdb.utils
from dmarcdb import ProcessResult
from dmarcdb.config import ConfigurationError, ParserConfig, load_config
from dmarcdb.database import (
    SCHEMA,
    Column,
    MySQLBackend,
    PostgresBackend,
    ReportDatabase,
    SQLiteBackend,
    StoreResult,
    build_database_url,
    create_database_engine,
    ensure_schema,
    get_backend,
)
from dmarcdb.mail import MailboxConnection

AGGREGATE_TEMPLATE = """<?xml version="1.0" encoding="UTF-8" ?>
<feedback>
  <report_metadata>
    <org_name>{org_name}</org_name>
    <email>noreply-dmarc-support@google.com</email>
    <report_id>{report_id}</report_id>
    <date_range>
      <begin>1700006400</begin>
      <end>1700092799</end>
    </date_range>
  </report_metadata>
  <policy_published>
    <domain>example.com</domain>
    <adkim>r</adkim>
    <aspf>r</aspf>
    <p>none</p>
    <sp>none</sp>
    <pct>100</pct>
  </policy_published>
{records}
</feedback>
"""

RECORD_TEMPLATE = """  <record>
    <row>
      <source_ip>{source_ip}</source_ip>
      <count>{count}</count>
      <policy_evaluated>
        <disposition>none</disposition>
        <dkim>pass</dkim>
        <spf>pass</spf>
      </policy_evaluated>
    </row>
    <identifiers>
      <header_from>example.com</header_from>
    </identifiers>
    <auth_results>
{auth_results}
    </auth_results>
  </record>
"""

PASSING_AUTH_RESULTS = (
    "<dkim><domain>example.com</domain><result>pass</result></dkim>"
    "<spf><domain>example.com</domain><result>pass</result></spf>"
)


def dkim_results(*results):
    return "".join(
        "<dkim><domain>d{0}.example.com</domain><result>{1}</result></dkim>".format(
            i, result
        )
        for i, result in enumerate(results)
    )


def aggregate_record(source_ip="66.249.80.0", count=2, auth_results=None):
    if auth_results is None:
        auth_results = PASSING_AUTH_RESULTS
    return RECORD_TEMPLATE.format(
        source_ip=source_ip, count=count, auth_results=auth_results
    )


def aggregate_xml(org_name="Google", report_id="123", records=None):
    if records is None:
        records = [aggregate_record()]
    return AGGREGATE_TEMPLATE.format(
        org_name=org_name, report_id=report_id, records="".join(records)
    )


def smtp_tls_json(report_id="2023-11-15T00:00:00Z_example.com", failures=None,
                  failure_details=None, policy_string=None):
    policy = {
        "policy": {"policy-type": "sts", "policy-domain": "example.com"},
        "summary": {"total-successful-session-count": 10},
    }
    if policy_string is not None:
        policy["policy"]["policy-string"] = policy_string
    if failures is not None:
        policy["summary"]["total-failure-session-count"] = failures
    if failure_details is not None:
        policy["failure-details"] = failure_details
    return json.dumps(
        {
            "organization-name": "Google Inc.",
            "date-range": {
                "start-datetime": "2023-11-15T00:00:00Z",
                "end-datetime": "2023-11-15T23:59:59Z",
            },
            "contact-info": "smtp-tls-reporting@google.com",
            "report-id": report_id,
            "policies": [policy],
        }
    )


def zip_bytes(members):
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in members:
            archive.writestr(name, content)
    return buffer.getvalue()


def build_message(parts=(), subject="Report domain: example.com"):
    """Builds a multipart message from (content type, payload, filename)
    tuples"""
    message = MIMEMultipart()
    message["Subject"] = subject
    message["From"] = "noreply-dmarc-support@google.com"
    message["To"] = "dmarc@example.com"
    message.attach(MIMEText("This is an aggregate report", "plain"))
    for content_type, payload, filename in parts:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        if filename:
            part.add_header("Content-Disposition", "attachment", filename=filename)
        message.attach(part)
    return message.as_bytes()


def build_single_part_message(content_type, payload):
    maintype, subtype = content_type.split("/", 1)
    message = MIMEBase(maintype, subtype)
    message.set_payload(payload)
    encoders.encode_base64(message)
    message["Subject"] = "Report domain: example.com"
    return message.as_bytes()


class FakeDatabase(object):
    def __init__(self, result=StoreResult.STORED):
        self.result = result
        self.saved = []

    def save_aggregate_report(self, report):
        self.saved.append(report)
        return self.result

    def save_smtp_tls_report(self, report):
        self.saved.append(report)
        return self.result


class FakeMailboxConnection(MailboxConnection):
    def __init__(self, messages):
        self.messages = dict(messages)
        self.moved = {}
        self.deleted = []
        self.expunged = False

    def fetch_messages(self, reports_folder, **kwargs):
        return list(self.messages.keys())

    def fetch_message(self, message_id):
        return self.messages[message_id]

    def delete_message(self, message_id):
        self.deleted.append(message_id)

    def move_message(self, message_id, folder_name):
        self.moved[message_id] = folder_name

    def expunge(self):
        self.expunged = True


class UtilsTest(unittest.TestCase):
    def testParseIPAddress(self):
        self.assertEqual(
            dmarcdb.utils.parse_ip_address("192.0.2.1"), ("ip", 3221225985)
        )
        ip_type, packed = dmarcdb.utils.parse_ip_address("2001:db8::1")
        self.assertEqual(ip_type, "ip6")
        self.assertEqual(len(packed), 16)
        self.assertEqual(ipaddress.ip_address(packed), ipaddress.ip_address("2001:db8::1"))
        with self.assertRaises(ValueError):
            dmarcdb.utils.parse_ip_address("999.1.1.1")

    def testISOTimestampToSQL(self):
        self.assertEqual(
            dmarcdb.utils.iso_timestamp_to_sql("2023-11-15T23:59:59Z"),
            "2023-11-15 23:59:59",
        )
        self.assertIsNone(dmarcdb.utils.iso_timestamp_to_sql(None))

    def testCompressPayload(self):
        compressed = dmarcdb.utils.compress_payload("<feedback/>")
        self.assertNotIn("\n", compressed)
        self.assertEqual(
            gzip.decompress(base64.b64decode(compressed)), b"<feedback/>"
        )


class DecodeArchiveTest(unittest.TestCase):
    xml = aggregate_xml().encode("utf-8")

    def testGzip(self):
        content = gzip.compress(self.xml)
        self.assertEqual(dmarcdb.decode_archive(content, "gzip"), self.xml)

    def testZipReadsFirstMember(self):
        content = zip_bytes([("report.xml", self.xml), ("other.xml", b"<a/>")])
        self.assertEqual(dmarcdb.decode_archive(content, "zip"), self.xml)

    def testMagicNumberDetection(self):
        self.assertEqual(
            dmarcdb.decode_archive(gzip.compress(self.xml), "none"), self.xml
        )
        self.assertEqual(
            dmarcdb.decode_archive(zip_bytes([("r.xml", self.xml)]), "none"), self.xml
        )
        self.assertEqual(dmarcdb.decode_archive(self.xml, "none"), self.xml)

    def testEmptyGzip(self):
        with self.assertRaises(dmarcdb.DecodeError):
            dmarcdb.decode_archive(gzip.compress(b""), "gzip")

    def testCorruptGzip(self):
        with self.assertRaises(dmarcdb.DecodeError):
            dmarcdb.decode_archive(b"\x1f\x8bnot really gzip", "gzip")

    def testZipWithoutMembers(self):
        with self.assertRaises(dmarcdb.DecodeError):
            dmarcdb.decode_archive(zip_bytes([]), "zip")

    def testZipWithEmptyFirstMember(self):
        with self.assertRaises(dmarcdb.DecodeError):
            dmarcdb.decode_archive(zip_bytes([("empty.xml", b"")]), "zip")

    def testCorruptZip(self):
        with self.assertRaises(dmarcdb.DecodeError):
            dmarcdb.decode_archive(b"PK\x03\x04 truncated", "zip")

    def testDecodeArchiveFile(self):
        directory = tempfile.mkdtemp()
        try:
            path = os.path.join(directory, "report.xml.gz")
            with open(path, "wb") as archive_file:
                archive_file.write(gzip.compress(self.xml))
            self.assertEqual(dmarcdb.decode_archive_file(path, "gzip"), self.xml)
            with self.assertRaises(dmarcdb.DecodeError):
                dmarcdb.decode_archive_file(
                    os.path.join(directory, "missing.gz"), "gzip"
                )
        finally:
            shutil.rmtree(directory)


class ExtractReportTest(unittest.TestCase):
    xml = aggregate_xml().encode("utf-8")

    def testTopLevelGzip(self):
        message = build_single_part_message("application/gzip", gzip.compress(self.xml))
        self.assertEqual(dmarcdb.extract_report_from_message(message), self.xml)

    def testTopLevelZip(self):
        message = build_single_part_message(
            "application/zip", zip_bytes([("report.xml", self.xml)])
        )
        self.assertEqual(dmarcdb.extract_report_from_message(message), self.xml)

    def testContentTypeWithoutHyphen(self):
        message = build_single_part_message(
            "application/zip", zip_bytes([("report.xml", self.xml)])
        )
        message = message.replace(b"Content-Type:", b"ContentType:", 1)
        self.assertIn(b"ContentType: application/zip", message)
        self.assertEqual(dmarcdb.extract_report_from_message(message), self.xml)

    def testMultipartGzipWinsOverZip(self):
        zipped = zip_bytes([("old.xml", b"<feedback/>")])
        message = build_message(
            [
                ("application/zip", zipped, "report.zip"),
                ("application/gzip", gzip.compress(self.xml), "report.xml.gz"),
                ("application/zip", zipped, "later.zip"),
            ]
        )
        with dmarcdb.locate_report_archive(message) as location:
            self.assertEqual(location.kind, "gzip")
        self.assertEqual(dmarcdb.extract_report_from_message(message), self.xml)

    def testMultipartZipCandidate(self):
        message = build_message(
            [("application/x-zip-compressed", zip_bytes([("r.xml", self.xml)]), "r.zip")]
        )
        with dmarcdb.locate_report_archive(message) as location:
            self.assertEqual(location.kind, "zip")
        self.assertEqual(dmarcdb.extract_report_from_message(message), self.xml)

    def testOctetStreamKindFromFilename(self):
        message = build_message(
            [("application/octet-stream", gzip.compress(self.xml), "report.xml.gz")]
        )
        with dmarcdb.locate_report_archive(message) as location:
            self.assertEqual(location.kind, "gzip")

        message = build_message(
            [("application/octet-stream", zip_bytes([("r.xml", self.xml)]), "report")]
        )
        with dmarcdb.locate_report_archive(message) as location:
            self.assertEqual(location.kind, "none")
        self.assertEqual(dmarcdb.extract_report_from_message(message), self.xml)

    def testLastCandidateWins(self):
        message = build_message(
            [
                ("application/zip", zip_bytes([("old.xml", b"<a/>")]), "report.zip"),
                ("text/xml", self.xml, "report.xml"),
            ]
        )
        with dmarcdb.locate_report_archive(message) as location:
            self.assertEqual(location.kind, "none")
        self.assertEqual(dmarcdb.extract_report_from_message(message), self.xml)

    def testTLSReportMessage(self):
        report = smtp_tls_json().encode("utf-8")
        message = build_message(
            [("application/tlsrpt+gzip", gzip.compress(report), "report.json.gz")]
        )
        self.assertEqual(dmarcdb.extract_report_from_message(message, "tls"), report)
        # DMARC messages do not match TLS content types
        self.assertIsNone(dmarcdb.extract_report_from_message(message, "dmarc"))

        message = build_single_part_message("application/tlsrpt+json", report)
        self.assertEqual(dmarcdb.extract_report_from_message(message, "tls"), report)

    def testNoReport(self):
        message = build_message([("image/png", b"\x89PNG", "logo.png")])
        self.assertIsNone(dmarcdb.extract_report_from_message(message))

    def testCorruptArchive(self):
        message = build_message(
            [("application/gzip", b"\x1f\x8bbroken", "report.xml.gz")]
        )
        self.assertIsNone(dmarcdb.extract_report_from_message(message))

    def testCorruptArchiveLogsLabelAndSubject(self):
        message = build_message(
            [("application/gzip", b"\x1f\x8bbroken", "report.xml.gz")],
            subject="Report domain: example.com Submitter: google.com",
        )
        with self.assertLogs("dmarcdb", level="WARNING") as logs:
            dmarcdb.extract_report_from_message(message, label="message UID 42")
        self.assertTrue(
            any(
                "message UID 42 (Subject: Report domain: example.com Submitter: "
                "google.com): Invalid gzip archive" in line
                for line in logs.output
            )
        )

    def testTemporaryDirectoryRemoved(self):
        created = []
        temporary_directory = tempfile.TemporaryDirectory

        def tracking_temporary_directory(*args, **kwargs):
            directory = temporary_directory(*args, **kwargs)
            created.append(directory.name)
            return directory

        found = build_message(
            [("application/gzip", gzip.compress(self.xml), "report.xml.gz")]
        )
        not_found = build_message([("image/png", b"\x89PNG", "logo.png")])
        with mock.patch(
            "dmarcdb.tempfile.TemporaryDirectory",
            side_effect=tracking_temporary_directory,
        ):
            with dmarcdb.locate_report_archive(found) as location:
                self.assertTrue(os.path.exists(location.path))
            self.assertIsNone(dmarcdb.extract_report_from_message(not_found))
            self.assertIsNotNone(dmarcdb.extract_report_from_message(found))

        self.assertEqual(len(created), 3)
        for directory in created:
            self.assertFalse(os.path.exists(directory))


class AggregateReportTest(unittest.TestCase):
    def testAggregateSamples(self):
        """Test sample aggregate/rua DMARC reports"""
        print()
        sample_paths = glob("samples/aggregate/*")
        for sample_path in sample_paths:
            if os.path.isdir(sample_path):
                continue
            print("Testing {0}: ".format(sample_path), end="")
            with open(sample_path, "rb") as sample_file:
                report = dmarcdb.parse_aggregate_report_xml(sample_file.read())
            self.assertTrue(len(report["records"]) > 0)
            print("Passed!")

    def testGoogleSample(self):
        with open(
            "samples/aggregate/google.com!example.com!1700006400!1700092799.xml", "rb"
        ) as sample_file:
            report = dmarcdb.parse_aggregate_report_xml(sample_file.read())
        self.assertEqual(report["org_name"], "google.com")
        self.assertEqual(report["report_id"], "9391651994964116463")
        self.assertEqual(report["begin"], 1700006400)
        self.assertEqual(report["end"], 1700092799)
        self.assertEqual(report["policy_published"]["domain"], "example.com")
        self.assertEqual(report["policy_published"]["pct"], 100)
        self.assertEqual(len(report["records"]), 2)

        first, second = report["records"]
        self.assertEqual(first["source_ip"], "209.85.220.41")
        self.assertEqual(first["count"], 3)
        self.assertEqual(first["dkim_domain"], "example.com")
        self.assertEqual(first["dkim_result"], "pass")
        self.assertIsNone(first["reason"])
        self.assertTrue(first["has_auth_results"])

        self.assertEqual(second["source_ip"], "2001:db8:4860::1")
        self.assertEqual(second["disposition"], "quarantine")
        self.assertEqual(second["reason"], "forwarded")
        self.assertEqual(second["dkim_domain"], "example.net/mailer.example.org")
        self.assertEqual(second["dkim_result"], "fail")
        self.assertEqual(second["spf_result"], "softfail")

    def testPolicyPublishedListAndReasons(self):
        with open(
            "samples/aggregate/Mail.Ru!example.com!1700092800!1700179199.xml", "rb"
        ) as sample_file:
            report = dmarcdb.parse_aggregate_report_xml(sample_file.read())
        self.assertEqual(report["policy_published"]["domain"], "example.com")
        self.assertEqual(report["policy_published"]["adkim"], "s")
        self.assertIsNone(report["extra_contact_info"])
        record = report["records"][0]
        self.assertEqual(record["disposition"], "unknown")
        self.assertEqual(record["reason"], "local_policy/mailing_list")
        self.assertEqual(record["dkim_result"], "pass")
        self.assertEqual(record["dkim_domain"], "example.com/lists.example.org")

    def _record(self, auth_results):
        xml = aggregate_xml(records=[aggregate_record(auth_results=auth_results)])
        return dmarcdb.parse_aggregate_report_xml(xml)["records"][0]

    def testPassShortCircuitIsOrderIndependent(self):
        for results in (
            ("fail", "pass"),
            ("pass", "fail"),
            ("neutral", "temperror", "pass"),
            ("pass", "permerror", "none"),
        ):
            record = self._record(dkim_results(*results))
            self.assertEqual(record["dkim_result"], "pass", results)

    def testIdenticalResults(self):
        record = self._record(dkim_results("fail", "fail", "fail"))
        self.assertEqual(record["dkim_result"], "fail")
        self.assertEqual(
            record["dkim_domain"], "d0.example.com/d1.example.com/d2.example.com"
        )

    def testDifferingResults(self):
        record = self._record(dkim_results("fail", "neutral"))
        self.assertEqual(record["dkim_result"], "unknown")

    def testInvalidResultValues(self):
        record = self._record(dkim_results("bogus"))
        self.assertEqual(record["dkim_result"], "unknown")
        record = self._record(dkim_results("bogus", "bogus"))
        self.assertEqual(record["dkim_result"], "unknown")

    def testMissingAuthResultValues(self):
        record = self._record(dkim_results("pass"))
        self.assertEqual(record["spf_result"], "unknown")
        self.assertIsNone(record["spf_domain"])

    def testNestedDomain(self):
        record = self._record(
            "<dkim><domain><name>a.example.com</name></domain>"
            "<result>fail</result></dkim>"
            "<dkim><domain>b.example.com</domain><result>fail</result></dkim>"
        )
        self.assertEqual(record["dkim_domain"], "/b.example.com")

    def testEmptyAuthResults(self):
        record = self._record("")
        self.assertFalse(record["has_auth_results"])

    def testEmptySourceIP(self):
        xml = aggregate_xml(records=[aggregate_record(source_ip="")])
        record = dmarcdb.parse_aggregate_report_xml(xml)["records"][0]
        self.assertEqual(record["source_ip"], "")

    def testUnexpectedRecordShape(self):
        xml = aggregate_xml(records=["  <record>unexpected</record>\n"])
        report = dmarcdb.parse_aggregate_report_xml(xml)
        self.assertEqual(report["records"], [])

    def testInvalidXML(self):
        with self.assertRaises(dmarcdb.InvalidAggregateReport):
            dmarcdb.parse_aggregate_report_xml("<feedback><report_metadata>")
        with self.assertRaises(dmarcdb.ParseError):
            dmarcdb.parse_aggregate_report_xml("<html><body/></html>")


class SMTPTLSReportTest(unittest.TestCase):
    def testSMTPTLSSamples(self):
        """Test sample SMTP TLS reports"""
        print()
        sample_paths = glob("samples/smtp_tls/*")
        for sample_path in sample_paths:
            if os.path.isdir(sample_path):
                continue
            print("Testing {0}: ".format(sample_path), end="")
            with open(sample_path, "rb") as sample_file:
                dmarcdb.parse_smtp_tls_report_json(sample_file.read())
            print("Passed!")

    def testGoogleSample(self):
        with open("samples/smtp_tls/google.com!example.com!2023-11-15.json") as f:
            report = dmarcdb.parse_smtp_tls_report_json(f.read())
        self.assertEqual(report["organization_name"], "Google Inc.")
        self.assertEqual(report["begin_date"], "2023-11-15 00:00:00")
        self.assertEqual(report["end_date"], "2023-11-15 23:59:59")
        self.assertEqual(report["policy_mode"], "enforce")
        self.assertEqual(report["policy_domain"], "example.com")
        self.assertEqual(report["successful_session_count"], 1020)
        self.assertEqual(report["failed_session_count"], 3)
        self.assertEqual(len(report["failure_details"]), 2)
        failure = report["failure_details"][0]
        self.assertEqual(failure["sending_mta_ip"], "209.85.220.41")
        self.assertEqual(failure["receiving_ip"], "2001:db8::25")
        self.assertEqual(failure["result_type"], "certificate-expired")
        self.assertEqual(failure["failed_session_count"], 2)
        self.assertIsNone(report["failure_details"][1]["receiving_ip"])

    def testZeroFailuresIgnoresDetails(self):
        report = dmarcdb.parse_smtp_tls_report_json(
            smtp_tls_json(
                failures=0,
                failure_details=[
                    {"result-type": "starttls-not-supported", "failed-session-count": 7}
                ],
            )
        )
        self.assertEqual(report["failure_details"], [])

    def testFailureCountDefaultsToZero(self):
        report = dmarcdb.parse_smtp_tls_report_json(smtp_tls_json())
        self.assertEqual(report["failed_session_count"], 0)
        self.assertEqual(report["policy_mode"], "")

    def testSingleFailureDetailsObject(self):
        report = dmarcdb.parse_smtp_tls_report_json(
            smtp_tls_json(
                failures=1,
                failure_details={
                    "result-type": "validation-failure",
                    "failed-session-count": 1,
                },
            )
        )
        self.assertEqual(len(report["failure_details"]), 1)

    def testUnexpectedFailureDetailsShape(self):
        with self.assertLogs("dmarcdb", level="WARNING") as logs:
            report = dmarcdb.parse_smtp_tls_report_json(
                smtp_tls_json(failures=2, failure_details="oops")
            )
        self.assertEqual(report["failed_session_count"], 2)
        self.assertEqual(report["failure_details"], [])
        self.assertTrue(any("mystery type str" in line for line in logs.output))

    def testPolicyMode(self):
        report = dmarcdb.parse_smtp_tls_report_json(
            smtp_tls_json(policy_string=["version: STSv1", "mode: testing"])
        )
        self.assertEqual(report["policy_mode"], "testing")

    def testInvalidJSON(self):
        with self.assertRaises(dmarcdb.InvalidSMTPTLSReport):
            dmarcdb.parse_smtp_tls_report_json("{not json")
        with self.assertRaises(dmarcdb.InvalidSMTPTLSReport):
            dmarcdb.parse_smtp_tls_report_json("[1, 2]")
        with self.assertRaises(dmarcdb.InvalidSMTPTLSReport):
            dmarcdb.parse_smtp_tls_report_json('{"report-id": "x", "policies": []}')


class BackendTest(unittest.TestCase):
    def testGetBackend(self):
        self.assertIsInstance(get_backend("mysql"), MySQLBackend)
        self.assertIsInstance(get_backend("Postgres"), PostgresBackend)
        self.assertIsInstance(get_backend("sqlite"), SQLiteBackend)
        with self.assertRaises(ValueError):
            get_backend("oracle")

    def testEpochToTimestamp(self):
        self.assertEqual(MySQLBackend().epoch_to_timestamp("?"), "FROM_UNIXTIME(?)")
        self.assertEqual(PostgresBackend().epoch_to_timestamp("?"), "TO_TIMESTAMP(?)")

    def testHexLiterals(self):
        packed = ipaddress.ip_address("2001:db8::1").packed
        self.assertEqual(
            MySQLBackend().hex_literal(packed), "X'20010db8000000000000000000000001'"
        )
        self.assertEqual(
            PostgresBackend().hex_literal(packed),
            "'\\x20010db8000000000000000000000001'",
        )

    def testMySQLCreateTable(self):
        statements = MySQLBackend().create_table_statements(SCHEMA[0])
        self.assertEqual(len(statements), 1)
        sql = statements[0]
        self.assertIn("serial int unsigned NOT NULL AUTO_INCREMENT", sql)
        self.assertIn("mindate timestamp NOT NULL", sql)
        self.assertIn("policy_pct tinyint unsigned", sql)
        self.assertIn("raw_xml mediumtext", sql)
        self.assertIn("PRIMARY KEY (serial)", sql)
        self.assertIn("UNIQUE KEY domain (domain, reportid)", sql)
        self.assertTrue(sql.endswith("ROW_FORMAT=COMPRESSED"))

        sql = MySQLBackend().create_table_statements(SCHEMA[1])[0]
        self.assertIn("ip6 binary(16)", sql)
        self.assertIn(
            "disposition enum('none','quarantine','reject','unknown')", sql
        )
        self.assertIn("KEY serial6 (serial, ip6)", sql)

    def testPostgresCreateTable(self):
        statements = PostgresBackend().create_table_statements(SCHEMA[1])
        self.assertIn("id bigint GENERATED ALWAYS AS IDENTITY", statements[0])
        self.assertIn("ip6 bytea", statements[0])
        self.assertEqual(
            statements[1:],
            [
                "CREATE INDEX rptrecord_idx_serial ON rptrecord (serial, ip)",
                "CREATE INDEX rptrecord_idx_serial6 ON rptrecord (serial, ip6)",
            ],
        )
        statements = PostgresBackend().create_table_statements(SCHEMA[0])
        self.assertIn(
            "CREATE UNIQUE INDEX report_uidx_domain ON report (domain, reportid)",
            statements,
        )

    def testAddColumn(self):
        column = Column("policy_pct", "smallint")
        self.assertEqual(
            MySQLBackend().add_column("report", column, "policy_sp"),
            "ALTER TABLE report ADD policy_pct tinyint unsigned AFTER policy_sp",
        )
        self.assertEqual(
            MySQLBackend().add_column("report", Column("serial", "serial"), None),
            "ALTER TABLE report ADD serial int unsigned NOT NULL AUTO_INCREMENT FIRST",
        )
        self.assertEqual(
            PostgresBackend().add_column("report", column, "policy_sp"),
            "ALTER TABLE report ADD COLUMN policy_pct smallint",
        )

    def testModifyColumn(self):
        column = Column("raw_xml", "text")
        self.assertEqual(
            MySQLBackend().modify_column("report", column),
            "ALTER TABLE report MODIFY COLUMN raw_xml mediumtext",
        )
        self.assertEqual(
            PostgresBackend().modify_column("report", column),
            "ALTER TABLE report ALTER COLUMN raw_xml TYPE text",
        )
        self.assertIsNone(SQLiteBackend().modify_column("report", column))

    def testMySQLTimestampDefaults(self):
        backend = MySQLBackend()
        sql = backend.create_table_statements(SCHEMA[0])[0]
        self.assertIn(
            "mindate timestamp NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE "
            "CURRENT_TIMESTAMP",
            sql,
        )
        self.assertIn("maxdate timestamp NULL", sql)
        oauth = [table for table in SCHEMA if table.name == "oauth"][0]
        sql = backend.create_table_statements(oauth)[0]
        self.assertIn("expire timestamp NOT NULL,", sql)
        self.assertNotIn("CURRENT_TIMESTAMP", sql)

    def testDatabaseURL(self):
        url = build_database_url(
            MySQLBackend(), name="dmarc", user="dmarc", password="secret",
            host="localhost",
        )
        self.assertEqual(url.drivername, "mysql+mysqlconnector")
        self.assertEqual(url.database, "dmarc")
        url = build_database_url(SQLiteBackend(), path="/tmp/dmarc.sqlite")
        self.assertEqual(url.database, "/tmp/dmarc.sqlite")


class SQLiteTestCase(unittest.TestCase):
    def setUp(self):
        self.directory = tempfile.mkdtemp()
        self.backend = SQLiteBackend()
        url = build_database_url(
            self.backend, path=os.path.join(self.directory, "dmarc.sqlite")
        )
        self.engine = create_database_engine(url)

    def tearDown(self):
        self.engine.dispose()
        shutil.rmtree(self.directory)

    def query(self, sql, **params):
        with self.engine.connect() as connection:
            return connection.execute(text(sql), params).fetchall()

    def count(self, table, where="1 = 1", **params):
        return self.query(
            "SELECT COUNT(*) FROM {0} WHERE {1}".format(table, where), **params
        )[0][0]


class SchemaTest(SQLiteTestCase):
    def testSchemaIsIdempotent(self):
        self.assertEqual(ensure_schema(self.engine, self.backend), [])
        for table in SCHEMA:
            self.assertEqual(self.count(table.name), 0)
        self.assertEqual(ensure_schema(self.engine, self.backend), [])

    def testMissingColumnsAreAdded(self):
        with self.engine.begin() as connection:
            connection.exec_driver_sql(
                "CREATE TABLE report (serial INTEGER PRIMARY KEY AUTOINCREMENT, "
                "mindate TIMESTAMP NOT NULL, domain VARCHAR(255) NOT NULL, "
                "org VARCHAR(255) NOT NULL, reportid VARCHAR(255) NOT NULL)"
            )
        alterations = ensure_schema(self.engine, self.backend)
        self.assertEqual(len(alterations), 9)
        self.assertIn("ALTER TABLE report ADD COLUMN maxdate TIMESTAMP", alterations)
        self.assertIn("ALTER TABLE report ADD COLUMN raw_xml TEXT", alterations)
        self.assertEqual(ensure_schema(self.engine, self.backend), [])

    def testTypeMismatchCannotBeChanged(self):
        with self.engine.begin() as connection:
            connection.exec_driver_sql(
                "CREATE TABLE oauth (id INTEGER PRIMARY KEY AUTOINCREMENT, "
                "access_token TEXT, refresh_token VARCHAR(255), "
                "expire TIMESTAMP NOT NULL, valid INTEGER NOT NULL)"
            )
        with self.assertLogs("dmarcdb", level="WARNING") as logs:
            alterations = ensure_schema(self.engine, self.backend)
        self.assertEqual(alterations, [])
        self.assertTrue(any("access_token" in line for line in logs.output))


class ReportDatabaseTest(SQLiteTestCase):
    def setUp(self):
        super(ReportDatabaseTest, self).setUp()
        ensure_schema(self.engine, self.backend)
        self.database = ReportDatabase(self.engine, self.backend)

    def testScenarioAGzipReportIsStored(self):
        archive = gzip.compress(aggregate_xml().encode("utf-8"))
        report = dmarcdb.parse_aggregate_report_xml(
            dmarcdb.decode_archive(archive, "gzip")
        )
        self.assertEqual(len(report["records"]), 1)
        self.assertEqual(self.database.save_aggregate_report(report), StoreResult.STORED)
        rows = self.query(
            "SELECT org, domain, mindate, policy_pct FROM report WHERE reportid = :r",
            r="123",
        )
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0][0], "Google")
        self.assertEqual(rows[0][1], "example.com")
        self.assertEqual(rows[0][3], 100)
        rows = self.query("SELECT rcount, dkim_align, spf_align, dkimresult FROM rptrecord")
        self.assertEqual(rows, [(2, "pass", "pass", "pass")])

    def testScenarioBDuplicateIsNotStored(self):
        report = dmarcdb.parse_aggregate_report_xml(aggregate_xml())
        self.assertEqual(self.database.save_aggregate_report(report), StoreResult.STORED)
        self.assertEqual(
            self.database.save_aggregate_report(report), StoreResult.ALREADY_EXISTS
        )
        self.assertEqual(self.count("report"), 1)
        self.assertEqual(self.count("rptrecord"), 1)

    def testScenarioCReplace(self):
        report = dmarcdb.parse_aggregate_report_xml(aggregate_xml())
        self.database.save_aggregate_report(report)
        old_serial = self.query("SELECT serial FROM report WHERE reportid = '123'")[0][0]

        replacing_database = ReportDatabase(self.engine, self.backend, replace=True)
        report = dmarcdb.parse_aggregate_report_xml(
            aggregate_xml(records=[aggregate_record(count=7)])
        )
        self.assertEqual(
            replacing_database.save_aggregate_report(report), StoreResult.STORED
        )
        self.assertEqual(self.count("report", "reportid = :r", r="123"), 1)
        self.assertEqual(self.count("rptrecord", "serial = :s", s=old_serial), 0)
        self.assertEqual(self.query("SELECT rcount FROM rptrecord"), [(7,)])

    def testScenarioDEmptySourceIPRollsBack(self):
        report = dmarcdb.parse_aggregate_report_xml(
            aggregate_xml(
                report_id="456",
                records=[aggregate_record(), aggregate_record(source_ip="")],
            )
        )
        self.assertEqual(self.database.save_aggregate_report(report), StoreResult.FAILED)
        self.assertEqual(self.count("report", "reportid = :r", r="456"), 0)
        self.assertEqual(self.count("rptrecord"), 0)

    def testScenarioETLSZeroFailures(self):
        with open("samples/smtp_tls/microsoft.com!example.com!2023-11-16.json") as f:
            report = dmarcdb.parse_smtp_tls_report_json(f.read())
        self.assertEqual(self.database.save_smtp_tls_report(report), StoreResult.STORED)
        self.assertEqual(
            self.query("SELECT summary_success, summary_failure, policy_mode FROM tls"),
            [(42, 0, "")],
        )
        self.assertEqual(self.count("tlsrecord"), 0)

    def testMissingAuthResultsRollsBack(self):
        report = dmarcdb.parse_aggregate_report_xml(
            aggregate_xml(records=[aggregate_record(auth_results="")])
        )
        self.assertEqual(self.database.save_aggregate_report(report), StoreResult.FAILED)
        self.assertEqual(self.count("report"), 0)

    def testInvalidIPRollsBack(self):
        with open("samples/aggregate/invalid-source-ip.xml", "rb") as sample_file:
            report = dmarcdb.parse_aggregate_report_xml(sample_file.read())
        self.assertEqual(self.database.save_aggregate_report(report), StoreResult.FAILED)
        self.assertEqual(self.count("report"), 0)
        self.assertEqual(self.count("rptrecord"), 0)

    def testIPAddressRoundTrip(self):
        records = [
            aggregate_record(source_ip="192.0.2.1"),
            aggregate_record(source_ip="255.255.255.255"),
            aggregate_record(source_ip="2001:db8::1"),
            aggregate_record(source_ip="::ffff:192.0.2.128"),
        ]
        report = dmarcdb.parse_aggregate_report_xml(aggregate_xml(records=records))
        self.assertEqual(self.database.save_aggregate_report(report), StoreResult.STORED)

        rows = self.query("SELECT ip FROM rptrecord WHERE ip IS NOT NULL ORDER BY id")
        self.assertEqual(
            [str(ipaddress.ip_address(row[0])) for row in rows],
            ["192.0.2.1", "255.255.255.255"],
        )
        rows = self.query("SELECT ip6 FROM rptrecord WHERE ip6 IS NOT NULL ORDER BY id")
        self.assertEqual(
            [ipaddress.ip_address(bytes(row[0])) for row in rows],
            [
                ipaddress.ip_address("2001:db8::1"),
                ipaddress.ip_address("::ffff:192.0.2.128"),
            ],
        )

    def testTLSFailureDetails(self):
        with open("samples/smtp_tls/google.com!example.com!2023-11-15.json") as f:
            report = dmarcdb.parse_smtp_tls_report_json(f.read())
        self.assertEqual(self.database.save_smtp_tls_report(report), StoreResult.STORED)
        self.assertEqual(
            self.query("SELECT mindate, maxdate, policy_mode FROM tls"),
            [("2023-11-15 00:00:00", "2023-11-15 23:59:59", "enforce")],
        )
        rows = self.query(
            "SELECT send_ip, send_ip6, recv_ip, recv_ip6, recv_mx, type, count "
            "FROM tlsrecord ORDER BY id"
        )
        self.assertEqual(len(rows), 2)
        self.assertEqual(str(ipaddress.ip_address(rows[0][0])), "209.85.220.41")
        self.assertIsNone(rows[0][1])
        self.assertEqual(
            ipaddress.ip_address(bytes(rows[0][3])), ipaddress.ip_address("2001:db8::25")
        )
        self.assertEqual(rows[0][4:], ("mx1.example.com", "certificate-expired", 2))
        self.assertIsNone(rows[1][0])
        self.assertIsNone(rows[1][2])
        self.assertIsNone(rows[1][3])
        self.assertEqual(
            self.database.save_smtp_tls_report(report), StoreResult.ALREADY_EXISTS
        )

    def testCompressedRawXML(self):
        database = ReportDatabase(self.engine, self.backend, compress_xml=True)
        xml = aggregate_xml()
        report = dmarcdb.parse_aggregate_report_xml(xml)
        self.assertEqual(database.save_aggregate_report(report), StoreResult.STORED)
        raw_xml = self.query("SELECT raw_xml FROM report")[0][0]
        self.assertEqual(
            gzip.decompress(base64.b64decode(raw_xml)).decode("utf-8"), xml
        )

    def testOversizedRawPayloadIsNotStored(self):
        database = ReportDatabase(
            self.engine, self.backend, max_xml_size=10, max_json_size=10
        )
        report = dmarcdb.parse_aggregate_report_xml(aggregate_xml())
        self.assertEqual(database.save_aggregate_report(report), StoreResult.STORED)
        self.assertEqual(self.query("SELECT raw_xml FROM report"), [("",)])

        report = dmarcdb.parse_smtp_tls_report_json(smtp_tls_json())
        self.assertEqual(database.save_smtp_tls_report(report), StoreResult.STORED)
        self.assertEqual(self.query("SELECT raw_json FROM tls"), [("",)])

    def testProcessMessageEndToEnd(self):
        message = build_message(
            [
                (
                    "application/gzip",
                    gzip.compress(aggregate_xml().encode("utf-8")),
                    "google.com!example.com!1700006400!1700092799.xml.gz",
                )
            ]
        )
        result = dmarcdb.process_report(
            message, "message", database=self.database, delete_reports=True
        )
        self.assertEqual(result, ProcessResult.VALID | ProcessResult.DELETE)
        self.assertEqual(self.count("rptrecord"), 1)

    def testReplaceContinuesWhenRecordsCannotBeDeleted(self):
        report = dmarcdb.parse_aggregate_report_xml(aggregate_xml())
        self.assertEqual(self.database.save_aggregate_report(report), StoreResult.STORED)
        with self.engine.begin() as connection:
            connection.exec_driver_sql(
                "CREATE TRIGGER keep_rptrecord BEFORE DELETE ON rptrecord "
                "BEGIN SELECT RAISE(ABORT, 'rptrecord is read only'); END"
            )

        replacing_database = ReportDatabase(self.engine, self.backend, replace=True)
        report = dmarcdb.parse_aggregate_report_xml(
            aggregate_xml(records=[aggregate_record(count=9)])
        )
        with self.assertLogs("dmarcdb", level="WARNING") as logs:
            result = replacing_database.save_aggregate_report(report)
        self.assertEqual(result, StoreResult.STORED)
        self.assertTrue(
            any("Cannot remove report data from database" in line for line in logs.output)
        )
        self.assertEqual(self.count("report", "reportid = :r", r="123"), 1)
        self.assertEqual(
            self.query("SELECT rcount FROM rptrecord ORDER BY id"), [(2,), (9,)]
        )

    def testCompressionFailureIsNotStored(self):
        database = ReportDatabase(
            self.engine, self.backend, compress_xml=True, compress_json=True
        )
        with mock.patch(
            "dmarcdb.database.compress_payload", side_effect=OSError("disk full")
        ):
            report = dmarcdb.parse_aggregate_report_xml(aggregate_xml())
            self.assertEqual(database.save_aggregate_report(report), StoreResult.FAILED)
            report = dmarcdb.parse_smtp_tls_report_json(smtp_tls_json())
            self.assertEqual(database.save_smtp_tls_report(report), StoreResult.FAILED)
        self.assertEqual(self.count("report"), 0)
        self.assertEqual(self.count("tls"), 0)

    def testTLSReplace(self):
        report = dmarcdb.parse_smtp_tls_report_json(
            smtp_tls_json(
                failures=2,
                failure_details=[
                    {
                        "result-type": "certificate-expired",
                        "receiving-mx-hostname": "mx1.example.com",
                        "failed-session-count": 2,
                    }
                ],
            )
        )
        self.assertEqual(self.database.save_smtp_tls_report(report), StoreResult.STORED)
        old_serial = self.query("SELECT serial FROM tls")[0][0]

        replacing_database = ReportDatabase(self.engine, self.backend, replace=True)
        report = dmarcdb.parse_smtp_tls_report_json(
            smtp_tls_json(
                failures=5,
                failure_details=[
                    {
                        "result-type": "validation-failure",
                        "receiving-mx-hostname": "mx2.example.com",
                        "failed-session-count": 5,
                    }
                ],
            )
        )
        self.assertEqual(
            replacing_database.save_smtp_tls_report(report), StoreResult.STORED
        )
        self.assertEqual(self.count("tls"), 1)
        self.assertEqual(self.query("SELECT summary_failure FROM tls"), [(5,)])
        self.assertEqual(self.count("tlsrecord", "serial = :s", s=old_serial), 0)
        self.assertEqual(
            self.query("SELECT recv_mx, type, count FROM tlsrecord"),
            [("mx2.example.com", "validation-failure", 5)],
        )

    def testTLSUnexpectedFailureDetailsShapeIsStored(self):
        report = dmarcdb.parse_smtp_tls_report_json(
            smtp_tls_json(failures=2, failure_details="oops")
        )
        self.assertEqual(self.database.save_smtp_tls_report(report), StoreResult.STORED)
        self.assertEqual(self.query("SELECT summary_failure FROM tls"), [(2,)])
        self.assertEqual(self.count("tlsrecord"), 0)


class ProcessReportTest(unittest.TestCase):
    xml = aggregate_xml().encode("utf-8")

    def process(self, content, database, **kwargs):
        kwargs.setdefault("source", dmarcdb.SOURCE_REPORT)
        return dmarcdb.process_report(content, "test item", database=database, **kwargs)

    def testValid(self):
        database = FakeDatabase()
        self.assertEqual(self.process(self.xml, database), ProcessResult.VALID)
        self.assertEqual(len(database.saved), 1)

    def testValidAndDelete(self):
        result = self.process(self.xml, FakeDatabase(), delete_reports=True)
        self.assertEqual(result, ProcessResult.VALID | ProcessResult.DELETE)

    def testAlreadyExistsCanBeDeleted(self):
        result = self.process(
            self.xml, FakeDatabase(StoreResult.ALREADY_EXISTS), delete_reports=True
        )
        self.assertEqual(result, ProcessResult.VALID | ProcessResult.DELETE)

    def testDatabaseErrorIsNeverDeleted(self):
        result = self.process(
            self.xml,
            FakeDatabase(StoreResult.FAILED),
            delete_reports=True,
            delete_failed=True,
        )
        self.assertEqual(result, ProcessResult.VALID | ProcessResult.DATABASE_ERROR)
        self.assertFalse(result & ProcessResult.DELETE)

    def testInvalid(self):
        database = FakeDatabase()
        self.assertEqual(self.process(b"not a report", database), ProcessResult(0))
        self.assertEqual(
            self.process(b"not a report", database, delete_reports=True),
            ProcessResult(0),
        )
        self.assertEqual(database.saved, [])

    def testInvalidWithDeleteFailed(self):
        with self.assertLogs("dmarcdb", level="WARNING") as logs:
            result = self.process(
                b"not a report",
                FakeDatabase(),
                delete_reports=True,
                delete_failed=True,
            )
        self.assertEqual(result, ProcessResult.DELETE)
        self.assertTrue(any("not a report" in line for line in logs.output))

    def testArchiveSource(self):
        result = self.process(
            zip_bytes([("report.xml", self.xml)]),
            FakeDatabase(),
            source=dmarcdb.SOURCE_ARCHIVE,
        )
        self.assertEqual(result, ProcessResult.VALID)
        result = self.process(
            b"\x1f\x8bbroken", FakeDatabase(), source=dmarcdb.SOURCE_ARCHIVE
        )
        self.assertEqual(result, ProcessResult(0))

    def testTLSReport(self):
        database = FakeDatabase()
        result = self.process(
            smtp_tls_json().encode("utf-8"), database, report_type="tls"
        )
        self.assertEqual(result, ProcessResult.VALID)
        self.assertEqual(database.saved[0]["organization_name"], "Google Inc.")


class SourceAdapterTest(unittest.TestCase):
    def setUp(self):
        self.directory = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.directory)

    def write(self, name, content):
        path = os.path.join(self.directory, name)
        with open(path, "wb") as output_file:
            output_file.write(content)
        return path

    def testProcessFilesDeletesStoredReports(self):
        valid = self.write("valid.xml", aggregate_xml().encode("utf-8"))
        invalid = self.write("invalid.xml", b"<html/>")
        processed = dmarcdb.process_files(
            [os.path.join(self.directory, "*.xml")],
            dmarcdb.SOURCE_REPORT,
            database=FakeDatabase(),
            delete_reports=True,
        )
        self.assertEqual(processed, 2)
        self.assertFalse(os.path.exists(valid))
        self.assertTrue(os.path.exists(invalid))

    def testProcessFilesKeepsFilesOnDatabaseError(self):
        valid = self.write("valid.xml", aggregate_xml().encode("utf-8"))
        dmarcdb.process_files(
            [valid],
            dmarcdb.SOURCE_REPORT,
            database=FakeDatabase(StoreResult.FAILED),
            delete_reports=True,
            delete_failed=True,
        )
        self.assertTrue(os.path.exists(valid))

    def testProcessFilesDeleteFailed(self):
        invalid = self.write("invalid.eml", build_message())
        dmarcdb.process_files(
            [invalid],
            dmarcdb.SOURCE_MESSAGE,
            database=FakeDatabase(),
            delete_reports=True,
            delete_failed=True,
        )
        self.assertFalse(os.path.exists(invalid))

    def testProcessFilesUnknownSource(self):
        with self.assertRaises(ValueError):
            dmarcdb.process_files([], "mbox", database=FakeDatabase())

    def testProcessMbox(self):
        path = os.path.join(self.directory, "reports.mbox")
        mbox = mailbox.mbox(path)
        mbox.add(
            build_message(
                [
                    (
                        "application/gzip",
                        gzip.compress(aggregate_xml().encode("utf-8")),
                        "report.xml.gz",
                    )
                ]
            )
        )
        mbox.add(build_message())
        mbox.flush()
        mbox.close()

        database = FakeDatabase()
        with self.assertLogs("dmarcdb", level="WARNING") as logs:
            processed = dmarcdb.process_mbox(
                path, database=database, delete_reports=True
            )
        self.assertEqual(processed, 2)
        self.assertEqual(len(database.saved), 1)
        self.assertTrue(any("not yet supported" in line for line in logs.output))

    def testProcessMboxNotAnMbox(self):
        path = self.write("empty.mbox", b"")
        self.assertEqual(dmarcdb.process_mbox(path, database=FakeDatabase()), 0)


class ProcessMailboxTest(unittest.TestCase):
    def setUp(self):
        self.connection = FakeMailboxConnection(
            [(uid, b"message %d" % uid) for uid in (1, 2, 3, 4)]
        )

    def process(self, results, **kwargs):
        with mock.patch("dmarcdb.process_report", side_effect=results):
            return dmarcdb.process_mailbox(
                self.connection, database=FakeDatabase(), **kwargs
            )

    def testProcessedAndErrorFolders(self):
        processed = self.process(
            [
                ProcessResult.VALID | ProcessResult.DATABASE_ERROR,
                ProcessResult.VALID | ProcessResult.DELETE,
                ProcessResult.VALID,
                ProcessResult(0),
            ],
            processed_folder="Processed",
            error_folder="Errors",
        )
        self.assertEqual(processed, 4)
        self.assertEqual(self.connection.moved, {1: "Errors", 3: "Processed", 4: "Errors"})
        self.assertEqual(self.connection.deleted, [2])
        self.assertTrue(self.connection.expunged)

    def testProcessedFolderOnly(self):
        self.process(
            [
                ProcessResult.VALID | ProcessResult.DATABASE_ERROR,
                ProcessResult.DELETE,
                ProcessResult.VALID,
                ProcessResult(0),
            ],
            processed_folder="Processed",
        )
        # Database errors stay in place without an error folder
        self.assertEqual(self.connection.moved, {3: "Processed", 4: "Processed"})
        self.assertEqual(self.connection.deleted, [2])

    def testErrorFolderOnly(self):
        self.process(
            [
                ProcessResult.VALID | ProcessResult.DATABASE_ERROR,
                ProcessResult.VALID,
                ProcessResult.VALID,
                ProcessResult(0),
            ],
            error_folder="Errors",
        )
        self.assertEqual(self.connection.moved, {1: "Errors", 4: "Errors"})
        self.assertEqual(self.connection.deleted, [])

    def testNoFolders(self):
        self.process([ProcessResult.VALID] * 4)
        self.assertEqual(self.connection.moved, {})
        self.assertEqual(self.connection.deleted, [])


class ConfigTest(unittest.TestCase):
    def setUp(self):
        self.directory = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.directory)

    def write_config(self, content):
        path = os.path.join(self.directory, "dmarcdb.ini")
        with open(path, "w") as config_file:
            config_file.write(content)
        return path

    def testLoadConfig(self):
        path = self.write_config(
            "[general]\n"
            "info = True\n"
            "delete_reports = yes\n"
            "max_xml_size = 1000\n"
            "compress_json = true\n"
            "report_types = tls\n"
            "[database]\n"
            "type = sqlite\n"
            "path = /var/lib/dmarc.sqlite\n"
            "port = 5432\n"
            "[imap]\n"
            "host = imap.example.com\n"
            "ssl = false\n"
            "dmarc_error_folder = Errors\n"
            "tls_folder = TLS\n"
        )
        config = load_config(path)
        self.assertTrue(config.info)
        self.assertTrue(config.delete_reports)
        self.assertFalse(config.delete_failed)
        self.assertEqual(config.max_xml_size, 1000)
        self.assertEqual(config.max_json_size, 50000)
        self.assertTrue(config.compress_json)
        self.assertEqual(config.database_type, "sqlite")
        self.assertEqual(config.database_path, "/var/lib/dmarc.sqlite")
        self.assertEqual(config.database_port, 5432)
        self.assertEqual(config.imap_host, "imap.example.com")
        self.assertFalse(config.imap_ssl)
        self.assertEqual(config.dmarc_folder, "INBOX")
        self.assertEqual(config.dmarc_error_folder, "Errors")
        self.assertFalse(config.process_dmarc)
        self.assertTrue(config.process_tls)

    def testDefaults(self):
        config = ParserConfig()
        self.assertEqual(config.database_type, "mysql")
        self.assertEqual(config.database_host, "localhost")
        self.assertEqual(config.max_xml_size, 50000)
        self.assertTrue(config.process_dmarc and config.process_tls)

    def testReplaceOptions(self):
        config = ParserConfig()
        replaced = config.replace_options(replace=True, debug=True)
        self.assertTrue(replaced.replace and replaced.debug)
        self.assertFalse(config.replace)

    def testInvalidConfig(self):
        with self.assertRaises(ConfigurationError):
            load_config(os.path.join(self.directory, "missing.ini"))
        path = self.write_config("[general]\nreport_types = forensic\n")
        with self.assertRaises(ConfigurationError):
            load_config(path)
        path = self.write_config("[general]\nmax_xml_size = large\n")
        with self.assertRaises(ConfigurationError):
            load_config(path)


class CLITest(unittest.TestCase):
    def testSourceOptionsAreExclusive(self):
        from dmarcdb.cli import _build_arg_parser

        arg_parser = _build_arg_parser()
        args = arg_parser.parse_args(["-x", "report.xml"])
        self.assertEqual(args.source, "xml")
        self.assertEqual(args.file_path, ["report.xml"])
        with mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit):
                arg_parser.parse_args(["-x", "-j", "report.xml"])
            with self.assertRaises(SystemExit):
                arg_parser.parse_args(["report.xml"])


if __name__ == "__main__":
    unittest.main(verbosity=2)
