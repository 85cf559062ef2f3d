# -*- coding: utf-8 -*-

"""Relational storage of parsed DMARC aggregate and SMTP TLS reports"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Tuple

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from dmarcdb.constants import (
    ALLOWED_DISPOSITION,
    ALLOWED_DKIM_ALIGN,
    ALLOWED_DKIM_RESULT,
    ALLOWED_SPF_ALIGN,
    ALLOWED_SPF_RESULT,
    DEFAULT_MAX_JSON_SIZE,
    DEFAULT_MAX_XML_SIZE,
)
from dmarcdb.log import logger
from dmarcdb.types import AggregateRecord, AggregateReport, SMTPTLSFailureDetails
from dmarcdb.types import SMTPTLSReport
from dmarcdb.utils import compress_payload, parse_ip_address


class DatabaseError(RuntimeError):
    """Raised when the database cannot be reached or the schema cannot be
    maintained"""


class MappingError(ValueError):
    """Raised when a report record cannot be mapped onto a table row"""


class StoreResult(Enum):
    STORED = "stored"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


class Column(NamedTuple):
    """A backend neutral column declaration

    ``type`` is one of ``serial``, ``reference``, ``timestamp``,
    ``varchar``, ``smallint``, ``unsigned``, ``integer``, ``ipv4``,
    ``ipv6``, ``text`` or ``enum``. ``auto_update`` timestamps default to,
    and are refreshed with, the current time on MySQL.
    """

    name: str
    type: str
    required: bool = False
    size: int = 255
    values: Tuple[str, ...] = ()
    auto_update: bool = False


class Table(NamedTuple):
    name: str
    columns: Tuple[Column, ...]
    primary_key: str
    unique: Optional[Tuple[str, Tuple[str, ...]]] = None
    indexes: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    compressed: bool = False


SCHEMA: Tuple[Table, ...] = (
    Table(
        "report",
        (
            Column("serial", "serial"),
            Column("mindate", "timestamp", required=True, auto_update=True),
            Column("maxdate", "timestamp"),
            Column("domain", "varchar", required=True),
            Column("org", "varchar", required=True),
            Column("reportid", "varchar", required=True),
            Column("email", "varchar"),
            Column("extra_contact_info", "varchar"),
            Column("policy_adkim", "varchar", size=20),
            Column("policy_aspf", "varchar", size=20),
            Column("policy_p", "varchar", size=20),
            Column("policy_sp", "varchar", size=20),
            Column("policy_pct", "smallint"),
            Column("raw_xml", "text"),
        ),
        primary_key="serial",
        unique=("domain", ("domain", "reportid")),
        compressed=True,
    ),
    Table(
        "rptrecord",
        (
            Column("id", "serial"),
            Column("serial", "reference"),
            Column("ip", "ipv4"),
            Column("ip6", "ipv6"),
            Column("rcount", "unsigned", required=True),
            Column("disposition", "enum", values=ALLOWED_DISPOSITION),
            Column("reason", "varchar"),
            Column("dkimdomain", "varchar"),
            Column("dkimresult", "enum", values=ALLOWED_DKIM_RESULT),
            Column("spfdomain", "varchar"),
            Column("spfresult", "enum", values=ALLOWED_SPF_RESULT),
            Column("spf_align", "enum", required=True, values=ALLOWED_SPF_ALIGN),
            Column("dkim_align", "enum", required=True, values=ALLOWED_DKIM_ALIGN),
            Column("identifier_hfrom", "varchar"),
        ),
        primary_key="id",
        indexes=(("serial", ("serial", "ip")), ("serial6", ("serial", "ip6"))),
    ),
    Table(
        "tls",
        (
            Column("serial", "serial"),
            Column("mindate", "timestamp", required=True, auto_update=True),
            Column("maxdate", "timestamp"),
            Column("domain", "varchar", required=True),
            Column("org", "varchar", required=True),
            Column("reportid", "varchar", required=True),
            Column("email", "varchar"),
            Column("policy_mode", "varchar", size=20),
            Column("summary_success", "integer"),
            Column("summary_failure", "integer"),
            Column("raw_json", "text"),
        ),
        primary_key="serial",
        unique=("domain", ("domain", "reportid")),
        compressed=True,
    ),
    Table(
        "tlsrecord",
        (
            Column("id", "serial"),
            Column("serial", "reference"),
            Column("send_ip", "ipv4"),
            Column("send_ip6", "ipv6"),
            Column("recv_ip", "ipv4"),
            Column("recv_ip6", "ipv6"),
            Column("recv_mx", "varchar"),
            Column("type", "varchar"),
            Column("count", "unsigned", required=True),
        ),
        primary_key="id",
        indexes=(
            ("serial", ("serial", "send_ip")),
            ("serial6", ("serial", "send_ip6")),
        ),
    ),
    Table(
        "oauth",
        (
            Column("id", "serial"),
            Column("access_token", "varchar"),
            Column("refresh_token", "varchar"),
            Column("expire", "timestamp", required=True),
            Column("valid", "unsigned", required=True),
        ),
        primary_key="id",
    ),
)


def _join_sql(*parts):
    return " ".join(part for part in parts if part)


class Backend(object):
    """SQL dialect differences between the supported database servers"""

    name = ""
    driver = ""

    def epoch_to_timestamp(self, placeholder: str) -> str:
        raise NotImplementedError

    def hex_literal(self, data: bytes) -> str:
        raise NotImplementedError

    def column_type(self, column: Column) -> str:
        raise NotImplementedError

    def column_options(self, column: Column) -> str:
        raise NotImplementedError

    def column_types(self, connection: Connection, table: str) -> Dict[str, str]:
        """Returns the column names and types of a table as reported by the
        server"""
        raise NotImplementedError

    def add_column(
        self, table: str, column: Column, after: Optional[str]
    ) -> Optional[str]:
        raise NotImplementedError

    def modify_column(self, table: str, column: Column) -> Optional[str]:
        raise NotImplementedError

    def column_definition(self, column: Column) -> str:
        return _join_sql(
            column.name, self.column_type(column), self.column_options(column)
        )

    def key_definitions(self, table: Table) -> List[str]:
        return ["PRIMARY KEY ({0})".format(table.primary_key)]

    def table_options(self, table: Table) -> str:
        return ""

    def index_statements(self, table: Table) -> List[str]:
        statements = []
        if table.unique:
            name, columns = table.unique
            statements.append(
                "CREATE UNIQUE INDEX {0}_uidx_{1} ON {0} ({2})".format(
                    table.name, name, ", ".join(columns)
                )
            )
        for name, columns in table.indexes:
            statements.append(
                "CREATE INDEX {0}_idx_{1} ON {0} ({2})".format(
                    table.name, name, ", ".join(columns)
                )
            )
        return statements

    def create_table_statements(self, table: Table) -> List[str]:
        """Returns the CREATE TABLE statement followed by any CREATE INDEX
        statements for a table"""
        definitions = [self.column_definition(column) for column in table.columns]
        definitions += self.key_definitions(table)
        sql = "CREATE TABLE {0} (\n{1}\n)".format(table.name, ",\n".join(definitions))
        sql = _join_sql(sql, self.table_options(table))
        return [sql] + self.index_statements(table)

    def ip_literal(self, ip_type: str, value) -> str:
        if ip_type == "ip6":
            return self.hex_literal(value)
        return str(int(value))

    def insert_returning_serial(
        self, connection: Connection, sql: str, params: dict, primary_key: str
    ) -> int:
        return connection.execute(text(sql), params).lastrowid


class MySQLBackend(Backend):
    name = "mysql"
    driver = "mysql+mysqlconnector"

    def epoch_to_timestamp(self, placeholder):
        return "FROM_UNIXTIME({0})".format(placeholder)

    def hex_literal(self, data):
        return "X'{0}'".format(data.hex())

    def column_type(self, column):
        if column.type in ("serial", "reference", "unsigned", "ipv4", "integer"):
            return "int"
        if column.type == "timestamp":
            return "timestamp"
        if column.type == "varchar":
            return "varchar({0})".format(column.size)
        if column.type == "smallint":
            return "tinyint"
        if column.type == "ipv6":
            return "binary(16)"
        if column.type == "text":
            return "mediumtext"
        if column.type == "enum":
            return "enum({0})".format(
                ",".join("'{0}'".format(value) for value in column.values)
            )
        raise ValueError("Unknown column type {0}".format(column.type))

    def column_options(self, column):
        if column.type == "serial":
            return "unsigned NOT NULL AUTO_INCREMENT"
        if column.type == "reference":
            return "unsigned NOT NULL"
        if column.type in ("unsigned", "smallint", "ipv4"):
            return "unsigned NOT NULL" if column.required else "unsigned"
        if column.auto_update:
            return "NOT NULL DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP"
        if column.required:
            return "NOT NULL"
        if column.type in ("timestamp", "varchar", "integer"):
            return "NULL"
        return ""

    def key_definitions(self, table):
        definitions = ["PRIMARY KEY ({0})".format(table.primary_key)]
        if table.unique:
            name, columns = table.unique
            definitions.append("UNIQUE KEY {0} ({1})".format(name, ", ".join(columns)))
        for name, columns in table.indexes:
            definitions.append("KEY {0} ({1})".format(name, ", ".join(columns)))
        return definitions

    def table_options(self, table):
        return "ROW_FORMAT=COMPRESSED" if table.compressed else ""

    def index_statements(self, table):
        return []

    def column_types(self, connection, table):
        rows = connection.execute(
            text(
                "SELECT COLUMN_NAME, COLUMN_TYPE FROM information_schema.COLUMNS "
                "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table"
            ),
            {"table": table},
        )
        columns = {}
        for name, column_type in rows:
            if isinstance(column_type, (bytes, bytearray)):
                column_type = column_type.decode("utf-8")
            columns[name] = column_type
        return columns

    def add_column(self, table, column, after):
        position = "AFTER {0}".format(after) if after else "FIRST"
        return _join_sql(
            "ALTER TABLE {0} ADD".format(table),
            self.column_definition(column),
            position,
        )

    def modify_column(self, table, column):
        return _join_sql(
            "ALTER TABLE {0} MODIFY COLUMN".format(table),
            self.column_definition(column),
        )


class PostgresBackend(Backend):
    name = "postgres"
    driver = "postgresql+psycopg2"

    def epoch_to_timestamp(self, placeholder):
        return "TO_TIMESTAMP({0})".format(placeholder)

    def hex_literal(self, data):
        return "'\\x{0}'".format(data.hex())

    def column_type(self, column):
        if column.type in ("serial", "reference", "ipv4"):
            return "bigint"
        if column.type in ("unsigned", "integer"):
            return "integer"
        if column.type == "timestamp":
            return "timestamp without time zone"
        if column.type == "varchar":
            return "character varying({0})".format(column.size)
        if column.type == "enum":
            return "character varying(20)"
        if column.type == "smallint":
            return "smallint"
        if column.type == "ipv6":
            return "bytea"
        if column.type == "text":
            return "text"
        raise ValueError("Unknown column type {0}".format(column.type))

    def column_options(self, column):
        if column.type == "serial":
            return "GENERATED ALWAYS AS IDENTITY"
        if column.required or column.type == "reference":
            return "NOT NULL"
        if column.type in ("timestamp", "varchar", "integer"):
            return "NULL"
        return ""

    def column_types(self, connection, table):
        rows = connection.execute(
            text(
                "SELECT a.attname, format_type(a.atttypid, a.atttypmod) "
                "FROM pg_catalog.pg_attribute a "
                "WHERE a.attrelid = CAST(:table AS regclass) "
                "AND a.attnum > 0 AND NOT a.attisdropped"
            ),
            {"table": table},
        )
        return {name: column_type for name, column_type in rows}

    def add_column(self, table, column, after):
        # Columns can only be appended in PostgreSQL
        return _join_sql(
            "ALTER TABLE {0} ADD COLUMN".format(table), self.column_definition(column)
        )

    def modify_column(self, table, column):
        return "ALTER TABLE {0} ALTER COLUMN {1} TYPE {2}".format(
            table, column.name, self.column_type(column)
        )

    def insert_returning_serial(self, connection, sql, params, primary_key):
        sql = "{0} RETURNING {1}".format(sql, primary_key)
        return connection.execute(text(sql), params).scalar_one()


class SQLiteBackend(Backend):
    name = "sqlite"
    driver = "sqlite"

    def epoch_to_timestamp(self, placeholder):
        return "datetime({0}, 'unixepoch')".format(placeholder)

    def hex_literal(self, data):
        return "X'{0}'".format(data.hex())

    def column_type(self, column):
        if column.type in ("serial", "reference", "unsigned", "integer", "ipv4"):
            return "INTEGER"
        if column.type == "timestamp":
            return "TIMESTAMP"
        if column.type == "varchar":
            return "VARCHAR({0})".format(column.size)
        if column.type == "enum":
            return "VARCHAR(20)"
        if column.type == "smallint":
            return "SMALLINT"
        if column.type == "ipv6":
            return "BLOB"
        if column.type == "text":
            return "TEXT"
        raise ValueError("Unknown column type {0}".format(column.type))

    def column_options(self, column):
        if column.type == "serial":
            return "PRIMARY KEY AUTOINCREMENT"
        if column.required or column.type == "reference":
            return "NOT NULL"
        return ""

    def key_definitions(self, table):
        # The primary key is declared inline with the serial column
        return []

    def column_types(self, connection, table):
        rows = connection.exec_driver_sql("PRAGMA table_info({0})".format(table))
        return {row[1]: row[2] for row in rows}

    def add_column(self, table, column, after):
        return _join_sql(
            "ALTER TABLE {0} ADD COLUMN".format(table), self.column_definition(column)
        )

    def modify_column(self, table, column):
        # SQLite cannot change the type of an existing column
        return None


BACKENDS = {
    "mysql": MySQLBackend,
    "postgres": PostgresBackend,
    "postgresql": PostgresBackend,
    "sqlite": SQLiteBackend,
}


def get_backend(name: str) -> Backend:
    """
    Selects the SQL backend for a database type

    Args:
        name (str): ``mysql``, ``postgres`` or ``sqlite``

    Returns:
        Backend: The backend instance
    """
    try:
        return BACKENDS[name.lower()]()
    except KeyError:
        raise ValueError("Unsupported database type {0}".format(name))


def build_database_url(
    backend: Backend,
    name: Optional[str] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    path: Optional[str] = None,
) -> URL:
    """Builds the SQLAlchemy URL for a backend"""
    if backend.name == "sqlite":
        return URL.create(backend.driver, database=path or name)
    return URL.create(
        backend.driver,
        username=user,
        password=password,
        host=host,
        port=port,
        database=name,
    )


def create_database_engine(url, echo: bool = False) -> Engine:
    """
    Creates a SQLAlchemy engine

    SQLite connections get explicit ``BEGIN`` statements so that savepoints
    and rollbacks behave like they do on the other servers.
    """
    engine = create_engine(url, echo=echo, pool_pre_ping=True)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_sqlite_transaction(connection):
            connection.exec_driver_sql("BEGIN")

    return engine


def ensure_schema(engine: Engine, backend: Backend) -> List[str]:
    """
    Creates missing tables and columns, and fixes column types that do not
    match the schema

    Args:
        engine: A SQLAlchemy engine
        backend: The backend matching the engine

    Returns:
        list: The ALTER TABLE statements that were issued

    Raises:
        DatabaseError: The schema could not be checked or changed
    """
    alterations = []
    try:
        with engine.begin() as connection:
            inspector = inspect(connection)
            for table in SCHEMA:
                if not inspector.has_table(table.name):
                    logger.info(
                        "Adding missing table <{0}> to the database".format(table.name)
                    )
                    for statement in backend.create_table_statements(table):
                        logger.debug(statement)
                        connection.exec_driver_sql(statement)
                    continue

                existing_columns = backend.column_types(connection, table.name)
                previous_column = None
                for column in table.columns:
                    declared_type = backend.column_type(column)
                    statement = None
                    if column.name not in existing_columns:
                        statement = backend.add_column(
                            table.name, column, previous_column
                        )
                    elif not existing_columns[column.name].startswith(declared_type):
                        statement = backend.modify_column(table.name, column)
                        if statement is None:
                            logger.warning(
                                "Column {0}.{1} is {2} instead of {3} and cannot "
                                "be changed".format(
                                    table.name,
                                    column.name,
                                    existing_columns[column.name],
                                    declared_type,
                                )
                            )
                    if statement:
                        logger.debug(statement)
                        connection.exec_driver_sql(statement)
                        alterations.append(statement)
                    previous_column = column.name
    except SQLAlchemyError as error:
        raise DatabaseError(
            "Unable to check the database schema: {0}".format(error.__str__())
        )

    return alterations


class ReportDatabase(object):
    """Stores parsed reports, one transaction per report"""

    def __init__(
        self,
        engine: Engine,
        backend: Backend,
        *,
        replace: bool = False,
        max_xml_size: int = DEFAULT_MAX_XML_SIZE,
        compress_xml: bool = False,
        max_json_size: int = DEFAULT_MAX_JSON_SIZE,
        compress_json: bool = False,
    ):
        self.engine = engine
        self.backend = backend
        self.replace = replace
        self.max_xml_size = max_xml_size
        self.compress_xml = compress_xml
        self.max_json_size = max_json_size
        self.compress_json = compress_json

    @classmethod
    def from_config(cls, config) -> "ReportDatabase":
        """Connects to the database described by a ``ParserConfig``"""
        backend = get_backend(config.database_type)
        url = build_database_url(
            backend,
            name=config.database_name,
            user=config.database_user,
            password=config.database_password,
            host=config.database_host,
            port=config.database_port,
            path=config.database_path,
        )
        logger.debug("Connecting to {0}".format(url.render_as_string()))
        return cls(
            create_database_engine(url),
            backend,
            replace=config.replace,
            max_xml_size=config.max_xml_size,
            compress_xml=config.compress_xml,
            max_json_size=config.max_json_size,
            compress_json=config.compress_json,
        )

    def ensure_schema(self) -> List[str]:
        return ensure_schema(self.engine, self.backend)

    def _prepare_payload(self, payload, compress, max_size, label, payload_type):
        if compress:
            payload = compress_payload(payload)
        if len(payload) > max_size:
            logger.warning(
                "{0}: Skipping storage of large {1} ({2} bytes)".format(
                    label, payload_type, len(payload)
                )
            )
            payload = ""
        return payload

    def _existing_serials(self, connection, table, report_id):
        rows = connection.execute(
            text("SELECT org, serial FROM {0} WHERE reportid = :reportid".format(table)),
            {"reportid": report_id},
        )
        return [row[1] for row in rows]

    def _delete_report(self, connection, table, record_table, serial, label):
        logger.info("{0}: Replacing data".format(label))
        deletions = (
            (record_table, "report data"),
            (table, "report"),
        )
        for delete_table, description in deletions:
            try:
                with connection.begin_nested():
                    connection.execute(
                        text("DELETE FROM {0} WHERE serial = :serial".format(delete_table)),
                        {"serial": serial},
                    )
            except SQLAlchemyError as error:
                logger.warning(
                    "{0}: Cannot remove {1} from database. Try to continue. "
                    "{2}".format(label, description, error.__str__())
                )

    def _store(self, table, record_table, report_id, label, insert_report):
        """Runs the lookup, replace and insert steps in one transaction"""
        try:
            with self.engine.connect() as connection:
                with connection.begin():
                    serials = self._existing_serials(connection, table, report_id)
                    if serials and not self.replace:
                        logger.info("{0}: Already have report, skipped".format(label))
                        return StoreResult.ALREADY_EXISTS
                    for serial in serials:
                        self._delete_report(
                            connection, table, record_table, serial, label
                        )
                    insert_report(connection)
        except MappingError as error:
            logger.warning(
                "{0}: {1}. Cannot add records to {2}. Rolled back DB "
                "transaction.".format(label, error.__str__(), record_table)
            )
            return StoreResult.FAILED
        except SQLAlchemyError as error:
            logger.error(
                "{0}: Cannot add report to database. Rolled back DB transaction. "
                "{1}".format(label, error.__str__())
            )
            return StoreResult.FAILED

        return StoreResult.STORED

    def _insert_aggregate_record(self, connection, serial, record: AggregateRecord):
        source_ip = record["source_ip"]
        if source_ip is None or source_ip == "":
            raise MappingError("source_ip is empty")
        if not record["has_auth_results"]:
            raise MappingError("Report has no auth_results data")
        try:
            ip_type, ip_value = parse_ip_address(source_ip)
        except ValueError:
            raise MappingError("mystery ip {0}".format(source_ip))

        sql = (
            "INSERT INTO rptrecord (serial, {0}, rcount, disposition, spf_align, "
            "dkim_align, reason, dkimdomain, dkimresult, spfdomain, spfresult, "
            "identifier_hfrom) VALUES (:serial, {1}, :rcount, :disposition, "
            ":spf_align, :dkim_align, :reason, :dkimdomain, :dkimresult, "
            ":spfdomain, :spfresult, :identifier_hfrom)"
        ).format(ip_type, self.backend.ip_literal(ip_type, ip_value))
        connection.execute(
            text(sql),
            {
                "serial": serial,
                "rcount": record["count"],
                "disposition": record["disposition"],
                "spf_align": record["spf_align"],
                "dkim_align": record["dkim_align"],
                "reason": record["reason"],
                "dkimdomain": record["dkim_domain"],
                "dkimresult": record["dkim_result"],
                "spfdomain": record["spf_domain"],
                "spfresult": record["spf_result"],
                "identifier_hfrom": record["header_from"],
            },
        )

    def save_aggregate_report(self, report: AggregateReport) -> StoreResult:
        """
        Saves a parsed DMARC aggregate report

        Args:
            report: A parsed aggregate report

        Returns:
            StoreResult: ``STORED``, ``ALREADY_EXISTS`` or ``FAILED``
        """
        label = "{0}: {1}".format(report["org_name"], report["report_id"])
        try:
            raw_xml = self._prepare_payload(
                report["raw_xml"], self.compress_xml, self.max_xml_size, label, "XML"
            )
        except (OSError, ValueError) as error:
            logger.warning(
                "{0}: Cannot add gzip XML to database ({1}). Skipped.".format(
                    label, error.__str__()
                )
            )
            return StoreResult.FAILED

        policy = report["policy_published"]
        epoch = self.backend.epoch_to_timestamp

        def insert_report(connection):
            sql = (
                "INSERT INTO report (mindate, maxdate, domain, org, reportid, email, "
                "extra_contact_info, policy_adkim, policy_aspf, policy_p, "
                "policy_sp, policy_pct, raw_xml) VALUES ({0}, {1}, :domain, :org, "
                ":reportid, :email, :extra_contact_info, :policy_adkim, "
                ":policy_aspf, :policy_p, :policy_sp, :policy_pct, :raw_xml)"
            ).format(epoch(":mindate"), epoch(":maxdate"))
            serial = self.backend.insert_returning_serial(
                connection,
                sql,
                {
                    "mindate": report["begin"],
                    "maxdate": report["end"],
                    "domain": policy["domain"],
                    "org": report["org_name"],
                    "reportid": report["report_id"],
                    "email": report["email"],
                    "extra_contact_info": report["extra_contact_info"],
                    "policy_adkim": policy["adkim"],
                    "policy_aspf": policy["aspf"],
                    "policy_p": policy["p"],
                    "policy_sp": policy["sp"],
                    "policy_pct": policy["pct"],
                    "raw_xml": raw_xml,
                },
                "serial",
            )
            logger.debug("serial {0}".format(serial))
            for record in report["records"]:
                self._insert_aggregate_record(connection, serial, record)

        return self._store("report", "rptrecord", report["report_id"], label, insert_report)

    def _insert_smtp_tls_failure(
        self, connection, serial, failure_details: SMTPTLSFailureDetails
    ):
        columns = ["serial", "recv_mx", "type", "count"]
        values = [":serial", ":recv_mx", ":type", ":count"]
        for prefix, ip_address in (
            ("send_", failure_details["sending_mta_ip"]),
            ("recv_", failure_details["receiving_ip"]),
        ):
            if ip_address is None:
                continue
            try:
                ip_type, ip_value = parse_ip_address(ip_address)
            except ValueError:
                raise MappingError("mystery ip {0}".format(ip_address))
            columns.append(prefix + ip_type)
            values.append(self.backend.ip_literal(ip_type, ip_value))

        sql = "INSERT INTO tlsrecord ({0}) VALUES ({1})".format(
            ", ".join(columns), ", ".join(values)
        )
        connection.execute(
            text(sql),
            {
                "serial": serial,
                "recv_mx": failure_details["receiving_mx_hostname"],
                "type": failure_details["result_type"],
                "count": failure_details["failed_session_count"],
            },
        )

    def save_smtp_tls_report(self, report: SMTPTLSReport) -> StoreResult:
        """
        Saves a parsed SMTP TLS report

        Args:
            report: A parsed SMTP TLS report

        Returns:
            StoreResult: ``STORED``, ``ALREADY_EXISTS`` or ``FAILED``
        """
        label = "{0}: {1}".format(report["organization_name"], report["report_id"])
        try:
            raw_json = self._prepare_payload(
                report["raw_json"],
                self.compress_json,
                self.max_json_size,
                label,
                "JSON",
            )
        except (OSError, ValueError) as error:
            logger.warning(
                "{0}: Cannot add gzip JSON to database ({1}). Skipped.".format(
                    label, error.__str__()
                )
            )
            return StoreResult.FAILED

        def insert_report(connection):
            sql = (
                "INSERT INTO tls (mindate, maxdate, domain, org, reportid, email, "
                "policy_mode, summary_success, summary_failure, raw_json) VALUES "
                "(:mindate, :maxdate, :domain, :org, :reportid, :email, "
                ":policy_mode, :summary_success, :summary_failure, :raw_json)"
            )
            serial = self.backend.insert_returning_serial(
                connection,
                sql,
                {
                    "mindate": report["begin_date"],
                    "maxdate": report["end_date"],
                    "domain": report["policy_domain"],
                    "org": report["organization_name"],
                    "reportid": report["report_id"],
                    "email": report["contact_info"],
                    "policy_mode": report["policy_mode"],
                    "summary_success": report["successful_session_count"],
                    "summary_failure": report["failed_session_count"],
                    "raw_json": raw_json,
                },
                "serial",
            )
            logger.debug("serial {0}".format(serial))
            for failure_details in report["failure_details"]:
                self._insert_smtp_tls_failure(connection, serial, failure_details)

        return self._store("tls", "tlsrecord", report["report_id"], label, insert_report)
