#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""A CLI for loading DMARC and SMTP TLS reports into a database"""

from argparse import ArgumentParser
import logging
import sys

from imapclient.exceptions import IMAPClientError
from tqdm import tqdm

from dmarcdb import (
    SOURCE_ARCHIVE,
    SOURCE_MESSAGE,
    SOURCE_REPORT,
    __version__,
    expand_paths,
    process_files,
    process_mailbox,
    process_mbox,
)
from dmarcdb.config import ConfigurationError, load_config
from dmarcdb.database import DatabaseError, ReportDatabase
from dmarcdb.log import logger
from dmarcdb.mail import IMAPConnection

formatter = logging.Formatter(
    fmt="%(levelname)8s:%(filename)s:%(lineno)d:%(message)s",
    datefmt="%Y-%m-%d:%H:%M:%S",
)
handler = logging.StreamHandler()
handler.setFormatter(formatter)
logger.addHandler(handler)

FILE_SOURCES = {
    "mbox": SOURCE_MESSAGE,
    "email": SOURCE_MESSAGE,
    "xml": SOURCE_REPORT,
    "json": SOURCE_REPORT,
    "zip": SOURCE_ARCHIVE,
}


def _build_arg_parser():
    arg_parser = ArgumentParser(
        description="Loads DMARC aggregate and SMTP TLS reports into a database"
    )
    source = arg_parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "-i",
        "--imap",
        dest="source",
        action="store_const",
        const="imap",
        help="read reports from the configured IMAP folders",
    )
    source.add_argument(
        "-m",
        "--mbox",
        dest="source",
        action="store_const",
        const="mbox",
        help="read reports from mbox files",
    )
    source.add_argument(
        "-e",
        "--email",
        dest="source",
        action="store_const",
        const="email",
        help="read reports from email message files",
    )
    source.add_argument(
        "-x",
        "--xml",
        dest="source",
        action="store_const",
        const="xml",
        help="read DMARC reports from XML files",
    )
    source.add_argument(
        "-j",
        "--json",
        dest="source",
        action="store_const",
        const="json",
        help="read SMTP TLS reports from JSON files",
    )
    source.add_argument(
        "-z",
        "--zip",
        dest="source",
        action="store_const",
        const="zip",
        help="read reports from zip or gzip files",
    )
    arg_parser.add_argument(
        "file_path",
        nargs="*",
        help="one or more paths or glob patterns (not allowed with -i)",
    )
    arg_parser.add_argument(
        "-c",
        "--config-file",
        help="a path to a configuration file (default: dmarcdb.ini)",
    )
    arg_parser.add_argument(
        "-d", "--debug", action="store_true", help="print debugging information"
    )
    arg_parser.add_argument(
        "-r",
        "--replace",
        action="store_true",
        help="replace reports that are already in the database",
    )
    arg_parser.add_argument(
        "--delete", action="store_true", help="delete processed reports"
    )
    arg_parser.add_argument(
        "--info", action="store_true", help="print informational messages"
    )
    arg_parser.add_argument(
        "--tls",
        action="store_true",
        help="process SMTP TLS reports instead of DMARC reports",
    )
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)
    return arg_parser


def _setup_logging(config):
    logger.setLevel(logging.WARNING)
    if config.info:
        logger.setLevel(logging.INFO)
    if config.debug:
        logger.setLevel(logging.DEBUG)
    if config.log_file:
        try:
            fh = logging.FileHandler(config.log_file, "a")
            fh.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] "
                    "- %(message)s"
                )
            )
            logger.addHandler(fh)
        except OSError as error:
            logger.warning("Unable to write to log file: {}".format(error))


def _process_imap(config, database, tls_only=False):
    try:
        connection = IMAPConnection(
            host=config.imap_host,
            user=config.imap_user,
            password=config.imap_password,
            port=config.imap_port,
            ssl=config.imap_ssl,
            verify=not config.imap_skip_certificate_verification,
            timeout=config.imap_timeout,
            max_retries=config.imap_max_retries,
        )
    except (IMAPClientError, OSError) as error:
        logger.error("IMAP Error: {0}".format(error.__str__()))
        exit(1)

    folders = []
    if config.process_dmarc and not tls_only:
        folders.append(
            (
                "dmarc",
                config.dmarc_folder,
                config.dmarc_processed_folder,
                config.dmarc_error_folder,
            )
        )
    if config.process_tls or tls_only:
        if config.tls_folder:
            folders.append(
                (
                    "tls",
                    config.tls_folder,
                    config.tls_processed_folder,
                    config.tls_error_folder,
                )
            )
        else:
            logger.info("No TLS folder configured, skipping SMTP TLS reports")

    processed = 0
    try:
        for report_type, folder, processed_folder, error_folder in folders:
            for destination in (processed_folder, error_folder):
                if destination:
                    connection.create_folder(destination)
            processed += process_mailbox(
                connection,
                database=database,
                folder=folder,
                processed_folder=processed_folder,
                error_folder=error_folder,
                report_type=report_type,
                delete_reports=config.delete_reports,
                delete_failed=config.delete_failed,
            )
    except (IMAPClientError, OSError) as error:
        logger.error("IMAP Error: {0}".format(error.__str__()))
        exit(1)
    finally:
        try:
            connection.close()
        except (IMAPClientError, OSError) as error:
            logger.debug("IMAP logout failed: {0}".format(error.__str__()))
    return processed


def _main():
    """Called when the module is executed"""
    arg_parser = _build_arg_parser()
    args = arg_parser.parse_args()

    if args.source == "imap" and len(args.file_path) > 0:
        arg_parser.error("paths cannot be used with -i")
    if args.source != "imap" and len(args.file_path) == 0:
        arg_parser.error("at least one path is required")

    try:
        config = load_config(args.config_file)
    except ConfigurationError as error:
        logger.error(error.__str__())
        exit(1)

    overrides = {}
    if args.debug:
        overrides["debug"] = True
    if args.info:
        overrides["info"] = True
    if args.replace:
        overrides["replace"] = True
    if args.delete:
        overrides["delete_reports"] = True
    config = config.replace_options(**overrides)
    _setup_logging(config)

    try:
        database = ReportDatabase.from_config(config)
        database.ensure_schema()
    except (DatabaseError, ValueError) as error:
        logger.error("Database Error: {0}".format(error.__str__()))
        exit(1)

    report_type = "dmarc"
    if args.tls or args.source == "json":
        report_type = "tls"
    if args.source == "xml":
        report_type = "dmarc"

    if args.source == "imap":
        processed = _process_imap(config, database, tls_only=args.tls)
    elif args.source == "mbox":
        processed = 0
        for path in expand_paths(args.file_path):
            processed += process_mbox(
                path,
                database=database,
                report_type=report_type,
                delete_reports=config.delete_reports,
                delete_failed=config.delete_failed,
            )
    else:
        paths = expand_paths(args.file_path)
        pbar = None
        if sys.stdout.isatty():
            pbar = tqdm(total=len(paths))
        processed = process_files(
            paths,
            FILE_SOURCES[args.source],
            database=database,
            report_type=report_type,
            delete_reports=config.delete_reports,
            delete_failed=config.delete_failed,
            progress_bar=pbar,
        )
        if pbar is not None:
            pbar.close()

    logger.info("Processed {0} item(s)".format(processed))


if __name__ == "__main__":
    _main()
