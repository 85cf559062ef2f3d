# -*- coding: utf-8 -*-

"""Reads dmarcdb INI configuration files"""

from __future__ import annotations

import os
import sys
from configparser import ConfigParser
from dataclasses import dataclass, replace
from typing import Optional

from dmarcdb.constants import DEFAULT_MAX_JSON_SIZE, DEFAULT_MAX_XML_SIZE
from dmarcdb.log import logger

DEFAULT_CONFIG_FILENAME = "dmarcdb.ini"
REPORT_TYPES = ("dmarc", "tls", "both")


class ConfigurationError(RuntimeError):
    """Raised when the configuration is invalid"""


@dataclass(frozen=True)
class ParserConfig:
    debug: bool = False
    info: bool = False
    log_file: Optional[str] = None
    report_types: str = "both"
    replace: bool = False
    delete_reports: bool = False
    delete_failed: bool = False
    max_xml_size: int = DEFAULT_MAX_XML_SIZE
    compress_xml: bool = False
    max_json_size: int = DEFAULT_MAX_JSON_SIZE
    compress_json: bool = False

    database_type: str = "mysql"
    database_name: Optional[str] = None
    database_user: Optional[str] = None
    database_password: Optional[str] = None
    database_host: str = "localhost"
    database_port: Optional[int] = None
    database_path: Optional[str] = None

    imap_host: Optional[str] = None
    imap_port: int = 993
    imap_user: Optional[str] = None
    imap_password: Optional[str] = None
    imap_ssl: bool = True
    imap_skip_certificate_verification: bool = False
    imap_timeout: int = 30
    imap_max_retries: int = 4
    dmarc_folder: str = "INBOX"
    dmarc_processed_folder: Optional[str] = None
    dmarc_error_folder: Optional[str] = None
    tls_folder: Optional[str] = None
    tls_processed_folder: Optional[str] = None
    tls_error_folder: Optional[str] = None

    def replace_options(self, **kwargs) -> "ParserConfig":
        """Returns a copy with the given options changed"""
        return replace(self, **kwargs)

    @property
    def process_dmarc(self) -> bool:
        return self.report_types in ("dmarc", "both")

    @property
    def process_tls(self) -> bool:
        return self.report_types in ("tls", "both")


def find_config_file(filename: str = DEFAULT_CONFIG_FILENAME) -> Optional[str]:
    """Looks for a config file in the working directory, then next to the
    running script"""
    candidates = [
        os.path.abspath(filename),
        os.path.join(os.path.dirname(os.path.abspath(sys.argv[0])), filename),
    ]
    for candidate in candidates:
        if os.path.exists(candidate):
            return candidate
    return None


def load_config(path: Optional[str] = None) -> ParserConfig:
    """
    Loads a configuration file

    Args:
        path (str): Path to an INI file. When omitted, ``dmarcdb.ini`` is
            looked up and the defaults are used if it does not exist

    Returns:
        ParserConfig: The configuration

    Raises:
        ConfigurationError: The file does not exist or holds invalid values
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No configuration file found, using defaults")
            return ParserConfig()
    abs_path = os.path.abspath(path)
    if not os.path.exists(abs_path):
        raise ConfigurationError("A file does not exist at {0}".format(abs_path))
    logger.debug("Reading configuration from {0}".format(abs_path))

    config = ConfigParser()
    config.read(abs_path)
    options = {}
    try:
        if "general" in config.sections():
            general_config = config["general"]
            for option in (
                "debug",
                "info",
                "replace",
                "delete_reports",
                "delete_failed",
                "compress_xml",
                "compress_json",
            ):
                if option in general_config:
                    options[option] = general_config.getboolean(option)
            if "verbose" in general_config:
                options["info"] = general_config.getboolean("verbose")
            for option in ("max_xml_size", "max_json_size"):
                if option in general_config:
                    options[option] = general_config.getint(option)
            if "log_file" in general_config:
                options["log_file"] = general_config["log_file"]
            if "report_types" in general_config:
                report_types = general_config["report_types"].lower()
                if report_types not in REPORT_TYPES:
                    raise ConfigurationError(
                        "report_types must be one of {0}".format(", ".join(REPORT_TYPES))
                    )
                options["report_types"] = report_types

        if "database" in config.sections():
            database_config = config["database"]
            for option in ("type", "name", "user", "password", "host", "path"):
                if option in database_config:
                    options["database_" + option] = database_config[option]
            if "port" in database_config:
                options["database_port"] = database_config.getint("port")

        if "imap" in config.sections():
            imap_config = config["imap"]
            for option in ("host", "user", "password"):
                if option in imap_config:
                    options["imap_" + option] = imap_config[option]
            for option in ("port", "timeout", "max_retries"):
                if option in imap_config:
                    options["imap_" + option] = imap_config.getint(option)
            for option in ("ssl", "skip_certificate_verification"):
                if option in imap_config:
                    options["imap_" + option] = imap_config.getboolean(option)
            for option in (
                "dmarc_folder",
                "dmarc_processed_folder",
                "dmarc_error_folder",
                "tls_folder",
                "tls_processed_folder",
                "tls_error_folder",
            ):
                if option in imap_config:
                    options[option] = imap_config[option] or None
    except ValueError as error:
        raise ConfigurationError(
            "Invalid value in {0}: {1}".format(abs_path, error.__str__())
        )

    return ParserConfig(**options)
