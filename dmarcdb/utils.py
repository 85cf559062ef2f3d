"""Utility functions that might be useful for other projects"""

import base64
import gzip
import ipaddress
import logging
import mailbox

from dmarcdb.log import logger

mailparser_logger = logging.getLogger("mailparser")
mailparser_logger.setLevel(logging.CRITICAL)


def compress_payload(text):
    """
    Compresses a raw report payload for storage

    Args:
        text (str): The raw XML or JSON text

    Returns:
        str: The gzip compressed text, base64 encoded without line breaks
    """
    compressed = gzip.compress(text.encode("utf-8"))
    return base64.b64encode(compressed).decode("ascii")


def iso_timestamp_to_sql(timestamp):
    """
    Turns a TLS report ``YYYY-MM-DDTHH:MM:SSZ`` timestamp into
    ``YYYY-MM-DD HH:MM:SS``

    Only the ``T`` and ``Z`` markers are removed, there is no timezone
    conversion.
    """
    if timestamp is None:
        return None
    return str(timestamp).replace("T", " ", 1).replace("Z", "", 1)


def parse_ip_address(ip_address):
    """
    Converts an IP address into the value stored in the database

    Args:
        ip_address (str): An IPv4 or IPv6 address

    Returns:
        tuple: ``("ip", int)`` for IPv4 addresses or ``("ip6", bytes)`` for
        IPv6 addresses

    Raises:
        ValueError: The address is neither IPv4 nor IPv6
    """
    address = ipaddress.ip_address(ip_address)
    if address.version == 4:
        return "ip", int(address)
    return "ip6", address.packed


def is_mbox(path):
    """
    Checks if the given content is an MBOX mailbox file

    Args:
        path: Content to check

    Returns:
        bool: A flag that indicates if the file is an MBOX mailbox file
    """
    _is_mbox = False
    try:
        mbox = mailbox.mbox(path, create=False)
        if len(mbox.keys()) > 0:
            _is_mbox = True
    except Exception as e:
        logger.debug("Error checking for MBOX file: {0}".format(e.__str__()))

    return _is_mbox
