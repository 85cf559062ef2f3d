import logging

logger = logging.getLogger("dmarcdb")
logger.addHandler(logging.NullHandler())
