"""Sets global version values and the allowed report column values"""

__version__ = "1.0.0"

# Allowed values for the enumerated report columns, in the order they are
# declared in the MySQL enum() column types
ALLOWED_DISPOSITION = ("none", "quarantine", "reject", "unknown")
ALLOWED_DKIM_ALIGN = ("fail", "pass", "unknown")
ALLOWED_SPF_ALIGN = ("fail", "pass", "unknown")
ALLOWED_DKIM_RESULT = (
    "none",
    "pass",
    "fail",
    "neutral",
    "policy",
    "temperror",
    "permerror",
    "unknown",
)
ALLOWED_SPF_RESULT = (
    "none",
    "neutral",
    "pass",
    "fail",
    "softfail",
    "temperror",
    "permerror",
    "unknown",
)

DEFAULT_MAX_XML_SIZE = 50000
DEFAULT_MAX_JSON_SIZE = 50000
