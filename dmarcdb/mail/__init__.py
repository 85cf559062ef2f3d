from dmarcdb.mail.mailbox_connection import MailboxConnection
from dmarcdb.mail.imap import IMAPConnection

__all__ = [
    "MailboxConnection",
    "IMAPConnection",
]
