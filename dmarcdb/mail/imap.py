# -*- coding: utf-8 -*-

from __future__ import annotations

from typing import cast

from mailsuite.imap import IMAPClient

from dmarcdb.log import logger
from dmarcdb.mail.mailbox_connection import MailboxConnection


class IMAPConnection(MailboxConnection):
    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int = 993,
        ssl: bool = True,
        verify: bool = True,
        timeout: int = 30,
        max_retries: int = 4,
    ):
        self._client = IMAPClient(
            host,
            user,
            password,
            port=port,
            ssl=ssl,
            verify=verify,
            timeout=timeout,
            max_retries=max_retries,
        )

    def create_folder(self, folder_name: str):
        self._client.create_folder(folder_name)

    def fetch_messages(self, reports_folder: str, **kwargs):
        self._client.select_folder(reports_folder)
        return self._client.search()

    def fetch_message(self, message_id: int):
        message = self._client.fetch_message(message_id, parse=False)
        if isinstance(message, str):
            message = message.encode("utf-8", errors="surrogateescape")
        return cast(bytes, message)

    def delete_message(self, message_id: int):
        self._client.delete_messages([message_id])

    def move_message(self, message_id: int, folder_name: str):
        logger.debug("Moving message UID {0} to {1}".format(message_id, folder_name))
        self._client.move_messages([message_id], folder_name)

    def expunge(self):
        self._client.expunge()

    def close(self):
        self._client.logout()
