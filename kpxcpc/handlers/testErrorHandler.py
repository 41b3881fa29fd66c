#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testErrorHandler.py

    Description:
        Test suite for the error taxonomy: the KeePassXC error code table, the
        mapping of peer errors to ProtocolError, and the ErrorHandler's
        message/exit-status decisions and audit records.
"""

import json
import os
import shutil
import tempfile
import unittest
from kpxcpc.handlers.error_handler import (
    ErrorHandler, ExitCodes, ClientCodes, ProtocolCodes, ProtocolError, KeePassXCError,
    TransportError, AuthenticationFailure, RetriesExhausted, protocol_error,
)
from kpxcpc.utilities.audit_log import AuditLog


class TestErrorHandler(unittest.TestCase):

    def setUp(self) -> None:
        self.tmpdir = tempfile.mkdtemp()
        self.audit_path = os.path.join(self.tmpdir, "audit.jsonl")
        self.handler = ErrorHandler(AuditLog(self.audit_path))

    def tearDown(self) -> None:
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    """
        The table covers exactly codes 0 through 15.
    """
    def test_protocol_code_table(self):

        self.assertEqual(list(range(16)), [int(c) for c in ProtocolCodes])
        self.assertEqual(ProtocolCodes.DATABASE_NOT_OPENED, ProtocolCodes(1))
        self.assertEqual(ProtocolCodes.CANNOT_DECRYPT_MESSAGE, ProtocolCodes(4))
        self.assertEqual(ProtocolCodes.NO_LOGINS_FOUND, ProtocolCodes(15))

    """
        Every known code maps to a recognized ProtocolError with a canonical message.
    """
    def test_protocol_error_known_codes(self):

        for code in ProtocolCodes:
            with self.subTest(code=code):
                err = protocol_error("whatever KeePassXC said", int(code))

                self.assertTrue(err.recognized)
                self.assertTrue(err.is_code(code))
                self.assertEqual(int(code), err.raw_code)
                self.assertEqual(ClientCodes.PROTOCOL_ERROR, err.application_code)
                self.assertEqual("whatever KeePassXC said", err.message)

        self.assertEqual("no logins found", protocol_error("", 15).detail)

    """
        Unknown or missing codes keep the raw message and have no code.
    """
    def test_protocol_error_unrecognized(self):

        err = protocol_error("Something new", 99)
        self.assertFalse(err.recognized)
        self.assertIsNone(err.code)
        self.assertEqual(99, err.raw_code)
        self.assertEqual("Something new", err.detail)

        err = protocol_error("No code at all", None)
        self.assertIsNone(err.code)
        self.assertIsNone(err.raw_code)
        self.assertEqual("No code at all", err.detail)

    """
        All client errors share the KeePassXCError base.
    """
    def test_hierarchy(self):

        cause = AuthenticationFailure()
        exhausted = RetriesExhausted("gave up", cause)

        for err in (TransportError(ClientCodes.TRANSPORT_ERROR, "x"), cause, exhausted, ProtocolError(ProtocolCodes.UNKNOWN_ERROR, "")):
            self.assertIsInstance(err, KeePassXCError)

        self.assertIs(cause, exhausted.last_error)
        self.assertEqual(ClientCodes.RETRIES_EXHAUSTED, exhausted.application_code)

    """
        No logins found exits with NOT_FOUND; other errors with FAILURE.
    """
    def test_exit_statuses(self):

        message, status = self.handler.handle_client_error(ProtocolError(ProtocolCodes.NO_LOGINS_FOUND, "No logins found"), "https://example.com")
        self.assertEqual(ExitCodes.NOT_FOUND, status)
        self.assertEqual("https://example.com: no logins found", message)

        message, status = self.handler.handle_client_error(TransportError(ClientCodes.TRANSPORT_ERROR, "Cannot connect"))
        self.assertEqual(ExitCodes.FAILURE, status)
        self.assertEqual("Cannot connect", message)

    """
        Unexpected exceptions become an internal error and are still audited.
    """
    def test_unexpected_exception(self):

        message, status = self.handler.handle_client_error(ValueError("boom"), "connect")

        self.assertEqual(ExitCodes.FAILURE, status)
        self.assertEqual("connect: internal error: boom", message)

        with open(self.audit_path, encoding="utf-8") as f:
            record = json.loads(f.readline())

        self.assertEqual("client_error", record["event"])
        self.assertEqual(ClientCodes.INTERNAL_ERROR, record["application_code"])
        self.assertEqual("connect", record["context"])


if __name__ == "__main__":
    unittest.main()
