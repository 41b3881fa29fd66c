#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testActionHandler.py

    Description:
        Test suite for ActionHandler against the simulated KeePassXC peer.
        Verifies the nonce sequence across requests, get-logins and get-totp
        results, the no-logins condition, and the decrypt retry policy.
"""

import base64
import json
import os
import tempfile
import unittest
from unittest import mock
from kpxcpc.handlers.action_handler import ActionHandler, RetryPolicy, LoginEntry, GetLoginsResult
from kpxcpc.handlers.handshake_handler import HandshakeHandler
from kpxcpc.handlers.session_handler import ClientSessionHandler
from kpxcpc.handlers.transport_handler import TransportHandler
from kpxcpc.handlers.error_handler import (
    KeePassXCError, MalformedResponseError, ProtocolError, ProtocolCodes, RetriesExhausted,
    AuthenticationFailure, ClientCodes,
)
from kpxcpc.encryption.identity_manager import Identity
from kpxcpc.encryption.nonce_manager import NonceManager
from kpxcpc.utilities.audit_log import AuditLog
from kpxcpc.handlers.testSupport import PeerSimulator, SimulatedConnection


ENTRIES = {
    "https://example.com": [
        {
            "login": "alice",
            "name": "Example",
            "password": "hunter2",
            "uuid": "0f4e",
            "stringFields": [{"KPH: otp-label": "work"}, {"KPH: pin": "1234"}],
        },
        {"login": "bob", "name": "Example (bob)", "password": "pa55", "uuid": "77aa", "stringFields": []},
    ],
}


class TestActionHandler(unittest.TestCase):

    """
        An associated identity, a peer that knows it, and a completed handshake.
    """
    def setUp(self) -> None:

        self.identity = Identity(identifier="laptop", identity_key=os.urandom(24))
        self.peer = PeerSimulator(entries=ENTRIES, totp={"0f4e": "123456"}, associations={"laptop": self.identity.identity_key})
        self.session = ClientSessionHandler(self.identity)
        self.transport = TransportHandler(SimulatedConnection(self.peer))
        self.actions = ActionHandler(self.session, self.transport, AuditLog(""))

    def _connect(self, actions=None):
        HandshakeHandler(actions or self.actions, audit_log=AuditLog("")).connect()

    def _nonce_of(self, request):
        return base64.b64decode(request["nonce"])

    """
        Actions are refused before the handshake.
    """
    def test_requires_handshake(self):

        with self.assertRaises(KeePassXCError) as cm:
            self.actions.get_totp("0f4e")

        self.assertEqual(ClientCodes.HANDSHAKE_STATE_INVALID, cm.exception.application_code)
        self.assertEqual([], self.peer.requests)

    """
        The constructor checks its collaborators.
    """
    def test_init_validation(self):

        with self.assertRaises(KeePassXCError):
            ActionHandler("session", self.transport)  # type: ignore

        with self.assertRaises(KeePassXCError):
            ActionHandler(self.session, "transport")  # type: ignore

    """
        get-logins returns the entries in KeePassXC's order.
    """
    def test_get_logins(self):

        self._connect()
        result = self.actions.get_logins("https://example.com")

        self.assertIsInstance(result, GetLoginsResult)
        self.assertEqual(2, result.count)
        self.assertEqual(["alice", "bob"], [e.login for e in result.entries])
        self.assertEqual(({"KPH: otp-label": "work"}, {"KPH: pin": "1234"}), result.entries[0].string_fields)
        self.assertEqual("hunter2", result.entries[0].password)

        message = self.peer.messages[-1]
        self.assertEqual("get-logins", message["action"])
        self.assertEqual("https://example.com", message["url"])
        self.assertEqual([{"id": "laptop", "key": base64.b64encode(self.identity.identity_key).decode()}], message["keys"])
        self.assertEqual("true", self.peer.requests[-1]["triggerUnlock"])

    """
        Optional get-logins fields are forwarded only when given.
    """
    def test_get_logins_optional_fields(self):

        self._connect()
        self.actions.get_logins("https://example.com", submit_url="https://example.com/login", http_auth="true")

        message = self.peer.messages[-1]
        self.assertEqual("https://example.com/login", message["submitUrl"])
        self.assertEqual("true", message["httpAuth"])

    """
        Every request uses the increment of the nonce KeePassXC last sent.
    """
    def test_nonce_sequence(self):

        self._connect()
        self.actions.get_totp("0f4e")
        self.actions.get_logins("https://example.com")

        first, second = self.peer.requests[-2], self.peer.requests[-1]
        response_nonce = NonceManager.increment_nonce(self._nonce_of(first))

        self.assertEqual(NonceManager.increment_nonce(response_nonce), self._nonce_of(second))
        self.assertEqual(self.session.current_nonce, NonceManager.increment_nonce(self._nonce_of(second)))

    """
        KeePassXC's "no logins found" error becomes NO_LOGINS_FOUND.
    """
    def test_no_logins_reported_by_peer(self):

        self._connect()

        with self.assertRaises(ProtocolError) as cm:
            self.actions.get_logins("https://unknown.example")

        self.assertTrue(cm.exception.is_code(ProtocolCodes.NO_LOGINS_FOUND))

    """
        A successful response with zero entries is the same condition.
    """
    def test_no_logins_empty_success(self):

        self._connect()

        with mock.patch.object(self.peer, "_get_logins", return_value={"count": 0, "entries": []}):
            with self.assertRaises(ProtocolError) as cm:
                self.actions.get_logins("https://example.com")

        self.assertTrue(cm.exception.is_code(ProtocolCodes.NO_LOGINS_FOUND))

    """
        Malformed entry lists are rejected.
    """
    def test_malformed_entries(self):

        self._connect()

        for result in ({"entries": "nope"}, {"entries": [{"login": 5}]}, {"entries": [{"login": "a", "stringFields": [{"k": 1}]}]}):
            with self.subTest(result=result):
                with mock.patch.object(self.peer, "_get_logins", return_value=result):
                    with self.assertRaises(MalformedResponseError):
                        self.actions.get_logins("https://example.com")

    """
        get-totp returns the code, and "" when KeePassXC has none.
    """
    def test_get_totp(self):

        self._connect()

        self.assertEqual("123456", self.actions.get_totp("0f4e"))
        self.assertEqual("", self.actions.get_totp("no-such-entry"))

    """
        A response that fails to open is retried until it opens.
    """
    def test_decrypt_retry_unbounded(self):

        self._connect()
        self.peer.corrupt_responses = 3

        self.assertEqual("123456", self.actions.get_totp("0f4e"))
        self.assertEqual(4, self.peer.count("get-totp"))

    """
        A bounded decrypt policy gives up with RetriesExhausted.
    """
    def test_decrypt_retry_bounded(self):

        actions = ActionHandler(self.session, self.transport, AuditLog(""), RetryPolicy(max_retries=1))
        self._connect(actions)
        self.peer.corrupt_responses = 5

        with self.assertRaises(RetriesExhausted) as cm:
            actions.get_totp("0f4e")

        self.assertIsInstance(cm.exception.last_error, AuthenticationFailure)
        self.assertEqual(2, self.peer.count("get-totp"))

    """
        Retry bounds must be non-negative integers or None.
    """
    def test_retry_policy_validation(self):

        self.assertTrue(RetryPolicy().allows(10 ** 6))
        self.assertTrue(RetryPolicy(1).allows(0))
        self.assertFalse(RetryPolicy(1).allows(1))
        self.assertFalse(RetryPolicy(0).allows(0))

        for bad in (-1, 1.5, True):
            with self.subTest(bad=bad):
                with self.assertRaises(KeePassXCError):
                    RetryPolicy(bad)

    """
        The audit log records actions without secrets.
    """
    def test_audit_log_has_no_secrets(self):

        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "audit.jsonl")
            actions = ActionHandler(self.session, self.transport, AuditLog(path))
            HandshakeHandler(actions, audit_log=AuditLog(path)).connect()

            actions.get_logins("https://example.com")
            actions.get_totp("0f4e")

            with open(path, encoding="utf-8") as f:
                records = [json.loads(line) for line in f]

        text = json.dumps(records)
        self.assertIn("get-logins", [r.get("action") for r in records])
        for secret in ("hunter2", "123456", base64.b64encode(self.identity.identity_key).decode()):
            self.assertNotIn(secret, text)

    """
        Login entries never print their password.
    """
    def test_login_entry_repr(self):

        entry = LoginEntry(login="alice", password="hunter2")

        self.assertNotIn("hunter2", repr(entry))
        self.assertEqual("hunter2", entry.to_dict()["password"])


if __name__ == "__main__":
    unittest.main()
