#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testHandshakeHandler.py

    Description:
        Test suite for HandshakeHandler against the simulated KeePassXC peer.
        Covers the associated fast path, first pairing, CannotDecryptMessage
        retries, waiting for a locked database, and the fatal paths.
"""

import io
import os
import unittest
from unittest import mock
from kpxcpc.handlers.action_handler import ActionHandler, RetryPolicy
from kpxcpc.handlers.handshake_handler import HandshakeHandler, UnlockWaitPolicy
from kpxcpc.handlers.session_handler import ClientSessionHandler
from kpxcpc.handlers.transport_handler import TransportHandler
from kpxcpc.handlers.error_handler import KeePassXCError, ProtocolError, ProtocolCodes, RetriesExhausted, TransportError, ClientCodes
from kpxcpc.encryption.identity_manager import Identity
from kpxcpc.utilities.audit_log import AuditLog
from kpxcpc.handlers.testSupport import PeerSimulator, SimulatedConnection


"""
    A SimulatedConnection that fails every write after the first N.
"""
class HangUpConnection(SimulatedConnection):

    def __init__(self, peer, writes_allowed):
        super().__init__(peer)
        self.writes_allowed = writes_allowed

    def sendall(self, data):
        if self.writes_allowed <= 0:
            raise OSError("broken pipe")
        self.writes_allowed -= 1
        super().sendall(data)


class TestHandshakeHandler(unittest.TestCase):

    def setUp(self) -> None:
        self.identity = Identity(identifier="laptop", identity_key=os.urandom(24))
        self.saved = []
        self.sleeps = []
        self.notified = []

    def _handshake(self, peer, identity=None, connection=None, **kwargs):
        session = ClientSessionHandler(identity)
        transport = TransportHandler(connection or SimulatedConnection(peer))
        actions = ActionHandler(session, transport, AuditLog(""))

        kwargs.setdefault("identity_saver", self.saved.append)
        kwargs.setdefault("sleep", self.sleeps.append)
        kwargs.setdefault("notify", self.notified.append)

        return HandshakeHandler(actions, audit_log=AuditLog(""), **kwargs), actions

    def _associated_peer(self, **kwargs):
        return PeerSimulator(associations={"laptop": self.identity.identity_key}, **kwargs)

    """
        A known identity needs one key exchange and one test-associate.
    """
    def test_associated_fast_path(self):

        peer = self._associated_peer()
        handshake, actions = self._handshake(peer, self.identity)

        self.assertEqual(self.identity, handshake.connect())
        self.assertEqual(["change-public-keys", "test-associate"], peer.actions)
        self.assertEqual("associated", actions.session.handshake_state)
        self.assertEqual([], self.saved)
        self.assertEqual(["true"], peer.trigger_unlock_flags("test-associate"))

    """
        A first pairing sends test-associate with an empty identifier, lets it
        fail, then associates and persists the new identity.
    """
    def test_first_pairing(self):

        peer = PeerSimulator(associate_id="kpxcpc-desktop")
        handshake, actions = self._handshake(peer)
        key = actions.session.association_data().identity_key

        identity = handshake.connect()

        self.assertEqual(["change-public-keys", "test-associate", "associate"], peer.actions)
        self.assertEqual("", peer.messages[0]["id"])
        self.assertEqual("kpxcpc-desktop", identity.identifier)
        self.assertEqual(key, identity.identity_key)
        self.assertEqual([identity], self.saved)
        self.assertEqual(key, peer.associations["kpxcpc-desktop"])
        self.assertEqual("associated", actions.session.handshake_state)

    """
        An identity KeePassXC no longer knows is re-paired.
    """
    def test_unknown_identity_is_repaired(self):

        peer = PeerSimulator()
        handshake, _ = self._handshake(peer, self.identity)

        identity = handshake.connect()

        self.assertEqual("kpxcpc-test", identity.identifier)
        self.assertEqual(self.identity.identity_key, identity.identity_key)
        self.assertEqual([identity], self.saved)

    """
        Each CannotDecryptMessage redoes the key exchange.
    """
    def test_cannot_decrypt_retries(self):

        peer = self._associated_peer(cannot_decrypt_failures=3)
        handshake, actions = self._handshake(peer, self.identity)

        handshake.connect()

        self.assertEqual(4, peer.count("change-public-keys"))
        self.assertEqual(4, peer.count("test-associate"))
        self.assertEqual(0, peer.count("associate"))
        self.assertEqual("associated", actions.session.handshake_state)

    """
        A bounded decrypt policy gives up with RetriesExhausted.
    """
    def test_cannot_decrypt_bounded(self):

        peer = self._associated_peer(cannot_decrypt_failures=5)
        handshake, _ = self._handshake(peer, self.identity, decrypt_retry=RetryPolicy(max_retries=2))

        with self.assertRaises(RetriesExhausted) as cm:
            handshake.connect()

        self.assertTrue(cm.exception.last_error.is_code(ProtocolCodes.CANNOT_DECRYPT_MESSAGE))
        self.assertEqual(3, peer.count("change-public-keys"))

    """
        A locked database is polled; only the first attempt asks for unlock.
    """
    def test_waits_for_unlock(self):

        peer = self._associated_peer(locked_responses=3)
        handshake, actions = self._handshake(peer, self.identity, unlock_wait=UnlockWaitPolicy(interval=0.25))

        handshake.connect()

        self.assertEqual([1, 2, 3], self.notified)
        self.assertEqual([0.25, 0.25, 0.25], self.sleeps)
        self.assertEqual(["true", None, None, None], peer.trigger_unlock_flags("test-associate"))
        self.assertEqual(4, peer.count("change-public-keys"))
        self.assertEqual("associated", actions.session.handshake_state)
        self.assertEqual([], self.saved)

    """
        Without a notify callback each unlock attempt rewrites one progress line on stderr.
    """
    def test_default_unlock_progress(self):

        peer = self._associated_peer(locked_responses=3)
        actions = ActionHandler(ClientSessionHandler(self.identity), TransportHandler(SimulatedConnection(peer)), AuditLog(""))
        handshake = HandshakeHandler(actions, unlock_wait=UnlockWaitPolicy(interval=0), sleep=self.sleeps.append, audit_log=AuditLog(""))

        with mock.patch("sys.stderr", new_callable=io.StringIO) as stderr:
            handshake.connect()

        expected = "".join(f"\rWaiting for DB to be unlocked... (attempt {n})" for n in (1, 2, 3))
        self.assertEqual(expected, stderr.getvalue())
        self.assertEqual([0, 0, 0], self.sleeps)

    """
        UnlockWaitPolicy rejects values that cannot drive the wait loop.
    """
    def test_unlock_wait_policy_validation(self):

        for kwargs in ({"max_retries": -1}, {"max_retries": True}, {"max_retries": 1.5}, {"interval": -0.5}, {"interval": "1"}, {"interval": False}, {"enabled": "yes"}):
            with self.assertRaises(KeePassXCError) as cm:
                UnlockWaitPolicy(**kwargs)
            self.assertEqual(ClientCodes.INVALID_TYPE, cm.exception.application_code)

        self.assertFalse(UnlockWaitPolicy(max_retries=0, interval=0).allows(0))
        self.assertTrue(UnlockWaitPolicy().allows(1000))

    """
        triggerUnlock can be turned off from the start.
    """
    def test_trigger_unlock_disabled(self):

        peer = self._associated_peer()
        handshake, _ = self._handshake(peer, self.identity, trigger_unlock=False)

        handshake.connect()

        self.assertEqual([None], peer.trigger_unlock_flags("test-associate"))

    """
        With waiting disabled a locked database is an error.
    """
    def test_no_wait(self):

        peer = self._associated_peer(locked_responses=1)
        handshake, _ = self._handshake(peer, self.identity, unlock_wait=UnlockWaitPolicy(enabled=False))

        with self.assertRaises(ProtocolError) as cm:
            handshake.connect()

        self.assertTrue(cm.exception.is_code(ProtocolCodes.DATABASE_NOT_OPENED))
        self.assertEqual([], self.sleeps)
        self.assertEqual(0, peer.count("associate"))

    """
        A bounded unlock wait gives up with RetriesExhausted.
    """
    def test_unlock_wait_bounded(self):

        peer = self._associated_peer(locked_responses=10)
        handshake, _ = self._handshake(peer, self.identity, unlock_wait=UnlockWaitPolicy(max_retries=2))

        with self.assertRaises(RetriesExhausted):
            handshake.connect()

        self.assertEqual([1, 2], self.notified)
        self.assertEqual(3, peer.count("test-associate"))

    """
        Without an identifier a locked database falls through to associate.
    """
    def test_locked_without_identifier_associates(self):

        peer = PeerSimulator(locked_responses=1)
        handshake, _ = self._handshake(peer)

        identity = handshake.connect()

        self.assertEqual([], self.sleeps)
        self.assertEqual(["change-public-keys", "test-associate", "associate"], peer.actions)
        self.assertEqual([identity], self.saved)

    """
        A denied association is fatal and nothing is saved.
    """
    def test_association_denied(self):

        peer = PeerSimulator(deny_association=True)
        handshake, actions = self._handshake(peer)

        with self.assertRaises(ProtocolError) as cm:
            handshake.connect()

        self.assertTrue(cm.exception.is_code(ProtocolCodes.ACTION_CANCELLED_OR_DENIED))
        self.assertEqual([], self.saved)
        self.assertNotEqual("associated", actions.session.handshake_state)

    """
        A failing identity store aborts the handshake.
    """
    def test_identity_saver_failure(self):

        def failing_saver(identity):
            raise KeePassXCError(ClientCodes.IDENTITY_SAVE_ERROR, "disk full", "identity")

        peer = PeerSimulator()
        handshake, _ = self._handshake(peer, identity_saver=failing_saver)

        with self.assertRaises(KeePassXCError) as cm:
            handshake.connect()

        self.assertEqual("disk full", cm.exception.detail)

    """
        A change-public-keys error is fatal.
    """
    def test_change_public_keys_error(self):

        peer = self._associated_peer()
        handshake, _ = self._handshake(peer, self.identity)

        with mock.patch.object(peer, "_change_public_keys", return_value={"errorCode": "9", "error": "Key exchange was not successful"}):
            with self.assertRaises(ProtocolError) as cm:
                handshake.connect()

        self.assertTrue(cm.exception.is_code(ProtocolCodes.KEY_CHANGE_FAILED))
        self.assertEqual(["change-public-keys"], peer.actions)

    """
        Transport failures during test-associate do not fall through to associate.
    """
    def test_transport_error_is_fatal(self):

        peer = self._associated_peer()
        handshake, _ = self._handshake(peer, self.identity, connection=HangUpConnection(peer, writes_allowed=1))

        with self.assertRaises(TransportError):
            handshake.connect()

        self.assertEqual(["change-public-keys"], peer.actions)
        self.assertEqual([], self.saved)

    """
        The constructor requires an ActionHandler.
    """
    def test_init_validation(self):

        with self.assertRaises(KeePassXCError):
            HandshakeHandler("actions")  # type: ignore


if __name__ == "__main__":
    unittest.main()
