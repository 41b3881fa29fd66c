#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testSessionHandler.py

    Description:
        Test suite for ClientSessionHandler. Verifies per-connection key
        material, nonce cursor updates, identity updates, handshake state, and
        the single-flight guard.
"""

import os
import threading
import unittest
from kpxcpc.handlers.session_handler import ClientSessionHandler
from kpxcpc.handlers.error_handler import KeePassXCError, ClientCodes
from kpxcpc.encryption.box_manager import BoxManager
from kpxcpc.encryption.nonce_manager import NonceManager
from kpxcpc.encryption.identity_manager import Identity


class TestSessionHandler(unittest.TestCase):

    def setUp(self) -> None:
        self.identity = Identity(identifier="laptop", identity_key=os.urandom(24))
        self.session = ClientSessionHandler.new_session(self.identity)

    """
        Each session gets its own key pair, client ID and starting nonce.
    """
    def test_new_session_material(self):

        other = ClientSessionHandler(self.identity)

        self.assertEqual(32, len(self.session.public_key))
        self.assertEqual(24, len(self.session.client_id))
        self.assertEqual(24, len(self.session.current_nonce))
        self.assertNotEqual(self.session.public_key, other.public_key)
        self.assertNotEqual(self.session.client_id, other.client_id)
        self.assertEqual("start", self.session.handshake_state)
        self.assertFalse(self.session.keys_exchanged)
        self.assertEqual(self.identity, self.session.association_data())

    """
        Without a stored identity the session starts unassociated.
    """
    def test_new_session_without_identity(self):

        session = ClientSessionHandler()

        self.assertEqual("", session.association_data().identifier)
        self.assertEqual(24, len(session.association_data().identity_key))

        with self.assertRaises(KeePassXCError):
            ClientSessionHandler("laptop")  # type: ignore

    """
        next_nonce() advances the cursor; observe_nonce() overwrites it.
    """
    def test_nonce_cursor(self):

        start = self.session.current_nonce
        sent = self.session.next_nonce()

        self.assertEqual(NonceManager.increment_nonce(start), sent)
        self.assertEqual(sent, self.session.current_nonce)

        peer_nonce = os.urandom(24)
        self.session.observe_nonce(peer_nonce)
        self.assertEqual(NonceManager.increment_nonce(peer_nonce), self.session.next_nonce())

        with self.assertRaises(KeePassXCError) as cm:
            self.session.observe_nonce(b"short")
        self.assertEqual(ClientCodes.INVALID_NONCE, cm.exception.application_code)

    """
        fresh_nonce() replaces the cursor with random bytes.
    """
    def test_fresh_nonce(self):

        before = self.session.current_nonce
        fresh = self.session.fresh_nonce()

        self.assertEqual(fresh, self.session.current_nonce)
        self.assertNotEqual(NonceManager.increment_nonce(before), fresh)

    """
        Sealing needs the peer key; once set, sessions can talk to the peer.
    """
    def test_seal_requires_peer_key(self):

        with self.assertRaises(KeePassXCError) as cm:
            self.session.seal(b"x", self.session.next_nonce())
        self.assertEqual(ClientCodes.HANDSHAKE_STATE_INVALID, cm.exception.application_code)

        peer = BoxManager.generate_keypair()
        self.session.set_peer_public_key(peer.public)
        self.assertTrue(self.session.keys_exchanged)
        self.assertEqual("keys_exchanged", self.session.handshake_state)

        nonce = self.session.next_nonce()
        ciphertext = self.session.seal(b"hello", nonce)

        self.assertEqual(b"hello", BoxManager.open(ciphertext, nonce, self.session.public_key, peer.private))

        reply = BoxManager.seal(b"hi", nonce, self.session.public_key, peer.private)
        self.assertEqual(b"hi", self.session.open(reply, nonce))

    """
        set_identifier() keeps the identity key and rejects empty identifiers.
    """
    def test_set_identifier(self):

        updated = self.session.set_identifier("desktop")

        self.assertEqual("desktop", updated.identifier)
        self.assertEqual(self.identity.identity_key, updated.identity_key)
        self.assertEqual(updated, self.session.association_data())

        with self.assertRaises(KeePassXCError):
            self.session.set_identifier("")

    """
        Only the known handshake states are accepted.
    """
    def test_set_handshake_state(self):

        self.session.set_handshake_state("associated")
        self.assertEqual("associated", self.session.handshake_state)

        with self.assertRaises(KeePassXCError) as cm:
            self.session.set_handshake_state("paired")
        self.assertEqual(ClientCodes.HANDSHAKE_STATE_INVALID, cm.exception.application_code)

    """
        The owning thread may re-enter; another thread is refused.
    """
    def test_in_flight_guard(self):

        errors = []

        def other_thread():
            try:
                with self.session.in_flight():
                    pass
            except KeePassXCError as e:
                errors.append(e)

        with self.session.in_flight():
            with self.session.in_flight():
                worker = threading.Thread(target=other_thread)
                worker.start()
                worker.join()

        self.assertEqual(1, len(errors))
        self.assertEqual(ClientCodes.SESSION_ERROR, errors[0].application_code)

        # Released afterwards
        worker = threading.Thread(target=other_thread)
        worker.start()
        worker.join()
        self.assertEqual(1, len(errors))


if __name__ == "__main__":
    unittest.main()
