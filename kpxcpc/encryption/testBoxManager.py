#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testBoxManager.py

    Description:
        Test suite for BoxManager (X25519 + XSalsa20-Poly1305). Verifies key
        pair generation, public key validation, sealing and opening between
        two parties, and that any tampering surfaces as AuthenticationFailure.
"""

import os
import unittest
from unittest import mock
from nacl.exceptions import CryptoError
from kpxcpc.encryption.box_manager import BoxManager, KeyPair
from kpxcpc.encryption.nonce_manager import NonceManager
from kpxcpc.handlers.error_handler import KeePassXCError, AuthenticationFailure, ClientCodes


class TestBoxManager(unittest.TestCase):

    PLAINTEXT = b'{"action":"test-associate","id":"kpxcpc","key":"AAAA"}'

    """
        Two parties with their own key pairs and a shared nonce.
    """
    def setUp(self) -> None:

        self.client = BoxManager.generate_keypair()
        self.peer = BoxManager.generate_keypair()
        self.nonce = NonceManager.generate_nonce()

    """
        generate_keypair() returns distinct raw 32-byte keys.
    """
    def test_generate_keypair_properties(self):

        other = BoxManager.generate_keypair()

        self.assertIsInstance(self.client, KeyPair)
        self.assertEqual(32, len(self.client.public))
        self.assertEqual(32, len(self.client.private))
        self.assertNotEqual(self.client.public, other.public)
        self.assertNotEqual(self.client.private, other.private)

    """
        The private key never shows up in the repr.
    """
    def test_keypair_repr_redacts_private_key(self):

        self.assertNotIn(self.client.private.hex(), repr(self.client))
        self.assertIn("<redacted>", repr(self.client))

    """
        A key generation failure is reported with the library error chained.
    """
    def test_generate_keypair_failure(self):

        with mock.patch("kpxcpc.encryption.box_manager.X25519PrivateKey") as private_key_class:
            private_key_class.generate.side_effect = RuntimeError("no entropy")

            with self.assertRaises(KeePassXCError) as cm:
                BoxManager.generate_keypair()

        self.assertEqual(ClientCodes.KEY_GENERATION_ERROR, cm.exception.application_code)
        self.assertIsInstance(cm.exception.__cause__, RuntimeError)

    """
        validate_public_key() accepts a real key and rejects wrong sizes and types.
    """
    def test_validate_public_key(self):

        self.assertEqual(self.peer.public, BoxManager.validate_public_key(bytearray(self.peer.public)))

        for bad in (b"", os.urandom(31), os.urandom(33), "x" * 32, None):
            with self.subTest(bad=bad):
                with self.assertRaises(KeePassXCError) as cm:
                    BoxManager.validate_public_key(bad)

                self.assertEqual(ClientCodes.INVALID_PUBLIC_KEY, cm.exception.application_code)

    """
        What the client seals for the peer, the peer opens with its own private key.
    """
    def test_seal_open_between_parties(self):

        ciphertext = BoxManager.seal(self.PLAINTEXT, self.nonce, self.peer.public, self.client.private)

        self.assertEqual(len(self.PLAINTEXT) + 16, len(ciphertext))
        self.assertEqual(self.PLAINTEXT, BoxManager.open(ciphertext, self.nonce, self.client.public, self.peer.private))

    """
        An empty plaintext still carries an authentication tag.
    """
    def test_seal_empty_plaintext(self):

        ciphertext = BoxManager.seal(b"", self.nonce, self.peer.public, self.client.private)

        self.assertEqual(16, len(ciphertext))
        self.assertEqual(b"", BoxManager.open(ciphertext, self.nonce, self.client.public, self.peer.private))

    """
        A flipped ciphertext bit fails authentication.
    """
    def test_open_rejects_altered_ciphertext(self):

        ciphertext = bytearray(BoxManager.seal(self.PLAINTEXT, self.nonce, self.peer.public, self.client.private))
        ciphertext[-1] ^= 0x01

        with self.assertRaises(AuthenticationFailure) as cm:
            BoxManager.open(bytes(ciphertext), self.nonce, self.client.public, self.peer.private)

        self.assertEqual(ClientCodes.CIPHERTEXT_AUTH_ERROR, cm.exception.application_code)
        self.assertIsInstance(cm.exception.__cause__, CryptoError)

    """
        Opening under the next nonce fails authentication.
    """
    def test_open_rejects_wrong_nonce(self):

        ciphertext = BoxManager.seal(self.PLAINTEXT, self.nonce, self.peer.public, self.client.private)

        with self.assertRaises(AuthenticationFailure):
            BoxManager.open(ciphertext, NonceManager.increment_nonce(self.nonce), self.client.public, self.peer.private)

    """
        Opening with an unrelated key pair fails authentication.
    """
    def test_open_rejects_wrong_keys(self):

        stranger = BoxManager.generate_keypair()
        ciphertext = BoxManager.seal(self.PLAINTEXT, self.nonce, self.peer.public, self.client.private)

        with self.assertRaises(AuthenticationFailure):
            BoxManager.open(ciphertext, self.nonce, stranger.public, self.peer.private)

    """
        A ciphertext shorter than the tag cannot authenticate.
    """
    def test_open_rejects_short_ciphertext(self):

        with self.assertRaises(AuthenticationFailure):
            BoxManager.open(b"\x00" * 15, self.nonce, self.client.public, self.peer.private)

    """
        Invalid argument types are reported as KeePassXCError, not crypto failures.
    """
    def test_seal_rejects_invalid_arguments(self):

        with self.assertRaises(KeePassXCError) as cm:
            BoxManager.seal("text", self.nonce, self.peer.public, self.client.private)  # type: ignore
        self.assertEqual(ClientCodes.INVALID_TYPE, cm.exception.application_code)

        with self.assertRaises(KeePassXCError) as cm:
            BoxManager.seal(self.PLAINTEXT, self.nonce[:12], self.peer.public, self.client.private)
        self.assertEqual(ClientCodes.INVALID_NONCE, cm.exception.application_code)

        with self.assertRaises(KeePassXCError) as cm:
            BoxManager.seal(self.PLAINTEXT, self.nonce, self.peer.public, self.client.private[:16])
        self.assertEqual(ClientCodes.INVALID_PRIVATE_KEY, cm.exception.application_code)

    """
        open() rejects a non-bytes ciphertext before trying to decrypt.
    """
    def test_open_rejects_invalid_ciphertext_type(self):

        with self.assertRaises(KeePassXCError) as cm:
            BoxManager.open("not-bytes", self.nonce, self.client.public, self.peer.private)  # type: ignore

        self.assertNotIsInstance(cm.exception, AuthenticationFailure)
        self.assertEqual(ClientCodes.INVALID_CIPHERTEXT, cm.exception.application_code)


if __name__ == "__main__":
    unittest.main()
