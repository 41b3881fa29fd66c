#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testNonceManager.py

    Description:
        Test suite for NonceManager. Verifies random nonce generation and the
        little-endian increment, including carry propagation and wrap-around.
"""

import unittest
from kpxcpc.encryption.nonce_manager import NonceManager
from kpxcpc.handlers.error_handler import KeePassXCError, ClientCodes


class TestNonceManager(unittest.TestCase):

    """
        generate_nonce() returns 24 fresh random bytes.
    """
    def test_generate_nonce_properties(self):

        nonce1 = NonceManager.generate_nonce()
        nonce2 = NonceManager.generate_nonce()

        self.assertIsInstance(nonce1, bytes)
        self.assertEqual(24, len(nonce1))
        self.assertEqual(24, len(nonce2))
        self.assertNotEqual(nonce1, nonce2)

    """
        Incrementing bumps the first (least significant) byte only.
    """
    def test_increment_without_carry(self):

        self.assertEqual(b"b" + b"a" * 23, NonceManager.increment_nonce(b"a" * 24))
        self.assertEqual(b"{" + b"z" * 23, NonceManager.increment_nonce(b"z" * 24))

    """
        A 0xff byte rolls over to zero and carries into the next byte.
    """
    def test_increment_carries(self):

        nonce = b"\xff\xff\x01" + b"\x00" * 21
        self.assertEqual(b"\x00\x00\x02" + b"\x00" * 21, NonceManager.increment_nonce(nonce))

    """
        The carry stops at the first byte that does not overflow.
    """
    def test_increment_carry_stops(self):

        nonce = b"\xff" + b"\x10" + b"\xff" * 22
        self.assertEqual(b"\x00" + b"\x11" + b"\xff" * 22, NonceManager.increment_nonce(nonce))

    """
        All-ones wraps to all-zeros.
    """
    def test_increment_wraps(self):

        self.assertEqual(b"\x00" * 24, NonceManager.increment_nonce(b"\xff" * 24))

    """
        The input is left untouched, including a bytearray input.
    """
    def test_increment_does_not_mutate(self):

        nonce = bytearray(b"\x01" * 24)
        result = NonceManager.increment_nonce(nonce)

        self.assertEqual(bytearray(b"\x01" * 24), nonce)
        self.assertIsInstance(result, bytes)
        self.assertEqual(b"\x02" + b"\x01" * 23, result)

    """
        Wrong types and lengths are rejected.
    """
    def test_increment_rejects_invalid_input(self):

        for bad in ("a" * 24, b"a" * 23, b"a" * 25, None):
            with self.subTest(bad=bad):
                with self.assertRaises(KeePassXCError) as cm:
                    NonceManager.increment_nonce(bad)  # type: ignore

                self.assertEqual(ClientCodes.INVALID_NONCE, cm.exception.application_code)
                self.assertEqual("nonce", cm.exception.field)


if __name__ == "__main__":
    unittest.main()
