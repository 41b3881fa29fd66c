#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testSanitizationValidation.py

    Description:
        Tests for the encoding helpers: standard base64, compact JSON, and
        KeePassXC's string-encoded integers and booleans.
"""

import unittest
import kpxcpc.handlers.sanitization_validation as VALIDATION
from kpxcpc.handlers.error_handler import KeePassXCError, MalformedResponseError, ClientCodes


class TestSanitizationValidation(unittest.TestCase):

    """
        Base64 is the padded standard alphabet, not the URL-safe one.
    """
    def test_base64_standard_alphabet(self):

        raw = b"\xfb\xff\xfe"

        self.assertEqual("+//+", VALIDATION.encode_bytes_to_base64(raw))
        self.assertEqual(raw, VALIDATION.decode_base64_to_bytes("nonce", "+//+"))

        with self.assertRaises(KeePassXCError) as cm:
            VALIDATION.decode_base64_to_bytes("nonce", "-__-")
        self.assertEqual(ClientCodes.INVALID_BASE64, cm.exception.application_code)

        with self.assertRaises(MalformedResponseError):
            VALIDATION.decode_base64_to_bytes("nonce", "abc", MalformedResponseError)

    """
        decode_fixed_length() reports every failure under the caller's code.
    """
    def test_decode_fixed_length(self):

        self.assertEqual(b"\x00" * 3, VALIDATION.decode_fixed_length("k", "AAAA", 3, ClientCodes.INVALID_IDENTITY))

        for bad in ("AAAA AAAA", "AAAAAAAA", None):
            with self.subTest(bad=bad):
                with self.assertRaises(KeePassXCError) as cm:
                    VALIDATION.decode_fixed_length("k", bad, 3, ClientCodes.INVALID_IDENTITY)
                self.assertEqual(ClientCodes.INVALID_IDENTITY, cm.exception.application_code)

    """
        JSON is serialized compactly and only objects are accepted back.
    """
    def test_json_helpers(self):

        self.assertEqual(b'{"a":1,"b":"c"}', VALIDATION.encode_dict_to_json_bytes({"a": 1, "b": "c"}))
        self.assertEqual({"a": 1}, VALIDATION.decode_json_bytes_to_dict(b'{"a": 1}'))

        for bad in (b"[1]", b"{", b"\xff"):
            with self.subTest(bad=bad):
                with self.assertRaises(MalformedResponseError):
                    VALIDATION.decode_json_bytes_to_dict(bad)

    """
        errorCode arrives as a string; plain ints are accepted too.
    """
    def test_coerce_to_int(self):

        self.assertEqual(15, VALIDATION.coerce_to_int("15"))
        self.assertEqual(4, VALIDATION.coerce_to_int(4))
        self.assertIsNone(VALIDATION.coerce_to_int(None))
        self.assertIsNone(VALIDATION.coerce_to_int(""))

        for bad in ("fifteen", True, [1]):
            with self.subTest(bad=bad):
                with self.assertRaises(MalformedResponseError):
                    VALIDATION.coerce_to_int(bad, "errorCode")

    """
        Booleans travel as "true"/"false" strings.
    """
    def test_booleans(self):

        self.assertEqual("true", VALIDATION.encode_bool(True))
        self.assertEqual("false", VALIDATION.encode_bool(False))
        self.assertTrue(VALIDATION.coerce_to_bool("true"))
        self.assertFalse(VALIDATION.coerce_to_bool("false"))
        self.assertTrue(VALIDATION.coerce_to_bool(True))
        self.assertIsNone(VALIDATION.coerce_to_bool(None))

        with self.assertRaises(MalformedResponseError):
            VALIDATION.coerce_to_bool("yes", "success")


if __name__ == "__main__":
    unittest.main()
