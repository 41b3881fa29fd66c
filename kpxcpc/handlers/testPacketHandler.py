#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testPacketHandler.py

    Description:
        Test suite for PacketHandler. Verifies the request envelopes and inner
        action messages sent to KeePassXC, and the parsing and validation of
        response envelopes, including string-encoded error codes.
"""

import base64
import os
import unittest
from kpxcpc.handlers.packet_handler import PacketHandler, ResponseEnvelope
from kpxcpc.handlers.error_handler import KeePassXCError, MalformedResponseError, ProtocolError, ProtocolCodes, ClientCodes
from kpxcpc.encryption.identity_manager import Identity


def b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


class TestPacketHandler(unittest.TestCase):

    def setUp(self) -> None:
        self.packets = PacketHandler()
        self.client_id = os.urandom(24)
        self.nonce = os.urandom(24)
        self.public_key = os.urandom(32)
        self.identity = Identity(identifier="laptop", identity_key=os.urandom(24))

    """
        change-public-keys carries our key in plaintext.
    """
    def test_change_public_keys_request(self):

        request = self.packets.create_change_public_keys_request(self.client_id, self.nonce, self.public_key)

        self.assertEqual({
            "action": "change-public-keys",
            "publicKey": b64(self.public_key),
            "nonce": b64(self.nonce),
            "clientID": b64(self.client_id),
        }, request)

    """
        Encrypted requests send triggerUnlock as the string "true", or omit it.
    """
    def test_encrypted_request_trigger_unlock(self):

        request = self.packets.create_encrypted_request("get-logins", self.client_id, self.nonce, b"sealed", True)

        self.assertEqual("true", request["triggerUnlock"])
        self.assertEqual(b64(b"sealed"), request["message"])
        self.assertEqual("get-logins", request["action"])

        request = self.packets.create_encrypted_request("test-associate", self.client_id, self.nonce, b"sealed", False)
        self.assertNotIn("triggerUnlock", request)

    """
        Request builders reject unknown actions and malformed sizes.
    """
    def test_request_validation(self):

        with self.assertRaises(KeePassXCError) as cm:
            self.packets.create_encrypted_request("delete-everything", self.client_id, self.nonce, b"x", True)
        self.assertEqual(ClientCodes.INVALID_ACTION, cm.exception.application_code)

        with self.assertRaises(KeePassXCError) as cm:
            self.packets.create_encrypted_request("get-totp", self.client_id, self.nonce[:8], b"x", True)
        self.assertEqual(ClientCodes.INVALID_NONCE, cm.exception.application_code)

        with self.assertRaises(KeePassXCError) as cm:
            self.packets.create_change_public_keys_request(self.client_id[:10], self.nonce, self.public_key)
        self.assertEqual(ClientCodes.INVALID_LENGTH, cm.exception.application_code)

    """
        Inner messages for each action use KeePassXC's field names.
    """
    def test_inner_messages(self):

        self.assertEqual(
            {"action": "associate", "key": b64(self.public_key), "idKey": b64(self.identity.identity_key)},
            self.packets.create_associate_message(self.public_key, self.identity),
        )

        self.assertEqual(
            {"action": "test-associate", "id": "laptop", "key": b64(self.identity.identity_key)},
            self.packets.create_test_associate_message(self.identity),
        )

        self.assertEqual(
            {"action": "get-logins", "url": "https://example.com", "keys": [{"id": "laptop", "key": b64(self.identity.identity_key)}]},
            self.packets.create_get_logins_message("https://example.com", self.identity),
        )

        message = self.packets.create_get_logins_message("https://example.com", self.identity, submit_url="https://example.com/login", http_auth="true")
        self.assertEqual("https://example.com/login", message["submitUrl"])
        self.assertEqual("true", message["httpAuth"])

        self.assertEqual({"action": "get-totp", "uuid": "abc"}, self.packets.create_get_totp_message("abc"))

    """
        Responses decode base64, string integers and string booleans.
    """
    def test_parse_response(self):

        envelope = self.packets.parse_response({
            "action": "test-associate",
            "message": b64(b"ct"),
            "nonce": b64(self.nonce),
            "success": "true",
            "version": "2.7.6",
            "hash": "abc",
            "id": "laptop",
        })

        self.assertEqual(b"ct", envelope.message)
        self.assertEqual(self.nonce, envelope.nonce)
        self.assertTrue(envelope.success)
        self.assertIsNone(envelope.error_code)
        self.assertFalse(envelope.is_error)
        self.assertEqual("laptop", envelope.id)

    """
        Badly typed or encoded fields are malformed responses.
    """
    def test_parse_response_rejects_malformed(self):

        for packet in ([], {"nonce": "***"}, {"errorCode": "fifteen"}, {"error": 5}, {"success": "maybe"}):
            with self.subTest(packet=packet):
                with self.assertRaises(MalformedResponseError):
                    self.packets.parse_response(packet)

    """
        Error envelopes raise ProtocolError with the decoded code.
    """
    def test_check_protocol_error(self):

        envelope = self.packets.parse_response({"action": "get-logins", "error": "No logins found", "errorCode": "15"})

        with self.assertRaises(ProtocolError) as cm:
            self.packets.check_protocol_error(envelope)

        self.assertTrue(cm.exception.is_code(ProtocolCodes.NO_LOGINS_FOUND))
        self.assertEqual("No logins found", cm.exception.message)

        # Integer codes are accepted too
        envelope = self.packets.parse_response({"error": "Database not opened", "errorCode": 1})
        with self.assertRaises(ProtocolError) as cm:
            self.packets.check_protocol_error(envelope)
        self.assertTrue(cm.exception.is_code(ProtocolCodes.DATABASE_NOT_OPENED))

        self.packets.check_protocol_error(ResponseEnvelope(message=b"x", nonce=self.nonce))

    """
        Successful responses must carry their required fields.
    """
    def test_validate_responses(self):

        self.packets.validate_encrypted_response(ResponseEnvelope(message=b"x", nonce=self.nonce))
        self.packets.validate_change_public_keys_response(ResponseEnvelope(public_key=self.public_key, nonce=self.nonce))

        bad_cases = [
            (self.packets.validate_encrypted_response, ResponseEnvelope(nonce=self.nonce), ClientCodes.MISSING_FIELDS),
            (self.packets.validate_encrypted_response, ResponseEnvelope(message=b"x"), ClientCodes.MISSING_FIELDS),
            (self.packets.validate_encrypted_response, ResponseEnvelope(message=b"x", nonce=b"short"), ClientCodes.INVALID_NONCE),
            (self.packets.validate_change_public_keys_response, ResponseEnvelope(nonce=self.nonce), ClientCodes.MISSING_FIELDS),
            (self.packets.validate_change_public_keys_response, ResponseEnvelope(public_key=b"k" * 31, nonce=self.nonce), ClientCodes.INVALID_PUBLIC_KEY),
        ]

        for validate, envelope, code in bad_cases:
            with self.subTest(envelope=envelope):
                with self.assertRaises(MalformedResponseError) as cm:
                    validate(envelope)
                self.assertEqual(code, cm.exception.application_code)


if __name__ == "__main__":
    unittest.main()
