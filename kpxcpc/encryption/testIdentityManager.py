#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testIdentityManager.py

    Description:
        Test suite for IdentityManager. Verifies the identity record format,
        loading with fallback to a fresh identity, stdin/stdout handling for
        "-", and that saved records get restrictive permissions.
"""

import base64
import io
import json
import os
import shutil
import stat
import tempfile
import unittest
from unittest import mock
from kpxcpc.encryption.identity_manager import Identity, IdentityManager
from kpxcpc.handlers.error_handler import KeePassXCError, ClientCodes
from kpxcpc.utilities.audit_log import AuditLog


class TestIdentityManager(unittest.TestCase):

    """
        Work inside a throwaway directory with an audit log we can inspect.
    """
    def setUp(self) -> None:

        self.tmpdir = tempfile.mkdtemp()
        self.audit_path = os.path.join(self.tmpdir, "audit.jsonl")
        self.audit = AuditLog(self.audit_path)
        self.path = os.path.join(self.tmpdir, "data", "kpxcpc", "identity.json")
        self.manager = IdentityManager(self.path, self.audit)
        self.identity = Identity(identifier="laptop", identity_key=os.urandom(24))

    def tearDown(self) -> None:
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _audit_events(self):
        if not os.path.exists(self.audit_path):
            return []
        with open(self.audit_path, encoding="utf-8") as f:
            return [json.loads(line)["event"] for line in f]

    """
        Constructor rejects empty and non-string paths.
    """
    def test_init_rejects_invalid_path(self):

        for bad in ("", "   ", None, 5):
            with self.subTest(bad=bad):
                with self.assertRaises(KeePassXCError) as cm:
                    IdentityManager(bad)  # type: ignore
                self.assertEqual(ClientCodes.INVALID_IDENTITY, cm.exception.application_code)

    """
        Default path follows XDG_DATA_HOME, falling back to ~/.local/share.
    """
    def test_default_identity_path(self):

        self.assertEqual("/xdg/kpxcpc/identity.json", IdentityManager.default_identity_path({"XDG_DATA_HOME": "/xdg"}))
        self.assertEqual("/home/u/.local/share/kpxcpc/identity.json", IdentityManager.default_identity_path({"HOME": "/home/u"}))

    """
        A generated identity is unassociated with a 24-byte key.
    """
    def test_generate_identity(self):

        identity = IdentityManager.generate_identity()

        self.assertEqual("", identity.identifier)
        self.assertFalse(identity.associated)
        self.assertEqual(24, len(identity.identity_key))
        self.assertNotIn(identity.identity_key.hex(), repr(identity))

    """
        Records use the {"id", "idKey"} layout with standard base64.
    """
    def test_encode_and_decode_record(self):

        record = IdentityManager.encode_record(self.identity)

        self.assertEqual({"id", "idKey"}, set(record))
        self.assertEqual(self.identity.identity_key, base64.b64decode(record["idKey"]))
        self.assertEqual(self.identity, IdentityManager.decode_record(record))

    """
        Malformed records are rejected with INVALID_IDENTITY.
    """
    def test_decode_record_rejects_malformed(self):

        bad_records = [
            [],
            {"id": "x"},
            {"id": "x", "idKey": "not base64!"},
            {"id": "x", "idKey": base64.b64encode(b"short").decode()},
            {"id": 7, "idKey": base64.b64encode(os.urandom(24)).decode()},
        ]

        for record in bad_records:
            with self.subTest(record=record):
                with self.assertRaises(KeePassXCError) as cm:
                    IdentityManager.decode_record(record)
                self.assertEqual(ClientCodes.INVALID_IDENTITY, cm.exception.application_code)

    """
        A missing "id" means the identity was never associated.
    """
    def test_decode_record_missing_id(self):

        identity = IdentityManager.decode_record({"idKey": base64.b64encode(b"k" * 24).decode()})

        self.assertEqual("", identity.identifier)
        self.assertEqual(b"k" * 24, identity.identity_key)

    """
        save() then load() returns the same identity; directory and file are private.
    """
    def test_save_then_load(self):

        self.manager.save(self.identity)

        self.assertEqual(0o600, stat.S_IMODE(os.stat(self.path).st_mode))
        self.assertEqual(0o700, stat.S_IMODE(os.stat(os.path.dirname(self.path)).st_mode))
        self.assertEqual(self.identity, self.manager.load())
        self.assertIn("identity_saved", self._audit_events())

    """
        Saving over an existing world-readable file tightens its mode.
    """
    def test_save_tightens_existing_file(self):

        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w") as f:
            f.write("{}")
        os.chmod(self.path, 0o644)

        self.manager.save(self.identity)

        self.assertEqual(0o600, stat.S_IMODE(os.stat(self.path).st_mode))

    """
        A missing file yields a fresh, unassociated identity.
    """
    def test_load_missing_file(self):

        identity = self.manager.load()

        self.assertEqual("", identity.identifier)
        self.assertEqual(24, len(identity.identity_key))
        self.assertIn("identity_missing", self._audit_events())

    """
        A corrupt file is treated like a missing one.
    """
    def test_load_corrupt_file(self):

        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w") as f:
            f.write("{not json")

        identity = self.manager.load()

        self.assertFalse(identity.associated)
        self.assertIn("identity_unreadable", self._audit_events())

    """
        "-" reads the record from stdin and writes it to stdout.
    """
    def test_stdio_path(self):

        manager = IdentityManager("-", self.audit)
        record_text = json.dumps(IdentityManager.encode_record(self.identity))

        with mock.patch("sys.stdin", io.StringIO(record_text)):
            self.assertEqual(self.identity, manager.load())

        out = io.StringIO()
        with mock.patch("sys.stdout", out):
            manager.save(self.identity)

        self.assertEqual(IdentityManager.encode_record(self.identity), json.loads(out.getvalue()))

    """
        An unwritable location raises IDENTITY_SAVE_ERROR.
    """
    def test_save_failure(self):

        blocker = os.path.join(self.tmpdir, "blocker")
        with open(blocker, "w") as f:
            f.write("")

        manager = IdentityManager(os.path.join(blocker, "identity.json"), self.audit)

        with self.assertRaises(KeePassXCError) as cm:
            manager.save(self.identity)

        self.assertEqual(ClientCodes.IDENTITY_SAVE_ERROR, cm.exception.application_code)
        self.assertIsInstance(cm.exception.__cause__, OSError)

    """
        with_identifier() keeps the key and replaces only the identifier.
    """
    def test_with_identifier(self):

        renamed = self.identity.with_identifier("desktop")

        self.assertEqual("desktop", renamed.identifier)
        self.assertEqual(self.identity.identity_key, renamed.identity_key)
        self.assertEqual("laptop", self.identity.identifier)


if __name__ == "__main__":
    unittest.main()
