#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testClient.py

    Description:
        End-to-end tests for KeePassXCClient and the kpxcpc command line. A
        simulated KeePassXC peer is served on a real Unix socket so the whole
        stack runs: socket framing, key exchange, association, the identity
        file, output rendering, and exit statuses.
"""

import io
import json
import os
import shutil
import socket
import tempfile
import threading
import unittest
from unittest import mock
from kpxcpc.client import KeePassXCClient, create_client, main
from kpxcpc.handlers.transport_handler import TransportHandler
from kpxcpc.handlers.error_handler import ExitCodes, ProtocolError, ProtocolCodes, TransportError
from kpxcpc.encryption.identity_manager import IdentityManager
from kpxcpc.utilities.audit_log import AuditLog
from kpxcpc.handlers.testSupport import PeerSimulator, serve_in_thread


ENTRIES = {
    "https://example.com": [
        {"login": "alice", "name": "Example", "password": "hunter2", "uuid": "0f4e", "stringFields": [{"KPH: pin": "1234"}]},
        {"login": "bob", "name": "Example (bob)", "password": "pa55", "uuid": "77aa", "stringFields": []},
    ],
}

TOTP = {"0f4e": "123456"}


class TestKeePassXCClient(unittest.TestCase):

    def _connected_client(self, peer, identity=None, saved=None):
        client_sock, server_sock = socket.socketpair()
        serve_in_thread(peer, server_sock)

        return KeePassXCClient(
            TransportHandler(client_sock),
            identity=identity,
            identity_saver=saved.append if saved is not None else None,
            audit_log=AuditLog(""),
        )

    """
        Pair once, then reconnect with the stored identity without pairing again.
    """
    def test_pair_then_reconnect(self):

        peer = PeerSimulator(entries=ENTRIES, totp=TOTP)
        saved = []

        with self._connected_client(peer, saved=saved) as client:
            identity = client.connect()

            self.assertEqual("kpxcpc-test", identity.identifier)
            self.assertEqual([identity], saved)
            self.assertEqual(identity, client.association_data())
            self.assertEqual(["alice", "bob"], [e.login for e in client.get_logins("https://example.com").entries])
            self.assertEqual("123456", client.get_totp("0f4e"))

        with self._connected_client(peer, identity=identity, saved=saved) as client:
            self.assertEqual(identity, client.connect())
            self.assertEqual(2, client.get_logins("https://example.com").count)

        self.assertEqual(1, peer.count("associate"))
        self.assertEqual(2, peer.count("change-public-keys"))
        self.assertEqual(1, len(saved))

    """
        Two clients with distinct client IDs are served independently.
    """
    def test_two_sessions(self):

        peer = PeerSimulator(entries=ENTRIES, totp=TOTP)

        with self._connected_client(peer) as first:
            identity = first.connect()

            with self._connected_client(peer, identity=identity) as second:
                self.assertEqual(identity, second.connect())
                self.assertNotEqual(first.session.client_id, second.session.client_id)
                self.assertNotEqual(first.session.public_key, second.session.public_key)

                self.assertEqual("123456", second.get_totp("0f4e"))
                self.assertEqual("123456", first.get_totp("0f4e"))

        self.assertEqual(1, peer.count("associate"))

    """
        An unknown URL surfaces KeePassXC's no-logins error.
    """
    def test_no_logins(self):

        peer = PeerSimulator(entries=ENTRIES)

        with self._connected_client(peer) as client:
            client.connect()

            with self.assertRaises(ProtocolError) as cm:
                client.get_logins("https://unknown.example")

        self.assertTrue(cm.exception.is_code(ProtocolCodes.NO_LOGINS_FOUND))

    """
        Actions after close() fail with a transport error.
    """
    def test_closed_client(self):

        peer = PeerSimulator(totp=TOTP)
        client = self._connected_client(peer)
        client.connect()
        client.close()

        with self.assertRaises(TransportError):
            client.get_totp("0f4e")


class PeerServerTestCase(unittest.TestCase):

    def setUp(self) -> None:
        self.tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmpdir, True)

        self.socket_path = os.path.join(self.tmpdir, "kpxc_server")
        self.identity_path = os.path.join(self.tmpdir, "data", "identity.json")

        env = mock.patch.dict(os.environ, {"KPXCPC_AUDIT_LOG": ""})
        env.start()
        self.addCleanup(env.stop)

    """
        Listen on the test socket and serve one connection with the peer.
    """
    def serve(self, peer):

        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        listener.bind(self.socket_path)
        listener.listen(1)
        self.addCleanup(listener.close)

        def accept():
            connection, _ = listener.accept()
            serve_in_thread(peer, connection).join()

        thread = threading.Thread(target=accept, daemon=True)
        thread.start()
        return thread

    """
        Run main() and return (status, stdout, stderr).
    """
    def run_main(self, *argv, stdin=""):

        stdout, stderr = io.StringIO(), io.StringIO()
        with mock.patch("sys.stdout", stdout), mock.patch("sys.stderr", stderr), mock.patch("sys.stdin", io.StringIO(stdin)):
            status = main(list(argv))

        return status, stdout.getvalue(), stderr.getvalue()


class TestCreateClient(PeerServerTestCase):

    """
        create_client() loads the identity file and writes it back after pairing.
    """
    def test_identity_file_round_trip(self):

        peer = PeerSimulator(totp=TOTP)
        self.serve(peer)

        with create_client([self.socket_path], self.identity_path, audit_log=AuditLog("")) as client:
            identity = client.connect()

        self.assertEqual(identity, IdentityManager(self.identity_path).load())
        self.assertEqual(0o600, os.stat(self.identity_path).st_mode & 0o777)

    """
        Without a reachable socket create_client() raises TransportError.
    """
    def test_no_socket(self):

        with self.assertRaises(TransportError):
            create_client([self.socket_path], self.identity_path, audit_log=AuditLog(""))


class TestCommandLine(PeerServerTestCase):

    def _paired_peer(self):
        identity = IdentityManager.generate_identity().with_identifier("laptop")
        IdentityManager(self.identity_path).save(identity)
        return PeerSimulator(entries=ENTRIES, totp=TOTP, associations={"laptop": identity.identity_key})

    """
        Logins are printed through the format string.
    """
    def test_print_logins(self):

        peer = self._paired_peer()
        self.serve(peer)

        status, out, err = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "--fmt", "%l:%p:%F:pin\\n", "https://example.com")

        self.assertEqual(ExitCodes.OK, status)
        self.assertEqual("alice:hunter2:1234\nbob:pa55:%F:pin\n", out)
        self.assertEqual("", err)
        self.assertEqual(0, peer.count("associate"))

    """
        The default format prints the passwords with no separator.
    """
    def test_default_format(self):

        self.serve(self._paired_peer())

        status, out, _ = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "https://example.com")

        self.assertEqual(ExitCodes.OK, status)
        self.assertEqual("hunter2pa55", out)

    def test_print_logins_json(self):

        self.serve(self._paired_peer())

        status, out, _ = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "--json", "https://example.com")

        self.assertEqual(ExitCodes.OK, status)
        self.assertEqual(["alice", "bob"], [e["login"] for e in json.loads(out)])

    """
        --totp prints one code per line, or JSON.
    """
    def test_print_totp(self):

        self.serve(self._paired_peer())
        status, out, _ = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "--totp", "0f4e")

        self.assertEqual(ExitCodes.OK, status)
        self.assertEqual("123456\n", out)

    def test_print_totp_json(self):

        self.serve(self._paired_peer())
        status, out, _ = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "--totp", "--json", "0f4e")

        self.assertEqual(ExitCodes.OK, status)
        self.assertEqual({"totp": "123456"}, json.loads(out))

    """
        A URL with no logins exits with NOT_FOUND and names the URL.
    """
    def test_no_logins(self):

        self.serve(self._paired_peer())

        status, out, err = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "https://unknown.example", "https://example.com")

        self.assertEqual(ExitCodes.NOT_FOUND, status)
        self.assertEqual("", out)
        self.assertIn("https://unknown.example", err)

    """
        --keep-going reports the failure and continues with the next argument.
    """
    def test_keep_going(self):

        self.serve(self._paired_peer())

        status, out, err = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "--keep-going", "--fmt", "%l\\n", "https://unknown.example", "https://example.com")

        self.assertEqual(ExitCodes.NOT_FOUND, status)
        self.assertEqual("alice\nbob\n", out)
        self.assertIn("https://unknown.example", err)

    """
        A missing identity file triggers pairing and is written afterwards.
    """
    def test_first_run_pairs(self):

        peer = PeerSimulator(entries=ENTRIES, totp=TOTP)
        self.serve(peer)

        status, out, _ = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "--totp", "0f4e")

        self.assertEqual(ExitCodes.OK, status)
        self.assertEqual("123456\n", out)
        self.assertEqual(1, peer.count("associate"))
        self.assertEqual("kpxcpc-test", IdentityManager(self.identity_path).load().identifier)

    """
        --associate pairs a fresh identity and prints its record to stdout.
    """
    def test_associate(self):

        peer = PeerSimulator()
        self.serve(peer)

        status, out, _ = self.run_main("--socket", self.socket_path, "--associate")

        self.assertEqual(ExitCodes.OK, status)
        record = json.loads(out)
        self.assertEqual("kpxcpc-test", record["id"])
        self.assertEqual(IdentityManager.decode_record(record).identity_key, peer.associations["kpxcpc-test"])
        self.assertEqual(["change-public-keys", "test-associate", "associate"], peer.actions)

    """
        Missing arguments and bad formats are usage errors.
    """
    def test_usage_errors(self):

        status, out, err = self.run_main("--socket", self.socket_path)
        self.assertEqual(ExitCodes.USAGE, status)
        self.assertIn("please provide at least one URL", err)

        status, _, err = self.run_main("--totp")
        self.assertEqual(ExitCodes.USAGE, status)
        self.assertIn("entry UUID", err)

        status, _, err = self.run_main("--fmt", "\\q", "https://example.com")
        self.assertEqual(ExitCodes.USAGE, status)
        self.assertIn("fmt", err)

    """
        An unreachable socket is a failure reported against "connect".
    """
    def test_connect_failure(self):

        status, out, err = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "https://example.com")

        self.assertEqual(ExitCodes.FAILURE, status)
        self.assertEqual("", out)
        self.assertIn("connect:", err)

    """
        --no-wait turns a locked database into an immediate failure.
    """
    def test_no_wait_locked(self):

        peer = self._paired_peer()
        peer.locked_responses = 1
        self.serve(peer)

        status, _, err = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "--no-wait", "https://example.com")

        self.assertEqual(ExitCodes.FAILURE, status)
        self.assertIn("database not opened", err)
        self.assertEqual(["true"], peer.trigger_unlock_flags("test-associate"))

    """
        --no-trigger-unlock omits triggerUnlock on test-associate.
    """
    def test_no_trigger_unlock(self):

        peer = self._paired_peer()
        self.serve(peer)

        status, _, _ = self.run_main("--socket", self.socket_path, "--identity", self.identity_path, "--no-trigger-unlock", "--totp", "0f4e")

        self.assertEqual(ExitCodes.OK, status)
        self.assertEqual([None], peer.trigger_unlock_flags("test-associate"))


if __name__ == "__main__":
    unittest.main()
