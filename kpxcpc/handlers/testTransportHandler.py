#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testTransportHandler.py

    Description:
        Test suite for TransportHandler. Verifies one-document-per-message
        framing over an unframed stream: back-to-back documents, split reads,
        strings containing braces, EOF handling, and socket discovery.
"""

import os
import shutil
import socket
import tempfile
import time
import unittest
from kpxcpc.handlers.transport_handler import TransportHandler, _DocumentScanner, _find_document_end
from kpxcpc.handlers.error_handler import KeePassXCError, TransportError, MalformedResponseError, ClientCodes


"""
    Minimal stream double: recv() hands out scripted chunks, then EOF.
"""
class ScriptedConnection:

    def __init__(self, chunks=()):
        self.chunks = list(chunks)
        self.sent = []
        self.closed = False

    def sendall(self, data):
        self.sent.append(data)

    def recv(self, size):
        if not self.chunks:
            return b""
        return self.chunks.pop(0)

    def close(self):
        self.closed = True


class TestTransportHandler(unittest.TestCase):

    """
        The scanner finds the end of the top-level object only.
    """
    def test_find_document_end(self):

        self.assertIsNone(_find_document_end(b""))
        self.assertIsNone(_find_document_end(b"  \n"))
        self.assertIsNone(_find_document_end(b'{"a": {"b": 1}'))
        self.assertEqual(15, _find_document_end(b'{"a": {"b": 1}}{"next": 2}'))
        self.assertEqual(len(b'{"s": "}{\\"]"}'), _find_document_end(b'{"s": "}{\\"]"} trailing'))
        self.assertEqual(10, _find_document_end(b'\n {"a": 1}'))

        with self.assertRaises(MalformedResponseError):
            _find_document_end(b"[1, 2]")

    """
        The scanner resumes where it stopped instead of starting over.
    """
    def test_scanner_resumes(self):

        scanner = _DocumentScanner()
        buffer = bytearray(b'{"s": "ab\\')

        self.assertIsNone(scanner.scan(buffer))
        self.assertTrue(scanner.in_string)
        self.assertEqual(len(buffer) - 1, scanner.position)

        buffer += b'"}", "n": [1]'
        self.assertIsNone(scanner.scan(buffer))
        self.assertFalse(scanner.in_string)

        buffer += b"}"
        self.assertEqual(len(buffer), scanner.scan(buffer))

    """
        Escapes and braces split one byte per read are tracked correctly.
    """
    def test_byte_at_a_time(self):

        payload = b'{"s": "q\\"}\\\\", "t": {"u": "]"}}{"n": 2}'
        transport = TransportHandler(ScriptedConnection([payload[i:i + 1] for i in range(len(payload))]))

        self.assertEqual({"s": 'q"}\\', "t": {"u": "]"}}, transport.receive_document())
        self.assertEqual({"n": 2}, transport.receive_document())

    """
        A multi-megabyte response arriving in socket-sized reads is read in
        time proportional to its size.
    """
    def test_large_document_is_linear(self):

        payload = b'{"message": "' + b"A" * (8 * 1024 * 1024) + b'"}'
        chunk = 64 * 1024
        transport = TransportHandler(ScriptedConnection([payload[i:i + chunk] for i in range(0, len(payload), chunk)]))

        started = time.monotonic()
        document = transport.receive_document()
        elapsed = time.monotonic() - started

        self.assertEqual(8 * 1024 * 1024, len(document["message"]))
        self.assertLess(elapsed, 5.0)

    """
        Two documents arriving in one read are returned one at a time.
    """
    def test_back_to_back_documents(self):

        transport = TransportHandler(ScriptedConnection([b'{"n": 1}\n{"n": 2}']))

        self.assertEqual({"n": 1}, transport.receive_document())
        self.assertEqual({"n": 2}, transport.receive_document())

    """
        A document split across many reads, including inside a multi-byte
        character, is reassembled.
    """
    def test_split_reads(self):

        payload = '{"name": "café {x}", "list": [1, {"k": "v"}]}'.encode("utf-8")
        chunks = [payload[i:i + 3] for i in range(0, len(payload), 3)]

        transport = TransportHandler(ScriptedConnection(chunks))

        self.assertEqual({"name": "café {x}", "list": [1, {"k": "v"}]}, transport.receive_document())

    """
        Clean EOF is a closed transport; EOF mid-document is malformed.
    """
    def test_eof_handling(self):

        with self.assertRaises(TransportError) as cm:
            TransportHandler(ScriptedConnection()).receive_document()
        self.assertEqual(ClientCodes.TRANSPORT_CLOSED, cm.exception.application_code)

        with self.assertRaises(MalformedResponseError):
            TransportHandler(ScriptedConnection([b'{"half": '])).receive_document()

    """
        Documents larger than the cap are rejected instead of buffered forever.
    """
    def test_message_too_large(self):

        transport = TransportHandler(ScriptedConnection([b'{"a": "' + b"x" * 64, b"x" * 64]), max_message_bytes=32)

        with self.assertRaises(MalformedResponseError) as cm:
            transport.receive_document()
        self.assertEqual(ClientCodes.MESSAGE_TOO_LARGE, cm.exception.application_code)

    """
        send_document() writes one compact JSON document.
    """
    def test_send_document(self):

        connection = ScriptedConnection()
        TransportHandler(connection).send_document({"action": "get-totp", "uuid": "u"})

        self.assertEqual([b'{"action":"get-totp","uuid":"u"}'], connection.sent)

    """
        exchange() round-trips over a real socket pair.
    """
    def test_exchange_over_socketpair(self):

        client_sock, server_sock = socket.socketpair()
        self.addCleanup(server_sock.close)

        with TransportHandler(client_sock) as client:
            server_sock.sendall(b'{"ok": "true"}')
            self.assertEqual({"ok": "true"}, client.exchange({"ping": 1}))
            self.assertEqual(b'{"ping":1}', server_sock.recv(1024))

        self.assertTrue(client.closed)

        with self.assertRaises(TransportError):
            client.send_document({"ping": 2})

    """
        OS-level write failures surface as TransportError with the cause chained.
    """
    def test_write_failure(self):

        client_sock, server_sock = socket.socketpair()
        client_sock.close()

        transport = TransportHandler(client_sock)

        with self.assertRaises(TransportError) as cm:
            transport.send_document({"ping": 1})

        self.assertIsInstance(cm.exception.__cause__, OSError)
        server_sock.close()

    """
        The constructor refuses objects that are not stream-like.
    """
    def test_rejects_invalid_connection(self):

        with self.assertRaises(KeePassXCError):
            TransportHandler(None)

        with self.assertRaises(KeePassXCError):
            TransportHandler(object())


class TestSocketDiscovery(unittest.TestCase):

    def setUp(self) -> None:
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self) -> None:
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    """
        Default paths live under XDG_RUNTIME_DIR in a fixed order.
    """
    def test_default_socket_paths(self):

        paths = TransportHandler.default_socket_paths({"XDG_RUNTIME_DIR": "/run/user/1000"})

        self.assertEqual(["/run/user/1000/kpxc_server", "/run/user/1000/org.keepassxc.KeePassXC.BrowserServer"], paths)

    """
        connect() skips paths that refuse and uses the first that accepts.
    """
    def test_connect_first_accepting(self):

        good_path = os.path.join(self.tmpdir, "org.keepassxc.KeePassXC.BrowserServer")
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.addCleanup(listener.close)
        listener.bind(good_path)
        listener.listen(1)

        transport = TransportHandler.connect([os.path.join(self.tmpdir, "kpxc_server"), good_path])
        self.addCleanup(transport.close)

        self.assertFalse(transport.closed)

    """
        When nothing accepts, the last connection error is raised.
    """
    def test_connect_none_accepting(self):

        missing = [os.path.join(self.tmpdir, "a"), os.path.join(self.tmpdir, "b")]

        with self.assertRaises(TransportError) as cm:
            TransportHandler.connect(missing)

        self.assertIsInstance(cm.exception.__cause__, OSError)
        self.assertIn(missing[-1], cm.exception.detail)

        with self.assertRaises(TransportError):
            TransportHandler.connect([])


if __name__ == "__main__":
    unittest.main()
