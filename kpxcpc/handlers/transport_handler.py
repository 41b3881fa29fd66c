#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: transport_handler.py

    Description:
        Carries JSON envelopes over a connected byte stream (the KeePassXC
        proxy's Unix domain socket). Each request is written as one JSON
        document and each response is read back as one JSON document. The
        stream has no length framing, so the reader scans for the end of the
        top-level object and keeps any trailing bytes for the next read.

        Socket errors are fatal and surface as TransportError with the
        original OSError chained.
"""


import os
import re
import socket
import typing
from kpxcpc.handlers.error_handler import KeePassXCError, TransportError, MalformedResponseError, ClientCodes
import kpxcpc.handlers.sanitization_validation as VALIDATION
import kpxcpc.constants as CONSTANTS



# Bytes that matter inside and outside a JSON string. UTF-8 continuation
# bytes are all >= 0x80, so scanning raw bytes never splits a character.
_STRING_SPECIAL_RX = re.compile(rb'["\\]')
_STRUCTURAL_RX = re.compile(rb'[{}\[\]"]')
_WHITESPACE = b" \t\r\n"



"""
    Locates the end of the top-level JSON object in a growing buffer. The scan
    position and nesting state persist between calls, so each byte is scanned
    once no matter how many reads a document takes.
"""
class _DocumentScanner:

    def __init__(self) -> None:
        self.reset()


    def reset(self) -> None:
        self.position = 0
        self.depth = 0
        self.in_string = False
        self.started = False


    """
        Continue scanning buffer from where the previous call stopped.

        @param buffer (bytes | bytearray): Everything buffered since the last reset.
        @return int | None: Index just past the object, or None when more data is needed.
        @ensures Raises MalformedResponseError when the first non-blank byte is not "{".
    """
    def scan(self, buffer: typing.Union[bytes, bytearray]) -> typing.Optional[int]:

        i = self.position
        size = len(buffer)

        if not self.started:
            while i < size and buffer[i] in _WHITESPACE:
                i += 1
            if i == size:
                self.position = i
                return None
            if buffer[i] != ord("{"):
                raise MalformedResponseError(ClientCodes.MALFORMED_JSON, "Response is not a JSON object", "response")
            self.started = True

        while i < size:
            if self.in_string:
                match = _STRING_SPECIAL_RX.search(buffer, i)
                if match is None:
                    i = size
                    break

                if match.group() == b"\\":
                    # Escaped character not received yet: rescan from the backslash
                    if match.end() >= size:
                        i = match.start()
                        break
                    i = match.end() + 1
                    continue

                self.in_string = False
                i = match.end()
                continue

            match = _STRUCTURAL_RX.search(buffer, i)
            if match is None:
                i = size
                break

            token = match.group()
            i = match.end()

            if token == b'"':
                self.in_string = True
            elif token in (b"{", b"["):
                self.depth += 1
            else:
                self.depth -= 1
                if self.depth == 0:
                    self.position = i
                    return i

        self.position = i
        return None



"""
    Return the index just past the first complete top-level JSON object in
    data, or None when more data is needed.
"""
def _find_document_end(data: typing.Union[bytes, bytearray]) -> typing.Optional[int]:
    return _DocumentScanner().scan(data)



class TransportHandler:

    """
        Wrap a connected stream socket.

        @param connection: Any object with sendall(bytes), recv(int), and close().
        @param max_message_bytes (int): Upper bound for one buffered response.
    """
    def __init__(self, connection: typing.Any, max_message_bytes: int = CONSTANTS._MAX_MESSAGE_BYTES) -> None:

        if connection is None or not all(hasattr(connection, name) for name in ("sendall", "recv", "close")):
            raise KeePassXCError(ClientCodes.INVALID_TYPE, "TransportHandler requires a connected stream socket", "connection")

        self._connection = connection
        self._max_message_bytes = max_message_bytes
        self._buffer = bytearray()
        self._scanner = _DocumentScanner()
        self._closed = False


    """
        Connect to the first KeePassXC socket that accepts a connection.

        @param socket_paths (list[str]): Candidate socket paths tried in order.
        @param timeout (float | None): Optional socket timeout in seconds.
        @return TransportHandler: Connected transport.
        @ensures Raises TransportError carrying the last connection error if none accepts.
    """
    @classmethod
    def connect(cls, socket_paths: typing.Sequence[str], timeout: typing.Optional[float] = None) -> "TransportHandler":

        if not socket_paths:
            raise TransportError(ClientCodes.TRANSPORT_ERROR, "No KeePassXC socket path to connect to", "socket")

        last_error: typing.Optional[OSError] = None

        for path in socket_paths:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.settimeout(timeout)
                sock.connect(path)
                return cls(sock)
            except OSError as e:
                sock.close()
                last_error = e

        raise TransportError(ClientCodes.TRANSPORT_ERROR, f"Cannot connect to KeePassXC at {socket_paths[-1]}: {last_error}", "socket") from last_error


    """
        Candidate socket paths under $XDG_RUNTIME_DIR, in the order KeePassXC
        versions have used them.
    """
    @staticmethod
    def default_socket_paths(environ: typing.Optional[typing.Mapping[str, str]] = None) -> typing.List[str]:
        environ = os.environ if environ is None else environ

        runtime_dir = environ.get("XDG_RUNTIME_DIR", "")
        if not runtime_dir:
            runtime_dir = os.path.join("/run/user", str(os.getuid()))

        return [os.path.join(runtime_dir, name) for name in CONSTANTS._SOCKET_NAMES]


    ################################################################################################
    # Send / receive
    ################################################################################################

    """
        Serialize and write one request envelope.

        @param document (dict): JSON-serializable envelope.
    """
    def send_document(self, document: dict) -> None:

        if self._closed:
            raise TransportError(ClientCodes.TRANSPORT_CLOSED, "Transport is closed", "connection")

        payload = VALIDATION.encode_dict_to_json_bytes(document)

        try:
            self._connection.sendall(payload)
        except OSError as e:
            raise TransportError(ClientCodes.TRANSPORT_ERROR, f"Failed to write to KeePassXC: {e}", "connection") from e


    """
        Read one response envelope.

        @return dict: The decoded JSON object.
        @ensures Bytes after the object stay buffered for the next call.
    """
    def receive_document(self) -> dict:

        if self._closed:
            raise TransportError(ClientCodes.TRANSPORT_CLOSED, "Transport is closed", "connection")

        while True:
            document = self._take_buffered_document()
            if document is not None:
                return document

            if len(self._buffer) > self._max_message_bytes:
                raise MalformedResponseError(ClientCodes.MESSAGE_TOO_LARGE, "Response exceeds maximum message size", "response")

            try:
                chunk = self._connection.recv(CONSTANTS._RECV_CHUNK_BYTES)
            except OSError as e:
                raise TransportError(ClientCodes.TRANSPORT_ERROR, f"Failed to read from KeePassXC: {e}", "connection") from e

            if not chunk:
                if self._buffer.strip():
                    raise MalformedResponseError(ClientCodes.MALFORMED_JSON, "Connection closed in the middle of a response", "response")
                raise TransportError(ClientCodes.TRANSPORT_CLOSED, "KeePassXC closed the connection", "connection")

            self._buffer += chunk


    """
        Write a request and read its response.
    """
    def exchange(self, document: dict) -> dict:
        self.send_document(document)
        return self.receive_document()


    def _take_buffered_document(self) -> typing.Optional[dict]:

        end = self._scanner.scan(self._buffer)

        if end is None:
            # Only blank bytes so far
            if not self._scanner.started:
                del self._buffer[:]
                self._scanner.reset()
            return None

        raw_document = bytes(self._buffer[:end])
        del self._buffer[:end]
        self._scanner.reset()

        return VALIDATION.decode_json_bytes_to_dict(raw_document)


    ################################################################################################
    # Lifecycle
    ################################################################################################

    @property
    def closed(self) -> bool:
        return self._closed


    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        try:
            self._connection.close()
        except OSError:
            pass


    def __enter__(self) -> "TransportHandler":
        return self


    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
