#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: testSupport.py

    Description:
        An in-process stand-in for the KeePassXC browser server, used by the
        test suites. It speaks the same envelopes as KeePassXC: it answers
        change-public-keys in plaintext, opens sealed requests with the key
        registered for the sender's clientID, replies under the request nonce
        plus one, and reports failures through "error"/"errorCode".

        Failure modes are driven by counters (locked database, undecryptable
        requests, corrupted responses) so tests can script retry paths.
"""


import json
import threading
import typing
from kpxcpc.encryption.box_manager import BoxManager
from kpxcpc.encryption.nonce_manager import NonceManager
from kpxcpc.handlers.error_handler import KeePassXCError, TransportError, ProtocolCodes, ClientCodes
from kpxcpc.handlers.transport_handler import TransportHandler
import kpxcpc.handlers.sanitization_validation as VALIDATION
import kpxcpc.constants as CONSTANTS



_PEER_VERSION = "2.7.6"
_PEER_HASH = "29234e32274a32276e25666a42"

# Actions refused while the database is locked
_LOCKABLE_ACTIONS = {
    CONSTANTS.ACTION_TEST_ASSOCIATE,
    CONSTANTS.ACTION_GET_LOGINS,
    CONSTANTS.ACTION_GET_TOTP,
}



class PeerSimulator:

    """
        @param entries (dict): url -> list of login entry dicts (KeePassXC wire shape).
        @param totp (dict): uuid -> TOTP code.
        @param associations (dict): identifier -> 24-byte identity key already paired.
        @param associate_id (str): Identifier handed out by associate.
        @param locked_responses (int): Lockable requests answered with DatabaseNotOpened.
        @param cannot_decrypt_failures (int): test-associate requests answered with CannotDecryptMessage.
        @param corrupt_responses (int): Sealed responses sent with a flipped ciphertext byte.
        @param deny_association (bool): Answer associate with ActionCancelledOrDenied.
    """
    def __init__(
        self,
        entries: typing.Optional[typing.Dict[str, typing.List[dict]]] = None,
        totp: typing.Optional[typing.Dict[str, str]] = None,
        associations: typing.Optional[typing.Dict[str, bytes]] = None,
        associate_id: str = "kpxcpc-test",
        locked_responses: int = 0,
        cannot_decrypt_failures: int = 0,
        corrupt_responses: int = 0,
        deny_association: bool = False,
    ) -> None:

        self.keypair = BoxManager.generate_keypair()
        self.entries = dict(entries or {})
        self.totp = dict(totp or {})
        self.associations = dict(associations or {})
        self.associate_id = associate_id
        self.locked_responses = locked_responses
        self.cannot_decrypt_failures = cannot_decrypt_failures
        self.corrupt_responses = corrupt_responses
        self.deny_association = deny_association

        # Everything the client sent, in order
        self.requests: typing.List[dict] = []
        self.messages: typing.List[dict] = []

        self._client_keys: typing.Dict[str, bytes] = {}


    @property
    def actions(self) -> typing.List[str]:
        return [r.get("action") for r in self.requests]


    def count(self, action: str) -> int:
        return self.actions.count(action)


    def trigger_unlock_flags(self, action: str) -> typing.List[typing.Optional[str]]:
        return [r.get("triggerUnlock") for r in self.requests if r.get("action") == action]


    ################################################################################################
    # Request handling
    ################################################################################################

    """
        Answer one request envelope.

        @param request (dict): Envelope as decoded from the socket.
        @return dict: Response envelope.
    """
    def handle(self, request: dict) -> dict:

        self.requests.append(request)
        action = request.get("action", "")

        if action == CONSTANTS.ACTION_CHANGE_PUBLIC_KEYS:
            return self._change_public_keys(request)

        if action not in CONSTANTS._ALLOWED_ACTIONS:
            return self._error(action, ProtocolCodes.INCORRECT_ACTION)

        client_public_key = self._client_keys.get(request.get("clientID", ""))
        if client_public_key is None:
            return self._error(action, ProtocolCodes.CLIENT_PUBLIC_KEY_NOT_RECEIVED)

        if not request.get("message"):
            return self._error(action, ProtocolCodes.EMPTY_MESSAGE_RECEIVED)

        if action == CONSTANTS.ACTION_TEST_ASSOCIATE and self.cannot_decrypt_failures > 0:
            self.cannot_decrypt_failures -= 1
            return self._error(action, ProtocolCodes.CANNOT_DECRYPT_MESSAGE)

        try:
            request_nonce = VALIDATION.decode_base64_to_bytes("nonce", request.get("nonce"))
            ciphertext = VALIDATION.decode_base64_to_bytes("message", request.get("message"))
            message = json.loads(BoxManager.open(ciphertext, request_nonce, client_public_key, self.keypair.private).decode("utf-8"))
        except (KeePassXCError, ValueError):
            return self._error(action, ProtocolCodes.CANNOT_DECRYPT_MESSAGE)

        self.messages.append(message)

        if action in _LOCKABLE_ACTIONS and self.locked_responses > 0:
            self.locked_responses -= 1
            return self._error(action, ProtocolCodes.DATABASE_NOT_OPENED)

        if action == CONSTANTS.ACTION_ASSOCIATE:
            result = self._associate(message)
        elif action == CONSTANTS.ACTION_TEST_ASSOCIATE:
            result = self._test_associate(message)
        elif action == CONSTANTS.ACTION_GET_LOGINS:
            result = self._get_logins(message)
        else:
            result = self._get_totp(message)

        if isinstance(result, ProtocolCodes):
            return self._error(action, result)

        return self._seal(action, result, request_nonce, client_public_key)


    def _change_public_keys(self, request: dict) -> dict:

        action = CONSTANTS.ACTION_CHANGE_PUBLIC_KEYS
        try:
            client_public_key = VALIDATION.decode_fixed_length("publicKey", request.get("publicKey"), CONSTANTS._KEY_LEN_BYTES, ClientCodes.INVALID_PUBLIC_KEY)
            request_nonce = VALIDATION.decode_fixed_length("nonce", request.get("nonce"), CONSTANTS._NONCE_LEN_BYTES, ClientCodes.INVALID_NONCE)
        except KeePassXCError:
            return self._error(action, ProtocolCodes.CLIENT_PUBLIC_KEY_NOT_RECEIVED)

        self._client_keys[request.get("clientID", "")] = client_public_key

        return {
            "action": action,
            "version": _PEER_VERSION,
            "publicKey": VALIDATION.encode_bytes_to_base64(self.keypair.public),
            "nonce": VALIDATION.encode_bytes_to_base64(NonceManager.increment_nonce(request_nonce)),
            "success": "true",
        }


    def _associate(self, message: dict) -> typing.Union[dict, ProtocolCodes]:
        if self.deny_association:
            return ProtocolCodes.ACTION_CANCELLED_OR_DENIED

        try:
            identity_key = VALIDATION.decode_fixed_length("idKey", message.get("idKey"), CONSTANTS._IDENTITY_KEY_LEN_BYTES, ClientCodes.INVALID_IDENTITY)
        except KeePassXCError:
            return ProtocolCodes.ASSOCIATION_FAILED

        self.associations[self.associate_id] = identity_key
        return {"id": self.associate_id, "hash": _PEER_HASH}


    def _is_associated(self, identifier: typing.Any, key: typing.Any) -> bool:
        stored = self.associations.get(identifier) if isinstance(identifier, str) else None
        return stored is not None and key == VALIDATION.encode_bytes_to_base64(stored)


    def _test_associate(self, message: dict) -> typing.Union[dict, ProtocolCodes]:
        if not self._is_associated(message.get("id"), message.get("key")):
            return ProtocolCodes.ASSOCIATION_FAILED

        return {"id": message.get("id"), "hash": _PEER_HASH}


    def _get_logins(self, message: dict) -> typing.Union[dict, ProtocolCodes]:
        if not message.get("url"):
            return ProtocolCodes.NO_URL_PROVIDED

        keys = message.get("keys") or []
        if not any(isinstance(k, dict) and self._is_associated(k.get("id"), k.get("key")) for k in keys):
            return ProtocolCodes.ASSOCIATION_FAILED

        entries = self.entries.get(message["url"], [])
        if not entries:
            return ProtocolCodes.NO_LOGINS_FOUND

        return {"count": len(entries), "entries": entries, "hash": _PEER_HASH}


    def _get_totp(self, message: dict) -> dict:
        return {"totp": self.totp.get(message.get("uuid"), "")}


    ################################################################################################
    # Response envelopes
    ################################################################################################

    def _seal(self, action: str, result: dict, request_nonce: bytes, client_public_key: bytes) -> dict:

        response_nonce = NonceManager.increment_nonce(request_nonce)

        inner = dict(result)
        inner.update({
            "version": _PEER_VERSION,
            "nonce": VALIDATION.encode_bytes_to_base64(response_nonce),
            "success": "true",
        })

        sealed = BoxManager.seal(json.dumps(inner).encode("utf-8"), response_nonce, client_public_key, self.keypair.private)

        if self.corrupt_responses > 0:
            self.corrupt_responses -= 1
            sealed = bytes([sealed[0] ^ 0x01]) + sealed[1:]

        return {
            "action": action,
            "message": VALIDATION.encode_bytes_to_base64(sealed),
            "nonce": VALIDATION.encode_bytes_to_base64(response_nonce),
        }


    def _error(self, action: str, code: ProtocolCodes) -> dict:
        return {
            "action": action,
            "errorCode": str(int(code)),
            "error": code.name.replace("_", " ").lower(),
        }



"""
    A socket-like object wired straight to a PeerSimulator. Each sendall()
    carries one request; its response is queued for recv().

    @param chunk_size (int | None): Cap on bytes returned per recv(), to exercise split reads.
"""
class SimulatedConnection:

    def __init__(self, peer: PeerSimulator, chunk_size: typing.Optional[int] = None) -> None:
        self.peer = peer
        self.chunk_size = chunk_size
        self.closed = False
        self._outbound = b""


    def sendall(self, data: bytes) -> None:
        if self.closed:
            raise OSError("connection closed")

        response = self.peer.handle(json.loads(data.decode("utf-8")))
        self._outbound += json.dumps(response).encode("utf-8")


    def recv(self, size: int) -> bytes:
        if self.closed:
            raise OSError("connection closed")

        if self.chunk_size is not None:
            size = min(size, self.chunk_size)

        chunk, self._outbound = self._outbound[:size], self._outbound[size:]
        return chunk


    def close(self) -> None:
        self.closed = True



"""
    Serve a PeerSimulator on a real connected socket until the client hangs up.

    @return threading.Thread: The started daemon thread.
"""
def serve_in_thread(peer: PeerSimulator, sock: typing.Any) -> threading.Thread:

    def run() -> None:
        with TransportHandler(sock) as transport:
            while True:
                try:
                    request = transport.receive_document()
                    transport.send_document(peer.handle(request))
                except TransportError:
                    return

    thread = threading.Thread(target=run, name="kpxc-peer", daemon=True)
    thread.start()
    return thread
