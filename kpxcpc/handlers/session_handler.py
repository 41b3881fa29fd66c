#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: session_handler.py

    Description:
        Holds all crypto and identity state of one connection to KeePassXC:
        the ephemeral X25519 key pair, the per-connection client ID, the
        nonce cursor, the peer's public key once the keys are exchanged, the
        association identity, and the handshake state.

        A session belongs to exactly one connection and allows one operation
        in flight at a time. Concurrent use from another thread raises
        instead of interleaving on the nonce cursor.
"""


import contextlib
import threading
import typing
from dataclasses import dataclass
from kpxcpc.handlers.error_handler import KeePassXCError, ClientCodes
from kpxcpc.encryption.box_manager import BoxManager, KeyPair
from kpxcpc.encryption.nonce_manager import NonceManager
from kpxcpc.encryption.identity_manager import Identity, IdentityManager
import kpxcpc.constants as CONSTANTS

####################################################################################################
# Client Session Data Object
####################################################################################################

"""
    Represents all client-side state for a single connection. Never written to disk.

    keypair          : Ephemeral X25519 key pair generated for this connection
    client_id        : 24 random bytes identifying this connection to KeePassXC
    nonce            : Nonce cursor (last nonce sent or seen)
    peer_public_key  : KeePassXC's public key, None until change-public-keys succeeds
    identity         : Association identity (identifier may be "")
    handshake_state  : "start", "keys_exchanged", or "associated"
"""
@dataclass
class ClientSessionDataObject:

    keypair: KeyPair
    client_id: bytes
    nonce: bytes
    identity: Identity
    peer_public_key: typing.Optional[bytes] = None
    handshake_state: str = CONSTANTS._HANDSHAKE_STATE_START


####################################################################################################
# SESSION
####################################################################################################

class ClientSessionHandler:

    """
        Create the state for a new connection.

        @param identity (Identity): Stored identity, or None to generate a fresh one.
        @ensures A new key pair, client ID, and random initial nonce are generated.
    """
    def __init__(self, identity: typing.Optional[Identity] = None) -> None:

        if identity is None:
            identity = IdentityManager.generate_identity()

        if not isinstance(identity, Identity):
            raise KeePassXCError(ClientCodes.INVALID_IDENTITY, "ClientSessionHandler requires an Identity", "identity")

        # Re-entrant: the handshake runs actions while holding it
        self._lock = threading.RLock()

        self._session = ClientSessionDataObject(
            keypair=BoxManager.generate_keypair(),
            client_id=NonceManager.generate_nonce(),
            nonce=NonceManager.generate_nonce(),
            identity=identity,
        )


    @classmethod
    def new_session(cls, identity: typing.Optional[Identity] = None) -> "ClientSessionHandler":
        return cls(identity)


    ################################################################################################
    # Read-only accessors
    ################################################################################################

    """
        Snapshot of the association identity.
    """
    def association_data(self) -> Identity:
        return self._session.identity

    @property
    def public_key(self) -> bytes:
        return self._session.keypair.public

    @property
    def client_id(self) -> bytes:
        return self._session.client_id

    @property
    def handshake_state(self) -> str:
        return self._session.handshake_state

    @property
    def keys_exchanged(self) -> bool:
        return self._session.peer_public_key is not None

    @property
    def current_nonce(self) -> bytes:
        return self._session.nonce


    ################################################################################################
    # Single-flight guard
    ################################################################################################

    """
        Hold the session for one logical operation.

        @ensures Raises SESSION_ERROR if another thread is already using this session.
    """
    @contextlib.contextmanager
    def in_flight(self) -> typing.Iterator[None]:

        if not self._lock.acquire(blocking=False):
            raise KeePassXCError(ClientCodes.SESSION_ERROR, "Session already has an operation in flight", "session")

        try:
            yield
        finally:
            self._lock.release()


    ################################################################################################
    # Nonce cursor
    ################################################################################################

    """
        Advance the cursor by one and return the nonce for the next request.
    """
    def next_nonce(self) -> bytes:
        self._session.nonce = NonceManager.increment_nonce(self._session.nonce)
        return self._session.nonce


    """
        Replace the cursor with a fresh random nonce (used by change-public-keys,
        where there is no shared cursor yet).
    """
    def fresh_nonce(self) -> bytes:
        self._session.nonce = NonceManager.generate_nonce()
        return self._session.nonce


    """
        Record the nonce KeePassXC sent back; it is authoritative from here on.

        @param nonce (bytes): 24-byte nonce from the response envelope.
    """
    def observe_nonce(self, nonce: bytes) -> None:
        if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != CONSTANTS._NONCE_LEN_BYTES:
            raise KeePassXCError(ClientCodes.INVALID_NONCE, "Response nonce must be 24 bytes", "nonce")

        self._session.nonce = bytes(nonce)


    ################################################################################################
    # Key exchange and association updates
    ################################################################################################

    def set_peer_public_key(self, peer_public_key: bytes) -> None:
        self._session.peer_public_key = BoxManager.validate_public_key(peer_public_key, "publicKey")
        self._session.handshake_state = CONSTANTS._HANDSHAKE_STATE_KEYS_EXCHANGED


    """
        Store the identifier KeePassXC assigned on association. The identity
        key itself never changes.
    """
    def set_identifier(self, identifier: str) -> Identity:
        if not isinstance(identifier, str) or not identifier:
            raise KeePassXCError(ClientCodes.INVALID_IDENTITY, "Association identifier must be a non-empty string", "id")

        self._session.identity = self._session.identity.with_identifier(identifier)
        return self._session.identity


    def set_handshake_state(self, new_state: str) -> None:
        if new_state not in CONSTANTS._ALLOWED_HANDSHAKE_STATES:
            raise KeePassXCError(ClientCodes.HANDSHAKE_STATE_INVALID, f"Invalid handshake state '{new_state}'", "handshake_state")

        self._session.handshake_state = new_state


    ################################################################################################
    # Envelope helpers
    ################################################################################################

    def _require_peer_public_key(self) -> bytes:
        if self._session.peer_public_key is None:
            raise KeePassXCError(ClientCodes.HANDSHAKE_STATE_INVALID, "Public keys have not been exchanged", "publicKey")

        return self._session.peer_public_key


    def seal(self, plaintext: bytes, nonce: bytes) -> bytes:
        return BoxManager.seal(plaintext, nonce, self._require_peer_public_key(), self._session.keypair.private)


    def open(self, ciphertext: bytes, nonce: bytes) -> bytes:
        return BoxManager.open(ciphertext, nonce, self._require_peer_public_key(), self._session.keypair.private)
