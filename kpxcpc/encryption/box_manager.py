#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: box_manager.py

    Description:
        Implements the authenticated public-key envelope used by KeePassXC's
        browser protocol: NaCl crypto_box (X25519 + XSalsa20-Poly1305).
        Ephemeral X25519 key pairs are generated with the cryptography
        package; sealing and opening go through PyNaCl. Any tampering with
        the ciphertext, nonce, or keys makes open() raise
        AuthenticationFailure instead of returning corrupted plaintext.
"""


import typing
from dataclasses import dataclass
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey
from kpxcpc.handlers.error_handler import KeePassXCError, AuthenticationFailure, ClientCodes
import kpxcpc.constants as CONSTANTS



"""
    Raw X25519 key pair. Never persisted.

    public  : 32-byte public key sent to KeePassXC
    private : 32-byte private key
"""
@dataclass(frozen=True)
class KeyPair:

    public: bytes
    private: bytes

    def __repr__(self) -> str:
        return f"KeyPair(public={self.public.hex()}, private=<redacted>)"



class BoxManager:

    """
        Generate a fresh X25519 key pair.

        @return KeyPair: Raw 32-byte public and private keys.
        @ensures The public key corresponds to the private key under X25519.
    """
    @staticmethod
    def generate_keypair() -> KeyPair:

        try:
            private_key = X25519PrivateKey.generate()

            private_raw = private_key.private_bytes(encoding=serialization.Encoding.Raw, format=serialization.PrivateFormat.Raw, encryption_algorithm=serialization.NoEncryption())
            public_raw = private_key.public_key().public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)

            return KeyPair(public=public_raw, private=private_raw)

        except Exception as e:
            raise KeePassXCError(ClientCodes.KEY_GENERATION_ERROR, "Failed to generate X25519 key pair", "keypair") from e



    """
        Check that raw bytes form a usable X25519 public key.

        @param raw (bytes): Candidate public key.
        @param field_name (str): Field name used in error messages.
        @return bytes: The validated key as immutable bytes.
    """
    @staticmethod
    def validate_public_key(raw: typing.Any, field_name: str = "publicKey", error_class: type = KeePassXCError) -> bytes:

        if not isinstance(raw, (bytes, bytearray)) or len(raw) != CONSTANTS._KEY_LEN_BYTES:
            raise error_class(ClientCodes.INVALID_PUBLIC_KEY, "Public key must be 32 bytes", field_name)

        try:
            X25519PublicKey.from_public_bytes(bytes(raw))
        except ValueError as e:
            raise error_class(ClientCodes.INVALID_PUBLIC_KEY, "Invalid X25519 public key", field_name) from e

        return bytes(raw)



    """
        Build a crypto_box from raw keys after validating them.
    """
    @staticmethod
    def _box(peer_public_key: bytes, own_private_key: bytes) -> Box:

        BoxManager.validate_public_key(peer_public_key, "peer_public_key")

        if not isinstance(own_private_key, (bytes, bytearray)) or len(own_private_key) != CONSTANTS._KEY_LEN_BYTES:
            raise KeePassXCError(ClientCodes.INVALID_PRIVATE_KEY, "Private key must be 32 bytes", "own_private_key")

        return Box(PrivateKey(bytes(own_private_key)), PublicKey(bytes(peer_public_key)))



    """
        Encrypt and authenticate plaintext for the peer.

        @param plaintext (bytes): Message bytes (may be empty).
        @param nonce (bytes): 24-byte nonce; must never be reused with the same keys.
        @param peer_public_key (bytes): Peer's 32-byte public key.
        @param own_private_key (bytes): Our 32-byte private key.
        @return bytes: Ciphertext including the 16-byte Poly1305 tag (nonce not prepended).
    """
    @staticmethod
    def seal(plaintext: bytes, nonce: bytes, peer_public_key: bytes, own_private_key: bytes) -> bytes:

        try:
            # Validate plaintext
            if not isinstance(plaintext, (bytes, bytearray)):
                raise KeePassXCError(ClientCodes.INVALID_TYPE, "Plaintext must be bytes", "plaintext")

            # Validate nonce
            if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != CONSTANTS._NONCE_LEN_BYTES:
                raise KeePassXCError(ClientCodes.INVALID_NONCE, "Nonce must be 24 bytes", "nonce")

            box = BoxManager._box(peer_public_key, own_private_key)

            return box.encrypt(bytes(plaintext), bytes(nonce)).ciphertext

        except KeePassXCError:
            raise
        except Exception as e:
            raise KeePassXCError(ClientCodes.ENCRYPTION_ERROR, "crypto_box encryption failed", "message") from e



    """
        Decrypt and authenticate a ciphertext from the peer.

        @param ciphertext (bytes): Ciphertext with tag, as produced by seal().
        @param nonce (bytes): 24-byte nonce the sender used.
        @param peer_public_key (bytes): Sender's 32-byte public key.
        @param own_private_key (bytes): Our 32-byte private key.
        @return bytes: The plaintext.
        @ensures Raises AuthenticationFailure when the message does not authenticate.
    """
    @staticmethod
    def open(ciphertext: bytes, nonce: bytes, peer_public_key: bytes, own_private_key: bytes) -> bytes:

        try:
            # Validate ciphertext
            if not isinstance(ciphertext, (bytes, bytearray)):
                raise KeePassXCError(ClientCodes.INVALID_CIPHERTEXT, "Ciphertext must be bytes", "message")

            # Validate nonce
            if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != CONSTANTS._NONCE_LEN_BYTES:
                raise KeePassXCError(ClientCodes.INVALID_NONCE, "Nonce must be 24 bytes", "nonce")

            # Too short to hold a tag: cannot authenticate
            if len(ciphertext) < CONSTANTS._BOX_MAC_LEN_BYTES:
                raise AuthenticationFailure("Ciphertext shorter than authentication tag")

            box = BoxManager._box(peer_public_key, own_private_key)

            return box.decrypt(bytes(ciphertext), bytes(nonce))

        except KeePassXCError:
            raise
        except CryptoError as e:
            raise AuthenticationFailure() from e
