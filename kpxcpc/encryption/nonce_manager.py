#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: nonce_manager.py

    Description:
        Provides nonce generation and sequencing for the crypto_box envelope.
        KeePassXC and the client never send independent random nonces after
        the key exchange; each side derives the next nonce from the last one
        seen by treating the 24 bytes as a little-endian counter and adding
        one. Both sides must agree bit-for-bit or every later message fails
        to open.
"""


import os
from kpxcpc.handlers.error_handler import KeePassXCError, ClientCodes
import kpxcpc.constants as CONSTANTS



class NonceManager:

    """
        Generate a fresh 24-byte random nonce.

        @return bytes: 24 bytes from the OS CSPRNG.
    """
    @staticmethod
    def generate_nonce() -> bytes:
        return os.urandom(CONSTANTS._NONCE_LEN_BYTES)



    """
        Return the nonce that follows `nonce`.

        Byte 0 is the least significant byte. The carry moves to the next
        byte only when a byte overflows past 0xff; ff..ff wraps to 00..00.

        @param nonce (bytes): 24-byte nonce.
        @require isinstance(nonce, (bytes, bytearray)) and len(nonce) == 24
        @return bytes: A new 24-byte nonce; the input is not modified.
    """
    @staticmethod
    def increment_nonce(nonce: bytes) -> bytes:

        # Validate nonce
        if not isinstance(nonce, (bytes, bytearray)):
            raise KeePassXCError(ClientCodes.INVALID_NONCE, "Nonce must be bytes", "nonce")

        if len(nonce) != CONSTANTS._NONCE_LEN_BYTES:
            raise KeePassXCError(ClientCodes.INVALID_NONCE, "Nonce must be 24 bytes", "nonce")

        out = bytearray(len(nonce))
        carry = 1
        for i, b in enumerate(nonce):
            carry += b
            out[i] = carry & 0xFF
            carry >>= 8

        return bytes(out)
