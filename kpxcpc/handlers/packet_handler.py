#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: packet_handler.py

    Description:
        Provides envelope construction and validation for the KeePassXC
        browser protocol. Builds the plaintext change-public-keys request,
        the encrypted request envelope, and the inner action messages
        (associate, test-associate, get-logins, get-totp). Parses response
        envelopes into a typed ResponseEnvelope, decoding base64 fields,
        KeePassXC's string-encoded integers and booleans, and turning error
        fields into ProtocolError.
"""


import typing
from dataclasses import dataclass
from kpxcpc.handlers.error_handler import KeePassXCError, MalformedResponseError, ClientCodes, protocol_error
from kpxcpc.encryption.identity_manager import Identity
import kpxcpc.handlers.sanitization_validation as VALIDATION
import kpxcpc.constants as CONSTANTS



"""
    Decoded response envelope. Every field is optional on the wire.

    message     : Ciphertext bytes of an encrypted response
    nonce       : 24-byte nonce chosen by KeePassXC
    public_key  : KeePassXC public key (change-public-keys only)
    error       : Error text sent by KeePassXC
    error_code  : Numeric error code
    success     : "success" flag
    version     : KeePassXC version string
    hash        : Database hash
    id          : Association identifier (plaintext copy some versions send)
"""
@dataclass(frozen=True)
class ResponseEnvelope:

    action: typing.Optional[str] = None
    message: typing.Optional[bytes] = None
    nonce: typing.Optional[bytes] = None
    public_key: typing.Optional[bytes] = None
    error: typing.Optional[str] = None
    error_code: typing.Optional[int] = None
    success: typing.Optional[bool] = None
    version: typing.Optional[str] = None
    hash: typing.Optional[str] = None
    id: typing.Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None or self.error_code is not None



####################################################################################################
#                                         Packet Format Handlers
####################################################################################################

"""
    Builds request packets for KeePassXC and validates the packets it sends
    back. Each request is returned as a dictionary ready for serialization.
"""
class PacketHandler:

    ################################################################################################
    #                                     GENERIC VALIDATION WRAPPERS
    ################################################################################################

    def _validate_action(self, value: str):
        VALIDATION.validate_string(value, ClientCodes.INVALID_ACTION, "action")
        VALIDATION.validate_in_set(value, CONSTANTS._ALLOWED_ACTIONS, ClientCodes.INVALID_ACTION, "action")

    def _validate_client_id(self, value: bytes):
        VALIDATION.validate_byte_length(value, CONSTANTS._CLIENT_ID_LEN_BYTES, ClientCodes.INVALID_LENGTH, "clientID")

    def _validate_nonce(self, value: bytes):
        VALIDATION.validate_byte_length(value, CONSTANTS._NONCE_LEN_BYTES, ClientCodes.INVALID_NONCE, "nonce")

    def _validate_public_key(self, value: bytes):
        VALIDATION.validate_byte_length(value, CONSTANTS._KEY_LEN_BYTES, ClientCodes.INVALID_PUBLIC_KEY, "publicKey")

    def _validate_identity(self, identity: Identity):
        if not isinstance(identity, Identity):
            raise KeePassXCError(ClientCodes.INVALID_IDENTITY, "An Identity is required", "identity")
        VALIDATION.validate_byte_length(identity.identity_key, CONSTANTS._IDENTITY_KEY_LEN_BYTES, ClientCodes.INVALID_IDENTITY, "idKey")


    ################################################################################################
    #                                   CLIENT REQUEST ENVELOPES
    ################################################################################################

    """
        Build the plaintext change-public-keys request.

        @param client_id (bytes): 24-byte client ID.
        @param nonce (bytes): Fresh random 24-byte nonce.
        @param public_key (bytes): Our 32-byte public key.
        @return dict: Request envelope.
    """
    def create_change_public_keys_request(self, client_id: bytes, nonce: bytes, public_key: bytes) -> dict:

        self._validate_client_id(client_id)
        self._validate_nonce(nonce)
        self._validate_public_key(public_key)

        return {
            "action": CONSTANTS.ACTION_CHANGE_PUBLIC_KEYS,
            "publicKey": VALIDATION.encode_bytes_to_base64(public_key),
            "nonce": VALIDATION.encode_bytes_to_base64(nonce),
            "clientID": VALIDATION.encode_bytes_to_base64(client_id),
        }


    """
        Build an encrypted request envelope.

        @param action (str): One of the encrypted actions.
        @param client_id (bytes): 24-byte client ID.
        @param nonce (bytes): Nonce the message was sealed with.
        @param ciphertext (bytes): Sealed inner message.
        @param trigger_unlock (bool): Ask KeePassXC to show its unlock dialog.
        @return dict: Request envelope.
    """
    def create_encrypted_request(self, action: str, client_id: bytes, nonce: bytes, ciphertext: bytes, trigger_unlock: bool) -> dict:

        self._validate_action(action)
        self._validate_client_id(client_id)
        self._validate_nonce(nonce)

        if not isinstance(ciphertext, (bytes, bytearray)):
            raise KeePassXCError(ClientCodes.INVALID_CIPHERTEXT, "Ciphertext must be bytes", "message")

        packet = {
            "action": action,
            "message": VALIDATION.encode_bytes_to_base64(ciphertext),
            "nonce": VALIDATION.encode_bytes_to_base64(nonce),
            "clientID": VALIDATION.encode_bytes_to_base64(client_id),
        }

        # KeePassXC expects the flag as a string and treats absence as false
        if trigger_unlock:
            packet["triggerUnlock"] = VALIDATION.encode_bool(True)

        return packet


    ################################################################################################
    #                                   INNER ACTION MESSAGES
    ################################################################################################

    def create_associate_message(self, public_key: bytes, identity: Identity) -> dict:
        self._validate_public_key(public_key)
        self._validate_identity(identity)

        return {
            "action": CONSTANTS.ACTION_ASSOCIATE,
            "key": VALIDATION.encode_bytes_to_base64(public_key),
            "idKey": VALIDATION.encode_bytes_to_base64(identity.identity_key),
        }


    def create_test_associate_message(self, identity: Identity) -> dict:
        self._validate_identity(identity)

        return {
            "action": CONSTANTS.ACTION_TEST_ASSOCIATE,
            "id": identity.identifier,
            "key": VALIDATION.encode_bytes_to_base64(identity.identity_key),
        }


    """
        Build a get-logins message. The identity is sent as a one-element key list.
    """
    def create_get_logins_message(self, url: str, identity: Identity, submit_url: typing.Optional[str] = None, http_auth: typing.Optional[str] = None) -> dict:
        VALIDATION.validate_string(url, ClientCodes.INVALID_TYPE, "url")
        self._validate_identity(identity)

        message = {
            "action": CONSTANTS.ACTION_GET_LOGINS,
            "url": url,
            "keys": [{
                "id": identity.identifier,
                "key": VALIDATION.encode_bytes_to_base64(identity.identity_key),
            }],
        }

        if submit_url:
            message["submitUrl"] = submit_url
        if http_auth:
            message["httpAuth"] = http_auth

        return message


    def create_get_totp_message(self, uuid: str) -> dict:
        VALIDATION.validate_string(uuid, ClientCodes.INVALID_TYPE, "uuid")

        return {
            "action": CONSTANTS.ACTION_GET_TOTP,
            "uuid": uuid,
        }


    ################################################################################################
    #                                   RESPONSE ENVELOPES
    ################################################################################################

    """
        Decode a raw response dictionary.

        @param packet (dict): JSON object read from the socket.
        @return ResponseEnvelope: Typed envelope; absent fields are None.
        @ensures Raises MalformedResponseError for wrongly typed or badly encoded fields.
    """
    def parse_response(self, packet: typing.Any) -> ResponseEnvelope:

        if not isinstance(packet, dict):
            raise MalformedResponseError(ClientCodes.MALFORMED_JSON, "Response must be a JSON object", "response")

        def optional_bytes(name: str) -> typing.Optional[bytes]:
            value = packet.get(name)
            if value is None:
                return None
            return VALIDATION.decode_base64_to_bytes(name, value, MalformedResponseError)

        def optional_text(name: str) -> typing.Optional[str]:
            value = packet.get(name)
            if value is None:
                return None
            if not isinstance(value, str):
                raise MalformedResponseError(ClientCodes.INVALID_TYPE, f"{name} must be a string", name)
            return value

        return ResponseEnvelope(
            action=optional_text("action"),
            message=optional_bytes("message"),
            nonce=optional_bytes("nonce"),
            public_key=optional_bytes("publicKey"),
            error=optional_text("error"),
            error_code=VALIDATION.coerce_to_int(packet.get("errorCode"), "errorCode"),
            success=VALIDATION.coerce_to_bool(packet.get("success"), "success"),
            version=optional_text("version"),
            hash=optional_text("hash"),
            id=optional_text("id"),
        )


    """
        Raise the ProtocolError an error envelope describes.

        @param envelope (ResponseEnvelope): Parsed response.
        @ensures Returns normally only when the envelope carries no error.
    """
    def check_protocol_error(self, envelope: ResponseEnvelope) -> None:
        if envelope.is_error:
            raise protocol_error(envelope.error or "", envelope.error_code)


    """
        Validate a successful change-public-keys response.
    """
    def validate_change_public_keys_response(self, envelope: ResponseEnvelope) -> None:

        if envelope.public_key is None:
            raise MalformedResponseError(ClientCodes.MISSING_FIELDS, "Missing required field 'publicKey' in change-public-keys response.", "publicKey")
        if envelope.nonce is None:
            raise MalformedResponseError(ClientCodes.MISSING_FIELDS, "Missing required field 'nonce' in change-public-keys response.", "nonce")

        VALIDATION.validate_byte_length(envelope.public_key, CONSTANTS._KEY_LEN_BYTES, ClientCodes.INVALID_PUBLIC_KEY, "publicKey", MalformedResponseError)
        VALIDATION.validate_byte_length(envelope.nonce, CONSTANTS._NONCE_LEN_BYTES, ClientCodes.INVALID_NONCE, "nonce", MalformedResponseError)


    """
        Validate a successful encrypted response.
    """
    def validate_encrypted_response(self, envelope: ResponseEnvelope) -> None:

        if envelope.message is None:
            raise MalformedResponseError(ClientCodes.MISSING_FIELDS, "Missing required field 'message' in encrypted response.", "message")
        if envelope.nonce is None:
            raise MalformedResponseError(ClientCodes.MISSING_FIELDS, "Missing required field 'nonce' in encrypted response.", "nonce")

        VALIDATION.validate_byte_length(envelope.nonce, CONSTANTS._NONCE_LEN_BYTES, ClientCodes.INVALID_NONCE, "nonce", MalformedResponseError)
