#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: sanitization_validation.py

    Description:
        Provides the encoding, decoding, and type-conversion utilities used by
        the envelope and transport layers, together with reusable field-level
        validation helpers. Includes standard Base64 conversions (the encoding
        KeePassXC uses for keys, nonces, and ciphertext), JSON serialization
        helpers, KeePassXC's string-encoded integers and booleans, and strict
        byte-length checks for keys and nonces.

        Every helper raises KeePassXCError (or the subclass named by the
        caller) for malformed or non-conforming input.
"""

import base64
import binascii
import json
import typing

from kpxcpc.handlers.error_handler import KeePassXCError, MalformedResponseError, ClientCodes
import kpxcpc.constants as CONSTANTS


####################################################################################################
#                                   Base64 Encoding / Decoding
####################################################################################################

"""
    Convert a standard Base64 string into raw bytes.

    @param field_name (str): Logical field name for context in error messages.
    @param b64_text (Any): Base64-encoded string to decode.
    @param error_class (type): KeePassXCError subclass raised on failure.
    @return bytes: Decoded byte sequence.
    @ensures Invalid base64 input raises error_class with ClientCodes.INVALID_BASE64.
"""
def decode_base64_to_bytes(field_name: str, b64_text: typing.Any, error_class: type = KeePassXCError) -> bytes:
    try:
        # Validate input with generic validators
        if not isinstance(b64_text, str):
            raise error_class(ClientCodes.INVALID_TYPE, f"{field_name} must be a base64 string", field_name)

        validate_b64(b64_text, ClientCodes.INVALID_BASE64, field_name, error_class)

        return base64.b64decode(b64_text, validate=True)

    except KeePassXCError:
        raise
    except (binascii.Error, ValueError) as e:
        raise error_class(ClientCodes.INVALID_BASE64, f"Invalid base64 for {field_name}", field_name) from e



"""
    Convert raw bytes into a standard padded Base64 string.

    @param raw (bytes): Bytes to encode.
    @return str: Base64-encoded ASCII string.
"""
def encode_bytes_to_base64(raw: bytes) -> str:

    # Validate input type
    if not isinstance(raw, (bytes, bytearray)):
        raise KeePassXCError(ClientCodes.INVALID_TYPE, "base64 encode expects bytes", "raw")

    return base64.b64encode(bytes(raw)).decode("ascii")



"""
    Decode a base64 field and enforce its exact decoded length.

    @param field_name (str): Logical field name.
    @param b64_text (Any): Base64 text.
    @param length (int): Required number of decoded bytes.
    @param application_code (str): Code raised when the length is wrong.
    @param error_class (type): KeePassXCError subclass raised on failure.
    @return bytes: Decoded bytes of exactly `length` bytes.
"""
def decode_fixed_length(field_name: str, b64_text: typing.Any, length: int, application_code: str, error_class: type = KeePassXCError) -> bytes:

    try:
        raw = decode_base64_to_bytes(field_name, b64_text, error_class)
    except KeePassXCError as e:
        raise error_class(application_code, e.detail, field_name) from e

    validate_byte_length(raw, length, application_code, field_name, error_class)
    return raw



####################################################################################################
#                                   JSON Conversions
####################################################################################################

"""
    Encode a dictionary into compact UTF-8 JSON bytes.

    @param data (dict): JSON-serializable dictionary.
    @return bytes: UTF-8 encoded JSON payload.
    @ensures Raises KeePassXCError on non-serializable or malformed input.
"""
def encode_dict_to_json_bytes(data: typing.Dict[str, typing.Any]) -> bytes:
    try:
        # Validate input type
        if not isinstance(data, dict):
            raise KeePassXCError(ClientCodes.INVALID_TYPE, "Input must be dict", "data")

        # Serialize to JSON and encode to bytes
        return json.dumps(data, separators=(",", ":")).encode("utf-8")

    except KeePassXCError:
        raise
    except (TypeError, ValueError) as e:
        raise KeePassXCError(ClientCodes.MALFORMED_JSON, "Failed to serialize JSON payload", "data") from e



"""
    Convert UTF-8 JSON bytes into a Python dictionary.

    @param json_bytes (bytes): Raw JSON bytes.
    @return dict: Parsed JSON object.
    @ensures Raises MalformedResponseError on malformed or non-object JSON values.
"""
def decode_json_bytes_to_dict(json_bytes: bytes) -> dict:
    try:
        # Validate input type
        if not isinstance(json_bytes, (bytes, bytearray)):
            raise MalformedResponseError(ClientCodes.INVALID_TYPE, "Input must be bytes", "json_bytes")

        # Decode UTF-8 then parse JSON
        obj = json.loads(bytes(json_bytes).decode("utf-8"))

        # Validate output type
        if not isinstance(obj, dict):
            raise MalformedResponseError(ClientCodes.MALFORMED_JSON, "Expected JSON object", "json_bytes")

        return obj

    except KeePassXCError:
        raise
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedResponseError(ClientCodes.MALFORMED_JSON, "Malformed JSON payload", "json_bytes") from e



####################################################################################################
#                                   KeePassXC Value Coercion
####################################################################################################

"""
    Convert KeePassXC's string-encoded integer (e.g. "15") into an int.

    @param value (Any): str or int as sent by the peer, or None.
    @param field_name (str): Logical field name.
    @return int | None: None when the value is absent.
"""
def coerce_to_int(value: typing.Any, field_name: str = "value") -> typing.Optional[int]:
    if value is None or value == "":
        return None

    # bool is an int subclass; KeePassXC never sends one here
    if isinstance(value, bool):
        raise MalformedResponseError(ClientCodes.INVALID_TYPE, f"{field_name} cannot be a boolean", field_name)

    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(ClientCodes.INVALID_TYPE, f"{field_name} cannot be coerced to int", field_name)



"""
    Convert KeePassXC's string-encoded boolean ("true"/"false") into a bool.
"""
def coerce_to_bool(value: typing.Any, field_name: str = "value") -> typing.Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"

    raise MalformedResponseError(ClientCodes.INVALID_TYPE, f"{field_name} must be a boolean", field_name)



"""
    Encode a bool the way KeePassXC expects it on the wire.
"""
def encode_bool(value: bool) -> str:
    return "true" if value else "false"



####################################################################################################
#                               GENERIC VALIDATORS (REUSABLE)
####################################################################################################

"""
    Function: Validate that a value is a non-empty string.

    @param: typing.Any - value to be validated
    @param: str - application-level error code to raise if validation fails
    @param: str - field_name identifying the failing field
    @ensures: raises KeePassXCError if value is not a valid non-empty string
"""
def validate_string(value: typing.Any, application_code: str, field_name: str, error_class: type = KeePassXCError) -> None:
    if not isinstance(value, str) or not value.strip():
        raise error_class(application_code, f"{field_name} must be a non-empty string.", field_name)



"""
    Function: Validate that a value is a string, allowing the empty string.
"""
def validate_optional_string(value: typing.Any, application_code: str, field_name: str, error_class: type = KeePassXCError) -> None:
    if not isinstance(value, str):
        raise error_class(application_code, f"{field_name} must be a string.", field_name)



"""
    Function: Validate that a value belongs to an allowed set.

    @param: str - value to be validated
    @param: set - allowed_set containing permitted values
    @param: str - application-level error code to raise if validation fails
    @param: str - field_name identifying the failing field
    @ensures: raises KeePassXCError if value is not in allowed_set
"""
def validate_in_set(value: str, allowed_set: set, application_code: str, field_name: str) -> None:
    if value not in allowed_set:
        raise KeePassXCError(application_code, f"Invalid {field_name}: '{value}'.", field_name)



"""
    Function: Validate that a string is standard Base64 formatted.
"""
def validate_b64(value: str, application_code: str, field_name: str, error_class: type = KeePassXCError) -> None:
    if not isinstance(value, str) or len(value) % 4 != 0 or not CONSTANTS._BASE64_RX.match(value):
        raise error_class(application_code, f"{field_name} must be Base64.", field_name)



"""
    Function: Validate that a bytes value has exactly the expected length.

    @param: bytes - value to be validated
    @param: int - length required
    @param: str - application-level error code to raise on failure
    @param: str - field_name identifying the failing field
    @ensures: raises error_class if value is not bytes of the given length
"""
def validate_byte_length(value: typing.Any, length: int, application_code: str, field_name: str, error_class: type = KeePassXCError) -> None:
    if not isinstance(value, (bytes, bytearray)):
        raise error_class(ClientCodes.INVALID_TYPE, f"{field_name} must be bytes.", field_name)
    if len(value) != length:
        raise error_class(application_code, f"{field_name} must be exactly {length} bytes.", field_name)

