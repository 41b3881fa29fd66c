#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: error_handler.py

    Description:
        Centralized error handling for the KeePassXC client. Defines the
        application error codes raised by the client itself, the closed set of
        protocol error codes reported by KeePassXC, the exception hierarchy
        used across every handler and manager, and the ErrorHandler that turns
        any exception into a logged, user-facing message and exit status.
"""


import enum
from dataclasses import dataclass
from typing import Optional, Tuple
from kpxcpc.utilities.audit_log import AuditLog



"""
    Container Class for process exit statuses.
"""
@dataclass
class ExitCodes:
    # Completed normally
    OK = 0

    # Any failure reported by the client or the peer
    FAILURE = 1

    # Bad command-line usage (argparse exits with the same status)
    USAGE = 2

    # Peer answered but found nothing for the request
    NOT_FOUND = 3


"""
    Container Class for client-side application error code strings.
"""
@dataclass
class ClientCodes:

    MALFORMED_JSON              = "malformed_json"
    MISSING_FIELDS              = "missing_fields"
    INVALID_TYPE                = "invalid_type"
    INVALID_LENGTH              = "invalid_length"
    INVALID_BASE64              = "invalid_base64"
    INVALID_ACTION              = "invalid_action"
    INVALID_NONCE               = "invalid_nonce"
    INVALID_PUBLIC_KEY          = "invalid_public_key"
    INVALID_PRIVATE_KEY         = "invalid_private_key"
    INVALID_IDENTITY            = "invalid_identity"
    INVALID_CIPHERTEXT          = "invalid_ciphertext"
    CIPHERTEXT_AUTH_ERROR       = "ciphertext_auth_error"
    ENCRYPTION_ERROR            = "encryption_error"
    KEY_GENERATION_ERROR        = "key_generation_error"
    TRANSPORT_ERROR             = "transport_error"
    TRANSPORT_CLOSED            = "transport_closed"
    MESSAGE_TOO_LARGE           = "message_too_large"
    SESSION_ERROR               = "session_error"
    HANDSHAKE_STATE_INVALID     = "handshake_state_invalid"
    ACTION_ERROR                = "action_error"
    PROTOCOL_ERROR              = "protocol_error"
    RETRIES_EXHAUSTED           = "retries_exhausted"
    IDENTITY_SAVE_ERROR         = "identity_save_error"
    FORMAT_ERROR                = "format_error"
    INTERNAL_ERROR              = "internal_error"


"""
    Error codes reported by KeePassXC in the "errorCode" response field.
"""
class ProtocolCodes(enum.IntEnum):

    UNKNOWN_ERROR                   = 0
    DATABASE_NOT_OPENED             = 1
    DATABASE_HASH_NOT_RECEIVED      = 2
    CLIENT_PUBLIC_KEY_NOT_RECEIVED  = 3
    CANNOT_DECRYPT_MESSAGE          = 4
    TIMEOUT_OR_NOT_CONNECTED        = 5
    ACTION_CANCELLED_OR_DENIED      = 6
    PUBLIC_KEY_NOT_FOUND            = 7
    ASSOCIATION_FAILED              = 8
    KEY_CHANGE_FAILED               = 9
    ENCRYPTION_KEY_UNRECOGNIZED     = 10
    NO_SAVED_DATABASES_FOUND        = 11
    INCORRECT_ACTION                = 12
    EMPTY_MESSAGE_RECEIVED          = 13
    NO_URL_PROVIDED                 = 14
    NO_LOGINS_FOUND                 = 15


# Canonical message for every known protocol code
_PROTOCOL_MESSAGES = {
    ProtocolCodes.UNKNOWN_ERROR:                  "unknown error",
    ProtocolCodes.DATABASE_NOT_OPENED:            "database not opened",
    ProtocolCodes.DATABASE_HASH_NOT_RECEIVED:     "database hash not received",
    ProtocolCodes.CLIENT_PUBLIC_KEY_NOT_RECEIVED: "client public key not received",
    ProtocolCodes.CANNOT_DECRYPT_MESSAGE:         "cannot decrypt message",
    ProtocolCodes.TIMEOUT_OR_NOT_CONNECTED:       "timeout or not connected",
    ProtocolCodes.ACTION_CANCELLED_OR_DENIED:     "action cancelled or denied",
    ProtocolCodes.PUBLIC_KEY_NOT_FOUND:           "public key not found",
    ProtocolCodes.ASSOCIATION_FAILED:             "association failed",
    ProtocolCodes.KEY_CHANGE_FAILED:              "key change failed",
    ProtocolCodes.ENCRYPTION_KEY_UNRECOGNIZED:    "encryption key unrecognized",
    ProtocolCodes.NO_SAVED_DATABASES_FOUND:       "no saved databases found",
    ProtocolCodes.INCORRECT_ACTION:               "incorrect action",
    ProtocolCodes.EMPTY_MESSAGE_RECEIVED:         "empty message received",
    ProtocolCodes.NO_URL_PROVIDED:                "no url provided",
    ProtocolCodes.NO_LOGINS_FOUND:                "no logins found",
}






class KeePassXCError(Exception):

    """
        Initialize a KeePassXCError containing application code, detail message, and field context.

        @param application_code (str): Identifier from ClientCodes signaling the failure type.
        @param detail (str): Descriptive message shown to the user.
        @param field (str): Logical field related to the error (optional).
        @require isinstance(application_code, str)
        @require isinstance(detail, str)
        @ensures Error metadata is accessible to the centralized ErrorHandler.
    """
    def __init__(self, application_code: str, detail: str, field: str = "") -> None:
        self.application_code = application_code
        self.detail = detail
        self.field = field
        super().__init__(f"{application_code}: {detail}")


"""
    The socket could not be opened, written, or read. Always fatal.
"""
class TransportError(KeePassXCError):
    pass


"""
    The peer sent something that is not a well-formed envelope. Always fatal.
"""
class MalformedResponseError(KeePassXCError):
    pass


"""
    A sealed message failed authentication when opened. Transient: the
    request that produced it is retried.
"""
class AuthenticationFailure(KeePassXCError):

    def __init__(self, detail: str = "Failed to open sealed message", field: str = "message") -> None:
        super().__init__(ClientCodes.CIPHERTEXT_AUTH_ERROR, detail, field)


"""
    A bounded retry policy ran out of attempts.

    @param last_error (Exception): The error that triggered the final retry.
"""
class RetriesExhausted(KeePassXCError):

    def __init__(self, detail: str, last_error: Exception, field: str = "") -> None:
        super().__init__(ClientCodes.RETRIES_EXHAUSTED, detail, field)
        self.last_error = last_error



class ProtocolError(KeePassXCError):

    """
        Initialize a ProtocolError from a KeePassXC error response.

        @param code (ProtocolCodes | None): Known protocol code, or None when the
            peer sent a code outside the table (the raw message is kept).
        @param message (str): Raw "error" string sent by the peer.
        @param raw_code (int | None): Numeric code exactly as received.
        @ensures Callers can branch on .code; .code is None only for unrecognized codes.
    """
    def __init__(self, code: Optional[ProtocolCodes], message: str, raw_code: Optional[int] = None) -> None:
        self.code = code
        self.message = message
        self.raw_code = raw_code if raw_code is not None else (int(code) if code is not None else None)

        detail = _PROTOCOL_MESSAGES[code] if code is not None else message
        super().__init__(ClientCodes.PROTOCOL_ERROR, detail, "errorCode")

    @property
    def recognized(self) -> bool:
        return self.code is not None

    def is_code(self, code: ProtocolCodes) -> bool:
        return self.code == code



"""
    Map a KeePassXC error code and message to a ProtocolError.

    @param message (str): The "error" field of the response.
    @param code (int | None): The decoded "errorCode" field.
    @return ProtocolError: With .code set for known codes, None otherwise.
"""
def protocol_error(message: str, code: Optional[int]) -> ProtocolError:

    if code is not None:
        try:
            return ProtocolError(ProtocolCodes(code), message, code)
        except ValueError:
            pass

    return ProtocolError(None, message if message else "unrecognized protocol error", code)






class ErrorHandler:

    """
        Initialize the ErrorHandler and attach an AuditLog for diagnostic event recording.

        @param audit_log (AuditLog): Optional shared audit log; a new one is created when omitted.
        @ensures ErrorHandler is ready to format and log errors.
    """
    def __init__(self, audit_log: Optional[AuditLog] = None) -> None:

        self.audit_log = audit_log if audit_log is not None else AuditLog()


    """
        Process an exception and return a user-facing message and exit status.

        @param e (Exception): Exception raised while talking to KeePassXC.
        @param context (str): Logical context string identifying the failing operation.
        @return tuple[str, int]: (message, exit_status)
        @ensures The exception is logged to the audit log before returning.
    """
    def handle_client_error(self, e: Exception, context: str = "") -> Tuple[str, int]:

        # Protocol errors carry the peer's own wording
        if isinstance(e, ProtocolError):
            application_code = e.application_code
            message = e.detail
            exit_status = ExitCodes.NOT_FOUND if e.is_code(ProtocolCodes.NO_LOGINS_FOUND) else ExitCodes.FAILURE

        elif isinstance(e, KeePassXCError):
            application_code = e.application_code
            message = e.detail
            exit_status = ExitCodes.FAILURE

        else:
            # Anything else is a bug; keep the message short for the user
            application_code = ClientCodes.INTERNAL_ERROR
            message = f"internal error: {e}"
            exit_status = ExitCodes.FAILURE

        # Always log the raw exception detail
        self.audit_log.event(event="client_error", context=context, application_code=application_code, detail=str(e))

        if context:
            message = f"{context}: {message}"

        return message, exit_status
