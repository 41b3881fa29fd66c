#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: action_handler.py

    Description:
        Sends encrypted actions to KeePassXC over an established session and
        returns their decoded responses. Every action follows the same path:
        serialize the inner message, seal it under the next nonce, send the
        envelope, surface protocol errors, adopt the nonce KeePassXC replied
        with, and open the response. A response that fails to open is retried
        under the decrypt retry policy.

        Typed wrappers are provided for get-logins and get-totp, plus the
        associate and test-associate actions the handshake drives.
"""


import typing
from dataclasses import dataclass, field
from kpxcpc.handlers.error_handler import (
    KeePassXCError, MalformedResponseError, AuthenticationFailure, RetriesExhausted,
    ProtocolError, ProtocolCodes, ClientCodes, protocol_error,
)
from kpxcpc.handlers.packet_handler import PacketHandler, ResponseEnvelope
from kpxcpc.handlers.session_handler import ClientSessionHandler
from kpxcpc.handlers.transport_handler import TransportHandler
from kpxcpc.utilities.audit_log import AuditLog
import kpxcpc.handlers.sanitization_validation as VALIDATION
import kpxcpc.constants as CONSTANTS



"""
    How many times a failing step may be repeated.

    max_retries : Retry bound, or None to retry without limit
"""
@dataclass(frozen=True)
class RetryPolicy:

    max_retries: typing.Optional[int] = None

    def __post_init__(self):
        if self.max_retries is not None and (isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int) or self.max_retries < 0):
            raise KeePassXCError(ClientCodes.INVALID_TYPE, "max_retries must be a non-negative int or None", "max_retries")

    def allows(self, retries_done: int) -> bool:
        return self.max_retries is None or retries_done < self.max_retries



"""
    One stored login returned by get-logins.

    string_fields : Custom fields in KeePassXC's order, each a single-key
                    {"KPH: name": value} mapping
"""
@dataclass(frozen=True)
class LoginEntry:

    login: str = ""
    name: str = ""
    password: str = ""
    uuid: str = ""
    string_fields: typing.Tuple[typing.Dict[str, str], ...] = ()

    def to_dict(self) -> dict:
        return {
            "login": self.login,
            "name": self.name,
            "password": self.password,
            "uuid": self.uuid,
            "stringFields": [dict(f) for f in self.string_fields],
        }

    def __repr__(self) -> str:
        return f"LoginEntry(login={self.login!r}, name={self.name!r}, uuid={self.uuid!r}, password=<redacted>)"



@dataclass(frozen=True)
class GetLoginsResult:

    count: int
    entries: typing.Tuple[LoginEntry, ...] = field(default_factory=tuple)



"""
    Dispatches encrypted actions for one session. Not thread-safe: the
    session allows one action in flight and raises on concurrent use.
"""
class ActionHandler:

    """
        Initialize the ActionHandler.

        @param session (ClientSessionHandler): Session holding keys and the nonce cursor.
        @param transport (TransportHandler): Connected transport to KeePassXC.
        @param audit_log (AuditLog): Optional audit log for action events.
        @param decrypt_retry (RetryPolicy): Retries when a response cannot be opened.
    """
    def __init__(self, session: ClientSessionHandler, transport: TransportHandler, audit_log: typing.Optional[AuditLog] = None, decrypt_retry: typing.Optional[RetryPolicy] = None) -> None:

        if not isinstance(session, ClientSessionHandler):
            raise KeePassXCError(ClientCodes.INVALID_TYPE, "ActionHandler requires ClientSessionHandler instance", "session")
        if not isinstance(transport, TransportHandler):
            raise KeePassXCError(ClientCodes.INVALID_TYPE, "ActionHandler requires TransportHandler instance", "transport")

        self._session: ClientSessionHandler = session
        self._transport: TransportHandler = transport
        self._audit: AuditLog = audit_log if audit_log is not None else AuditLog()
        self._decrypt_retry: RetryPolicy = decrypt_retry if decrypt_retry is not None else RetryPolicy()
        self._packets: PacketHandler = PacketHandler()


    @property
    def session(self) -> ClientSessionHandler:
        return self._session


    @property
    def packets(self) -> PacketHandler:
        return self._packets


    ################################################################################################
    # Generic dispatch
    ################################################################################################

    """
        Send a plaintext envelope and parse the reply. Only change-public-keys
        travels unencrypted.

        @param request (dict): Request envelope.
        @return ResponseEnvelope: Parsed response; error fields are not checked here.
    """
    def send_plain(self, request: dict) -> ResponseEnvelope:
        return self._packets.parse_response(self._transport.exchange(request))


    """
        Run one encrypted action and return the decrypted response message.

        @param action (str): Action name sent in the outer envelope.
        @param payload (dict): Inner message to seal.
        @param trigger_unlock (bool): Ask KeePassXC to prompt for the database password.
        @param require_association (bool): Refuse to run before the handshake completed.
        @return dict: Decrypted inner response.
        @ensures ProtocolError when KeePassXC reports an error; RetriesExhausted when
            the decrypt retry bound is reached.
    """
    def perform(self, action: str, payload: dict, trigger_unlock: bool = True, require_association: bool = True) -> dict:

        with self._session.in_flight():

            if require_association and self._session.handshake_state != CONSTANTS._HANDSHAKE_STATE_ASSOCIATED:
                raise KeePassXCError(ClientCodes.HANDSHAKE_STATE_INVALID, f"Cannot run {action} before the handshake completed", "handshake_state")
            if not self._session.keys_exchanged:
                raise KeePassXCError(ClientCodes.HANDSHAKE_STATE_INVALID, f"Cannot run {action} before public keys are exchanged", "publicKey")

            try:
                plaintext = VALIDATION.encode_dict_to_json_bytes(payload)
            except KeePassXCError:
                raise
            except Exception as e:
                raise KeePassXCError(ClientCodes.ACTION_ERROR, f"Failed to serialize {action} message: {e}", "message") from e

            retries = 0
            while True:
                try:
                    response = self._perform_once(action, plaintext, trigger_unlock)
                    self._audit.event(event="action", action=action, retries=retries)
                    return response

                except AuthenticationFailure as e:
                    if not self._decrypt_retry.allows(retries):
                        self._audit.event(event="action_failed", action=action, retries=retries, application_code=e.application_code)
                        raise RetriesExhausted(f"Could not open the {action} response after {retries + 1} attempts", e, "message") from e
                    retries += 1


    def _perform_once(self, action: str, plaintext: bytes, trigger_unlock: bool) -> dict:

        nonce = self._session.next_nonce()
        ciphertext = self._session.seal(plaintext, nonce)
        request = self._packets.create_encrypted_request(action, self._session.client_id, nonce, ciphertext, trigger_unlock)

        envelope = self.send_plain(request)
        self._packets.check_protocol_error(envelope)
        self._packets.validate_encrypted_response(envelope)

        # KeePassXC's nonce becomes the cursor even if the message fails to open
        self._session.observe_nonce(envelope.nonce)

        message = VALIDATION.decode_json_bytes_to_dict(self._session.open(envelope.message, envelope.nonce))

        # Some versions repeat the error inside the sealed message
        if message.get("error") is not None or message.get("errorCode") not in (None, ""):
            raise protocol_error(str(message.get("error") or ""), VALIDATION.coerce_to_int(message.get("errorCode"), "errorCode"))

        return message


    ################################################################################################
    # Association actions (driven by the handshake)
    ################################################################################################

    def test_associate(self, trigger_unlock: bool = True) -> dict:
        message = self._packets.create_test_associate_message(self._session.association_data())
        return self.perform(CONSTANTS.ACTION_TEST_ASSOCIATE, message, trigger_unlock, require_association=False)


    """
        Register the identity key with KeePassXC. The user confirms the
        association and names it in the KeePassXC window.

        @return str: The identifier KeePassXC assigned.
    """
    def associate(self) -> str:
        message = self._packets.create_associate_message(self._session.public_key, self._session.association_data())
        response = self.perform(CONSTANTS.ACTION_ASSOCIATE, message, True, require_association=False)

        identifier = response.get("id")
        VALIDATION.validate_string(identifier, ClientCodes.MISSING_FIELDS, "id", MalformedResponseError)
        return identifier


    ################################################################################################
    # Credential actions
    ################################################################################################

    """
        Fetch the logins KeePassXC matches for a URL.

        @param url (str): Page URL to match.
        @param submit_url (str): Optional form submit URL.
        @param http_auth (str): Optional HTTP auth realm flag.
        @return GetLoginsResult: Entries in KeePassXC's order.
        @ensures ProtocolError(NO_LOGINS_FOUND) when nothing matches, whether
            KeePassXC reports code 15 or returns an empty entry list.
    """
    def get_logins(self, url: str, submit_url: typing.Optional[str] = None, http_auth: typing.Optional[str] = None) -> GetLoginsResult:

        message = self._packets.create_get_logins_message(url, self._session.association_data(), submit_url, http_auth)
        response = self.perform(CONSTANTS.ACTION_GET_LOGINS, message)

        raw_entries = response.get("entries")
        if raw_entries is None:
            raw_entries = []
        if not isinstance(raw_entries, list):
            raise MalformedResponseError(ClientCodes.INVALID_TYPE, "entries must be a list", "entries")

        entries = tuple(self._parse_login_entry(e) for e in raw_entries)
        if not entries:
            raise ProtocolError(ProtocolCodes.NO_LOGINS_FOUND, "No logins found")

        count = VALIDATION.coerce_to_int(response.get("count"), "count")
        return GetLoginsResult(count=len(entries) if count is None else count, entries=entries)


    """
        Fetch the current TOTP code for an entry.

        @param uuid (str): Entry UUID.
        @return str: The code, or "" when KeePassXC sends none. An entry with
            no TOTP configured and an empty code look the same on the wire.
    """
    def get_totp(self, uuid: str) -> str:

        message = self._packets.create_get_totp_message(uuid)
        response = self.perform(CONSTANTS.ACTION_GET_TOTP, message)

        totp = response.get("totp")
        if totp is None:
            return ""

        VALIDATION.validate_optional_string(totp, ClientCodes.INVALID_TYPE, "totp", MalformedResponseError)
        return totp


    def _parse_login_entry(self, raw: typing.Any) -> LoginEntry:

        if not isinstance(raw, dict):
            raise MalformedResponseError(ClientCodes.INVALID_TYPE, "Login entry must be a JSON object", "entries")

        values = {}
        for name in ("login", "name", "password", "uuid"):
            value = raw.get(name)
            if value is None:
                value = ""
            VALIDATION.validate_optional_string(value, ClientCodes.INVALID_TYPE, name, MalformedResponseError)
            values[name] = value

        string_fields = raw.get("stringFields")
        if string_fields is None:
            string_fields = []
        if not isinstance(string_fields, list):
            raise MalformedResponseError(ClientCodes.INVALID_TYPE, "stringFields must be a list", "stringFields")

        for f in string_fields:
            if not isinstance(f, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in f.items()):
                raise MalformedResponseError(ClientCodes.INVALID_TYPE, "stringFields entries must map strings to strings", "stringFields")

        return LoginEntry(string_fields=tuple(dict(f) for f in string_fields), **values)
