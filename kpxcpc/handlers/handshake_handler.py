#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: handshake_handler.py

    Description:
        Brings a fresh session to the associated state. The handshake runs
        change-public-keys in plaintext, then test-associate with the stored
        identity. When that fails it either repeats the exchange (the peer
        could not decrypt, or the database is locked and we wait for it to be
        unlocked) or falls through to associate, which pairs a new identity
        and hands it to the identity store.

        Retry bounds, the unlock poll interval, the sleep function, and the
        progress callback are injected so the loop can be driven without
        real delays.
"""



import sys
import time
import typing
from dataclasses import dataclass
from kpxcpc.handlers.action_handler import ActionHandler, RetryPolicy
from kpxcpc.handlers.error_handler import (
    KeePassXCError, ProtocolError, ProtocolCodes, RetriesExhausted, ClientCodes,
)
from kpxcpc.handlers.session_handler import ClientSessionHandler
from kpxcpc.encryption.identity_manager import Identity
from kpxcpc.utilities.audit_log import AuditLog
import kpxcpc.constants as CONSTANTS



"""
    Wait-for-unlock behavior while KeePassXC reports its database closed.

    enabled     : Wait and retry instead of failing immediately
    interval    : Seconds slept between attempts
    max_retries : Attempt bound, or None to wait indefinitely
"""
@dataclass(frozen=True)
class UnlockWaitPolicy:

    enabled: bool = True
    interval: float = CONSTANTS._UNLOCK_POLL_INTERVAL_SECONDS
    max_retries: typing.Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.enabled, bool):
            raise KeePassXCError(ClientCodes.INVALID_TYPE, "enabled must be a bool", "enabled")
        if isinstance(self.interval, bool) or not isinstance(self.interval, (int, float)) or self.interval < 0:
            raise KeePassXCError(ClientCodes.INVALID_TYPE, "interval must be a non-negative number of seconds", "interval")
        if self.max_retries is not None and (isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int) or self.max_retries < 0):
            raise KeePassXCError(ClientCodes.INVALID_TYPE, "max_retries must be a non-negative int or None", "max_retries")

    def allows(self, retries_done: int) -> bool:
        return self.max_retries is None or retries_done < self.max_retries



def _print_unlock_progress(attempt: int) -> None:
    sys.stderr.write(f"\r{CONSTANTS._UNLOCK_WAIT_MESSAGE} (attempt {attempt})")
    sys.stderr.flush()



"""
    Coordinates the key exchange and association steps over an ActionHandler.
"""
class HandshakeHandler:

    """
        Initialize the HandshakeHandler.

        @param action_handler (ActionHandler): Dispatcher bound to the session and transport.
        @param identity_saver (callable): Called with the new Identity after a successful associate.
        @param decrypt_retry (RetryPolicy): Bound on key exchanges redone after CannotDecryptMessage.
        @param unlock_wait (UnlockWaitPolicy): Wait-for-unlock behavior.
        @param trigger_unlock (bool): Ask KeePassXC to show its unlock dialog on the first attempt.
        @param sleep (callable): Sleep function used between unlock attempts.
        @param notify (callable): Progress callback receiving the attempt number.
    """
    def __init__(
        self,
        action_handler: ActionHandler,
        identity_saver: typing.Optional[typing.Callable[[Identity], None]] = None,
        decrypt_retry: typing.Optional[RetryPolicy] = None,
        unlock_wait: typing.Optional[UnlockWaitPolicy] = None,
        trigger_unlock: bool = True,
        sleep: typing.Callable[[float], None] = time.sleep,
        notify: typing.Callable[[int], None] = _print_unlock_progress,
        audit_log: typing.Optional[AuditLog] = None,
    ) -> None:

        if not isinstance(action_handler, ActionHandler):
            raise KeePassXCError(ClientCodes.INVALID_TYPE, "HandshakeHandler requires ActionHandler instance", "action_handler")

        self._actions: ActionHandler = action_handler
        self._session: ClientSessionHandler = action_handler.session
        self._identity_saver = identity_saver
        self._decrypt_retry: RetryPolicy = decrypt_retry if decrypt_retry is not None else RetryPolicy()
        self._unlock_wait: UnlockWaitPolicy = unlock_wait if unlock_wait is not None else UnlockWaitPolicy()
        self._trigger_unlock: bool = trigger_unlock
        self._sleep = sleep
        self._notify = notify
        self._audit: AuditLog = audit_log if audit_log is not None else AuditLog()


    ################################################################################################
    # Steps
    ################################################################################################

    """
        Exchange public keys in plaintext under a fresh random nonce.

        @ensures The session holds KeePassXC's public key and nonce; any error is fatal.
    """
    def change_public_keys(self) -> None:

        with self._session.in_flight():
            nonce = self._session.fresh_nonce()
            request = self._actions.packets.create_change_public_keys_request(self._session.client_id, nonce, self._session.public_key)

            envelope = self._actions.send_plain(request)
            self._actions.packets.check_protocol_error(envelope)
            self._actions.packets.validate_change_public_keys_response(envelope)

            self._session.set_peer_public_key(envelope.public_key)
            self._session.observe_nonce(envelope.nonce)

        self._audit.event(event="handshake", step=CONSTANTS.ACTION_CHANGE_PUBLIC_KEYS)


    def test_associate(self, trigger_unlock: bool) -> None:
        self._actions.test_associate(trigger_unlock)
        self._session.set_handshake_state(CONSTANTS._HANDSHAKE_STATE_ASSOCIATED)
        self._audit.event(event="handshake", step=CONSTANTS.ACTION_TEST_ASSOCIATE, identifier=self._session.association_data().identifier)


    """
        Pair the session's identity key with KeePassXC and persist the result.

        @return Identity: The identity carrying KeePassXC's new identifier.
    """
    def associate(self) -> Identity:
        identifier = self._actions.associate()
        identity = self._session.set_identifier(identifier)
        self._session.set_handshake_state(CONSTANTS._HANDSHAKE_STATE_ASSOCIATED)
        self._audit.event(event="handshake", step=CONSTANTS.ACTION_ASSOCIATE, identifier=identifier)

        if self._identity_saver is not None:
            self._identity_saver(identity)

        return identity


    ################################################################################################
    # State machine
    ################################################################################################

    """
        Run the handshake until the session is associated.

        @return Identity: The identity the session is associated with.
        @ensures ProtocolError for a locked database when waiting is disabled;
            RetriesExhausted when a bounded policy runs out; any transport or
            malformed-response error aborts the handshake.
    """
    def connect(self) -> Identity:

        trigger_unlock = self._trigger_unlock
        decrypt_retries = 0
        unlock_retries = 0

        while True:
            self.change_public_keys()

            try:
                self.test_associate(trigger_unlock)
                return self._session.association_data()

            except ProtocolError as e:
                # Redo the key exchange
                if e.is_code(ProtocolCodes.CANNOT_DECRYPT_MESSAGE):
                    if not self._decrypt_retry.allows(decrypt_retries):
                        raise RetriesExhausted(f"KeePassXC could not decrypt test-associate after {decrypt_retries + 1} attempts", e) from e
                    decrypt_retries += 1
                    self._audit.event(event="handshake_retry", reason="cannot_decrypt", attempt=decrypt_retries)
                    continue

                # Associated but locked: wait for the user to unlock it
                if e.is_code(ProtocolCodes.DATABASE_NOT_OPENED) and self._session.association_data().associated:
                    if not self._unlock_wait.enabled:
                        raise
                    if not self._unlock_wait.allows(unlock_retries):
                        raise RetriesExhausted(f"Database still locked after {unlock_retries} attempts", e) from e

                    unlock_retries += 1
                    self._notify(unlock_retries)
                    self._audit.event(event="handshake_retry", reason="database_not_opened", attempt=unlock_retries)

                    # Only the first attempt prompts for unlock
                    trigger_unlock = False
                    self._sleep(self._unlock_wait.interval)
                    continue

                self._audit.event(event="handshake_fallback", reason=e.detail)

            return self.associate()
