#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: identity_manager.py

    Description:
        Manages the long-lived association identity shared with KeePassXC:
        the identifier KeePassXC assigned on association and the 24-byte
        identity key the client generated for it. Loads the identity record
        from disk (or stdin), generates a fresh identity when none can be
        read, and writes the record back with restrictive permissions after
        a successful association.

        Record format: {"id": "<identifier>", "idKey": "<base64 key>"}
"""

import json
import os
import sys
import typing
from dataclasses import dataclass, replace
from kpxcpc.handlers.error_handler import KeePassXCError, ClientCodes
from kpxcpc.utilities.audit_log import AuditLog
import kpxcpc.handlers.sanitization_validation as VALIDATION
import kpxcpc.constants as CONSTANTS



"""
    The association pairing secret and name.

    identifier   : Name KeePassXC assigned on association ("" before the first one)
    identity_key : 24-byte key sent as "idKey" on association and "key" afterwards
"""
@dataclass(frozen=True)
class Identity:

    identifier: str
    identity_key: bytes

    def with_identifier(self, identifier: str) -> "Identity":
        return replace(self, identifier=identifier)

    @property
    def associated(self) -> bool:
        return self.identifier != ""

    def __repr__(self) -> str:
        return f"Identity(identifier={self.identifier!r}, identity_key=<redacted>)"



class IdentityManager:

    """
        Initialize an IdentityManager bound to one identity record location.

        @param identity_path (str): File path of the record, or "-" for stdin/stdout.
        @param audit_log (AuditLog): Optional audit log for load/save events.
        @require isinstance(identity_path, str) and identity_path.strip() != ""
    """
    def __init__(self, identity_path: str, audit_log: typing.Optional[AuditLog] = None):

        if not isinstance(identity_path, str) or not identity_path.strip():
            raise KeePassXCError(ClientCodes.INVALID_IDENTITY, "identity_path must be a non-empty string", "identity_path")

        self._identity_path: str = identity_path
        self._audit_log: AuditLog = audit_log if audit_log is not None else AuditLog()


    @property
    def identity_path(self) -> str:
        return self._identity_path



    """
        Default identity file location: $XDG_DATA_HOME/kpxcpc/identity.json,
        falling back to ~/.local/share when XDG_DATA_HOME is unset.
    """
    @staticmethod
    def default_identity_path(environ: typing.Optional[typing.Mapping[str, str]] = None) -> str:
        environ = os.environ if environ is None else environ

        data_home = environ.get("XDG_DATA_HOME", "")
        if not data_home:
            data_home = os.path.join(environ.get("HOME", os.path.expanduser("~")), ".local", "share")

        return os.path.join(data_home, CONSTANTS._CLIENT_NAME, CONSTANTS._IDENTITY_FILE_NAME)



    """
        Generate an identity that has never been associated.

        @return Identity: Empty identifier and a random 24-byte identity key.
    """
    @staticmethod
    def generate_identity() -> Identity:
        return Identity(identifier="", identity_key=os.urandom(CONSTANTS._IDENTITY_KEY_LEN_BYTES))



    """
        Parse an identity record dictionary.

        @param record (dict): {"id": str, "idKey": base64 str}
        @return Identity: The decoded identity.
        @ensures Raises KeePassXCError(INVALID_IDENTITY) for any malformed record.
    """
    @staticmethod
    def decode_record(record: typing.Any) -> Identity:

        if not isinstance(record, dict):
            raise KeePassXCError(ClientCodes.INVALID_IDENTITY, "Identity record must be a JSON object", "identity")

        identifier = record.get("id", "")
        if identifier is None:
            identifier = ""
        VALIDATION.validate_optional_string(identifier, ClientCodes.INVALID_IDENTITY, "id")

        identity_key = VALIDATION.decode_fixed_length("idKey", record.get("idKey"), CONSTANTS._IDENTITY_KEY_LEN_BYTES, ClientCodes.INVALID_IDENTITY)

        return Identity(identifier=identifier, identity_key=identity_key)



    """
        Build the JSON record for an identity.
    """
    @staticmethod
    def encode_record(identity: Identity) -> dict:
        return {
            "id": identity.identifier,
            "idKey": VALIDATION.encode_bytes_to_base64(identity.identity_key),
        }



    """
        Load the identity record, or generate a new identity when it cannot be read.

        A missing file is the normal first-run case. An unreadable or malformed
        record is treated the same way: the client will associate again and
        overwrite it.

        @return Identity: Loaded or freshly generated identity.
    """
    def load(self) -> Identity:

        try:
            if self._identity_path == CONSTANTS._STDIO_PATH:
                record = json.load(sys.stdin)
            else:
                with open(self._identity_path, "r", encoding="utf-8") as f:
                    record = json.load(f)

            identity = self.decode_record(record)
            self._audit_log.event(event="identity_loaded", path=self._identity_path, identifier=identity.identifier)
            return identity

        except FileNotFoundError:
            self._audit_log.event(event="identity_missing", path=self._identity_path)

        except (OSError, ValueError, KeePassXCError) as e:
            self._audit_log.event(event="identity_unreadable", path=self._identity_path, detail=str(e))

        return self.generate_identity()



    """
        Persist an identity record.

        @param identity (Identity): Identity to write.
        @ensures The parent directory exists (mode 0700) and the file has mode 0600;
            "-" writes the record to stdout instead.
    """
    def save(self, identity: Identity) -> None:

        if not isinstance(identity, Identity):
            raise KeePassXCError(ClientCodes.INVALID_IDENTITY, "save() requires an Identity", "identity")

        record_text = json.dumps(self.encode_record(identity))

        try:
            if self._identity_path == CONSTANTS._STDIO_PATH:
                sys.stdout.write(record_text + "\n")
                sys.stdout.flush()
                return

            # Ensure directory exists
            identity_dir = os.path.dirname(self._identity_path)
            if identity_dir and not os.path.isdir(identity_dir):
                os.makedirs(identity_dir, mode=CONSTANTS._IDENTITY_DIR_MODE, exist_ok=True)

            # Create with restrictive permissions, then tighten an existing file too
            fd = os.open(self._identity_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CONSTANTS._IDENTITY_FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record_text)
            os.chmod(self._identity_path, CONSTANTS._IDENTITY_FILE_MODE)

            self._audit_log.event(event="identity_saved", path=self._identity_path, identifier=identity.identifier)

        except OSError as e:
            raise KeePassXCError(ClientCodes.IDENTITY_SAVE_ERROR, f"Failed to write identity file: {e}", "identity_path") from e
