#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: constants.py

    Description:
        Centralized protocol constants for the KeePassXC browser-integration
        protocol. Defines action names, key and nonce sizes, wire encoding
        limits, socket discovery names, identity file defaults, and the
        polling interval used while waiting for the database to be unlocked.
"""

import re
from typing import Set


# Name used for the identity directory and audit events
_CLIENT_NAME = "kpxcpc"


################################################################################################
# Key and nonce sizes
################################################################################################

# X25519 public/private key length
_KEY_LEN_BYTES = 32

# crypto_box nonce length (also used for the client ID and identity key)
_NONCE_LEN_BYTES = 24

_CLIENT_ID_LEN_BYTES = 24

_IDENTITY_KEY_LEN_BYTES = 24

# Poly1305 tag carried by every sealed message
_BOX_MAC_LEN_BYTES = 16


################################################################################################
# Actions
################################################################################################

ACTION_CHANGE_PUBLIC_KEYS = "change-public-keys"
ACTION_ASSOCIATE = "associate"
ACTION_TEST_ASSOCIATE = "test-associate"
ACTION_GET_LOGINS = "get-logins"
ACTION_GET_TOTP = "get-totp"

_ALLOWED_ACTIONS: Set[str] = {
    ACTION_CHANGE_PUBLIC_KEYS,
    ACTION_ASSOCIATE,
    ACTION_TEST_ASSOCIATE,
    ACTION_GET_LOGINS,
    ACTION_GET_TOTP,
}


################################################################################################
# Handshake states
################################################################################################

_HANDSHAKE_STATE_START = "start"
_HANDSHAKE_STATE_KEYS_EXCHANGED = "keys_exchanged"
_HANDSHAKE_STATE_ASSOCIATED = "associated"
_ALLOWED_HANDSHAKE_STATES: Set[str] = {"start", "keys_exchanged", "associated"}


################################################################################################
# Wire encoding
################################################################################################

# Prefix KeePassXC puts in front of custom string field names
_STRING_FIELD_PREFIX = "KPH: "

# Standard base64 with padding
_BASE64_RX = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")

# Maximum size of one JSON document read from the socket (bytes)
_MAX_MESSAGE_BYTES = 16 * 1024 * 1024

# Chunk size for socket reads
_RECV_CHUNK_BYTES = 65536


################################################################################################
# Socket discovery and identity storage
################################################################################################

# Socket names tried in order under $XDG_RUNTIME_DIR
_SOCKET_NAMES = (
    "kpxc_server",
    "org.keepassxc.KeePassXC.BrowserServer",
)

_IDENTITY_FILE_NAME = "identity.json"

# Path meaning stdin (when loading) or stdout (when saving)
_STDIO_PATH = "-"

_IDENTITY_DIR_MODE = 0o700
_IDENTITY_FILE_MODE = 0o600

# Environment variable naming the audit log file (audit logging is off when unset)
_AUDIT_LOG_ENV = "KPXCPC_AUDIT_LOG"


################################################################################################
# Retry and unlock-wait policy
################################################################################################

# Seconds between attempts while the database is locked
_UNLOCK_POLL_INTERVAL_SECONDS = 1.0

_UNLOCK_WAIT_MESSAGE = "Waiting for DB to be unlocked..."

# Default output format for login entries: the password
_DEFAULT_ENTRY_FORMAT = "%p"
