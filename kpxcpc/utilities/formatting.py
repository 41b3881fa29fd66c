#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: formatting.py

    Description:
        Renders login entries and TOTP codes for the command line. Entries
        are printed through a format string whose tokens are replaced left to
        right in a single pass:

            %n  name        %l  login       %p  password
            %u  uuid        %F:field  custom string field ("KPH: " dropped)
            %%  literal %

        Backslash escapes such as \\n and \\t in the format string are
        expanded first so a format can be written on one shell line.
"""


import json
import re
import typing
from kpxcpc.handlers.action_handler import LoginEntry
from kpxcpc.handlers.error_handler import KeePassXCError, ClientCodes
import kpxcpc.constants as CONSTANTS



_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "\\": "\\",
    "\"": "\"",
}

_ESCAPE_RX = re.compile(r"\\([0-7]{3}|x[0-9A-Fa-f]{2}|u[0-9A-Fa-f]{4}|U[0-9A-Fa-f]{8}|.)", re.DOTALL)



"""
    Expand backslash escapes in a format string.

    @param fmt (str): Format string as typed by the user.
    @return str: The string with escapes replaced.
    @ensures Raises KeePassXCError(FORMAT_ERROR) for an unknown or trailing escape.
"""
def expand_escapes(fmt: str) -> str:

    if not isinstance(fmt, str):
        raise KeePassXCError(ClientCodes.FORMAT_ERROR, "Format must be a string", "fmt")

    if fmt.endswith("\\") and (len(fmt) - len(fmt.rstrip("\\"))) % 2 == 1:
        raise KeePassXCError(ClientCodes.FORMAT_ERROR, "Format ends with a lone backslash", "fmt")

    def replace(match: typing.Match) -> str:
        escape = match.group(1)

        if escape[0] in "01234567" and len(escape) == 3:
            value = int(escape, 8)
            if value > 0xFF:
                raise KeePassXCError(ClientCodes.FORMAT_ERROR, f"Octal escape '\\{escape}' is out of range", "fmt")
            return chr(value)
        if escape[0] in "xuU" and len(escape) > 1:
            return chr(int(escape[1:], 16))
        if escape in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[escape]

        raise KeePassXCError(ClientCodes.FORMAT_ERROR, f"Unknown escape sequence '\\{escape}' in format", "fmt")

    try:
        return _ESCAPE_RX.sub(replace, fmt)
    except (ValueError, OverflowError) as e:
        raise KeePassXCError(ClientCodes.FORMAT_ERROR, f"Invalid escape sequence in format: {e}", "fmt") from e



"""
    Build the token -> value table for one entry, in match priority order.
"""
def _replacements(entry: LoginEntry) -> typing.List[typing.Tuple[str, str]]:

    pairs = [
        ("%%", "%"),
        ("%n", entry.name),
        ("%p", entry.password),
        ("%l", entry.login),
        ("%u", entry.uuid),
    ]

    for string_field in entry.string_fields:
        for key, value in string_field.items():
            name = key[len(CONSTANTS._STRING_FIELD_PREFIX):] if key.startswith(CONSTANTS._STRING_FIELD_PREFIX) else key
            pairs.append(("%F:" + name, value))

    return pairs



def format_entry(fmt: str, entry: LoginEntry) -> str:

    # First token wins at each position; a dict keeps the first value for repeated tokens
    table: typing.Dict[str, str] = {}
    for token, value in _replacements(entry):
        table.setdefault(token, value)

    pattern = re.compile("|".join(re.escape(token) for token in table))
    return pattern.sub(lambda m: table[m.group(0)], fmt)



"""
    Render every entry with the format string and concatenate the results.

    @param fmt (str): Format string with escapes already expanded.
    @param entries (Iterable[LoginEntry]): Entries in KeePassXC's order.
    @return str: The rendered text; no separator is added between entries.
"""
def format_entries(fmt: str, entries: typing.Iterable[LoginEntry]) -> str:
    return "".join(format_entry(fmt, entry) for entry in entries)



def entries_to_json(entries: typing.Iterable[LoginEntry]) -> str:
    return json.dumps([entry.to_dict() for entry in entries], ensure_ascii=False) + "\n"



def totp_to_json(totp: str) -> str:
    return json.dumps({"totp": totp}, ensure_ascii=False) + "\n"
