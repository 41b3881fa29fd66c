#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
    File name: testFormatting.py

    Description:
        Tests for the command-line renderers: escape expansion, format tokens,
        and the JSON outputs.
"""

import json
import unittest
from kpxcpc.utilities.formatting import expand_escapes, format_entry, format_entries, entries_to_json, totp_to_json
from kpxcpc.handlers.action_handler import LoginEntry
from kpxcpc.handlers.error_handler import KeePassXCError, ClientCodes


ALICE = LoginEntry(
    login="alice",
    name="Example",
    password="hunter2",
    uuid="0f4e",
    string_fields=({"KPH: pin": "1234"}, {"note": "plain"}),
)

BOB = LoginEntry(login="bob", name="Example (bob)", password="pa55", uuid="77aa")


class TestExpandEscapes(unittest.TestCase):

    """
        Common C-style escapes are expanded.
    """
    def test_simple_escapes(self):

        self.assertEqual("%l\t%p\n", expand_escapes("%l\\t%p\\n"))
        self.assertEqual("a\\b", expand_escapes("a\\\\b"))
        self.assertEqual("say \"hi\"", expand_escapes("say \\\"hi\\\""))
        self.assertEqual("no escapes", expand_escapes("no escapes"))

    def test_numeric_escapes(self):
        self.assertEqual("Aé\U0001F511", expand_escapes("\\x41\\u00e9\\U0001F511"))
        self.assertEqual("A:\x00:\xff", expand_escapes("\\101:\\000:\\377"))
        self.assertEqual("A7", expand_escapes("\\1017"))

    """
        Unknown and dangling escapes are format errors.
    """
    def test_invalid_escapes(self):

        for bad in ("\\q", "\\x4", "end\\", "\\U00110000", "\\'", "\\400", "\\12", "\\0"):
            with self.subTest(bad=bad):
                with self.assertRaises(KeePassXCError) as cm:
                    expand_escapes(bad)
                self.assertEqual(ClientCodes.FORMAT_ERROR, cm.exception.application_code)

        # An escaped backslash at the end is fine
        self.assertEqual("end\\", expand_escapes("end\\\\"))


class TestFormatEntries(unittest.TestCase):

    """
        Each token is replaced with the matching entry field.
    """
    def test_tokens(self):

        self.assertEqual("Example|alice|hunter2|0f4e", format_entry("%n|%l|%p|%u", ALICE))

    """
        Custom fields are addressed without the "KPH: " prefix.
    """
    def test_string_fields(self):

        self.assertEqual("1234 plain", format_entry("%F:pin %F:note", ALICE))
        self.assertEqual("%F:missing", format_entry("%F:missing", ALICE))

    """
        Replacement is a single pass: %% yields a literal percent and values
        are never rescanned.
    """
    def test_single_pass(self):

        self.assertEqual("%p is hunter2", format_entry("%%p is %p", ALICE))
        self.assertEqual("%l", format_entry("%p", LoginEntry(password="%l", login="alice")))
        self.assertEqual("100% %x", format_entry("100% %x", ALICE))

    """
        Entries are rendered in order with no separator added.
    """
    def test_format_entries(self):

        self.assertEqual("hunter2\npa55\n", format_entries("%p\n", [ALICE, BOB]))
        self.assertEqual("hunter2pa55", format_entries("%p", [ALICE, BOB]))
        self.assertEqual("", format_entries("%p", []))


class TestJsonOutput(unittest.TestCase):

    def test_entries_to_json(self):

        text = entries_to_json([ALICE, BOB])

        self.assertTrue(text.endswith("\n"))
        decoded = json.loads(text)
        self.assertEqual(["alice", "bob"], [e["login"] for e in decoded])
        self.assertEqual([{"KPH: pin": "1234"}, {"note": "plain"}], decoded[0]["stringFields"])
        self.assertEqual([], decoded[1]["stringFields"])

    def test_totp_to_json(self):

        self.assertEqual({"totp": "123456"}, json.loads(totp_to_json("123456")))
        self.assertEqual('{"totp": ""}\n', totp_to_json(""))


if __name__ == "__main__":
    unittest.main()
