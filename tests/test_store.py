"""Tests for the KEY=value store format."""

import os
import shutil
import subprocess

import pytest

from age_secrets import store
from age_secrets.errors import KeyNotFoundError, MalformedStoreError


class TestParse:
    """Reading is lenient; the first entry for a key wins."""

    def test_scenario(self):
        """Comments are dropped, values keep their spaces."""
        entries = store.parse(b"A=1\nB=two words\n#comment\n")
        assert store.keys(entries) == ["A", "B"]
        assert store.lookup(entries, "B") == "two words"

    def test_value_may_contain_equals(self):
        entries = store.parse("URL=postgres://u:p@h/db?sslmode=require")
        assert store.lookup(entries, "URL") == "postgres://u:p@h/db?sslmode=require"

    def test_blank_lines_and_indented_comments(self):
        entries = store.parse("\n   \n  # note\nX=y\n")
        assert store.keys(entries) == ["X"]

    def test_export_prefix_accepted(self):
        entries = store.parse("export TOKEN=abc\n")
        assert store.lookup(entries, "TOKEN") == "abc"

    def test_value_kept_verbatim(self):
        entries = store.parse("A = 1\nB=\"quoted\"\n")
        assert store.lookup(entries, "A") == " 1"
        assert store.lookup(entries, "B") == '"quoted"'

    def test_crlf_line_endings(self):
        entries = store.parse(b"A=1\r\nB=2\r\n")
        assert store.lookup(entries, "A") == "1"
        assert store.lookup(entries, "B") == "2"

    def test_empty_value(self):
        assert store.lookup(store.parse("EMPTY=\n"), "EMPTY") == ""

    def test_first_duplicate_wins(self):
        entries = store.parse("A=first\nA=second\n")
        assert store.lookup(entries, "A") == "first"
        assert store.keys(entries) == ["A"]

    def test_malformed_lines_skipped(self, caplog):
        """Lenient parsing warns with line numbers, never content."""
        entries = store.parse("A=1\nnot-a-secret-value\n9BAD=x\n")
        assert store.keys(entries) == ["A"]
        assert "line 2" in caplog.text
        assert "line 3" in caplog.text
        assert "not-a-secret-value" not in caplog.text

    def test_entries_remember_line_numbers(self):
        entries = store.parse("# header\nA=1\n\nB=2\n")
        assert [e.line for e in entries] == [2, 4]

    def test_invalid_utf8(self):
        with pytest.raises(MalformedStoreError, match="UTF-8"):
            store.parse(b"A=\xff\n")


class TestValidate:
    """Anything about to be encrypted is parsed strictly."""

    def test_valid(self):
        assert len(store.validate("A=1\nB=2\n")) == 2

    def test_duplicate_rejected(self):
        with pytest.raises(MalformedStoreError) as excinfo:
            store.validate("A=1\nB=2\nA=3\n")
        assert "line 3: duplicate key A (first defined on line 1)" in str(excinfo.value)

    def test_missing_equals_rejected(self):
        with pytest.raises(MalformedStoreError, match="line 2: expected KEY=value"):
            store.validate("A=1\nhunter2\n")

    def test_error_never_contains_content(self):
        with pytest.raises(MalformedStoreError) as excinfo:
            store.validate("A=1\nsupersecretvalue\nbad key=other-secret\n")
        assert "supersecretvalue" not in str(excinfo.value)
        assert "other-secret" not in str(excinfo.value)

    def test_all_problems_reported(self):
        with pytest.raises(MalformedStoreError) as excinfo:
            store.validate("nope\nA=1\nA=2\n")
        message = str(excinfo.value)
        assert "line 1" in message
        assert "line 3" in message


class TestLookup:
    def test_case_sensitive(self):
        entries = store.parse("Token=a\n")
        with pytest.raises(KeyNotFoundError):
            store.lookup(entries, "TOKEN")

    def test_missing_key(self):
        with pytest.raises(KeyNotFoundError, match="Key not found: C"):
            store.lookup(store.parse("A=1\n"), "C")


class TestRender:
    def test_export(self):
        entries = store.parse("A=1\nB=two words\n#comment\n")
        assert store.export(entries) == "A=1\nB=two words\n"

    def test_export_matches_lookup(self):
        entries = store.parse("A=1\nB=x=y\nC= spaced \n")
        for line in store.export(entries).splitlines():
            key, value = line.split("=", 1)
            assert store.lookup(entries, key) == value

    def test_shell_quotes_values(self):
        entries = store.parse("A=1\nB=two words\nC=it's $HOME\n")
        assert store.shell(entries) == (
            "export A=1\n"
            "export B='two words'\n"
            "export C='it'\"'\"'s $HOME'\n"
        )

    def test_template(self):
        text = store.template(["A", "B"])
        assert text.startswith("#")
        assert text.endswith("A=\nB=\n")
        assert store.keys(store.validate(text)) == ["A", "B"]


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
class TestShellEval:
    """Evaluating shell() output sets exactly the exported values."""

    VALUES = {
        "PLAIN": "abc",
        "SPACES": "two  words here",
        "SINGLE": "it's",
        "DOUBLE": 'say "hi"',
        "DOLLAR": "$HOME and ${PATH} and $(id)",
        "BACKTICK": "`uname`",
        "SEMI": "a; echo pwned",
        "EMPTY": "",
        "EQUALS": "a=b=c",
    }

    def test_eval_round_trip(self):
        text = "".join(f"{k}={v}\n" for k, v in self.VALUES.items())
        entries = store.parse(text)
        script = store.shell(entries) + "".join(
            f'printf "%s\\0" "${k}"\n' for k in self.VALUES
        )
        result = subprocess.run(
            ["sh", "-c", script],
            capture_output=True,
            env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")},
            check=True,
        )
        values = result.stdout.decode().split("\0")[:-1]
        assert values == list(self.VALUES.values())
        # The SEMI value prints back as data: no extra field from a second command.
        assert len(values) == len(self.VALUES)
