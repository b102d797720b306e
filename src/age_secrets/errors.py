"""Exceptions raised by age-secrets.

Every error carries a ``hint`` that the CLI prints below the message, and the
exit code the CLI returns for it. Messages must never contain decrypted
content.
"""

from pathlib import Path
from typing import Optional


class SecretsError(Exception):
    """Base exception for secrets errors."""

    hint: Optional[str] = None
    exit_code = 1

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        if hint is not None:
            self.hint = hint


class IdentityNotFoundError(SecretsError):
    """No age identity at the configured location."""

    hint = "Generate one with: secrets --init"

    @classmethod
    def at(cls, path: Path) -> "IdentityNotFoundError":
        return cls(f"Identity file not found: {path}")


class StoreNotFoundError(SecretsError):
    """Encrypted store file not found."""

    hint = "Fetch it with 'secrets --pull' or create it with 'secrets --edit'"

    @classmethod
    def at(cls, path: Path) -> "StoreNotFoundError":
        return cls(f"Secrets file not found: {path}")


class NoMatchingIdentityError(SecretsError):
    """The identity is not among the recipients of the artifact."""

    hint = (
        "Use the right identity (-i) or ask a recipient to add your public key "
        "and run 'secrets --rekey'"
    )


class KeyNotFoundError(SecretsError):
    """Secret key not found."""

    hint = "Use 'secrets --list' to see available keys"
    exit_code = 3


class InsecurePermissionsError(SecretsError):
    """A sensitive file is readable by group or others."""

    @classmethod
    def at(cls, path: Path, mode: int) -> "InsecurePermissionsError":
        return cls(
            f"{path} is accessible by group or others (mode {mode:o})",
            hint=f"Fix with: chmod 600 {path}",
        )


class FileAccessError(SecretsError):
    """A file the secrets commands need can't be read or written."""

    @classmethod
    def wrap(cls, error: OSError, path: Path) -> "FileAccessError":
        if isinstance(error, IsADirectoryError):
            hint = f"Expected a file, found a directory: {path}"
        elif isinstance(error, PermissionError):
            hint = f"Check ownership and permissions: ls -l {path} (fix with chmod u+rw)"
        else:
            hint = f"Check that {path} is reachable and the disk is writable"
        return cls(f"Cannot access {path}: {error.strerror or error}", hint=hint)


class MalformedStoreError(SecretsError):
    """Plaintext is not a valid KEY=value store."""

    hint = "Fix the listed lines, or pass --raw to encrypt the file as-is"


class AgeError(SecretsError):
    """age or age-keygen failed."""


class AgeNotInstalledError(AgeError):
    """age or age-keygen is not on PATH."""

    hint = "Install age: https://github.com/FiloSottile/age"


class ManifestError(SecretsError):
    """Recipient manifest is unreadable or invalid."""


class EditorError(SecretsError):
    """The editor exited with an error."""

    hint = "Nothing was written; the encrypted store is unchanged"


class EditInterrupted(SecretsError):
    """The edit session was stopped by a signal."""

    hint = "Nothing was written; the temporary plaintext was removed"
    exit_code = 130


class SyncError(SecretsError):
    """git failed."""
