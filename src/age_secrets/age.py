"""The age encryption primitive.

Everything else in age-secrets talks to a ``Cipher``; ``AgeCipher`` is the
implementation that shells out to the ``age`` and ``age-keygen`` binaries.
Plaintext only ever travels over pipes, never through files.
"""

import logging
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import AgeError, AgeNotInstalledError, NoMatchingIdentityError

log = logging.getLogger(__name__)

# age prints this when none of the identities can unwrap a file key.
NO_MATCH_MARKER = "no identity matched any of the recipients"


class Cipher:
    """Encrypt to a set of recipients, decrypt with one identity."""

    def encrypt(self, plaintext: bytes, recipients: Iterable[str]) -> bytes:
        raise NotImplementedError("encrypt() not implemented")

    def decrypt(self, ciphertext: bytes, identity: Path) -> bytes:
        raise NotImplementedError("decrypt() not implemented")

    def recipient_for(self, identity: Path) -> str:
        """Derive the public key (recipient) of an identity file."""
        raise NotImplementedError("recipient_for() not implemented")

    def generate_identity(self, path: Path) -> str:
        """Write a new identity to path and return its public key."""
        raise NotImplementedError("generate_identity() not implemented")


class AgeCipher(Cipher):
    def __init__(self, age: str = "age", age_keygen: str = "age-keygen", armor: bool = False):
        self.age = age
        self.age_keygen = age_keygen
        self.armor = armor

    def _run(self, command: List[str], stdin: Optional[bytes] = None) -> subprocess.CompletedProcess:
        log.debug("Running %s %s", command[0], command[1])
        try:
            result = subprocess.run(command, input=stdin, capture_output=True)
        except FileNotFoundError:
            raise AgeNotInstalledError(f"{command[0]} not found in PATH")

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", "replace").strip()
            for line in stderr.splitlines():
                log.debug("%s: %s", command[0], line)
            if NO_MATCH_MARKER in stderr:
                raise NoMatchingIdentityError(
                    "Decryption failed: this identity is not a recipient of the store"
                )
            raise AgeError(f"{command[0]} failed: {stderr}")

        return result

    def encrypt(self, plaintext: bytes, recipients: Iterable[str]) -> bytes:
        recipients = list(recipients)
        if not recipients:
            raise AgeError("Refusing to encrypt without recipients")

        command = [self.age, "--encrypt"]
        if self.armor:
            command.append("--armor")
        for recipient in recipients:
            command.extend(["-r", recipient])

        log.debug("Encrypting %d bytes for %d recipients", len(plaintext), len(recipients))
        return self._run(command, stdin=plaintext).stdout

    def decrypt(self, ciphertext: bytes, identity: Path) -> bytes:
        log.debug("Decrypting %d bytes with %s", len(ciphertext), identity)
        return self._run([self.age, "--decrypt", "-i", str(identity)], stdin=ciphertext).stdout

    def recipient_for(self, identity: Path) -> str:
        result = self._run([self.age_keygen, "-y", str(identity)])
        # Identity files may hold several keys; the first one names the device.
        lines = result.stdout.decode().split()
        if not lines:
            raise AgeError(f"No public key could be derived from {identity}")
        return lines[0]

    def generate_identity(self, path: Path) -> str:
        self._run([self.age_keygen, "-o", str(path)])
        return self.recipient_for(path)
