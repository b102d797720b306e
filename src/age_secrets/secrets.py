"""Core secrets management functionality."""

import logging
import os
import socket
import stat
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional

from . import store
from .age import Cipher
from .config import ENCRYPTED_SUFFIX, Config
from .errors import (
    FileAccessError,
    IdentityNotFoundError,
    InsecurePermissionsError,
    SecretsError,
    StoreNotFoundError,
)
from .recipients import Manifest, Recipient

log = logging.getLogger(__name__)


def check_permissions(path: Path) -> None:
    """Refuse files that group or others can access."""
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except OSError as e:
        raise FileAccessError.wrap(e, path) from e
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        raise InsecurePermissionsError.at(path, mode)


def load_identity(config: Config) -> Path:
    if not config.identity.exists():
        raise IdentityNotFoundError.at(config.identity)
    check_permissions(config.identity)
    if not os.access(config.identity, os.R_OK):
        raise FileAccessError.wrap(PermissionError(13, "Permission denied"), config.identity)
    return config.identity


def read_store(config: Config, cipher: Cipher) -> bytes:
    """Decrypt the store in memory. Nothing is written to disk."""
    if not config.store.exists():
        raise StoreNotFoundError.at(config.store)

    identity = load_identity(config)
    try:
        ciphertext = config.store.read_bytes()
    except OSError as e:
        raise FileAccessError.wrap(e, config.store) from e
    plaintext = cipher.decrypt(ciphertext, identity)
    log.debug("Decrypted %s", config.store)
    return plaintext


def decrypt_secrets(config: Config, cipher: Cipher) -> str:
    """The full decrypted store, comments included."""
    return store.decode(read_store(config, cipher))


def load_entries(config: Config, cipher: Cipher) -> List[store.Entry]:
    return store.parse(read_store(config, cipher))


def list_keys(config: Config, cipher: Cipher) -> List[str]:
    """List all secret keys in store order (values are never returned)."""
    return store.keys(load_entries(config, cipher))


def get_secret(key: str, config: Config, cipher: Cipher) -> str:
    return store.lookup(load_entries(config, cipher), key)


def export_secrets(config: Config, cipher: Cipher) -> str:
    return store.export(load_entries(config, cipher))


def shell_secrets(config: Config, cipher: Cipher) -> str:
    return store.shell(load_entries(config, cipher))


def _dedup(keys: Iterable[str]) -> List[str]:
    unique: List[str] = []
    for key in keys:
        if key not in unique:
            unique.append(key)
    return unique


def resolve_recipients(config: Config, cipher: Cipher, extra: Iterable[str] = ()) -> List[str]:
    """
    The recipient set for a one-off encryption (--encrypt FILE).

    Manifest recipients plus any given on the command line. With neither,
    fall back to the local identity's own public key.
    """
    recipients = _dedup([*Manifest.load(config.recipients).keys, *extra])
    if recipients:
        return recipients

    if not config.identity.exists():
        raise IdentityNotFoundError(
            f"No recipients configured and no identity at {config.identity}",
            hint="Pass -r RECIPIENT, add one with --add-recipient, or run: secrets --init",
        )
    return [cipher.recipient_for(load_identity(config))]


def store_recipients(config: Config, cipher: Cipher, extra: Iterable[str] = ()) -> List[str]:
    """
    The recipient set for the store.

    Only manifest recipients are used, so the next edit or rekey seals for
    the same set. Keys given with -r must already be in the manifest. The
    local identity is always included when one exists: the device that
    writes the store can always read it back.
    """
    manifest = Manifest.load(config.recipients)
    unlisted = [key for key in extra if key not in manifest.keys]
    if unlisted:
        raise SecretsError(
            f"{len(unlisted)} recipient(s) given with -r are not in {config.recipients}",
            hint="Add them to the manifest first: secrets --add-recipient NAME KEY",
        )

    recipients = list(manifest.keys)
    if config.identity.exists():
        own = cipher.recipient_for(load_identity(config))
        if own not in recipients:
            if recipients:
                log.warning(
                    "This device's key is not in %s; sealing for it anyway", config.recipients
                )
            recipients.insert(0, own)

    if not recipients:
        raise IdentityNotFoundError(
            f"No recipients configured and no identity at {config.identity}",
            hint="Run 'secrets --init' or add one with --add-recipient",
        )
    return _dedup(recipients)


def write_atomic(path: Path, data: bytes) -> None:
    """Write data next to path and rename it into place only once complete."""
    temp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_name, 0o644)
        os.replace(temp_name, path)
    except OSError as e:
        raise FileAccessError.wrap(e, path.parent if temp_name is None else path) from e
    finally:
        if temp_name is not None and os.path.exists(temp_name):
            os.unlink(temp_name)


def encrypt_store(plaintext: bytes, config: Config, cipher: Cipher, recipients: Iterable[str] = ()) -> List[str]:
    """Validate plaintext and atomically replace the store with its encryption."""
    entries = store.validate(plaintext)
    sealed_for = store_recipients(config, cipher, recipients)
    write_atomic(config.store, cipher.encrypt(plaintext, sealed_for))
    log.info("Encrypted %d secrets for %d recipients", len(entries), len(sealed_for))
    return sealed_for


def encrypt_file(
    path: Path,
    config: Config,
    cipher: Cipher,
    recipients: Iterable[str] = (),
    output: Optional[Path] = None,
    raw: bool = False,
) -> Path:
    """Encrypt a plaintext file to FILE.age (or output)."""
    if not path.is_file():
        raise SecretsError(f"File not found: {path}")

    try:
        plaintext = path.read_bytes()
    except OSError as e:
        raise FileAccessError.wrap(e, path) from e
    if not raw:
        store.validate(plaintext)

    output = output or path.with_name(path.name + ENCRYPTED_SUFFIX)
    if output.resolve() == path.resolve():
        raise SecretsError("Refusing to overwrite the plaintext with its own encryption")

    sealed_for = resolve_recipients(config, cipher, recipients)
    write_atomic(output, cipher.encrypt(plaintext, sealed_for))
    log.info("Encrypted %s to %s for %d recipients", path, output, len(sealed_for))
    return output


def rekey(config: Config, cipher: Cipher, recipients: Iterable[str] = ()) -> List[str]:
    """Re-encrypt the store for the current recipient set."""
    plaintext = read_store(config, cipher)
    return encrypt_store(plaintext, config, cipher, recipients)


def init_identity(config: Config, cipher: Cipher, name: Optional[str] = None) -> Recipient:
    """Generate this device's identity and list it in the manifest."""
    if config.identity.exists():
        raise SecretsError(
            f"Identity already exists: {config.identity}",
            hint=f"Show its public key with: age-keygen -y {config.identity}",
        )

    name = name or socket.gethostname()
    manifest = Manifest.load(config.recipients)
    if name in (r.name for r in manifest):
        raise SecretsError(
            f"Recipient already exists: {name}",
            hint="Pick another device name: secrets --init NAME",
        )

    config.identity.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    public_key = cipher.generate_identity(config.identity)
    os.chmod(config.identity, 0o600)
    log.info("Generated identity %s", config.identity)

    recipient = manifest.add(name, public_key)
    manifest.save()
    return recipient


def write_template(config: Config, cipher: Cipher) -> Path:
    """Write the plaintext template listing the store's keys."""
    content = store.template(list_keys(config, cipher))
    write_atomic(config.template, content.encode())
    return config.template


def tracked_paths(config: Config) -> List[Path]:
    """Files that belong in git: never anything holding plaintext values."""
    return [config.store, config.recipients, config.template]
