"""Edit the encrypted store without leaving plaintext behind.

The store is decrypted into an owner-only scratch file, handed to an editor
and re-encrypted. The scratch file is removed on every way out: success,
editor failure, invalid content, failed encryption and SIGINT/SIGTERM/SIGHUP.
"""

import contextlib
import logging
import os
import shlex
import signal
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from . import secrets, store
from .age import Cipher
from .config import Config
from .errors import (
    EditInterrupted,
    EditorError,
    FileAccessError,
    MalformedStoreError,
    SecretsError,
)

log = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)
SCRATCH_PREFIX = "secrets-"
SCRATCH_SUFFIX = ".env"


@contextlib.contextmanager
def interrupt_on_signals() -> Iterator[None]:
    """Turn termination signals into EditInterrupted so cleanup code runs."""
    if threading.current_thread() is not threading.main_thread():
        # Handlers can only be installed from the main thread.
        yield
        return

    def handler(signum, frame):
        raise EditInterrupted(f"Edit interrupted by {signal.Signals(signum).name}")

    previous = {sig: signal.signal(sig, handler) for sig in HANDLED_SIGNALS}
    try:
        yield
    finally:
        for sig, old in previous.items():
            # None means the old handler was installed outside Python.
            signal.signal(sig, old if old is not None else signal.SIG_DFL)


@contextlib.contextmanager
def signals_blocked() -> Iterator[None]:
    """Hold termination signals until the block is done, then deliver them."""
    previous = signal.pthread_sigmask(signal.SIG_BLOCK, HANDLED_SIGNALS)
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)


@contextlib.contextmanager
def scratch_file(content: bytes, directory: Optional[Path] = None) -> Iterator[Path]:
    """A randomly named 0600 file holding content, deleted on exit."""
    path = None
    try:
        # Creation and removal finish before a pending signal is delivered.
        with signals_blocked():
            try:
                fd, name = tempfile.mkstemp(prefix=SCRATCH_PREFIX, suffix=SCRATCH_SUFFIX, dir=directory)
                path = Path(name)
                with os.fdopen(fd, "wb") as f:
                    os.fchmod(f.fileno(), 0o600)
                    f.write(content)
            except OSError as e:
                raise FileAccessError.wrap(e, path or Path(directory or tempfile.gettempdir())) from e
        log.debug("Created scratch file %s", path)
        yield path
    finally:
        with signals_blocked():
            if path is not None and path.exists():
                path.unlink()
        if path is not None:
            log.debug("Removed scratch file %s", path)


def run_editor(editor: str, path: Path) -> None:
    command = [*shlex.split(editor), str(path)]
    log.debug("Running editor %s", command[0])
    try:
        result = subprocess.run(command)
    except FileNotFoundError:
        raise EditorError(
            f"Editor not found: {command[0]}",
            hint="Set $EDITOR or pass --editor",
        )
    if result.returncode != 0:
        raise EditorError(f"Editor exited with status {result.returncode}")


class Editor:
    """One edit session: decrypt, edit, validate, re-encrypt."""

    def __init__(
        self,
        config: Config,
        cipher: Cipher,
        editor: Optional[str] = None,
        recipients: Iterable[str] = (),
        confirm: Optional[Callable[[str], bool]] = None,
    ):
        self.config = config
        self.cipher = cipher
        self.editor = editor or config.resolve_editor()
        self.recipients = list(recipients)
        self.confirm = confirm

    def original(self) -> bytes:
        """Current plaintext; a new store starts from the template."""
        if self.config.store.exists():
            return secrets.read_store(self.config, self.cipher)
        if self.config.template.exists():
            log.info("Starting new store from %s", self.config.template)
            return self.config.template.read_bytes()
        return b""

    def main(self) -> bool:
        """Run the session. Returns False when nothing changed."""
        original = self.original()

        with contextlib.ExitStack() as stack:
            stack.enter_context(interrupt_on_signals())
            path = stack.enter_context(scratch_file(original, self.config.scratch_dir))

            while True:
                run_editor(self.editor, path)
                edited = path.read_bytes()

                if edited == original:
                    log.info("No changes from original plaintext. Not updating.")
                    return False

                if not edited.strip():
                    raise SecretsError("Refusing to save an empty store")

                try:
                    store.validate(edited)
                except MalformedStoreError as e:
                    if self.confirm and self.confirm(str(e)):
                        continue
                    raise

                secrets.encrypt_store(edited, self.config, self.cipher, self.recipients)
                return True
