"""Shared fixtures: an isolated environment and a fake age."""

import base64
import uuid
from pathlib import Path

import pytest

from age_secrets.age import Cipher
from age_secrets.config import Config
from age_secrets.errors import AgeError, NoMatchingIdentityError


class FakeCipher(Cipher):
    """
    Reversible stand-in for age, so the suite runs without the binary.

    The "ciphertext" names its recipients in a header line; decryption only
    succeeds for an identity whose derived recipient is listed.
    """

    MAGIC = b"fake-age"

    def encrypt(self, plaintext, recipients):
        recipients = list(recipients)
        if not recipients:
            raise AgeError("Refusing to encrypt without recipients")
        return b"\n".join([self.MAGIC, " ".join(recipients).encode(), base64.b64encode(plaintext)])

    def decrypt(self, ciphertext, identity):
        magic, recipients, body = ciphertext.split(b"\n", 2)
        assert magic == self.MAGIC
        if self.recipient_for(identity) not in recipients.decode().split():
            raise NoMatchingIdentityError("Decryption failed: this identity is not a recipient of the store")
        return base64.b64decode(body)

    def recipient_for(self, identity):
        secret = identity.read_text().strip()
        return "fake1" + secret.rsplit("-", 1)[-1].lower()

    def generate_identity(self, path):
        path.write_text(f"FAKE-SECRET-KEY-{uuid.uuid4().hex}\n")
        return self.recipient_for(path)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep the real home directory and SECRETS_* settings out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    for var in (
        "SECRETS_FILE",
        "SECRETS_IDENTITY",
        "SECRETS_TEMPLATE",
        "SECRETS_RECIPIENTS",
        "SECRETS_EDITOR",
        "SECRETS_SCRATCH_DIR",
        "SECRETS_CONFIG",
        "SECRETS_DEBUG",
        "VISUAL",
        "EDITOR",
    ):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def cipher():
    return FakeCipher()


@pytest.fixture
def make_identity(tmp_path, cipher):
    """Create identity files; returns (path, recipient)."""

    def make(name="device"):
        path = tmp_path / "keys" / f"{name}.txt"
        path.parent.mkdir(exist_ok=True)
        recipient = cipher.generate_identity(path)
        path.chmod(0o600)
        return path, recipient

    return make


@pytest.fixture
def identity(make_identity):
    return make_identity("laptop")


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path, identity, scratch_dir):
    repo = tmp_path / "repo"
    repo.mkdir()
    return Config(
        store=repo / "secrets.env.age",
        identity=identity[0],
        template=repo / "secrets.env.template",
        recipients=repo / "recipients.yaml",
        scratch_dir=scratch_dir,
    )


@pytest.fixture
def seal(cipher, identity):
    """Write an encrypted store for the laptop identity (or given recipients)."""

    def write(path: Path, plaintext: str, recipients=None):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(cipher.encrypt(plaintext.encode(), recipients or [identity[1]]))
        return path

    return write


SCENARIO = "A=1\nB=two words\n#comment\n"


@pytest.fixture
def scenario_store(config, seal):
    seal(config.store, SCENARIO)
    return config.store
