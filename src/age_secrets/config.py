"""Configuration for age-secrets."""

import dataclasses
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import FileAccessError, SecretsError

log = logging.getLogger(__name__)

STORE_NAME = "secrets.env.age"
TEMPLATE_NAME = "secrets.env.template"
MANIFEST_NAME = "recipients.yaml"
ENCRYPTED_SUFFIX = ".age"

# Keys accepted in config.yaml, mapped to their environment variable.
ENV_VARS = {
    "store": "SECRETS_FILE",
    "identity": "SECRETS_IDENTITY",
    "template": "SECRETS_TEMPLATE",
    "recipients": "SECRETS_RECIPIENTS",
    "editor": "SECRETS_EDITOR",
    "scratch_dir": "SECRETS_SCRATCH_DIR",
}
PATH_KEYS = {"store", "identity", "template", "recipients", "scratch_dir"}
FILE_KEYS = set(ENV_VARS) | {"age", "age_keygen", "armor", "sync"}


def get_config_dir() -> Path:
    """Get config directory following XDG spec."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        base = Path(xdg_config)
    else:
        base = Path.home() / ".config"
    return base / "secrets"


def get_config_file() -> Path:
    env_file = os.environ.get("SECRETS_CONFIG")
    if env_file:
        return Path(env_file).expanduser()
    return get_config_dir() / "config.yaml"


def get_default_store_file() -> Path:
    """The store lives in its own directory so it can be a git checkout."""
    return Path.home() / ".secrets" / STORE_NAME


def get_default_identity_file() -> Path:
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config) if xdg_config else Path.home() / ".config"
    return base / "age" / "key.txt"


def get_default_scratch_dir() -> Optional[Path]:
    """Prefer a memory-backed tmpfs so edit sessions never touch the disk."""
    shm = Path("/dev/shm")
    if shm.is_dir() and os.access(shm, os.W_OK | os.X_OK):
        return shm
    return None


def read_config_file(path: Path) -> Dict[str, Any]:
    """Read config.yaml, returning {} when it doesn't exist."""
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise SecretsError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise FileAccessError.wrap(e, path) from e

    if not isinstance(data, dict):
        raise SecretsError(f"Config file {path} must contain a mapping")

    unknown = set(data) - FILE_KEYS
    if unknown:
        log.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(sorted(unknown)))

    # An empty value (`store:`) means "use the default", same as leaving it out.
    return {k: v for k, v in data.items() if k in FILE_KEYS and v is not None}


@dataclasses.dataclass
class Config:
    """Every path and tool the secrets commands need, resolved once per invocation."""

    store: Path
    identity: Path
    template: Path
    recipients: Path
    editor: Optional[str] = None
    scratch_dir: Optional[Path] = None
    age: str = "age"
    age_keygen: str = "age-keygen"
    armor: bool = False
    sync: bool = False

    @property
    def store_dir(self) -> Path:
        return self.store.parent

    @classmethod
    def load(cls, config_file: Optional[Path] = None, **overrides: Any) -> "Config":
        """
        Build the configuration.

        Precedence: overrides (CLI flags) > environment > config file > defaults.
        Overrides that are None are ignored.
        """
        config_file = config_file or get_config_file()
        values: Dict[str, Any] = read_config_file(config_file)

        for key, var in ENV_VARS.items():
            if os.environ.get(var):
                values[key] = os.environ[var]

        values.update({k: v for k, v in overrides.items() if v is not None})

        for key in PATH_KEYS & set(values):
            values[key] = Path(values[key]).expanduser()

        store = values.pop("store", None) or get_default_store_file()
        values.setdefault("identity", get_default_identity_file())
        values.setdefault("template", store.parent / TEMPLATE_NAME)
        values.setdefault("recipients", store.parent / MANIFEST_NAME)
        if "scratch_dir" not in values:
            values["scratch_dir"] = get_default_scratch_dir()
        if "armor" in values:
            values["armor"] = bool(values["armor"])
        if "sync" in values:
            values["sync"] = bool(values["sync"])

        config = cls(store=store, **values)
        log.debug("Loaded config: %s", config)
        return config

    def resolve_editor(self) -> str:
        return (
            self.editor
            or os.environ.get("VISUAL")
            or os.environ.get("EDITOR")
            or "vi"
        )
