"""The recipient manifest: who the store is encrypted for.

age files do not reveal their recipients, so the public keys the store is
sealed for are tracked in ``recipients.yaml`` next to the store and committed
with it::

    version: 1
    recipients:
      - name: laptop
        key: age1...
"""

import logging
import os
from pathlib import Path
from typing import List, NamedTuple

import yaml

from .errors import FileAccessError, ManifestError

log = logging.getLogger(__name__)

MANIFEST_VERSION = 1


class Recipient(NamedTuple):
    name: str
    key: str


class Manifest:
    def __init__(self, path: Path, recipients: List[Recipient] = None):
        self.path = path
        self.recipients: List[Recipient] = list(recipients or [])

    def __iter__(self):
        return iter(self.recipients)

    def __len__(self):
        return len(self.recipients)

    @property
    def keys(self) -> List[str]:
        return [r.key for r in self.recipients]

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        """Load a manifest; a missing file is an empty manifest."""
        if not path.exists():
            log.debug("No recipient manifest at %s", path)
            return cls(path)

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise FileAccessError.wrap(e, path) from e

        if not isinstance(data, dict):
            raise ManifestError(f"Recipient manifest {path} must contain a mapping")

        version = data.get("version")
        if version != MANIFEST_VERSION:
            raise ManifestError(
                f"Unsupported recipient manifest version {version!r} in {path} "
                f"(expected {MANIFEST_VERSION})"
            )

        manifest = cls(path)
        for item in data.get("recipients") or []:
            if not isinstance(item, dict) or not item.get("name") or not item.get("key"):
                raise ManifestError(f"Every recipient in {path} needs a name and a key")
            manifest.add(str(item["name"]), str(item["key"]))

        log.debug("Loaded %d recipients from %s", len(manifest), path)
        return manifest

    def save(self) -> None:
        data = {
            "version": MANIFEST_VERSION,
            "recipients": [{"name": r.name, "key": r.key} for r in self.recipients],
        }
        temp_file = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(temp_file, self.path)
        except OSError as e:
            raise FileAccessError.wrap(e, self.path) from e
        finally:
            if temp_file.exists():
                temp_file.unlink()
        log.info("Saved %d recipients to %s", len(self), self.path)

    def add(self, name: str, key: str) -> Recipient:
        key = key.strip()
        if not name or not key or len(key.split()) != 1:
            raise ManifestError("A recipient needs a name and a single public key")

        for recipient in self.recipients:
            if recipient.name == name:
                raise ManifestError(f"Recipient already exists: {name}")
            if recipient.key == key:
                raise ManifestError(f"Key is already listed as recipient {recipient.name}")

        recipient = Recipient(name, key)
        self.recipients.append(recipient)
        return recipient

    def remove(self, name: str) -> Recipient:
        for recipient in self.recipients:
            if recipient.name == name:
                self.recipients.remove(recipient)
                return recipient
        raise ManifestError(f"No recipient named {name}", hint="List them with: secrets --recipients")
