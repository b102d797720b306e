"""
age-secrets - an age encrypted KEY=value store for the shell.

Keep every secret in one encrypted file, sync it with git, and read it
back on any device that holds a matching age identity.

Features:
- lookup: Print one value (secrets API_KEY)
- list: Show available keys (no values)
- export / shell: Emit an env file or eval-able export statements
- edit: Change the store without leaving plaintext on disk
- rekey: Re-encrypt for every recipient in the manifest

Requires: age, age-keygen (and git for syncing)
"""

__version__ = "0.1.0"
