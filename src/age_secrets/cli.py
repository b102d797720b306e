"""CLI for age-secrets - an age encrypted KEY=value store."""

import argparse
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from . import secrets, sync
from .age import AgeCipher, Cipher
from .config import Config
from .edit import Editor
from .errors import FileAccessError, SecretsError
from .recipients import Manifest


console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)


def write(text: str) -> None:
    """Machine-readable output goes to stdout verbatim, never through rich."""
    sys.stdout.write(text)
    sys.stdout.flush()


def maybe_sync(args, config: Config, message: str) -> None:
    if not (args.sync or config.sync):
        return
    if sync.commit(config.store_dir, secrets.tracked_paths(config), message):
        console.print(f"[green]Synced:[/green] {escape(message)}")
    else:
        console.print("[dim]Nothing to sync[/dim]")


def cmd_get(args, config: Config, cipher: Cipher) -> int:
    """
    Print a single value.

    No trailing newline when piped, so $(secrets KEY) and
    `secrets KEY | pbcopy` get the exact value.
    """
    value = secrets.get_secret(args.key, config, cipher)
    write(value + ("\n" if sys.stdout.isatty() else ""))
    return 0


def cmd_list(args, config: Config, cipher: Cipher) -> int:
    """List all secret keys (values never shown)."""
    keys = secrets.list_keys(config, cipher)
    if not keys:
        err_console.print("[dim]No secrets found.[/dim]")
        return 0
    write("".join(f"{key}\n" for key in keys))
    return 0


def cmd_export(args, config: Config, cipher: Cipher) -> int:
    write(secrets.export_secrets(config, cipher))
    return 0


def cmd_shell(args, config: Config, cipher: Cipher) -> int:
    write(secrets.shell_secrets(config, cipher))
    return 0


def cmd_decrypt(args, config: Config, cipher: Cipher) -> int:
    write(secrets.decrypt_secrets(config, cipher))
    return 0


def cmd_encrypt(args, config: Config, cipher: Cipher) -> int:
    output = secrets.encrypt_file(
        args.encrypt,
        config,
        cipher,
        recipients=args.recipient,
        output=args.output,
        raw=args.raw,
    )
    console.print(f"[green]Encrypted:[/green] {escape(str(args.encrypt))} -> {escape(str(output))}")
    console.print(f"[dim]Delete the plaintext when done: rm {escape(str(args.encrypt))}[/dim]")
    return 0


def ask_reopen(problem: str) -> bool:
    """Offer to fix invalid content instead of losing the edit."""
    err_console.print(f"[red]Error:[/red] {escape(problem)}")
    if not sys.stdin.isatty():
        return False
    return Confirm.ask("Re-open the editor?", default=True, console=err_console)


def cmd_edit(args, config: Config, cipher: Cipher) -> int:
    """
    Edit the store in $EDITOR.

    The plaintext only exists in a 0600 scratch file for the length of the
    session and is removed however the session ends.
    """
    editor = Editor(config, cipher, editor=args.editor, recipients=args.recipient, confirm=ask_reopen)
    if not editor.main():
        console.print("[dim]No changes[/dim]")
        return 0

    console.print(f"[green]Saved:[/green] {escape(str(config.store))}")
    maybe_sync(args, config, "Update secrets")
    return 0


def cmd_rekey(args, config: Config, cipher: Cipher) -> int:
    """Re-encrypt the store for every recipient in the manifest."""
    recipients = secrets.rekey(config, cipher, recipients=args.recipient)
    console.print(f"[green]Re-encrypted:[/green] {escape(str(config.store))} for {len(recipients)} recipients")
    maybe_sync(args, config, "Re-encrypt secrets")
    return 0


def cmd_init(args, config: Config, cipher: Cipher) -> int:
    recipient = secrets.init_identity(config, cipher, name=args.init or None)
    console.print(f"[green]Created identity:[/green] {escape(str(config.identity))}")
    console.print(f"[cyan]Public key:[/cyan] {recipient.key}")
    console.print(f"[dim]Added '{escape(recipient.name)}' to {escape(str(config.recipients))}[/dim]")
    console.print("[dim]A device that can already decrypt must run 'secrets --rekey' to grant access[/dim]")
    return 0


def cmd_template(args, config: Config, cipher: Cipher) -> int:
    path = secrets.write_template(config, cipher)
    console.print(f"[green]Wrote template:[/green] {escape(str(path))}")
    return 0


def cmd_recipients(args, config: Config, cipher: Cipher) -> int:
    manifest = Manifest.load(config.recipients)
    if not len(manifest):
        console.print("[dim]No recipients in manifest.[/dim]")
        console.print("[dim]Add one with: secrets --add-recipient NAME KEY[/dim]")
        return 0

    table = Table(title="Recipients", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Public key")
    for recipient in manifest:
        table.add_row(escape(recipient.name), recipient.key)

    console.print(table)
    console.print(f"\n[dim]Total: {len(manifest)} recipients[/dim]")
    return 0


def cmd_add_recipient(args, config: Config, cipher: Cipher) -> int:
    name, key = args.add_recipient
    manifest = Manifest.load(config.recipients)
    manifest.add(name, key)
    manifest.save()
    console.print(f"[green]Added recipient:[/green] {escape(name)}")
    console.print("[dim]Run 'secrets --rekey' to encrypt the store for it[/dim]")
    return 0


def cmd_remove_recipient(args, config: Config, cipher: Cipher) -> int:
    manifest = Manifest.load(config.recipients)
    recipient = manifest.remove(args.remove_recipient)
    manifest.save()
    console.print(f"[green]Removed recipient:[/green] {escape(recipient.name)}")
    console.print("[dim]Run 'secrets --rekey' to encrypt the store without it[/dim]")
    err_console.print(
        "[yellow]Warning:[/yellow] copies encrypted before the rekey stay readable with the "
        "removed identity (including git history). Rotate any secret it may have seen."
    )
    return 0


def cmd_pull(args, config: Config, cipher: Cipher) -> int:
    output = sync.pull(config.store_dir)
    console.print(escape(output) if output else "[dim]Already up to date[/dim]")
    return 0


def cmd_status(args, config: Config, cipher: Cipher) -> int:
    """Show status and configuration."""
    console.print("[bold]secrets status[/bold]\n")

    table = Table(show_header=True)
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Path/Info", style="dim")

    for binary in (config.age, config.age_keygen):
        found = shutil.which(binary)
        table.add_row(
            binary,
            "[green]installed[/green]" if found else "[red]not found[/red]",
            found or "https://github.com/FiloSottile/age",
        )

    for name, path in (
        ("secrets file", config.store),
        ("template", config.template),
        ("recipients", config.recipients),
    ):
        table.add_row(
            name,
            "[green]exists[/green]" if path.exists() else "[yellow]not found[/yellow]",
            escape(str(path)),
        )

    if not config.identity.exists():
        identity_status = "[yellow]not found[/yellow]"
    else:
        try:
            secrets.check_permissions(config.identity)
            identity_status = "[green]exists[/green]"
        except SecretsError:
            identity_status = "[red]insecure permissions[/red]"
    table.add_row("identity", identity_status, escape(str(config.identity)))

    table.add_row(
        "git",
        "[green]repository[/green]" if sync.is_repository(config.store_dir) else "[yellow]not a repository[/yellow]",
        escape(str(config.store_dir)),
    )

    console.print(table)

    try:
        console.print(f"\n[dim]Recipients: {len(Manifest.load(config.recipients))}[/dim]")
    except SecretsError as e:
        console.print(f"\n[red]Cannot read recipients:[/red] {escape(str(e))}")

    if config.store.exists() and config.identity.exists():
        try:
            keys = secrets.list_keys(config, cipher)
            console.print(f"[dim]Secrets: {len(keys)} keys[/dim]")
        except SecretsError as e:
            console.print(f"[red]Cannot read secrets:[/red] {escape(str(e))}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secrets",
        description="age encrypted KEY=value secrets, synced with git",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  secrets API_KEY                      # Print one value
  secrets --list                       # List keys (no values)
  secrets --export > .env              # Write an env file
  eval "$(secrets -s)"                 # Export everything into this shell
  secrets --edit --sync                # Edit, re-encrypt, commit and push
  secrets --encrypt secrets.env        # Encrypt to secrets.env.age

Devices:
  secrets --init laptop                # Generate this device's identity
  secrets --add-recipient phone age1…  # Grant another identity access
  secrets --rekey                      # Re-encrypt for the manifest

Environment:
  SECRETS_FILE        Encrypted store (default: ~/.secrets/secrets.env.age)
  SECRETS_IDENTITY    age identity (default: ~/.config/age/key.txt)
  SECRETS_CONFIG      Config file (default: ~/.config/secrets/config.yaml)
  SECRETS_DEBUG       Enable debug logging
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("key", nargs="?", help="Print the value of KEY")
    actions.add_argument("-l", "--list", action="store_true", help="List keys only")
    actions.add_argument("--export", action="store_true", help="Print all KEY=value lines")
    actions.add_argument("-s", "--shell", action="store_true", help="Print shell export statements")
    actions.add_argument("-d", "--decrypt", action="store_true", help="Print the full decrypted file")
    actions.add_argument("--encrypt", type=Path, metavar="FILE", help="Encrypt FILE to FILE.age")
    actions.add_argument("--edit", action="store_true", help="Edit the store in $EDITOR")
    actions.add_argument("--rekey", action="store_true", help="Re-encrypt for the recipient manifest")
    actions.add_argument("--init", nargs="?", const="", metavar="NAME",
                         help="Generate an identity for this device")
    actions.add_argument("--template", action="store_true", help="Write the key template")
    actions.add_argument("--recipients", action="store_true", help="List recipients")
    actions.add_argument("--add-recipient", nargs=2, metavar=("NAME", "KEY"), help="Add a recipient")
    actions.add_argument("--remove-recipient", metavar="NAME", help="Remove a recipient")
    actions.add_argument("--status", action="store_true", help="Show status and configuration")
    actions.add_argument("--pull", action="store_true", help="git pull the store directory")

    parser.add_argument("-f", "--file", type=Path, help="Encrypted store")
    parser.add_argument("-i", "--identity", type=Path, help="age identity file")
    parser.add_argument("-c", "--config", type=Path, help="Config file")
    parser.add_argument("-r", "--recipient", action="append", default=[], metavar="KEY",
                        help="Recipient public key for --encrypt FILE (can repeat); store writes accept manifest keys only")
    parser.add_argument("-o", "--output", type=Path, help="Output path for --encrypt")
    parser.add_argument("--raw", action="store_true", help="Encrypt without validating KEY=value format")
    parser.add_argument("--editor", help="Editor command for --edit")
    parser.add_argument("--sync", action="store_true", help="Commit and push after writing")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


COMMANDS = (
    ("list", cmd_list),
    ("export", cmd_export),
    ("shell", cmd_shell),
    ("decrypt", cmd_decrypt),
    ("encrypt", cmd_encrypt),
    ("edit", cmd_edit),
    ("rekey", cmd_rekey),
    ("init", cmd_init),
    ("template", cmd_template),
    ("recipients", cmd_recipients),
    ("add_recipient", cmd_add_recipient),
    ("remove_recipient", cmd_remove_recipient),
    ("status", cmd_status),
    ("pull", cmd_pull),
    ("key", cmd_get),
)


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_time=False, show_path=False)],
    )


def main(argv: Optional[Sequence[str]] = None, cipher: Optional[Cipher] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.debug or bool(os.environ.get("SECRETS_DEBUG")))

    try:
        config = Config.load(
            config_file=args.config.expanduser() if args.config else None,
            store=args.file,
            identity=args.identity,
        )
        cipher = cipher or AgeCipher(config.age, config.age_keygen, config.armor)

        for dest, command in COMMANDS:
            value = getattr(args, dest)
            if value not in (None, False):
                return command(args, config, cipher)

        parser.print_help()
        return 0

    except OSError as e:
        # Anything not wrapped closer to the file operation.
        return report(FileAccessError.wrap(e, Path(e.filename or "?")))
    except SecretsError as e:
        return report(e)


def report(e: SecretsError) -> int:
    err_console.print(f"[red]Error:[/red] {escape(str(e))}")
    if e.hint:
        err_console.print(f"[dim]{escape(e.hint)}[/dim]")
    return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
