# cli.py
import sys
import logging
from typing import Optional

import click

from .config import VaultConfig, encode_key, load_key
from .crypto import CIPHERS, DEFAULT_CIPHER, generate_key
from .exceptions import FileVaultError
from .vault import FileVault, TransformResult

logger = logging.getLogger("filevault")


def _key_option(ctx, param, value: Optional[str]) -> Optional[bytes]:
    if value is None:
        return None
    try:
        return load_key(value)
    except ValueError as err:
        raise click.BadParameter(str(err)) from None


@click.group()
@click.option("--disk", help="Disk to operate on (default: FILEVAULT_DISK or 'local')")
@click.option("--key", callback=_key_option,
              help="Base64 encryption key (default: FILEVAULT_KEY)")
@click.option("--cipher", type=click.Choice(sorted(CIPHERS), case_sensitive=False),
              help="Cipher (default: FILEVAULT_CIPHER or AES-128-CBC)")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, disk, key, cipher, verbose):
    """Encrypt and decrypt files on local or S3 disks"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["options"] = {"disk": disk, "key": key, "cipher": cipher}


def _vault(ctx) -> FileVault:
    try:
        config = VaultConfig.from_env().replace(**ctx.obj["options"])
    except FileVaultError as err:
        raise click.ClickException(str(err)) from None
    return FileVault(config)


def _run(action, *args, **kwargs):
    try:
        return action(*args, **kwargs)
    except FileVaultError as err:
        raise click.ClickException(f"{type(err).__name__}: {err}") from None


def _report(result: TransformResult) -> None:
    click.echo(f"{result.operation.source} -> {result.operation.destination} "
               f"({result.stats.bytes_written} bytes)")
    if result.cleanup_error is not None:
        click.echo(f"Warning: {result.cleanup_error}", err=True)


@cli.command()
@click.argument("source")
@click.argument("destination", required=False)
@click.option("--keep-source", is_flag=True, help="Do not delete the source file")
@click.pass_context
def encrypt(ctx, source, destination, keep_source):
    """Encrypt SOURCE into DESTINATION (default SOURCE.enc)"""
    vault = _vault(ctx)
    _report(_run(vault.encrypt, source, destination, not keep_source))


@cli.command()
@click.argument("source")
@click.argument("destination", required=False)
@click.option("--keep-source", is_flag=True, help="Do not delete the source file")
@click.pass_context
def decrypt(ctx, source, destination, keep_source):
    """Decrypt SOURCE into DESTINATION (default SOURCE without .enc)"""
    vault = _vault(ctx)
    _report(_run(vault.decrypt, source, destination, not keep_source))


@cli.command("encrypt-copy")
@click.argument("source")
@click.argument("destination", required=False)
@click.pass_context
def encrypt_copy(ctx, source, destination):
    """Encrypt SOURCE and keep it"""
    vault = _vault(ctx)
    _report(_run(vault.encrypt_copy, source, destination))


@cli.command("decrypt-copy")
@click.argument("source")
@click.argument("destination", required=False)
@click.pass_context
def decrypt_copy(ctx, source, destination):
    """Decrypt SOURCE and keep it"""
    vault = _vault(ctx)
    _report(_run(vault.decrypt_copy, source, destination))


@cli.command("stream-decrypt")
@click.argument("source")
@click.pass_context
def stream_decrypt(ctx, source):
    """Write the plaintext of SOURCE to standard output"""
    vault = _vault(ctx)
    _run(vault.stream_decrypt, source, click.get_binary_stream("stdout"))


@cli.command("generate-key")
@click.option("--cipher", "key_cipher", type=click.Choice(sorted(CIPHERS), case_sensitive=False),
              default=DEFAULT_CIPHER, show_default=True)
def generate_key_cmd(key_cipher):
    """Print a new random key for CIPHER"""
    click.echo(encode_key(generate_key(key_cipher)))


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
