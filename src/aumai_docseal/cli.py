"""CLI entry point for aumai-docseal."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click

from aumai_docseal.certificates import parse_certificate, parse_sod
from aumai_docseal.circuit_inputs import extract_dg1
from aumai_docseal.dispatcher import classify, dispatcher_data_type
from aumai_docseal.errors import DocsealError, TrustChainError
from aumai_docseal.identity import Identity
from aumai_docseal.models import Certificate
from aumai_docseal.trust_tree import DEFAULT_DEPTH, TrustTree, prove_inclusion, verify_inclusion

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fail(exc: Exception) -> NoReturn:
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


def _load_certificate(path: str) -> Certificate:
    return parse_certificate(Path(path).read_bytes())


def _load_roots(paths: tuple[str, ...], directory: str | None) -> list[Certificate]:
    files = [Path(p) for p in paths]
    if directory is not None:
        files.extend(
            sorted(
                p for p in Path(directory).iterdir()
                if p.suffix.lower() in (".der", ".cer", ".crt", ".pem")
            )
        )
    return [parse_certificate(p.read_bytes()) for p in files]


def _parse_data_group(value: str) -> tuple[int, str]:
    number, sep, path = value.partition("=")
    if not sep or not number.isdigit():
        raise click.BadParameter(f"expected N=PATH, got {value!r}")
    return int(number), path


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """AumAI DocSeal: ePassport / eID verification for ZK identity registration."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@main.command("classify")
@click.option("--cert", "cert_path", required=True, metavar="PATH", help="DER or PEM certificate.")
def classify_command(cert_path: str) -> None:
    """Print the circuit dispatcher name for a certificate's key."""
    try:
        certificate = _load_certificate(cert_path)
        name = classify(certificate)
    except (DocsealError, OSError) as exc:
        _fail(exc)

    click.echo(f"Dispatcher : {name}")
    click.echo(f"Data type  : 0x{dispatcher_data_type(name).hex()}")


@main.command("tree-root")
@click.option("--root", "root_paths", multiple=True, metavar="PATH", help="Trusted root certificate.")
@click.option("--roots-dir", default=None, metavar="DIR", help="Directory of trusted root certificates.")
@click.option("--depth", default=DEFAULT_DEPTH, show_default=True, help="Maximum tree depth.")
@click.option("--expect", "expected", default=None, metavar="HEX", help="Published root to compare with.")
def tree_root_command(
    root_paths: tuple[str, ...], roots_dir: str | None, depth: int, expected: str | None
) -> None:
    """Build the trust tree over root certificates and print its root."""
    try:
        tree = TrustTree.build(_load_roots(root_paths, roots_dir), depth)
        root = tree.root()
    except (DocsealError, OSError, ValueError) as exc:
        _fail(exc)

    click.echo(f"Root   : 0x{root.hex()}")
    click.echo(f"Leaves : {len(tree)}")
    if expected is not None:
        if expected.lower().removeprefix("0x") != root.hex():
            click.echo("Published root: MISMATCH", err=True)
            sys.exit(2)
        click.echo("Published root: MATCH")


@main.command("prove-inclusion")
@click.option("--root", "root_paths", multiple=True, metavar="PATH", help="Trusted root certificate.")
@click.option("--roots-dir", default=None, metavar="DIR", help="Directory of trusted root certificates.")
@click.option("--cert", "cert_path", required=True, metavar="PATH", help="Certificate to prove.")
@click.option("--depth", default=DEFAULT_DEPTH, show_default=True, help="Maximum tree depth.")
def prove_inclusion_command(
    root_paths: tuple[str, ...], roots_dir: str | None, cert_path: str, depth: int
) -> None:
    """Emit a JSON inclusion proof for a certificate in the trust tree."""
    try:
        tree = TrustTree.build(_load_roots(root_paths, roots_dir), depth)
        proof = prove_inclusion(tree, _load_certificate(cert_path))
    except TrustChainError as exc:
        click.echo(f"Not trusted: {exc}", err=True)
        sys.exit(2)
    except (DocsealError, OSError, ValueError) as exc:
        _fail(exc)

    if not verify_inclusion(proof, tree.root()):
        click.echo("Proof does not recompute to the tree root", err=True)
        sys.exit(2)
    click.echo(proof.model_dump_json(indent=2))


@main.command("inspect-sod")
@click.option("--sod", "sod_path", required=True, metavar="PATH", help="EF.SOD file.")
@click.option(
    "--data-group",
    "data_groups",
    multiple=True,
    metavar="N=PATH",
    help="Verify a data group file against the SOD hash (repeatable).",
)
@click.option("--json-output", is_flag=True, help="Emit raw JSON.")
def inspect_sod_command(sod_path: str, data_groups: tuple[str, ...], json_output: bool) -> None:
    """Display a Security Object Document and optionally check data groups."""
    try:
        sod = parse_sod(Path(sod_path).read_bytes())
        checks = [_parse_data_group(value) for value in data_groups]
        results = [
            (number, sod.verify_data_group(number, Path(path).read_bytes()))
            for number, path in checks
        ]
    except (DocsealError, OSError) as exc:
        _fail(exc)

    if json_output:
        click.echo(sod.model_dump_json(indent=2))
    else:
        signer = sod.signing_certificate
        click.echo(f"Digest       : {sod.digest_algorithm}")
        click.echo(f"Data groups  : {', '.join(str(n) for n in sorted(sod.data_group_hashes))}")
        click.echo(f"Signer       : {signer.subject}")
        click.echo(f"Issuer       : {signer.issuer}")
        click.echo(f"Expires      : {signer.not_after.isoformat()}")
        click.echo(f"Index        : 0x{sod.certificate_index.hex()}")
        try:
            click.echo(f"Dispatcher   : {classify(signer)}")
        except DocsealError as exc:
            click.echo(f"Dispatcher   : unsupported ({exc})")

    failed = False
    for number, ok in results:
        status = "OK" if ok else "FAIL"
        click.echo(f"  [{status}] DG{number}")
        failed = failed or not ok
    if failed:
        click.echo("One or more data groups failed verification.", err=True)
        sys.exit(2)


@main.command("dg1")
@click.option("--cert", "cert_path", required=True, metavar="PATH", help="Identity record certificate.")
def dg1_command(cert_path: str) -> None:
    """Print the 108-byte DG1 record extracted from an identity certificate."""
    try:
        dg1 = extract_dg1(_load_certificate(cert_path).tbs)
    except (DocsealError, OSError) as exc:
        _fail(exc)
    click.echo(dg1.hex())


@main.command("inspect-identity")
@click.option("--identity", "identity_path", required=True, metavar="PATH", help="Serialized identity.")
@click.option("--json-output", is_flag=True, help="Emit the derived fields as JSON.")
def inspect_identity_command(identity_path: str, json_output: bool) -> None:
    """Display the derived fields of a serialized identity."""
    try:
        identity = Identity.deserialize(Path(identity_path).read_text(encoding="utf-8"))
    except (DocsealError, OSError) as exc:
        _fail(exc)

    derived = {
        "kind": identity.document.kind,
        "identity_key": identity.identity_key,
        "public_key": identity.public_key,
        "passport_hash": identity.passport_hash,
        "dg1_commitment": identity.dg1_commitment,
        "passport_info_key": "0x" + identity.passport_info_key().hex(),
    }
    if json_output:
        click.echo(json.dumps(derived, indent=2))
        return
    for name, value in derived.items():
        click.echo(f"{name:<18}: {value}")


if __name__ == "__main__":
    main()
