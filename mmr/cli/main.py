"""
mmr.cli.main
============

Command line access to an MMR kept in a KV database.

Examples:
  mmr --db sqlite:///mmr.db append 0xdeadbeef "hello"
  mmr --db sqlite:///mmr.db info
  mmr --db sqlite:///mmr.db prove 1 --out proof.json
  mmr verify proof.json --root 0x... --leaf hello

Payload arguments starting with ``0x`` are taken as hex bytes, anything else
as UTF-8 text bytes. ``--db`` / ``--archive`` / ``--hasher`` default to
MMR_DB / MMR_ARCHIVE_DB / MMR_HASHER.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import logging as mlog
from ..accumulator import MountainRange
from ..config import load_config
from ..db import open_kv
from ..errors import MMRError
from ..hasher import get_hasher
from ..metrics import get_metrics
from ..node import Data, deserialize, serialize
from ..proofs import Proof
from ..storage import KVArchive, NodeStore
from ..utils.bytes import bytes_to_hex, hex_to_bytes
from ..verify import verify as verify_proof
from ..version import __version__

app = typer.Typer(
    name="mmr",
    help="Append to, inspect and prove against a Merkle Mountain Range.",
    no_args_is_help=True,
    add_completion=False,
)


@dataclass
class _Opts:
    db: str
    archive: str
    hasher: str
    json_out: bool
    keep_leaf_data: bool
    indexing_prefix: bytes


def _opts(ctx: typer.Context) -> _Opts:
    return ctx.obj


def _parse_payload(s: str) -> bytes:
    if s[:2].lower() == "0x":
        return hex_to_bytes(s)
    return s.encode("utf-8")


def _open_range(o: _Opts) -> MountainRange:
    hasher = get_hasher(o.hasher)
    kv = open_kv(o.db)
    akv = kv if o.archive == o.db else open_kv(o.archive)
    return MountainRange(
        NodeStore(kv, hasher_name=hasher.name),
        archive=KVArchive(akv, indexing_prefix=o.indexing_prefix),
        hasher=hasher,
        keep_leaf_data=o.keep_leaf_data,
        metrics=get_metrics(),
    )


def _fail(o: _Opts, err: MMRError) -> None:
    if o.json_out:
        typer.echo(json.dumps({"ok": False, "error": err.to_dict()}, sort_keys=True))
    else:
        typer.secho(f"error: {err}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


def _leaf_json(leaf: Data) -> Dict[str, Any]:
    if isinstance(leaf.payload, bytes):
        return {"leaf": bytes_to_hex(leaf.payload)}
    return {"leafCbor": bytes_to_hex(serialize(leaf.payload))}


def _emit(o: _Opts, out: Dict[str, Any], title: str) -> None:
    if o.json_out:
        typer.echo(json.dumps(out, indent=2, sort_keys=True))
        return
    grid = Table.grid(padding=(0, 2))
    for k, v in out.items():
        grid.add_row(k, ", ".join(map(str, v)) if isinstance(v, list) else str(v))
    Console().print(Panel(grid, title=title, expand=False))


# --------------------------------------------------------------------------- #
# Commands
# --------------------------------------------------------------------------- #


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"animica-mmr {__version__}")
        raise typer.Exit(0)


@app.callback()
def _main(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(None, "--db", help="Node store URI (memory:// or sqlite:///path.db)."),
    archive: Optional[str] = typer.Option(None, "--archive", help="Side archive URI (defaults to --db)."),
    hasher: Optional[str] = typer.Option(None, "--hasher", help="sha3_256 | blake2b_256 | keccak_256"),
    json_out: bool = typer.Option(False, "--json", help="Machine-readable JSON output."),
    keep_leaf_data: Optional[bool] = typer.Option(
        None, "--keep-leaf-data/--no-keep-leaf-data", help="Store full leaves in the node store."
    ),
    version: bool = typer.Option(
        False, "--version", "-V", help="Print version and exit", is_eager=True, callback=_print_version
    ),
) -> None:
    try:
        cfg = load_config()
    except MMRError as e:
        typer.secho(f"config error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2)
    mlog.configure(json=None if cfg.log_format is None else cfg.log_format == "json", level=cfg.log_level)
    db_uri = db or cfg.db_uri
    ctx.obj = _Opts(
        db=db_uri,
        archive=archive or (db_uri if db else cfg.archive_uri),
        hasher=hasher or cfg.hasher,
        json_out=json_out,
        keep_leaf_data=cfg.keep_leaf_data if keep_leaf_data is None else keep_leaf_data,
        indexing_prefix=cfg.indexing_prefix,
    )


@app.command("append")
def append_cmd(
    ctx: typer.Context,
    payloads: List[str] = typer.Argument(..., help="Leaf payloads (0x-hex or text)."),
) -> None:
    """Append one leaf per payload."""
    o = _opts(ctx)
    try:
        mmr = _open_range(o)
        positions = [mmr.append(_parse_payload(p)) for p in payloads]
        out = {
            "positions": positions,
            "leafCount": mmr.leaf_count(),
            "size": mmr.size(),
            "root": bytes_to_hex(mmr.root()),
        }
    except MMRError as e:
        _fail(o, e)
        return
    except ValueError as e:
        raise typer.BadParameter(str(e))
    _emit(o, out, "Appended")


@app.command("info")
def info_cmd(ctx: typer.Context) -> None:
    """Leaf count, node count and root."""
    o = _opts(ctx)
    try:
        mmr = _open_range(o)
        out = {
            "hasher": mmr.hasher.name,
            "leafCount": mmr.leaf_count(),
            "size": mmr.size(),
            "root": bytes_to_hex(mmr.root()),
        }
    except MMRError as e:
        _fail(o, e)
        return
    _emit(o, out, "MMR")


@app.command("peaks")
def peaks_cmd(ctx: typer.Context) -> None:
    """Peak positions and digests, tallest first."""
    o = _opts(ctx)
    try:
        mmr = _open_range(o)
        rows = [
            {"position": p, "digest": bytes_to_hex(d)}
            for p, d in zip(mmr.peaks(), mmr.peak_digests())
        ]
    except MMRError as e:
        _fail(o, e)
        return
    if o.json_out:
        typer.echo(json.dumps({"peaks": rows}, indent=2, sort_keys=True))
        return
    t = Table(title="Peaks", box=box.SIMPLE)
    t.add_column("Position", justify="right")
    t.add_column("Digest")
    for r in rows:
        t.add_row(str(r["position"]), r["digest"])
    Console().print(t)


@app.command("prove")
def prove_cmd(
    ctx: typer.Context,
    leaf_index: int = typer.Argument(..., help="Leaf index to prove."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the proof (.json or .cbor)."),
) -> None:
    """Generate an inclusion proof against the current root."""
    o = _opts(ctx)
    try:
        mmr = _open_range(o)
        leaf, proof = mmr.generate_proof(leaf_index)
        root = mmr.root()
    except MMRError as e:
        _fail(o, e)
        return
    if out is not None:
        if out.suffix.lower() == ".cbor":
            out.write_bytes(proof.to_bytes())
        else:
            out.write_text(proof.to_json() + "\n", encoding="utf-8")
    result: Dict[str, Any] = {"root": bytes_to_hex(root), "proof": proof.to_dict(), **_leaf_json(leaf)}
    if o.json_out:
        typer.echo(json.dumps(result, indent=2, sort_keys=True))
        return
    flat = {k: v for k, v in result.items() if k != "proof"}
    flat.update({"leafIndex": proof.leaf_index, "leafCount": proof.leaf_count, "items": list(result["proof"]["items"])})
    _emit(o, flat, "Proof")


def _load_proof(path: Path) -> Proof:
    data = path.read_bytes()
    if path.suffix.lower() == ".json" or data.lstrip()[:1] == b"{":
        return Proof.from_json(data)
    return Proof.from_bytes(data)


@app.command("verify")
def verify_cmd(
    ctx: typer.Context,
    proof_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Proof file (.json or .cbor)."),
    root: str = typer.Option(..., "--root", help="Claimed root (0x-hex)."),
    leaf: Optional[str] = typer.Option(None, "--leaf", help="Leaf payload (0x-hex or text)."),
    leaf_cbor: Optional[str] = typer.Option(None, "--leaf-cbor", help="Leaf payload as canonical CBOR hex."),
) -> None:
    """Check a proof without opening any store."""
    o = _opts(ctx)
    if (leaf is None) == (leaf_cbor is None):
        raise typer.BadParameter("give exactly one of --leaf / --leaf-cbor")
    try:
        root_b = hex_to_bytes(root)
        payload = _parse_payload(leaf) if leaf is not None else deserialize(hex_to_bytes(leaf_cbor or ""))
    except ValueError as e:
        raise typer.BadParameter(str(e))
    try:
        proof = _load_proof(proof_file)
        verify_proof(root_b, Data(payload), proof, hasher=get_hasher(o.hasher), metrics=get_metrics())
    except MMRError as e:
        _fail(o, e)
        return
    _emit(o, {"ok": True, "leafIndex": proof.leaf_index, "leafCount": proof.leaf_count}, "Verified")


def main(argv: Optional[List[str]] = None) -> None:
    app(args=argv)


if __name__ == "__main__":  # pragma: no cover
    main()
