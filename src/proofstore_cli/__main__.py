from __future__ import annotations
import json
import random
from typing import List, Optional
import typer
from rich import print

from proofstore_api.crypto import to_hex
from proofstore_api.errors import ProofStoreError
from proofstore_api.logutil import setup_logging
from proofstore_api.merkle import MerkleTree, derive_path
from proofstore_api.models import TreeHead
from proofstore_api.pipeline import split_items
from proofstore_api.settings import settings

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _tree(text: str) -> MerkleTree:
    try:
        return MerkleTree.from_items(split_items(text))
    except ProofStoreError as e:
        raise typer.BadParameter(str(e))


@app.command()
def serve(
    host: str = typer.Option(settings.host, help="Interface to bind"),
    port: int = typer.Option(settings.port, help="TCP port to listen on"),
    log_level: str = typer.Option(settings.log_level, help="Logging level"),
):
    """Run the storage server (one thread per client connection)."""
    from proofstore_api.server import serve as _serve

    setup_logging(log_level)
    print(f"[green]Listening on {host}:{port}[/green]")
    try:
        _serve(host, port)
    except KeyboardInterrupt:
        print("[yellow]Server stopped[/yellow]")


@app.command()
def demo(
    host: str = typer.Option(settings.host),
    port: int = typer.Option(settings.port),
    message: str = typer.Option("No More Segmentation Faults", help="Data to store"),
    index: int = typer.Option(1, help="Index of the item to replace"),
    new_value: str = typer.Option("Less", help="Replacement item"),
    seed: Optional[int] = typer.Option(None, help="Seed for the audited index pair"),
    log_level: str = typer.Option(settings.log_level),
):
    """Store data, audit a random adjacent pair, then verify an update."""
    from proofstore_sdk.client import connect

    setup_logging(log_level)
    rng = random.Random(seed)
    try:
        session = connect(host, port, rng=rng)
    except OSError as e:
        print(f"[red]Failed to connect: {e}[/red]")
        raise typer.Exit(code=1)
    with session:
        report = session.run(message, index, new_value)
    print(report.model_dump())
    if report.error:
        print(f"[red]{report.error}[/red]")
        raise typer.Exit(code=1)
    print("[green]Roots match[/green]")


@app.command()
def root(text: str):
    """Print the tree size and Merkle root of TEXT's items."""
    tree = _tree(text)
    head = TreeHead(tree_size=tree.leaf_count, merkle_root_hex=to_hex(tree.root))
    typer.echo(json.dumps(head.model_dump(), indent=2))


@app.command()
def path(leaf_count: int, index: int):
    """Print the leaf-to-root directions for INDEX in a tree of LEAF_COUNT."""
    try:
        directions = derive_path(leaf_count, index)
    except (ValueError, IndexError) as e:
        raise typer.BadParameter(str(e))
    print([d.value for d in directions])


@app.command()
def prove(text: str, indices: List[int]):
    """Print the leaves and proof digests for INDICES of TEXT's items."""
    tree = _tree(text)
    try:
        proof = tree.proof(indices)
    except ProofStoreError as e:
        raise typer.BadParameter(str(e))
    print(
        {
            "root": to_hex(tree.root),
            "leaves": {i: to_hex(tree.leaves[i]) for i in sorted(set(indices))},
            "proof": [to_hex(h) for h in proof.hashes],
        }
    )


if __name__ == "__main__":
    app()
