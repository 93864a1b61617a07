"""
gperm CLI — granular file permission tooling.

Commands:
  gperm tree        - Build a membership tree from identifiers, print its root
  gperm proof       - Print the proof bytes and key-tree key for an identifier
  gperm keygen      - Create (or show) the OPRF server evaluation key
  gperm serve       - Start the OPRF evaluation HTTP server
  gperm permission  - Read a file's on-chain permission record
  gperm content     - Show a file's current permission content
  gperm list        - List payloads in the local content store
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from gperm.errors import GranularPermissionError


def _config(args: argparse.Namespace) -> dict:
    from gperm.config import load_config

    config_path = getattr(args, "config", None)
    return load_config(Path(config_path) if config_path else None)


def _get_contract(config: dict):
    """Build a PermissionContract from config. Exits if unconfigured."""
    from gperm.ledger import EthereumRPC, PermissionContract

    if not config["rpc_url"]:
        print("Error: No RPC URL. Set GPERM_RPC_URL or rpc_url in config.toml.", file=sys.stderr)
        sys.exit(1)
    if not config["permission_contract"]:
        print(
            "Error: No permission contract. Set GPERM_PERMISSION_CONTRACT "
            "or permission_contract in config.toml.",
            file=sys.stderr,
        )
        sys.exit(1)
    return PermissionContract(config["permission_contract"], EthereumRPC(config["rpc_url"]))


def _get_store(config: dict):
    from gperm.store import LocalContentStore

    return LocalContentStore(config["store_root"] or None)


def cmd_tree(args: argparse.Namespace) -> None:
    """Build a membership tree and print its root (optionally write the dump)."""
    from gperm.permissions.merkle import build_tree

    tree = build_tree(args.identifiers)
    print(f"Membership tree: {tree.leaf_count} leaf(s)")
    print(f"  root: {tree.root_hex}")

    if args.output:
        Path(args.output).write_text(json.dumps(tree.dump(), indent=2))
        print(f"  dump: {args.output}")


def cmd_proof(args: argparse.Namespace) -> None:
    """Print proof bytes for an identifier against a tree dump."""
    from gperm.hashing import to_hex
    from gperm.permissions.keytree import tree_key
    from gperm.permissions.merkle import load_tree, proof_bytes

    path = Path(args.tree)
    if not path.is_file():
        print(f"Error: Tree dump not found: {args.tree}", file=sys.stderr)
        sys.exit(1)
    try:
        dump = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        print(f"Error: Tree dump is not JSON: {e}", file=sys.stderr)
        sys.exit(1)

    tree = load_tree(dump)
    proof = proof_bytes(tree, args.identifier)
    print(f"proof: {to_hex(proof)}")
    print(f"key:   {tree_key(proof)}")


def cmd_keygen(args: argparse.Namespace) -> None:
    """Create or load the OPRF server key and print its public key."""
    from gperm.config import load_or_create_server_key

    key_path = Path(args.key_file) if args.key_file else None
    pair = load_or_create_server_key(key_path)
    print(f"OPRF public key: {pair.public_key.hex()}")


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the OPRF evaluation server (blocking)."""
    from gperm.api.auth import load_api_key
    from gperm.api.server import run_api
    from gperm.config import load_or_create_server_key
    from gperm.voprf.protocol import MODE_OPRF, MODE_VOPRF, VOPRFServer

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = _config(args)
    pair = load_or_create_server_key()
    mode = MODE_OPRF if args.base_mode else MODE_VOPRF
    api_key = config["api_key"] or load_api_key()

    run_api(
        VOPRFServer(pair.private_key, mode=mode),
        host=args.host or config["host"],
        port=args.port or config["port"],
        api_key=api_key,
        require_auth=not args.no_auth,
    )


def cmd_permission(args: argparse.Namespace) -> None:
    """Show the on-chain permission record for a file."""
    contract = _get_contract(_config(args))
    record = contract.get_file_permission(args.file_id)

    print(f"File {args.file_id}")
    print(f"  content hash: {record.content_hash or '(none)'}")
    print(f"  registry:     {record.registry_type.name}")
    print(f"  extender:     {record.extender_address}")


def cmd_content(args: argparse.Namespace) -> None:
    """Show the current permission content of a file."""
    from gperm.permissions.content import load_permission_content

    config = _config(args)
    content = load_permission_content(_get_contract(config), _get_store(config), args.file_id)

    if args.json:
        print(json.dumps(content.to_dict(), indent=2))
        return

    entries = content.encryption_key_tree
    with_comment = sum(1 for e in entries.values() if e.encrypted_comment_key)
    print(f"File {args.file_id} permission content")
    print(f"  key entries:   {len(entries)}")
    print(f"  comment keys:  {with_comment}")
    print(f"  tree:          {len(content.permission_tree)} bytes (encrypted)")


def cmd_list(args: argparse.Namespace) -> None:
    """List payloads in the local content store."""
    store = _get_store(_config(args))
    entries = store.list()

    if not entries:
        print("Content store is empty.")
        return

    print(f"Content store: {len(entries)} payload(s)\n")
    for entry in entries:
        line = f"  {entry['cid']}"
        if entry.get("size"):
            line += f"  {entry['size']}B"
        if entry.get("stored_at"):
            line += f"  {entry['stored_at'][:19]}"
        print(line)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="gperm",
        description="Granular, oblivious per-identity file permissions.",
    )
    from gperm import __version__
    parser.add_argument("--version", action="version", version=f"gperm {__version__}")
    parser.add_argument("--config", help="Path to config.toml (default: ~/.gperm/config.toml)")
    sub = parser.add_subparsers(dest="command")

    # tree
    p_tree = sub.add_parser("tree", help="Build a membership tree from identifiers")
    p_tree.add_argument("identifiers", nargs="+", help="Emails or account addresses")
    p_tree.add_argument("-o", "--output", help="Write the tree dump (JSON) to this file")

    # proof
    p_proof = sub.add_parser("proof", help="Proof bytes for an identifier")
    p_proof.add_argument("tree", help="Tree dump JSON file (from 'gperm tree -o')")
    p_proof.add_argument("identifier", help="Email or account address")

    # keygen
    p_keygen = sub.add_parser("keygen", help="Create or show the OPRF server key")
    p_keygen.add_argument("--key-file", help="Key file (default: ~/.gperm/oprf/server_key)")

    # serve
    p_serve = sub.add_parser("serve", help="Start the OPRF evaluation server")
    p_serve.add_argument("--port", type=int, help="Listen port (default: 8787)")
    p_serve.add_argument("--host", help="Bind address (default: 127.0.0.1)")
    p_serve.add_argument("--base-mode", action="store_true", help="Serve OPRF without proofs")
    p_serve.add_argument("--no-auth", action="store_true", help="Accept /evaluate without an API key")
    p_serve.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    # permission
    p_perm = sub.add_parser("permission", help="Read a file's permission record")
    p_perm.add_argument("file_id", type=int, help="File id")

    # content
    p_content = sub.add_parser("content", help="Show a file's permission content")
    p_content.add_argument("file_id", type=int, help="File id")
    p_content.add_argument("--json", action="store_true", help="Print the raw payload")

    # list
    sub.add_parser("list", help="List payloads in the local content store")

    args = parser.parse_args()

    if not args.command:
        print("gperm — granular per-identity file permissions")
        print()
        print("Usage:")
        print("  gperm tree alice@example.com 0xabc... -o tree.json")
        print("  gperm proof tree.json alice@example.com")
        print("  gperm keygen")
        print("  gperm serve [--port N] [--host ADDR]")
        print("  gperm permission <file-id>")
        print("  gperm content <file-id>")
        print("  gperm list")
        print()
        print("Run 'gperm <command> --help' for details on any command.")
        sys.exit(0)

    commands = {
        "tree": cmd_tree,
        "proof": cmd_proof,
        "keygen": cmd_keygen,
        "serve": cmd_serve,
        "permission": cmd_permission,
        "content": cmd_content,
        "list": cmd_list,
    }

    try:
        commands[args.command](args)
    except GranularPermissionError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
