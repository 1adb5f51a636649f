"""gigescrow operator CLI.

Commands:
- gigescrow serve        - Run the HTTP API with uvicorn
- gigescrow sweep        - Refund expired escrows once
- gigescrow import-json  - Load a legacy data.json document into the store
- gigescrow export-json  - Dump the store as a legacy-shaped document
- gigescrow add-arbiter  - Register (or update) an arbiter
- gigescrow keygen       - Generate an Ed25519 key pair
- gigescrow sign         - Sign a release/refund authorization
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from gigescrow.errors import EscrowServiceError
from gigescrow.signing import SigningError

logger = logging.getLogger("gigescrow.cli")


def _settings():
    from gigescrow.api.config import get_settings

    return get_settings()


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = _settings()
    uvicorn.run(
        "gigescrow.api.main:app",
        host=args.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


async def _sweep(dry_run: bool) -> dict:
    from gigescrow.api.deps import build_services

    services = build_services(_settings())
    try:
        report = await services.monitor.sweep(dry_run=dry_run)
    finally:
        await services.aclose()
    return report.to_dict()


def cmd_sweep(args: argparse.Namespace) -> int:
    report = asyncio.run(_sweep(args.dry_run))
    if args.json:
        print(json.dumps(report, indent=2))
        return 1 if report["errors"] else 0

    label = "Would refund" if args.dry_run else "Refunded"
    ids = report["would_refund"] if args.dry_run else report["refunded"]
    print(f"{label}: {len(ids)}")
    for escrow_id in ids:
        print(f"  {escrow_id}")
    if report["skipped"]:
        print(f"Skipped: {len(report['skipped'])}")
    for error in report["errors"]:
        print(f"✗ {error['escrow_id']}: {error['error']}")
    return 1 if report["errors"] else 0


def cmd_import_json(args: argparse.Namespace) -> int:
    from gigescrow.api.deps import build_store
    from gigescrow.storage.legacy import load_file

    counts = load_file(build_store(_settings()), args.path, overwrite=args.overwrite)
    print(f"✓ Imported {sum(counts.values())} records from {args.path}")
    for group, count in counts.items():
        print(f"  {group}: {count}")
    return 0


def cmd_export_json(args: argparse.Namespace) -> int:
    from gigescrow.api.deps import build_store
    from gigescrow.storage.legacy import dump_file

    counts = dump_file(build_store(_settings()), args.path)
    print(f"✓ Exported {sum(counts.values())} records to {args.path}")
    return 0


def cmd_add_arbiter(args: argparse.Namespace) -> int:
    from gigescrow.api.deps import build_store
    from gigescrow.disputes.arbiters import ArbiterDirectory

    directory = ArbiterDirectory(build_store(_settings()))
    arbiter = directory.register(
        args.arbiter_id,
        args.public_key,
        display_name=args.name,
        wallet_address=args.wallet,
        active=not args.inactive,
    )
    print(f"✓ Arbiter {arbiter.id} registered (active={arbiter.active})")
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    from gigescrow.signing import generate_key_pair

    key_pair = generate_key_pair()
    if args.json:
        print(
            json.dumps(
                {
                    "key_id": key_pair.key_id,
                    "public_key": key_pair.public_key,
                    "private_key": key_pair.private_key,
                },
                indent=2,
            )
        )
        return 0
    print("✓ Generated Ed25519 key pair")
    print(f"  Key ID:  {key_pair.key_id}")
    print(f"  Public:  {key_pair.public_key}")
    print(f"  Private: {key_pair.private_key}")
    print()
    print("Register the public key on the user or arbiter record; keep the private key secret.")
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    from gigescrow.signing import sign_settlement

    print(sign_settlement(args.private_key, args.action, args.escrow_id, args.signer_id))
    return 0


COMMANDS = {
    "serve": cmd_serve,
    "sweep": cmd_sweep,
    "import-json": cmd_import_json,
    "export-json": cmd_export_json,
    "add-arbiter": cmd_add_arbiter,
    "keygen": cmd_keygen,
    "sign": cmd_sign,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gigescrow",
        description="Escrow backend for a freelance marketplace settling on Cardano",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve
    p_serve = subparsers.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=None, help="Default: PORT setting")
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    # sweep
    p_sweep = subparsers.add_parser("sweep", help="Refund expired escrows once")
    p_sweep.add_argument("--dry-run", action="store_true", help="Report without refunding")
    p_sweep.add_argument("--json", "-j", action="store_true")

    # import-json / export-json
    p_import = subparsers.add_parser("import-json", help="Import a legacy data.json")
    p_import.add_argument("path")
    p_import.add_argument("--overwrite", action="store_true", help="Replace records with the same id")
    p_export = subparsers.add_parser("export-json", help="Export the store as JSON")
    p_export.add_argument("path")

    # add-arbiter
    p_arbiter = subparsers.add_parser("add-arbiter", help="Register or update an arbiter")
    p_arbiter.add_argument("arbiter_id")
    p_arbiter.add_argument("--public-key", required=True, help="Base64 Ed25519 public key")
    p_arbiter.add_argument("--name", default=None)
    p_arbiter.add_argument("--wallet", default=None, help="Bech32 wallet address")
    p_arbiter.add_argument("--inactive", action="store_true", help="Register without authorizing")

    # keygen
    p_keygen = subparsers.add_parser("keygen", help="Generate an Ed25519 key pair")
    p_keygen.add_argument("--json", "-j", action="store_true")

    # sign
    p_sign = subparsers.add_parser("sign", help="Sign a settlement authorization")
    p_sign.add_argument("--private-key", required=True, help="Base64 Ed25519 private key")
    p_sign.add_argument("--action", required=True, choices=["release", "refund"])
    p_sign.add_argument("--escrow-id", required=True)
    p_sign.add_argument("--signer-id", required=True)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    from gigescrow.api.logging_config import setup_logging

    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or _settings().log_level)
    try:
        return COMMANDS[args.command](args)
    except EscrowServiceError as e:
        print(f"✗ {e.kind}: {e.message}", file=sys.stderr)
        return 1
    except (OSError, ValueError, SigningError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
