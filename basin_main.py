"""
Basin Vault Client - Command Line

Settings come from the environment (a .env file is loaded first):
PRIVATE_KEY, VAULT_ID, BASIN_URL, BASIN_CACHE_MINUTES,
BASIN_INGEST_TIMEOUT, BASIN_POLL_INTERVAL, BASIN_SIGN_MODE.

Commands:
- account              Show the owner address for PRIVATE_KEY
- sign FILE            Print the signature a write would carry
- create               Create VAULT_ID owned by the account
- write FILE           Sign FILE and write it to VAULT_ID
- list                 List events in VAULT_ID
- download CID OUTPUT  Save an event's content to OUTPUT
- wait [--cid CID]     Poll until events (or one cid) are visible
- run FILE             create → sign → write → wait → download
"""

import argparse
import logging
import os
import sys
import time

from dotenv import load_dotenv

from basinvault import workflow
from basinvault.client import NotYetIngested, VaultClient
from basinvault.config import Config
from basinvault.errors import BasinError
from basinvault.signing import KeySigner

LINE = "=" * 60


def make_signer(config):
    return KeySigner.from_secret(config.require_private_key())


def make_client(config):
    return VaultClient(config.base_url)


def print_events(events):
    if not events:
        print("No events.")
        return
    print("Events:")
    for e in events:
        print(f"  CID: {e.cid}")
        print(f"  Timestamp: {e.timestamp}")
        print(f"  IsArchived: {e.is_archived}")
        print(f"  CacheExpiry: {e.cache_expiry or '-'}")
        print("-" * 40)


def cmd_account(config, args):
    signer = make_signer(config)
    print(signer.account)


def cmd_sign(config, args):
    signer = make_signer(config)
    mode = args.mode or config.sign_mode
    signature = signer.sign_file(args.file, mode=mode)
    if mode == "name":
        print("NOTE: signing the file NAME only; content is not covered.", file=sys.stderr)
    print(signature)


def cmd_create(config, args):
    signer = make_signer(config)
    vault_id = config.require_vault_id()
    cache = None if args.no_cache else config.cache_minutes
    print(f"Creating vault '{vault_id}' for account: {signer.account}")
    with make_client(config) as client:
        body = client.create_vault(vault_id, signer.account, cache=cache)
    print(f"Create response: {body}")


def cmd_write(config, args):
    signer = make_signer(config)
    vault_id = config.require_vault_id()
    signature = signer.sign_file(args.file, mode=config.sign_mode)
    timestamp = int(time.time())
    print(f"Writing to vault '{vault_id}'")
    with make_client(config) as client:
        body = client.write_event(vault_id, args.file, timestamp, signature)
    print(f"Write response: {body}")


def cmd_list(config, args):
    vault_id = config.require_vault_id()
    print(f"Getting vault '{vault_id}' events")
    with make_client(config) as client:
        if args.raw:
            print(client.list_events_raw(vault_id))
            return
        print_events(client.list_events(vault_id))


def cmd_download(config, args):
    print(f"Downloading event '{args.cid}'")
    with make_client(config) as client:
        written = client.download_event(args.cid, args.output)
    print(f"✓ Event downloaded to {args.output} ({written} bytes)")


def cmd_wait(config, args):
    vault_id = config.require_vault_id()
    with make_client(config) as client:
        result = client.wait_for_event(
            vault_id,
            expected_cid=args.cid,
            timeout=config.ingest_timeout,
            interval=config.poll_interval,
        )
    if isinstance(result, NotYetIngested):
        print(f"ERROR: {result}", file=sys.stderr)
        return 1
    print_events(result)


def cmd_run(config, args):
    signer = make_signer(config)
    vault_id = config.require_vault_id()
    output = args.output or _download_name(args.file)

    print(LINE)
    print(f"Vault: {vault_id}")
    print(f"Account: {signer.account}")
    print(f"File: {args.file}")
    print(LINE)

    with make_client(config) as client:
        result = workflow.run(
            signer,
            client,
            vault_id,
            args.file,
            output,
            cache=config.cache_minutes,
            timeout=config.ingest_timeout,
            interval=config.poll_interval,
            sign_mode=config.sign_mode,
        )

    print(f"Signature: {result.signature}")
    print(f"Create response: {result.create_response}")
    print(f"Write response: {result.write_response}")
    print_events(result.events)
    print(f"✓ Event '{result.event.cid}' downloaded to {result.output_path} "
          f"({result.bytes_downloaded} bytes)")


def _download_name(path):
    root, ext = os.path.splitext(os.path.basename(path))
    return f"{root}-download{ext}"


def build_parser():
    parser = argparse.ArgumentParser(prog="basin", description="Basin vault client")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--env-file", default=None, help="path to .env (default: search upward)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("account", help="show the owner address").set_defaults(func=cmd_account)

    p = sub.add_parser("sign", help="print the signature for a file")
    p.add_argument("file")
    p.add_argument("--mode", choices=("name", "content"), default=None)
    p.set_defaults(func=cmd_sign)

    p = sub.add_parser("create", help="create the vault")
    p.add_argument("--no-cache", action="store_true", help="omit the cache window")
    p.set_defaults(func=cmd_create)

    p = sub.add_parser("write", help="sign and write a file")
    p.add_argument("file")
    p.set_defaults(func=cmd_write)

    p = sub.add_parser("list", help="list vault events")
    p.add_argument("--raw", action="store_true", help="print the response body as-is")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("download", help="download an event")
    p.add_argument("cid")
    p.add_argument("output")
    p.set_defaults(func=cmd_download)

    p = sub.add_parser("wait", help="wait until events (or one cid) are visible")
    p.add_argument("--cid", default=None)
    p.set_defaults(func=cmd_wait)

    p = sub.add_parser("run", help="create, write, wait and download in one go")
    p.add_argument("file")
    p.add_argument("-o", "--output", default=None)
    p.set_defaults(func=cmd_run)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    load_dotenv(args.env_file)

    try:
        config = Config.from_env()
        return args.func(config, args) or 0
    except (BasinError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(130)
