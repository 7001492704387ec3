"""CLI entry point for streamstore-objects: bucket admin and object transfer."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from streamstore.config import StreamStoreConfig, load_config
from streamstore.errors import KeyNotFound, ObjectStoreError
from streamstore.logging_config import configure_logging
from streamstore.objects.client import ObjectStoreClient
from streamstore.transport import create_transport


def _meta_pair(value: str) -> tuple[str, str]:
    name, sep, val = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    return name, val


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="streamstore-objects",
        description="streamstore bucket administration and object transfer tool",
    )
    parser.add_argument(
        "--config", type=Path, default=Path("streamstore.yaml"),
        help="Config file path (default: streamstore.yaml)",
    )
    parser.add_argument(
        "--server", action="append", default=None,
        help="NATS server URL (overrides config, repeatable)",
    )
    parser.add_argument(
        "--log-level", default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create-bucket", help="Create a bucket")
    create_parser.add_argument("bucket")
    create_parser.add_argument("--description", default="")
    create_parser.add_argument(
        "--ttl", type=float, default=None, help="Maximum object age in seconds",
    )
    create_parser.add_argument("--storage", choices=["file", "memory"], default="file")
    create_parser.add_argument("--replicas", type=int, default=None)

    delete_parser = subparsers.add_parser("delete-bucket", help="Delete a bucket and its objects")
    delete_parser.add_argument("bucket")

    put_parser = subparsers.add_parser("put", help="Store an object")
    put_parser.add_argument("bucket")
    put_parser.add_argument("key")
    put_parser.add_argument(
        "--input", type=str, default="-",
        help="Input file path (default: stdin)",
    )
    put_parser.add_argument("--description", default=None)
    put_parser.add_argument(
        "--meta", type=_meta_pair, action="append", default=[],
        help="User metadata NAME=VALUE (repeatable)",
    )
    put_parser.add_argument(
        "--chunk-size", type=int, default=None,
        help="Chunk size in bytes (overrides config)",
    )

    get_parser = subparsers.add_parser("get", help="Fetch an object")
    get_parser.add_argument("bucket")
    get_parser.add_argument("key")
    get_parser.add_argument(
        "--output", type=str, default="-",
        help="Output file path (default: stdout)",
    )
    get_parser.add_argument(
        "--verify", action="store_true", default=False,
        help="Check size and digest after the transfer",
    )

    info_parser = subparsers.add_parser("info", help="Show bucket or object info as JSON")
    info_parser.add_argument("bucket")
    info_parser.add_argument("key", nargs="?", default=None)

    return parser.parse_args(argv)


async def _create_bucket(client: ObjectStoreClient, args: argparse.Namespace) -> int:
    bucket = await client.create_bucket(
        args.bucket,
        description=args.description,
        ttl=args.ttl,
        storage=args.storage,
        replicas=args.replicas,
    )
    print(f"Created bucket {bucket.name}", file=sys.stderr)
    return 0


async def _delete_bucket(client: ObjectStoreClient, args: argparse.Namespace) -> int:
    await client.delete_bucket(args.bucket)
    print(f"Deleted bucket {args.bucket}", file=sys.stderr)
    return 0


async def _put(client: ObjectStoreClient, args: argparse.Namespace) -> int:
    headers: dict[str, list[str]] = {}
    for name, value in args.meta:
        headers.setdefault(name, []).append(value)

    bucket = client.bucket(args.bucket)
    if args.input == "-":
        info = await bucket.put(
            args.key, sys.stdin.buffer,
            description=args.description, headers=headers, chunk_size=args.chunk_size,
        )
    else:
        with open(args.input, "rb") as fh:
            info = await bucket.put(
                args.key, fh,
                description=args.description, headers=headers, chunk_size=args.chunk_size,
            )
    print(
        f"Stored {args.bucket}/{args.key}: {info.size} bytes in {info.chunks} chunks",
        file=sys.stderr,
    )
    return 0


async def _get(client: ObjectStoreClient, args: argparse.Namespace) -> int:
    bucket = client.bucket(args.bucket)
    stream = await bucket.get_or_raise(args.key, verify=args.verify or None)
    async with stream:
        if args.output == "-":
            out = sys.stdout.buffer
            async for chunk in stream:
                out.write(chunk)
            out.flush()
        else:
            with open(args.output, "wb") as fh:
                async for chunk in stream:
                    fh.write(chunk)
            print(f"Wrote {stream.info.size} bytes to {args.output}", file=sys.stderr)
    return 0


async def _info(client: ObjectStoreClient, args: argparse.Namespace) -> int:
    bucket = client.bucket(args.bucket)
    if args.key is None:
        data = (await bucket.info()).to_dict()
    else:
        data = (await bucket.get_info_or_raise(args.key)).to_dict()
    print(json.dumps(data, indent=2))
    return 0


_COMMANDS = {
    "create-bucket": _create_bucket,
    "delete-bucket": _delete_bucket,
    "put": _put,
    "get": _get,
    "info": _info,
}


async def _run(args: argparse.Namespace, config: StreamStoreConfig) -> int:
    transport = create_transport(config.transport)
    await transport.connect()
    try:
        client = ObjectStoreClient.from_config(transport, config.objects)
        return await _COMMANDS[args.command](client, args)
    finally:
        await transport.close()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(level=args.log_level, fmt="text")

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        print(f"Error: config file not found: {args.config}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        return 1

    if args.server:
        config.transport.servers = args.server

    try:
        return asyncio.run(_run(args, config))
    except KeyNotFound as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 2
    except ObjectStoreError as e:
        print(f"Error: {e.code}: {e.message}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def entry_point() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    entry_point()
