"""
=============================================================================
IPFS-JWE CLI ENTRY POINT
=============================================================================

    ipfs-jwe [--ipfs-api ADDR] [--log-level LEVEL] [--log-format FMT] COMMAND

=============================================================================
COMMANDS
=============================================================================

    # Long-lived SCGI listener on a Unix socket
    ipfs-jwe serve-scgi --keys-file keys.jsonarray

    # ...or on TCP
    ipfs-jwe serve-scgi --keys-file keys.jsonarray --host 127.0.0.1 --port 4000

    # One request from PATH_INFO, response on stdout (CGI)
    PATH_INFO=abc ipfs-jwe handle-cgi --keys-file keys.jsonarray

    # Fetch and decrypt one document by key ID
    ipfs-jwe fetch --keys-file keys.jsonarray --kid abc --out-file doc.txt

    # Same, with a single standalone JWK file
    ipfs-jwe decrypt --key abc.jwk

Options left unset fall back to IPFS_JWE_* environment variables, then to
the defaults in GatewayConfig.

Exit status is 0 on success and 1 on any error. Errors go to the log
(stderr), never to stdout.

=============================================================================
"""

import argparse
import logging
import sys
from typing import BinaryIO, Optional

from . import __version__
from .access_log import setup_logging
from .config import GatewayConfig
from .crypto import JWEDecryptor
from .errors import GatewayError
from .ipfs import IpfsClient
from .keystore import KeyRecord, KeyStore, read_key
from .pipeline import fetch_document
from .server import ScgiGateway, handle_cgi


logger = logging.getLogger("ipfsjwe")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ipfs-jwe",
        description="Serve JWE-encrypted IPFS documents over SCGI/Gemini",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ipfs-jwe serve-scgi --keys-file keys.jsonarray
  PATH_INFO=abc ipfs-jwe handle-cgi --keys-file keys.jsonarray
  ipfs-jwe fetch --keys-file keys.jsonarray --kid abc
  ipfs-jwe decrypt --key abc.jwk --out-file doc.txt
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # GLOBAL ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--ipfs-api",
        default=None,
        help="IPFS RPC API multiaddr or URL (default: /ip4/127.0.0.1/tcp/5001)"
    )

    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Access log format (default: text)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"ipfs-jwe {__version__}"
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    # ─────────────────────────────────────────────────────────────────────
    # serve-scgi
    # ─────────────────────────────────────────────────────────────────────

    serve = commands.add_parser("serve-scgi", help="Serve requests over SCGI")
    serve.add_argument("--keys-file", help="JSON-lines key file (default: keys.jsonarray)")
    listen = serve.add_mutually_exclusive_group()
    listen.add_argument(
        "--socket-file",
        help="Unix socket path (default: ipfs-jwe-scgi.socket)"
    )
    listen.add_argument(
        "--host",
        help="Listen on TCP at this host instead of a Unix socket"
    )
    serve.add_argument("--port", type=int, help="TCP port (default: 4000)")
    serve.add_argument("--workers", "-w", type=int, help="Maximum worker threads (default: 16)")
    serve.add_argument("--timeout", type=float, help="Socket timeout in seconds (default: 30)")
    serve.set_defaults(handler=cmd_serve_scgi)

    # ─────────────────────────────────────────────────────────────────────
    # handle-cgi
    # ─────────────────────────────────────────────────────────────────────

    cgi = commands.add_parser("handle-cgi", help="Answer one request from PATH_INFO on stdout")
    cgi.add_argument("--keys-file", help="JSON-lines key file (default: keys.jsonarray)")
    cgi.set_defaults(handler=cmd_handle_cgi)

    # ─────────────────────────────────────────────────────────────────────
    # fetch / decrypt
    # ─────────────────────────────────────────────────────────────────────

    fetch = commands.add_parser("fetch", help="Fetch and decrypt a document by key ID")
    fetch.add_argument("--keys-file", help="JSON-lines key file (default: keys.jsonarray)")
    fetch.add_argument("--kid", required=True, help="Key ID to look up")
    fetch.add_argument("--out-file", help="Where to write the plaintext (default: stdout)")
    fetch.set_defaults(handler=cmd_fetch)

    decrypt = commands.add_parser("decrypt", help="Fetch and decrypt the document of one JWK file")
    decrypt.add_argument("--key", required=True, help="Standalone JWK file")
    decrypt.add_argument("--out-file", help="Where to write the plaintext (default: stdout)")
    decrypt.set_defaults(handler=cmd_decrypt)

    return parser


def build_config(args: argparse.Namespace) -> GatewayConfig:
    """Environment first, then whatever was given on the command line."""
    config = GatewayConfig.from_env()

    if args.ipfs_api is not None:
        config.ipfs_api = args.ipfs_api
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format

    if getattr(args, "keys_file", None) is not None:
        config.keys_file = args.keys_file
    if getattr(args, "socket_file", None) is not None:
        config.socket_file = args.socket_file
    if getattr(args, "host", None) is not None:
        config.host = args.host
        config.socket_file = None
    if getattr(args, "port", None) is not None:
        config.port = args.port
        config.socket_file = None
    if getattr(args, "workers", None) is not None:
        config.max_workers = args.workers
        config.min_workers = min(config.min_workers, args.workers)
    if getattr(args, "timeout", None) is not None:
        config.timeout = args.timeout

    return config


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_serve_scgi(config: GatewayConfig, args: argparse.Namespace) -> int:
    try:
        gateway = ScgiGateway.from_config(config)
    except GatewayError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    try:
        gateway.run()
    except OSError as e:
        logger.error(f"Listener failed: {e}")
        return 1
    return 0


def cmd_handle_cgi(config: GatewayConfig, args: argparse.Namespace) -> int:
    response = handle_cgi(config)
    return 0 if response.status.is_success else 1


def _write_document(record: KeyRecord, config: GatewayConfig, out_file: Optional[str]) -> int:
    client = IpfsClient(config.ipfs_api, timeout=config.fetch_timeout)
    try:
        plaintext = fetch_document(record, client, JWEDecryptor())
    finally:
        client.close()

    if out_file in (None, "-"):
        _write(sys.stdout.buffer, plaintext)
    else:
        with open(out_file, "wb") as f:
            _write(f, plaintext)
        logger.info(f"Wrote {len(plaintext)} bytes to `{out_file}`")
    return 0


def _write(stream: BinaryIO, data: bytes):
    stream.write(data)
    stream.flush()


def cmd_fetch(config: GatewayConfig, args: argparse.Namespace) -> int:
    store = KeyStore.load(config.keys_file)
    record = store.lookup(args.kid)
    if record is None:
        logger.error(f"Key `{args.kid}` not found.")
        return 1
    return _write_document(record, config, args.out_file)


def cmd_decrypt(config: GatewayConfig, args: argparse.Namespace) -> int:
    record = read_key(args.key)
    return _write_document(record, config, args.out_file)


def main(argv: Optional[list] = None) -> int:
    """
    CLI entry point.

    Returns:
        Process exit status.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
        config.validate()
    except ValueError as e:
        sys.stderr.write(f"ipfs-jwe: invalid configuration: {e}\n")
        return 1

    setup_logging(config.log_level)

    try:
        return args.handler(config, args)
    except GatewayError as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.error(f"I/O error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
