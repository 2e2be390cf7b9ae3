import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from . import client
from .config import VotifierConfig, load_config
from .errors import ConfigError, KeyStoreError, StorageError
from .http_server import VotifierHttpServer
from .keystore import KeyStore
from .logger import create_logger
from .processor import VoteDispatcher, VoteProcessor
from .server import VotifierSocketServer
from .storage import create_storage
from .tracker import CleanupScheduler, VoteTracker
from .vote import Vote, now_ms

"""
run_server.py — single entry point for the vote receiver.

What you can do here:
- serve:      run the socket and/or HTTP receivers from a config file
- keygen:     create (or just show) the RSA key pair in a directory
- pubkey:     print the public key to paste into voting-site panels
- send-v1:    send an RSA-encrypted test vote to a running socket server
- send-v2:    send a signed V2 test vote to a running socket server
- test-vote:  push a vote straight through the local dispatcher and store
"""

log = logging.getLogger("votifier.run_server")


# -------------------------
# Serve
# -------------------------

def log_vote(vote: Vote) -> None:
    """Default listener: one INFO line per accepted vote."""
    log.info("Vote accepted: service=%s, username=%s, address=%s", vote.service_name, vote.username, vote.address)


async def run_serve(config: VotifierConfig) -> None:
    """
    Load keys and storage, start whichever receivers the config enables,
    then wait for SIGINT/SIGTERM and shut everything down in order.
    """
    if not config.socket.enabled and not config.http.enabled:
        raise SystemExit("Both socket and http receivers are disabled; nothing to serve")

    keys = KeyStore()
    keys.load_or_generate(Path(config.key_path))

    storage = create_storage(config.storage, config.data_dir)
    log.info("Vote storage initialized: type=%s", storage.storage_type)
    tracker = VoteTracker(storage)
    scheduler = CleanupScheduler(tracker, config.vote_expiry_hours, config.storage.cleanup_interval_hours)

    dispatcher = VoteDispatcher(tracker)
    dispatcher.add_listener(log_vote)
    processor = VoteProcessor(keys, config.vote_sites, config.protocols)

    socket_server: Optional[VotifierSocketServer] = None
    http_server: Optional[VotifierHttpServer] = None

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops: fall back to KeyboardInterrupt
            pass

    try:
        scheduler.start()

        if config.socket.enabled:
            if config.protocols.v2_enabled and not config.vote_sites.v2_enabled:
                log.warning("Socket server enabled but no voteSites configured - V2 votes will be rejected")
            socket_server = VotifierSocketServer(
                processor, dispatcher, config.socket.host, config.socket.port, debug=config.debug,
            )
            await socket_server.start()
        else:
            log.info("Socket server disabled")

        if config.http.enabled:
            http_server = VotifierHttpServer(
                processor, dispatcher, config.http.host, config.http.port,
                context_path=config.http.context_path, debug=config.debug, v2_active=config.v2_active,
            )
            await http_server.start()
        else:
            log.info("HTTP server disabled")

        log.info("Votifier enabled - debug=%s, keyPath=%s", config.debug, config.key_path)
        await stop.wait()
    finally:
        log.info("Shutting down...")
        if socket_server is not None:
            await socket_server.stop()
        if http_server is not None:
            await http_server.stop()
        await scheduler.stop()
        tracker.close()
        log.info("Votifier disabled")


# -------------------------
# One-shot helpers
# -------------------------

def cmd_keygen(key_path: str) -> None:
    keys = KeyStore()
    keys.load_or_generate(Path(key_path))
    print(keys.public_key_pem(), end="")


def cmd_pubkey(key_path: str, one_line: bool) -> None:
    keys = KeyStore()
    keys.load(Path(key_path))
    print(keys.public_key_base64() if one_line else keys.public_key_pem().rstrip("\n"))


async def cmd_send_v1(args: argparse.Namespace) -> dict:
    keys = KeyStore()
    keys.load(Path(args.key_path))
    return await client.send_v1_vote(
        args.host, args.port, keys.public_key, args.service, args.username, args.address,
    )


async def cmd_send_v2(args: argparse.Namespace) -> dict:
    return await client.send_v2_vote(
        args.host, args.port, args.token, args.service, args.username, args.address,
    )


def cmd_test_vote(config: VotifierConfig, args: argparse.Namespace) -> dict:
    """Same path a real vote takes after parsing: tracker, then listeners."""
    storage = create_storage(config.storage, config.data_dir)
    tracker = VoteTracker(storage)
    try:
        dispatcher = VoteDispatcher(tracker)
        dispatcher.add_listener(log_vote)
        vote = Vote(args.service, args.username, args.address, now_ms())
        dispatcher.dispatch(vote)
        return {"status": "ok", "message": f"Test vote fired for {vote.username}", "vote": vote.to_dict()}
    finally:
        tracker.close()


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Quick examples:
      Serve:      votifier-server serve --config votifier.json
      Keys:       votifier-server keygen --key-path keys
      Send V1:    votifier-server send-v1 --port 8192 --key-path keys --username Steve
      Send V2:    votifier-server send-v2 --port 8192 --token secret --service TopSites --username Steve
    """
    p = argparse.ArgumentParser(prog="votifier-server")
    p.add_argument("--debug", action="store_true", help="Verbose logging (overrides config)")

    sub = p.add_subparsers(dest="command")
    sub.required = True

    sp = sub.add_parser("serve", help="Run the vote receivers")
    sp.add_argument("--config", help="Path to the JSON config file (defaults if omitted)")

    sp = sub.add_parser("keygen", help="Create the RSA key pair if missing, print the public key")
    sp.add_argument("--key-path", default="keys")

    sp = sub.add_parser("pubkey", help="Print the public key")
    sp.add_argument("--key-path", default="keys")
    sp.add_argument("--one-line", action="store_true", help="Base64 body only, no PEM armour")

    sp = sub.add_parser("send-v1", help="Send an RSA-encrypted vote over the socket")
    sp.add_argument("--host", default="127.0.0.1")
    sp.add_argument("--port", type=int, default=8192)
    sp.add_argument("--key-path", default="keys")
    sp.add_argument("--service", default="TestService")
    sp.add_argument("--username", required=True)
    sp.add_argument("--address", default="127.0.0.1")

    sp = sub.add_parser("send-v2", help="Send a signed V2 vote over the socket")
    sp.add_argument("--host", default="127.0.0.1")
    sp.add_argument("--port", type=int, default=8192)
    sp.add_argument("--token", required=True)
    sp.add_argument("--service", required=True)
    sp.add_argument("--username", required=True)
    sp.add_argument("--address", default="127.0.0.1")

    sp = sub.add_parser("test-vote", help="Fire a vote through the local dispatcher")
    sp.add_argument("--config")
    sp.add_argument("--service", default="TestService")
    sp.add_argument("--username", required=True)
    sp.add_argument("--address", default="127.0.0.1")

    return p.parse_args(argv)


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[List[str]] = None) -> None:
    """Dispatch into the chosen command; keep top-level code very small."""
    args = parse_args(argv)
    create_logger("votifier", logging.DEBUG if args.debug else logging.INFO)

    try:
        if args.command in ("serve", "test-vote"):
            config = load_config(args.config)
            if args.debug:
                config = replace(config, debug=True)
            if config.debug:
                create_logger("votifier", logging.DEBUG)

            if args.command == "serve":
                try:
                    asyncio.run(run_serve(config))
                except KeyboardInterrupt:
                    pass
            else:
                print(json.dumps(cmd_test_vote(config, args), indent=2))

        elif args.command == "keygen":
            cmd_keygen(args.key_path)

        elif args.command == "pubkey":
            cmd_pubkey(args.key_path, args.one_line)

        elif args.command == "send-v1":
            print(json.dumps(asyncio.run(cmd_send_v1(args))))

        elif args.command == "send-v2":
            print(json.dumps(asyncio.run(cmd_send_v2(args))))

    except (ConfigError, KeyStoreError, StorageError) as exc:
        log.error("%s", exc)
        sys.exit(1)
    except (ConnectionError, OSError, asyncio.TimeoutError) as exc:
        log.error("Network error: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
