"""
main.py — Single entry point.

  shrty                      run the server until SIGINT/SIGTERM
  shrty keys list            show every provider key (masked) and where it comes from
  shrty keys set NAME VALUE  store a key in the database (overrides .env)
  shrty keys delete NAME     remove a stored key (falls back to .env)

Architecture:
  asyncio event loop
    └── aiohttp web server
          ├── redirects + click tracking
          ├── link / report API
          └── agent deploy + chat API → chat providers (Workers AI, OpenRouter, OpenAI)
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import config
import key_store

# Log file lives in the same data/ directory as the database so that a single
# Docker volume mount (./data:/app/data) captures both.
_data_dir = Path(os.getenv("DATA_DIR", "data"))
_data_dir.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    level=logging.INFO,
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(str(_data_dir / "shrty.log"), encoding="utf-8"),
    ],
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="shrty",
        description="URL shortener with click analytics and deployable AI chat agents.",
    )
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("serve", help="run the HTTP server (the default)")

    keys = commands.add_parser("keys", help="manage provider API keys stored in the database")
    actions = keys.add_subparsers(dest="action", required=True)
    actions.add_parser("list", help="show every known key, masked")
    set_cmd = actions.add_parser("set", help="store a key (overrides the .env value)")
    set_cmd.add_argument("name", choices=key_store.KNOWN_KEYS)
    set_cmd.add_argument("value")
    set_cmd.add_argument("--by", default="cli", help="recorded as updated_by (default: cli)")
    delete_cmd = actions.add_parser("delete", help="remove a stored key (falls back to .env)")
    delete_cmd.add_argument("name", choices=key_store.KNOWN_KEYS)

    return parser.parse_args(argv)


async def manage_keys(args: argparse.Namespace) -> None:
    import database as _db
    await _db.init_db()

    if args.action == "set":
        await key_store.set(args.name, args.value, updated_by=args.by)
        logger.info("Stored %s (%s)", args.name, key_store.mask(args.value))
    elif args.action == "delete":
        await key_store.delete(args.name)
        logger.info("Removed %s from the database", args.name)

    for name, value in (await key_store.get_all_keys()).items():
        print(f"{name:<22} {key_store.mask(value)}")
    if args.action != "list":
        print("Restart the server to load the new key.")


async def run() -> None:
    # ── Database bootstrap (must happen before anything else) ─────────────────
    import database as _db
    try:
        await _db.init_db()
        logger.info("Database ready at %s", _db.DB_PATH)
    except Exception as exc:
        logger.critical("FATAL: database init failed: %s", exc, exc_info=True)
        raise

    if not config.JWT_SECRET:
        logger.warning("JWT_SECRET is not set — every /api request will be rejected.")

    from server import start_server
    web_runner = await start_server()

    stop_event = asyncio.Event()

    def _stop(*_):
        logger.info("Shutdown signal received.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            # Windows doesn't support add_signal_handler for all signals
            pass

    logger.info("✅ shrty is running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down…")
        await web_runner.cleanup()
        logger.info("Goodbye.")


def main(argv=None) -> None:
    args = parse_args(argv)
    if args.command == "keys":
        asyncio.run(manage_keys(args))
        return
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
