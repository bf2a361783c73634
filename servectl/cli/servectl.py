"""
servectl: command line entrypoint for LocalServe.

Usage examples:
    servectl api
    servectl serve ./public --port 3000 --listing --log
    servectl scaffold ./demo-site
    servectl port-check 3000
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from localserve.base.config import get_config, setup_logging
from localserve.errors import LocalServeError
from localserve.server.manager import ServerManager
from localserve.server.ports import PortAllocator
from localserve.server.registry import ServerRegistry
from localserve.server.scaffold import create_test_directory

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="servectl", description="LocalServe Command Interface")
    sub = parser.add_subparsers(dest="command", required=True)

    api = sub.add_parser("api", help="Run the control API")
    api.add_argument("--host", default=None)
    api.add_argument("--port", type=int, default=None)

    serve = sub.add_parser("serve", help="Serve a directory in the foreground")
    serve.add_argument("directory")
    serve.add_argument("--port", type=int, default=0, help="0 picks a free port")
    serve.add_argument("--host", default=None)
    serve.add_argument("--listing", action="store_true", help="Enable directory listing")
    serve.add_argument("--no-cors", action="store_true", help="Disable CORS headers")
    serve.add_argument("--log", action="store_true", help="Log every request")
    serve.add_argument("--no-index", action="store_true", help="Do not serve index.html for directories")

    scaffold = sub.add_parser("scaffold", help="Create a demo site directory")
    scaffold.add_argument("path")

    port_check = sub.add_parser("port-check", help="Check whether a port is free (advisory)")
    port_check.add_argument("port", type=int)
    port_check.add_argument("--host", default=None)

    return parser


async def _serve_foreground(args: argparse.Namespace) -> int:
    manager = ServerManager(ServerRegistry(), config=get_config())
    info = await manager.start_server(
        {
            "port": args.port,
            "host": args.host,
            "staticDir": args.directory,
            "cors": not args.no_cors,
            "directoryListing": args.listing,
            "enableLogging": args.log,
            "serveIndex": not args.no_index,
        }
    )
    print(f"Serving {info.static_dir} on {info.url} (Ctrl+C to stop)")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support add_signal_handler
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    await stop.wait()
    failures = await manager.stop_all_servers()
    print("Server stopped cleanly." if not failures else f"Stopped with {len(failures)} failure(s).")
    return 1 if failures else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_config()
    setup_logging(config)

    try:
        if args.command == "api":
            from localserve.server.api import serve
            serve(port=args.port, host=args.host, config=config)
            return 0

        if args.command == "serve":
            return asyncio.run(_serve_foreground(args))

        if args.command == "scaffold":
            print(create_test_directory(args.path))
            return 0

        if args.command == "port-check":
            host = args.host or config.defaults.host
            available = PortAllocator().is_available(args.port, host)
            print(f"Port {args.port} is available on {host}" if available else f"Port {args.port} is in use on {host}")
            return 0 if available else 1
    except LocalServeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    return 1


if __name__ == "__main__":
    sys.exit(main())
