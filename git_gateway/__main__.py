"""Run the gateway with uvicorn: ``python -m git_gateway``."""

from __future__ import annotations

import argparse
import logging
import os
import sys


def main() -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Run the Git Gateway server")
    parser.add_argument(
        "--host",
        default=os.getenv("GW_HOST", "127.0.0.1"),
        help="Interface to bind (default: GW_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("GW_PORT", "3131")),
        help="Port to listen on (default: GW_PORT or 3131)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Reload on code changes (development only)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("GW_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    import uvicorn

    uvicorn.run(
        "git_gateway.asgi:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
