#!/usr/bin/env python3
"""Run the market signal API server.

Usage:
    python scripts/run_api.py [--host HOST] [--port PORT] [--reload]

Environment:
    VENUES, REDIS_URL, LOG_LEVEL and the other EngineConfig variables.
    REDIS_URL is optional; without it the cache is process-local.

Examples:
    python scripts/run_api.py
    python scripts/run_api.py --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

# Ensure imports work when invoked as a script
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from core.config import EngineConfig  # noqa: E402


def main() -> int:
    """Run the API server."""
    parser = argparse.ArgumentParser(description="Run the market signal API server.")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    args = parser.parse_args()

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    print(f"Starting API server on {args.host}:{args.port} (venues: {', '.join(config.venues)})")
    print("Endpoints:")
    print(f"  - GET  http://{args.host}:{args.port}/realtime/BTCUSDT")
    print(f"  - POST http://{args.host}:{args.port}/scan/rsi")
    print(f"  - GET  http://{args.host}:{args.port}/system/health")
    print()

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=config.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
