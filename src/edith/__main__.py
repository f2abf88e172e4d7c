"""Edith Mission Control entry point.

Changes:
  - 2026-02-16: Added --memory flag for throwaway in-memory storage.
  - 2026-02-14: Initial server entry point with Rich logging.
"""

import argparse
import logging
import os
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from edith.config import get_settings
from edith.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("edith-mission-control")
    except PackageNotFoundError:
        from edith import __version__

        return __version__


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Edith Mission Control - resource manager for agent teams",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  edith                              Start the API server on 127.0.0.1:3000
  edith --host 0.0.0.0 --port 8080   Listen on all interfaces
  edith --data-dir ./mc-data         Keep records in ./mc-data
  edith --memory                     Keep records in memory only
  edith --dev                        Start with auto-reload (dev mode)
""",
    )
    parser.add_argument("--host", default=None, help="Host to bind (default from settings)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind")
    parser.add_argument("--data-dir", default=None, help="Directory for stored records")
    parser.add_argument(
        "--memory", action="store_true", help="Use in-memory storage (nothing persisted)"
    )
    parser.add_argument("--dev", action="store_true", help="Auto-reload on code changes")
    parser.add_argument(
        "--version", "-v", action="version", version=f"%(prog)s {_package_version()}"
    )
    args = parser.parse_args()

    # CLI flags override settings via the environment so reloaded workers see them too
    if args.data_dir:
        os.environ["EDITH_DATA_DIR"] = args.data_dir
    if args.memory:
        os.environ["EDITH_STORAGE_BACKEND"] = "memory"
    get_settings.cache_clear()
    settings = get_settings()

    setup_logging(level=settings.log_level)

    host = args.host or settings.host
    port = args.port or settings.port
    logger.info(f"Storage: {settings.storage_backend} ({settings.data_dir})")

    from edith.serve import run_server

    try:
        run_server(host=host, port=port, dev=args.dev)
    except KeyboardInterrupt:
        logger.info("Edith stopped.")


if __name__ == "__main__":
    main()
