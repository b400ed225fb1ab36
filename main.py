#!/usr/bin/env python3
"""
UnRustleLogs - chat log deletion opt-out site.
Users sign in with Twitch or Destiny.gg and choose whether their chat logs are kept.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep app imports lazy (inside main) so `--migrate` does not import FastAPI.
#


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Chat log deletion opt-out server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the deletion_preferences table if missing
  python main.py --migrate

  # Serve the site on port 8080
  python main.py --serve --port 8080
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Create the deletion_preferences table if missing (POSTGRES_DSN or POSTGRES_* env vars)",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")

    args = parser.parse_args()

    if args.migrate:
        from unrustle.storage.schema import main as schema_main

        rc = schema_main()
        if rc or not args.serve:
            return rc

    if args.serve:
        from unrustle.api.server import run

        run(host=args.host, port=args.port)
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
