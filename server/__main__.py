"""Entry point for running the replay server as a module

Usage:
    python -m server
    python -m server --port 8080
    python -m server --script recorded.jsonl --delay 0.2 --drop-after 10
"""

import sys

import uvicorn

from intelligence.logging import configure_logging

from .app import create_app


def main():
    """Run the replay server."""
    port = 8000
    script_path = None
    delay = 0.0
    drop_after = None
    args = sys.argv[1:]
    for i, arg in enumerate(args):
        if i + 1 >= len(args):
            break
        if arg == "--port":
            port = int(args[i + 1])
        elif arg == "--script":
            script_path = args[i + 1]
        elif arg == "--delay":
            delay = float(args[i + 1])
        elif arg == "--drop-after":
            drop_after = int(args[i + 1])

    configure_logging(debug="--debug" in args)
    app = create_app(script_path, event_delay=delay, drop_after=drop_after)
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
