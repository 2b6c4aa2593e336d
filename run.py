"""
Quest Companion — run.py
Main entry point for the companion viewer.

Usage:
    python run.py                      watch the current directory's project
    python run.py watch [DIR]          watch DIR's project
    python run.py replay FILE [MS]     replay FILE, MS milliseconds between events
    python run.py DIR                  same as "watch DIR"
"""

import logging
import sys
from pathlib import Path

# Ensure we can import the companion packages
project_root = Path(__file__).parent.resolve()
sys.path.insert(0, str(project_root))

from companion.config import load_config
from companion.loop import CompanionLoop
from companion.watcher import TranscriptNotFoundError
from ui.renderer import Renderer
from ui.states import Engine
from ui.screens import CompanionScreen

logger = logging.getLogger("companion")

USAGE = __doc__.split("Usage:", 1)[1]


def start_source(companion: CompanionLoop, args: list[str]) -> None:
    """Start live-tailing or replaying according to the command line."""
    if not args:
        companion.start_live_watch(Path.cwd())
    elif args[0] == "watch":
        companion.start_live_watch(Path(args[1]) if len(args) > 1 else Path.cwd())
    elif args[0] == "replay":
        if len(args) < 2:
            raise SystemExit("Error: replay requires a file path" + USAGE)
        delay = None
        if len(args) > 2:
            if not args[2].isdigit():
                raise SystemExit("Error: replay delay must be a whole number of milliseconds")
            delay = int(args[2]) / 1000.0
        companion.start_replay(Path(args[1]), delay)
    else:
        companion.start_live_watch(Path(args[0]))


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if args and args[0] in ("-h", "--help", "help"):
        print(USAGE)
        return 0

    config = load_config()
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    companion = CompanionLoop(config)
    try:
        start_source(companion, args)
    except TranscriptNotFoundError as exc:
        logger.error("%s", exc)
        return 1

    logger.info("Watching: %s", companion.watcher.file_path)
    renderer = Renderer(width=config.screen_width, height=config.screen_height, title="Quest Companion")
    engine = Engine(renderer, CompanionScreen, companion)
    engine.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
