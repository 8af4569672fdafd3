import argparse
import logging
import os
import signal
import sys
from datetime import datetime
from pathlib import Path

from . import config, persistence
from .backends import default_backend
from .engine import ClipboardEngine
from .log import configure_logging

logger = logging.getLogger("golden_copy")


def _format_ts(ts) -> str:
    try:
        return datetime.fromtimestamp(float(ts)).strftime(config.TIMESTAMP_FORMAT)
    except Exception:
        return ""


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="golden_copy", description=f"{config.APP_TITLE} clipboard history engine")
    parser.add_argument("--data-dir", type=Path, help="where history and settings are kept")
    parser.add_argument("--max-entries", type=int, default=config.MAX_ENTRIES,
                        help="history cap, favorites excluded (0 = unlimited)")
    parser.add_argument("--poll", action="store_true", help="poll the clipboard instead of OS notifications")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--list", action="store_true", help="print the stored history and exit")
    return parser.parse_args(argv)


def print_history(path: Path):
    for i, e in enumerate(persistence.load_history(path)):
        star = f"{config.FAVORITE_ICON} " if e.is_favorite else ""
        print(f"{i:>4}  {_format_ts(e.timestamp)}  {star}{e.preview}")


def main(argv=None):
    args = parse_args(argv)
    if args.data_dir:
        os.environ[config.DATA_DIR_ENV] = str(args.data_dir)

    if args.list:
        print_history(config.history_path())
        return 0

    configure_logging(args.log_level)

    if os.name == "nt":
        engine = ClipboardEngine(default_backend(), max_entries=args.max_entries, force_poll=args.poll)
        engine.start()
        try:
            engine.run_forever()
        except KeyboardInterrupt:
            pass
        finally:
            engine.shutdown()
        return 0

    import tkinter as tk

    root = tk.Tk()
    root.withdraw()
    engine = ClipboardEngine(default_backend(root), max_entries=args.max_entries, force_poll=True)
    signal.signal(signal.SIGINT, lambda *_: root.quit())
    engine.start()
    engine.attach(root)
    logger.info("%s running. Press Ctrl+C to stop.", config.APP_TITLE)
    try:
        root.mainloop()
    finally:
        engine.shutdown()
        root.destroy()
    return 0


if __name__ == "__main__":
    sys.exit(main())
