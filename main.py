from PyQt6.QtWidgets import QApplication
from PyQt6.QtGui import QIcon
from pathlib import Path
import argparse
import logging
import sys

from battlemap.logging_config import setup_logging
from battlemap.main_window import MainWindow

logger = logging.getLogger("battlemap")


def app_dir() -> Path:
    """Base directory for portable builds.
    - Frozen one-folder: folder containing the .exe
    - Frozen one-file: temporary _MEIPASS extraction dir (assets live there)
    - Source run: folder containing this file (repo root)
    """
    if getattr(sys, "frozen", False):
        meipass = getattr(sys, "_MEIPASS", None)
        if meipass:
            return Path(meipass)
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def main(argv=None):
    parser = argparse.ArgumentParser(description="Battle map fog of war and overlays")
    parser.add_argument("board", nargs="?", help="board JSON file to open")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    args = parser.parse_args(argv)

    setup_logging(args.debug)
    app = QApplication(sys.argv[:1])

    base = app_dir()
    for cand in [base / "assets/battlemap.ico", base / "assets/battlemap.png"]:
        if cand.exists():
            app.setWindowIcon(QIcon(str(cand)))
            break

    w = MainWindow(prompt_restore=not args.board)
    if args.board:
        w.load_board(args.board)
    w.show()
    logger.info("Battlemap started")
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
