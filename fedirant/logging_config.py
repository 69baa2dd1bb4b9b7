import logging
import os
from pathlib import Path

DEBUG_LOG = Path.home() / ".fedirant_debug.log"


def configure_logging(debug=None) -> logging.Logger:
    """Set up the ``fedirant`` logger tree.

    The terminal belongs to the UI, so records only ever go to a file, and
    only when FEDIRANT_DEBUG is set.
    """
    if debug is None:
        debug = bool(os.getenv("FEDIRANT_DEBUG"))
    root = logging.getLogger("fedirant")
    root.propagate = False
    for h in list(root.handlers):
        root.removeHandler(h)
    if debug:
        handler = logging.FileHandler(DEBUG_LOG, encoding="utf-8")
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        root.addHandler(handler)
        root.setLevel(logging.DEBUG)
    else:
        root.addHandler(logging.NullHandler())
        root.setLevel(logging.WARNING)
    return root
