"""Root logger setup for the CLI and server entry points."""

import logging

from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    """
    Route log records through a rich console handler.

    Library modules only create loggers; this is called once by whichever entry
    point owns the process. Calling it again replaces the handler instead of
    stacking another one.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(RichHandler(rich_tracebacks=True, show_path=False, markup=False))
    # Per-request chatter from the HTTP clients drowns out the pipeline logs.
    for noisy in ("httpx", "openai", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
