"""
Logging Configuration
Sets up the 'hepfit' logger and the loggers of the numeric and I/O stack.
"""
import logging
import sys
from typing import Optional

# Libraries whose records share the hepfit handlers
THIRD_PARTY_LOGGERS = ("numba", "uproot", "fsspec")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _stack_versions() -> str:
    import awkward
    import numba
    import numpy
    import scipy
    import uproot

    from hepfit import __version__

    return (f"hepfit {__version__}, numpy {numpy.__version__}, scipy {scipy.__version__}, "
            f"numba {numba.__version__}, uproot {uproot.__version__}, awkward {awkward.__version__}")


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    third_party_level: Optional[int] = None,
) -> logging.Logger:
    """
    Configures the 'hepfit' logger and routes numba, uproot and fsspec through the same handlers.

    Args:
        level: Level of the hepfit loggers (e.g. logging.DEBUG for ``-v``).
        log_file: Optional path to save logs to a file.
        third_party_level: Level of the library loggers. INFO in debug mode
            (their DEBUG output traces the compiler), WARNING otherwise.

    Returns:
        The 'hepfit' logger.
    """
    if third_party_level is None:
        third_party_level = logging.INFO if level <= logging.DEBUG else logging.WARNING

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S')
    for handler in handlers:
        handler.setLevel(min(level, third_party_level))
        handler.setFormatter(formatter)

    for name, logger_level in [("hepfit", level), *((n, third_party_level) for n in THIRD_PARTY_LOGGERS)]:
        target = logging.getLogger(name)
        target.setLevel(logger_level)
        # Re-running an analysis in the same session replaces the handlers
        for old in list(target.handlers):
            target.removeHandler(old)
            old.close()
        for handler in handlers:
            target.addHandler(handler)

    logger = logging.getLogger("hepfit")
    logger.debug(f"Logging initialized ({_stack_versions()}).")
    return logger
