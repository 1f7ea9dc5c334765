import logging

import pytest

from hepfit import __version__
from hepfit.logging_config import THIRD_PARTY_LOGGERS, setup_logging


@pytest.fixture(autouse=True)
def restore_loggers():
    names = ["hepfit", *THIRD_PARTY_LOGGERS]
    saved = {name: (logging.getLogger(name).level, list(logging.getLogger(name).handlers)) for name in names}
    yield
    for name, (level, handlers) in saved.items():
        target = logging.getLogger(name)
        target.setLevel(level)
        for handler in list(target.handlers):
            target.removeHandler(handler)
            handler.close()
        for handler in handlers:
            target.addHandler(handler)


class TestSetupLogging:
    def test_library_loggers_stay_quiet_by_default(self):
        logger = setup_logging(logging.INFO)
        assert logger is logging.getLogger("hepfit")
        assert logger.level == logging.INFO
        for name in THIRD_PARTY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_verbose_raises_library_loggers(self):
        setup_logging(logging.DEBUG)
        assert logging.getLogger("hepfit").level == logging.DEBUG
        assert logging.getLogger("numba").level == logging.INFO
        assert logging.getLogger("uproot").level == logging.INFO

    def test_explicit_library_level(self):
        setup_logging(logging.INFO, third_party_level=logging.ERROR)
        assert logging.getLogger("fsspec").level == logging.ERROR

    def test_handlers_are_shared_and_replaced(self):
        setup_logging(logging.INFO)
        setup_logging(logging.INFO)
        handlers = logging.getLogger("hepfit").handlers
        assert len(handlers) == 1
        assert logging.getLogger("uproot").handlers == handlers

    def test_log_file(self, tmp_path):
        path = tmp_path / "hepfit.log"
        setup_logging(logging.DEBUG, log_file=str(path))
        logging.getLogger("hepfit.test").info("fit finished")
        logging.getLogger("uproot.test").warning("slow read")
        for handler in logging.getLogger("hepfit").handlers:
            handler.flush()
        text = path.read_text(encoding="utf-8")
        assert f"hepfit {__version__}" in text
        assert "numba" in text
        assert "fit finished" in text
        assert "uproot.test - WARNING - slow read" in text
