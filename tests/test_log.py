import io
import logging

from colorama import Fore

from typesense_harness import log


def test_configure_logging_plain_stream():
    stream = io.StringIO()
    logger = log.configure_logging(verbose=True, stream=stream)

    logging.getLogger("typesense_harness.process").debug("starting node")

    assert logger.level == logging.DEBUG
    output = stream.getvalue()
    assert "DEBUG - starting node" in output
    assert Fore.MAGENTA not in output


def test_color_formatter():
    record = logging.LogRecord("x", logging.ERROR, __file__, 1, "boom", None, None)
    formatted = log.ColorFormatter("%(levelname)s %(message)s").format(record)
    assert formatted.startswith(Fore.RED + "ERROR")
    assert record.levelname == "ERROR"


def test_banner(capsys):
    log.banner("⭐ Running phase: single-fresh")
    assert "=== ⭐ Running phase: single-fresh ===" in capsys.readouterr().out
