import logging
import re
from pathlib import Path

from imagineer.utils.logging import get_logger

PACKAGE_DIR = Path(__file__).resolve().parents[3] / "imagineer"
EXTRA_RE = re.compile(r"extra=\{(.*?)\}", re.DOTALL)
KEY_RE = re.compile(r'"(\w+)"\s*:')


def test_get_logger_attaches_one_handler():
    logger = get_logger("imagineer.tests.logging")
    get_logger("imagineer.tests.logging")

    assert len(logger.handlers) == 1
    assert logger.level == logging.INFO


def test_extra_keys_do_not_shadow_record_attributes():
    reserved = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}
    clashes = []
    for path in PACKAGE_DIR.rglob("*.py"):
        for block in EXTRA_RE.findall(path.read_text()):
            clashes.extend(f"{path.name}:{key}" for key in KEY_RE.findall(block) if key in reserved)

    assert clashes == []
