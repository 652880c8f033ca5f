import sys
from pathlib import Path

import pytest
from loguru import logger


# Put backend/src on sys.path so tests import `main`, `models`, `services.*` directly.
ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture()
def log_messages():
    """Collect loguru messages emitted during a test."""
    messages: list[str] = []
    sink_id = logger.add(lambda msg: messages.append(msg.record["message"]), level="DEBUG")
    yield messages
    logger.remove(sink_id)
