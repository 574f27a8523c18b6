import pytest
from loguru import logger

from funkit.core.scheduler import ManualScheduler, set_default_scheduler


@pytest.fixture
def clock():
    """Virtual-clock scheduler installed as the process default for the test."""
    scheduler = ManualScheduler()
    previous = set_default_scheduler(scheduler)
    yield scheduler
    set_default_scheduler(previous)


@pytest.fixture
def log_records():
    """Collect Loguru records emitted during the test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)
