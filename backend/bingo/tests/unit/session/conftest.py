import random

import pytest

from bingo.logic.pool import standard_pool
from bingo.logic.state_machine import RoomStateMachine
from bingo.session.manager import SessionManager


@pytest.fixture
async def manager():
    manager = SessionManager(RoomStateMachine(standard_pool(), rng=random.Random(3)))
    yield manager
    await manager.shutdown()
