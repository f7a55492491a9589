import pytest

from fakes import MutableClock


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()
