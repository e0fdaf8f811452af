import pytest

from helpers import FakePublisher


@pytest.fixture
def publisher():
    return FakePublisher()
