import pytest

from tests.fakes import FakeSurface


@pytest.fixture
def alerts():
    return []


@pytest.fixture
def surfaces():
    return []


@pytest.fixture
def opener(surfaces):
    def _open(width, height):
        surface = FakeSurface(width, height)
        surfaces.append(surface)
        return surface
    return _open
