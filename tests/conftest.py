import os

import pytest

from stockflow.simulation import SimEnvironment


@pytest.fixture
def env():
    """Fixture providing a seeded SimEnvironment for tests with `env`."""
    return SimEnvironment({'sim.seed': 1234})


@pytest.fixture
def cleandir(tmpdir):
    origin = os.getcwd()
    tmpdir.chdir()
    yield None
    os.chdir(origin)
