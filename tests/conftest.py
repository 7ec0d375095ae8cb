import random

import pytest

from storage import GameStore, StorageConfig


@pytest.fixture
def store(tmp_path):
    return GameStore(StorageConfig(data_dir=tmp_path))


@pytest.fixture
def rng():
    return random.Random(2048)
