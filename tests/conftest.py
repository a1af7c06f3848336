import random

import pytest

from markov_chain import train_model


class CountingRandom(random.Random):
    """Seeded random source that records how many draws were made."""

    def __init__(self, seed=0):
        super().__init__(seed)
        self.draws = 0

    def randrange(self, *args, **kwargs):
        self.draws += 1
        return super().randrange(*args, **kwargs)


@pytest.fixture()
def rng():
    return CountingRandom(1234)


@pytest.fixture()
def corpus():
    return [
        "password",
        "passw0rd",
        "sunshine",
        "dragon",
        "monkey12",
        "letmein",
        "shadow",
        "master",
        "football",
        "baseball",
        "welcome1",
        "iloveyou",
    ]


@pytest.fixture()
def model(corpus):
    return train_model(corpus, order=2)
