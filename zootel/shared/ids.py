"""Identifier generation"""

import random
import threading
import uuid
from typing import Optional


class IdGenerator:
    """
    Produces UUID4-shaped string ids from its own random source.

    Pass a seed to get a reproducible sequence (tests, local debugging).
    Without a seed the generator draws from OS entropy.
    """

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed) if seed is not None else random.SystemRandom()
        self._lock = threading.Lock()

    def new_id(self) -> str:
        with self._lock:
            bits = self._rng.getrandbits(128)
        return str(uuid.UUID(int=bits, version=4))

    def __call__(self) -> str:
        return self.new_id()


_default_generator: Optional[IdGenerator] = None


def get_id_generator() -> IdGenerator:
    """Process-wide generator, seeded from ID_GENERATOR_SEED when set"""
    global _default_generator
    if _default_generator is None:
        from ..config import ID_GENERATOR_SEED

        _default_generator = IdGenerator(ID_GENERATOR_SEED)
    return _default_generator


def set_id_generator(generator: IdGenerator) -> None:
    global _default_generator
    _default_generator = generator


def generate_id() -> str:
    """Column default for primary keys"""
    return get_id_generator().new_id()
