from __future__ import annotations

from typing import List, Optional

import numpy as np

DEFAULT_ROOT_SEED = 20170419

# ---------------- Seed table ----------------
def seed_for(repetition: int, root_seed: Optional[int] = None) -> np.random.SeedSequence:
    """Seed of Monte-Carlo repetition `repetition`; fixed for a given root seed."""
    if repetition < 0:
        raise ValueError(f"repetition index must be >= 0, got {repetition}")
    root = DEFAULT_ROOT_SEED if root_seed is None else int(root_seed)
    return np.random.SeedSequence(entropy=root, spawn_key=(int(repetition),))

def seed_table(n: int, root_seed: Optional[int] = None) -> List[int]:
    """First words of the first `n` repetition seeds (handy for logs and reports)."""
    return [int(seed_for(i, root_seed).generate_state(1)[0]) for i in range(n)]

# ---------------- Generator ----------------
class Randomizer:
    """Uniform doubles, ints and booleans drawn from one PCG64 stream.

    One instance per repetition; instances are never shared between threads.
    """

    def __init__(self, seed=None):
        if isinstance(seed, np.random.SeedSequence):
            bitgen = np.random.PCG64(seed)
        else:
            bitgen = np.random.PCG64(np.random.SeedSequence(seed if seed is not None else DEFAULT_ROOT_SEED))
        self._gen = np.random.Generator(bitgen)

    @classmethod
    def for_repetition(cls, repetition: int, root_seed: Optional[int] = None) -> "Randomizer":
        return cls(seed_for(repetition, root_seed))

    @property
    def generator(self) -> np.random.Generator:
        return self._gen

    def next_double(self) -> float:
        return float(self._gen.random())

    def next_int(self, n: int) -> int:
        if n <= 0:
            raise ValueError(f"bound must be positive, got {n}")
        return int(self._gen.integers(0, n))

    def next_bool(self) -> bool:
        return bool(self._gen.random() < 0.5)

    def sample(self, n: int, k: int) -> List[int]:
        """k distinct integers from range(n), in draw order."""
        if k < 0 or k > n:
            raise ValueError(f"cannot draw {k} distinct values out of {n}")
        return [int(x) for x in self._gen.choice(n, size=k, replace=False)]
