from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence, Tuple, Union

import numpy as np

from .randomizer import Randomizer


class Visibility(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class VisibilityMode(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    RANDOM = "random"

    @classmethod
    def parse(cls, value: Union[str, int, "VisibilityMode"]) -> "VisibilityMode":
        if isinstance(value, VisibilityMode):
            return value
        s = str(value).strip().lower()
        # numeric codes: 0 low, 1 normal, anything above picks at random
        if s.lstrip("-").isdigit():
            code = int(s)
            if code < 0:
                raise ValueError(f"invalid product visibility code {code}")
            return cls.LOW if code == 0 else cls.NORMAL if code == 1 else cls.RANDOM
        try:
            return cls(s)
        except ValueError:
            raise ValueError(f"invalid product visibility '{value}'") from None

    def draw(self, rng: Randomizer) -> Visibility:
        if self is VisibilityMode.RANDOM:
            return (Visibility.LOW, Visibility.NORMAL, Visibility.HIGH)[rng.next_int(3)]
        return Visibility(self.value)


# ---------------- Products ----------------
@dataclass(frozen=True)
class Product:
    name: str
    visibility: Visibility
    quality: float

    def __post_init__(self):
        if not 0.0 <= self.quality <= 1.0:
            raise ValueError(f"product quality must lie in [0, 1], got {self.quality}")


# ---------------- Customers ----------------
@dataclass(frozen=True)
class CustomerParameters:
    social_preference: float
    u_min: float
    uncertainty_threshold: float
    speak_probability: float
    decay_probability: float

    @classmethod
    def random(cls, rng: Randomizer) -> "CustomerParameters":
        return cls(
            social_preference=rng.next_double(),
            u_min=rng.next_double(),
            uncertainty_threshold=rng.next_double() * 0.5,
            speak_probability=0.2 + rng.next_double() * 0.2,
            decay_probability=rng.next_double() * 0.5,
        )


@dataclass
class Customer:
    identifier: int
    contacts: Tuple[int, ...]
    purchase: int
    preferences: np.ndarray
    awareness: np.ndarray
    params: CustomerParameters
    is_seed: bool = False
    _num_products: int = field(init=False, repr=False)

    def __post_init__(self):
        self.contacts = tuple(int(c) for c in self.contacts)
        self.preferences = np.asarray(self.preferences, dtype=float)
        self.awareness = np.asarray(self.awareness, dtype=bool)
        if self.preferences.shape != self.awareness.shape or self.preferences.ndim != 1:
            raise ValueError(
                f"customer {self.identifier}: preferences ({self.preferences.shape}) and "
                f"awareness ({self.awareness.shape}) must be vectors of equal length")
        self._num_products = int(self.preferences.shape[0])
        if not 0 <= self.purchase < self._num_products:
            raise ValueError(f"customer {self.identifier}: purchase {self.purchase} is not a valid product")

    @property
    def num_products(self) -> int:
        return self._num_products

    @property
    def social_preference(self) -> float:
        return self.params.social_preference

    @property
    def u_min(self) -> float:
        return self.params.u_min

    @property
    def uncertainty_threshold(self) -> float:
        return self.params.uncertainty_threshold

    @property
    def speak_probability(self) -> float:
        return self.params.speak_probability

    @property
    def decay_probability(self) -> float:
        return self.params.decay_probability

    def aware_of(self, product: int) -> bool:
        return bool(self.awareness[product])

    def mark_seed(self, product: int) -> None:
        if not 0 <= product < self._num_products:
            raise ValueError(f"invalid campaign product {product}")
        self.is_seed = True
        self.purchase = product
        self.awareness[product] = True


def build_products(n: int, mode: VisibilityMode, rng: Randomizer) -> Tuple[Product, ...]:
    products = []
    for p in range(n):
        quality = rng.next_double()
        products.append(Product(name=str(p), visibility=mode.draw(rng), quality=quality))
    return tuple(products)

def product_arrays(products: Sequence[Product]) -> Tuple[np.ndarray, np.ndarray]:
    """(qualities, visibility codes) of a catalog; codes index Visibility in declaration order."""
    order = list(Visibility)
    quality = np.array([p.quality for p in products], dtype=float)
    codes = np.array([order.index(p.visibility) for p in products], dtype=np.int64)
    return quality, codes
