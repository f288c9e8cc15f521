"""Physical footprint of stock: quantity, packages, weight (kg), volume (m3)."""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional


TWO_PLACES = Decimal("0.01")


def to_measure(value) -> Decimal:
    """Coerce a weight/volume value to a 2-place Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Footprint:
    quantity: int = 0
    packages: int = 0
    weight: Decimal = Decimal("0.00")
    volume: Decimal = Decimal("0.00")

    def __post_init__(self):
        object.__setattr__(self, "weight", to_measure(self.weight))
        object.__setattr__(self, "volume", to_measure(self.volume))

    @classmethod
    def zero(cls) -> "Footprint":
        return cls()

    def __add__(self, other: "Footprint") -> "Footprint":
        return Footprint(
            self.quantity + other.quantity,
            self.packages + other.packages,
            self.weight + other.weight,
            self.volume + other.volume,
        )

    def __sub__(self, other: "Footprint") -> "Footprint":
        return self + (-other)

    def __neg__(self) -> "Footprint":
        return Footprint(-self.quantity, -self.packages, -self.weight, -self.volume)

    @property
    def is_zero(self) -> bool:
        return (
            self.quantity == 0
            and self.packages == 0
            and self.weight == 0
            and self.volume == 0
        )

    @property
    def has_negative(self) -> bool:
        return self.quantity < 0 or self.packages < 0 or self.weight < 0 or self.volume < 0

    def share(self, quantity: int) -> "Footprint":
        """
        Footprint of ``quantity`` units taken proportionally from this one.

        Taking the whole quantity returns the exact remainder so that splits
        never leave rounding dust behind.
        """
        if quantity >= self.quantity:
            return self
        if self.quantity <= 0:
            return Footprint(quantity=quantity)
        ratio = Decimal(quantity) / Decimal(self.quantity)
        packages = int((Decimal(self.packages) * ratio).to_integral_value(rounding=ROUND_HALF_UP))
        return Footprint(
            quantity=quantity,
            packages=min(packages, self.packages),
            weight=min(to_measure(self.weight * ratio), self.weight),
            volume=min(to_measure(self.volume * ratio), self.volume),
        )

    def with_overrides(
        self,
        packages: Optional[int] = None,
        weight: Optional[Decimal] = None,
        volume: Optional[Decimal] = None,
    ) -> "Footprint":
        return Footprint(
            quantity=self.quantity,
            packages=self.packages if packages is None else packages,
            weight=self.weight if weight is None else weight,
            volume=self.volume if volume is None else volume,
        )

    def fits_within(self, other: "Footprint") -> bool:
        return (
            self.quantity <= other.quantity
            and self.packages <= other.packages
            and self.weight <= other.weight
            and self.volume <= other.volume
        )

    def as_dict(self) -> dict:
        return {
            "quantity": self.quantity,
            "packages": self.packages,
            "weight": str(self.weight),
            "volume": str(self.volume),
        }
