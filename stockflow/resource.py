"""Resources held by stocks and carried by processes.

Two representations exist and never mix within one stock:

 * :class:`Material` -- a continuous quantity with a composition vector, held
   by :class:`~stockflow.stock.ArrayStock`.
 * :class:`Item` -- a discrete, identifiable unit (e.g. a truck), held by
   :class:`~stockflow.stock.QueueStock`. An item may carry a material load.

"""
from typing import Iterable, NamedTuple, Optional, Sequence, Tuple, Union

#: Tolerance used when comparing material quantities.
EPSILON = 1e-9


class Material(tuple):
    """Immutable composition vector of non-negative quantities.

    The total quantity is the sum of the components. Scalar material is simply
    a one-component vector.

    >>> Material([60, 40]).split(50)
    (Material([30.0, 20.0]), Material([30.0, 20.0]))

    """

    def __new__(cls, components: Iterable[float] = ()) -> 'Material':
        values = tuple(float(c) for c in components)
        if any(c < 0 for c in values):
            raise ValueError(f'Material components must be non-negative: {values}')
        return super().__new__(cls, values)

    @classmethod
    def zeros(cls, n: int) -> 'Material':
        return cls([0.0] * n)

    @classmethod
    def of(cls, quantity: float, composition: Optional[Sequence[float]] = None):
        """Create `quantity` of material split in `composition` proportions."""
        if not composition:
            return cls([quantity])
        weight = sum(composition)
        if weight <= 0:
            raise ValueError(f'Invalid composition {composition}')
        return cls(quantity * c / weight for c in composition)

    @property
    def total(self) -> float:
        return sum(self)

    def __add__(self, other: 'Material') -> 'Material':  # type: ignore
        if not other:
            return self
        if not self:
            return other
        if len(self) != len(other):
            raise ValueError(
                f'Cannot combine materials of {len(self)} and {len(other)} components'
            )
        return Material(a + b for a, b in zip(self, other))

    def split(self, amount: float) -> Tuple['Material', 'Material']:
        """Split off `amount`, proportionally across all components.

        :returns: `(taken, remaining)` pair of materials.

        """
        total = self.total
        if total <= 0 or amount <= 0:
            return Material.zeros(len(self)), self
        if amount >= total - EPSILON:
            return self, Material.zeros(len(self))
        ratio = amount / total
        taken = [c * ratio for c in self]
        rest = [max(c - t, 0.0) for c, t in zip(self, taken)]
        return Material(taken), Material(rest)

    def __repr__(self) -> str:
        return f'Material({list(self)})'


class Item(NamedTuple):
    """A discrete, identifiable resource unit."""

    item_id: str
    load: Optional[Material] = None

    def loaded(self, load: Material) -> 'Item':
        return self._replace(load=load)

    def unloaded(self) -> 'Item':
        return self._replace(load=None)


Payload = Union[Material, Tuple[Item, ...]]


def measure(payload: Payload) -> float:
    """Quantity of a payload: material total or number of items."""
    if isinstance(payload, Material):
        return payload.total
    return len(payload)


def carried(payload: Payload) -> float:
    """Material quantity of a payload, including material loaded on items."""
    if isinstance(payload, Material):
        return payload.total
    return sum(item.load.total for item in payload if item.load is not None)
