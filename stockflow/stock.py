"""Stocks: bounded holders of a resource quantity.

A stock's quantity changes only through :meth:`Stock.try_remove` and
:meth:`Stock.try_add`. Both either succeed completely or raise a transient
:class:`StockError` without side effects. On success they return a
:class:`Change` naming the processes that must be re-evaluated: a removal
frees capacity, so the processes depositing into the stock (its upstream) are
woken; an addition that leaves the stock above its low-water mark makes
resource available, so the processes withdrawing from it (its downstream) are
woken. The stock itself never calls into a process; the graph's dispatch loop
owns re-evaluation.

"""
from collections import deque
from math import inf, isfinite
from typing import Any, Callable, Deque, Iterable, List, NamedTuple, Optional
from typing import Sequence, Tuple, Union

from .component import Element
from .config import ConfigError
from .logsink import STOCK_LOG
from .resource import EPSILON, Item, Material, Payload, measure
from .simulation import ResultDict, SimEnvironment

EMPTY = 'Empty'
NORMAL = 'Normal'
FULL = 'Full'


class StockError(Exception):
    """Transient availability or capacity failure of a stock operation."""

    def __init__(self, stock: 'Stock', amount: float) -> None:
        super().__init__(stock, amount)
        self.stock = stock
        self.amount = amount


class InsufficientQuantity(StockError):
    def __str__(self) -> str:
        return (
            f'{self.stock.name}: cannot remove {self.amount}, '
            f'only {self.stock.quantity} available'
        )


class CapacityExceeded(StockError):
    def __str__(self) -> str:
        return (
            f'{self.stock.name}: cannot add {self.amount}, '
            f'only {self.stock.remaining} remaining'
        )


class ConservationError(Exception):
    """A stock quantity left its bounds; the simulation state is corrupt."""

    def __init__(
        self,
        message: str,
        time: Optional[float] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.time = time
        self.component = component
        self.operation = operation

    def __str__(self) -> str:
        return (
            f'{self.args[0]} (time={self.time}, component={self.component}, '
            f'operation={self.operation})'
        )


class Change(NamedTuple):
    """Outcome of a successful stock operation."""

    #: Material or items removed/added.
    payload: Payload
    #: Names of the processes to re-evaluate.
    wake: Tuple[str, ...]


class Stock(Element):
    """Base class of :class:`ArrayStock` and :class:`QueueStock`.

    :param float max_capacity:
        Inclusive upper bound of the quantity. Unbounded by default.
    :param float low_capacity:
        Low-water mark. The stock counts as empty while its quantity is at or
        below this mark, so processes drawing from it are not woken.

    """

    record_type = STOCK_LOG

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        max_capacity: float = inf,
        low_capacity: float = 0,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, loggers)
        if max_capacity is None:
            max_capacity = inf
        if not isinstance(max_capacity, (int, float)) or max_capacity < 0:
            raise ConfigError(f'{name}: invalid max_capacity {max_capacity!r}')
        if not isinstance(low_capacity, (int, float)) or not isfinite(low_capacity):
            raise ConfigError(f'{name}: invalid low_capacity {low_capacity!r}')
        if not 0 <= low_capacity <= max_capacity:
            raise ConfigError(
                f'{name}: low_capacity {low_capacity} not within '
                f'[0, {max_capacity}]'
            )
        self.max_capacity = max_capacity
        self.low_capacity = low_capacity

        #: Names of the processes depositing into this stock.
        self.upstream: List[str] = []
        #: Names of the processes withdrawing from this stock.
        self.downstream: List[str] = []

        self._put_hook: Optional[Callable[[], Any]] = None
        self._get_hook: Optional[Callable[[], Any]] = None

    @property
    def quantity(self) -> float:
        raise NotImplementedError()  # pragma: no cover

    @property
    def remaining(self) -> float:
        return self.max_capacity - self.quantity

    @property
    def is_empty(self) -> bool:
        return self.quantity <= self.low_capacity

    @property
    def is_full(self) -> bool:
        return self.quantity >= self.max_capacity - EPSILON

    @property
    def state(self) -> str:
        if self.is_empty:
            return EMPTY
        elif self.is_full:
            return FULL
        return NORMAL

    def can_remove(self, amount: float) -> bool:
        return amount <= self.quantity + EPSILON

    def can_add(self, amount: float) -> bool:
        return self.quantity + amount <= self.max_capacity + EPSILON

    def try_remove(self, amount: float) -> Change:
        """Remove `amount` from the stock.

        :raises InsufficientQuantity: If less than `amount` is held.

        """
        if amount < 0:
            raise ValueError(f'{self.name}: negative removal {amount}')
        if not self.can_remove(amount):
            raise InsufficientQuantity(self, amount)
        payload = self._take(amount)
        self._check_bounds('remove')
        self._log_change('Remove', payload)
        if self._get_hook:
            self._get_hook()
        return Change(payload, tuple(self.upstream))

    def try_add(self, payload: Payload) -> Change:
        """Add `payload` to the stock.

        :raises CapacityExceeded: If `payload` does not fit.

        """
        amount = measure(payload)
        if not self.can_add(amount):
            raise CapacityExceeded(self, amount)
        self._put(payload)
        self._check_bounds('add')
        self._log_change('Add', payload)
        if self._put_hook:
            self._put_hook()
        wake = () if self.is_empty else tuple(self.downstream)
        return Change(payload, wake)

    def _take(self, amount: float) -> Payload:
        raise NotImplementedError()  # pragma: no cover

    def _put(self, payload: Payload) -> None:
        raise NotImplementedError()  # pragma: no cover

    def contents(self) -> Any:
        raise NotImplementedError()  # pragma: no cover

    def _check_bounds(self, operation: str) -> None:
        quantity = self.quantity
        if quantity < -EPSILON or quantity > self.max_capacity + EPSILON:
            self.error(f'quantity {quantity} outside [0, {self.max_capacity}]')
            raise ConservationError(
                f'{self.name} quantity {quantity} outside [0, {self.max_capacity}]',
                time=self.env.now,
                component=self.name,
                operation=operation,
            )

    def _log_change(self, event: str, payload: Payload) -> None:
        self.emit(
            event,
            amount=measure(payload),
            occupied=self.quantity,
            remaining=self.remaining,
            state=self.state,
            contents=self.contents(),
        )

    def elab_hook(self) -> None:
        hints = self._probe_hints()
        if hints:
            self.auto_probe('quantity', **hints)

    def get_result_hook(self, result: ResultDict) -> None:
        result.setdefault('stocks', {})[self.name] = self.quantity


class ArrayStock(Stock):
    """Stock of continuous material.

    :param vec:
        Initial material, either a composition vector or a scalar quantity
        (a one-component vector).

    """

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        vec: Union[float, Sequence[float]] = 0.0,
        max_capacity: float = inf,
        low_capacity: float = 0,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, max_capacity, low_capacity, loggers)
        try:
            if isinstance(vec, (int, float)):
                self._material = Material([vec])
            else:
                self._material = Material(vec)
        except (TypeError, ValueError) as e:
            raise ConfigError(f'{name}: invalid vec {vec!r}: {e}') from e
        if not self._material:
            raise ConfigError(f'{name}: vec must have at least one component')
        if self._material.total > self.max_capacity:
            raise ConfigError(
                f'{name}: initial quantity {self._material.total} exceeds '
                f'max_capacity {self.max_capacity}'
            )

    @property
    def material(self) -> Material:
        return self._material

    @property
    def quantity(self) -> float:
        return self._material.total

    def _take(self, amount: float) -> Material:
        taken, self._material = self._material.split(amount)
        return taken

    def _put(self, payload: Payload) -> None:
        if not isinstance(payload, Material):
            raise TypeError(f'{self.name} holds material, not {payload!r}')
        self._material = self._material + payload

    def contents(self) -> List[float]:
        return list(self._material)


class QueueStock(Stock):
    """FIFO stock of discrete items.

    :param items:
        Initial items, given as ids or :class:`Item` instances.
    :param int count:
        Number of items to create when `items` is not given. Generated ids
        are ``<name>-<index>``.

    """

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        items: Optional[Iterable[Union[str, Item]]] = None,
        count: int = 0,
        max_capacity: float = inf,
        low_capacity: float = 0,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, max_capacity, low_capacity, loggers)
        if items is None:
            if not isinstance(count, int) or count < 0:
                raise ConfigError(f'{name}: invalid count {count!r}')
            items = [f'{name}-{i}' for i in range(count)]
        self._items: Deque[Item] = deque(
            item if isinstance(item, Item) else Item(str(item)) for item in items
        )
        if len(self._items) > self.max_capacity:
            raise ConfigError(
                f'{name}: {len(self._items)} initial items exceed '
                f'max_capacity {self.max_capacity}'
            )

    @property
    def items(self) -> Tuple[Item, ...]:
        return tuple(self._items)

    @property
    def quantity(self) -> int:
        return len(self._items)

    def _take(self, amount: float) -> Tuple[Item, ...]:
        count = int(amount)
        if count != amount:
            raise ValueError(f'{self.name}: cannot remove {amount} items')
        return tuple(self._items.popleft() for _ in range(count))

    def _put(self, payload: Payload) -> None:
        if isinstance(payload, Material) or not all(
            isinstance(item, Item) for item in payload
        ):
            raise TypeError(f'{self.name} holds items, not {payload!r}')
        self._items.extend(payload)

    def contents(self) -> str:
        return '|'.join(item.item_id for item in self._items)
