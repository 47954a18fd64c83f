"""Processes: timed transfers of resources between stocks.

A process is a two-phase actor. *Starting* withdraws resources from its
upstream stock(s), takes exclusive ownership of them as an in-flight
:class:`Flight` and schedules a completion with the environment's
:class:`~stockflow.scheduler.EventScheduler`. *Completing* deposits the
flight's payload into the downstream stock(s).

A deposit is all-or-nothing. If a downstream stock lacks capacity the flight
stays with the process, which is then *blocked*: the deposit is retried each
time the process is woken, i.e. when a downstream stock frees capacity.
Resources are never dropped. After every successful deposit the process tries
to start again, so a continuously available upstream yields continuous
throughput.

Start preconditions are that no upstream stock is empty and no downstream
stock is full. A sampled withdrawal quantity is limited to what the upstream
stock holds, so a non-empty upstream never stalls a process. Failed attempts
are reported through the debug trace only; the process simply waits for the
next wake-up.

Every method that changes stocks returns the names of the processes the
changed stocks want woken. The graph's dispatch loop does the waking.

"""
from collections import deque
from enum import Enum
from itertools import count
from math import inf
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional
from typing import Sequence, Tuple, Type, Union

from .component import Element
from .config import ConfigError
from .distribution import Distribution, DistributionSpec
from .distribution import create_distribution, sample
from .logsink import PROCESS_LOG
from .resource import Item, Material, Payload, carried, measure
from .simulation import ResultDict, SimEnvironment
from .stock import ArrayStock, CapacityExceeded, ConservationError
from .stock import InsufficientQuantity, QueueStock, Stock

Deposits = List[Tuple[Stock, Payload]]
Withdrawals = List[Tuple[Stock, float]]


def _check_positive(name: str, param: str, dist: Distribution) -> None:
    if dist.upper <= 0:
        raise ConfigError(f'{name}: {param} never exceeds zero')


def _positive(name: str, param: str, spec: DistributionSpec) -> Distribution:
    dist = create_distribution(spec)
    _check_positive(name, param, dist)
    return dist


class ProcessState(Enum):
    IDLE = 'Idle'
    ACTIVE = 'Active'


class Flight:
    """Resources held by a process between start and deposit."""

    __slots__ = ('seq', 'event_id', 'started', 'held', 'deposits', 'arrived',
                 'blocked')

    def __init__(
        self,
        seq: int,
        event_id: str,
        started: float,
        held: Sequence[Payload],
        deposits: Deposits,
    ) -> None:
        self.seq = seq
        self.event_id = event_id
        self.started = started
        self.held = tuple(held)
        self.deposits = deposits
        self.arrived = False
        self.blocked = False

    @property
    def material(self) -> float:
        return sum(carried(p) for p in self.held)

    @property
    def items(self) -> int:
        return sum(len(p) for p in self.held if not isinstance(p, Material))

    def describe(self) -> Dict[str, Any]:
        items = [i for p in self.held if not isinstance(p, Material) for i in p]
        return {
            'event_id': self.event_id,
            'quantity': self.material,
            'item_count': self.items,
            'items': '|'.join(item.item_id for item in items),
        }


class Process(Element):
    """Base class of all process kinds.

    Subclasses declare their stock ports and implement :meth:`_withdrawals`
    and :meth:`_deposits`.

    """

    record_type = PROCESS_LOG

    #: Stock types required upstream, one entry per connected stock.
    upstream_ports: Tuple[Type[Stock], ...] = (Stock,)
    #: Stock types required downstream, one entry per connected stock.
    downstream_ports: Tuple[Type[Stock], ...] = (Stock,)
    #: Maximum number of flights held at once.
    max_in_flight: Union[int, float] = 1

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        time_dist: DistributionSpec = 0,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, loggers)
        self.time_dist = create_distribution(time_dist)

        #: Names of the stocks this process withdraws from.
        self.upstream: List[str] = []
        #: Names of the stocks this process deposits into.
        self.downstream: List[str] = []

        #: Number of successful deposits.
        self.completions = 0

        self._stocks: Mapping[str, Stock] = {}
        self._flights: Dict[int, Flight] = {}
        self._arrived: Deque[int] = deque()
        self._event_ids = count(1)
        self._state_hook: Optional[Any] = None

    @property
    def state(self) -> ProcessState:
        return ProcessState.ACTIVE if self._flights else ProcessState.IDLE

    @property
    def blocked(self) -> bool:
        return any(self._flights[seq].blocked for seq in self._arrived)

    @property
    def in_flight(self) -> int:
        return len(self._flights)

    @property
    def flights(self) -> Tuple[Flight, ...]:
        return tuple(self._flights.values())

    def in_flight_material(self) -> float:
        return sum(flight.material for flight in self._flights.values())

    def in_flight_items(self) -> int:
        return sum(flight.items for flight in self._flights.values())

    def connect_upstream(self, stock: Stock) -> None:
        self.upstream.append(stock.name)
        stock.downstream.append(self.name)

    def connect_downstream(self, stock: Stock) -> None:
        self.downstream.append(stock.name)
        stock.upstream.append(self.name)

    def check_ports(self, stocks: Mapping[str, Stock]) -> List[str]:
        """Validate connected stocks against the declared ports.

        :returns: List of error messages; empty if the connections are valid.

        """
        errors = []
        for direction, names, ports in (
            ('upstream', self.upstream, self.upstream_ports),
            ('downstream', self.downstream, self.downstream_ports),
        ):
            expected = ', '.join(p.__name__ for p in ports) or 'nothing'
            if len(names) != len(ports):
                errors.append(
                    f'{self.name}: {direction} requires {len(ports)} stock(s) '
                    f'({expected}), got {len(names)}'
                )
                continue
            unused = list(ports)
            for name in names:
                match = next(
                    (p for p in unused if isinstance(stocks[name], p)), None
                )
                if match is None:
                    errors.append(
                        f'{self.name}: {direction} stock {name} '
                        f'({type(stocks[name]).__name__}) does not fit ports '
                        f'({expected})'
                    )
                    break
                unused.remove(match)
        return errors

    def bind(self, stocks: Mapping[str, Stock]) -> None:
        """Resolve stock names through the graph's stock registry."""
        self._stocks = stocks

    def _port(self, names: Sequence[str], stock_type: Type[Stock]) -> Stock:
        for name in names:
            stock = self._stocks[name]
            if isinstance(stock, stock_type):
                return stock
        raise LookupError(f'{self.name}: no {stock_type.__name__} connected')

    def wake(self) -> List[str]:
        """Re-evaluate after a stock change: retry deposits, then start."""
        wakes = self._retry_deposits()
        wakes.extend(self.try_start())
        return wakes

    def complete(self, seq: int) -> List[str]:
        """Handle the scheduled completion of flight `seq`."""
        flight = self._flights.get(seq)
        if flight is None or flight.arrived:
            raise ConservationError(
                f'{self.name} has no flight for completion {seq}',
                time=self.env.now,
                component=self.name,
                operation='complete',
            )
        flight.arrived = True
        self._arrived.append(seq)
        return self.wake()

    def try_start(self) -> List[str]:
        """Start as many flights as capacity and preconditions allow."""
        wakes: List[str] = []
        while len(self._flights) < self.max_in_flight:
            if not self._start_one(wakes):
                break
        return wakes

    def _start_one(self, wakes: List[str]) -> bool:
        requests = self._withdrawals()
        if isinstance(requests, str):
            self.debug('not started:', requests)
            return False
        taken = self._withdraw(requests, wakes)
        held, deposits = self._deposits(taken)
        duration = sample(self.time_dist, self.env.rand, floor=0)
        seq = self.env.scheduler.schedule(self.env.now + duration, self.name)
        event_id = f'{self.name}_{next(self._event_ids):06d}'
        flight = Flight(seq, event_id, self.env.now, held, deposits)
        self._flights[seq] = flight
        self.emit('Start', duration=duration, **flight.describe())
        self._changed()
        return True

    def _retry_deposits(self) -> List[str]:
        wakes: List[str] = []
        while self._arrived:
            flight = self._flights[self._arrived[0]]
            full = self._deposit(flight, wakes)
            if full is not None:
                if not flight.blocked:
                    flight.blocked = True
                    self.info(f'{flight.event_id} blocked by {full}')
                    self.emit('Blocked', stock=full, **flight.describe())
                break
            self._arrived.popleft()
            del self._flights[flight.seq]
            self.completions += 1
            self.emit('Complete', started=flight.started, **flight.describe())
            self._changed()
        return wakes

    def _withdraw(self, requests: Withdrawals, wakes: List[str]) -> List[Payload]:
        taken = []
        for stock, amount in requests:
            try:
                change = stock.try_remove(amount)
            except InsufficientQuantity as e:
                raise ConservationError(
                    f'{self.name}: withdrawal failed after precheck ({e})',
                    time=self.env.now,
                    component=self.name,
                    operation='withdraw',
                ) from e
            taken.append(change.payload)
            wakes.extend(change.wake)
        return taken

    def _deposit(self, flight: Flight, wakes: List[str]) -> Optional[str]:
        """Deposit all of `flight` or nothing.

        :returns: Name of a stock lacking capacity, or None on success.

        """
        if len(flight.deposits) > 1:
            for stock, payload in flight.deposits:
                if not stock.can_add(measure(payload)):
                    return stock.name
        for i, (stock, payload) in enumerate(flight.deposits):
            try:
                change = stock.try_add(payload)
            except CapacityExceeded as e:
                if i == 0:
                    return stock.name
                raise ConservationError(
                    f'{self.name}: partial deposit ({e})',
                    time=self.env.now,
                    component=self.name,
                    operation='deposit',
                ) from e
            wakes.extend(change.wake)
        return None

    def _changed(self) -> None:
        if self._state_hook:
            self._state_hook()

    def _sample_quantity(self, dist: Distribution, stock: Stock) -> float:
        """Sample a withdrawal quantity, limited to what `stock` holds."""
        quantity = min(sample(dist, self.env.rand, floor=0), stock.quantity)
        if isinstance(stock, QueueStock):
            quantity = max(1, int(round(quantity)))
        return quantity

    def _full_downstream(self) -> Optional[str]:
        for name in self.downstream:
            if self._stocks[name].is_full:
                return name
        return None

    def _withdrawals(self) -> Union[str, Withdrawals]:
        """Stocks and amounts to withdraw, or why starting is not possible."""
        raise NotImplementedError()  # pragma: no cover

    def _deposits(self, taken: List[Payload]) -> Tuple[List[Payload], Deposits]:
        """Held payloads and planned deposits for withdrawn payloads."""
        raise NotImplementedError()  # pragma: no cover

    def elab_hook(self) -> None:
        hints = self._probe_hints()
        if hints:
            self.auto_probe('in_flight', **hints)

    def get_result_hook(self, result: ResultDict) -> None:
        result.setdefault('processes', {})[self.name] = self.completions


class TransferProcess(Process):
    """Move a sampled quantity between two stocks of the same kind."""

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        time_dist: DistributionSpec,
        quantity_dist: DistributionSpec = 1,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, time_dist, loggers)
        self.quantity_dist = _positive(name, 'quantity_dist', quantity_dist)

    def check_ports(self, stocks: Mapping[str, Stock]) -> List[str]:
        errors = super().check_ports(stocks)
        if not errors:
            up, down = stocks[self.upstream[0]], stocks[self.downstream[0]]
            if type(up) is not type(down):
                errors.append(
                    f'{self.name}: cannot transfer from {type(up).__name__} '
                    f'{up.name} to {type(down).__name__} {down.name}'
                )
        return errors

    def _withdrawals(self) -> Union[str, Withdrawals]:
        up = self._stocks[self.upstream[0]]
        if up.is_empty:
            return f'{up.name} empty'
        full = self._full_downstream()
        if full:
            return f'{full} full'
        return [(up, self._sample_quantity(self.quantity_dist, up))]

    def _deposits(self, taken: List[Payload]) -> Tuple[List[Payload], Deposits]:
        return taken, [(self._stocks[self.downstream[0]], taken[0])]


class LoadingProcess(Process):
    """Load material onto an item, e.g. ore onto a truck.

    Upstream: an :class:`ArrayStock` of material and a :class:`QueueStock` of
    items. Downstream: a :class:`QueueStock` receiving the loaded item.

    """

    upstream_ports = (ArrayStock, QueueStock)
    downstream_ports = (QueueStock,)

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        load_time_dist: DistributionSpec,
        load_quantity_dist: DistributionSpec,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, load_time_dist, loggers)
        self.load_quantity_dist = _positive(
            name, 'load_quantity_dist', load_quantity_dist
        )

    def _withdrawals(self) -> Union[str, Withdrawals]:
        material = self._port(self.upstream, ArrayStock)
        items = self._port(self.upstream, QueueStock)
        if items.is_empty:
            return f'no item in {items.name}'
        if material.is_empty:
            return f'{material.name} empty'
        full = self._full_downstream()
        if full:
            return f'{full} full'
        quantity = self._sample_quantity(self.load_quantity_dist, material)
        return [(items, 1), (material, quantity)]

    def _deposits(self, taken: List[Payload]) -> Tuple[List[Payload], Deposits]:
        (item,), load = taken
        if item.load is not None:
            load = item.load + load
        loaded = (item.loaded(load),)
        return [loaded], [(self._stocks[self.downstream[0]], loaded)]


class DumpingProcess(Process):
    """Unload an item's material, e.g. a truck tipping its ore.

    Upstream: a :class:`QueueStock` of loaded items. Downstream: an
    :class:`ArrayStock` receiving the load and a :class:`QueueStock`
    receiving the emptied item.

    """

    upstream_ports = (QueueStock,)
    downstream_ports = (ArrayStock, QueueStock)

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        dump_time_dist: DistributionSpec,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, dump_time_dist, loggers)

    def _withdrawals(self) -> Union[str, Withdrawals]:
        up = self._stocks[self.upstream[0]]
        if up.is_empty:
            return f'no item in {up.name}'
        full = self._full_downstream()
        if full:
            return f'{full} full'
        return [(up, 1)]

    def _deposits(self, taken: List[Payload]) -> Tuple[List[Payload], Deposits]:
        (item,) = taken[0]
        material = self._port(self.downstream, ArrayStock)
        items = self._port(self.downstream, QueueStock)
        load = item.load if item.load is not None else Material()
        return taken, [(material, load), (items, (item.unloaded(),))]


class MovementProcess(Process):
    """Move items between queues, each on its own trip.

    Every available item departs immediately with an independently sampled
    travel time. Items arriving at a full destination wait, and are delivered
    in arrival order once capacity frees.

    """

    upstream_ports = (QueueStock,)
    downstream_ports = (QueueStock,)
    max_in_flight = inf

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        travel_time_dist: DistributionSpec,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, travel_time_dist, loggers)

    def _withdrawals(self) -> Union[str, Withdrawals]:
        up = self._stocks[self.upstream[0]]
        if up.is_empty:
            return f'no item in {up.name}'
        full = self._full_downstream()
        if full:
            return f'{full} full'
        return [(up, 1)]

    def _deposits(self, taken: List[Payload]) -> Tuple[List[Payload], Deposits]:
        return taken, [(self._stocks[self.downstream[0]], taken[0])]


class Source(Process):
    """Create material or items every `interval_dist`.

    :param composition:
        Component proportions of created material. Defaults to equal
        proportions across the downstream stock's components.

    """

    upstream_ports = ()

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        interval_dist: DistributionSpec,
        quantity_dist: DistributionSpec = 1,
        composition: Optional[Sequence[float]] = None,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, interval_dist, loggers)
        _check_positive(name, 'interval_dist', self.time_dist)
        self.quantity_dist = _positive(name, 'quantity_dist', quantity_dist)
        if composition is not None and (
            not composition or any(c < 0 for c in composition) or not sum(composition)
        ):
            raise ConfigError(f'{name}: invalid composition {composition!r}')
        self.composition = composition
        self._item_ids = count()
        #: Total quantity created.
        self.created: float = 0

    def check_ports(self, stocks: Mapping[str, Stock]) -> List[str]:
        errors = super().check_ports(stocks)
        if not errors and self.composition is not None:
            down = stocks[self.downstream[0]]
            if isinstance(down, ArrayStock) and len(self.composition) != len(
                down.material
            ):
                errors.append(
                    f'{self.name}: composition has {len(self.composition)} '
                    f'components, {down.name} has {len(down.material)}'
                )
        return errors

    def _withdrawals(self) -> Union[str, Withdrawals]:
        full = self._full_downstream()
        if full:
            return f'{full} full'
        return []

    def _deposits(self, taken: List[Payload]) -> Tuple[List[Payload], Deposits]:
        down = self._stocks[self.downstream[0]]
        quantity = sample(self.quantity_dist, self.env.rand, floor=0)
        payload: Payload
        if isinstance(down, ArrayStock):
            composition = self.composition or [1.0] * len(down.material)
            payload = Material.of(quantity, composition)
        else:
            payload = tuple(
                Item(f'{self.name}-{next(self._item_ids)}')
                for _ in range(max(1, int(round(quantity))))
            )
        self.created += measure(payload)
        return [payload], [(down, payload)]


class Sink(Process):
    """Remove `quantity_dist` from a stock every `time_dist`."""

    downstream_ports = ()

    def __init__(
        self,
        env: SimEnvironment,
        name: str,
        time_dist: DistributionSpec = 0,
        quantity_dist: DistributionSpec = 1,
        loggers: Iterable[str] = (),
    ) -> None:
        super().__init__(env, name, time_dist, loggers)
        self.quantity_dist = _positive(name, 'quantity_dist', quantity_dist)
        #: Total quantity removed.
        self.consumed: float = 0

    def _withdrawals(self) -> Union[str, Withdrawals]:
        up = self._stocks[self.upstream[0]]
        if up.is_empty:
            return f'{up.name} empty'
        return [(up, self._sample_quantity(self.quantity_dist, up))]

    def _deposits(self, taken: List[Payload]) -> Tuple[List[Payload], Deposits]:
        self.consumed += measure(taken[0])
        return taken, []
