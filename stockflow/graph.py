"""Flow graphs: building, validation and the dispatch loop.

A model is described declaratively by a :class:`ModelSpec`: node specs
(kind, name, parameters, loggers), edge specs (upstream name, downstream
name) and logger specs. :func:`build` turns a description into a runnable
:class:`Graph`, or raises a single :class:`ValidationError` listing every
problem found.

Edges always join a stock and a process. A stock→process edge makes the stock
an upstream of the process; a process→stock edge makes it a downstream.
Elements refer to each other by name only and are looked up in the graph's
registries, so a graph may freely contain cycles.

:meth:`Graph.run_to` is the only orchestration loop. It pops completions from
the :class:`~stockflow.scheduler.EventScheduler`, dispatches each to its
process and then re-evaluates every process woken by the resulting stock
changes, in FIFO order, before popping the next completion.

"""
from collections import deque
from contextlib import contextmanager
from math import inf
from typing import Any, Deque, Dict, Iterable, Iterator, List, Mapping, NamedTuple
from typing import Optional, Sequence, Set, Tuple, Type, Union

from .component import Element
from .config import ConfigDict, ConfigError
from .dot import generate_dot
from .logsink import LogSink, record_family
from .process import DumpingProcess, LoadingProcess, MovementProcess, Process
from .process import Sink, Source, TransferProcess
from .scheduler import CausalityError, EventScheduler, ScheduledEvent
from .simulation import HistoryEntry, ResultDict, SimEnvironment
from .stock import ArrayStock, ConservationError, QueueStock, Stock

_stock_kinds: Dict[str, Type[Stock]] = {
    'arraystock': ArrayStock,
    'array': ArrayStock,
    'queuestock': QueueStock,
    'queue': QueueStock,
    'truckstock': QueueStock,
}

_process_kinds: Dict[str, Type[Process]] = {
    'transferprocess': TransferProcess,
    'transfer': TransferProcess,
    'loadingprocess': LoadingProcess,
    'loading': LoadingProcess,
    'dumpingprocess': DumpingProcess,
    'dumping': DumpingProcess,
    'movementprocess': MovementProcess,
    'movement': MovementProcess,
    'truckmovementprocess': MovementProcess,
    'source': Source,
    'sink': Sink,
}


class ValidationError(ConfigError):
    """A model failed to build. `errors` lists every problem found."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__(
            '{} model error(s):\n  {}'.format(len(self.errors), '\n  '.join(self.errors))
        )


class SimulationError(Exception):
    """A run was aborted by a conservation or causality violation.

    :attr:`history` holds the most recent `(time, component, operation)`
    entries leading up to the failure, oldest first.

    """

    def __init__(
        self,
        message: str,
        history: Sequence[HistoryEntry],
        time: Optional[float] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.history = list(history)
        self.time = time
        self.component = component
        self.operation = operation

    def __str__(self) -> str:
        lines = [self.args[0], 'recent history:']
        lines.extend(f'  {t} {component} {op}' for t, component, op in self.history)
        return '\n'.join(lines)


class NodeSpec(NamedTuple):
    kind: str
    name: str
    params: Mapping[str, Any] = {}
    loggers: Sequence[str] = ()


class EdgeSpec(NamedTuple):
    upstream: str
    downstream: str


class LoggerSpec(NamedTuple):
    name: str
    #: 'StockLog', 'ProcessLog' or any name ending with one of those.
    record_type: str
    max_length: Optional[int] = None


class ModelSpec(NamedTuple):
    """Declarative description of a flow graph."""

    nodes: Sequence[NodeSpec]
    edges: Sequence[EdgeSpec]
    loggers: Sequence[LoggerSpec] = ()

    @classmethod
    def from_dict(cls, model: Mapping[str, Any]) -> 'ModelSpec':
        """Create a spec from the in-memory form of a YAML model.

        The mapping holds 'loggers', 'components' and 'connections' lists.
        Each component names its 'type' (or 'kind'), its 'name', an optional
        'loggers' list and its parameters, either inline or under 'params'.
        Connections are `{upstream, downstream}` mappings or pairs. Other
        top-level keys are ignored.

        """
        errors: List[str] = []
        loggers = []
        for i, logger in enumerate(model.get('loggers') or ()):
            try:
                loggers.append(
                    LoggerSpec(
                        logger['name'],
                        logger['record_type'],
                        logger.get('max_length'),
                    )
                )
            except (KeyError, TypeError, AttributeError) as e:
                errors.append(f'logger #{i}: missing or invalid {e}')

        nodes = []
        for i, component in enumerate(model.get('components') or ()):
            try:
                params = dict(component)
                name = params.pop('name')
                kind = params.pop('type', None) or params.pop('kind')
            except (KeyError, TypeError, ValueError) as e:
                errors.append(f'component #{i}: missing or invalid {e}')
                continue
            component_loggers = params.pop('loggers', None) or ()
            params.update(params.pop('params', None) or {})
            nodes.append(NodeSpec(kind, name, params, tuple(component_loggers)))

        edges = []
        for i, connection in enumerate(model.get('connections') or ()):
            try:
                if isinstance(connection, Mapping):
                    edges.append(
                        EdgeSpec(connection['upstream'], connection['downstream'])
                    )
                else:
                    edges.append(EdgeSpec(*connection))
            except (KeyError, TypeError) as e:
                errors.append(f'connection #{i}: missing or invalid {e}')

        if errors:
            raise ValidationError(errors)
        return cls(nodes, edges, loggers)

    def build(
        self,
        env: Optional[SimEnvironment] = None,
        seed: Optional[int] = None,
        config: Optional[ConfigDict] = None,
    ) -> 'Graph':
        return build(self.nodes, self.edges, self.loggers, seed, config, env)


def _normalize_kind(kind: str) -> str:
    return kind.lower().replace('-', '').replace('_', '').replace(' ', '')


def _normalize_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    # 'load_time_dist_secs' and 'load_time_dist' name the same parameter.
    return {
        (key[: -len('_secs')] if key.endswith('_secs') else key): value
        for key, value in params.items()
    }


def build(
    nodes: Iterable[Union[NodeSpec, Tuple[Any, ...]]],
    edges: Iterable[Union[EdgeSpec, Tuple[str, str]]],
    loggers: Iterable[LoggerSpec] = (),
    seed: Optional[int] = None,
    config: Optional[ConfigDict] = None,
    env: Optional[SimEnvironment] = None,
) -> 'Graph':
    """Build and validate a runnable graph.

    :param nodes: :class:`NodeSpec` instances (or equivalent tuples).
    :param edges: :class:`EdgeSpec` instances or `(upstream, downstream)`.
    :param loggers: :class:`LoggerSpec` instances.
    :param int seed: Seed of the run; overrides 'sim.seed'.
    :param dict config:
        Configuration for a new environment when `env` is not given.
    :param SimEnvironment env: Environment to build the graph in.
    :raises ValidationError:
        Listing duplicate names, unknown kinds, invalid parameters (including
        distributions), dangling or ill-typed edges, port mismatches and
        logger problems.

    """
    if env is None:
        config = {} if config is None else config
        if seed is not None:
            config['sim.seed'] = seed
        env = SimEnvironment(config)
    elif seed is not None:
        env.config['sim.seed'] = seed
        env.rand.seed(seed, version=1)

    errors: List[str] = []

    logger_specs: Dict[str, LoggerSpec] = {}
    for spec in loggers:
        spec = LoggerSpec(*spec)
        if spec.name in logger_specs:
            errors.append(f'logger {spec.name}: duplicate name')
        elif not isinstance(spec.record_type, str) or not record_family(
            spec.record_type
        ):
            errors.append(f'logger {spec.name}: unknown record type {spec.record_type!r}')
        elif spec.max_length is not None and (
            not isinstance(spec.max_length, int) or spec.max_length < 1
        ):
            errors.append(f'logger {spec.name}: invalid max_length {spec.max_length!r}')
        else:
            logger_specs[spec.name] = spec

    declared: Set[str] = set()
    order: List[str] = []
    stocks: Dict[str, Stock] = {}
    processes: Dict[str, Process] = {}
    for node in nodes:
        node = NodeSpec(*node)
        if node.name in declared:
            errors.append(f'{node.name}: duplicate component name')
            continue
        declared.add(node.name)
        kind = _normalize_kind(str(node.kind))
        element_type: Optional[Type[Element]] = _stock_kinds.get(kind) or (
            _process_kinds.get(kind)
        )
        if element_type is None:
            errors.append(f'{node.name}: unknown component kind "{node.kind}"')
            continue
        for logger in node.loggers:
            spec = logger_specs.get(logger)
            if spec is None:
                errors.append(f'{node.name}: unknown logger "{logger}"')
            elif record_family(spec.record_type) != element_type.record_type:
                errors.append(
                    f'{node.name}: logger "{logger}" records {spec.record_type}, '
                    f'not {element_type.record_type}'
                )
        try:
            element = element_type(
                env, node.name, loggers=node.loggers, **_normalize_params(node.params)
            )
        except (ConfigError, ValueError, TypeError) as e:
            message = str(e)
            if not message.startswith(f'{node.name}:'):
                message = f'{node.name}: {message}'
            errors.append(message)
            continue
        order.append(node.name)
        if isinstance(element, Stock):
            stocks[node.name] = element
        else:
            processes[node.name] = element

    for edge in edges:
        upstream, downstream = EdgeSpec(*edge)
        missing = [name for name in (upstream, downstream) if name not in declared]
        if missing:
            errors.extend(
                f'connection {upstream} -> {downstream}: unknown component "{name}"'
                for name in missing
            )
            continue
        if upstream in stocks and downstream in processes:
            processes[downstream].connect_upstream(stocks[upstream])
        elif upstream in processes and downstream in stocks:
            processes[upstream].connect_downstream(stocks[downstream])
        elif upstream in stocks and downstream in stocks:
            errors.append(
                f'connection {upstream} -> {downstream}: stocks must be joined '
                f'by a process'
            )
        elif upstream in processes and downstream in processes:
            errors.append(
                f'connection {upstream} -> {downstream}: processes must be joined '
                f'by a stock'
            )

    for process in processes.values():
        errors.extend(process.check_ports(stocks))

    if errors:
        raise ValidationError(errors)

    sinks = {
        name: LogSink(name, spec.max_length, spec.record_type)
        for name, spec in logger_specs.items()
    }
    return Graph(env, stocks, processes, sinks, order)


class Graph:
    """A validated, runnable flow graph.

    Normally created by :func:`build`.

    """

    def __init__(
        self,
        env: SimEnvironment,
        stocks: Dict[str, Stock],
        processes: Dict[str, Process],
        sinks: Optional[Dict[str, LogSink]] = None,
        order: Optional[Sequence[str]] = None,
    ) -> None:
        self.env = env
        #: Stock registry, by name.
        self.stocks = stocks
        #: Process registry, by name.
        self.processes = processes
        #: Log sinks, by logger name.
        self.sinks: Dict[str, LogSink] = {} if sinks is None else sinks
        self._order = list(order) if order is not None else [*stocks, *processes]
        #: Number of completions dispatched so far.
        self.dispatched = 0
        self._started = False
        for element in self.elements():
            element.bind_sinks(self.sinks)
        for process in processes.values():
            process.bind(self.stocks)

    @property
    def scheduler(self) -> EventScheduler:
        return self.env.scheduler

    @property
    def now(self) -> float:
        return self.env.now

    @property
    def history(self) -> List[HistoryEntry]:
        return list(self.env.history)

    def elements(self) -> Iterator[Element]:
        """All elements in declaration order."""
        for name in self._order:
            yield self.stocks[name] if name in self.stocks else self.processes[name]

    def subscribe(self, name: str, sink: Optional[LogSink] = None) -> LogSink:
        """Bind a sink to the log stream `name`.

        If `name` is a declared logger, `sink` replaces its default sink.
        Otherwise a new stream is created and every element matching the
        sink's record type (all elements if it has none) reports to it.

        :returns: The bound sink.

        """
        if sink is None:
            sink = LogSink(name)
        family = None if sink.record_type is None else record_family(sink.record_type)
        if name in self.sinks:
            current = self.sinks[name].record_type
            if family and current and record_family(current) != family:
                raise ConfigError(
                    f'Logger {name} records {current}, not {sink.record_type}'
                )
        else:
            for element in self.elements():
                if family is None or element.record_type == family:
                    element.loggers.append(name)
        self.sinks[name] = sink
        return sink

    def start(self) -> None:
        """Elaborate elements and run the initial activation sweep.

        Called implicitly by the run methods; later calls do nothing.

        """
        if self._started:
            return
        self._started = True
        for element in self.elements():
            element.elaborate()
        generate_dot(self)
        with self._abort_on_violation():
            self._propagate(name for name in self._order if name in self.processes)

    def run_to(self, end_time: float) -> float:
        """Dispatch all completions due at or before `end_time`.

        The clock is then advanced to `end_time` (unless it is infinite), even
        if no events remain.

        :returns: The simulation time reached.
        :raises SimulationError: On a conservation or causality violation.

        """
        if end_time < self.env.now:
            raise ValueError(f'Cannot run to {end_time}, already at {self.env.now}')
        self.start()
        with self._abort_on_violation():
            while True:
                event = self.scheduler.advance(until=end_time)
                if event is None:
                    break
                self._dispatch(event)
            if self.env.now < end_time < inf:
                self.env.run(until=end_time)
        return self.env.now

    def run_n_events(self, count: int) -> int:
        """Dispatch up to `count` completions.

        :returns: The number of completions dispatched.

        """
        self.start()
        dispatched = 0
        with self._abort_on_violation():
            while dispatched < count:
                event = self.scheduler.advance()
                if event is None:
                    break
                self._dispatch(event)
                dispatched += 1
        return dispatched

    def step(self) -> Optional[ScheduledEvent]:
        """Dispatch the next completion, if any, and return it."""
        self.start()
        with self._abort_on_violation():
            event = self.scheduler.advance()
            if event is not None:
                self._dispatch(event)
        return event

    def close(self) -> int:
        """Cancel all pending completions; returns how many were cancelled."""
        cancelled = self.scheduler.clear()
        self.env.tracemgr.flush()
        return cancelled

    def material_total(self) -> float:
        """Material held in stocks, loaded on items and in flight."""
        total = 0.0
        for stock in self.stocks.values():
            if isinstance(stock, ArrayStock):
                total += stock.quantity
            elif isinstance(stock, QueueStock):
                total += sum(i.load.total for i in stock.items if i.load is not None)
        total += sum(p.in_flight_material() for p in self.processes.values())
        return total

    def item_total(self) -> int:
        """Items held in queue stocks and in flight."""
        total = sum(
            stock.quantity for stock in self.stocks.values()
            if isinstance(stock, QueueStock)
        )
        total += sum(p.in_flight_items() for p in self.processes.values())
        return total

    def get_result(self, result: ResultDict) -> None:
        """Add final stock quantities and completion counts to `result`."""
        for element in self.elements():
            element.get_result_hook(result)
        result['sim.dispatched'] = self.dispatched

    def _dispatch(self, event: ScheduledEvent) -> None:
        self.env.note(event.process, 'dispatch')
        wakes = self.processes[event.process].complete(event.seq)
        self.dispatched += 1
        self._propagate(wakes)

    def _propagate(self, names: Iterable[str]) -> None:
        queue: Deque[str] = deque()
        queued: Set[str] = set()
        for name in names:
            if name not in queued:
                queued.add(name)
                queue.append(name)
        while queue:
            name = queue.popleft()
            queued.discard(name)
            for woken in self.processes[name].wake():
                if woken not in queued:
                    queued.add(woken)
                    queue.append(woken)

    @contextmanager
    def _abort_on_violation(self) -> Iterator[None]:
        try:
            yield
        except (ConservationError, CausalityError) as e:
            self.env.tracemgr.exception()
            raise SimulationError(
                str(e),
                self.env.history,
                time=e.time,
                component=e.component,
                operation=e.operation,
            ) from e
