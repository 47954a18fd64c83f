"""Element is the common base of stocks and processes.

A flow graph consists of named elements of two families: stocks hold
resources, processes move resources between stocks over time. Elements never
own one another; connections are stored as element names and resolved through
the graph's registries. This lets a graph contain cycles (e.g. trucks
circulating between a loader and a dump) without cyclic ownership.

Each element carries:

 * diagnostic trace functions (:attr:`Element.error`, :attr:`Element.warn`,
   :attr:`Element.info`, :attr:`Element.debug`) scoped by the element name and
   routed through the environment's :class:`~stockflow.tracer.TraceManager`;
 * the names of the model loggers it reports to. :meth:`Element.emit` turns a
   state transition into a :class:`~stockflow.logsink.LogRecord` and pushes it
   to each bound :class:`~stockflow.logsink.LogSink`.

"""
from typing import Any, Callable, Dict, Iterable, List

from .logsink import LogRecord, LogSink
from .simulation import ResultDict, SimEnvironment


class Element:
    """Base class of stocks and processes.

    :param SimEnvironment env: Simulation environment.
    :param str name: Unique name of the element within its graph.
    :param loggers: Names of the loggers this element reports to.

    """

    #: Record type of the element's log records (class attribute).
    record_type: str = ''

    def __init__(
        self, env: SimEnvironment, name: str, loggers: Iterable[str] = ()
    ) -> None:
        #: The simulation environment; a :class:`SimEnvironment` instance.
        self.env = env

        #: The element name (str).
        self.name = name

        #: Trace scope of the element.
        self.scope = name

        #: Names of the loggers this element's records go to.
        self.loggers: List[str] = list(loggers)
        self._sink_registry: Dict[str, LogSink] = {}

        tracemgr = self.env.tracemgr

        #: Log an error message.
        self.error: Callable[..., None] = tracemgr.messenger(self.scope, 'ERROR')
        #: Log a warning message.
        self.warn: Callable[..., None] = tracemgr.messenger(self.scope, 'WARNING')
        #: Log an informative message.
        self.info: Callable[..., None] = tracemgr.messenger(self.scope, 'INFO')
        #: Log a debug message.
        self.debug: Callable[..., None] = tracemgr.messenger(self.scope, 'DEBUG')
        self._trace_record = tracemgr.recorder(self.scope)

    @property
    def element_type(self) -> str:
        return type(self).__name__

    def bind_sinks(self, registry: Dict[str, LogSink]) -> None:
        """Resolve logger names through `registry` (shared with the graph)."""
        self._sink_registry = registry

    def emit(self, event: str, **fields: Any) -> LogRecord:
        """Record a state transition.

        The operation is appended to the environment's history, the record is
        traced and then pushed to every sink bound to this element's loggers.

        """
        record = LogRecord(
            self.env.now, self.name, self.element_type, event, tuple(fields.items())
        )
        self.env.note(self.name, event)
        self._trace_record(record)
        for logger in self.loggers:
            sink = self._sink_registry.get(logger)
            if sink is not None:
                sink.push(record)
        return record

    def auto_probe(self, name: str, target: Any = None, **hints: Any) -> None:
        if target is None:
            target = self
        target_scope = '.'.join([self.scope, name])
        self.env.tracemgr.attach_probe(target_scope, target, **hints)

    def elaborate(self) -> None:
        """Prepare the element for simulation.

        Called once by the graph after all connections are made and before the
        initial activation sweep.

        """
        self.elab_hook()

    def elab_hook(self) -> None:
        """Hook called after elaboration and before simulation phase."""
        pass

    def get_result_hook(self, result: ResultDict) -> None:
        """Hook called when the graph composes the simulation result."""
        pass

    def _probe_hints(self) -> Dict[str, Dict[str, Any]]:
        config = self.env.config
        hints: Dict[str, Dict[str, Any]] = {}
        if config.get('sim.log.enable'):
            hints['log'] = {'level': config.setdefault('sim.log.probe_level', 'PROBE')}
        if config.get('sim.vcd.enable'):
            hints['vcd'] = {}
        if config.get('sim.db.enable'):
            hints['db'] = {}
        return hints

    def __repr__(self) -> str:
        return f'<{self.element_type} {self.name!r}>'

