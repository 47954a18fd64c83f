"""Diagnostic tracing of a run: text log, VCD waveforms and SQLite tables.

Three kinds of observation reach the tracers:

 * messages from an element's :attr:`~stockflow.component.Element.info` family
   of trace functions;
 * probe values, i.e. stock quantities and process in-flight counts;
 * the :class:`~stockflow.logsink.LogRecord` of every stock and process state
   transition.

The text log takes all of them, filtered by level. The VCD tracer dumps probe
values as waveforms. The SQLite tracer keeps probe values in a trace table and
log records in a record table, so a run can be queried after the fact without
binding model loggers.

Tracing is independent of the model log streams in :mod:`stockflow.logsink`.
Each tracer is enabled with 'sim.<name>.enable' and limited to element scopes
matching 'sim.<name>.include_pat' and not matching 'sim.<name>.exclude_pat'.
A tracer with 'sim.<name>.persist' set to False removes its files on close.

"""
from typing import TYPE_CHECKING, Any, Callable, Dict, Generator, List, Optional
from typing import Set, Tuple
import json
import os
import re
import sqlite3
import sys
import traceback

from vcd import VCDWriter
import simpy

from .logsink import LogRecord
from .probe import ProbeCallback, ProbeTarget, probe_value
from .probe import attach as probe_attach
from .timescale import TimeValue, parse_time, scale_time

if TYPE_CHECKING:
    from .simulation import SimEnvironment

TraceCallback = Callable[..., None]
RecordCallback = Callable[[LogRecord], None]


class Tracer:
    """Base of the tracers.

    A tracer returns a callback for each kind of observation it takes, or None
    to decline. The base class declines everything.

    """

    name: str = ''

    def __init__(self, env: 'SimEnvironment') -> None:
        self.env = env
        self.enabled: bool = self._setting('enable', False)
        self.persist: bool = self._setting('persist', True)
        if self.enabled:
            self._include = self._patterns('include_pat', ['.*'])
            self._exclude = self._patterns('exclude_pat', [])
            self.open()

    def _setting(self, key: str, default: Any) -> Any:
        return self.env.config.setdefault(f'sim.{self.name}.{key}', default)

    def _patterns(self, key: str, default: List[str]) -> List['re.Pattern']:
        return [re.compile(pat) for pat in self._setting(key, default)]

    def wants(self, scope: str) -> bool:
        """Whether observations of `scope` reach this tracer."""
        if not self.enabled:
            return False
        if not any(r.match(scope) for r in self._include):
            return False
        return not any(r.match(scope) for r in self._exclude)

    def open(self) -> None:
        raise NotImplementedError()  # pragma: no cover

    def flush(self) -> None:
        pass

    def close(self) -> None:
        if self.enabled:
            self._close()
            if not self.persist:
                self.remove_files()

    def _close(self) -> None:
        pass

    def remove_files(self) -> None:
        pass

    def message(self, scope: str, level: str) -> Optional[TraceCallback]:
        return None

    def probe(
        self, scope: str, target: ProbeTarget, hints: Dict[str, Any]
    ) -> Optional[ProbeCallback]:
        return None

    def record(self, scope: str) -> Optional[RecordCallback]:
        return None

    def exception(self) -> None:
        pass


class LogTracer(Tracer):
    """Write messages, log records and probe values to a text log.

    Each line starts with 'sim.log.format'. 'sim.log.level' admits every level
    up to and including it: records are written from 'RECORD', probe values
    from 'PROBE'. An empty 'sim.log.file' writes to stderr.

    """

    name = 'log'
    default_format = '{level:7} {ts:.3f} {ts_unit}: {scope}:'

    levels = {
        'ERROR': 1,
        'WARNING': 2,
        'INFO': 3,
        'RECORD': 4,
        'PROBE': 5,
        'DEBUG': 6,
    }

    def open(self) -> None:
        config = self.env.config
        self.filename: str = config.setdefault('sim.log.file', 'sim.log')
        buffering: int = config.setdefault('sim.log.buffering', -1)
        self.max_level = self.levels[config.setdefault('sim.log.level', 'INFO')]
        self.format_str: str = config.setdefault('sim.log.format', self.default_format)
        magnitude, unit = self.env.timescale
        self.ts_unit = unit if magnitude == 1 else f'({magnitude}{unit})'
        if self.filename:
            self.file = open(self.filename, 'w', buffering)
        else:
            self.file = sys.stderr

    def flush(self) -> None:
        self.file.flush()

    def _close(self) -> None:
        if self.file is not sys.stderr:
            self.file.close()

    def remove_files(self) -> None:
        if self.filename and os.path.isfile(self.filename):
            os.remove(self.filename)

    def _prefix(self, level: str, scope: str) -> str:
        return self.format_str.format(
            level=level, ts=self.env.now, ts_unit=self.ts_unit, scope=scope
        )

    def _writer(self, scope: str, level: str) -> Optional[TraceCallback]:
        if self.levels[level] > self.max_level or not self.wants(scope):
            return None

        def write(*values: Any) -> None:
            print(self._prefix(level, scope), *values, file=self.file)

        return write

    def message(self, scope: str, level: str) -> Optional[TraceCallback]:
        return self._writer(scope, level)

    def probe(
        self, scope: str, target: ProbeTarget, hints: Dict[str, Any]
    ) -> Optional[ProbeCallback]:
        return self._writer(scope, hints.get('level', 'PROBE'))

    def record(self, scope: str) -> Optional[RecordCallback]:
        write = self._writer(scope, 'RECORD')
        if write is None:
            return None

        def record_callback(record: LogRecord) -> None:
            write(record.event, *(f'{k}={v}' for k, v in record.fields))

        return record_callback

    def exception(self) -> None:
        tb_lines = traceback.format_exception(*sys.exc_info())
        print(
            self._prefix('ERROR', 'Exception'),
            tb_lines[-1],
            '\n',
            *tb_lines,
            file=self.file,
        )


class VCDTracer(Tracer):
    """Dump probe values as VCD waveforms.

    Dumping may be confined to a window with 'sim.vcd.start_time' and
    'sim.vcd.stop_time'. A stop time before the start time dumps everything
    except ``[stop, start)``.

    """

    name = 'vcd'

    #: Time units a VCD timescale may use.
    units = ('s', 'ms', 'us', 'ns', 'ps', 'fs')

    def open(self) -> None:
        config = self.env.config
        filename: str = config.setdefault('sim.vcd.dump_file', 'sim.vcd')
        timescale = self._dump_timescale()
        self.scale_factor = scale_time(self.env.timescale, timescale)
        self.dump_file = open(filename, 'w')
        self.vcd = VCDWriter(
            self.dump_file,
            timescale=timescale,
            check_values=config.setdefault('sim.vcd.check_values', True),
        )
        start = self._window_edge('start_time')
        stop = self._window_edge('stop_time')
        self.env.process(self._dump_window(start, stop))

    def _dump_timescale(self) -> Tuple[int, str]:
        vcd_ts: Optional[str] = self.env.config.get('sim.vcd.timescale')
        timescale: TimeValue = parse_time(vcd_ts) if vcd_ts else self.env.timescale
        magnitude, unit = timescale
        if unit not in self.units:
            # Minutes, hours and days are dumped in seconds.
            return 1, 's'
        if int(magnitude) != magnitude:
            raise ValueError(
                f'sim.timescale magnitude must be an integer, got {magnitude}'
            )
        return int(magnitude), unit

    def _window_edge(self, key: str) -> Optional[float]:
        value: str = self._setting(key, '')
        if not value:
            return None
        return scale_time(parse_time(value), self.env.timescale)

    def _dump_window(
        self, start: Optional[float], stop: Optional[float]
    ) -> Generator[simpy.Timeout, None, None]:
        # Probes register their variables while the graph is built; the first
        # dump_on()/dump_off() must come after the last registration.
        yield self.env.timeout(0)
        edges = [(start, True), (stop, False)]
        switches = [(t, on) for t, on in edges if t is not None]
        switches.sort(key=lambda switch: switch[0])
        if switches and switches[0][1]:
            self.vcd.dump_off(self.vcd_now())
        for t, on in switches:
            yield self.env.timeout(t - self.env.now)
            if on:
                self.vcd.dump_on(self.vcd_now())
            else:
                self.vcd.dump_off(self.vcd_now())

    def vcd_now(self) -> float:
        return self.env.now * self.scale_factor

    def flush(self) -> None:
        self.dump_file.flush()

    def _close(self) -> None:
        self.vcd.close(self.vcd_now())
        self.dump_file.close()

    def remove_files(self) -> None:
        if os.path.isfile(self.dump_file.name):
            os.remove(self.dump_file.name)

    def probe(
        self, scope: str, target: ProbeTarget, hints: Dict[str, Any]
    ) -> Optional[ProbeCallback]:
        init = probe_value(target, hints)
        var_type = hints.get('var_type')
        if var_type is None:
            var_type = 'real' if isinstance(init, float) else 'integer'
        options = {k: hints[k] for k in ('size', 'ident') if k in hints}
        parent_scope, var_name = scope.rsplit('.', 1)
        var = self.vcd.register_var(
            parent_scope, var_name, var_type, init=hints.get('init', init), **options
        )

        def probe_callback(value: Any) -> None:
            self.vcd.change(var, self.vcd_now(), value)

        return probe_callback


class SQLiteTracer(Tracer):
    """Store probe values and log records in an SQLite database.

    Probe values go to 'sim.db.trace_table' as ``(timestamp, scope, value)``.
    Log records go to 'sim.db.record_table' as ``(timestamp, element,
    element_type, event, fields)`` where `fields` is a JSON object. Tables are
    created on first use.

    """

    name = 'db'

    def open(self) -> None:
        config = self.env.config
        self.filename: str = config.setdefault('sim.db.file', 'sim.sqlite')
        self.trace_table: str = config.setdefault('sim.db.trace_table', 'trace')
        self.record_table: str = config.setdefault('sim.db.record_table', 'records')
        self.remove_files()
        self.db = sqlite3.connect(self.filename)
        self._tables: Set[str] = set()

    def _create_table(self, table: str, columns: str) -> None:
        if table not in self._tables:
            self.db.execute(f'CREATE TABLE {table} ({columns})')
            self._tables.add(table)

    def flush(self) -> None:
        self.db.commit()

    def _close(self) -> None:
        self.db.commit()
        self.db.close()

    def remove_files(self) -> None:
        if self.filename == ':memory:':
            return
        for filename in [self.filename, f'{self.filename}-journal']:
            if os.path.exists(filename):
                os.remove(filename)

    def probe(
        self, scope: str, target: ProbeTarget, hints: Dict[str, Any]
    ) -> Optional[ProbeCallback]:
        self._create_table(self.trace_table, 'timestamp FLOAT, scope TEXT, value')
        insert_sql = (
            f'INSERT INTO {self.trace_table} (timestamp, scope, value) '
            f'VALUES (?, ?, ?)'
        )

        def probe_callback(value: Any) -> None:
            self.db.execute(insert_sql, (self.env.now, scope, value))

        return probe_callback

    def record(self, scope: str) -> Optional[RecordCallback]:
        self._create_table(
            self.record_table,
            'timestamp FLOAT, element TEXT, element_type TEXT, event TEXT, '
            'fields TEXT',
        )
        insert_sql = (
            f'INSERT INTO {self.record_table} '
            f'(timestamp, element, element_type, event, fields) '
            f'VALUES (?, ?, ?, ?, ?)'
        )

        def record_callback(record: LogRecord) -> None:
            fields = json.dumps(dict(record.fields), default=str)
            self.db.execute(
                insert_sql,
                (
                    record.time,
                    record.element_name,
                    record.element_type,
                    record.event,
                    fields,
                ),
            )

        return record_callback


class TraceManager:
    """Fan the observations of one environment out to its tracers."""

    tracer_types = (LogTracer, VCDTracer, SQLiteTracer)

    def __init__(self, env: 'SimEnvironment') -> None:
        self.tracers: List[Tracer] = []
        try:
            for tracer_type in self.tracer_types:
                self.tracers.append(tracer_type(env))
        except BaseException:
            self.close()
            raise

    def _callbacks(
        self, scope: str, activate: Callable[[Tracer], Optional[Callable]]
    ) -> List[Callable]:
        callbacks = []
        for tracer in self.tracers:
            if tracer.wants(scope):
                callback = activate(tracer)
                if callback is not None:
                    callbacks.append(callback)
        return callbacks

    def flush(self) -> None:
        for tracer in self.tracers:
            if tracer.enabled:
                tracer.flush()

    def close(self) -> None:
        for tracer in self.tracers:
            tracer.close()

    def messenger(self, scope: str, level: str) -> TraceCallback:
        """Get a function writing messages of `level` for `scope`."""
        callbacks = self._callbacks(scope, lambda t: t.message(scope, level))

        def trace(*values: Any) -> None:
            for callback in callbacks:
                callback(*values)

        return trace

    def recorder(self, scope: str) -> RecordCallback:
        """Get a function tracing the log records of `scope`."""
        callbacks = self._callbacks(scope, lambda t: t.record(scope))

        def trace_record(record: LogRecord) -> None:
            for callback in callbacks:
                callback(record)

        return trace_record

    def attach_probe(self, scope: str, target: ProbeTarget, **hints: Any) -> None:
        """Probe `target` for every tracer named in `hints`.

        ``hints[<tracer name>]`` holds the tracer's own hints; the remaining
        hints select what is probed (see :func:`stockflow.probe.attach`).

        """
        callbacks = self._callbacks(
            scope,
            lambda t: t.probe(scope, target, hints[t.name])
            if t.name in hints
            else None,
        )
        if callbacks:
            probe_attach(scope, target, callbacks, **hints)

    def exception(self) -> None:
        """Trace the exception being handled."""
        for tracer in self.tracers:
            if tracer.enabled:
                tracer.exception()
