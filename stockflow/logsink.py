"""Bounded recorders for model log streams.

Every observable state transition of a stock (add, remove) or process (start,
complete, blocked) produces one :class:`LogRecord`. Records are pushed to the
:class:`LogSink` instances bound to the element's named loggers. A sink keeps
at most `max_length` records; once full, the oldest record is evicted.

Persisting records (CSV files, databases, ...) is left to the owner of the
sink, typically via the `on_record` callback or by draining :meth:`records`
after a run.

"""
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterator, List, NamedTuple, Optional
from typing import Tuple

#: Record types a logger may be bound to.
STOCK_LOG = 'StockLog'
PROCESS_LOG = 'ProcessLog'
RECORD_TYPES = (STOCK_LOG, PROCESS_LOG)


def record_family(record_type: str) -> Optional[str]:
    """Map a record type name such as 'ArrayStockLog' to 'StockLog'."""
    for family in RECORD_TYPES:
        if record_type.endswith(family):
            return family
    return None


class LogRecord(NamedTuple):
    """Immutable snapshot of one element state transition."""

    time: float
    element_name: str
    element_type: str
    event: str
    fields: Tuple[Tuple[str, Any], ...] = ()

    def get(self, key: str, default: Any = None) -> Any:
        for name, value in self.fields:
            if name == key:
                return value
        return default

    def as_dict(self) -> Dict[str, Any]:
        d = {
            'time': self.time,
            'element_name': self.element_name,
            'element_type': self.element_type,
            'event': self.event,
        }
        d.update(self.fields)
        return d


class LogSink:
    """Fixed-capacity, FIFO-evicting record buffer.

    :param str name: Name of the log stream.
    :param int max_length:
        Maximum number of retained records or None for unbounded.
    :param str record_type:
        Optional record type ('StockLog' or 'ProcessLog') restricting which
        elements may be bound to this sink.
    :param on_record:
        Optional callable invoked with each pushed record.

    """

    def __init__(
        self,
        name: str,
        max_length: Optional[int] = None,
        record_type: Optional[str] = None,
        on_record: Optional[Callable[[LogRecord], None]] = None,
    ) -> None:
        if max_length is not None and max_length < 1:
            raise ValueError(f'max_length must be positive, got {max_length}')
        if record_type is not None and record_family(record_type) is None:
            raise ValueError(f'Unknown record type {record_type!r}')
        self.name = name
        self.max_length = max_length
        self.record_type = record_type
        self.on_record = on_record
        self._records: Deque[LogRecord] = deque(maxlen=max_length)
        #: Number of records pushed since creation, evicted ones included.
        self.pushed = 0

    @property
    def evicted(self) -> int:
        return self.pushed - len(self._records)

    def push(self, record: LogRecord) -> None:
        self._records.append(record)
        self.pushed += 1
        if self.on_record is not None:
            self.on_record(record)

    def records(self) -> List[LogRecord]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[LogRecord]:
        return iter(self._records)

    def __repr__(self) -> str:
        return (
            f'<LogSink {self.name!r} {len(self)}/'
            f'{"inf" if self.max_length is None else self.max_length}>'
        )
