"""Attach probe callbacks to stocks, processes and methods.

Probes observe a target without the target knowing about tracing. Stocks
report their quantity (or remaining capacity with the `trace_remaining` hint)
after every add/remove; processes report their number of in-flight payloads
after every start and completion.

"""
from functools import wraps
from types import MethodType
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Union

if TYPE_CHECKING:
    from .process import Process
    from .stock import Stock

ProbeCallback = Callable[[Any], None]
ProbeCallbacks = Iterable[ProbeCallback]
ProbeTarget = Union['Stock', 'Process', MethodType]


def _is_process(target: Any) -> bool:
    return hasattr(target, '_state_hook')


def _is_stock(target: Any) -> bool:
    return hasattr(target, '_put_hook') and hasattr(target, '_get_hook')


def attach(
    scope: str, target: ProbeTarget, callbacks: ProbeCallbacks, **hints: Any
) -> None:
    if isinstance(target, MethodType):
        _attach_method(target, callbacks)
    elif _is_process(target):
        _attach_process_in_flight(target, callbacks)
    elif _is_stock(target):
        if hints.get('trace_remaining', False):
            _attach_stock_remaining(target, callbacks)
        else:
            _attach_stock_quantity(target, callbacks)
    else:
        raise TypeError(f'Cannot probe {scope} of type {type(target)}')


def probe_value(target: ProbeTarget, hints: Dict[str, Any]) -> Any:
    """Current value a probe on `target` reports."""
    if _is_process(target):
        return target.in_flight
    elif _is_stock(target):
        if hints.get('trace_remaining', False):
            return target.remaining
        return target.quantity
    raise TypeError(f'Cannot probe value of {type(target)}')


def _attach_method(method: MethodType, callbacks: ProbeCallbacks) -> None:
    def make_wrapper(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            value = func(*args, **kwargs)
            for callback in callbacks:
                callback(value)
            return value

        return wrapper

    setattr(method.__self__, method.__func__.__name__, make_wrapper(method))


def _attach_stock_quantity(stock: 'Stock', callbacks: ProbeCallbacks) -> None:
    def hook():
        for callback in callbacks:
            callback(stock.quantity)

    stock._put_hook = stock._get_hook = hook


def _attach_stock_remaining(stock: 'Stock', callbacks: ProbeCallbacks) -> None:
    def hook():
        for callback in callbacks:
            callback(stock.remaining)

    stock._put_hook = stock._get_hook = hook


def _attach_process_in_flight(process: 'Process', callbacks: ProbeCallbacks) -> None:
    def hook():
        for callback in callbacks:
            callback(process.in_flight)

    process._state_hook = hook
