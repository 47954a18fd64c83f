from math import inf

import pytest

from stockflow.config import ConfigError
from stockflow.logsink import LogSink
from stockflow.resource import Item, Material
from stockflow.stock import ArrayStock, CapacityExceeded, InsufficientQuantity
from stockflow.stock import QueueStock


@pytest.fixture
def stock(env):
    stock = ArrayStock(env, 'B', vec=[6, 4], max_capacity=15, loggers=['stocks'])
    stock.upstream.append('P')
    stock.downstream.append('Q')
    return stock


@pytest.fixture
def queue(env):
    queue = QueueStock(env, 'T', items=['T0', 'T1', 'T2'], max_capacity=3)
    queue.upstream.append('M')
    queue.downstream.append('L')
    return queue


def test_initial_state(stock):
    assert stock.quantity == 10
    assert stock.remaining == 5
    assert stock.state == 'Normal'
    assert stock.contents() == [6, 4]


def test_scalar_vec(env):
    stock = ArrayStock(env, 'A', vec=100)
    assert stock.material == Material([100])
    assert stock.max_capacity == inf


def test_remove(stock):
    change = stock.try_remove(5)
    assert change.payload == Material([3, 2])
    assert change.wake == ('P',)
    assert stock.material == Material([3, 2])


def test_remove_insufficient(stock):
    with pytest.raises(InsufficientQuantity) as exc_info:
        stock.try_remove(11)
    assert exc_info.value.stock is stock
    assert exc_info.value.amount == 11
    assert 'only 10' in str(exc_info.value)
    assert stock.quantity == 10


def test_remove_negative(stock):
    with pytest.raises(ValueError):
        stock.try_remove(-1)


def test_add(stock):
    change = stock.try_add(Material([3, 2]))
    assert change.wake == ('Q',)
    assert stock.quantity == 15
    assert stock.is_full
    assert stock.state == 'Full'


def test_add_over_capacity(stock):
    with pytest.raises(CapacityExceeded):
        stock.try_add(Material([5, 1]))
    assert stock.quantity == 10


def test_add_below_low_capacity_wakes_nothing(env):
    stock = ArrayStock(env, 'A', vec=0, low_capacity=10)
    stock.downstream.append('P')
    assert stock.try_add(Material([5])).wake == ()
    assert stock.is_empty
    assert stock.try_add(Material([6])).wake == ('P',)


def test_change_records(env, stock):
    sink = LogSink('stocks', record_type='StockLog')
    stock.bind_sinks({'stocks': sink})
    env.run(until=2)
    stock.try_remove(5)
    stock.try_add(Material([1, 1]))
    remove, add = sink.records()
    assert remove.time == 2
    assert remove.event == 'Remove'
    assert remove.element_type == 'ArrayStock'
    assert remove.get('amount') == 5
    assert remove.get('occupied') == 5
    assert remove.get('remaining') == 10
    assert remove.get('state') == 'Normal'
    assert add.event == 'Add'
    assert add.get('occupied') == 7
    assert env.history[-1] == (2, 'B', 'Add')


def test_queue_fifo(queue):
    assert queue.quantity == 3
    assert queue.is_full
    change = queue.try_remove(2)
    assert change.payload == (Item('T0'), Item('T1'))
    assert change.wake == ('M',)
    queue.try_add((Item('T0', Material([8])),))
    assert queue.contents() == 'T2|T0'
    assert queue.items[-1].load == Material([8])


def test_queue_count(env):
    queue = QueueStock(env, 'Trucks', count=2)
    assert queue.contents() == 'Trucks-0|Trucks-1'


def test_queue_fractional_removal(queue):
    with pytest.raises(ValueError):
        queue.try_remove(1.5)


def test_queue_capacity(queue):
    with pytest.raises(CapacityExceeded):
        queue.try_add((Item('T9'),))


def test_kind_mismatch(stock, queue):
    with pytest.raises(TypeError):
        stock.try_add((Item('T9'),))
    queue.try_remove(1)
    with pytest.raises(TypeError):
        queue.try_add(Material([1]))


@pytest.mark.parametrize('kwargs', [
    {'max_capacity': -1},
    {'max_capacity': 'big'},
    {'low_capacity': 20, 'max_capacity': 10},
    {'low_capacity': -1},
    {'low_capacity': inf},
    {'vec': [1, -1]},
    {'vec': []},
    {'vec': 20, 'max_capacity': 10},
])
def test_array_stock_invalid(env, kwargs):
    with pytest.raises(ConfigError):
        ArrayStock(env, 'A', **kwargs)


@pytest.mark.parametrize('kwargs', [
    {'count': -1},
    {'count': 1.5},
    {'count': 3, 'max_capacity': 2},
])
def test_queue_stock_invalid(env, kwargs):
    with pytest.raises(ConfigError):
        QueueStock(env, 'T', **kwargs)


def test_result(stock, queue):
    result = {}
    stock.get_result_hook(result)
    queue.get_result_hook(result)
    assert result == {'stocks': {'B': 10, 'T': 3}}
