import pytest

from stockflow.scheduler import CausalityError


@pytest.fixture
def scheduler(env):
    return env.scheduler


def test_time_order(env, scheduler):
    scheduler.schedule(5, 'b')
    scheduler.schedule(2, 'a')
    scheduler.schedule(9, 'c')
    assert len(scheduler) == 3
    assert scheduler.peek() == 2
    popped = [scheduler.advance() for _ in range(3)]
    assert [e.process for e in popped] == ['a', 'b', 'c']
    assert [e.time for e in popped] == [2, 5, 9]
    assert env.now == 9
    assert scheduler.advance() is None


def test_fifo_ties(scheduler):
    for name in 'xyz':
        scheduler.schedule(3, name)
    assert [scheduler.advance().process for _ in range(3)] == ['x', 'y', 'z']


def test_cancel(scheduler):
    a = scheduler.schedule(1, 'a')
    b = scheduler.schedule(2, 'b')
    assert a in scheduler
    assert scheduler.cancel(a)
    assert not scheduler.cancel(a)
    assert a not in scheduler
    assert scheduler.advance().seq == b


def test_clear(scheduler):
    scheduler.schedule(1, 'a')
    scheduler.schedule(2, 'b')
    assert scheduler.clear() == 2
    assert len(scheduler) == 0
    assert scheduler.advance() is None


def test_causality(env, scheduler):
    env.run(until=10)
    with pytest.raises(CausalityError) as exc_info:
        scheduler.schedule(9.5, 'late')
    assert exc_info.value.time == 10
    assert exc_info.value.component == 'late'
    assert exc_info.value.operation == 'schedule'
    scheduler.schedule(10, 'now')
    assert scheduler.advance().time == 10


def test_nan_rejected(scheduler):
    with pytest.raises(CausalityError):
        scheduler.schedule(float('nan'), 'p')


def test_advance_until(env, scheduler):
    scheduler.schedule(4, 'a')
    scheduler.schedule(8, 'b')
    assert scheduler.advance(until=5).process == 'a'
    assert scheduler.advance(until=5) is None
    assert env.now == 4
    assert scheduler.advance(until=8).process == 'b'
    assert scheduler.last_time == 8


def test_non_decreasing(env, scheduler):
    rand = env.rand
    for i in range(100):
        scheduler.schedule(rand.uniform(0, 50), str(i))
    times = []
    while len(scheduler):
        times.append(scheduler.advance().time)
    assert times == sorted(times)
