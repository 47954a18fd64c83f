from math import isclose

import pytest

from stockflow.graph import LoggerSpec, NodeSpec, build
from stockflow.logsink import LogSink
from stockflow.process import ProcessState
from stockflow.resource import Item, Material
from stockflow.stock import ConservationError


def transfer_model(b_capacity=1000):
    nodes = [
        NodeSpec('ArrayStock', 'A', {'vec': 100, 'max_capacity': 1000}),
        NodeSpec('ArrayStock', 'B', {'vec': 0, 'max_capacity': b_capacity}),
        NodeSpec('TransferProcess', 'P', {'time_dist': 5, 'quantity_dist': 10},
                 ['procs']),
    ]
    edges = [('A', 'P'), ('P', 'B')]
    loggers = [LoggerSpec('procs', 'ProcessLog')]
    return nodes, edges, loggers


def blocked_model():
    nodes, edges, loggers = transfer_model(b_capacity=15)
    nodes += [
        NodeSpec('QueueStock', 'T0', {'items': ['T0']}),
        NodeSpec('MovementProcess', 'M', {'travel_time_dist': 12}),
        NodeSpec('QueueStock', 'T', {'max_capacity': 1}),
        NodeSpec('LoadingProcess', 'Q',
                 {'load_time_dist': 100, 'load_quantity_dist': 8}),
        NodeSpec('QueueStock', 'L'),
    ]
    edges += [('T0', 'M'), ('M', 'T'), ('B', 'Q'), ('T', 'Q'), ('Q', 'L')]
    return nodes, edges, loggers


def haul_model(seed=1234):
    """Closed loop: trucks load ore, haul, dump and return; ore is reclaimed."""
    nodes = [
        NodeSpec('ArrayStock', 'Ore', {'vec': [600, 400], 'max_capacity': 5000}),
        NodeSpec('QueueStock', 'Parked', {'count': 3}),
        NodeSpec('LoadingProcess', 'Loader', {
            'load_time_dist': {'type': 'Triangular', 'min': 5, 'max': 15,
                               'mode': 8},
            'load_quantity_dist': {'type': 'TruncNormal', 'mean': 40,
                                   'std': 10, 'min': 10, 'max': None},
        }),
        NodeSpec('QueueStock', 'Loaded'),
        NodeSpec('MovementProcess', 'Haul', {
            'travel_time_dist': {'type': 'Uniform', 'min': 20, 'max': 40},
        }),
        NodeSpec('QueueStock', 'AtDump', {'max_capacity': 2}),
        NodeSpec('DumpingProcess', 'Dump', {'dump_time_dist': 3}),
        NodeSpec('ArrayStock', 'Stockpile', {'vec': [0, 0], 'max_capacity': 120}),
        NodeSpec('QueueStock', 'Returning'),
        NodeSpec('MovementProcess', 'Return', {
            'travel_time_dist': {'type': 'Uniform', 'min': 15, 'max': 30},
        }),
        NodeSpec('TransferProcess', 'Reclaim', {
            'time_dist': 20, 'quantity_dist': 25,
        }),
    ]
    edges = [
        ('Ore', 'Loader'), ('Parked', 'Loader'), ('Loader', 'Loaded'),
        ('Loaded', 'Haul'), ('Haul', 'AtDump'),
        ('AtDump', 'Dump'), ('Dump', 'Stockpile'), ('Dump', 'Returning'),
        ('Returning', 'Return'), ('Return', 'Parked'),
        ('Stockpile', 'Reclaim'), ('Reclaim', 'Ore'),
    ]
    return build(nodes, edges, seed=seed)


def test_single_process_ample_capacity():
    graph = build(*transfer_model())
    assert graph.run_to(50) == 50
    a, b = graph.stocks['A'], graph.stocks['B']
    p = graph.processes['P']
    assert p.completions == 10
    assert a.quantity == 0
    assert b.quantity == 100
    assert p.state == ProcessState.IDLE


def test_single_process_partial_run():
    graph = build(*transfer_model())
    graph.run_to(22)
    p = graph.processes['P']
    k = p.completions
    assert k == 4
    assert graph.stocks['B'].quantity == 10 * k
    assert graph.stocks['A'].quantity + p.in_flight_material() == 100 - 10 * k
    assert graph.now == 22


def test_records():
    graph = build(*transfer_model())
    graph.run_to(10)
    records = graph.sinks['procs'].records()
    assert [(r.time, r.event) for r in records] == [
        (0, 'Start'), (5, 'Complete'), (5, 'Start'), (10, 'Complete'),
        (10, 'Start'),
    ]
    start, complete = records[:2]
    assert start.element_type == 'TransferProcess'
    assert start.get('duration') == 5
    assert start.get('quantity') == 10
    assert start.get('event_id') == 'P_000001'
    assert complete.get('event_id') == 'P_000001'
    assert complete.get('started') == 0


def test_capacity_blocked_deposit():
    graph = build(*blocked_model())
    a, b = graph.stocks['A'], graph.stocks['B']
    p = graph.processes['P']

    graph.run_to(11)
    assert b.quantity == 10
    assert p.blocked
    assert p.state == ProcessState.ACTIVE
    assert p.in_flight_material() == 10
    assert a.quantity == 80

    graph.run_to(12)
    assert not p.blocked
    assert b.quantity == 12
    assert p.completions == 2
    assert a.quantity == 70
    assert graph.stocks['L'].quantity == 0
    assert graph.processes['Q'].in_flight == 1

    events = [r.event for r in graph.sinks['procs']]
    assert events.count('Blocked') == 1
    assert events.count('Complete') == 2


def test_capacity_never_exceeded():
    graph = build(*blocked_model())
    graph.start()
    b = graph.stocks['B']
    while graph.now < 300 and graph.step() is not None:
        assert 0 <= b.quantity <= b.max_capacity


def test_blocked_record_logged_once():
    nodes, edges, loggers = transfer_model(b_capacity=15)
    graph = build(nodes, edges, loggers)
    graph.run_to(100)
    events = [r.event for r in graph.sinks['procs']]
    assert events.count('Blocked') == 1
    assert events.count('Complete') == 1
    assert graph.processes['P'].blocked


def _check_invariants(graph, material, items):
    assert isclose(graph.material_total(), material, rel_tol=1e-9)
    assert graph.item_total() == items
    for stock in graph.stocks.values():
        assert -1e-9 <= stock.quantity <= stock.max_capacity + 1e-9


def test_conservation_closed_loop():
    graph = haul_model()
    graph.start()
    _check_invariants(graph, 1000, 3)
    for _ in range(500):
        if graph.run_n_events(1) == 0:
            break
        _check_invariants(graph, 1000, 3)
    assert graph.processes['Dump'].completions > 0
    assert graph.processes['Reclaim'].completions > 0


def test_monotonic_time():
    graph = haul_model()
    times = []
    for _ in range(300):
        event = graph.step()
        if event is None:
            break
        times.append(event.time)
    assert times == sorted(times)
    assert graph.dispatched == len(times)


def _all_records(seed):
    graph = haul_model(seed)
    sink = graph.subscribe('all')
    graph.run_to(2000)
    return [tuple(r) for r in sink]


def test_same_seed_same_records():
    records = _all_records(42)
    assert records
    assert records == _all_records(42)


def test_different_seed_different_records():
    assert _all_records(1) != _all_records(2)


def test_movement_parallel_trips():
    nodes = [
        NodeSpec('QueueStock', 'Here', {'count': 3}),
        NodeSpec('MovementProcess', 'Drive', {'travel_time_dist': 10}),
        NodeSpec('QueueStock', 'There'),
    ]
    graph = build(nodes, [('Here', 'Drive'), ('Drive', 'There')])
    graph.run_to(0)
    assert graph.processes['Drive'].in_flight == 3
    graph.run_to(10)
    assert graph.stocks['There'].contents() == 'Here-0|Here-1|Here-2'


def test_movement_blocked_arrivals_fifo():
    nodes = [
        NodeSpec('QueueStock', 'Here', {'items': ['a', 'b', 'c', 'd']}),
        NodeSpec('MovementProcess', 'Drive', {'travel_time_dist': 10}),
        NodeSpec('QueueStock', 'There', {'max_capacity': 1}),
        NodeSpec('TransferProcess', 'Leave', {'time_dist': 5}),
        NodeSpec('QueueStock', 'Gone'),
    ]
    edges = [('Here', 'Drive'), ('Drive', 'There'), ('There', 'Leave'),
             ('Leave', 'Gone')]
    graph = build(nodes, edges)
    graph.run_to(10)
    assert graph.processes['Drive'].blocked
    graph.run_to(100)
    assert graph.stocks['Gone'].contents() == 'a|b|c|d'


def test_loading_and_dumping():
    nodes = [
        NodeSpec('ArrayStock', 'Ore', {'vec': [30, 10]}),
        NodeSpec('QueueStock', 'Empty', {'items': ['T0']}),
        NodeSpec('LoadingProcess', 'Load',
                 {'load_time_dist': 2, 'load_quantity_dist': 20}),
        NodeSpec('QueueStock', 'Full'),
        NodeSpec('DumpingProcess', 'Tip', {'dump_time_dist': 1}),
        NodeSpec('ArrayStock', 'Pile', {'vec': [0, 0]}),
        NodeSpec('QueueStock', 'Done'),
    ]
    edges = [('Ore', 'Load'), ('Empty', 'Load'), ('Load', 'Full'),
             ('Full', 'Tip'), ('Tip', 'Pile'), ('Tip', 'Done')]
    graph = build(nodes, edges)

    graph.run_to(2)
    (flight,) = graph.processes['Tip'].flights
    ((truck,),) = flight.held
    assert truck.load == Material([15, 5])
    assert flight.describe()['items'] == 'T0'
    assert graph.stocks['Ore'].material == Material([15, 5])

    graph.run_to(3)
    assert graph.stocks['Pile'].material == Material([15, 5])
    assert graph.stocks['Done'].items == (Item('T0'),)


def test_quantity_limited_to_available():
    nodes = [
        NodeSpec('ArrayStock', 'A', {'vec': 5}),
        NodeSpec('TransferProcess', 'P', {
            'time_dist': 1,
            'quantity_dist': {'type': 'Uniform', 'min': 6, 'max': 9},
        }),
        NodeSpec('ArrayStock', 'B'),
    ]
    graph = build(nodes, [('A', 'P'), ('P', 'B')], seed=3)
    graph.run_to(0)
    assert graph.stocks['A'].quantity == 0
    assert graph.processes['P'].in_flight_material() == 5
    graph.run_to(1)
    assert graph.stocks['B'].quantity == 5


@pytest.mark.parametrize('seed', range(20))
def test_large_samples_do_not_starve(seed):
    nodes = [
        NodeSpec('Source', 'Feed', {'interval_dist': 1, 'quantity_dist': 10}),
        NodeSpec('ArrayStock', 'A', {'vec': 0, 'max_capacity': 20}),
        NodeSpec('TransferProcess', 'P', {
            'time_dist': 1,
            'quantity_dist': {'type': 'Uniform', 'min': 5, 'max': 30},
        }),
        NodeSpec('ArrayStock', 'B'),
    ]
    edges = [('Feed', 'A'), ('A', 'P'), ('P', 'B')]
    graph = build(nodes, edges, seed=seed)
    graph.run_to(200)
    assert graph.processes['P'].completions > 100
    assert graph.stocks['B'].quantity > 0


def test_source_and_sink():
    nodes = [
        NodeSpec('Source', 'Mine', {'interval_dist': 2, 'quantity_dist': 5}),
        NodeSpec('ArrayStock', 'S', {'vec': 0}),
        NodeSpec('Sink', 'Mill', {'time_dist': 1, 'quantity_dist': 3}),
    ]
    graph = build(nodes, [('Mine', 'S'), ('S', 'Mill')])
    graph.run_to(10)
    source, sink = graph.processes['Mine'], graph.processes['Mill']
    s = graph.stocks['S']
    assert source.completions == 5
    assert source.created == 30
    assert source.in_flight_material() == 5
    assert s.quantity + sink.consumed == 25
    assert sink.consumed > 0


def test_source_items():
    nodes = [
        NodeSpec('Source', 'Gate', {'interval_dist': 1, 'quantity_dist': 2}),
        NodeSpec('QueueStock', 'Yard', {'max_capacity': 4}),
    ]
    graph = build(nodes, [('Gate', 'Yard')])
    graph.run_to(5)
    yard = graph.stocks['Yard']
    assert yard.contents() == 'Gate-0|Gate-1|Gate-2|Gate-3'
    assert yard.is_full
    assert graph.processes['Gate'].completions == 2
    assert graph.processes['Gate'].in_flight == 0


def test_source_composition():
    nodes = [
        NodeSpec('Source', 'Mine',
                 {'interval_dist': 1, 'quantity_dist': 10, 'composition': [3, 1]}),
        NodeSpec('ArrayStock', 'S', {'vec': [0, 0]}),
    ]
    graph = build(nodes, [('Mine', 'S')])
    graph.run_to(1)
    assert graph.stocks['S'].material == Material([7.5, 2.5])


def test_complete_unknown_flight(env):
    graph = build(*transfer_model(), env=env)
    graph.start()
    with pytest.raises(ConservationError):
        graph.processes['P'].complete(999)


def test_process_result():
    graph = build(*transfer_model())
    graph.run_to(50)
    result = {}
    graph.get_result(result)
    assert result['processes'] == {'P': 10}
    assert result['stocks'] == {'A': 0, 'B': 100}
    assert result['sim.dispatched'] == 10


def test_custom_sink_receives_records():
    graph = build(*transfer_model())
    seen = []
    graph.subscribe('procs', LogSink('procs', max_length=2, on_record=seen.append))
    graph.run_to(10)
    assert len(seen) == 5
    assert len(graph.sinks['procs']) == 2
