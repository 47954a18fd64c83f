import os

import pytest

from stockflow.dot import generate_dot, graph_to_dot
from stockflow.graph import NodeSpec, build

pytestmark = pytest.mark.usefixtures('cleandir')


@pytest.fixture
def graph():
    nodes = [
        NodeSpec('ArrayStock', 'Ore', {'vec': 12.5, 'max_capacity': 100}),
        NodeSpec('QueueStock', 'Parked', {'count': 2}),
        NodeSpec('LoadingProcess', 'Loader',
                 {'load_time_dist': 1, 'load_quantity_dist': 5}),
        NodeSpec('QueueStock', 'Loaded'),
    ]
    edges = [('Ore', 'Loader'), ('Parked', 'Loader'), ('Loader', 'Loaded')]
    return build(nodes, edges)


def test_nodes(graph):
    dot = graph_to_dot(graph)
    assert dot.startswith('strict digraph M {')
    assert '"Ore" [label=<<b>Ore</b><br/>12.5 / 100<br/><i>ArrayStock</i>>,' in dot
    assert '<b>Parked</b><br/>2 / inf' in dot
    assert '"Loader" [label=<<b>Loader</b><br/><i>LoadingProcess</i>>,' \
           'shape=ellipse];' in dot


def test_edges(graph):
    dot = graph_to_dot(graph)
    assert '"Ore" -> "Loader";' in dot
    assert '"Parked" -> "Loader";' in dot
    assert '"Loader" -> "Loaded";' in dot


def test_no_quantities(graph):
    dot = graph_to_dot(graph, show_quantities=False)
    assert '12.5' not in dot


def test_colorscheme(graph):
    dot = graph_to_dot(graph, colorscheme='blues9')
    assert 'fillcolor="/blues9/1"' in dot
    assert 'fillcolor="/blues9/2"' in dot
    assert 'style="rounded,filled"' in dot


@pytest.mark.parametrize('key', [
    'sim.dot.enable',
    'sim.dot.colorscheme',
    'sim.dot.file',
])
def test_generate_dot(graph, key):
    assert key not in graph.env.config
    generate_dot(graph)
    assert key in graph.env.config
    assert not os.listdir(os.curdir)


def test_generate_dot_enabled(graph):
    graph.env.config['sim.dot.enable'] = True
    graph.start()
    assert os.listdir(os.curdir) == ['flow.dot']
    with open('flow.dot') as dot_file:
        assert '"Loader" -> "Loaded";' in dot_file.read()


def test_generate_dot_no_file(graph):
    graph.env.config['sim.dot.enable'] = True
    graph.env.config['sim.dot.file'] = ''
    generate_dot(graph)
    assert not os.listdir(os.curdir)
