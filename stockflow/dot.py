"""Generate graphical representation of a flow graph.

Stocks, processes and the flow edges between them can be represented
graphically using the `Graphviz`_ `DOT language`_.

The :func:`graph_to_dot()` function produces a DOT language string that can
be rendered into a variety of formats using Graphviz tools. Stocks are drawn
as boxes, processes as ellipses, and each edge points in the direction
resources flow::

    dot -Tpng -o flow.png flow.dot

.. _Graphviz: http://graphviz.org/
.. _DOT language: http://graphviz.org/content/dot-language

"""
from .stock import ArrayStock, Stock


def generate_dot(graph, config=None):
    """Generate a dot file based on 'sim.dot' configuration.

    The ``sim.dot.enable`` configuration controls whether any dot file
    generation is performed. The remaining ``sim.dot`` configuration items have
    no effect unless ``sim.dot.enable`` is ``True``.

    The ``sim.dot.colorscheme`` configuration controls the colorscheme used in
    the generated DOT file. See :func:`graph_to_dot` for more detail.

    The ``sim.dot.file`` configuration item names the generated file; the
    empty string disables it.

    :meth:`stockflow.graph.Graph.start` calls this function once, after all
    elements are elaborated and before the first process starts.

    """
    config = graph.env.config if config is None else config

    enable = config.setdefault('sim.dot.enable', False)
    colorscheme = config.setdefault('sim.dot.colorscheme', '')
    filename = config.setdefault('sim.dot.file', 'flow.dot')

    if not enable or not filename:
        return

    with open(filename, 'w') as dot_file:
        dot_file.write(graph_to_dot(graph, colorscheme=colorscheme))


def graph_to_dot(graph, show_quantities=True, colorscheme=''):
    """Produce a dot stream from a flow graph.

    :param Graph graph: The flow graph (built, not necessarily started).
    :param bool show_quantities:
        Should stock labels show the current quantity and capacity.
    :param str colorscheme:
        One of the `Brewer color schemes`_ supported by graphviz, e.g. "blues8"
        or "set27". Stocks are filled with the scheme's first color and
        processes with its second.
    :returns str: DOT language representation of the flow graph.

    .. _Brewer color schemes: http://graphviz.org/content/color-names#brewer

    """
    indent = '    '
    lines = ['strict digraph M {', indent + 'rankdir=LR;']
    for element in graph.elements():
        lines.append(indent + _node(element, show_quantities, colorscheme))
    lines.append('')
    for process in graph.processes.values():
        for stock_name in process.upstream:
            lines.append(indent + _edge(stock_name, process.name))
        for stock_name in process.downstream:
            lines.append(indent + _edge(process.name, stock_name))
    lines.append('}')
    return '\n'.join(lines)


def _node(element, show_quantities, colorscheme):
    if isinstance(element, Stock):
        shape, color_index = 'box', 1
        label_lines = _stock_label(element, show_quantities)
    else:
        shape, color_index = 'ellipse', 2
        label_lines = ['<b>{}</b>'.format(element.name)]
    label_lines.append('<i>{}</i>'.format(element.element_type))
    attrs = {
        'shape': shape,
        'label': '<{}>'.format('<br/>'.join(label_lines)),
    }
    if colorscheme:
        attrs['style'] = '"rounded,filled"' if shape == 'box' else 'filled'
        attrs['fillcolor'] = '"/{}/{}"'.format(colorscheme, color_index)
    elif shape == 'box':
        attrs['style'] = 'rounded'
    return '"{}" [{}];'.format(element.name, _join_attrs(attrs))


def _stock_label(stock, show_quantities):
    label_lines = ['<b>{}</b>'.format(stock.name)]
    if show_quantities:
        quantity = stock.quantity
        if isinstance(stock, ArrayStock):
            quantity = '{:g}'.format(quantity)
        label_lines.append('{} / {}'.format(quantity, stock.max_capacity))
    return label_lines


def _edge(src, dst):
    return '"{}" -> "{}";'.format(src, dst)


def _join_attrs(attrs):
    return ','.join('{}={}'.format(k, v)
                    for k, v in sorted(attrs.items()))
