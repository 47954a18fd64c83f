"""Stock and flow modeling on the `SimPy`__ event kernel.

__ https://simpy.readthedocs.io/en/latest/contents.html

The `stockflow` package models material flow as a directed graph of *stocks*
(bounded resource holders) joined by *processes* (timed transfers between
stocks), advanced by a discrete-event clock.

Stocks and Processes
====================

An :class:`~stockflow.stock.ArrayStock` holds continuous material with a
composition vector; a :class:`~stockflow.stock.QueueStock` holds discrete
items, such as trucks, which may carry material. Processes withdraw from their
upstream stocks, hold the payload in flight for a sampled duration and deposit
it downstream. See :mod:`stockflow.process` for the available kinds.

Durations and quantities are drawn from the distributions in
:mod:`stockflow.distribution`, always using the run's seeded random number
generator so that runs replay exactly.

Building and Running
====================

A model is described by a :class:`~stockflow.graph.ModelSpec` and built into
a :class:`~stockflow.graph.Graph` with :func:`stockflow.graph.build`. A graph
is run with :meth:`~stockflow.graph.Graph.run_to` or
:meth:`~stockflow.graph.Graph.run_n_events`.

The :func:`~stockflow.simulation.simulate` function takes a model through
building, running and result gathering, driven by a single flat configuration
dictionary (see :mod:`stockflow.config`). Scenario sweeps run with
:func:`~stockflow.simulation.simulate_factors`.

Monitoring
==========

Model records (stock changes, process starts and completions) go to bounded
:class:`~stockflow.logsink.LogSink` buffers bound to named loggers.
Diagnostic tracing to a text log, VCD waveforms or SQLite is configured with
the 'sim.log.*', 'sim.vcd.*' and 'sim.db.*' keys (see
:mod:`stockflow.tracer`).

"""

__all__ = ()
