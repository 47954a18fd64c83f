"""Simulation environment and run control with batteries included."""

from collections import deque
from contextlib import closing, contextmanager
from functools import partial
from multiprocessing import Pool, cpu_count
from pprint import pprint
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Deque,
    Dict,
    IO,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
    Union,
)
import json
import os
import random
import shutil
import timeit

import simpy
import yaml

from .config import ConfigDict, ConfigFactor, factorial_config
from .scheduler import EventScheduler
from .timescale import TimeValue, parse_time, scale_time
from .tracer import TraceManager

if TYPE_CHECKING:
    from .graph import Graph

ResultDict = Dict[str, Any]
HistoryEntry = Tuple[float, str, str]


class SimEnvironment(simpy.Environment):
    """Simulation Environment.

    The :class:`SimEnvironment` class is a :class:`simpy.Environment` subclass
    that adds some useful features:

     - Access to the configuration dictionary (`config`).
     - Access to a seeded pseudo-random number generator (`rand`).
     - Access to the simulation timescale (`timescale`).
     - Access to the simulation duration (`duration`).
     - The run's :class:`~stockflow.scheduler.EventScheduler` (`scheduler`).
     - A bounded history of recent operations (`history`).

    Every random sample of a run is drawn from `rand`, so two environments
    created from equal configs replay identical runs. Environments share no
    state, which is what allows :func:`simulate_many` to run them side by side.

    :param dict config: A fully-initialized configuration dictionary.

    """

    def __init__(self, config: ConfigDict) -> None:
        super().__init__()
        #: The configuration dictionary.
        self.config = config

        #: The pseudo-random number generator; an instance of
        #: :class:`random.Random`.
        self.rand = random.Random()
        seed = config.setdefault('sim.seed', None)
        self.rand.seed(seed, version=1)

        timescale_str = self.config.setdefault('sim.timescale', '1 s')

        #: Simulation timescale ``(magnitude, units)`` tuple. The current
        #: simulation time is ``now * timescale``.
        self.timescale: TimeValue = parse_time(timescale_str)

        duration = config.setdefault('sim.duration', '0 s')

        #: The intended simulation duration, in units of :attr:`timescale`.
        self.duration = scale_time(parse_time(duration), self.timescale)

        #: The graph runs "until" this time. By default, this is the
        #: configured "sim.duration", but may be overridden by subclasses.
        self.until: Union[int, float] = self.duration

        #: From 'meta.sim.index', the simulation's index when running multiple
        #: related simulations or `None` for a standalone simulation.
        self.sim_index: Optional[int] = config.get('meta.sim.index')

        #: Recent `(time, component, operation)` entries, newest last.
        self.history: Deque[HistoryEntry] = deque(
            maxlen=config.setdefault('sim.history.length', 100)
        )

        #: :class:`TraceManager` instance.
        self.tracemgr = TraceManager(self)

        #: :class:`EventScheduler` instance.
        self.scheduler = EventScheduler(self)

    def time(self, t: Optional[float] = None, unit: str = 's') -> Union[int, float]:
        """The current simulation time scaled to specified unit.

        :param float t: Time in simulation units. Default is :attr:`now`.
        :param str unit: Unit of time to scale to. Default is 's' (seconds).
        :returns: Simulation time scaled to to `unit`.

        """
        target_scale = parse_time(unit)
        ts_mag, ts_unit = self.timescale
        sim_time = ((self.now if t is None else t) * ts_mag, ts_unit)
        return scale_time(sim_time, target_scale)

    def note(self, component: str, operation: str) -> None:
        self.history.append((self.now, component, operation))


ModelType = Union[Any, Callable[[SimEnvironment], 'Graph']]


@contextmanager
def _workspace(config: ConfigDict) -> Iterator[str]:
    """Run the body of the `with` block inside the run's workspace directory.

    The workspace is 'meta.sim.workspace' when set by :func:`simulate_factors`
    and 'sim.workspace' otherwise. With 'sim.workspace.overwrite', an existing
    workspace is emptied first.

    """
    path: str = config.setdefault(
        'meta.sim.workspace', config.setdefault('sim.workspace', os.curdir)
    )
    overwrite: bool = config.setdefault('sim.workspace.overwrite', False)
    origin = os.getcwd()
    if os.path.relpath(path) != os.curdir:
        if overwrite and os.path.isdir(path):
            shutil.rmtree(path)
        os.makedirs(path, exist_ok=True)
        os.chdir(path)
    try:
        yield path
    finally:
        os.chdir(origin)


def _build(model: ModelType, env: SimEnvironment) -> 'Graph':
    build = getattr(model, 'build', None)
    if build is not None:
        return build(env)
    return model(env)


def _run(model: ModelType, env: SimEnvironment, result: ResultDict) -> None:
    try:
        graph = _build(model, env)
        env.tracemgr.flush()
        graph.run_to(env.until)
        graph.get_result(result)
    except BaseException as e:
        env.tracemgr.exception()
        result['sim.exception'] = repr(e)
        raise
    result['sim.exception'] = None


def simulate(
    config: ConfigDict,
    model: ModelType,
    env_type: Type[SimEnvironment] = SimEnvironment,
    reraise: bool = True,
) -> ResultDict:
    """Build and run a flow graph.

    Any exception is traced and recorded under 'sim.exception' in the result.
    The result file ('sim.result.file') and config file ('sim.config.file')
    are written whether or not the run succeeded. The exception is then
    re-raised unless `reraise` is False.

    :param dict config: Configuration dictionary for the simulation.
    :param model:
        A :class:`~stockflow.graph.ModelSpec` (anything with a `build(env)`
        method) or a callable taking the environment and returning a
        :class:`~stockflow.graph.Graph`.
    :param env_type: :class:`SimEnvironment` subclass.
    :param bool reraise: Should unhandled exceptions propagate to the caller.
    :returns:
        Dictionary containing the results of the simulation: final stock
        quantities under 'stocks' and completion counts under 'processes'.

    """
    t0 = timeit.default_timer()
    result: ResultDict = {}
    result_file: Optional[str] = config.setdefault('sim.result.file')
    config_file: Optional[str] = config.setdefault('sim.config.file')
    try:
        with _workspace(config):
            env = env_type(config)
            with closing(env.tracemgr):
                try:
                    _run(model, env, result)
                finally:
                    env.tracemgr.flush()
                    result.update(
                        {
                            'config': config,
                            'sim.now': env.now,
                            'sim.time': env.time(),
                            'sim.runtime': timeit.default_timer() - t0,
                        }
                    )
                    _write_dump(config_file, config)
                    _write_dump(result_file, result)
    except BaseException as e:
        if reraise:
            raise
        result.setdefault('config', config)
        result.setdefault('sim.runtime', timeit.default_timer() - t0)
        if result.get('sim.exception') is None:
            result['sim.exception'] = repr(e)
    return result


def simulate_factors(
    base_config: ConfigDict,
    factors: List[ConfigFactor],
    model: ModelType,
    env_type: Type[SimEnvironment] = SimEnvironment,
    jobs: Optional[int] = None,
    config_filter: Optional[Callable[[ConfigDict], bool]] = None,
) -> List[ResultDict]:
    """Run one simulation per combination of `factors`.

    Each combination gets an index ('meta.sim.index') and its own workspace,
    a numbered subdirectory of 'sim.workspace'. Runs execute in parallel via
    :func:`simulate_many`.

    :param dict base_config: Base configuration dictionary to be specialized.
    :param list factors: List of factors; see
        :func:`~stockflow.config.factorial_config`.
    :param model: The model; must be picklable.
    :param env_type: :class:`SimEnvironment` subclass.
    :param int jobs: Maximum number of concurrent processes.
    :param config_filter:
        Optional predicate; only configs for which it returns True are run.
    :returns: Result dictionaries ordered by 'meta.sim.index'.

    """
    root: str = base_config.setdefault('sim.workspace', os.curdir)
    overwrite: bool = base_config.setdefault('sim.workspace.overwrite', False)
    configs = []
    for index, config in enumerate(
        factorial_config(base_config, factors, 'meta.sim.special')
    ):
        config['meta.sim.index'] = index
        config['meta.sim.workspace'] = os.path.join(root, str(index))
        if config_filter is None or config_filter(config):
            configs.append(config)
    if overwrite and os.path.relpath(root) != os.curdir and os.path.isdir(root):
        shutil.rmtree(root)
    return simulate_many(configs, model, env_type, jobs)


def simulate_many(
    configs: Sequence[ConfigDict],
    model: ModelType,
    env_type: Type[SimEnvironment] = SimEnvironment,
    jobs: Optional[int] = None,
) -> List[ResultDict]:
    """Run independent simulations in a pool of worker processes.

    Every run has its own environment, random number generator and scheduler,
    so runs never interfere with one another. Exceptions are not re-raised;
    check each result's 'sim.exception'.

    :param configs: Configuration dictionaries, one per run. Each must name a
        distinct workspace.
    :param model: The model; must be picklable.
    :param env_type: :class:`SimEnvironment` subclass.
    :param int jobs: Maximum number of concurrent processes. Defaults to the
        number of CPUs.
    :returns: Result dictionaries ordered by 'meta.sim.index'.

    """
    if jobs is not None and jobs < 1:
        raise ValueError(f'Invalid number of jobs: {jobs}')

    seen: Set[str] = set()
    for index, config in enumerate(configs):
        workspace = os.path.normpath(
            config.setdefault(
                'meta.sim.workspace', config.setdefault('sim.workspace', os.curdir)
            )
        )
        if workspace in seen:
            raise ValueError(f'Duplicate workspace: {workspace}')
        seen.add(workspace)
        config.setdefault('meta.sim.index', index)

    if not configs:
        return []

    processes = min(len(configs), jobs or cpu_count())
    run = partial(simulate, model=model, env_type=env_type, reraise=False)
    with Pool(processes) as pool:
        results = pool.map(run, configs)
    return sorted(results, key=lambda r: r['config']['meta.sim.index'])


def _dump_yaml(data: Dict[str, Any], stream: IO[str]) -> None:
    yaml.safe_dump(data, stream=stream)


def _dump_json(data: Dict[str, Any], stream: IO[str]) -> None:
    json.dump(data, stream, sort_keys=True, indent=2)


def _dump_python(data: Dict[str, Any], stream: IO[str]) -> None:
    pprint(data, stream=stream)


#: Config and result file writers, by file extension.
_dumpers: Dict[str, Callable[[Dict[str, Any], IO[str]], None]] = {
    '.yaml': _dump_yaml,
    '.yml': _dump_yaml,
    '.json': _dump_json,
    '.py': _dump_python,
}


def _write_dump(filename: Optional[str], data: Dict[str, Any]) -> None:
    if filename is None:
        return
    ext = os.path.splitext(filename)[1]
    dumper = _dumpers.get(ext)
    if dumper is None:
        raise ValueError(f'Invalid extension: {ext}')
    with open(filename, 'w') as stream:
        dumper(data, stream)
