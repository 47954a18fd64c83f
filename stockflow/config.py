"""Tools for managing simulation configurations.

Each simulation run is configured by a single, flat dictionary whose keys use
a dotted notation. Keys prefixed with 'sim.' are reserved for `stockflow`
itself; for example 'sim.seed', 'sim.duration' and 'sim.log.enable'. The
engine fills in defaults with :meth:`dict.setdefault`, so the configuration
dumped alongside a result always records every value the run used.

Model parameters (capacities, distributions, connections) are not part of
this dictionary; they are described by a :class:`stockflow.graph.ModelSpec`.

"""
from copy import deepcopy
from itertools import product
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

ConfigDict = Dict[str, Any]
ConfigFactor = Tuple[List[str], List[List[Any]]]


class ConfigError(Exception):
    """Exception raised for a variety of configuration errors."""


def factorial_config(
    base_config: ConfigDict,
    factors: Iterable[ConfigFactor],
    special_key: Optional[str] = None,
) -> Iterator[ConfigDict]:
    """Generate configurations from a base config and config factors.

    A factor is a `(keys, values_list)` pair: a list of keys and a list of
    value lists, one value per key. The cartesian product of all factors is
    generated, so two factors of three values each yield nine configs.

    :param dict base_config:
        Configuration the generated configs are deep copies of.
    :param factors: Sequence of configuration factors.
    :param str special_key:
        When given, each generated config records its unique
        `[key, value]` combinations under this key.

    """
    unrolled_factors = [
        [(keys, values) for values in values_list] for keys, values_list in factors
    ]
    for keys_values_lists in product(*unrolled_factors):
        config = deepcopy(base_config)
        special: List[List[Any]] = []
        if special_key:
            config[special_key] = special
        for keys, values in keys_values_lists:
            for key, value in zip(keys, values):
                config[key] = value
                if special_key:
                    special.append([key, value])
        yield config
