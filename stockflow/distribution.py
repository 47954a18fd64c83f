"""Random distributions for process durations and quantities.

Distributions are immutable parameter objects. They never own a random
number generator; every call to :meth:`Distribution.sample` is passed the
run's generator (normally ``env.rand``), so a run seeded with 'sim.seed'
replays the same samples in the same order.

Distributions are usually created from the declarative form used in model
descriptions::

    >>> create_distribution({'type': 'TruncNormal', 'mean': 40, 'std': 10,
    ...                      'min': 10, 'max': None})
    TruncNormal(mean=40.0, std=10.0, min=10.0, max=None)

Invalid parameters raise :class:`DistributionError` at creation time, so a
model that builds never fails to sample.

"""
from math import inf, isfinite
from random import Random
from typing import Any, Dict, Mapping, Optional, Type, Union

from .config import ConfigError

DistributionSpec = Union['Distribution', int, float, Mapping[str, Any]]

#: Attempts made by :class:`TruncNormal` before clamping to its bounds.
MAX_REJECTIONS = 1000


class DistributionError(ConfigError):
    """Invalid distribution type or parameters."""


def _real(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DistributionError(f'{name} must be a number, got {value!r}')
    if not isfinite(value):
        raise DistributionError(f'{name} must be finite, got {value!r}')
    return float(value)


def _optional_real(name: str, value: Any) -> Optional[float]:
    return None if value is None else _real(name, value)


class Distribution:
    """Base class of all distributions."""

    #: Name used for the 'type' key of the declarative form.
    type_name: str = ''

    def sample(self, rng: Random) -> float:
        raise NotImplementedError()  # pragma: no cover

    @property
    def upper(self) -> float:
        """Largest value :meth:`sample` can return."""
        return inf

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type_name, **self._params()}

    def _params(self) -> Dict[str, Any]:
        raise NotImplementedError()  # pragma: no cover

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and self._params() == other._params()

    def __hash__(self) -> int:
        return hash((type(self), tuple(sorted(self._params().items()))))

    def __repr__(self) -> str:
        params = ', '.join(f'{k}={v!r}' for k, v in self._params().items())
        return f'{type(self).__name__}({params})'


class Constant(Distribution):

    type_name = 'Constant'

    def __init__(self, value: float) -> None:
        self.value = _real('value', value)

    def sample(self, rng: Random) -> float:
        return self.value

    @property
    def upper(self) -> float:
        return self.value

    def _params(self) -> Dict[str, Any]:
        return {'value': self.value}


class Uniform(Distribution):

    type_name = 'Uniform'

    def __init__(self, min: float, max: float) -> None:
        self.min = _real('min', min)
        self.max = _real('max', max)
        if self.min > self.max:
            raise DistributionError(
                f'Uniform min ({self.min}) is greater than max ({self.max})'
            )

    def sample(self, rng: Random) -> float:
        return rng.uniform(self.min, self.max)

    @property
    def upper(self) -> float:
        return self.max

    def _params(self) -> Dict[str, Any]:
        return {'min': self.min, 'max': self.max}


class Triangular(Distribution):

    type_name = 'Triangular'

    def __init__(self, min: float, max: float, mode: float) -> None:
        self.min = _real('min', min)
        self.max = _real('max', max)
        self.mode = _real('mode', mode)
        if self.min > self.max:
            raise DistributionError(
                f'Triangular min ({self.min}) is greater than max ({self.max})'
            )
        if not self.min <= self.mode <= self.max:
            raise DistributionError(
                f'Triangular mode ({self.mode}) is outside '
                f'[{self.min}, {self.max}]'
            )

    def sample(self, rng: Random) -> float:
        return rng.triangular(self.min, self.max, self.mode)

    @property
    def upper(self) -> float:
        return self.max

    def _params(self) -> Dict[str, Any]:
        return {'min': self.min, 'max': self.max, 'mode': self.mode}


class Normal(Distribution):

    type_name = 'Normal'

    def __init__(self, mean: float, std: float) -> None:
        self.mean = _real('mean', mean)
        self.std = _real('std', std)
        if self.std < 0:
            raise DistributionError(f'std must be non-negative, got {self.std}')

    def sample(self, rng: Random) -> float:
        return rng.normalvariate(self.mean, self.std)

    @property
    def upper(self) -> float:
        return self.mean if self.std == 0 else inf

    def _params(self) -> Dict[str, Any]:
        return {'mean': self.mean, 'std': self.std}


class TruncNormal(Normal):
    """Normal distribution restricted to ``[min, max]``.

    Either bound may be None (unbounded). Samples outside the bounds are
    rejected and redrawn; after :data:`MAX_REJECTIONS` attempts the last draw
    is clamped to the bounds so that a far-off window cannot stall a run.

    """

    type_name = 'TruncNormal'

    def __init__(
        self,
        mean: float,
        std: float,
        min: Optional[float] = None,
        max: Optional[float] = None,
    ) -> None:
        super().__init__(mean, std)
        self.min = _optional_real('min', min)
        self.max = _optional_real('max', max)
        if self.min is not None and self.max is not None and self.min >= self.max:
            raise DistributionError(
                f'TruncNormal min ({self.min}) must be less than max ({self.max})'
            )

    def sample(self, rng: Random) -> float:
        lo = -inf if self.min is None else self.min
        hi = inf if self.max is None else self.max
        for _ in range(MAX_REJECTIONS):
            x = rng.normalvariate(self.mean, self.std)
            if lo <= x <= hi:
                return x
        return min(max(x, lo), hi)

    @property
    def upper(self) -> float:
        hi = inf if self.max is None else self.max
        if self.std == 0:
            lo = -inf if self.min is None else self.min
            return min(max(self.mean, lo), hi)
        return hi

    def _params(self) -> Dict[str, Any]:
        return {'mean': self.mean, 'std': self.std, 'min': self.min, 'max': self.max}


class Exponential(Distribution):

    type_name = 'Exponential'

    def __init__(self, mean: float) -> None:
        self.mean = _real('mean', mean)
        if self.mean <= 0:
            raise DistributionError(f'Exponential mean must be positive, got {mean}')

    def sample(self, rng: Random) -> float:
        return rng.expovariate(1 / self.mean)

    def _params(self) -> Dict[str, Any]:
        return {'mean': self.mean}


_distribution_types: Dict[str, Type[Distribution]] = {
    'constant': Constant,
    'uniform': Uniform,
    'triangular': Triangular,
    'normal': Normal,
    'truncnormal': TruncNormal,
    'truncatednormal': TruncNormal,
    'exponential': Exponential,
}


def _normalize_type(type_name: str) -> str:
    return type_name.lower().replace('-', '').replace('_', '').replace(' ', '')


def create_distribution(spec: DistributionSpec) -> Distribution:
    """Create a :class:`Distribution` from its declarative form.

    :param spec:
        A :class:`Distribution` (returned as is), a number (a
        :class:`Constant`) or a mapping with a 'type' key and the type's
        parameters. Type names are case-insensitive and may be hyphenated,
        e.g. 'TruncNormal' or 'truncated-normal'.
    :raises DistributionError: For unknown types or invalid parameters.

    """
    if isinstance(spec, Distribution):
        return spec
    if isinstance(spec, (int, float)) and not isinstance(spec, bool):
        return Constant(spec)
    if not isinstance(spec, Mapping):
        raise DistributionError(f'Invalid distribution {spec!r}')
    params = dict(spec)
    type_name = params.pop('type', None)
    if not isinstance(type_name, str):
        raise DistributionError(f'Distribution {spec!r} has no type')
    dist_type = _distribution_types.get(_normalize_type(type_name))
    if dist_type is None:
        raise DistributionError(f'Unknown distribution type "{type_name}"')
    try:
        return dist_type(**params)
    except TypeError as e:
        raise DistributionError(f'Invalid parameters for {type_name}: {e}') from e


def sample(spec: Distribution, rng: Random, floor: Optional[float] = None) -> float:
    """Draw one value from `spec` using `rng`.

    :param float floor:
        When given, samples below `floor` are raised to it. Process durations
        and quantities use a floor of zero.

    """
    x = spec.sample(rng)
    if floor is not None and x < floor:
        return floor
    return x
