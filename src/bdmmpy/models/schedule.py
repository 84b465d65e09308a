"""
Piecewise-constant rate schedules for the multi-type birth-death-migration model.

Time runs forward from the start of the process (``t = 0``, the origin, or the
root when conditioning on the root) to the present (``t = origin``). The
process is cut into intervals over which every rate is constant; interval
``i`` covers ``(end[i-1], end[i]]`` with ``end[-1] = 0`` and
``end[n-1] = origin``. Rho sampling happens instantaneously at interval ends:
``rho_values[i]`` is applied at ``end[i]``.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional, Sequence, Union

import numpy as np

from ..core.precision import DEFAULT_PRECISION, equal_with_precision
from ..errors import ConfigurationError

ArrayLike = Union[float, Sequence[float], Sequence[Sequence[float]], np.ndarray]


class IntervalRates(NamedTuple):
    """Rates of one interval, pre-arranged for the derivative functions."""

    birth: np.ndarray
    death: np.ndarray
    sampling: np.ndarray
    total: np.ndarray
    cross_birth: np.ndarray
    cross_birth_out: np.ndarray
    migration: np.ndarray
    migration_out: np.ndarray


def _per_interval(values: Optional[ArrayLike], n_intervals: int, n_types: int,
                  name: str, default: float = 0.0) -> np.ndarray:
    """Broadcast a per-type parameter to shape (n_intervals, n_types)."""
    if values is None:
        return np.full((n_intervals, n_types), default)

    arr = np.asarray(values, dtype=float)
    if arr.ndim == 0:
        return np.full((n_intervals, n_types), float(arr))
    if arr.ndim == 1 and arr.shape == (n_types,):
        return np.tile(arr, (n_intervals, 1))
    if arr.shape == (n_intervals, n_types):
        return arr.copy()

    raise ConfigurationError(
        f"{name} must be a scalar, have shape ({n_types},) or "
        f"({n_intervals}, {n_types}); got shape {arr.shape}"
    )


def _per_interval_matrix(values: Optional[ArrayLike], n_intervals: int, n_types: int,
                         name: str) -> np.ndarray:
    """Broadcast a type-pair parameter to shape (n_intervals, n_types, n_types)."""
    if values is None:
        return np.zeros((n_intervals, n_types, n_types))

    arr = np.asarray(values, dtype=float)
    if arr.ndim == 0:
        out = np.full((n_intervals, n_types, n_types), float(arr))
    elif arr.shape == (n_types, n_types):
        out = np.tile(arr, (n_intervals, 1, 1))
    elif arr.shape == (n_intervals, n_types, n_types):
        out = arr.copy()
    else:
        raise ConfigurationError(
            f"{name} must be a scalar, have shape ({n_types}, {n_types}) or "
            f"({n_intervals}, {n_types}, {n_types}); got shape {arr.shape}"
        )

    # Diagonal entries have no meaning for between-type rates
    idx = np.arange(n_types)
    out[:, idx, idx] = 0.0
    return out


def _check_rates(arr: np.ndarray, name: str, upper: Optional[float] = None) -> None:
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{name} must be finite")
    if np.any(arr < 0.0):
        raise ConfigurationError(f"{name} must be non-negative")
    if upper is not None and np.any(arr > upper):
        raise ConfigurationError(f"{name} must lie in [0, {upper}]")


@dataclass
class RateSchedule:
    """
    Rates of the birth-death-migration process, interval by interval.

    Per-type parameters accept a scalar, a ``(n_types,)`` vector (same value
    in every interval) or a full ``(n_intervals, n_types)`` array; type-pair
    parameters accept a scalar, ``(n_types, n_types)`` or
    ``(n_intervals, n_types, n_types)``. Diagonal entries of type-pair
    parameters are ignored.

    Attributes
    ----------
    origin : float
        Length of the process: time from the origin (or root) to the present.
    interval_end_times : np.ndarray, shape (n_intervals,)
        Strictly increasing interval end times; the last equals ``origin``.
    birth_rates, death_rates, sampling_rates : np.ndarray
        Shape ``(n_intervals, n_types)``.
    removal_probs : np.ndarray
        Probability that a sampled lineage is removed; default 1 (no sampled
        ancestors).
    rho_values : np.ndarray
        Rho sampling probability applied at each interval end.
    cross_birth_rates, migration_rates : np.ndarray
        Shape ``(n_intervals, n_types, n_types)``; entry ``[k, i, j]`` is the
        rate from type ``i`` to type ``j`` in interval ``k``.
    rho_sampling_times : tuple of float
        Times at which rho sampling happens. Derived from the non-zero rows of
        ``rho_values`` when not given.
    type_names : tuple of str
        Labels used to resolve leaf types; default ``("0", "1", ...)``.

    Examples
    --------
    >>> schedule = RateSchedule(
    ...     origin=2.5,
    ...     interval_end_times=[2.5],
    ...     birth_rates=[[2.0]],
    ...     death_rates=[[1.0]],
    ...     sampling_rates=[[0.5]],
    ... )
    >>> schedule.n_types, schedule.n_intervals
    (1, 1)
    """

    origin: float
    interval_end_times: ArrayLike
    birth_rates: ArrayLike
    death_rates: Optional[ArrayLike] = None
    sampling_rates: Optional[ArrayLike] = None
    removal_probs: Optional[ArrayLike] = None
    rho_values: Optional[ArrayLike] = None
    cross_birth_rates: Optional[ArrayLike] = None
    migration_rates: Optional[ArrayLike] = None
    rho_sampling_times: Optional[Sequence[float]] = None
    type_names: Optional[Sequence[str]] = None
    _rates: list = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        self.origin = float(self.origin)
        if not math.isfinite(self.origin) or self.origin <= 0.0:
            raise ConfigurationError(f"origin must be positive and finite, got {self.origin}")

        ends = np.atleast_1d(np.asarray(self.interval_end_times, dtype=float))
        if ends.ndim != 1 or len(ends) == 0:
            raise ConfigurationError("interval_end_times must be a non-empty 1-D sequence")
        if np.any(np.diff(ends) <= 0.0) or ends[0] <= 0.0:
            raise ConfigurationError("interval_end_times must be positive and strictly increasing")
        if not equal_with_precision(ends[-1], self.origin):
            raise ConfigurationError(
                f"last interval end time ({ends[-1]}) must equal origin ({self.origin})"
            )
        ends[-1] = self.origin
        self.interval_end_times = ends
        n_intervals = len(ends)

        birth = np.asarray(self.birth_rates, dtype=float)
        if birth.ndim == 0:
            n_types = len(self.type_names) if self.type_names is not None else 1
        else:
            n_types = birth.shape[-1]

        self.birth_rates = _per_interval(birth, n_intervals, n_types, "birth_rates")
        self.death_rates = _per_interval(self.death_rates, n_intervals, n_types, "death_rates")
        self.sampling_rates = _per_interval(self.sampling_rates, n_intervals, n_types, "sampling_rates")
        self.removal_probs = _per_interval(self.removal_probs, n_intervals, n_types,
                                           "removal_probs", default=1.0)
        self.rho_values = _per_interval(self.rho_values, n_intervals, n_types, "rho_values")
        self.cross_birth_rates = _per_interval_matrix(self.cross_birth_rates, n_intervals, n_types,
                                                      "cross_birth_rates")
        self.migration_rates = _per_interval_matrix(self.migration_rates, n_intervals, n_types,
                                                    "migration_rates")

        _check_rates(self.birth_rates, "birth_rates")
        _check_rates(self.death_rates, "death_rates")
        _check_rates(self.sampling_rates, "sampling_rates")
        _check_rates(self.removal_probs, "removal_probs", upper=1.0)
        _check_rates(self.rho_values, "rho_values", upper=1.0)
        _check_rates(self.cross_birth_rates, "cross_birth_rates")
        _check_rates(self.migration_rates, "migration_rates")

        if self.rho_sampling_times is None:
            self.rho_sampling_times = tuple(
                float(ends[i]) for i in range(n_intervals) if np.any(self.rho_values[i] > 0.0)
            )
        else:
            times = tuple(sorted(float(t) for t in self.rho_sampling_times))
            for t in times:
                if not any(equal_with_precision(t, end) for end in ends):
                    raise ConfigurationError(
                        f"rho sampling time {t} does not coincide with an interval end time"
                    )
            self.rho_sampling_times = times

        for i in range(n_intervals):
            if np.any(self.rho_values[i] > 0.0) and not self.is_rho_sampling_time(ends[i]):
                raise ConfigurationError(
                    f"rho_values are non-zero at time {ends[i]}, which is not a rho sampling time"
                )

        if self.type_names is None:
            self.type_names = tuple(str(i) for i in range(n_types))
        else:
            self.type_names = tuple(str(name) for name in self.type_names)
            if len(self.type_names) != n_types:
                raise ConfigurationError(
                    f"{len(self.type_names)} type names given for {n_types} types"
                )
            if len(set(self.type_names)) != n_types:
                raise ConfigurationError("type names must be unique")

        self._rates = [self._build_interval_rates(i) for i in range(n_intervals)]

    def _build_interval_rates(self, interval: int) -> IntervalRates:
        b = self.birth_rates[interval]
        d = self.death_rates[interval]
        s = self.sampling_rates[interval]
        c = self.cross_birth_rates[interval]
        m = self.migration_rates[interval]
        return IntervalRates(
            birth=b,
            death=d,
            sampling=s,
            total=b + d + s,
            cross_birth=c,
            cross_birth_out=c.sum(axis=1),
            migration=m,
            migration_out=m.sum(axis=1),
        )

    # ------------------------------------------------------------------ #
    # Read-only accessors used by the likelihood core
    # ------------------------------------------------------------------ #

    @property
    def n_types(self) -> int:
        return self.birth_rates.shape[1]

    @property
    def n_intervals(self) -> int:
        return len(self.interval_end_times)

    @property
    def interval_start_times(self) -> np.ndarray:
        """Start time of each interval (0 for the first)."""
        return np.concatenate(([0.0], self.interval_end_times[:-1]))

    def interval_index(self, time: float, precision: float = DEFAULT_PRECISION) -> int:
        """
        Index of the interval containing ``time``.

        A time within ``precision`` of a boundary belongs to the interval that
        ends there. Times outside ``[0, origin]`` map to the first or last
        interval.
        """
        index = int(np.searchsorted(self.interval_end_times, time - precision, side="left"))
        return min(index, self.n_intervals - 1)

    def rates(self, interval: int) -> IntervalRates:
        """Rates of ``interval`` arranged for derivative evaluation."""
        return self._rates[interval]

    def is_rho_sampling_time(self, time: float, precision: float = DEFAULT_PRECISION) -> bool:
        """True if ``time`` coincides with a rho sampling event."""
        return any(equal_with_precision(time, t, precision) for t in self.rho_sampling_times)

    def node_time(self, height: float, final_sample_offset: float = 0.0) -> float:
        """Convert a node height (before the most recent sample) to process time."""
        return self.origin - height - final_sample_offset

    def type_index(self, name: str) -> int:
        """Index of the type labelled ``name``."""
        try:
            return self.type_names.index(str(name))
        except ValueError:
            raise ConfigurationError(
                f"Unknown type label '{name}'. Known types: {', '.join(self.type_names)}"
            ) from None

    # ------------------------------------------------------------------ #
    # Constructors
    # ------------------------------------------------------------------ #

    @classmethod
    def constant(
        cls,
        origin: float,
        birth_rate: ArrayLike,
        death_rate: ArrayLike = 0.0,
        sampling_rate: ArrayLike = 0.0,
        removal_prob: ArrayLike = 1.0,
        rho: Optional[ArrayLike] = None,
        migration_rate: Optional[ArrayLike] = None,
        cross_birth_rate: Optional[ArrayLike] = None,
        type_names: Optional[Sequence[str]] = None,
    ) -> "RateSchedule":
        """
        Schedule with a single rate interval.

        ``rho``, if given, is a rho sampling probability applied at the
        present (``t = origin``).
        """
        n_types = _infer_n_types(type_names, birth_rate, death_rate, sampling_rate,
                                 removal_prob, rho, migration_rate, cross_birth_rate)
        birth = _per_interval(birth_rate, 1, n_types, "birth_rate")
        return cls(
            origin=origin,
            interval_end_times=[origin],
            birth_rates=birth,
            death_rates=death_rate,
            sampling_rates=sampling_rate,
            removal_probs=removal_prob,
            rho_values=rho,
            cross_birth_rates=cross_birth_rate,
            migration_rates=migration_rate,
            rho_sampling_times=(origin,) if rho is not None else (),
            type_names=type_names,
        )

    @classmethod
    def from_skylines(
        cls,
        origin: float,
        birth: "Skyline",
        death: Optional["Skyline"] = None,
        sampling: Optional["Skyline"] = None,
        removal: Optional["Skyline"] = None,
        migration: Optional["Skyline"] = None,
        cross_birth: Optional["Skyline"] = None,
        rho_sampling: Optional["RhoSampling"] = None,
        type_names: Optional[Sequence[str]] = None,
        precision: float = DEFAULT_PRECISION,
    ) -> "RateSchedule":
        """
        Merge per-parameter skylines into one interval grid.

        Each skyline has its own change times; the schedule's intervals are
        cut at the union of all change times and rho sampling times.

        Parameters
        ----------
        origin : float
            Process length.
        birth, death, sampling, removal : Skyline
            Per-type skylines. ``removal`` defaults to 1 everywhere.
        migration, cross_birth : Skyline, optional
            Type-pair skylines.
        rho_sampling : RhoSampling, optional
            Instantaneous sampling events.
        type_names : sequence of str, optional
            Type labels.
        precision : float
            Change times closer than this are merged.

        Returns
        -------
        RateSchedule
        """
        origin = float(origin)
        skylines = [s for s in (birth, death, sampling, removal, migration, cross_birth) if s is not None]

        n_types = _infer_n_types(type_names, *(s.values[0] for s in skylines))

        cut_times = [origin]
        for skyline in skylines:
            cut_times.extend(t for t in skyline.forward_change_times(origin)
                             if precision < t < origin - precision)

        rho_times = []
        if rho_sampling is not None:
            rho_times = rho_sampling.forward_times(origin)
            for t in rho_times:
                if t <= precision or t > origin + precision:
                    raise ConfigurationError(
                        f"rho sampling time {t} lies outside the process (0, {origin}]"
                    )
            cut_times.extend(min(t, origin) for t in rho_times)

        ends = []
        for t in sorted(cut_times):
            if not ends or not equal_with_precision(t, ends[-1], precision):
                ends.append(t)
        ends[-1] = origin
        ends = np.array(ends)
        starts = np.concatenate(([0.0], ends[:-1]))
        midpoints = 0.5 * (starts + ends)

        def per_interval(skyline, default, matrix=False):
            if skyline is None:
                shape = (len(ends), n_types, n_types) if matrix else (len(ends), n_types)
                return np.full(shape, default)
            return np.array([skyline.value_at(t, origin, n_types, matrix) for t in midpoints])

        rho_values = np.zeros((len(ends), n_types))
        if rho_sampling is not None:
            for t, value in zip(rho_times, rho_sampling.values_per_type(n_types)):
                i = int(np.argmin(np.abs(ends - t)))
                rho_values[i] = value

        return cls(
            origin=origin,
            interval_end_times=ends,
            birth_rates=per_interval(birth, 0.0),
            death_rates=per_interval(death, 0.0),
            sampling_rates=per_interval(sampling, 0.0),
            removal_probs=per_interval(removal, 1.0),
            rho_values=rho_values,
            cross_birth_rates=per_interval(cross_birth, 0.0, matrix=True),
            migration_rates=per_interval(migration, 0.0, matrix=True),
            rho_sampling_times=tuple(ends[i] for i in range(len(ends)) if np.any(rho_values[i] > 0.0)),
            type_names=type_names,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateSchedule":
        """
        Build a schedule from a JSON-style dictionary.

        Each rate entry is either a plain value (scalar, per-type list or
        type-pair matrix) or a mapping with ``values``, optional
        ``change_times`` and optional ``times_are_ages``.

        Examples
        --------
        >>> RateSchedule.from_dict({
        ...     "origin": 2.5,
        ...     "type_names": ["A", "B"],
        ...     "birth_rate": [2.0, 2.0],
        ...     "death_rate": {"values": [[1.0, 1.0], [0.5, 0.5]], "change_times": [1.0]},
        ...     "sampling_rate": 0.5,
        ...     "migration_rate": [[0.0, 0.1], [0.1, 0.0]],
        ...     "rho_sampling": {"times": [2.5], "values": [0.3]},
        ... }).n_intervals
        2
        """
        if "origin" not in data:
            raise ConfigurationError("parameter file must define 'origin'")
        if "birth_rate" not in data:
            raise ConfigurationError("parameter file must define 'birth_rate'")

        def skyline(key):
            entry = data.get(key)
            if entry is None:
                return None
            if isinstance(entry, dict):
                if "values" not in entry:
                    raise ConfigurationError(f"'{key}' mapping must contain 'values'")
                return Skyline(
                    values=entry["values"],
                    change_times=entry.get("change_times", ()),
                    times_are_ages=entry.get("times_are_ages", False),
                )
            return Skyline(values=[entry])

        rho = data.get("rho_sampling")
        rho_sampling = None
        if rho is not None:
            rho_sampling = RhoSampling(
                times=rho["times"],
                values=rho["values"],
                times_are_ages=rho.get("times_are_ages", False),
            )

        return cls.from_skylines(
            origin=data["origin"],
            birth=skyline("birth_rate"),
            death=skyline("death_rate"),
            sampling=skyline("sampling_rate"),
            removal=skyline("removal_prob"),
            migration=skyline("migration_rate"),
            cross_birth=skyline("cross_birth_rate"),
            rho_sampling=rho_sampling,
            type_names=data.get("type_names"),
        )


def _infer_n_types(type_names, *values) -> int:
    if type_names is not None:
        return len(type_names)
    for value in values:
        if value is None:
            continue
        arr = np.asarray(value, dtype=float)
        if arr.ndim >= 1:
            return arr.shape[-1]
    return 1


@dataclass
class Skyline:
    """
    Piecewise-constant parameter with its own change times.

    Attributes
    ----------
    values : array-like
        One entry per epoch (``len(change_times) + 1`` entries), each a
        scalar, a per-type vector or a type-pair matrix. Epochs are listed
        forward in time, or from the present backwards when
        ``times_are_ages`` is set.
    change_times : sequence of float
        Epoch boundaries, ascending.
    times_are_ages : bool
        Interpret ``change_times`` as ages before the present.
    """

    values: Any
    change_times: Sequence[float] = ()
    times_are_ages: bool = False

    def __post_init__(self):
        self.change_times = tuple(float(t) for t in self.change_times)
        if list(self.change_times) != sorted(self.change_times):
            raise ConfigurationError("skyline change times must be ascending")
        if len(self.values) != len(self.change_times) + 1:
            raise ConfigurationError(
                f"skyline with {len(self.change_times)} change times needs "
                f"{len(self.change_times) + 1} values, got {len(self.values)}"
            )

    def forward_change_times(self, origin: float) -> list:
        if self.times_are_ages:
            return [origin - t for t in reversed(self.change_times)]
        return list(self.change_times)

    def value_at(self, time: float, origin: float, n_types: int, matrix: bool = False) -> np.ndarray:
        """Parameter value at ``time``, broadcast to the type dimensions."""
        values = list(self.values)
        if self.times_are_ages:
            values = values[::-1]
        epoch = int(np.searchsorted(self.forward_change_times(origin), time, side="left"))
        value = np.asarray(values[epoch], dtype=float)

        shape = (n_types, n_types) if matrix else (n_types,)
        try:
            return np.broadcast_to(value, shape).copy()
        except ValueError:
            raise ConfigurationError(
                f"skyline value of shape {value.shape} cannot be used for {n_types} types"
            ) from None


@dataclass
class RhoSampling:
    """
    Rho sampling events: at each time, every lineage of type ``k`` is sampled
    with probability ``values[event][k]``.
    """

    times: Sequence[float]
    values: Any
    times_are_ages: bool = False

    def __post_init__(self):
        self.times = tuple(float(t) for t in self.times)
        if len(self.values) != len(self.times):
            raise ConfigurationError(
                f"{len(self.times)} rho sampling times but {len(self.values)} values"
            )

    def forward_times(self, origin: float) -> list:
        if self.times_are_ages:
            return [origin - t for t in self.times]
        return list(self.times)

    def values_per_type(self, n_types: int) -> list:
        return [np.broadcast_to(np.asarray(v, dtype=float), (n_types,)).copy() for v in self.values]


def epi_to_canonical(
    reproductive_number: ArrayLike,
    become_uninfectious_rate: ArrayLike,
    sampling_proportion: ArrayLike,
    removal_prob: ArrayLike = 1.0,
    reproductive_number_among_types: Optional[ArrayLike] = None,
) -> Dict[str, np.ndarray]:
    """
    Convert epidemiological parameters into birth, death and sampling rates.

    With ``delta`` the rate of becoming uninfectious (death, or sampling
    followed by removal), ``s`` the sampling proportion and ``r`` the removal
    probability::

        birth    = R0 * delta
        sampling = s * delta / (1 - (1 - r) * s)
        death    = delta - r * sampling

    Arguments are broadcast elementwise, so per-type vectors and
    ``(n_epochs, n_types)`` arrays both work. Cross-type reproductive numbers
    ``R0[i, j]`` become cross-birth rates ``R0[i, j] * delta[i]``.

    Returns
    -------
    dict
        Keys ``birth_rate``, ``death_rate``, ``sampling_rate`` and, if
        requested, ``cross_birth_rate``.
    """
    r0 = np.asarray(reproductive_number, dtype=float)
    delta = np.asarray(become_uninfectious_rate, dtype=float)
    s = np.asarray(sampling_proportion, dtype=float)
    r = np.asarray(removal_prob, dtype=float)

    if np.any((s < 0.0) | (s > 1.0)) or np.any((r < 0.0) | (r > 1.0)):
        raise ConfigurationError("sampling proportion and removal probability must lie in [0, 1]")
    if np.any(s * (1.0 - r) >= 1.0):
        raise ConfigurationError("sampling proportion of 1 requires removal probability > 0")

    sampling = s * delta / (1.0 - (1.0 - r) * s)
    converted = {
        "birth_rate": r0 * delta,
        "death_rate": delta - r * sampling,
        "sampling_rate": sampling,
    }

    if reproductive_number_among_types is not None:
        among = np.asarray(reproductive_number_among_types, dtype=float)
        converted["cross_birth_rate"] = among * delta[..., :, np.newaxis]

    return converted
