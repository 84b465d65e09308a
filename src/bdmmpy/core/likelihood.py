"""
Tree likelihood under the multi-type birth-death-migration model.

The tree is evaluated in post-order without recursion. For every node the
state at the bottom of its incoming edge is built from the node's event
(sampling, sampled ancestor or birth) and the states of its children, then
integrated up the edge. Large sibling subtrees can be evaluated concurrently
on a thread pool.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Mapping, Optional, Sequence, Union

import numpy as np

from ..config import LikelihoodConfig
from ..errors import ConfigurationError, NumericalBreakdownError, ParallelEvaluationError
from ..io.traits import UNKNOWN_TYPE, resolve_leaf_types
from ..io.trees import Tree, TreeNode
from ..models.schedule import RateSchedule
from ..results import LikelihoodResult
from .integrator import IntervalIntegrator
from .ode import P0GeSystem
from .precision import equal_with_precision, less_than_with_precision
from .single_type import SingleTypeSolution
from .small_number import SmallNumber
from .states import P0GeState

logger = logging.getLogger(__name__)

_LOG2 = math.log(2.0)


class ExecutionContext:
    """
    Worker pool used to evaluate sibling subtrees concurrently.

    Subtrees are only dispatched when both siblings carry more than
    ``parallelization_factor`` of the total branch length. Fewer than
    ``1 / parallelization_factor`` subtrees can satisfy that at once, so a
    pool of ``ceil(1 / parallelization_factor)`` threads always has a free
    worker for every dispatched task, even while parents block on children.

    Parameters
    ----------
    max_workers : int
        Size of the thread pool.
    """

    def __init__(self, max_workers: int):
        self.max_workers = max_workers
        self.executor = ThreadPoolExecutor(max_workers=max_workers,
                                           thread_name_prefix="bdmmpy")

    def submit(self, fn, *args):
        return self.executor.submit(fn, *args)

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)


def subtree_weights(tree: Tree) -> Dict[int, float]:
    """
    Total branch length below (and including) each node's edge.

    The root's weight is the sum of its children's weights.
    """
    weights = {}
    for node in tree.postorder():
        weight = sum(weights[child.id] for child in node.children)
        if not node.is_root:
            weight += node.branch_length
        weights[node.id] = weight
    return weights


def _ordered_children(node: TreeNode):
    # Fixed order keeps the floating-point result independent of scheduling
    return sorted(node.children, key=lambda child: child.id)


class _Traversal:
    """Per-evaluation data shared by every node of one likelihood calculation."""

    def __init__(self, tree: Tree, schedule: RateSchedule, leaf_types: Mapping[int, int],
                 config: LikelihoodConfig, context: Optional[ExecutionContext]):
        self.tree = tree
        self.schedule = schedule
        self.leaf_types = leaf_types
        self.config = config
        self.context = context
        self.precision = config.precision_threshold
        self.offset = config.final_sample_offset
        self.integrator = IntervalIntegrator(schedule, config)

        leaves = tree.leaves()
        leaf_times = [schedule.node_time(leaf.height, self.offset) for leaf in leaves]
        # Leaf node numbers are 0..n_leaves-1, matching the rows of the cache
        self.initial_p0 = self.integrator.initial_conditions(leaf_times)

        self.threshold = math.inf
        self.weights = {}
        if context is not None:
            self.weights = subtree_weights(tree)
            self.threshold = self.weights[tree.root.id] * config.parallelization_factor

    @property
    def start_p0(self) -> np.ndarray:
        """Extinction probabilities at time 0."""
        return self.initial_p0[-1]

    def node_time(self, node: TreeNode) -> float:
        return self.schedule.node_time(node.height, self.offset)

    def _debug(self, depth: int, message: str, *args) -> None:
        logger.debug("  " * depth + message, *args)

    def subtree(self, node: TreeNode, t_top: float, system: P0GeSystem, depth: int = 0) -> P0GeState:
        """
        State at the top of the edge above ``node`` (time ``t_top``).

        The subtree is walked with an explicit stack: children before their
        parent, the child with the smaller node number first.
        """
        states = {}
        pending = {}
        stack = [(node, t_top, depth, False)]
        while stack:
            current, top, level, expanded = stack.pop()
            if expanded or current.is_leaf:
                states[current.id] = self._edge(current, top, system, level, states, pending)
                continue

            stack.append((current, top, level, True))
            t = self.node_time(current)
            if current.is_sampled_ancestor:
                stack.append((current.non_direct_ancestor_child, t, level + 1, False))
                continue

            first, second = _ordered_children(current)
            if self._dispatch(first, second):
                pending[second.id] = self.context.submit(self._subtree_task, second, t, level + 1)
            else:
                stack.append((second, t, level + 1, False))
            stack.append((first, t, level + 1, False))

        return states[node.id]

    def _edge(self, node: TreeNode, t_top: float, system: P0GeSystem, depth: int,
              states: Dict[int, P0GeState], pending: dict) -> P0GeState:
        """Build the state below ``node`` from its children and integrate it up the edge."""
        t_bottom = self.node_time(node)
        if logger.isEnabledFor(logging.DEBUG):
            self._debug(depth, "Evaluating edge of node %d on [%g, %g]",
                        node.id, t_top, t_bottom)

        if node.is_leaf:
            state = self._sample(node, t_bottom)
        elif node.is_sampled_ancestor:
            child_state = states.pop(node.non_direct_ancestor_child.id)
            state = self._sampled_ancestor(node, t_bottom, child_state, depth)
        else:
            first, second = _ordered_children(node)
            first_state = states.pop(first.id)
            second_state = self._collect(second, states, pending)
            state = self._birth(node, t_bottom, first_state, second_state, depth)

        if logger.isEnabledFor(logging.DEBUG):
            self._debug(depth, "State at bottom of edge: %s", state)

        state = self.integrator.integrate_p0ge(state, t_bottom, t_top, system)

        if logger.isEnabledFor(logging.DEBUG):
            self._debug(depth, "State at top of edge: %s", state)
        return state

    def _dispatch(self, first: TreeNode, second: TreeNode) -> bool:
        """Whether ``second`` goes to the pool while ``first`` is evaluated here."""
        return (self.context is not None
                and self.weights[first.id] > self.threshold
                and self.weights[second.id] > self.threshold)

    @staticmethod
    def _collect(node: TreeNode, states: Dict[int, P0GeState], pending: dict) -> P0GeState:
        future = pending.pop(node.id, None)
        if future is None:
            return states.pop(node.id)
        try:
            return future.result()
        except ParallelEvaluationError:
            raise
        except Exception as e:
            raise ParallelEvaluationError(
                f"Evaluation of the subtree below node {node.id} failed: {e}"
            ) from e

    def _types_of(self, leaf: TreeNode) -> Sequence[int]:
        leaf_type = self.leaf_types[leaf.id]
        if leaf_type == UNKNOWN_TYPE:
            return range(self.schedule.n_types)
        return (leaf_type,)

    def _sample(self, leaf: TreeNode, t: float) -> P0GeState:
        schedule = self.schedule
        k = schedule.interval_index(t, self.precision)
        on_rho = schedule.is_rho_sampling_time(t, self.precision)

        state = P0GeState(schedule.n_types)
        state.p0 = self.initial_p0[leaf.id].copy()

        r = schedule.removal_probs[k]
        rate = schedule.rho_values[k] if on_rho else schedule.sampling_rates[k]
        for i in self._types_of(leaf):
            state.ge[i] = SmallNumber((r[i] + state.p0[i] * (1.0 - r[i])) * rate[i])

        if on_rho:
            state.p0 = state.p0 * (1.0 - schedule.rho_values[k])
        return state

    def _sampled_ancestor(self, node: TreeNode, t: float, child_state: P0GeState,
                          depth: int) -> P0GeState:
        schedule = self.schedule
        k = schedule.interval_index(t, self.precision)
        on_rho = schedule.is_rho_sampling_time(t, self.precision)

        r = schedule.removal_probs[k]
        rate = schedule.rho_values[k] if on_rho else schedule.sampling_rates[k]

        state = P0GeState(schedule.n_types)
        state.p0 = child_state.p0.copy()
        for i in self._types_of(node.direct_ancestor_child):
            state.ge[i] = child_state.ge[i].scalar_multiply(rate[i] * (1.0 - r[i]))

        if on_rho:
            state.p0 = state.p0 * (1.0 - schedule.rho_values[k])

        if logger.isEnabledFor(logging.DEBUG):
            self._debug(depth, "Sampled ancestor at time %g", t)
        return state

    def _subtree_task(self, node: TreeNode, t_top: float, depth: int) -> P0GeState:
        # Each worker integrates with its own solver wrapper
        return self.subtree(node, t_top, self.integrator.new_p0ge_system(), depth)

    def _birth(self, node: TreeNode, t: float, state1: P0GeState, state2: P0GeState,
               depth: int) -> P0GeState:
        schedule = self.schedule
        n = schedule.n_types
        k = schedule.interval_index(t, self.precision)

        ge1, ge2 = state1.ge, state2.ge
        p0 = state1.p0

        if schedule.is_rho_sampling_time(t, self.precision):
            # Both daughter lineages escaped the rho sampling event
            unsampled = 1.0 - schedule.rho_values[k]
            ge1 = [g.scalar_multiply(u) for g, u in zip(ge1, unsampled)]
            ge2 = [g.scalar_multiply(u) for g, u in zip(ge2, unsampled)]
            p0 = p0 * unsampled

        birth = schedule.birth_rates[k]
        cross_birth = schedule.cross_birth_rates[k]

        state = P0GeState(n)
        state.p0 = np.array(p0, dtype=float)
        for c in range(n):
            ge = ge1[c].multiply(ge2[c]).scalar_multiply(birth[c])
            for o in range(n):
                if o == c or cross_birth[c, o] == 0.0:
                    continue
                cross = ge1[c].multiply(ge2[o]).add(ge1[o].multiply(ge2[c]))
                ge = ge.add(cross.scalar_multiply(0.5 * cross_birth[c, o]))
            state.ge[c] = ge

        if not np.all(np.isfinite(state.p0)):
            raise NumericalBreakdownError(
                f"Non-finite extinction probability at birth node {node.id} (time {t})"
            )

        if logger.isEnabledFor(logging.DEBUG):
            self._debug(depth, "Birth at time %g", t)
        return state

    def root_state(self, system: P0GeSystem) -> P0GeState:
        """Joint state at time 0."""
        root = self.tree.root
        if not self.config.condition_on_root:
            return self.subtree(root, 0.0, system)

        first, second = _ordered_children(root)
        state1 = self.subtree(first, 0.0, system, 1)
        state2 = self.subtree(second, 0.0, system, 1)

        state = P0GeState(self.schedule.n_types)
        state.p0 = state1.p0.copy()
        state.ge = [g1.multiply(g2) for g1, g2 in zip(state1.ge, state2.ge)]
        return state


class BirthDeathMigrationLikelihood:
    """
    Likelihood of a timed tree under the multi-type birth-death-migration model.

    Parameters
    ----------
    tree : Tree
        Timed tree; heights are measured before the most recent sample.
    schedule : RateSchedule
        Rates of the process.
    frequencies : sequence of float, optional
        Probability of each type at the start of the process; uniform by
        default. Must sum to 1.
    leaf_types : mapping, optional
        Leaf name to type label.
    type_label : str, optional
        Metadata key holding leaf types.
    config : LikelihoodConfig, optional
        Numerical and conditioning options.

    Examples
    --------
    >>> tree = Tree.from_newick("((A:1.0,B:1.0):0.5,C:1.5);")
    >>> schedule = RateSchedule.constant(origin=2.5, birth_rate=2.0,
    ...                                  death_rate=1.0, sampling_rate=0.5)
    >>> with BirthDeathMigrationLikelihood(tree, schedule) as likelihood:
    ...     result = likelihood.evaluate()
    >>> result.log_likelihood < 0
    True
    """

    def __init__(
        self,
        tree: Tree,
        schedule: RateSchedule,
        frequencies: Optional[Sequence[float]] = None,
        leaf_types: Optional[Mapping[str, Union[str, int]]] = None,
        type_label: Optional[str] = None,
        config: Optional[LikelihoodConfig] = None,
    ):
        self.config = config if config is not None else LikelihoodConfig()
        self.tree = tree
        self.schedule = schedule
        self.frequencies = _check_frequencies(frequencies, schedule.n_types)
        self._leaf_type_source = (leaf_types, type_label)
        self.leaf_types = resolve_leaf_types(tree, schedule, leaf_types, type_label)
        self._context = None

        logger.info("Likelihood set up for %d leaves, %d types, %d intervals",
                    tree.n_leaves, schedule.n_types, schedule.n_intervals)

    # ------------------------------------------------------------------ #
    # Resource management
    # ------------------------------------------------------------------ #

    def _execution_context(self) -> Optional[ExecutionContext]:
        if not self.config.parallelize:
            return None
        if self._context is None:
            self._context = ExecutionContext(self.config.max_workers)
        return self._context

    def close(self) -> None:
        """Shut down the worker pool, if one was started."""
        if self._context is not None:
            self._context.shutdown()
            self._context = None

    def __enter__(self) -> "BirthDeathMigrationLikelihood":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Evaluation
    # ------------------------------------------------------------------ #

    def log_likelihood(self) -> float:
        """Shortcut for ``evaluate().log_likelihood``."""
        return self.evaluate().log_likelihood

    def evaluate(self, schedule: Optional[RateSchedule] = None,
                 tree: Optional[Tree] = None) -> LikelihoodResult:
        """
        Compute the log-likelihood.

        Parameters
        ----------
        schedule : RateSchedule, optional
            Replacement rates (same number of types); the set-up schedule is
            used when omitted.
        tree : Tree, optional
            Replacement tree; leaf types are resolved again from the
            original mapping or metadata key.

        Returns
        -------
        LikelihoodResult
            ``log_likelihood`` is ``-inf`` when the model cannot produce the
            tree under these rates.

        Raises
        ------
        LikelihoodEvaluationError
            If the numerical evaluation itself fails.
        """
        if schedule is not None:
            if schedule.n_types != self.schedule.n_types:
                raise ConfigurationError(
                    f"Schedule has {schedule.n_types} types, expected {self.schedule.n_types}"
                )
            self.schedule = schedule
        if tree is not None or schedule is not None:
            if tree is not None:
                self.tree = tree
            self.leaf_types = resolve_leaf_types(self.tree, self.schedule, *self._leaf_type_source)

        tree = self.tree
        schedule = self.schedule
        config = self.config
        precision = config.precision_threshold

        n_sampled_ancestors = tree.direct_ancestor_count
        common = dict(
            type_names=list(schedule.type_names),
            n_leaves=tree.n_leaves,
            n_sampled_ancestors=n_sampled_ancestors,
            settings=config.to_dict(),
        )

        t_root = schedule.node_time(tree.root.height, config.final_sample_offset)
        if less_than_with_precision(t_root, 0.0, precision):
            return LikelihoodResult.rejected(
                f"root time {t_root:g} lies before the start of the process", **common)

        if config.condition_on_root:
            if tree.root.is_sampled_ancestor:
                raise ConfigurationError("Conditioning on the root requires a bifurcating root")
            if not equal_with_precision(t_root, 0.0, precision):
                raise ConfigurationError(
                    "Conditioning on the root requires the schedule origin to equal the "
                    f"root height plus the final sample offset (root time is {t_root:g})"
                )

        if config.use_single_type_solution and schedule.n_types == 1:
            solution = SingleTypeSolution(schedule, precision)
            if not solution.is_degenerate:
                return self._evaluate_single_type(solution, common)
            logger.warning("Closed-form solution undefined for these rates; integrating ODEs instead")

        return self._evaluate_general(common)

    def _evaluate_single_type(self, solution: SingleTypeSolution, common: dict) -> LikelihoodResult:
        config = self.config
        if config.condition_on_survival:
            p_start = solution.start_extinction_probability()
            if not 0.0 <= p_start < 1.0:
                return LikelihoodResult.rejected(
                    f"probability of no sample {p_start:g} is outside [0, 1)",
                    used_single_type_solution=True, **common)

        log_p = float(solution.log_likelihood(
            self.tree,
            final_sample_offset=config.final_sample_offset,
            condition_on_survival=config.condition_on_survival,
            condition_on_root=config.condition_on_root,
        ))
        if math.isnan(log_p) or log_p == -math.inf:
            return LikelihoodResult.rejected("tree has zero probability density",
                                             used_single_type_solution=True, **common)

        return LikelihoodResult(
            log_likelihood=log_p,
            root_type_probabilities=[1.0],
            used_single_type_solution=True,
            **common,
        )

    def _evaluate_general(self, common: dict) -> LikelihoodResult:
        tree = self.tree
        schedule = self.schedule
        config = self.config

        traversal = _Traversal(tree, schedule, self.leaf_types, config, self._execution_context())

        prob_no_sample = 0.0
        if config.condition_on_survival:
            prob_no_sample = float(np.dot(self.frequencies, traversal.start_p0))
            logger.debug("Probability of no sample: %g", prob_no_sample)
            if not 0.0 <= prob_no_sample < 1.0:
                return LikelihoodResult.rejected(
                    f"probability of no sample {prob_no_sample:g} is outside [0, 1)", **common)

        system = traversal.integrator.new_p0ge_system()
        final = traversal.root_state(system)
        logger.debug("Final state: %s", final)

        total = SmallNumber()
        joint_logs = []
        for rate, ge in zip(self.frequencies, final.ge):
            if rate > 0.0 and ge.mantissa > 0.0:
                joint = ge.scalar_multiply(rate)
                joint_logs.append(joint.log())
                total = total.add(joint)
            else:
                joint_logs.append(-math.inf)

        if total.is_zero:
            return LikelihoodResult.rejected("tree has zero probability density", **common)

        log_total = total.log()
        root_probs = [math.exp(j - log_total) if j > -math.inf else 0.0 for j in joint_logs]

        log_p = log_total
        if config.condition_on_survival:
            log_p -= math.log1p(-prob_no_sample)

        # Convert from oriented to labelled tree probability density
        n_internal = tree.n_leaves - tree.direct_ancestor_count - 1
        log_p += _LOG2 * n_internal - math.lgamma(tree.n_leaves + 1)

        return LikelihoodResult(
            log_likelihood=log_p,
            root_type_probabilities=root_probs,
            **common,
        )


def _check_frequencies(frequencies: Optional[Sequence[float]], n_types: int) -> np.ndarray:
    if frequencies is None:
        return np.full(n_types, 1.0 / n_types)

    freqs = np.asarray(frequencies, dtype=float)
    if freqs.shape != (n_types,):
        raise ConfigurationError(
            f"{len(np.atleast_1d(freqs))} type frequencies given for {n_types} types"
        )
    if np.any(freqs < 0.0) or not np.all(np.isfinite(freqs)):
        raise ConfigurationError("Type frequencies must be finite and non-negative")
    if abs(1.0 - freqs.sum()) > 1e-10:
        raise ConfigurationError(f"Type frequencies must sum to 1, got {freqs.sum()}")
    return freqs
