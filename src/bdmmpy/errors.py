"""
Exception hierarchy for bdmmpy.

Invalid input is reported with :class:`ConfigurationError`, a ``ValueError``
subclass, before any tree is evaluated. Tree/parameter combinations that the
model simply assigns zero probability are *not* errors: they come back as a
result with ``log_likelihood == -inf``. Everything deriving from
:class:`LikelihoodEvaluationError` means the evaluation itself broke down and
has no meaningful result.
"""


class ConfigurationError(ValueError):
    """Invalid model input (rates, frequencies, type labels, options)."""


class LikelihoodEvaluationError(RuntimeError):
    """Unrecoverable failure while evaluating a likelihood."""


class IntegrationError(LikelihoodEvaluationError):
    """The ODE solver failed or exceeded its evaluation budget."""


class NumericalBreakdownError(LikelihoodEvaluationError):
    """A quantity that must stay finite (e.g. p0 at a birth node) did not."""


class ParallelEvaluationError(LikelihoodEvaluationError):
    """A subtree evaluated on a worker thread raised."""
