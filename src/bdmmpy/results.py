"""
Result object for tree likelihood evaluations.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class LikelihoodResult:
    """
    Outcome of one tree likelihood evaluation.

    A tree/parameter combination the model cannot produce is not an error:
    it comes back with ``log_likelihood == -inf`` and a ``reason``.

    Attributes
    ----------
    log_likelihood : float
        Log probability density of the labelled tree, or ``-inf``
    root_type_probabilities : list[float]
        Posterior probability of each type at the start of the process
        (all zero for a rejected evaluation)
    type_names : list[str]
        Labels matching ``root_type_probabilities``
    n_leaves : int
        Number of leaves, sampled ancestors included
    n_sampled_ancestors : int
        Number of sampled ancestors
    used_single_type_solution : bool
        Whether the analytic single-type solution was used
    reason : str, optional
        Why the evaluation was rejected

    Examples
    --------
    >>> result = tree_log_likelihood(tree, schedule)
    >>> print(result.summary())
    >>> result.to_json("likelihood.json")
    """

    log_likelihood: float
    root_type_probabilities: List[float]
    type_names: List[str]
    n_leaves: int
    n_sampled_ancestors: int = 0
    used_single_type_solution: bool = False
    reason: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def rejected(cls, reason: str, type_names: List[str], n_leaves: int,
                 n_sampled_ancestors: int = 0, **kwargs) -> "LikelihoodResult":
        """Result for a combination the model assigns zero probability."""
        return cls(
            log_likelihood=-math.inf,
            root_type_probabilities=[0.0] * len(type_names),
            type_names=list(type_names),
            n_leaves=n_leaves,
            n_sampled_ancestors=n_sampled_ancestors,
            reason=reason,
            **kwargs,
        )

    @property
    def is_rejected(self) -> bool:
        return self.log_likelihood == -math.inf

    def summary(self) -> str:
        """
        Human-readable summary of the evaluation.

        Returns
        -------
        str
            Formatted multi-line summary
        """
        lines = []
        lines.append("=" * 70)
        lines.append("BIRTH-DEATH-MIGRATION TREE LIKELIHOOD")
        lines.append("=" * 70)
        lines.append("")
        lines.append(f"Log-likelihood:       {self.log_likelihood:.6f}")
        if self.reason:
            lines.append(f"Rejected:             {self.reason}")
        lines.append(f"Leaves:               {self.n_leaves}")
        lines.append(f"Sampled ancestors:    {self.n_sampled_ancestors}")
        method = "analytic single-type" if self.used_single_type_solution else "ODE integration"
        lines.append(f"Method:               {method}")

        if not self.used_single_type_solution and not self.is_rejected:
            lines.append("")
            lines.append("ROOT TYPE PROBABILITIES:")
            for name, prob in zip(self.type_names, self.root_type_probabilities):
                lines.append(f"  {name:<20s} {prob:.6f}")

        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """
        Export the result as a dictionary.

        Returns
        -------
        dict
            JSON-serializable dictionary
        """
        return {
            'log_likelihood': float(self.log_likelihood),
            'root_type_probabilities': dict(zip(self.type_names,
                                                (float(p) for p in self.root_type_probabilities))),
            'n_leaves': int(self.n_leaves),
            'n_sampled_ancestors': int(self.n_sampled_ancestors),
            'used_single_type_solution': self.used_single_type_solution,
            'reason': self.reason,
            'settings': self.settings,
        }

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """
        Export the result as JSON.

        Parameters
        ----------
        filepath : str, optional
            If provided, write JSON to this file
        indent : int, default=2
            Indentation level for pretty printing

        Returns
        -------
        str
            JSON string representation
        """
        json_str = json.dumps(self.to_dict(), indent=indent)

        if filepath:
            with open(filepath, 'w') as f:
                f.write(json_str)

        return json_str

    def __str__(self) -> str:
        """String representation shows summary."""
        return self.summary()

    def __repr__(self) -> str:
        """Concise representation for interactive use."""
        return (f"LikelihoodResult(log_likelihood={self.log_likelihood:.4f}, "
                f"n_leaves={self.n_leaves})")
