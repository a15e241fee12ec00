from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from netcontrol.evaluator import CandidateEvaluator
    from netcontrol.types import GreedyParameters

from netcontrol.evaluator import Candidate, best_candidate

DEBUG = False
"""Enables debug logging to stdout."""


class GreedySearch:
    """
    Grows a single driver set by best marginal gain.

    The driver set starts with the source nodes. Each :meth:`step` tries to
    add every free node that is not a driver yet, and commits the addition
    with the best fitness, provided it is strictly better than the current
    driver set. Ties are broken by the smallest node identifier. Since only
    improving additions are committed, the fitness of :attr:`best` never
    decreases.
    """

    __slots__ = ("evaluator", "parameters", "best")

    def __init__(
        self,
        evaluator: CandidateEvaluator,
        parameters: GreedyParameters | None = None,
    ):
        self.evaluator = evaluator
        self.parameters = parameters
        self.best: Candidate = evaluator.evaluate([])
        """
        The current driver set. Initially, only the source nodes.
        """

    def step(self) -> bool:
        """
        Perform one greedy iteration. Returns `True` if the driver set
        improved.
        """
        if self.best.fitness.coverage >= 1.0:
            # Nothing can beat full coverage with fewer drivers than now.
            return False

        graph = self.evaluator.graph
        remaining = [f for f in graph.free if f not in self.best.drivers]
        if len(remaining) == 0:
            return False

        challenger = best_candidate(
            self.evaluator.evaluate(self.best.drivers | {f}) for f in remaining
        )

        if DEBUG:
            print(
                f"[greedy] best addition {challenger.names} with fitness {challenger.fitness}"
            )

        if not challenger.improves_on(self.best):
            return False

        self.best = challenger
        return True
