"""
Scoring of candidate driver sets.

A candidate driver set is scored by a :class:`Fitness`, which is the fraction
of target nodes that are structurally controlled by the drivers, together with
the number of drivers. The rule that decides which targets are controlled is a
:class:`CoveragePolicy`. The default policy, :class:`MatchingCoverage`, follows
the walk-based theory of structural target control: a driver `d` can steer
one target along a path of each length `k`, so every controlled target must be
matched to a distinct `(driver, length)` pair.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from typing import Iterable

import networkx as nx  # type: ignore
from networkx.algorithms import bipartite  # type: ignore

from netcontrol.graph_model import GraphModel
from netcontrol.types import DriverSet


class EvaluationFailure(RuntimeError):
    """
    Raised when a candidate cannot be scored (e.g. it references nodes that
    cannot act as drivers).
    """


class Fitness(NamedTuple):
    """
    The quality of a driver set: `coverage` (fraction of controlled targets,
    higher is better) and `size` (number of drivers, lower is better).
    """

    coverage: float
    size: int

    def improves_on(self, other: Fitness) -> bool:
        """
        Returns `True` if this fitness is strictly better than `other`.
        """
        if self.coverage != other.coverage:
            return self.coverage > other.coverage
        return self.size < other.size


@dataclass(frozen=True)
class Candidate:
    """
    An immutable driver set together with its fitness.

    `drivers` always contains all source nodes of the graph. `names` and
    `covered_targets` are sorted node identifiers. `generation` is only set by
    the genetic search.
    """

    drivers: DriverSet
    names: tuple[str, ...]
    fitness: Fitness
    covered_targets: tuple[str, ...] = field(default=())
    generation: int | None = None

    @property
    def rank_key(self) -> tuple[float, int, tuple[str, ...]]:
        """
        Sorting key under which the best candidate is the smallest: higher
        coverage first, then fewer drivers, then the lexicographically
        smallest identifiers.
        """
        return (-self.fitness.coverage, self.fitness.size, self.names)

    def improves_on(self, other: Candidate) -> bool:
        """
        Returns `True` if the fitness of this candidate is strictly better
        than the fitness of `other` (identifier order is not considered).
        """
        return self.fitness.improves_on(other.fitness)

    def with_generation(self, generation: int) -> Candidate:
        return replace(self, generation=generation)


def best_candidate(candidates: Iterable[Candidate]) -> Candidate:
    """
    Return the best of the given candidates under the deterministic
    candidate ordering (see :attr:`Candidate.rank_key`).
    """
    return min(candidates, key=lambda c: c.rank_key)


class CoveragePolicy(ABC):
    """
    Decides which target nodes are controlled by a set of driver nodes.

    Policies are bound to one graph. They may memoise intermediate results,
    but must always return the same answer for the same driver set.
    """

    def __init__(self, graph: GraphModel, max_path_length: int | None = None):
        if max_path_length is None:
            max_path_length = len(graph)
        if max_path_length < 0:
            raise ValueError(
                f"The maximal path length must be non-negative, got {max_path_length}."
            )
        self.graph = graph
        self.max_path_length = max_path_length

    @abstractmethod
    def covered_targets(self, drivers: DriverSet) -> frozenset[int]:
        """
        Return the handles of the targets controlled by `drivers`.
        """


class ReachabilityCoverage(CoveragePolicy):
    """
    A target is controlled if it can be reached from any driver in at most
    `max_path_length` steps.

    This is an upper bound of :class:`MatchingCoverage`, as it does not
    require the control paths to be distinct.
    """

    def covered_targets(self, drivers: DriverSet) -> frozenset[int]:
        graph = self.graph
        seen = set(drivers)
        frontier = list(drivers)
        for _ in range(self.max_path_length):
            next_frontier: list[int] = []
            for node in frontier:
                for s in graph.successors[node]:
                    if s not in seen:
                        seen.add(s)
                        next_frontier.append(s)
            if not next_frontier:
                break
            frontier = next_frontier
        return frozenset(t for t in graph.targets if t in seen)


class MatchingCoverage(CoveragePolicy):
    """
    A target is controlled if it is matched to a distinct control path.

    For every driver `d` and every length `k` in `1..max_path_length` there
    is one control slot `(d, k)`. A target `t` can use the slot if there is a
    directed walk with exactly `k` edges from `d` to `t`. The controlled
    targets are the targets of a maximum bipartite matching between targets
    and slots (computed using Hopcroft-Karp from `networkx`).

    Examples
    --------
    Two targets at the same distance from a single driver compete for the
    same slot, but targets at different distances do not:

    >>> from netcontrol import GraphModel
    >>> from netcontrol.evaluator import MatchingCoverage
    >>> star = GraphModel.from_roles([("S", "T1"), ("S", "T2")], ["S"], ["T1", "T2"])
    >>> len(MatchingCoverage(star).covered_targets(frozenset(star.sources)))
    1
    >>> chain = GraphModel.from_roles([("S", "T1"), ("T1", "T2")], ["S"], ["T1", "T2"])
    >>> len(MatchingCoverage(chain).covered_targets(frozenset(chain.sources)))
    2
    """

    def __init__(self, graph: GraphModel, max_path_length: int | None = None):
        super().__init__(graph, max_path_length)
        self._is_target = [False] * len(graph)
        for t in graph.targets:
            self._is_target[t] = True
        self._walks: dict[int, dict[int, tuple[int, ...]]] = {}

    def walk_lengths(self, driver: int) -> dict[int, tuple[int, ...]]:
        """
        For the given driver, map every target that it can reach to the
        lengths of walks that end in that target.

        At most one length per target is relevant for each other target
        competing for the same driver, so only the shortest
        `len(graph.targets)` lengths are recorded per target.
        """
        cached = self._walks.get(driver)
        if cached is not None:
            return cached

        graph = self.graph
        cap = len(graph.targets)
        lengths: dict[int, list[int]] = {}
        frontier = {driver}
        for k in range(1, self.max_path_length + 1):
            frontier = {s for node in frontier for s in graph.successors[node]}
            if not frontier:
                break
            for node in frontier:
                if not self._is_target[node]:
                    continue
                found = lengths.setdefault(node, [])
                if len(found) < cap:
                    found.append(k)

        result = {t: tuple(ks) for t, ks in lengths.items()}
        self._walks[driver] = result
        return result

    def covered_targets(self, drivers: DriverSet) -> frozenset[int]:
        slots = nx.Graph()
        top_nodes = [("target", t) for t in self.graph.targets]
        slots.add_nodes_from(top_nodes)  # type: ignore
        # Sorted to keep the matching itself deterministic.
        for d in sorted(drivers):
            for t, ks in sorted(self.walk_lengths(d).items()):
                for k in ks:
                    slots.add_edge(("target", t), ("slot", d, k))  # type: ignore

        matching: dict[tuple[int, ...], tuple[int, ...]] = bipartite.hopcroft_karp_matching(  # type: ignore
            slots, top_nodes=top_nodes
        )
        return frozenset(node[1] for node in top_nodes if node in matching)


COVERAGE_POLICIES: dict[str, type[CoveragePolicy]] = {
    "matching": MatchingCoverage,
    "reachability": ReachabilityCoverage,
}
"""Available coverage policies, by name."""


class CandidateEvaluator:
    """
    Scores driver sets on one graph.

    The evaluator always adds the source nodes of the graph to every driver
    set, so callers only have to supply the selected free nodes (passing
    source handles explicitly is allowed as well). Scoring is a pure function
    of the graph and the driver set.

    Examples
    --------
    >>> from netcontrol import CandidateEvaluator, GraphModel
    >>> graph = GraphModel.from_roles(
    ...     [("A", "C"), ("B", "C"), ("B", "D")], ["A", "B"], ["C", "D"], nodes=["E"]
    ... )
    >>> evaluator = CandidateEvaluator(graph)
    >>> evaluator.score([])
    Fitness(coverage=1.0, size=2)
    >>> evaluator.evaluate([graph.handle("E")]).names
    ('A', 'B', 'E')
    """

    __slots__ = ("graph", "policy", "_sources", "_allowed", "_cache", "cache_limit")

    def __init__(
        self,
        graph: GraphModel,
        policy: CoveragePolicy | None = None,
        max_path_length: int | None = None,
        cache_limit: int = 100_000,
    ):
        if policy is None:
            policy = MatchingCoverage(graph, max_path_length)
        elif policy.graph is not graph:
            raise ValueError("The coverage policy is bound to a different graph.")

        self.graph = graph
        self.policy = policy
        self.cache_limit = cache_limit
        self._sources = frozenset(graph.sources)
        self._allowed = frozenset(graph.sources) | frozenset(graph.free)
        self._cache: dict[DriverSet, Candidate] = {}

    def driver_set(self, selected: Iterable[int]) -> DriverSet:
        """
        Return the full driver set (sources plus `selected`), failing with
        `EvaluationFailure` if a selected node cannot act as a driver.
        """
        drivers = self._sources | frozenset(selected)
        invalid = drivers - self._allowed
        if invalid:
            shown = [
                self.graph.names[h] if 0 <= h < len(self.graph) else str(h)
                for h in sorted(invalid)
            ]
            raise EvaluationFailure(
                f"Only source and free nodes can be drivers, got {shown}."
            )
        return drivers

    def evaluate(
        self, selected: Iterable[int], generation: int | None = None
    ) -> Candidate:
        """
        Score the driver set `selected` (plus all sources) and return it as
        a :class:`Candidate`.
        """
        drivers = self.driver_set(selected)
        candidate = self._cache.get(drivers)
        if candidate is None:
            try:
                covered = self.policy.covered_targets(drivers)
            except (nx.NetworkXError, KeyError, IndexError) as e:
                raise EvaluationFailure(
                    f"Cannot compute the coverage of {self.graph.names_of(drivers)}: {e}"
                ) from e
            if not covered <= frozenset(self.graph.targets):
                raise EvaluationFailure(
                    "The coverage policy reported nodes which are not targets."
                )
            fitness = Fitness(len(covered) / len(self.graph.targets), len(drivers))
            candidate = Candidate(
                drivers=drivers,
                names=tuple(self.graph.names_of(drivers)),
                fitness=fitness,
                covered_targets=tuple(self.graph.names_of(covered)),
            )
            if len(self._cache) >= self.cache_limit:
                self._cache.clear()
            self._cache[drivers] = candidate

        if generation is not None:
            candidate = candidate.with_generation(generation)
        return candidate

    def score(self, selected: Iterable[int]) -> Fitness:
        """
        Return the :class:`Fitness` of the driver set `selected` (plus all
        sources).
        """
        return self.evaluate(selected).fitness
