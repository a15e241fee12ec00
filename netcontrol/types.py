from __future__ import annotations

from typing import Literal, TypeAlias, TypedDict

NodeRole: TypeAlias = Literal["Source", "Target", "Free"]
"""Type alias for `Literal["Source", "Target", "Free"]`. The role of a node within an analysis."""
AnalysisAlgorithm: TypeAlias = Literal["Greedy", "Genetic"]
"""Type alias for `Literal["Greedy", "Genetic"]`. The search strategy used by an analysis."""
AnalysisStatus: TypeAlias = Literal[
    "Scheduled",
    "Initializing",
    "Ongoing",
    "Stopping",
    "Stopped",
    "Completed",
    "Error",
]
"""Type alias for the possible states of an analysis (see :mod:`netcontrol.analysis`)."""
SelectionMethod: TypeAlias = Literal["rank", "proportionate"]
"""Type alias for `Literal["rank", "proportionate"]`. Parent selection used by the genetic search."""
DriverSet: TypeAlias = frozenset[int]
"""Type alias for `frozenset[int]`. A set of driver nodes, given as graph node handles."""
Edge: TypeAlias = tuple[str, str]
"""Type alias for `tuple[str, str]`. A directed edge given by node identifiers."""


class GreedyParameters(TypedDict):
    """
    Parameters of the greedy search (see :class:`netcontrol.GreedySearch`).

    Use :func:`netcontrol.search.default_greedy_parameters` to create a
    dictionary pre-populated with default values.
    """

    algorithm: Literal["Greedy"]
    """
    The algorithm tag. Always `"Greedy"`.
    """

    max_path_length: int | None
    """
    The maximal length of a control path between a driver and a target. If
    `None`, the number of nodes in the graph is used.

    [Default: None]
    """


class GeneticParameters(TypedDict):
    """
    Parameters of the genetic search (see :class:`netcontrol.GeneticSearch`).

    Use :func:`netcontrol.search.default_genetic_parameters` to create a
    dictionary pre-populated with default values.
    """

    algorithm: Literal["Genetic"]
    """
    The algorithm tag. Always `"Genetic"`.
    """

    max_path_length: int | None
    """
    The maximal length of a control path between a driver and a target. If
    `None`, the number of nodes in the graph is used.

    [Default: None]
    """

    random_seed: int | None
    """
    Seed of the pseudo-random generator. Two runs with the same seed, graph
    and parameters produce the same generations. If `None`, a seed is drawn
    when the search is created and reported in the analysis log.

    [Default: None]
    """

    population_size: int
    """
    Number of chromosomes in each generation (at least 2).

    [Default: 80]
    """

    initial_density: float
    """
    Probability that a free node is part of a chromosome of the initial
    population.

    [Default: 0.5]
    """

    crossover_probability: float
    """
    Probability that a child inherits the membership of a free node from its
    first parent (otherwise it is inherited from the second parent).

    [Default: 0.5]
    """

    mutation_probability: float
    """
    Probability that the membership of a free node is toggled in a child.

    [Default: 0.01]
    """

    random_fraction: float
    """
    Fraction of every new generation (excluding the elite) that is replaced
    by freshly sampled random chromosomes.

    [Default: 0.0]
    """

    selection: SelectionMethod
    """
    Parent selection method, either `"rank"` or `"proportionate"`
    (fitness-proportionate on coverage).

    [Default: "rank"]
    """


AlgorithmParameters: TypeAlias = GreedyParameters | GeneticParameters
"""Type alias for the tagged variant of algorithm parameters, discriminated by `algorithm`."""


class AnalysisConfiguration(TypedDict):
    """
    Describes the configuration options of an `Analysis`.

    Use :meth:`netcontrol.Analysis.default_config` to create a
    configuration dictionary pre-populated with default values.
    """

    debug: bool
    """
    If `True`, the runner prints messages describing the progress of the
    analysis to stdout.

    [Default: False]
    """

    iteration_limit: int
    """
    Maximal number of iterations (generations for the genetic search).

    [Default: 100]
    """

    no_improvement_limit: int
    """
    Maximal number of consecutive iterations without an improvement of the
    best fitness.

    [Default: 25]
    """


class LogEntry(TypedDict):
    """
    One entry of the append-only analysis log.
    """

    date_time: str
    """
    The ISO-8601 UTC timestamp of the entry.
    """

    message: str
    """
    The human-readable message.
    """


class AnalysisSnapshot(TypedDict):
    """
    A self-consistent copy of the state of an analysis, as handed to a
    progress sink (see :mod:`netcontrol.runner`).
    """

    analysis_id: str
    algorithm: AnalysisAlgorithm
    status: AnalysisStatus
    iteration_limit: int
    no_improvement_limit: int
    current_iteration: int
    current_iteration_without_improvement: int
    elapsed_seconds: float
    best_drivers: list[str]
    best_coverage: float
    best_size: int
    covered_targets: list[str]
    start_time: str | None
    end_time: str | None
    log: list[LogEntry]
