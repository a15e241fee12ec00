"""
The analysis record: the unit of work of the control analysis engine.

An `Analysis` holds the chosen algorithm and its parameters, the iteration
limits, the progress counters, the best driver set found so far, the status
and an append-only log. Its status follows the state machine::

    Scheduled → Initializing → Ongoing → Completed
                                       → Error
                                       → Stopping → Stopped

with the additional fail-fast and early-stop paths `Scheduled/Initializing →
Error` and `Scheduled/Initializing → Stopping`. Once an analysis reaches a
terminal status (`Completed`, `Stopped` or `Error`) it no longer changes.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping, cast

if TYPE_CHECKING:
    from netcontrol.evaluator import Candidate

from netcontrol.graph_model import GraphModel, InvalidGraph
from netcontrol.search import make_parameters
from netcontrol.types import (
    AlgorithmParameters,
    AnalysisAlgorithm,
    AnalysisConfiguration,
    AnalysisSnapshot,
    AnalysisStatus,
    Edge,
    LogEntry,
    NodeRole,
)

TERMINAL_STATUSES: frozenset[AnalysisStatus] = frozenset(
    {"Completed", "Stopped", "Error"}
)

TRANSITIONS: dict[AnalysisStatus, frozenset[AnalysisStatus]] = {
    "Scheduled": frozenset({"Initializing", "Stopping", "Error"}),
    "Initializing": frozenset({"Ongoing", "Stopping", "Error"}),
    "Ongoing": frozenset({"Completed", "Stopping", "Error"}),
    "Stopping": frozenset({"Stopped"}),
    "Stopped": frozenset(),
    "Completed": frozenset(),
    "Error": frozenset(),
}
"""The allowed status changes of an analysis."""


class IllegalTransition(RuntimeError):
    """
    Raised when an analysis is moved to a status that is not reachable from
    its current status.
    """


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Analysis:
    """
    The state of one control analysis.

    Only the :class:`netcontrol.AnalysisRunner` running the analysis should
    modify it. Other threads should observe it through the snapshots passed
    to a progress sink.

    Examples
    --------
    >>> from netcontrol import Analysis
    >>> from netcontrol.search import default_greedy_parameters
    >>> analysis = Analysis(default_greedy_parameters(), analysis_id="example")
    >>> analysis.status
    'Scheduled'
    >>> analysis.transition("Initializing")
    >>> analysis.transition("Completed")
    Traceback (most recent call last):
    ...
    netcontrol.analysis.IllegalTransition: Analysis `example` cannot move from Initializing to Completed.
    """

    __slots__ = (
        "id",
        "parameters",
        "config",
        "status",
        "current_iteration",
        "current_iteration_without_improvement",
        "best",
        "start_time",
        "end_time",
        "_log",
    )

    def __init__(
        self,
        parameters: AlgorithmParameters,
        config: AnalysisConfiguration | None = None,
        analysis_id: str | None = None,
    ):
        if config is None:
            config = Analysis.default_config()
        for key in ("iteration_limit", "no_improvement_limit"):
            value = config[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValueError(f"`{key}` must be a positive integer, got {value!r}.")

        self.id: str = analysis_id if analysis_id is not None else str(uuid.uuid4())
        self.parameters = parameters
        self.config = config
        self.status: AnalysisStatus = "Scheduled"
        self.current_iteration = 0
        self.current_iteration_without_improvement = 0
        self.best: Candidate | None = None
        """
        The best driver set found so far, or `None` before the first iteration.
        """
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self._log: list[LogEntry] = []
        self.append_to_log("The analysis has been scheduled.")

    @staticmethod
    def default_config() -> AnalysisConfiguration:
        return {
            "debug": False,
            "iteration_limit": 100,
            "no_improvement_limit": 25,
        }

    def __repr__(self) -> str:
        return (
            f"Analysis(id={self.id!r}, algorithm={self.algorithm!r}, "
            f"status={self.status!r}, iteration={self.current_iteration})"
        )

    @property
    def algorithm(self) -> AnalysisAlgorithm:
        return self.parameters["algorithm"]

    @property
    def iteration_limit(self) -> int:
        return self.config["iteration_limit"]

    @property
    def no_improvement_limit(self) -> int:
        return self.config["no_improvement_limit"]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def log(self) -> list[LogEntry]:
        """
        A copy of the log entries, oldest first.
        """
        return [cast(LogEntry, dict(entry)) for entry in self._log]

    def append_to_log(self, message: str):
        """
        Append a timestamped message to the log.
        """
        self._log.append({"date_time": _now().isoformat(), "message": message})

    def log_json(self) -> str:
        """
        The log serialized as a JSON list of `{"dateTime", "message"}`
        objects.
        """
        return json.dumps(
            [{"dateTime": e["date_time"], "message": e["message"]} for e in self._log]
        )

    def transition(self, status: AnalysisStatus, message: str | None = None):
        """
        Move the analysis to `status`, optionally appending `message` to the
        log.

        Entering `Initializing` records the start time and entering a
        terminal status records the end time. Raises `IllegalTransition` if
        the state machine does not allow the change.
        """
        if status not in TRANSITIONS[self.status]:
            raise IllegalTransition(
                f"Analysis `{self.id}` cannot move from {self.status} to {status}."
            )
        self.status = status
        if status == "Initializing":
            self.start_time = _now()
        if status in TERMINAL_STATUSES:
            self.end_time = _now()
        if message is not None:
            self.append_to_log(message)

    def record_step(self, best: Candidate, improved: bool):
        """
        Count one finished iteration and keep the better of the stored and
        the given best candidate.
        """
        if self.is_terminal:
            raise IllegalTransition(
                f"Analysis `{self.id}` is {self.status} and cannot be updated."
            )
        self.current_iteration += 1
        if improved:
            self.current_iteration_without_improvement = 0
        else:
            self.current_iteration_without_improvement += 1
        # The stored best never regresses, even if a strategy reports a worse one.
        if self.best is None or best.rank_key <= self.best.rank_key:
            self.best = best

    def elapsed_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else _now()
        return (end - self.start_time).total_seconds()

    def snapshot(self) -> AnalysisSnapshot:
        """
        Return a self-consistent copy of the current state.
        """
        best = self.best
        return {
            "analysis_id": self.id,
            "algorithm": self.algorithm,
            "status": self.status,
            "iteration_limit": self.iteration_limit,
            "no_improvement_limit": self.no_improvement_limit,
            "current_iteration": self.current_iteration,
            "current_iteration_without_improvement": self.current_iteration_without_improvement,
            "elapsed_seconds": self.elapsed_seconds(),
            "best_drivers": list(best.names) if best is not None else [],
            "best_coverage": best.fitness.coverage if best is not None else 0.0,
            "best_size": best.fitness.size if best is not None else 0,
            "covered_targets": list(best.covered_targets) if best is not None else [],
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "log": self.log,
        }


def parse_network(data: Mapping[str, Any]) -> GraphModel:
    """
    Build the graph of an analysis request.

    The request is a mapping with the following keys:

    - `nodes`: a list of node identifiers, or `{"id": ..., "role": ...}`
      objects (`role` is one of `"Source"`, `"Target"`, `"Free"`).
    - `edges`: a list of `[source, target]` pairs or
      `{"source": ..., "target": ...}` objects.
    - `sources`, `targets` (optional): lists of identifiers that are sources
      or targets (in addition to the roles given in `nodes`).

    Raises `InvalidGraph` for a malformed network, including nodes with
    conflicting roles.

    Examples
    --------
    >>> from netcontrol.analysis import parse_network
    >>> graph = parse_network({
    ...     "nodes": ["A", "B", "C", "D", "E"],
    ...     "edges": [["A", "C"], ["B", "C"], {"source": "B", "target": "D"}],
    ...     "sources": ["A", "B"],
    ...     "targets": ["C", "D"],
    ... })
    >>> graph.names_of(graph.free)
    ['E']
    """
    sources = set(data.get("sources", []))
    targets = set(data.get("targets", []))
    overlap = sources & targets
    if overlap:
        raise InvalidGraph(
            f"Nodes cannot be both sources and targets: {sorted(overlap)}."
        )

    nodes: list[tuple[str, NodeRole]] = []
    for item in data.get("nodes", []):
        if isinstance(item, str):
            name = item
            role: NodeRole = "Free"
        elif isinstance(item, Mapping):
            item = cast(Mapping[str, Any], item)
            if "id" not in item:
                raise InvalidGraph(f"Node without an `id`: {dict(item)}.")
            name = str(item["id"])
            role = item.get("role", "Free")
        else:
            raise InvalidGraph(f"Cannot read node: {item!r}.")
        for listed, listed_role in ((sources, "Source"), (targets, "Target")):
            if name not in listed or role == listed_role:
                continue
            if role != "Free":
                raise InvalidGraph(
                    f"Node `{name}` is declared as {role} but listed as {listed_role}."
                )
            role = listed_role  # type: ignore
        nodes.append((name, role))

    declared = {name for name, _ in nodes}
    for name in sorted(sources - declared):
        nodes.append((name, "Source"))
    for name in sorted(targets - declared):
        nodes.append((name, "Target"))

    edges: list[Edge] = []
    for item in data.get("edges", []):
        if isinstance(item, Mapping):
            item = cast(Mapping[str, Any], item)
            try:
                edges.append((str(item["source"]), str(item["target"])))
            except KeyError:
                raise InvalidGraph(f"Cannot read edge: {dict(item)}.") from None
        elif isinstance(item, (list, tuple)) and len(item) == 2:  # type: ignore
            edges.append((str(item[0]), str(item[1])))  # type: ignore
        else:
            raise InvalidGraph(f"Cannot read edge: {item!r}.")

    return GraphModel(nodes, edges)


def parse_analysis(
    data: Mapping[str, Any], analysis_id: str | None = None
) -> Analysis:
    """
    Create a scheduled analysis from a request.

    The following keys of the request are used:

    - `algorithm`: `"Greedy"` or `"Genetic"`.
    - `parameters` (optional): algorithm specific parameters (see
      :func:`netcontrol.search.make_parameters`).
    - `iterationLimit` (optional, default 100) and `noImprovementLimit`
      (optional, default 25): positive integers.
    - `debug` (optional): print progress to stdout.

    The network itself is read separately by :func:`parse_network`, so that
    a malformed network can be reported through the analysis.

    Raises `ValueError` for invalid analysis settings.

    Examples
    --------
    >>> from netcontrol.analysis import parse_analysis
    >>> analysis = parse_analysis({"algorithm": "Greedy", "iterationLimit": 10})
    >>> analysis.algorithm, analysis.iteration_limit, analysis.no_improvement_limit
    ('Greedy', 10, 25)
    """
    algorithm = data.get("algorithm")
    if algorithm is None:
        raise ValueError("An algorithm is required for creating an analysis.")
    parameters = make_parameters(str(algorithm), data.get("parameters"))

    config = Analysis.default_config()
    config["debug"] = bool(data.get("debug", False))
    if "iterationLimit" in data:
        config["iteration_limit"] = data["iterationLimit"]
    if "noImprovementLimit" in data:
        config["no_improvement_limit"] = data["noImprovementLimit"]

    return Analysis(parameters, config, analysis_id)
