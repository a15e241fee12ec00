"""
Execution of analyses.

The :class:`AnalysisRunner` is the only component that modifies an
:class:`Analysis`. It loads the graph, steps the selected search strategy,
evaluates stopping conditions and reports every change to a
:class:`ProgressSink`. Cancellation is cooperative: the
:class:`CancellationToken` is only checked between iterations, so an analysis
never stops with a partially computed candidate.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
import traceback
from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from netcontrol.evaluator import CoveragePolicy
    from netcontrol.search import SearchStrategy
    from netcontrol.types import AnalysisSnapshot

from netcontrol.analysis import Analysis
from netcontrol.evaluator import COVERAGE_POLICIES, CandidateEvaluator
from netcontrol._search_algorithms.genetic import GeneticSearch
from netcontrol.graph_model import GraphModel
from netcontrol.search import make_search


class CancellationToken:
    """
    A thread-safe flag used to request that an analysis stops.
    """

    __slots__ = ("_event",)

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class ProgressSink(Protocol):
    """
    Receives snapshots of an analysis whenever its state changes.

    Every snapshot is a complete, independent copy, so a sink only has to
    store it atomically to guarantee that readers never observe a
    half-updated analysis.
    """

    def persist(self, snapshot: AnalysisSnapshot) -> None: ...


class InMemoryProgressSink:
    """
    Keeps the latest snapshot (and the full snapshot history) of every
    analysis in memory. Safe to poll from other threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: dict[str, AnalysisSnapshot] = {}
        self._history: dict[str, list[AnalysisSnapshot]] = {}

    def persist(self, snapshot: AnalysisSnapshot) -> None:
        stored = copy.deepcopy(snapshot)
        with self._lock:
            self._latest[stored["analysis_id"]] = stored
            self._history.setdefault(stored["analysis_id"], []).append(stored)

    def latest(self, analysis_id: str) -> AnalysisSnapshot | None:
        with self._lock:
            snapshot = self._latest.get(analysis_id)
        return copy.deepcopy(snapshot)

    def history(self, analysis_id: str) -> list[AnalysisSnapshot]:
        with self._lock:
            history = list(self._history.get(analysis_id, []))
        return copy.deepcopy(history)


class JsonFileProgressSink:
    """
    Stores the latest snapshot of every analysis as `<analysis_id>.json` in
    the given directory.

    Each snapshot is first written to a temporary file which then replaces
    the previous one, so readers see either the old or the new snapshot.
    """

    def __init__(self, directory: str):
        os.makedirs(directory, exist_ok=True)
        self.directory = directory

    def path(self, analysis_id: str) -> str:
        return os.path.join(self.directory, f"{analysis_id}.json")

    def persist(self, snapshot: AnalysisSnapshot) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(snapshot, f, indent=2)
            os.replace(tmp_path, self.path(snapshot["analysis_id"]))
        except BaseException:
            os.unlink(tmp_path)
            raise

    def read(self, analysis_id: str) -> AnalysisSnapshot | None:
        try:
            with open(self.path(analysis_id)) as f:
                return json.load(f)
        except FileNotFoundError:
            return None


class AnalysisRunner:
    """
    Runs analyses until a stopping condition is reached.

    After every iteration, the stopping conditions are checked in this order:

    1. cancellation was requested → `Stopped`;
    2. the best driver set covers all targets → `Completed`;
    3. the iteration limit was reached → `Completed`;
    4. the limit of iterations without improvement was reached → `Completed`.

    Any exception raised while loading the graph, stepping the search or
    persisting a snapshot moves the analysis to `Error`. The best driver set
    found before the failure is kept. Saving the final snapshot is attempted
    even after a failure of the sink.

    Parameters
    ----------
    coverage : str
        Name of the coverage policy (see
        :data:`netcontrol.evaluator.COVERAGE_POLICIES`). Defaults to
        `"matching"`.

    Examples
    --------
    >>> from netcontrol import AnalysisRunner, GraphModel
    >>> from netcontrol.analysis import parse_analysis
    >>> graph = GraphModel.from_roles(
    ...     [("A", "C"), ("B", "C"), ("B", "D")], ["A", "B"], ["C", "D"], nodes=["E"]
    ... )
    >>> analysis = parse_analysis({"algorithm": "Greedy", "iterationLimit": 10})
    >>> analysis = AnalysisRunner().run(analysis, graph)
    >>> analysis.status, analysis.current_iteration, analysis.best.names
    ('Completed', 1, ('A', 'B'))
    """

    def __init__(self, coverage: str = "matching"):
        if coverage not in COVERAGE_POLICIES:
            raise ValueError(f"Unknown coverage policy: {coverage}")
        self.coverage = coverage

    def make_policy(
        self, graph: GraphModel, max_path_length: int | None
    ) -> CoveragePolicy:
        return COVERAGE_POLICIES[self.coverage](graph, max_path_length)

    def run(
        self,
        analysis: Analysis,
        graph: GraphModel | Callable[[], GraphModel],
        cancellation: CancellationToken | None = None,
        sink: ProgressSink | None = None,
    ) -> Analysis:
        """
        Run the analysis to a terminal status and return it.

        Parameters
        ----------
        analysis : Analysis
            A `Scheduled` analysis. Terminal analyses are returned unchanged.
        graph : GraphModel | Callable[[], GraphModel]
            The network, or a function that builds it. Graph construction
            errors (e.g. :class:`netcontrol.InvalidGraph`) move the analysis
            to `Error` before the first iteration.
        cancellation : CancellationToken | None, optional
            Token checked before every iteration.
        sink : ProgressSink | None, optional
            Receives a snapshot after every status change and iteration.

        Returns
        -------
        Analysis
            The same analysis object, now in a terminal status.
        """
        if analysis.is_terminal:
            return analysis
        if cancellation is None:
            cancellation = CancellationToken()

        def persist():
            if sink is not None:
                sink.persist(analysis.snapshot())

        debug = analysis.config["debug"]

        analysis.transition("Initializing", "The analysis is initializing.")
        strategy: SearchStrategy | None = None
        try:
            persist()
            if not isinstance(graph, GraphModel):
                graph = graph()
            policy = self.make_policy(graph, analysis.parameters["max_path_length"])
            strategy = make_search(CandidateEvaluator(graph, policy), analysis.parameters)
            if isinstance(strategy, GeneticSearch):
                analysis.append_to_log(
                    f"The random seed of the analysis is {strategy.seed}."
                )
            if debug:
                print(f"[{analysis.id}] Loaded {graph}.")
            self._iterate(analysis, strategy, cancellation, persist, debug)
        except Exception as e:
            # Also covers a failing sink, so the analysis always ends up terminal.
            self._fail(analysis, e, debug, strategy)

        if debug:
            print(f"[{analysis.id}] {analysis.status} after {analysis.current_iteration} iterations.")
        try:
            persist()
        except Exception as e:
            analysis.append_to_log(
                f"The final state of the analysis could not be saved: {type(e).__name__}: {e}"
            )
            if debug:
                traceback.print_exception(e)
        return analysis

    def _iterate(
        self,
        analysis: Analysis,
        strategy: SearchStrategy,
        cancellation: CancellationToken,
        persist: Callable[[], None],
        debug: bool,
    ):
        while True:
            if cancellation.is_cancelled:
                self._stop(analysis, persist)
                return

            improved = strategy.step()
            analysis.record_step(strategy.best, improved)
            if analysis.status == "Initializing":
                analysis.transition("Ongoing", "The analysis has started.")
            if improved:
                self._log_improvement(analysis, debug)

            if cancellation.is_cancelled:
                self._stop(analysis, persist)
                return
            reason = self._completion_reason(analysis)
            if reason is not None:
                analysis.transition(
                    "Completed", f"The analysis has completed successfully: {reason}."
                )
                return
            persist()

    def start(
        self,
        analysis: Analysis,
        graph: GraphModel | Callable[[], GraphModel],
        cancellation: CancellationToken | None = None,
        sink: ProgressSink | None = None,
    ) -> threading.Thread:
        """
        Run the analysis on a new worker thread and return the (started)
        thread. Each analysis must be run by at most one thread.
        """
        worker = threading.Thread(
            target=self.run,
            args=(analysis, graph, cancellation, sink),
            name=f"analysis-{analysis.id}",
            daemon=True,
        )
        worker.start()
        return worker

    @staticmethod
    def request_stop(analysis: Analysis, cancellation: CancellationToken) -> bool:
        """
        Ask a running analysis to stop after its current iteration.

        Returns `False` (and does nothing) if the analysis has already
        finished.
        """
        if analysis.is_terminal:
            return False
        cancellation.cancel()
        return True

    @staticmethod
    def _completion_reason(analysis: Analysis) -> str | None:
        assert analysis.best is not None
        if analysis.best.fitness.coverage >= 1.0:
            return "all target nodes are controlled"
        if analysis.current_iteration >= analysis.iteration_limit:
            return "the maximum number of iterations has been reached"
        if (
            analysis.current_iteration_without_improvement
            >= analysis.no_improvement_limit
        ):
            return "the maximum number of iterations without improvement has been reached"
        return None

    @staticmethod
    def _stop(analysis: Analysis, persist: Callable[[], None]):
        analysis.transition("Stopping", "The analysis has been scheduled to stop.")
        try:
            persist()
        finally:
            analysis.transition("Stopped", "The analysis has been stopped.")

    @staticmethod
    def _log_improvement(analysis: Analysis, debug: bool):
        assert analysis.best is not None
        fitness = analysis.best.fitness
        message = (
            f"Iteration {analysis.current_iteration}: found {fitness.size} driver "
            f"node(s) controlling {fitness.coverage:.2%} of the target nodes."
        )
        analysis.append_to_log(message)
        if debug:
            print(f"[{analysis.id}] {message}")

    @staticmethod
    def _fail(
        analysis: Analysis,
        error: Exception,
        debug: bool,
        strategy: SearchStrategy | None = None,
    ):
        if strategy is not None and (
            analysis.best is None or strategy.best.rank_key <= analysis.best.rank_key
        ):
            analysis.best = strategy.best
        if debug:
            traceback.print_exception(error)
        message = f"The analysis has encountered an error: {type(error).__name__}: {error}"
        if analysis.is_terminal:
            # The error happened while saving an already finished analysis.
            analysis.append_to_log(message)
        else:
            analysis.transition("Error", message)
