import os
import time

import pytest

from netcontrol.analysis import Analysis, parse_analysis, parse_network
from netcontrol.evaluator import ReachabilityCoverage
from netcontrol.graph_model import GraphModel
from netcontrol.runner import (
    AnalysisRunner,
    CancellationToken,
    InMemoryProgressSink,
    JsonFileProgressSink,
)
from netcontrol.types import AnalysisSnapshot


def messages(analysis: Analysis) -> list[str]:
    return [entry["message"] for entry in analysis.log]


def partial_graph() -> GraphModel:
    # Every free node controls one more target, `T4` can never be controlled.
    return GraphModel.from_roles(
        [("S", "T1"), ("F", "T2"), ("G", "T3")], ["S"], ["T1", "T2", "T3", "T4"]
    )


class CancellingSink(InMemoryProgressSink):
    """
    Requests cancellation once `after` snapshots have been persisted.
    """

    def __init__(self, token: CancellationToken, after: int):
        super().__init__()
        self.token = token
        self.after = after
        self.count = 0

    def persist(self, snapshot: AnalysisSnapshot) -> None:
        super().persist(snapshot)
        self.count += 1
        if self.count == self.after:
            self.token.cancel()


class FailingSink(InMemoryProgressSink):
    """
    Raises `OSError` on the `after`-th and every later snapshot.
    """

    def __init__(self, after: int):
        super().__init__()
        self.after = after
        self.count = 0

    def persist(self, snapshot: AnalysisSnapshot) -> None:
        self.count += 1
        if self.count >= self.after:
            raise OSError("disk full")
        super().persist(snapshot)


class FailingCoverage(ReachabilityCoverage):
    """
    Raises once more than `budget` driver sets have been evaluated.
    """

    def __init__(self, graph: GraphModel, max_path_length: int | None, budget: int):
        super().__init__(graph, max_path_length)
        self.budget = budget

    def covered_targets(self, drivers):  # type: ignore
        self.budget -= 1
        if self.budget < 0:
            raise RuntimeError("boom")
        return super().covered_targets(drivers)


class FailingRunner(AnalysisRunner):
    def __init__(self, budget: int):
        super().__init__("reachability")
        self.budget = budget

    def make_policy(self, graph: GraphModel, max_path_length: int | None):
        return FailingCoverage(graph, max_path_length, self.budget)


def test_sources_alone_complete_in_one_iteration():
    graph = GraphModel.from_roles(
        [("A", "C"), ("B", "C"), ("B", "D")], ["A", "B"], ["C", "D"], nodes=["E"]
    )
    analysis = parse_analysis({"algorithm": "Greedy", "iterationLimit": 10})
    AnalysisRunner().run(analysis, graph)

    assert analysis.status == "Completed"
    assert analysis.current_iteration == 1
    assert analysis.best is not None
    assert analysis.best.names == ("A", "B")
    assert analysis.best.fitness.coverage == 1.0
    assert messages(analysis)[-1] == (
        "The analysis has completed successfully: all target nodes are controlled."
    )
    assert analysis.end_time is not None


def test_disconnected_target_exhausts_iterations():
    graph = GraphModel.from_roles([("S", "T1"), ("F", "X")], ["S"], ["T1", "T2"])
    analysis = parse_analysis({"algorithm": "Greedy", "iterationLimit": 5})
    AnalysisRunner().run(analysis, graph)

    assert analysis.status == "Completed"
    assert analysis.current_iteration == 5
    assert analysis.best is not None
    assert analysis.best.fitness.coverage == 0.5
    assert "the maximum number of iterations has been reached" in messages(analysis)[-1]


def test_no_improvement_limit():
    graph = GraphModel.from_roles(
        [("S", "T1"), ("F", "T2")], ["S"], ["T1", "T2", "T3"]
    )
    analysis = parse_analysis({"algorithm": "Greedy", "noImprovementLimit": 1})
    AnalysisRunner().run(analysis, graph)

    assert analysis.status == "Completed"
    assert analysis.current_iteration == 2
    assert analysis.current_iteration_without_improvement == 1
    assert analysis.best is not None
    assert analysis.best.names == ("F", "S")
    assert "without improvement" in messages(analysis)[-1]


def test_improvements_are_logged():
    analysis = parse_analysis({"algorithm": "Greedy", "noImprovementLimit": 1})
    AnalysisRunner().run(analysis, partial_graph())

    log = messages(analysis)
    assert log[:3] == [
        "The analysis has been scheduled.",
        "The analysis is initializing.",
        "The analysis has started.",
    ]
    assert "Iteration 1: found 2 driver node(s) controlling 50.00% of the target nodes." in log
    assert "Iteration 2: found 3 driver node(s) controlling 75.00% of the target nodes." in log


def test_cancellation_between_iterations():
    token = CancellationToken()
    sink = CancellingSink(token, after=3)
    analysis = parse_analysis(
        {
            "algorithm": "Genetic",
            "parameters": {"population_size": 10, "random_seed": 1},
            "iterationLimit": 1000,
            "noImprovementLimit": 1000,
        },
        analysis_id="cancelled",
    )
    AnalysisRunner().run(analysis, partial_graph(), token, sink)

    assert analysis.status == "Stopped"
    assert analysis.current_iteration == 2
    assert messages(analysis)[-2:] == [
        "The analysis has been scheduled to stop.",
        "The analysis has been stopped.",
    ]

    history = sink.history("cancelled")
    assert [s["status"] for s in history] == [
        "Initializing",
        "Ongoing",
        "Ongoing",
        "Stopping",
        "Stopped",
    ]
    # The reported best never gets worse.
    for previous, current in zip(history, history[1:]):
        assert current["best_coverage"] >= previous["best_coverage"]
    assert history[-1]["end_time"] is not None


def test_cancellation_before_first_iteration():
    token = CancellationToken()
    token.cancel()
    sink = InMemoryProgressSink()
    analysis = parse_analysis({"algorithm": "Greedy"}, analysis_id="early")
    AnalysisRunner().run(analysis, partial_graph(), token, sink)

    assert analysis.status == "Stopped"
    assert analysis.current_iteration == 0
    assert analysis.best is None
    assert [s["status"] for s in sink.history("early")] == [
        "Initializing",
        "Stopping",
        "Stopped",
    ]


def test_request_stop():
    token = CancellationToken()
    analysis = parse_analysis({"algorithm": "Greedy"})
    assert AnalysisRunner.request_stop(analysis, token)
    assert token.is_cancelled

    finished = parse_analysis({"algorithm": "Greedy"})
    AnalysisRunner().run(finished, partial_graph())
    assert finished.is_terminal

    token = CancellationToken()
    assert not AnalysisRunner.request_stop(finished, token)
    assert not token.is_cancelled

    # Running a terminal analysis again does nothing.
    log = finished.log
    status = finished.status
    AnalysisRunner().run(finished, partial_graph())
    assert finished.status == status
    assert finished.log == log


def test_invalid_graph_is_an_error():
    sink = InMemoryProgressSink()
    analysis = parse_analysis({"algorithm": "Greedy"}, analysis_id="invalid")
    AnalysisRunner().run(
        analysis,
        lambda: parse_network({"nodes": ["A"], "edges": [["A", "B"]], "targets": ["A"]}),
        sink=sink,
    )

    assert analysis.status == "Error"
    assert analysis.current_iteration == 0
    assert messages(analysis)[-1].startswith(
        "The analysis has encountered an error: InvalidGraph:"
    )
    latest = sink.latest("invalid")
    assert latest is not None
    assert latest["status"] == "Error"


def test_failed_step_keeps_best():
    # One evaluation for the initial candidate, two in the first iteration.
    analysis = parse_analysis({"algorithm": "Greedy"})
    FailingRunner(budget=3).run(analysis, partial_graph())

    assert analysis.status == "Error"
    assert analysis.current_iteration == 1
    assert analysis.best is not None
    assert analysis.best.names == ("F", "S")
    assert analysis.best.fitness.coverage == 0.5
    assert messages(analysis)[-1] == (
        "The analysis has encountered an error: RuntimeError: boom"
    )


def test_failed_initialization():
    analysis = parse_analysis({"algorithm": "Greedy"})
    FailingRunner(budget=0).run(analysis, partial_graph())
    assert analysis.status == "Error"
    assert analysis.best is None
    assert analysis.start_time is not None
    assert analysis.end_time is not None


def test_sink_failure_is_an_error():
    sink = FailingSink(after=2)
    analysis = parse_analysis({"algorithm": "Greedy"}, analysis_id="unsaved")
    AnalysisRunner().run(analysis, partial_graph(), sink=sink)

    assert analysis.status == "Error"
    assert analysis.end_time is not None
    assert analysis.current_iteration == 1
    assert analysis.best is not None
    assert analysis.best.names == ("F", "S")
    log = messages(analysis)
    assert log[-2] == "The analysis has encountered an error: OSError: disk full"
    assert log[-1] == (
        "The final state of the analysis could not be saved: OSError: disk full"
    )
    latest = sink.latest("unsaved")
    assert latest is not None
    assert latest["status"] == "Initializing"


def test_sink_failure_in_background():
    analysis = parse_analysis({"algorithm": "Greedy"})
    worker = AnalysisRunner().start(analysis, partial_graph(), sink=FailingSink(after=1))
    worker.join(timeout=30)
    assert not worker.is_alive()
    assert analysis.status == "Error"
    assert analysis.current_iteration == 0
    assert analysis.best is None


def test_sink_failure_while_stopping():
    token = CancellationToken()
    token.cancel()
    analysis = parse_analysis({"algorithm": "Greedy"})
    AnalysisRunner().run(analysis, partial_graph(), token, FailingSink(after=2))

    # The analysis still finishes its stop.
    assert analysis.status == "Stopped"
    assert analysis.end_time is not None
    assert "The analysis has encountered an error: OSError: disk full" in messages(
        analysis
    )


def test_genetic_runs_are_reproducible(random_network: GraphModel):
    def run() -> Analysis:
        analysis = parse_analysis(
            {
                "algorithm": "Genetic",
                "parameters": {"population_size": 10, "random_seed": 42},
                "iterationLimit": 8,
            }
        )
        return AnalysisRunner().run(analysis, random_network)

    first, second = run(), run()
    assert first.status == second.status == "Completed"
    assert first.current_iteration == second.current_iteration
    assert first.best == second.best
    assert "The random seed of the analysis is 42." in messages(first)


def test_runs_are_never_worse_than_sources(random_network: GraphModel):
    for algorithm in ["Greedy", "Genetic"]:
        sink = InMemoryProgressSink()
        analysis = parse_analysis(
            {"algorithm": algorithm, "iterationLimit": 5}, analysis_id=algorithm
        )
        AnalysisRunner().run(analysis, random_network, sink=sink)
        assert analysis.status == "Completed"
        assert analysis.best is not None
        assert set(random_network.sources) <= analysis.best.drivers

        coverage = [s["best_coverage"] for s in sink.history(algorithm)]
        assert coverage == sorted(coverage)


def test_start_in_background():
    sink = InMemoryProgressSink()
    analysis = parse_analysis({"algorithm": "Greedy"}, analysis_id="background")
    worker = AnalysisRunner().start(analysis, partial_graph(), sink=sink)
    worker.join(timeout=30)
    assert not worker.is_alive()

    latest = sink.latest("background")
    assert latest is not None
    assert latest["status"] == "Completed"
    assert latest["best_drivers"] == ["F", "G", "S"]
    assert latest["covered_targets"] == ["T1", "T2", "T3"]


def test_request_stop_in_background():
    token = CancellationToken()
    sink = InMemoryProgressSink()
    analysis = parse_analysis(
        {
            "algorithm": "Genetic",
            "parameters": {"population_size": 4},
            "iterationLimit": 10_000_000,
            "noImprovementLimit": 10_000_000,
        },
        analysis_id="stoppable",
    )
    worker = AnalysisRunner().start(analysis, partial_graph(), token, sink)
    while analysis.status in ("Scheduled", "Initializing"):
        time.sleep(0.01)
    assert AnalysisRunner.request_stop(analysis, token)
    worker.join(timeout=30)
    assert not worker.is_alive()

    latest = sink.latest("stoppable")
    assert latest is not None
    assert latest["status"] == "Stopped"


def test_json_file_sink(tmp_path):
    sink = JsonFileProgressSink(str(tmp_path / "progress"))
    assert sink.read("missing") is None

    analysis = parse_analysis({"algorithm": "Greedy"}, analysis_id="stored")
    AnalysisRunner().run(analysis, partial_graph(), sink=sink)

    stored = sink.read("stored")
    assert stored is not None
    assert stored["status"] == "Completed"
    assert stored["best_drivers"] == ["F", "G", "S"]
    assert stored["log"][-1]["message"].startswith("The analysis has completed")
    assert os.listdir(sink.directory) == ["stored.json"]


def test_coverage_policy_option():
    star = GraphModel.from_roles([("S", "T1"), ("S", "T2")], ["S"], ["T1", "T2"])

    analysis = parse_analysis({"algorithm": "Greedy", "noImprovementLimit": 1})
    AnalysisRunner().run(analysis, star)
    assert analysis.best is not None
    assert analysis.best.fitness.coverage == 0.5

    analysis = parse_analysis({"algorithm": "Greedy", "noImprovementLimit": 1})
    AnalysisRunner("reachability").run(analysis, star)
    assert analysis.best is not None
    assert analysis.best.fitness.coverage == 1.0

    with pytest.raises(ValueError):
        AnalysisRunner("controllability")


def test_debug_output(capsys):
    analysis = parse_analysis(
        {"algorithm": "Greedy", "debug": True}, analysis_id="verbose"
    )
    AnalysisRunner().run(analysis, partial_graph())
    output = capsys.readouterr().out
    assert "[verbose] Iteration 1:" in output
    assert "[verbose] Completed after" in output
