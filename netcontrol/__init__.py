"""
Search for driver nodes that structurally control the target nodes of a
directed interaction network.
"""

from netcontrol import types
from netcontrol._search_algorithms.genetic import GeneticSearch
from netcontrol._search_algorithms.greedy import GreedySearch
from netcontrol.analysis import Analysis, IllegalTransition
from netcontrol.evaluator import (
    Candidate,
    CandidateEvaluator,
    EvaluationFailure,
    Fitness,
    MatchingCoverage,
    ReachabilityCoverage,
)
from netcontrol.graph_model import GraphModel, InvalidGraph
from netcontrol.runner import (
    AnalysisRunner,
    CancellationToken,
    InMemoryProgressSink,
    JsonFileProgressSink,
)

__all__ = [
    "types",
    "Analysis",
    "AnalysisRunner",
    "CancellationToken",
    "Candidate",
    "CandidateEvaluator",
    "EvaluationFailure",
    "Fitness",
    "GeneticSearch",
    "GraphModel",
    "GreedySearch",
    "IllegalTransition",
    "InMemoryProgressSink",
    "InvalidGraph",
    "JsonFileProgressSink",
    "MatchingCoverage",
    "ReachabilityCoverage",
]
