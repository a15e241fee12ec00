"""
Selection of the search strategy of an analysis.

Algorithm parameters form a tagged variant (see
:data:`netcontrol.types.AlgorithmParameters`), and every strategy exposes the
same single capability: :meth:`SearchStrategy.step`, which advances the search
by one iteration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Protocol

if TYPE_CHECKING:
    from netcontrol.evaluator import Candidate, CandidateEvaluator

from netcontrol._search_algorithms.genetic import GeneticSearch
from netcontrol._search_algorithms.greedy import GreedySearch
from netcontrol.types import AlgorithmParameters, GeneticParameters, GreedyParameters


class SearchStrategy(Protocol):
    """
    The interface shared by :class:`GreedySearch` and :class:`GeneticSearch`.
    """

    evaluator: CandidateEvaluator
    best: Candidate

    def step(self) -> bool:
        """
        Advance the search by one iteration. Returns `True` if the fitness of
        `best` strictly improved.
        """
        ...


def default_greedy_parameters() -> GreedyParameters:
    return {
        "algorithm": "Greedy",
        "max_path_length": None,
    }


def default_genetic_parameters() -> GeneticParameters:
    return {
        "algorithm": "Genetic",
        "max_path_length": None,
        "random_seed": None,
        "population_size": 80,
        "initial_density": 0.5,
        "crossover_probability": 0.5,
        "mutation_probability": 0.01,
        "random_fraction": 0.0,
        "selection": "rank",
    }


def make_parameters(
    algorithm: str, values: Mapping[str, Any] | None = None
) -> AlgorithmParameters:
    """
    Create the parameters of the given algorithm, overriding defaults with
    `values`.

    Parameters
    ----------
    algorithm : str
        Either `"Greedy"` or `"Genetic"`.
    values : Mapping[str, Any] | None, optional
        Parameter values that replace the defaults. Unknown keys (or keys
        which belong to the other algorithm) are rejected.

    Returns
    -------
    AlgorithmParameters
        The complete parameter dictionary, tagged with `algorithm`.

    Examples
    --------
    >>> from netcontrol.search import make_parameters
    >>> make_parameters("Greedy", {"max_path_length": 3})
    {'algorithm': 'Greedy', 'max_path_length': 3}
    >>> make_parameters("Genetic", {"random_seed": 7})["population_size"]
    80
    """
    if algorithm == "Greedy":
        parameters: dict[str, Any] = dict(default_greedy_parameters())
    elif algorithm == "Genetic":
        parameters = dict(default_genetic_parameters())
    else:
        raise ValueError(f"Unknown algorithm: {algorithm}")

    if values is not None:
        for key, value in values.items():
            if key == "algorithm":
                if value != algorithm:
                    raise ValueError(
                        f"The parameters are for algorithm `{value}`, not `{algorithm}`."
                    )
                continue
            if key not in parameters:
                raise ValueError(
                    f"Unknown parameter `{key}` for algorithm `{algorithm}`."
                )
            parameters[key] = value

    return parameters  # type: ignore


def make_search(
    evaluator: CandidateEvaluator, parameters: AlgorithmParameters
) -> SearchStrategy:
    """
    Create the search strategy selected by the `algorithm` tag of
    `parameters`.
    """
    if parameters["algorithm"] == "Greedy":
        return GreedySearch(evaluator, parameters)
    elif parameters["algorithm"] == "Genetic":
        return GeneticSearch(evaluator, parameters)
    else:
        raise ValueError(f"Unknown algorithm: {parameters['algorithm']}")
