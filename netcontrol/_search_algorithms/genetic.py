from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from netcontrol.evaluator import CandidateEvaluator
    from netcontrol.types import GeneticParameters

import random

from netcontrol.evaluator import Candidate, best_candidate

DEBUG = False
"""Enables debug logging to stdout."""


def check_genetic_parameters(parameters: GeneticParameters):
    """
    Raise a `ValueError` if the given parameters are out of range.
    """
    if parameters["population_size"] < 2:
        raise ValueError(
            f"The population size must be at least 2, got {parameters['population_size']}."
        )
    for key in (
        "initial_density",
        "crossover_probability",
        "mutation_probability",
        "random_fraction",
    ):
        value = parameters[key]
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"`{key}` must be between 0 and 1, got {value}.")
    if parameters["selection"] not in ("rank", "proportionate"):
        raise ValueError(f"Unknown selection method: {parameters['selection']}")


class GeneticSearch:
    """
    Evolves a population of driver sets.

    A chromosome is a subset of the free nodes; the source nodes are part of
    every driver set. The first :meth:`step` samples the initial population
    (which always contains the sources-only chromosome). Every further step
    breeds a new generation: the best candidate (the elite) survives
    unchanged, and the rest are children of parents chosen by rank or
    fitness-proportionate selection, produced by uniform crossover and
    bit-flip mutation. Optionally, a fraction of the children is replaced by
    random chromosomes.

    All random choices are drawn from one `random.Random` instance seeded with
    :attr:`seed`, so the sequence of generations is reproducible.
    """

    __slots__ = (
        "evaluator",
        "parameters",
        "seed",
        "generation",
        "population",
        "best",
        "_generator",
        "_free",
    )

    def __init__(
        self,
        evaluator: CandidateEvaluator,
        parameters: GeneticParameters,
    ):
        check_genetic_parameters(parameters)
        self.evaluator = evaluator
        self.parameters = parameters

        seed = parameters["random_seed"]
        if seed is None:
            seed = random.SystemRandom().randrange(2**32)
        self.seed: int = seed
        """
        The seed that was actually used (drawn randomly if the parameters
        do not specify one).
        """

        self.generation = 0
        self.population: list[Candidate] = []
        self.best: Candidate = evaluator.evaluate([])
        self._generator = random.Random(seed)
        # The graph keeps free nodes sorted by identifier, which fixes the
        # order in which random choices are made.
        self._free = evaluator.graph.free

    def step(self) -> bool:
        """
        Produce and evaluate the next generation. Returns `True` if the elite
        of the new generation is strictly better than the previous best.
        """
        self.generation += 1
        if len(self.population) == 0:
            chromosomes = self._initial_population()
            population = [
                self.evaluator.evaluate(c, generation=self.generation)
                for c in chromosomes
            ]
        else:
            elite = best_candidate(self.population)
            population = [elite] + [
                self.evaluator.evaluate(c, generation=self.generation)
                for c in self._offspring(len(self.population) - 1)
            ]

        self.population = population
        elite = best_candidate(population)
        improved = elite.improves_on(self.best)
        if elite.rank_key <= self.best.rank_key:
            self.best = elite

        if DEBUG:
            print(
                f"[genetic] generation {self.generation}: elite {elite.names} with fitness {elite.fitness}"
            )

        return improved

    def _random_chromosome(self) -> frozenset[int]:
        density = self.parameters["initial_density"]
        return frozenset(f for f in self._free if self._generator.random() < density)

    def _initial_population(self) -> list[frozenset[int]]:
        size = self.parameters["population_size"]
        return [frozenset()] + [self._random_chromosome() for _ in range(size - 1)]

    def _offspring(self, count: int) -> list[frozenset[int]]:
        ranked = sorted(self.population, key=lambda c: c.rank_key)
        if self.parameters["selection"] == "rank":
            weights: list[float] | None = [
                float(len(ranked) - i) for i in range(len(ranked))
            ]
        else:
            weights = [c.fitness.coverage for c in ranked]
            if sum(weights) == 0:
                weights = None

        immigrants = round(self.parameters["random_fraction"] * count)
        children: list[frozenset[int]] = []
        for _ in range(count - immigrants):
            first, second = self._generator.choices(ranked, weights=weights, k=2)
            children.append(self._mutate(self._crossover(first, second)))
        for _ in range(immigrants):
            children.append(self._random_chromosome())
        return children

    def _crossover(self, first: Candidate, second: Candidate) -> set[int]:
        probability = self.parameters["crossover_probability"]
        child: set[int] = set()
        for f in self._free:
            parent = first if self._generator.random() < probability else second
            if f in parent.drivers:
                child.add(f)
        return child

    def _mutate(self, child: set[int]) -> frozenset[int]:
        probability = self.parameters["mutation_probability"]
        for f in self._free:
            if self._generator.random() < probability:
                child ^= {f}
        return frozenset(child)
