from netcontrol import AnalysisRunner
from netcontrol.analysis import parse_analysis
from netcontrol.random_graphs import random_control_network
import netcontrol._search_algorithms.greedy
import sys
import time

# Compares the greedy and the genetic search on a random network.
# Usage: python bench_control.py <node-count> [seed]

# Print the best addition of every greedy step.
netcontrol._search_algorithms.greedy.DEBUG = True

ITERATION_LIMIT = 1_000
NO_IMPROVEMENT_LIMIT = 100

n_nodes = int(sys.argv[1])
seed = int(sys.argv[2]) if len(sys.argv) > 2 else 0

graph = random_control_network(
    n_nodes, n_sources=max(1, n_nodes // 20), n_targets=max(1, n_nodes // 5), seed=seed
)

results = []
for algorithm in ["Greedy", "Genetic"]:
    analysis = parse_analysis(
        {
            "algorithm": algorithm,
            "parameters": {"random_seed": seed} if algorithm == "Genetic" else {},
            "iterationLimit": ITERATION_LIMIT,
            "noImprovementLimit": NO_IMPROVEMENT_LIMIT,
        }
    )
    t0 = time.perf_counter()
    AnalysisRunner().run(analysis, graph)
    t_run = time.perf_counter() - t0
    assert analysis.best is not None
    results.append(
        (
            algorithm,
            analysis.status,
            analysis.current_iteration,
            analysis.best.fitness.size,
            analysis.best.fitness.coverage,
            t_run,
        )
    )

print("algorithm, status, iterations, drivers, coverage, runtime")
for row in results:
    print(", ".join(str(x) for x in row))
