"""
Generators of random interaction networks for benchmarks and randomised
tests.

Biological interaction networks typically have a heavy-tailed out-degree
distribution, so the generator draws out-degrees from a power law and
connects them to uniformly random targets (giving a Poisson-like in-degree
distribution).
"""

from __future__ import annotations

import networkx as nx  # type: ignore
import numpy as np
import scipy as sp  # type: ignore

from netcontrol.graph_model import GraphModel


def power_law_graph_generator(
    n_nodes: int, power: float = 3.0, seed: int = 0
) -> nx.DiGraph:
    """
    Generate a random graph with power-law out-degree distribution and a
    Poisson in-degree distribution.

    Nodes are named `n0`, `n1`, ... Self-loops are allowed, parallel edges
    are not.

    This is the `power_law_graph_generator` of biobalm's `rbn_generators.py`,
    except that all nodes are added up front, which fixes the node order to
    `n0`, `n1`, ... regardless of the sampled edges.

    Parameters
    ----------
    n_nodes : int
        Number of nodes.
    power : float, optional
        Exponent of the out-degree distribution (must be greater than 1).
    seed : int, optional
        Seed of the random number generator.

    Returns
    -------
    networkx.DiGraph
        The generated graph.
    """
    rng = np.random.default_rng(seed)

    A = 1 / sp.special.zeta(power)  # normalization factor

    ks: list[int] = []
    for _ in range(n_nodes):
        rand = 1 - rng.random()  # (0.0, 1.0]
        k = 0
        val = 0.0
        while val < rand:
            k += 1
            val += A / k**power
            # Cut off the tail of the distribution at the number of nodes.
            if k > n_nodes:
                rand = 1 - rng.random()
                k = 0
                val = 0.0
        ks.append(k)

    G = nx.DiGraph()
    G.add_nodes_from(f"n{i}" for i in range(n_nodes))  # type: ignore
    while sum(ks) > 0:
        source, sink = (int(x) for x in rng.integers(0, n_nodes, 2))
        # If the out-degree of the source is filled, find a new source.
        while ks[source] == 0:
            source = int(rng.integers(0, n_nodes))
        # If the edge already exists, find a new sink.
        while G.has_edge(f"n{source}", f"n{sink}"):
            sink = int(rng.integers(0, n_nodes))

        G.add_edge(f"n{source}", f"n{sink}")  # type: ignore
        ks[source] -= 1

    return G


def random_control_network(
    n_nodes: int,
    n_sources: int,
    n_targets: int,
    power: float = 3.0,
    seed: int = 0,
) -> GraphModel:
    """
    Generate a random power-law network (see
    :func:`power_law_graph_generator`) and assign `n_sources` random source
    nodes and `n_targets` random target nodes. The remaining nodes are free.

    Examples
    --------
    >>> from netcontrol.random_graphs import random_control_network
    >>> graph = random_control_network(20, n_sources=2, n_targets=5, seed=1)
    >>> len(graph), len(graph.sources), len(graph.targets), len(graph.free)
    (20, 2, 5, 13)
    """
    if n_targets < 1 or n_sources < 0 or n_sources + n_targets > n_nodes:
        raise ValueError(
            f"Cannot pick {n_sources} sources and {n_targets} targets from {n_nodes} nodes."
        )
    G = power_law_graph_generator(n_nodes, power, seed)
    rng = np.random.default_rng(seed)
    chosen = [f"n{int(i)}" for i in rng.permutation(n_nodes)[: n_sources + n_targets]]
    for name in chosen[:n_sources]:
        G.nodes[name]["role"] = "Source"  # type: ignore
    for name in chosen[n_sources:]:
        G.nodes[name]["role"] = "Target"  # type: ignore
    return GraphModel.from_digraph(G)
