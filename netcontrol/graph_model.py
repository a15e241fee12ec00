"""
An immutable in-memory view of an interaction network prepared for control
analysis.

Nodes are stored in an arena and addressed by integer handles `0..n-1`. Edges
are pairs of handles, and successor/predecessor lists are tuples indexed by
handle. The graph carries no references back to the objects it was built from,
so a single `GraphModel` can be read from several threads at once.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal, cast

if TYPE_CHECKING:
    from typing import Iterable

import networkx as nx  # type: ignore
from biodivine_aeon import BooleanNetwork, RegulatoryGraph

from netcontrol.types import Edge, NodeRole

ROLES: tuple[NodeRole, ...] = ("Source", "Target", "Free")


class InvalidGraph(ValueError):
    """
    Raised when a network cannot be used for control analysis (e.g. an edge
    references an unknown node, or there are no target nodes).
    """


class GraphModel:
    """
    A directed interaction graph with node roles.

    Every node has one role: `"Source"` nodes always act as drivers,
    `"Target"` nodes are the ones to be controlled, and `"Free"` nodes can be
    selected as additional drivers.

    Examples
    --------
    >>> from netcontrol import GraphModel
    >>> graph = GraphModel.from_roles(
    ...     [("A", "C"), ("B", "C"), ("B", "D")],
    ...     sources=["A", "B"],
    ...     targets=["C", "D"],
    ...     nodes=["E"],
    ... )
    >>> len(graph)
    5
    >>> graph.role("E")
    'Free'
    >>> graph.names_of(graph.successors[graph.handle("B")])
    ['C', 'D']
    """

    __slots__ = (
        "names",
        "roles",
        "edges",
        "successors",
        "predecessors",
        "sources",
        "targets",
        "free",
        "_index",
    )

    def __init__(
        self,
        nodes: Iterable[tuple[str, NodeRole]],
        edges: Iterable[Edge],
    ):
        names: list[str] = []
        roles: list[NodeRole] = []
        index: dict[str, int] = {}
        for name, role in nodes:
            if role not in ROLES:
                raise InvalidGraph(f"Unknown role `{role}` of node `{name}`.")
            if name in index:
                if roles[index[name]] != role:
                    raise InvalidGraph(
                        f"Node `{name}` is declared both as {roles[index[name]]} and {role}."
                    )
                continue
            index[name] = len(names)
            names.append(name)
            roles.append(role)

        successors: list[list[int]] = [[] for _ in names]
        predecessors: list[list[int]] = [[] for _ in names]
        edge_list: list[tuple[int, int]] = []
        seen: set[tuple[int, int]] = set()
        for source, target in edges:
            for endpoint in (source, target):
                if endpoint not in index:
                    raise InvalidGraph(
                        f"Edge `{source}` -> `{target}` references unknown node `{endpoint}`."
                    )
            edge = (index[source], index[target])
            # Parallel edges carry no extra structure.
            if edge in seen:
                continue
            seen.add(edge)
            edge_list.append(edge)
            successors[edge[0]].append(edge[1])
            predecessors[edge[1]].append(edge[0])

        self.names: tuple[str, ...] = tuple(names)
        """
        Node identifiers, indexed by handle.
        """

        self.roles: tuple[NodeRole, ...] = tuple(roles)
        """
        Node roles, indexed by handle.
        """

        self.edges: tuple[tuple[int, int], ...] = tuple(edge_list)
        """
        Directed edges as pairs of node handles.
        """

        self.successors: tuple[tuple[int, ...], ...] = tuple(
            tuple(sorted(s)) for s in successors
        )
        self.predecessors: tuple[tuple[int, ...], ...] = tuple(
            tuple(sorted(p)) for p in predecessors
        )

        self.sources: tuple[int, ...] = self._with_role("Source")
        self.targets: tuple[int, ...] = self._with_role("Target")
        self.free: tuple[int, ...] = self._with_role("Free")
        self._index = index

        if len(self.targets) == 0:
            raise InvalidGraph("The network has no target nodes.")

    def _with_role(self, role: NodeRole) -> tuple[int, ...]:
        # Sorted by identifier, so that iteration order does not depend on the input order.
        return tuple(
            sorted(
                (i for i, r in enumerate(self.roles) if r == role),
                key=lambda i: self.names[i],
            )
        )

    def __len__(self) -> int:
        """
        Returns the number of nodes in this `GraphModel`.
        """
        return len(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __repr__(self) -> str:
        return (
            f"GraphModel(nodes={len(self)}, edges={len(self.edges)}, "
            f"sources={len(self.sources)}, targets={len(self.targets)}, "
            f"free={len(self.free)})"
        )

    @staticmethod
    def from_roles(
        edges: Iterable[Edge],
        sources: Iterable[str],
        targets: Iterable[str],
        nodes: Iterable[str] | None = None,
    ) -> GraphModel:
        """
        Build a graph from an edge list and separate source and target sets.

        Every node that is mentioned by an edge, or listed in `nodes`, and
        is neither a source nor a target is a free node.

        Parameters
        ----------
        edges : Iterable[Edge]
            Directed edges given as `(source, target)` identifier pairs.
        sources : Iterable[str]
            Identifiers of the source nodes.
        targets : Iterable[str]
            Identifiers of the target nodes.
        nodes : Iterable[str] | None, optional
            Additional node identifiers (e.g. isolated nodes).

        Returns
        -------
        GraphModel
            The constructed graph.
        """
        edges = list(edges)
        source_set = set(sources)
        target_set = set(targets)
        overlap = source_set & target_set
        if overlap:
            raise InvalidGraph(
                f"Nodes cannot be both sources and targets: {sorted(overlap)}."
            )

        ordered: list[str] = sorted(source_set) + sorted(target_set)
        if nodes is not None:
            ordered += list(nodes)
        for source, target in edges:
            ordered += [source, target]

        roles: list[tuple[str, NodeRole]] = []
        seen: set[str] = set()
        for name in ordered:
            if name in seen:
                continue
            seen.add(name)
            if name in source_set:
                roles.append((name, "Source"))
            elif name in target_set:
                roles.append((name, "Target"))
            else:
                roles.append((name, "Free"))

        return GraphModel(roles, edges)

    @staticmethod
    def from_digraph(graph: nx.DiGraph) -> GraphModel:
        """
        Build a graph from a `networkx.DiGraph`.

        Each node can be annotated with a `role` attribute (`"Source"`,
        `"Target"` or `"Free"`). Nodes without the attribute are free.
        Node identifiers are converted to strings.
        """
        nodes: list[tuple[str, NodeRole]] = []
        for node, data in graph.nodes(data=True):  # type: ignore
            node_data = cast(dict[str, Any], data)
            nodes.append((str(node), node_data.get("role", "Free")))
        edges = [(str(s), str(t)) for s, t in graph.edges()]  # type: ignore
        return GraphModel(nodes, edges)

    @staticmethod
    def from_regulatory_graph(
        network: RegulatoryGraph,
        sources: Iterable[str],
        targets: Iterable[str],
    ) -> GraphModel:
        """
        Build a graph from the regulations of a `biodivine_aeon.RegulatoryGraph`
        (or a `BooleanNetwork`).

        Every regulation `a -> b` becomes an edge `a -> b`, regardless of its
        sign. Variables that are not listed in `sources` or `targets` are free.
        """
        names = network.variable_names()
        edges: list[Edge] = []
        for regulation in network.regulations():
            edges.append(
                (
                    network.get_variable_name(regulation["source"]),
                    network.get_variable_name(regulation["target"]),
                )
            )
        return GraphModel.from_roles(edges, sources, targets, nodes=names)

    @staticmethod
    def from_rules(
        rules: str,
        sources: Iterable[str],
        targets: Iterable[str],
        format: Literal["bnet", "aeon", "sbml"] = "aeon",
    ) -> GraphModel:
        """
        Build a graph from the interaction structure of a Boolean network
        given as a string.

        Parameters
        ----------
        rules : str
            The string representation of the network.
        sources : Iterable[str]
            Identifiers of the source nodes.
        targets : Iterable[str]
            Identifiers of the target nodes.
        format : Literal['bnet', 'aeon', 'sbml']
            The format of the string. One of `"bnet"`, `"aeon"`, or `"sbml"`.
            Defaults to `"aeon"`.

        Returns
        -------
        GraphModel
            The constructed graph.
        """
        if format == "bnet":
            network = BooleanNetwork.from_bnet(rules)
        elif format == "aeon":
            network = BooleanNetwork.from_aeon(rules)
        elif format == "sbml":
            network = BooleanNetwork.from_sbml(rules)
        else:
            raise ValueError(f"Unknown format: {format}")
        return GraphModel.from_regulatory_graph(network, sources, targets)

    @staticmethod
    def from_file(
        path: str, sources: Iterable[str], targets: Iterable[str]
    ) -> GraphModel:
        """
        Read a network from the given file path. The format is automatically
        inferred from the file extension.
        """
        return GraphModel.from_regulatory_graph(
            BooleanNetwork.from_file(path), sources, targets
        )

    def to_digraph(self) -> nx.DiGraph:
        """
        Export the graph as a `networkx.DiGraph` with a `role` attribute on
        every node.
        """
        graph = nx.DiGraph()
        for name, role in zip(self.names, self.roles):
            graph.add_node(name, role=role)  # type: ignore
        graph.add_edges_from(  # type: ignore
            (self.names[s], self.names[t]) for s, t in self.edges
        )
        return graph

    def handle(self, name: str) -> int:
        """
        Return the handle of the node with the given identifier.

        Raises `KeyError` if there is no such node.
        """
        try:
            return self._index[name]
        except KeyError:
            raise KeyError(f"Unknown node `{name}`.") from None

    def role(self, node: str | int) -> NodeRole:
        """
        Return the role of a node, given either by identifier or by handle.
        """
        if isinstance(node, str):
            node = self.handle(node)
        return self.roles[node]

    def names_of(self, handles: Iterable[int]) -> list[str]:
        """
        Return the sorted identifiers of the given node handles.
        """
        return sorted(self.names[h] for h in handles)
