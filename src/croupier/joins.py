"""Relationship graph and join path resolution.

The graph is kept as an explicit edge list plus an adjacency index of edge
positions. A networkx view of the same data answers connectivity questions.
"""

import heapq
import itertools
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import networkx as nx
from networkx.utils import UnionFind

from croupier.types import JoinAmbiguity, JoinEdge, JoinPath, JoinResolution, JoinStep

logger = logging.getLogger(__name__)

# (total weight, edge count, pair keys in path order)
PathCost = Tuple[float, int, Tuple[str, ...]]


def _pair_key(a: str, b: str) -> str:
    x, y = sorted((a, b))
    return f"{x}|{y}"


def _edge_rank(edge: JoinEdge) -> Tuple[float, str, str, str, str]:
    return (-edge.confidence, edge.left_table, edge.left_column, edge.right_table, edge.right_column)


class RelationshipGraph:
    """Undirected weighted view over declared relationships.

    Edge weight is ``1 - confidence``. When several relationships link the
    same pair of tables, the highest-confidence one is used for path
    finding.
    """

    def __init__(self, edges: Iterable[JoinEdge] = ()):
        self._edges: List[JoinEdge] = []
        self._adjacency: Dict[str, List[int]] = {}
        self._best: Dict[str, int] = {}
        self._graph = nx.Graph()

        for edge in edges:
            if edge.left_table == edge.right_table:
                logger.debug("Ignoring self-relationship on '%s'", edge.left_table)
                continue
            index = len(self._edges)
            self._edges.append(edge)
            self._adjacency.setdefault(edge.left_table, []).append(index)
            self._adjacency.setdefault(edge.right_table, []).append(index)
            key = edge.pair_key
            current = self._best.get(key)
            if current is None or _edge_rank(edge) < _edge_rank(self._edges[current]):
                self._best[key] = index

        for key, index in self._best.items():
            edge = self._edges[index]
            self._graph.add_edge(edge.left_table, edge.right_table, weight=edge.weight, key=key)

    @property
    def edges(self) -> List[JoinEdge]:
        return list(self._edges)

    @property
    def tables(self) -> List[str]:
        return sorted(self._adjacency)

    def __contains__(self, table: str) -> bool:
        return table in self._adjacency

    def neighbors(self, table: str) -> List[str]:
        return sorted({self._edges[i].other(table) for i in self._adjacency.get(table, [])})

    def best_edge(self, a: str, b: str) -> Optional[JoinEdge]:
        index = self._best.get(_pair_key(a, b))
        return self._edges[index] if index is not None else None

    def component_groups(self, tables: Sequence[str]) -> List[List[str]]:
        """Partition *tables* by connected component, deterministically ordered."""
        component_of: Dict[str, int] = {}
        for i, component in enumerate(nx.connected_components(self._graph)):
            for node in component:
                component_of[node] = i
        groups: Dict[object, List[str]] = {}
        for table in tables:
            key = component_of.get(table, ("isolated", table))
            groups.setdefault(key, []).append(table)
        return sorted((sorted(g) for g in groups.values()), key=lambda g: g[0])

    def shortest_path(self, source: str, target: str) -> Optional[Tuple[PathCost, List[str]]]:
        """Dijkstra with ties broken by fewer edges, then earliest pair names."""
        if source == target:
            return (0.0, 0, ()), [source]
        heap: List[Tuple[float, int, Tuple[str, ...], str, Tuple[str, ...]]] = [
            (0.0, 0, (), source, (source,))
        ]
        settled: Set[str] = set()
        while heap:
            weight, count, keys, node, nodes = heapq.heappop(heap)
            if node in settled:
                continue
            settled.add(node)
            if node == target:
                return (weight, count, keys), list(nodes)
            for neighbor in self.neighbors(node):
                if neighbor in settled:
                    continue
                edge = self.best_edge(node, neighbor)
                heapq.heappush(
                    heap,
                    (
                        round(weight + edge.weight, 9),
                        count + 1,
                        keys + (edge.pair_key,),
                        neighbor,
                        nodes + (neighbor,),
                    ),
                )
        return None


class JoinPathResolver:
    """Find a minimum-weight acyclic join tree covering the required tables.

    Approximates the Steiner tree: a minimum spanning tree over the pairwise
    shortest paths between required tables (a direct relationship always
    wins for its pair), expanded back into real edges, re-spanned to drop
    cycles, and pruned of intermediate leaves.
    """

    def resolve_path(
        self, required_tables: Sequence[str], graph: RelationshipGraph
    ) -> JoinResolution:
        required = list(dict.fromkeys(required_tables))
        if len(required) <= 1:
            return JoinPath(tables=required)

        groups = graph.component_groups(required)
        if len(groups) > 1:
            logger.info("Join ambiguity: disconnected table groups %s", groups)
            return JoinAmbiguity(groups=groups)

        pair_paths: Dict[Tuple[str, str], Tuple[PathCost, List[str]]] = {}
        for a, b in itertools.combinations(sorted(required), 2):
            direct = graph.best_edge(a, b)
            if direct is not None:
                pair_paths[(a, b)] = ((round(direct.weight, 9), 1, (direct.pair_key,)), [a, b])
            else:
                found = graph.shortest_path(a, b)
                if found is None:
                    return JoinAmbiguity(groups=[[a], [b]])
                pair_paths[(a, b)] = found

        closure = UnionFind(required)
        chosen_keys: Set[str] = set()
        for (a, b), (cost, nodes) in sorted(pair_paths.items(), key=lambda kv: (kv[1][0], kv[0])):
            if closure[a] == closure[b]:
                continue
            closure.union(a, b)
            chosen_keys.update(_pair_key(x, y) for x, y in zip(nodes, nodes[1:]))

        tree_edges = self._spanning_edges(chosen_keys, graph)
        tree_edges = self._prune(tree_edges, set(required))
        return self._ordered_path(required[0], tree_edges)

    @staticmethod
    def _spanning_edges(keys: Set[str], graph: RelationshipGraph) -> List[JoinEdge]:
        candidates = []
        for key in keys:
            a, b = key.split("|", 1)
            candidates.append(graph.best_edge(a, b))
        candidates.sort(key=lambda e: (round(e.weight, 9), e.pair_key))
        forest = UnionFind()
        tree = []
        for edge in candidates:
            if forest[edge.left_table] == forest[edge.right_table]:
                continue
            forest.union(edge.left_table, edge.right_table)
            tree.append(edge)
        return tree

    @staticmethod
    def _prune(edges: List[JoinEdge], required: Set[str]) -> List[JoinEdge]:
        edges = list(edges)
        while True:
            degree: Dict[str, int] = {}
            for e in edges:
                degree[e.left_table] = degree.get(e.left_table, 0) + 1
                degree[e.right_table] = degree.get(e.right_table, 0) + 1
            leaves = {t for t, d in degree.items() if d == 1 and t not in required}
            if not leaves:
                return edges
            edges = [e for e in edges if e.left_table not in leaves and e.right_table not in leaves]

    @staticmethod
    def _ordered_path(root: str, edges: List[JoinEdge]) -> JoinPath:
        incident: Dict[str, List[JoinEdge]] = {}
        for e in edges:
            incident.setdefault(e.left_table, []).append(e)
            incident.setdefault(e.right_table, []).append(e)

        tables = [root]
        steps: List[JoinStep] = []
        seen = {root}
        frontier = [root]
        while frontier:
            anchor = frontier.pop(0)
            for edge in sorted(incident.get(anchor, []), key=lambda e: e.other(anchor)):
                joined = edge.other(anchor)
                if joined in seen:
                    continue
                seen.add(joined)
                tables.append(joined)
                steps.append(JoinStep(edge=edge, anchor_table=anchor, joined_table=joined))
                frontier.append(joined)

        total = 1.0
        for step in steps:
            total *= step.edge.confidence
        return JoinPath(tables=tables, steps=steps, total_score=round(total, 9))
