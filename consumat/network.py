from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import networkx as nx

logger = logging.getLogger("consumat.network")

METRIC_NAMES = ("degree", "two_step", "clustering", "betweenness")


class NetworkError(ValueError):
    """Raised when a social network cannot be loaded or is malformed."""


# ---------------- Helpers for robust CSV I/O ----------------
def _read_csv_robust(path, **kw):
    try:
        return pd.read_csv(path, **kw)
    except UnicodeDecodeError:
        return pd.read_csv(path, encoding="ISO-8859-1", **kw)

def _read_edge_csv(path) -> pd.DataFrame:
    """Comma-separated edge list; a first row of two numbers is an edge, not a header."""
    head = _read_csv_robust(path, header=None, nrows=1, dtype=str)
    first = head.iloc[0, :2].tolist() if len(head) and head.shape[1] >= 2 else []
    numeric = len(first) == 2 and all(pd.notna(pd.to_numeric(v, errors="coerce")) for v in first)
    return _read_csv_robust(path, header=None if numeric else "infer")

def _detect_edge_cols(df_edges: pd.DataFrame) -> Tuple[str, str]:
    cols = [str(c).lower() for c in df_edges.columns]
    pairs = [
        ("src", "dst"), ("source", "target"), ("u", "v"),
        ("from", "to"), ("i", "j"), ("a", "b"),
        ("node1", "node2"), ("id1", "id2")
    ]
    for a, b in pairs:
        if a in cols and b in cols:
            return df_edges.columns[cols.index(a)], df_edges.columns[cols.index(b)]
    if len(df_edges.columns) < 2:
        raise NetworkError("edge list needs at least two columns")
    return df_edges.columns[0], df_edges.columns[1]

def _edge_list_df_to_graph(df_edges: pd.DataFrame) -> nx.Graph:
    G = nx.Graph()
    if df_edges is None or df_edges.empty:
        return G
    ucol, vcol = _detect_edge_cols(df_edges)
    for u0, v0 in zip(df_edges[ucol], df_edges[vcol]):
        if pd.isna(u0) or pd.isna(v0):
            raise NetworkError(f"edge list has an incomplete row ({u0!r}, {v0!r})")
        G.add_nodes_from((u0, v0))
        if u0 != v0:
            G.add_edge(u0, v0)
    return G

def _sorted_labels(labels: Iterable) -> List:
    labels = list(labels)
    try:
        return sorted(labels, key=lambda x: int(x))
    except (TypeError, ValueError):
        return sorted(labels, key=str)


# ---------------- Graph adapter ----------------
class SocialGraph:
    """Read-only view of a social network with the per-node metrics used for targeting.

    Node labels are mapped to identifiers 0..N-1 (numeric order when every label
    is an integer, lexical order otherwise). All arrays are owned by the instance.
    """

    def __init__(self, graph: nx.Graph):
        if graph.is_directed():
            graph = graph.to_undirected()
        self.labels = _sorted_labels(graph.nodes())
        index = {lab: i for i, lab in enumerate(self.labels)}
        G = nx.Graph()
        G.add_nodes_from(range(len(self.labels)))
        G.add_edges_from((index[u], index[v]) for u, v in graph.edges() if u != v)
        self.graph = G
        n = G.number_of_nodes()

        self._neighbors: List[np.ndarray] = [np.array(sorted(G.neighbors(i)), dtype=np.int64) for i in range(n)]
        self._fof: List[np.ndarray] = []
        two_step = np.zeros(n, dtype=float)
        for i in range(n):
            fof = set()
            for c in self._neighbors[i]:
                fof.update(self._neighbors[c].tolist())
            fof.discard(i)
            self._fof.append(np.array(sorted(fof), dtype=np.int64))
            within_two = fof.union(self._neighbors[i].tolist())
            two_step[i] = float(len(within_two))

        self._degree = np.array([len(nb) for nb in self._neighbors], dtype=float)
        self._two_step = two_step
        cc = nx.clustering(G)
        self._clustering = np.array([cc[i] for i in range(n)], dtype=float)
        self._betweenness: Optional[np.ndarray] = None

        # directed edge arrays (both directions), grouped by source, ascending targets
        self.edge_src = np.repeat(np.arange(n, dtype=np.int64), self._degree.astype(np.int64))
        self.edge_dst = np.concatenate(self._neighbors) if n else np.zeros(0, dtype=np.int64)
        fof_sizes = np.array([len(f) for f in self._fof], dtype=np.int64)
        self.fof_src = np.repeat(np.arange(n, dtype=np.int64), fof_sizes)
        self.fof_dst = np.concatenate(self._fof) if n else np.zeros(0, dtype=np.int64)
        self.fof_size = fof_sizes.astype(float)

    # ---- structure ----
    @property
    def num_nodes(self) -> int:
        return len(self._neighbors)

    @property
    def num_edges(self) -> int:
        return self.graph.number_of_edges()

    def neighbors(self, node: int) -> List[int]:
        return self._neighbors[node].tolist()

    def neighbor_array(self, node: int) -> np.ndarray:
        return self._neighbors[node]

    def friends_of_friends(self, node: int) -> List[int]:
        return self._fof[node].tolist()

    # ---- raw metrics ----
    def degree(self, node: int) -> float:
        return float(self._degree[node])

    def two_step_count(self, node: int) -> float:
        return float(self._two_step[node])

    def clustering_coefficient(self, node: int) -> float:
        return float(self._clustering[node])

    # ---- normalized metrics ----
    def _max_reach(self) -> float:
        return max(1.0, float(self.num_nodes - 1))

    def norm_degree(self, node: int) -> float:
        return float(self._degree[node] / self._max_reach())

    def norm_two_step(self, node: int) -> float:
        return float(self._two_step[node] / self._max_reach())

    def norm_clustering(self, node: int) -> float:
        # lower clustering is better; not rescaled by its own max
        return float(1.0 - self._clustering[node])

    def norm_betweenness(self, node: int) -> float:
        return float(self.betweenness()[node])

    def betweenness(self) -> np.ndarray:
        if self._betweenness is None:
            logger.info("computing betweenness centrality for %d nodes", self.num_nodes)
            bc = nx.betweenness_centrality(self.graph, normalized=True)
            self._betweenness = np.array([bc[i] for i in range(self.num_nodes)], dtype=float)
        return self._betweenness

    def metric_matrix(self, k: int = 3) -> np.ndarray:
        """(N, k) matrix of normalized targeting metrics, columns in METRIC_NAMES order."""
        if not 1 <= k <= len(METRIC_NAMES):
            raise ValueError(f"between 1 and {len(METRIC_NAMES)} metrics are available, got {k}")
        m = self._max_reach()
        cols = [self._degree / m, self._two_step / m, 1.0 - self._clustering]
        if k > 3:
            cols.append(self.betweenness())
        return np.column_stack(cols[:k])

    def stats(self) -> Dict[str, object]:
        G = self.graph
        iso = sum(1 for _ in nx.isolates(G))
        mean_deg = float(self._degree.mean()) if self.num_nodes else 0.0
        return {"nodes": G.number_of_nodes(), "edges": G.number_of_edges(), "isolates": iso,
                "mean_degree": mean_deg,
                "avg_clustering": float(self._clustering.mean()) if self.num_nodes else 0.0}

    # ---- construction ----
    @classmethod
    def from_edges(cls, n: int, edges: Sequence[Tuple[int, int]]) -> "SocialGraph":
        G = nx.Graph()
        G.add_nodes_from(range(n))
        G.add_edges_from(edges)
        return cls(G)


# ---------------- Loading ----------------
def load_network(path: str) -> SocialGraph:
    """Read a network file; gexf/graphml/gml through networkx, csv/txt/edges as edge lists."""
    if not os.path.isfile(path):
        raise NetworkError(f"network file not found: {path}")
    ext = os.path.splitext(path)[1].lower()
    try:
        if ext == ".gexf":
            G = nx.read_gexf(path)
        elif ext == ".graphml":
            G = nx.read_graphml(path)
        elif ext == ".gml":
            G = nx.read_gml(path)
        elif ext == ".csv":
            G = _edge_list_df_to_graph(_read_edge_csv(path))
        elif ext in (".txt", ".edges", ".edgelist"):
            G = _edge_list_df_to_graph(_read_csv_robust(path, sep=r"\s+", header=None, comment="#", engine="python"))
        else:
            raise NetworkError(f"unsupported network format '{ext}' ({path})")
    except NetworkError:
        raise
    except Exception as e:
        raise NetworkError(f"failed to read network {path}: {e}") from e
    if G.number_of_nodes() == 0:
        raise NetworkError(f"network {path} has no nodes")
    sg = SocialGraph(G)
    logger.info("loaded %s: nodes=%d edges=%d", path, sg.num_nodes, sg.num_edges)
    return sg


# ---------------- Generators ----------------
def ring_edges(n: int, k: int = 2) -> List[Tuple[int, int]]:
    """Regular ring lattice: each node linked to its k nearest neighbours (k even)."""
    if k % 2 or k >= n:
        raise ValueError(f"ring lattice needs even k < n, got n={n} k={k}")
    return [(i, (i + j) % n) for i in range(n) for j in range(1, k // 2 + 1)]

def generate_network(kind: str, n: int, seed: Optional[int] = None, **params) -> SocialGraph:
    kind = kind.lower()
    if kind in ("ring", "regular_lattice"):
        return SocialGraph.from_edges(n, ring_edges(n, int(params.get("k", 2))))
    if kind == "erdos_renyi":
        G = nx.erdos_renyi_graph(n, float(params.get("p", 0.1)), seed=seed)
    elif kind == "watts_strogatz":
        G = nx.watts_strogatz_graph(n, int(params.get("k", 4)), float(params.get("p", 0.1)), seed=seed)
    elif kind == "barabasi_albert":
        G = nx.barabasi_albert_graph(n, int(params.get("m", 2)), seed=seed)
    else:
        raise ValueError(f"unknown network kind '{kind}'")
    return SocialGraph(G)
