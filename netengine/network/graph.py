"""Graph connectivity over the bus/element network.

Buses are graph nodes; every in-service branch and transformer is an edge
(a three-winding transformer contributes the three winding pairs). The
adjacency is a scipy sparse matrix so island detection and reachability use
``scipy.sparse.csgraph``.
"""

from __future__ import annotations

from collections.abc import Iterable

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import breadth_first_order, connected_components

from netengine.network.network_model import ElectricalNetwork


def element_edges(
    network: ElectricalNetwork,
    exclude_elements: Iterable[str] = (),
) -> list[tuple[str, int, int]]:
    """(element id, bus row, bus row) for every in-service edge."""
    excluded = set(exclude_elements)
    idx = network.bus_index()
    edges: list[tuple[str, int, int]] = []
    for element_id, bus_ids in network.element_endpoints().items():
        if element_id in excluded:
            continue
        rows = [idx[b] for b in bus_ids if b in idx]
        for a in range(len(rows)):
            for b in range(a + 1, len(rows)):
                edges.append((element_id, rows[a], rows[b]))
    return edges


def adjacency_matrix(
    network: ElectricalNetwork,
    exclude_elements: Iterable[str] = (),
    exclude_buses: Iterable[str] = (),
):
    """Symmetric sparse adjacency; edges touching an excluded bus are dropped."""
    n = network.n_bus
    idx = network.bus_index()
    removed_rows = {idx[b] for b in exclude_buses if b in idx}
    rows, cols = [], []
    for _, i, j in element_edges(network, exclude_elements):
        if i in removed_rows or j in removed_rows:
            continue
        rows += [i, j]
        cols += [j, i]
    data = np.ones(len(rows), dtype=np.int8)
    return coo_matrix((data, (rows, cols)), shape=(n, n)).tocsr()


def find_islands(
    network: ElectricalNetwork,
    exclude_elements: Iterable[str] = (),
) -> list[list[str]]:
    """Connected groups of bus ids, in network bus order."""
    if network.n_bus == 0:
        return []
    graph = adjacency_matrix(network, exclude_elements)
    n_components, labels = connected_components(graph, directed=False)
    islands: list[list[str]] = [[] for _ in range(n_components)]
    for bus, label in zip(network.buses, labels):
        islands[label].append(bus.id)
    return islands


def reachable_buses(
    network: ElectricalNetwork,
    sources: Iterable[str],
    exclude_elements: Iterable[str] = (),
    exclude_buses: Iterable[str] = (),
) -> set[str]:
    """Bus ids reachable from any of ``sources`` with the given outages."""
    idx = network.bus_index()
    removed = set(exclude_buses)
    graph = adjacency_matrix(network, exclude_elements, removed)
    n_components, labels = connected_components(graph, directed=False)
    source_labels = {labels[idx[s]] for s in sources if s in idx and s not in removed}
    return {
        bus.id for bus, label in zip(network.buses, labels)
        if label in source_labels and bus.id not in removed
    }


def spanning_tree(network: ElectricalNetwork, root: str) -> dict[str, tuple[str, str]]:
    """Breadth-first tree from ``root``: bus id → (parent bus id, element id).

    On meshed networks the first element found between two buses is used.
    """
    idx = network.bus_index()
    graph = adjacency_matrix(network)
    _, predecessors = breadth_first_order(
        graph, idx[root], directed=False, return_predecessors=True,
    )
    edge_element: dict[tuple[int, int], str] = {}
    for element_id, i, j in element_edges(network):
        edge_element.setdefault((i, j), element_id)
        edge_element.setdefault((j, i), element_id)

    tree: dict[str, tuple[str, str]] = {}
    for row, parent in enumerate(predecessors):
        if parent < 0:
            continue
        tree[network.buses[row].id] = (
            network.buses[parent].id,
            edge_element[(int(parent), row)],
        )
    return tree


def path_to_root(tree: dict[str, tuple[str, str]], bus_id: str) -> list[tuple[str, str]]:
    """(parent bus, element) pairs walking from ``bus_id`` up to the root."""
    path = []
    current = bus_id
    while current in tree:
        parent, element_id = tree[current]
        path.append((parent, element_id))
        current = parent
    return path
