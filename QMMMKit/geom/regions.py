"""
Connectivity graph and QM/MM boundary tracing.
"""

import networkx as nx
from typing import List, Set

from ..errors import GeometryError
from ..models.datatypes import Region
from .store import ReplicaStore

def bond_graph(store: ReplicaStore) -> nx.Graph:
    """
    Build the bond graph of the store.

    Nodes carry the atom region as the ``region`` attribute.
    """
    store.check_connectivity()
    graph = nx.Graph()
    for atom in store.atoms:
        graph.add_node(atom.index, region=atom.region)
        for j in atom.bonds:
            graph.add_edge(atom.index, j)
    return graph

def trace_boundary(store: ReplicaStore, atom: int, graph: nx.Graph = None) -> List[int]:
    """
    Boundary atoms reachable from a pseudo-bond atom through boundary atoms.

    Args:
        store: Replica store
        atom: Index of a pseudo-bond atom
        graph: Optional prebuilt bond graph

    Returns:
        Sorted list of boundary-atom indices
    """
    if atom < 0 or atom >= store.n_atoms:
        raise GeometryError("Atom index out of range", atom=atom)
    if store.atoms[atom].region != Region.PSEUDO_BOND:
        raise GeometryError("Boundary tracing must start from a pseudo-bond atom", atom=atom)
    if graph is None:
        graph = bond_graph(store)

    boundary = [n for n, data in graph.nodes(data=True) if data["region"] == Region.BOUNDARY]
    sub = graph.subgraph(boundary + [atom])
    reached = nx.node_connected_component(sub, atom)
    return sorted(n for n in reached if n != atom)

def capped_boundary_atoms(store: ReplicaStore) -> Set[int]:
    """All boundary atoms attached to any pseudo-bond atom."""
    pseudo = store.indices(Region.PSEUDO_BOND)
    if not pseudo:
        return set()
    graph = bond_graph(store)
    capped = set()
    for atom in pseudo:
        capped.update(trace_boundary(store, atom, graph))
    return capped
