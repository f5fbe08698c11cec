"""
Edge adjacency construction and connectivity validation.

Triangles are addressed by their index in a triangle list.  All link
writes go through ``connect_edge`` / ``disconnect_edge``, which keep the
adjacency graph symmetric: if triangle A's edge i links to (B, j), then
B's edge j links to (A, i).

Three connection strategies are provided:

1. ``auto_connect_subset``: exhaustive pairwise matching for freshly
   generated patches with no prior adjacency.  O(n^2) in the worst case,
   supports approximate position matching.
2. ``connect_and_validate``: flood fill from triangle 0 that rebuilds the
   whole graph by exact position equality and rejects the mesh unless every
   triangle is reached.  Edges are bucketed by their unordered endpoint
   positions, so each lookup only inspects edges at the same location.
3. ``auto_connect_edges``: connects an explicit list of edges against a
   restricted pool of candidate triangles and fails hard on a miss.

Connectivity is not 2-manifoldness: an edge shared by three or more
triangles is paired first-come in traversal order.
"""
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from mesh_errors import ConnectivityError, UnconnectableEdgeError
from mesh_triangle import POSITION, EdgeLink, PositionKey, Triangle, edge_corners

logger = logging.getLogger(__name__)

EdgeRef = Tuple[int, int]  # (triangle index, edge index)
VertexStar = List[Tuple[int, int]]  # [(triangle index, corner index), ...]


# ─── Link primitives ─────────────────────────────────────────────────────────

def connect_edge(
    triangles: Sequence[Triangle],
    tri: int,
    edge: int,
    other: int,
    other_edge: int,
) -> None:
    """Link ``tri``'s *edge* with ``other``'s *other_edge* on both sides.

    Existing links on either edge are dropped first (on both of their sides).
    """
    if tri == other and edge == other_edge:
        raise ValueError(f"Cannot connect edge {edge} of triangle {tri} to itself")

    disconnect_edge(triangles, tri, edge)
    disconnect_edge(triangles, other, other_edge)
    triangles[tri].edges[edge] = (other, other_edge)
    triangles[other].edges[other_edge] = (tri, edge)


def disconnect_edge(triangles: Sequence[Triangle], tri: int, edge: int) -> None:
    link = triangles[tri].edges[edge]
    if link is None:
        return

    other, other_edge = link
    triangles[tri].edges[edge] = None
    if triangles[other].edges[other_edge] == (tri, edge):
        triangles[other].edges[other_edge] = None


def disconnect_all_edges(triangles: Sequence[Triangle]) -> None:
    for triangle in triangles:
        triangle.edges[:] = [None, None, None]


def is_symmetric(triangles: Sequence[Triangle]) -> bool:
    """Check the adjacency symmetry invariant over all links."""
    for t, triangle in enumerate(triangles):
        for e, link in enumerate(triangle.edges):
            if link is None:
                continue
            other, other_edge = link
            if not 0 <= other < len(triangles):
                return False
            if triangles[other].edges[other_edge] != (t, e):
                return False
    return True


# ─── Exhaustive pairwise matching ────────────────────────────────────────────

def auto_connect_subset(
    triangles: Sequence[Triangle],
    subset: Sequence[int],
    epsilon: float = 0.0,
) -> int:
    """Connect the unconnected edges of a subset of triangles by position.

    Each triangle is only compared against the triangles after it in
    *subset*.  Already connected edges are never reconnected, and fully
    connected triangles are skipped.

    Returns:
        Number of connections made.
    """
    count = len(subset)
    connections = 0

    for si in range(count):
        ti = subset[si]
        triangle = triangles[ti]
        missing = triangle.missing_edges
        if not missing:
            continue

        for oi in range(si + 1, count):
            oti = subset[oi]
            other = triangles[oti]
            if oti == ti or not other.missing_edges:
                continue

            for edge in list(missing):
                a, b = edge_corners(edge)
                match = triangle.get_matching_edge(a, b, other, epsilon)
                if match is not None:
                    connect_edge(triangles, ti, edge, oti, match)
                    missing.remove(edge)
                    connections += 1

            if not missing:
                break

    logger.debug("Auto-connected %d edges among %d triangles", connections, count)
    return connections


# ─── Edge-list-directed matching ─────────────────────────────────────────────

def auto_connect_edges(
    triangles: Sequence[Triangle],
    edges: Sequence[EdgeRef],
    connectable: Sequence[int],
    epsilon: float = 0.0,
) -> None:
    """Connect each listed edge to a matching edge in the candidate pool.

    Edges that are already connected are left alone.

    Raises:
        UnconnectableEdgeError: If a listed edge has no match in *connectable*.
    """
    for tri, edge in edges:
        triangle = triangles[tri]
        if triangle.is_edge_connected(edge):
            continue

        a, b = edge_corners(edge)
        for other in connectable:
            if other == tri:
                continue
            match = triangle.get_matching_edge(a, b, triangles[other], epsilon)
            if match is not None:
                connect_edge(triangles, tri, edge, other, match)
                break
        else:
            raise UnconnectableEdgeError(
                f"Could not auto-connect edge {edge} of triangle {tri} "
                f"({len(connectable)} candidate triangles)"
            )


# ─── Flood-fill connection ───────────────────────────────────────────────────

def _edge_key(triangle: Triangle, edge: int) -> Tuple[PositionKey, PositionKey]:
    a, b = edge_corners(edge)
    pa = triangle.position_key(a)
    pb = triangle.position_key(b)
    return (pa, pb) if pa <= pb else (pb, pa)


def connect_and_validate(triangles: Sequence[Triangle]) -> None:
    """Rebuild the adjacency graph from scratch and prove it is connected.

    All links are cleared, then a traversal starting at triangle 0 matches
    each reached triangle's missing edges by exact endpoint positions
    (winding-insensitive) and queues newly reached triangles.  Running this
    twice on unmodified triangles yields the same graph.

    Raises:
        ConnectivityError: If some triangle is not reachable from triangle 0.
            The links are restored to their state before the call.
    """
    tri_count = len(triangles)
    if tri_count == 0:
        return

    previous = [list(triangle.edges) for triangle in triangles]
    disconnect_all_edges(triangles)

    buckets: Dict[Tuple[PositionKey, PositionKey], List[EdgeRef]] = {}
    for t, triangle in enumerate(triangles):
        for e in range(3):
            buckets.setdefault(_edge_key(triangle, e), []).append((t, e))

    visited = [False] * tri_count
    visited[0] = True
    stack = [0]
    connections = 0

    while stack:
        t = stack.pop()
        triangle = triangles[t]

        for edge in range(3):
            if triangle.edges[edge] is not None:
                continue

            for other, other_edge in buckets[_edge_key(triangle, edge)]:
                if other == t or triangles[other].edges[other_edge] is not None:
                    continue

                connect_edge(triangles, t, edge, other, other_edge)
                connections += 1
                if not visited[other]:
                    visited[other] = True
                    stack.append(other)
                break

    unvisited = visited.count(False)
    if unvisited:
        for triangle, edges in zip(triangles, previous):
            triangle.edges[:] = edges
        raise ConnectivityError(
            f"Mesh is not connected: {unvisited} of {tri_count} triangles "
            f"are unreachable from triangle 0"
        )

    logger.debug("Flood-fill connected %d edges over %d triangles", connections, tri_count)


def is_connected(triangles: Sequence[Triangle]) -> bool:
    """True if every triangle is reachable from triangle 0 through links."""
    tri_count = len(triangles)
    if tri_count == 0:
        return True

    visited = [False] * tri_count
    stack = [0]
    while stack:
        t = stack.pop()
        if visited[t]:
            continue
        visited[t] = True
        for link in triangles[t].edges:
            if link is not None and not visited[link[0]]:
                stack.append(link[0])

    return all(visited)


# ─── Vertex stars ────────────────────────────────────────────────────────────

def _shared_corner(triangle: Triangle, edge: int, position: np.ndarray) -> int:
    """Endpoint of *edge* in *triangle* that sits at *position*."""
    a, b = edge_corners(edge)
    da = float(np.sum(np.abs(triangle.vertex_data[a, POSITION] - position)))
    db = float(np.sum(np.abs(triangle.vertex_data[b, POSITION] - position)))
    return a if da <= db else b


def _walk_fan(
    triangles: Sequence[Triangle],
    start: Tuple[int, int],
    edge: int,
    seen: Set[Tuple[int, int]],
) -> Tuple[VertexStar, bool]:
    """Walk around a vertex across links, starting through *edge*.

    Returns the visited corners (excluding *start*) and whether the walk
    came back around to *start*.
    """
    tri, corner = start
    visited: VertexStar = []

    while True:
        link: Optional[EdgeLink] = triangles[tri].edges[edge]
        if link is None:
            return visited, False

        position = triangles[tri].vertex_data[corner, POSITION]
        other, other_edge = link
        other_corner = _shared_corner(triangles[other], other_edge, position)
        pair = (other, other_corner)
        if pair in seen:
            return visited, pair == start

        seen.add(pair)
        visited.append(pair)
        # leave through the other edge incident to the shared corner
        edge = (other_corner + 2) % 3 if other_edge == other_corner else other_corner
        tri, corner = pair


def vertex_star(triangles: Sequence[Triangle], tri: int, corner: int) -> VertexStar:
    """Ordered (triangle, corner) pairs sharing the vertex at *corner*.

    The star is found by walking links around the vertex, so corners at the
    same position that are not connected through edges are not included.
    """
    start = (tri, corner)
    seen = {start}

    forward, closed = _walk_fan(triangles, start, corner, seen)
    if closed:
        return [start] + forward

    backward, _ = _walk_fan(triangles, start, (corner + 2) % 3, seen)
    backward.reverse()
    return backward + [start] + forward
