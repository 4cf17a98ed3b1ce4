"""
Rank-local view of a structured ABL mesh.

The boundary algorithm never owns mesh data: it keeps integer node indices
into a ``MeshPartition`` and reads/writes named node fields through it. The
``structured_box_mesh`` helper plays the part of the external mesh generator
that stamps every node with its global ``(i, j, k)`` tag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from .errors import ConfigurationError


@dataclass
class MeshPartition:
    """
    Nodes known to one rank (owned nodes plus shared copies of neighbours').

    Parameters
    ----------
    coordinates : np.ndarray
        Node coordinates, shape ``(n, 3)``.
    structured_index : np.ndarray
        Global ``(i, j, k)`` tag per node, shape ``(n, 3)``.
    owned : np.ndarray
        Boolean ownership mask; every global node is owned by exactly one rank.
    parts : dict[str, np.ndarray]
        Local node indices of each named mesh part.
    fields : dict[str, np.ndarray]
        Node fields, shape ``(n, n_components)``.
    """

    coordinates: np.ndarray
    structured_index: np.ndarray
    owned: np.ndarray
    parts: Dict[str, np.ndarray] = field(default_factory=dict)
    fields: Dict[str, np.ndarray] = field(default_factory=dict)
    rank: int = 0

    def __post_init__(self) -> None:
        self.coordinates = np.asarray(self.coordinates, dtype=np.float64)
        self.structured_index = np.asarray(self.structured_index, dtype=np.int64)
        self.owned = np.asarray(self.owned, dtype=bool)
        n = self.coordinates.shape[0]
        if self.coordinates.shape != (n, 3) or self.structured_index.shape != (n, 3):
            raise ValueError("coordinates and structured_index must both have shape (n, 3)")
        if self.owned.shape != (n,):
            raise ValueError("owned must have shape (n,)")

    @property
    def n_nodes(self) -> int:
        return self.coordinates.shape[0]

    def part_nodes(self, name: str) -> np.ndarray:
        try:
            return np.asarray(self.parts[name], dtype=np.int64)
        except KeyError:
            raise ConfigurationError(f"mesh part {name!r} not found on rank {self.rank}") from None

    def declare_field(self, name: str, n_components: int = 3) -> np.ndarray:
        if name not in self.fields:
            self.fields[name] = np.zeros((self.n_nodes, n_components))
        return self.fields[name]

    def field(self, name: str) -> np.ndarray:
        try:
            return self.fields[name]
        except KeyError:
            raise ConfigurationError(f"field {name!r} is not registered on rank {self.rank}") from None


def structured_box_mesh(
    imax: int,
    jmax: int,
    kmax: int,
    *,
    dx: float = 1.0,
    dy: float = 1.0,
    z_levels: Optional[Sequence[float]] = None,
    origin: Sequence[float] = (0.0, 0.0, 0.0),
    n_ranks: int = 1,
    top_part: str = "top",
) -> List[MeshPartition]:
    """
    Build a tagged box mesh split into ``n_ranks`` slabs along x.

    Each slab also carries a shared copy of the first node layer of the next
    slab, owned by that next rank, the way a partitioned node mesh exposes
    shared nodes along partition boundaries.

    Parameters
    ----------
    imax, jmax, kmax : int
        Node counts.
    dx, dy : float
        Uniform horizontal spacing.
    z_levels : sequence of float, optional
        Node elevations (length ``kmax``); unit spacing when omitted.
    n_ranks : int
        Number of partitions, at most ``imax``.
    top_part : str
        Name of the part holding the top boundary nodes.
    """
    if n_ranks < 1 or n_ranks > imax:
        raise ValueError("n_ranks must lie in [1, imax]")
    z = np.arange(kmax, dtype=np.float64) if z_levels is None else np.asarray(z_levels, dtype=np.float64)
    if z.shape != (kmax,):
        raise ValueError("z_levels must have kmax entries")

    partitions = []
    for rank, owned_i in enumerate(np.array_split(np.arange(imax), n_ranks)):
        i_hi = owned_i[-1] + 1 if owned_i[-1] + 1 < imax else owned_i[-1]
        local_i = np.arange(owned_i[0], i_hi + 1)
        I, J, K = np.meshgrid(local_i, np.arange(jmax), np.arange(kmax), indexing="ij")
        tags = np.stack([I.ravel(), J.ravel(), K.ravel()], axis=1)
        coords = np.stack(
            [origin[0] + tags[:, 0] * dx, origin[1] + tags[:, 1] * dy, origin[2] + z[tags[:, 2]]],
            axis=1,
        )
        owned = tags[:, 0] <= owned_i[-1]
        mesh = MeshPartition(
            coordinates=coords,
            structured_index=tags,
            owned=owned,
            parts={top_part: np.flatnonzero(tags[:, 2] == kmax - 1)},
            rank=rank,
        )
        mesh.declare_field("velocity")
        mesh.declare_field("velocity_bc")
        partitions.append(mesh)
    return partitions


__all__ = ["MeshPartition", "structured_box_mesh"]
