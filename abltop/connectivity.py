"""
Structured index catalog for the sampling and boundary planes.

Every rank sees only part of each plane. The catalog sorts the local nodes of
each plane by their global ``(i, j, k)`` tag, and records how the owned pieces
of the sampling plane concatenate across ranks so that every rank can rebuild
the full plane in the same order.
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from typing import Dict, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .comm import default_comm
from .errors import ConfigurationError, DistributionMismatch
from .grid import INFLOW, GridGeometry, InflowEdge, normalize_bcs, parse_grid_dims
from .mesh import MeshPartition


class StructuredIndex(NamedTuple):
    """Global structured tag of a mesh node; tuple ordering is the plane ordering."""

    i: int
    j: int
    k: int


def structured_order(tags: np.ndarray) -> np.ndarray:
    """Stable lexicographic order of ``(i, j, k)`` tags."""
    tags = np.asarray(tags)
    return np.lexsort((tags[:, 2], tags[:, 1], tags[:, 0]))


def _readonly(a: np.ndarray, dtype=np.int64) -> np.ndarray:
    a = np.array(a, dtype=dtype)
    a.setflags(write=False)
    return a


@dataclass(frozen=True, eq=False)
class PlaneNodeSequence:
    """
    Local nodes of one plane role, sorted by structured index.

    ``nodes`` are indices into the rank's ``MeshPartition`` arrays; the mesh
    keeps ownership of the nodes themselves. ``flat_index`` is ``i*jmax + j``.
    """

    role: str
    nodes: np.ndarray
    flat_index: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "nodes", _readonly(self.nodes))
        object.__setattr__(self, "flat_index", _readonly(self.flat_index))
        if self.nodes.shape != self.flat_index.shape:
            raise ValueError("nodes and flat_index must have the same length")

    def __len__(self) -> int:
        return self.nodes.size


@dataclass(frozen=True, eq=False)
class DistributionDescriptor:
    """
    Layout of a plane gathered from per-rank contributions.

    Parameters
    ----------
    plane : str
        Name used in diagnostics.
    counts : np.ndarray
        Values contributed by each rank.
    order : np.ndarray
        Flat plane index of every gathered slot, rank by rank.
    """

    plane: str
    counts: np.ndarray
    order: np.ndarray

    def __post_init__(self) -> None:
        counts = _readonly(self.counts)
        object.__setattr__(self, "counts", counts)
        object.__setattr__(self, "order", _readonly(self.order))
        offsets = np.concatenate([[0], np.cumsum(counts)[:-1]]) if counts.size else counts
        object.__setattr__(self, "offsets", _readonly(offsets))
        if int(counts.sum()) != self.order.size:
            raise ValueError("per-rank counts do not add up to the gathered size")

    @property
    def total(self) -> int:
        return self.order.size

    @property
    def n_ranks(self) -> int:
        return self.counts.size

    def assemble(self, contributions: Sequence[np.ndarray]) -> np.ndarray:
        """Place per-rank arrays (rank order) into one globally ordered plane array."""
        if len(contributions) != self.n_ranks:
            raise DistributionMismatch(
                f"{self.plane} plane: got contributions from {len(contributions)} ranks, "
                f"expected {self.n_ranks}"
            )
        arrays = [np.asarray(values, dtype=np.float64) for values in contributions]
        for rank, (values, expected) in enumerate(zip(arrays, self.counts)):
            if values.shape[0] != expected:
                raise DistributionMismatch(
                    f"{self.plane} plane: rank {rank} contributed {values.shape[0]} values, "
                    f"expected {expected}"
                )
        trailing = {values.shape[1:] for values in arrays}
        if len(trailing) != 1:
            raise DistributionMismatch(f"{self.plane} plane: ranks contributed differently shaped values")

        plane = np.empty((self.total,) + trailing.pop())
        for values, start, count in zip(arrays, self.offsets, self.counts):
            plane[self.order[start:start + count]] = values
        return plane


class StructuredIndexCatalog:
    """
    Discover, order and distribute the nodes of the sampling and boundary planes.

    Parameters
    ----------
    mesh : MeshPartition
        Rank-local mesh; only a weak reference is kept.
    part : str
        Name of the top boundary part.
    comm : communicator, optional
        Object with the mpi4py lowercase collective API.
    spacing_rtol : float
        Allowed deviation from uniform horizontal spacing, relative to the spacing.
    """

    def __init__(self, mesh: MeshPartition, part: str, comm=None, *, spacing_rtol: float = 1e-6):
        self._mesh = weakref.ref(mesh)
        self.part = part
        self.comm = comm if comm is not None else default_comm()
        self.spacing_rtol = spacing_rtol

        self._raw: Optional[Dict[str, np.ndarray]] = None
        self._raw_z: Optional[float] = None
        self.geometry: Optional[GridGeometry] = None
        self.sequences: Dict[str, PlaneNodeSequence] = {}
        self.distribution: Optional[DistributionDescriptor] = None
        self.inflow_edges: Dict[int, InflowEdge] = {}
        self.k_sample: Optional[int] = None
        self.is_initialized = False

    @property
    def mesh(self) -> MeshPartition:
        mesh = self._mesh()
        if mesh is None:
            raise ReferenceError("mesh partition no longer exists")
        return mesh

    @property
    def is_discovered(self) -> bool:
        return self._raw is not None

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    def discover_connectivity(self, z_sample: Optional[float] = None) -> None:
        """
        Collect the raw node lists of the top part and the sampling layer.

        Boundary and inflow-edge lists come from the part itself. The sample
        list needs ``z_sample`` (collective, the layer is agreed across ranks);
        without it the layer is resolved by ``initialize``.
        """
        if self._raw is not None:
            raise ConfigurationError("connectivity has already been discovered")
        mesh = self.mesh
        top = mesh.part_nodes(self.part)
        tags = mesh.structured_index[top]
        raw = {
            "boundary": top,
            "x_inflow": top[tags[:, 0] == 0],
            "y_inflow": top[tags[:, 1] == 0],
        }
        if z_sample is not None:
            raw["sample"], self.k_sample = self._sample_layer(z_sample)
            self._raw_z = float(z_sample)
        self._raw = raw

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------
    def initialize(self, grid_dims: Sequence[int], horiz_bcs: Sequence, z_sample: float) -> None:
        """
        Build geometry, ordered node sequences and the sample distribution.

        Collective: every rank must call it. A second call is a no-op.
        """
        if self.is_initialized:
            return
        if self._raw is None:
            raise ConfigurationError("discover_connectivity() must be called before initialize()")
        imax, jmax, kmax = parse_grid_dims(grid_dims)
        bcs = normalize_bcs(horiz_bcs)
        mesh = self.mesh
        owned = mesh.owned

        if kmax is not None:
            n_mesh = sum(self.comm.allgather(int(owned.sum())))
            if n_mesh != imax * jmax * kmax:
                raise ConfigurationError(
                    f"mesh holds {n_mesh} nodes, expected imax*jmax*kmax = {imax * jmax * kmax}"
                )
            top_k = mesh.structured_index[self._raw["boundary"], 2]
            if np.any(top_k != kmax - 1):
                raise ConfigurationError(f"boundary plane: nodes found off the top layer k={kmax - 1}")

        if self._raw_z is not None and self._raw_z == float(z_sample):
            sample_layer, k_sample = self._raw["sample"], self.k_sample
        else:
            sample_layer, k_sample = self._sample_layer(z_sample)
        boundary_nodes = self._raw["boundary"]
        sample = self._build_sequence("sample", sample_layer[owned[sample_layer]], imax, jmax)
        boundary = self._build_sequence("boundary", boundary_nodes[owned[boundary_nodes]], imax, jmax)

        distribution = self._plane_distribution(sample, imax, jmax)
        self._plane_distribution(boundary, imax, jmax)

        geometry = self._derive_geometry(sample, boundary, imax, jmax, kmax, bcs)

        sequences = {"sample": sample, "boundary": boundary}
        inflow_edges = {}
        for axis, role in ((0, "x_inflow"), (1, "y_inflow")):
            if bcs[axis] != INFLOW:
                continue
            raw = self._raw[role]
            seq = self._build_sequence(role, raw[owned[raw]], imax, jmax)
            edge = geometry.inflow_edge(axis)
            found = np.sort(np.concatenate(self.comm.allgather(seq.flat_index)))
            if not np.array_equal(found, edge.flat_index):
                raise ConfigurationError(
                    f"{role} edge: found {found.size} nodes, expected {edge.flat_index.size}"
                )
            sequences[role] = seq
            inflow_edges[axis] = edge

        self.geometry = geometry
        self.sequences = sequences
        self.distribution = distribution
        self.inflow_edges = inflow_edges
        self.k_sample = k_sample
        self.is_initialized = True

    def _sample_layer(self, z_sample: float) -> Tuple[np.ndarray, int]:
        """Local nodes of the ``k`` layer closest to ``z_sample`` (agreed across ranks)."""
        mesh = self.mesh
        z = mesh.coordinates[:, 2]
        k = mesh.structured_index[:, 2]
        if mesh.n_nodes:
            dist = np.abs(z - z_sample)
            idx = int(np.argmin(dist))
            local_best = (float(dist[idx]), int(k[idx]))
        else:
            local_best = (np.inf, -1)
        _, k_sample = min(self.comm.allgather(local_best))
        if k_sample < 0:
            raise ConfigurationError("sample plane: no mesh nodes found on any rank")
        return np.flatnonzero(k == k_sample), k_sample

    def _build_sequence(self, role: str, nodes: np.ndarray, imax: int, jmax: int) -> PlaneNodeSequence:
        tags = self.mesh.structured_index[nodes]
        outside = (tags[:, 0] < 0) | (tags[:, 0] >= imax) | (tags[:, 1] < 0) | (tags[:, 1] >= jmax)
        if np.any(outside):
            bad = StructuredIndex(*(int(t) for t in tags[outside][0]))
            raise ConfigurationError(f"{role} plane: structured index {tuple(bad)} outside a {imax}x{jmax} grid")
        order = structured_order(tags)
        tags = tags[order]
        return PlaneNodeSequence(role, nodes[order], tags[:, 0] * jmax + tags[:, 1])

    def _plane_distribution(self, seq: PlaneNodeSequence, imax: int, jmax: int) -> DistributionDescriptor:
        gathered = self.comm.allgather(seq.flat_index)
        order = np.concatenate(gathered)
        total = imax * jmax
        if order.size != total:
            raise ConfigurationError(
                f"{seq.role} plane holds {order.size} nodes, expected imax*jmax = {total}"
            )
        hits = np.bincount(order, minlength=total)
        duplicated = np.flatnonzero(hits > 1)
        if duplicated.size:
            raise ConfigurationError(
                f"{seq.role} plane: structured index {divmod(int(duplicated[0]), jmax)} is duplicated"
            )
        missing = np.flatnonzero(hits == 0)
        if missing.size:
            raise ConfigurationError(
                f"{seq.role} plane: structured index {divmod(int(missing[0]), jmax)} is missing"
            )
        return DistributionDescriptor(seq.role, [g.size for g in gathered], order)

    def _derive_geometry(self, sample, boundary, imax, jmax, kmax, bcs) -> GridGeometry:
        coords = self.mesh.coordinates
        cb = coords[boundary.nodes]
        cs = coords[sample.nodes]
        if cb.shape[0]:
            local = (cb[:, 0].min(), cb[:, 0].max(), cb[:, 1].min(), cb[:, 1].max())
        else:
            local = (np.inf, -np.inf, np.inf, -np.inf)
        local += (cb[:, 2].sum(), cb.shape[0], cs[:, 2].sum(), cs.shape[0])
        stats = np.array(self.comm.allgather(local), dtype=np.float64)

        x0, y0 = stats[:, 0].min(), stats[:, 2].min()
        dx = (stats[:, 1].max() - x0) / (imax - 1)
        dy = (stats[:, 3].max() - y0) / (jmax - 1)
        if not (dx > 0.0 and dy > 0.0):
            raise ConfigurationError(f"boundary plane: degenerate horizontal spacing dx={dx}, dy={dy}")
        z_top = stats[:, 4].sum() / stats[:, 5].sum()
        z_samp = stats[:, 6].sum() / stats[:, 7].sum()

        for seq in (sample, boundary):
            self._check_spacing(seq, x0, y0, dx, dy, jmax)

        return GridGeometry.from_spacing(imax, jmax, dx, dy, z_top - z_samp, z_samp, bcs, kmax)

    def _check_spacing(self, seq, x0, y0, dx, dy, jmax) -> None:
        xy = self.mesh.coordinates[seq.nodes, :2]
        i, j = np.divmod(seq.flat_index, jmax)
        err = np.maximum(np.abs(xy[:, 0] - (x0 + i * dx)) / dx, np.abs(xy[:, 1] - (y0 + j * dy)) / dy)
        bad = np.flatnonzero(err > self.spacing_rtol)
        local = (int(bad.size), (int(i[bad[0]]), int(j[bad[0]])) if bad.size else None)
        reports = [r for r in self.comm.allgather(local) if r[0]]
        if reports:
            n_bad = sum(r[0] for r in reports)
            raise ConfigurationError(
                f"{seq.role} plane: horizontal spacing is not uniform at {n_bad} nodes "
                f"(first at (i, j) = {reports[0][1]})"
            )

    # ------------------------------------------------------------------
    # Per-step collectives
    # ------------------------------------------------------------------
    def gather_sample(self, values: np.ndarray) -> np.ndarray:
        """
        Assemble a node field on the full sampling plane, identically on all ranks.

        Parameters
        ----------
        values : np.ndarray
            Rank-local node field, indexed like the mesh partition.

        Returns
        -------
        np.ndarray
            Plane values in flat ``i*jmax + j`` order.
        """
        if not self.is_initialized:
            raise RuntimeError("catalog is not initialized")
        local = np.asarray(values)[self.sequences["sample"].nodes]
        return self.distribution.assemble(self.comm.allgather(local))


__all__ = [
    "StructuredIndex",
    "PlaneNodeSequence",
    "DistributionDescriptor",
    "StructuredIndexCatalog",
    "structured_order",
]
