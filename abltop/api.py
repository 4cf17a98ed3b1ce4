"""
Open-top boundary condition driver for structured ABL meshes.

``ABLTopBoundaryAlgorithm`` ties together the structured index catalog, the
transform plan cache, the potential-flow solver and the boundary writer. The
surrounding flow solver calls ``execute()`` once per timestep; the first call
initializes everything that depends only on the (static) mesh.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np

from .connectivity import StructuredIndexCatalog
from .errors import ConfigurationError
from .fft import TransformPlanCache
from .grid import PERIODIC, GridGeometry, normalize_bcs, parse_grid_dims
from .mesh import MeshPartition
from .potential import PotentialFlowSolver
from .writer import BoundaryWriter

# Input-deck key -> config attribute.
_DECK_KEYS = {
    "grid_dimensions": "grid_dims",
    "horizontal_bcs": "horiz_bcs",
    "z_sample": "z_sample",
}


@dataclass
class ABLTopConfig:
    """
    Configuration of the open-top boundary condition.

    Parameters
    ----------
    grid_dims : sequence of int
        ``(imax, jmax)`` or ``(imax, jmax, kmax)`` node counts.
    z_sample : float
        Elevation of the sampling plane; the mesh layer nearest to it is used.
    horiz_bcs : sequence
        Horizontal boundary type in x and y: ``'periodic'``/``'inflow'`` or ``0``/``1``.
    velocity_field, bc_velocity_field : str
        Names of the node velocity field and the boundary velocity field.
    spacing_rtol : float
        Tolerance on horizontal spacing uniformity, relative to the spacing.
    fft_threads : int, optional
        FFTW threads per plan.
    planner_effort : str, optional
        FFTW planner flag, e.g. ``'FFTW_ESTIMATE'`` or ``'FFTW_MEASURE'``.
    verbose : bool
        Print an initialization summary and per-step diagnostics on rank 0.
    """

    grid_dims: Sequence[int]
    z_sample: float
    horiz_bcs: Sequence = (PERIODIC, PERIODIC)
    velocity_field: str = "velocity"
    bc_velocity_field: str = "velocity_bc"
    spacing_rtol: float = 1e-6
    fft_threads: Optional[int] = None
    planner_effort: Optional[str] = None
    verbose: bool = False

    def __post_init__(self) -> None:
        imax, jmax, kmax = parse_grid_dims(self.grid_dims)
        self.grid_dims = (imax, jmax) if kmax is None else (imax, jmax, kmax)
        self.horiz_bcs = normalize_bcs(self.horiz_bcs)
        self.z_sample = float(self.z_sample)
        if not self.spacing_rtol > 0.0:
            raise ConfigurationError("spacing_rtol must be positive")

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "ABLTopConfig":
        """
        Build a config from input-deck style options.

        Accepts the deck keys ``grid_dimensions``, ``horizontal_bcs`` and
        ``z_sample`` as well as any attribute name of this class.
        """
        names = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in options.items():
            name = _DECK_KEYS.get(key, key)
            if name not in names:
                raise ConfigurationError(f"unknown ABL top option {key!r}")
            kwargs[name] = value
        for required in ("grid_dims", "z_sample"):
            if required not in kwargs:
                raise ConfigurationError(f"ABL top option {required!r} is required")
        return cls(**kwargs)


@dataclass
class BoundarySolution:
    """Top-boundary velocity of one step, on the full ``(imax, jmax)`` plane."""

    u: np.ndarray
    v: np.ndarray
    w: np.ndarray
    mean_velocity: Tuple[float, float]
    step: int

    def net_outflow(self, geometry: GridGeometry) -> float:
        """Volume flux through the top boundary, node values times cell area."""
        return float(self.w.sum() * geometry.cell_area)


class ABLTopBoundaryAlgorithm:
    """
    Compute the open-top boundary velocity from the sampling plane each step.

    Parameters
    ----------
    mesh : MeshPartition
        Rank-local mesh and field storage.
    part : str
        Name of the top boundary part.
    config : ABLTopConfig
        Grid and boundary configuration.
    comm : communicator, optional
        mpi4py-style communicator; single process when omitted.
    """

    def __init__(self, mesh: MeshPartition, part: str, config: ABLTopConfig, comm=None):
        self.config = config
        self.catalog = StructuredIndexCatalog(mesh, part, comm, spacing_rtol=config.spacing_rtol)
        self.plans: Optional[TransformPlanCache] = None
        self.solver: Optional[PotentialFlowSolver] = None
        self.writer: Optional[BoundaryWriter] = None
        self.last_solution: Optional[BoundarySolution] = None
        self.n_steps = 0
        self._closed = False

    @property
    def comm(self):
        return self.catalog.comm

    @property
    def geometry(self) -> Optional[GridGeometry]:
        return self.catalog.geometry

    @property
    def is_initialized(self) -> bool:
        return self.solver is not None

    def _report(self, message: str) -> None:
        if self.config.verbose and self.comm.Get_rank() == 0:
            print(message)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def discover_connectivity(self) -> None:
        self.catalog.discover_connectivity(self.config.z_sample)

    def initialize(self) -> None:
        """Build geometry, node orderings and FFT plans. No-op once done."""
        if self.is_initialized:
            return
        if self._closed:
            raise RuntimeError("algorithm has been closed")
        cfg = self.config
        if not self.catalog.is_discovered:
            self.catalog.discover_connectivity(cfg.z_sample)
        self.catalog.initialize(cfg.grid_dims, cfg.horiz_bcs, cfg.z_sample)

        mesh = self.catalog.mesh
        mesh.field(cfg.velocity_field)
        mesh.field(cfg.bc_velocity_field)

        geometry = self.catalog.geometry
        self.plans = TransformPlanCache(geometry, threads=cfg.fft_threads, planner_effort=cfg.planner_effort)
        self.solver = PotentialFlowSolver(geometry, self.plans, self.catalog.inflow_edges)
        self.writer = BoundaryWriter(mesh, self.catalog.sequences["boundary"], cfg.bc_velocity_field)

        self._report(
            f"ABL top BC: {geometry.imax}x{geometry.jmax} {geometry.variant} grid, "
            f"deltaZ={geometry.deltaZ:.4g}, sample layer k={self.catalog.k_sample}, "
            f"{self.plans.n_plans} FFTW plans"
        )

    # ------------------------------------------------------------------
    # Per-step work
    # ------------------------------------------------------------------
    def execute(self) -> BoundarySolution:
        """Gather the sampling plane, solve, and write the boundary velocity (collective)."""
        if self._closed:
            raise RuntimeError("algorithm has been closed")
        self.initialize()
        cfg = self.config
        geometry = self.geometry

        plane = self.catalog.gather_sample(self.catalog.mesh.field(cfg.velocity_field))
        mean = plane[:, :2].mean(axis=0)
        u, v, w = self.solver.solve(plane[:, 2], mean)
        self.writer.write(u, v, w)

        self.n_steps += 1
        solution = BoundarySolution(
            u=u.reshape(geometry.shape),
            v=v.reshape(geometry.shape),
            w=w.reshape(geometry.shape),
            mean_velocity=(float(mean[0]), float(mean[1])),
            step=self.n_steps,
        )
        self.last_solution = solution
        self._report(
            f"  Step {self.n_steps}: U=({mean[0]:+.3e}, {mean[1]:+.3e}), "
            f"max|w_top|={np.max(np.abs(w)):.3e}"
        )
        return solution

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Release the FFT plans. Safe to call more than once."""
        if self.plans is not None:
            self.plans.release()
        self._closed = True

    def __enter__(self) -> "ABLTopBoundaryAlgorithm":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


__all__ = ["ABLTopConfig", "ABLTopBoundaryAlgorithm", "BoundarySolution"]
