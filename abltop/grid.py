"""
Plane geometry and per-axis spectral bases shared by the plan cache and solver.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError

PERIODIC = "periodic"
INFLOW = "inflow"
HORIZONTAL_BC_TYPES = (PERIODIC, INFLOW)

# Integer codes accepted in input decks.
_BC_CODES = {0: PERIODIC, 1: INFLOW}

PERIODIC_PERIODIC = "periodic-periodic"
INFLOW_PERIODIC = "inflow-periodic"
INFLOW_INFLOW = "inflow-inflow"

FOURIER = "fourier"
HALF_FOURIER = "rfourier"
SINE = "sine"
COSINE = "cosine"
_BASIS_KINDS = (FOURIER, HALF_FOURIER, SINE, COSINE)


def normalize_bc(value) -> str:
    """Map a horizontal boundary type (name or integer code) onto its canonical name."""
    if isinstance(value, str):
        name = value.strip().lower()
        if name in HORIZONTAL_BC_TYPES:
            return name
    elif isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        if int(value) in _BC_CODES:
            return _BC_CODES[int(value)]
    raise ConfigurationError(
        f"horizontal boundary type must be one of {HORIZONTAL_BC_TYPES} (or 0/1), got {value!r}"
    )


def normalize_bcs(values: Sequence) -> Tuple[str, str]:
    values = tuple(values)
    if len(values) != 2:
        raise ConfigurationError(f"expected two horizontal boundary types (x, y), got {len(values)}")
    return normalize_bc(values[0]), normalize_bc(values[1])


def parse_grid_dims(dims: Sequence[int]) -> Tuple[int, int, Optional[int]]:
    """Validate ``(imax, jmax[, kmax])`` and return it with ``kmax`` possibly ``None``."""
    dims = tuple(dims)
    if len(dims) not in (2, 3):
        raise ConfigurationError(f"grid dimensions must be (imax, jmax[, kmax]), got {dims!r}")
    parsed = []
    for d in dims:
        if isinstance(d, bool) or not isinstance(d, (int, np.integer)) or int(d) < 2:
            raise ConfigurationError(f"grid dimensions must be integers >= 2, got {dims!r}")
        parsed.append(int(d))
    kmax = parsed[2] if len(parsed) == 3 else None
    return parsed[0], parsed[1], kmax


def _along(vec: np.ndarray, axis: int, ndim: int) -> np.ndarray:
    shape = [1] * ndim
    shape[axis] = vec.size
    return vec.reshape(shape)


@dataclass(frozen=True)
class AxisBasis:
    """
    Series expansion used along one horizontal axis of the plane.

    Coefficients are kept in amplitude units: the physical field is the plain
    sum of coefficient times basis function, so the FFTW scaling lives in
    ``analysis`` (transform output -> amplitude) and ``synthesis`` (amplitude
    -> backward transform input).

    Parameters
    ----------
    kind : str
        ``'fourier'`` (full complex axis), ``'rfourier'`` (half-spectrum axis
        of a real-to-complex transform), ``'sine'`` (DST-I over interior
        nodes, zero at both edges) or ``'cosine'`` (DCT-I over all nodes,
        zero slope at both edges).
    n_nodes : int
        Mesh nodes along the axis.
    length : float
        Period for Fourier axes, edge-to-edge span for sine/cosine axes.
    """

    kind: str
    n_nodes: int
    length: float

    def __post_init__(self) -> None:
        if self.kind not in _BASIS_KINDS:
            raise ValueError(f"kind must be one of {_BASIS_KINDS}")
        n = self.n_nodes
        if n < (3 if self.kind == SINE else 2):
            raise ConfigurationError(f"{self.kind} axis needs more nodes, got {n}")
        if not self.length > 0.0:
            raise ConfigurationError(f"axis length must be positive, got {self.length}")

        L = float(self.length)
        if self.kind == FOURIER:
            size, n_coef = n, n
            k = 2.0 * np.pi * np.fft.fftfreq(n, d=L / n)
            analysis = np.full(n_coef, 1.0 / n)
            synthesis = np.ones(n_coef)
            window = slice(None)
        elif self.kind == HALF_FOURIER:
            size, n_coef = n, n // 2 + 1
            k = 2.0 * np.pi * np.fft.rfftfreq(n, d=L / n)
            analysis = np.full(n_coef, 1.0 / n)
            synthesis = np.ones(n_coef)
            window = slice(None)
        elif self.kind == SINE:
            size, n_coef = n - 2, n - 2
            k = np.pi * np.arange(1, n - 1) / L
            analysis = np.full(n_coef, 1.0 / (n - 1))
            synthesis = np.full(n_coef, 0.5)
            window = slice(1, n - 1)
        else:
            size, n_coef = n, n
            k = np.pi * np.arange(n) / L
            analysis = np.full(n_coef, 1.0 / (n - 1))
            analysis[[0, -1]] *= 0.5
            synthesis = np.full(n_coef, 0.5)
            synthesis[[0, -1]] = 1.0
            window = slice(None)

        object.__setattr__(self, "size", size)
        object.__setattr__(self, "n_coef", n_coef)
        object.__setattr__(self, "k", k)
        object.__setattr__(self, "analysis", analysis)
        object.__setattr__(self, "synthesis", synthesis)
        object.__setattr__(self, "window", window)

    @property
    def is_fourier(self) -> bool:
        return self.kind in (FOURIER, HALF_FOURIER)

    @property
    def has_zero_mode(self) -> bool:
        return self.kind != SINE

    @property
    def nyquist(self) -> Optional[int]:
        if self.is_fourier and self.n_nodes % 2 == 0:
            return self.n_nodes // 2
        return None

    def derivative_basis(self) -> "AxisBasis":
        """Basis in which the x-derivative of a series in this basis is expanded."""
        if self.kind == SINE:
            return AxisBasis(COSINE, self.n_nodes, self.length)
        return self

    def differentiate(self, coef: np.ndarray, axis: int) -> np.ndarray:
        """
        Differentiate amplitude coefficients along ``axis``.

        Sine modes map onto the matching cosine modes (index shifted by one,
        cosine modes 0 and n-1 receive nothing). Fourier modes pick up ``i*k``
        with the Nyquist mode dropped.
        """
        k = _along(self.k, axis, coef.ndim)
        idx = [slice(None)] * coef.ndim
        if self.kind == SINE:
            shape = list(coef.shape)
            shape[axis] = self.n_nodes
            out = np.zeros(shape, dtype=coef.dtype)
            idx[axis] = self.window
            out[tuple(idx)] = k * coef
            return out
        out = 1j * k * coef
        if self.nyquist is not None:
            idx[axis] = self.nyquist
            out[tuple(idx)] = 0.0
        return out


@dataclass(frozen=True)
class GridGeometry:
    """
    Static geometry of the sampling and boundary planes.

    Parameters
    ----------
    imax, jmax : int
        Horizontal node counts.
    xL, yL : float
        Horizontal extents: the period of a periodic direction (``n*dx``) or
        the edge-to-edge span of an inflow direction (``(n-1)*dx``).
    deltaZ : float
        Vertical gap between the sampling plane and the top boundary.
    z_sample : float
        Elevation of the sampling plane.
    horiz_bcs : tuple[str, str]
        Horizontal boundary type per direction, ``'periodic'`` or ``'inflow'``.
    kmax : int, optional
        Vertical node count when known.
    """

    imax: int
    jmax: int
    xL: float
    yL: float
    deltaZ: float
    z_sample: float
    horiz_bcs: Tuple[str, str] = (PERIODIC, PERIODIC)
    kmax: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "horiz_bcs", normalize_bcs(self.horiz_bcs))
        dims = (self.imax, self.jmax) if self.kmax is None else (self.imax, self.jmax, self.kmax)
        parse_grid_dims(dims)
        for name, n, bc in (("imax", self.imax, self.horiz_bcs[0]), ("jmax", self.jmax, self.horiz_bcs[1])):
            if bc == INFLOW and n < 3:
                raise ConfigurationError(f"{name} must be >= 3 for an inflow direction, got {n}")
        if not (self.xL > 0.0 and self.yL > 0.0):
            raise ConfigurationError(f"horizontal extents must be positive, got ({self.xL}, {self.yL})")
        if not self.deltaZ > 0.0:
            raise ConfigurationError(f"sampling plane must lie below the boundary, deltaZ={self.deltaZ}")

        bx, by = self.horiz_bcs
        object.__setattr__(self, "dx", self.xL / (self.imax if bx == PERIODIC else self.imax - 1))
        object.__setattr__(self, "dy", self.yL / (self.jmax if by == PERIODIC else self.jmax - 1))

        # r2c halves the last Fourier axis, which is y unless y is an inflow axis.
        if bx == PERIODIC:
            x_basis = AxisBasis(FOURIER if by == PERIODIC else HALF_FOURIER, self.imax, self.xL)
        else:
            x_basis = AxisBasis(SINE, self.imax, self.xL)
        y_basis = AxisBasis(HALF_FOURIER if by == PERIODIC else SINE, self.jmax, self.yL)
        object.__setattr__(self, "w_bases", (x_basis, y_basis))
        object.__setattr__(
            self,
            "_field_bases",
            {
                "w": (x_basis, y_basis),
                "u": (x_basis.derivative_basis(), y_basis),
                "v": (x_basis, y_basis.derivative_basis()),
            },
        )

    @classmethod
    def from_spacing(
        cls,
        imax: int,
        jmax: int,
        dx: float,
        dy: float,
        deltaZ: float,
        z_sample: float,
        horiz_bcs: Sequence = (PERIODIC, PERIODIC),
        kmax: Optional[int] = None,
    ) -> "GridGeometry":
        bx, by = normalize_bcs(horiz_bcs)
        xL = dx * (imax if bx == PERIODIC else imax - 1)
        yL = dy * (jmax if by == PERIODIC else jmax - 1)
        return cls(imax, jmax, xL, yL, deltaZ, z_sample, (bx, by), kmax)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.imax, self.jmax)

    @property
    def n_plane(self) -> int:
        return self.imax * self.jmax

    @property
    def cell_area(self) -> float:
        return self.dx * self.dy

    @property
    def variant(self) -> str:
        n_inflow = sum(bc == INFLOW for bc in self.horiz_bcs)
        return (PERIODIC_PERIODIC, INFLOW_PERIODIC, INFLOW_INFLOW)[n_inflow]

    def field_bases(self) -> Dict[str, Tuple[AxisBasis, AxisBasis]]:
        """Bases for the vertical velocity (both planes) and the two horizontal components."""
        return dict(self._field_bases)

    def node_coordinates(self, axis: int) -> np.ndarray:
        """Node positions along ``axis`` measured from the first node."""
        n, d = (self.imax, self.dx) if axis == 0 else (self.jmax, self.dy)
        return np.arange(n) * d

    def inflow_weights(self, axis: int) -> np.ndarray:
        """
        Normalized weights along the inflow edge normal to ``axis``.

        The edge runs along the other horizontal axis: every node weighs the
        same when that axis is periodic, end nodes weigh half when it is an
        inflow axis. Weights sum to one, so a uniform edge profile is its own
        weighted mean.
        """
        if self.horiz_bcs[axis] != INFLOW:
            raise ConfigurationError(f"axis {axis} is not an inflow direction")
        other = 1 - axis
        n = self.shape[other]
        weights = np.ones(n)
        if self.horiz_bcs[other] == INFLOW:
            weights[[0, -1]] = 0.5
        return weights / weights.sum()

    def inflow_edge(self, axis: int) -> "InflowEdge":
        """Flat plane indices and weights of the upstream edge normal to ``axis``."""
        weights = self.inflow_weights(axis)
        if axis == 0:
            flat = np.arange(self.jmax)
        else:
            flat = np.arange(self.imax) * self.jmax
        return InflowEdge(axis, flat, weights)


@dataclass(frozen=True, eq=False)
class InflowEdge:
    """Upstream edge of an inflow direction (``i == 0`` for x, ``j == 0`` for y)."""

    axis: int
    flat_index: np.ndarray
    weights: np.ndarray

    def __post_init__(self) -> None:
        if self.flat_index.shape != self.weights.shape:
            raise ValueError("inflow edge indices and weights must have the same length")


__all__ = [
    "PERIODIC",
    "INFLOW",
    "HORIZONTAL_BC_TYPES",
    "PERIODIC_PERIODIC",
    "INFLOW_PERIODIC",
    "INFLOW_INFLOW",
    "FOURIER",
    "HALF_FOURIER",
    "SINE",
    "COSINE",
    "AxisBasis",
    "GridGeometry",
    "InflowEdge",
    "normalize_bc",
    "normalize_bcs",
    "parse_grid_dims",
]
