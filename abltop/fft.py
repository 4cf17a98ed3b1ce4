"""
FFTW transform plans for the sampling and boundary planes.

Plans are built once per basis combination with ``pyfftw.FFTW`` and then only
executed. Planning is the expensive part (``FFTW_MEASURE`` times candidate
algorithms), so the cache is filled at initialization and reused for every
timestep of the run.
"""

from __future__ import annotations

import os
import threading
from typing import Dict, Iterator, Optional, Tuple

import numpy as np
import pyfftw

from .grid import COSINE, SINE, AxisBasis, GridGeometry

FFTW_THREADS = int(os.environ.get("FFTW_THREADS", "1"))
FFTW_PLANNER_EFFORT = os.environ.get("FFTW_PLANNER_EFFORT", "FFTW_MEASURE")

_R2R_KINDS = {SINE: "FFTW_RODFT00", COSINE: "FFTW_REDFT00"}

# FFTW planning and plan destruction are not thread safe.
_PLAN_LOCK = threading.Lock()


def set_fftw_threads(n: int) -> None:
    """
    Update the default number of threads given to newly built plans.

    Parameters
    ----------
    n : int
        Desired number of threads (>=1). Existing plans keep their setting.
    """
    global FFTW_THREADS
    FFTW_THREADS = max(1, int(n))


def _execute(plan: pyfftw.FFTW, data: np.ndarray) -> np.ndarray:
    plan.input_array[...] = data
    plan.execute()
    return plan.output_array.copy()


class PlaneTransform:
    """
    Forward/inverse separable transform over one plane basis.

    Real-to-real axes (DST-I / DCT-I) share one plan for both directions since
    both transforms are their own inverse up to scale. Fourier axes use a
    real-to-complex plan forward and a complex-to-real plan backward.
    """

    def __init__(self, bases: Tuple[AxisBasis, AxisBasis], *, threads: int, planner_effort: str):
        self.bases = bases
        self.shape = tuple(b.size for b in bases)
        self.coef_shape = tuple(b.n_coef for b in bases)
        self.window = tuple(b.window for b in bases)
        self.n_plans = 0

        real_axes = tuple(a for a, b in enumerate(bases) if not b.is_fourier)
        fourier_axes = tuple(a for a, b in enumerate(bases) if b.is_fourier)
        flags = (planner_effort,)

        self._r2r: Optional[pyfftw.FFTW] = None
        self._forward: Optional[pyfftw.FFTW] = None
        self._backward: Optional[pyfftw.FFTW] = None

        with _PLAN_LOCK:
            if real_axes:
                self._r2r = pyfftw.FFTW(
                    pyfftw.empty_aligned(self.shape, dtype="float64"),
                    pyfftw.empty_aligned(self.shape, dtype="float64"),
                    axes=real_axes,
                    direction=[_R2R_KINDS[bases[a].kind] for a in real_axes],
                    flags=flags,
                    threads=threads,
                )
                self.n_plans += 1
            if fourier_axes:
                self._forward = pyfftw.FFTW(
                    pyfftw.empty_aligned(self.shape, dtype="float64"),
                    pyfftw.empty_aligned(self.coef_shape, dtype="complex128"),
                    axes=fourier_axes,
                    direction="FFTW_FORWARD",
                    flags=flags,
                    threads=threads,
                )
                self._backward = pyfftw.FFTW(
                    pyfftw.empty_aligned(self.coef_shape, dtype="complex128"),
                    pyfftw.empty_aligned(self.shape, dtype="float64"),
                    axes=fourier_axes,
                    direction="FFTW_BACKWARD",
                    flags=flags,
                    threads=threads,
                )
                self.n_plans += 2

        sx, sy = (b.analysis for b in bases)
        self._analysis = np.outer(sx, sy)
        sx, sy = (b.synthesis for b in bases)
        self._synthesis = np.outer(sx, sy)
        self._released = False

    @property
    def is_complex(self) -> bool:
        return self._forward is not None

    def _check_live(self) -> None:
        if self._released:
            raise RuntimeError("transform plans have been released")

    def forward(self, field: np.ndarray) -> np.ndarray:
        """Physical values (``self.shape``) -> amplitude coefficients (``self.coef_shape``)."""
        self._check_live()
        data = np.asarray(field, dtype=np.float64)
        if data.shape != self.shape:
            raise ValueError(f"expected array of shape {self.shape}, got {data.shape}")
        if self._r2r is not None:
            data = _execute(self._r2r, data)
        if self._forward is not None:
            data = _execute(self._forward, data)
        return data * self._analysis

    def inverse(self, coef: np.ndarray) -> np.ndarray:
        """Amplitude coefficients -> physical values."""
        self._check_live()
        coef = np.asarray(coef)
        if coef.shape != self.coef_shape:
            raise ValueError(f"expected coefficients of shape {self.coef_shape}, got {coef.shape}")
        data = coef * self._synthesis
        if self._backward is not None:
            data = _execute(self._backward, data)
        else:
            data = data.real
        if self._r2r is not None:
            data = _execute(self._r2r, data)
        return data

    def release(self) -> None:
        with _PLAN_LOCK:
            self._r2r = self._forward = self._backward = None
        self._released = True


class TransformPlanCache:
    """
    Owns every transform plan needed for one grid and boundary combination.

    Parameters
    ----------
    geometry : GridGeometry
        Plane sizes and horizontal boundary types.
    threads : int, optional
        FFTW threads per plan (defaults to ``FFTW_THREADS``).
    planner_effort : str, optional
        FFTW planner flag (defaults to ``FFTW_PLANNER_EFFORT``).
    """

    def __init__(
        self,
        geometry: GridGeometry,
        *,
        threads: Optional[int] = None,
        planner_effort: Optional[str] = None,
    ):
        self.geometry = geometry
        self.key = geometry.horiz_bcs
        self.threads = FFTW_THREADS if threads is None else max(1, int(threads))
        self.planner_effort = planner_effort or FFTW_PLANNER_EFFORT
        self._transforms: Dict[Tuple[AxisBasis, AxisBasis], PlaneTransform] = {}
        self._by_field: Dict[str, PlaneTransform] = {}
        self._released = False

        for name, bases in geometry.field_bases().items():
            if bases not in self._transforms:
                self._transforms[bases] = PlaneTransform(
                    bases, threads=self.threads, planner_effort=self.planner_effort
                )
            self._by_field[name] = self._transforms[bases]

    @property
    def n_plans(self) -> int:
        return sum(t.n_plans for t in self._transforms.values())

    @property
    def released(self) -> bool:
        return self._released

    def __len__(self) -> int:
        return len(self._transforms)

    def __iter__(self) -> Iterator[PlaneTransform]:
        return iter(self._transforms.values())

    def transform(self, bases: Tuple[AxisBasis, AxisBasis]) -> PlaneTransform:
        if self._released:
            raise RuntimeError("transform plans have been released")
        try:
            return self._transforms[bases]
        except KeyError:
            raise KeyError(f"no cached plan for bases {bases}") from None

    def for_field(self, name: str) -> PlaneTransform:
        """Plan set for ``'w'``, ``'u'`` or ``'v'``."""
        if self._released:
            raise RuntimeError("transform plans have been released")
        return self._by_field[name]

    def release(self) -> None:
        """Drop every plan. Safe to call more than once."""
        if self._released:
            return
        for t in self._transforms.values():
            t.release()
        self._released = True

    def __enter__(self) -> "TransformPlanCache":
        return self

    def __exit__(self, *exc) -> None:
        self.release()


__all__ = [
    "FFTW_THREADS",
    "FFTW_PLANNER_EFFORT",
    "PlaneTransform",
    "TransformPlanCache",
    "set_fftw_threads",
]
