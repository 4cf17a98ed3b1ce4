"""
Potential-flow solve between the sampling plane and the top boundary.

Between the two planes the flow is taken to be irrotational and source free,
so each horizontal Fourier/sine mode of the velocity potential behaves like
``phi_k(z) = phi_k(z_s) * exp(-|k| (z - z_s))``. With ``w = dphi/dz`` the
sampled vertical velocity fixes every non-zero mode:

    w_top = w_samp * exp(-|k| dZ)
    phi   = -w_top / |k|
    u     = dphi/dx,   v = dphi/dy

The mean mode has ``|k| = 0`` and carries no harmonic information; the top
boundary receives the supplied mean horizontal velocity and zero mean
vertical velocity there.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError
from .fft import TransformPlanCache
from .grid import INFLOW, INFLOW_INFLOW, INFLOW_PERIODIC, PERIODIC_PERIODIC, GridGeometry, InflowEdge


class PotentialFlowSolver:
    """
    Map sampling-plane vertical velocity onto top-boundary velocity.

    Along periodic axes the fields are expanded in Fourier series. Along an
    inflow axis ``w`` and the transverse velocity are expanded in sine series
    (zero at the edges, odd symmetry), and the velocity component normal to
    the inflow edge in the matching cosine series (zero slope, even symmetry),
    since differentiating ``sin(k x)`` gives ``k cos(k x)``. Sampled ``w`` on
    the inflow edges themselves is therefore not used.

    Parameters
    ----------
    geometry : GridGeometry
        Plane geometry, including the horizontal boundary types.
    plans : TransformPlanCache
        Plans built for the same geometry.
    inflow_edges : dict[int, InflowEdge], optional
        Upstream edge and weights per inflow axis; taken from ``geometry``
        when omitted.
    """

    def __init__(
        self,
        geometry: GridGeometry,
        plans: TransformPlanCache,
        inflow_edges: Optional[Dict[int, InflowEdge]] = None,
    ):
        if plans.key != geometry.horiz_bcs:
            raise ConfigurationError(
                f"plans were built for {plans.key}, grid uses {geometry.horiz_bcs}"
            )
        self.geometry = geometry
        self.plans = plans
        self.bases = geometry.field_bases()

        bx, by = self.bases["w"]
        kx, ky = np.meshgrid(bx.k, by.k, indexing="ij")
        self.k = np.sqrt(kx**2 + ky**2)
        self.decay = np.exp(-self.k * geometry.deltaZ)

        if inflow_edges is None:
            inflow_edges = {
                axis: geometry.inflow_edge(axis)
                for axis, bc in enumerate(geometry.horiz_bcs)
                if bc == INFLOW
            }
        self.inflow_edges = inflow_edges

        self._variants = {
            PERIODIC_PERIODIC: self.periodic_periodic,
            INFLOW_PERIODIC: self.inflow_periodic,
            INFLOW_INFLOW: self.inflow_inflow,
        }

    def solve(
        self, w_samp: np.ndarray, mean_velocity: Sequence[float]
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Solve for the top-boundary velocity.

        Parameters
        ----------
        w_samp : np.ndarray
            Vertical velocity on the full sampling plane, flat ``i*jmax + j``
            order or shaped ``(imax, jmax)``.
        mean_velocity : sequence of float
            Mean horizontal velocity ``(U, V)``.

        Returns
        -------
        (uBC, vBC, wBC) : tuple of np.ndarray
            Flat arrays in boundary-plane order.
        """
        return self._variants[self.geometry.variant](w_samp, mean_velocity)

    def periodic_periodic(self, w_samp, mean_velocity):
        """Both horizontal directions periodic: one 2D Fourier transform pair."""
        self._require(PERIODIC_PERIODIC)
        return self._solve(w_samp, mean_velocity)

    def inflow_periodic(self, w_samp, mean_velocity):
        """One inflow direction (x or y), the other periodic: sine/cosine times Fourier."""
        self._require(INFLOW_PERIODIC)
        return self._solve(w_samp, mean_velocity)

    def inflow_inflow(self, w_samp, mean_velocity):
        """Both horizontal directions inflow: sine/cosine transforms along both axes."""
        self._require(INFLOW_INFLOW)
        return self._solve(w_samp, mean_velocity)

    def _require(self, variant: str) -> None:
        if self.geometry.variant != variant:
            raise ConfigurationError(f"{variant} solve requested on a {self.geometry.variant} grid")

    def _solve(self, w_samp, mean_velocity):
        g = self.geometry
        U, V = (float(c) for c in mean_velocity)
        w = np.asarray(w_samp, dtype=np.float64).reshape(g.shape)

        w_plan = self.plans.for_field("w")
        w_top = w_plan.forward(w[w_plan.window]) * self.decay

        nonzero = self.k > 0.0
        phi = np.zeros_like(w_top)
        phi[nonzero] = -w_top[nonzero] / self.k[nonzero]

        bx, by = self.bases["w"]
        u_hat = bx.differentiate(phi, axis=0)
        v_hat = by.differentiate(phi, axis=1)

        u_const = self._set_mean_mode(u_hat, "u", U)
        v_const = self._set_mean_mode(v_hat, "v", V)
        if not np.all(nonzero):
            w_top[~nonzero] = 0.0

        u = self._synthesize("u", u_hat) + u_const
        v = self._synthesize("v", v_hat) + v_const
        w_bc = self._synthesize("w", w_top)

        self._correct_inflow_edges(u, v, U, V)
        return u.ravel(), v.ravel(), w_bc.ravel()

    def _set_mean_mode(self, coef: np.ndarray, name: str, value: float) -> float:
        """
        Put ``value`` in the zero mode of ``coef`` when the basis has one.

        Returns the constant still to be added after synthesis, which is the
        whole mean when a sine axis leaves the basis without a zero mode.
        """
        if all(b.has_zero_mode for b in self.bases[name]):
            coef[0, 0] = value
            return 0.0
        return value

    def _synthesize(self, name: str, coef: np.ndarray) -> np.ndarray:
        plan = self.plans.for_field(name)
        out = np.zeros(self.geometry.shape)
        out[plan.window] = plan.inverse(coef)
        return out

    def _correct_inflow_edges(self, u: np.ndarray, v: np.ndarray, U: float, V: float) -> None:
        """Shift the edge-normal velocity so its weighted edge mean is the prescribed mean."""
        for axis, edge in self.inflow_edges.items():
            comp, target = (u, U) if axis == 0 else (v, V)
            flat = comp.reshape(-1)
            flat[edge.flat_index] += target - edge.weights @ flat[edge.flat_index]


__all__ = ["PotentialFlowSolver"]
