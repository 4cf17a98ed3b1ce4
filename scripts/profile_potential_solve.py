#!/usr/bin/env python3
"""
Standalone timing run for the open-top potential-flow solve.

Measures how long it takes to build the FFTW plans for each horizontal
boundary combination, and the cost of one solve once they are cached.
"""

import sys
import time
from pathlib import Path

import numpy as np

# Ensure project root is importable when invoked as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from abltop import GridGeometry, PotentialFlowSolver, TransformPlanCache, set_fftw_threads


def main() -> None:
    N = 512
    n_solves = 20
    set_fftw_threads(4)
    rng = np.random.default_rng(42)

    for bcs in (("periodic", "periodic"), ("inflow", "periodic"), ("inflow", "inflow")):
        geometry = GridGeometry.from_spacing(N, N, 10.0, 10.0, deltaZ=100.0, z_sample=900.0, horiz_bcs=bcs)

        start = time.perf_counter()
        plans = TransformPlanCache(geometry, planner_effort="FFTW_MEASURE")
        t_plan = time.perf_counter() - start

        solver = PotentialFlowSolver(geometry, plans)
        w = rng.normal(size=geometry.n_plane)
        start = time.perf_counter()
        for _ in range(n_solves):
            u, v, wt = solver.solve(w, (8.0, 2.0))
        t_solve = (time.perf_counter() - start) / n_solves
        plans.release()

        print(f"{geometry.variant:>18s}: {plans.n_plans} plans in {t_plan:.3f} s, solve {1e3 * t_solve:.2f} ms")
        print(f"{'':>18s}  u mean={u.mean():+.3e}, |w_top| max={np.abs(wt).max():.3e}")


if __name__ == "__main__":
    main()
