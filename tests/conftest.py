"""Pytest configuration and fixtures for the open-top boundary condition tests."""

import os
import sys
import threading
from pathlib import Path

import numpy as np
import pytest

os.environ.setdefault("MPLBACKEND", "Agg")

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from abltop import GridGeometry, PotentialFlowSolver, TransformPlanCache  # noqa: E402

ALL_BCS = [
    ("periodic", "periodic"),
    ("inflow", "periodic"),
    ("periodic", "inflow"),
    ("inflow", "inflow"),
]


class _SharedSlots:
    def __init__(self, size):
        self.size = size
        self.slots = [None] * size
        self.barrier = threading.Barrier(size)


class ThreadComm:
    """Communicator for ranks running as threads of one process."""

    def __init__(self, shared, rank):
        self._shared = shared
        self._rank = rank

    def Get_rank(self):
        return self._rank

    def Get_size(self):
        return self._shared.size

    def allgather(self, obj):
        shared = self._shared
        shared.slots[self._rank] = obj
        shared.barrier.wait()
        result = list(shared.slots)
        shared.barrier.wait()
        return result


def run_on_ranks(n_ranks, target, timeout=60.0):
    """Call ``target(comm)`` on ``n_ranks`` threads and return the per-rank results."""
    shared = _SharedSlots(n_ranks)
    results = [None] * n_ranks
    errors = []

    def worker(rank):
        try:
            results[rank] = target(ThreadComm(shared, rank))
        except BaseException as exc:  # re-raised in the calling thread
            errors.append(exc)
            shared.barrier.abort()

    threads = [threading.Thread(target=worker, args=(r,)) for r in range(n_ranks)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout)
    if errors:
        raise errors[0]
    return results


@pytest.fixture
def run_ranks():
    return run_on_ranks


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture(params=ALL_BCS, ids=lambda bcs: "-".join(bcs))
def bcs(request):
    return request.param


@pytest.fixture
def make_geometry():
    def _make(bcs=("periodic", "periodic"), imax=16, jmax=12, dx=1.0, dy=2.0, deltaZ=3.0):
        return GridGeometry.from_spacing(imax, jmax, dx, dy, deltaZ=deltaZ, z_sample=10.0, horiz_bcs=bcs)

    return _make


@pytest.fixture
def make_solver(make_geometry):
    caches = []

    def _make(bcs=("periodic", "periodic"), **kwargs):
        geometry = make_geometry(bcs, **kwargs)
        plans = TransformPlanCache(geometry, planner_effort="FFTW_ESTIMATE")
        caches.append(plans)
        return PotentialFlowSolver(geometry, plans)

    yield _make
    for plans in caches:
        plans.release()
