"""
Scatter of the solved top-boundary velocity into mesh node storage.
"""

from __future__ import annotations

import weakref

import numpy as np

from .connectivity import PlaneNodeSequence
from .mesh import MeshPartition


class BoundaryWriter:
    """
    Write plane-ordered ``(u, v, w)`` into a node vector field.

    Only the nodes of ``sequence`` (the rank's owned boundary nodes) are
    touched; values are picked out of the full plane through the sequence's
    flat indices.
    """

    def __init__(self, mesh: MeshPartition, sequence: PlaneNodeSequence, field_name: str = "velocity_bc"):
        self._mesh = weakref.ref(mesh)
        self.sequence = sequence
        self.field_name = field_name

    def write(self, u_bc: np.ndarray, v_bc: np.ndarray, w_bc: np.ndarray) -> None:
        mesh = self._mesh()
        if mesh is None:
            raise ReferenceError("mesh partition no longer exists")
        target = mesh.field(self.field_name)
        nodes, flat = self.sequence.nodes, self.sequence.flat_index
        for component, values in enumerate((u_bc, v_bc, w_bc)):
            target[nodes, component] = np.asarray(values).reshape(-1)[flat]


__all__ = ["BoundaryWriter"]
