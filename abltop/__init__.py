"""
Open-top boundary condition for atmospheric boundary layer simulations on
structured meshes: potential-flow solve from a sampling plane to the top boundary.
"""

from .api import ABLTopBoundaryAlgorithm, ABLTopConfig, BoundarySolution
from .comm import SerialCommunicator
from .connectivity import (
    DistributionDescriptor,
    PlaneNodeSequence,
    StructuredIndex,
    StructuredIndexCatalog,
)
from .errors import ConfigurationError, DistributionMismatch
from .fft import PlaneTransform, TransformPlanCache, set_fftw_threads
from .grid import INFLOW, PERIODIC, AxisBasis, GridGeometry, InflowEdge
from .mesh import MeshPartition, structured_box_mesh
from .potential import PotentialFlowSolver
from .writer import BoundaryWriter

__all__ = [
    "ABLTopBoundaryAlgorithm",
    "ABLTopConfig",
    "BoundarySolution",
    "SerialCommunicator",
    "DistributionDescriptor",
    "PlaneNodeSequence",
    "StructuredIndex",
    "StructuredIndexCatalog",
    "ConfigurationError",
    "DistributionMismatch",
    "PlaneTransform",
    "TransformPlanCache",
    "set_fftw_threads",
    "INFLOW",
    "PERIODIC",
    "AxisBasis",
    "GridGeometry",
    "InflowEdge",
    "MeshPartition",
    "structured_box_mesh",
    "PotentialFlowSolver",
    "BoundaryWriter",
]
