"""
Communicator used when the mesh lives on a single process.

The algorithm only needs the lowercase collective API of ``mpi4py``
(``Get_rank``, ``Get_size``, ``allgather``), so an ``mpi4py.MPI.Comm`` can be
passed wherever a communicator is expected.
"""

from __future__ import annotations

from typing import Any, List


class SerialCommunicator:
    """Single-rank communicator with mpi4py-compatible method names."""

    def Get_rank(self) -> int:
        return 0

    def Get_size(self) -> int:
        return 1

    def allgather(self, obj: Any) -> List[Any]:
        return [obj]


def default_comm():
    return SerialCommunicator()


__all__ = ["SerialCommunicator", "default_comm"]
