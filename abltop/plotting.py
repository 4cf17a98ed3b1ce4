"""
Quick-look plots of sampling-plane and top-boundary fields.
"""

from __future__ import annotations

from typing import Sequence

import cmasher as cmr
import matplotlib.pyplot as plt
import numpy as np

from .grid import GridGeometry


def plot_plane_field(
    values: np.ndarray,
    geometry: GridGeometry,
    *,
    ax: plt.Axes | None = None,
    title: str | None = None,
    cmap=None,
    symmetric: bool = True,
    label: str = "",
) -> plt.Axes:
    """
    Image of a plane field indexed ``[i, j]`` with x to the right.

    ``symmetric`` centres the colour range on zero (diverging map).
    """
    field = np.asarray(values, dtype=np.float64).reshape(geometry.shape)
    if ax is None:
        _, ax = plt.subplots(figsize=(5.0, 4.2), dpi=140, constrained_layout=True)

    if symmetric:
        vmax = float(np.max(np.abs(field))) or 1.0
        vmin = -vmax
        cmap = cmap or cmr.iceburn
    else:
        vmin, vmax = float(field.min()), float(field.max())
        cmap = cmap or cmr.rainforest

    x = geometry.node_coordinates(0)
    y = geometry.node_coordinates(1)
    im = ax.imshow(
        field.T,
        origin="lower",
        extent=(x[0], x[-1], y[0], y[-1]),
        cmap=cmap,
        vmin=vmin,
        vmax=vmax,
        aspect="equal",
    )
    ax.figure.colorbar(im, ax=ax, label=label)
    ax.set_xlabel(r"$x$")
    ax.set_ylabel(r"$y$")
    if title:
        ax.set_title(title)
    return ax


def plot_boundary_solution(
    solution,
    geometry: GridGeometry,
    fname: str | None = None,
    *,
    components: Sequence[str] = ("u", "v", "w"),
) -> None:
    """
    Side-by-side images of the top-boundary velocity components.

    Horizontal components are shown relative to the mean velocity.
    """
    fig, axes = plt.subplots(1, len(components), figsize=(4.6 * len(components), 4.0), dpi=140,
                             constrained_layout=True, squeeze=False)
    means = {"u": solution.mean_velocity[0], "v": solution.mean_velocity[1], "w": 0.0}
    for ax, name in zip(axes[0], components):
        field = getattr(solution, name) - means[name]
        label = fr"${name} - \langle {name} \rangle$" if name != "w" else r"$w$"
        plot_plane_field(field, geometry, ax=ax, title=f"step {solution.step}: {name}", label=label)

    if fname:
        fig.savefig(fname, bbox_inches="tight")
        plt.close(fig)
    else:
        plt.show()


__all__ = ["plot_plane_field", "plot_boundary_solution"]
