"""End-to-end tests of the boundary algorithm on tagged box meshes."""

import numpy as np
import pytest

from abltop import (
    ABLTopBoundaryAlgorithm,
    ABLTopConfig,
    BoundarySolution,
    ConfigurationError,
    structured_box_mesh,
)


def fill_velocity(mesh):
    """Smooth velocity defined from the structured tags, identical on every rank."""
    i, j, k = mesh.structured_index.T
    vel = mesh.field("velocity")
    vel[:, 0] = 5.0 + 0.3 * np.sin(0.9 * i)
    vel[:, 1] = -1.0 + 0.2 * np.cos(1.1 * j)
    vel[:, 2] = np.sin(0.7 * i + 0.3 * j) + 0.1 * k
    return mesh


def boundary_values(mesh):
    """Owned top-node velocity keyed by (i, j)."""
    top = mesh.part_nodes("top")
    top = top[mesh.owned[top]]
    tags = mesh.structured_index[top]
    bc = mesh.field("velocity_bc")[top]
    return {(int(i), int(j)): bc[n] for n, (i, j, _) in enumerate(tags)}


def config(bcs=("periodic", "periodic"), grid_dims=(9, 6, 4), **kwargs):
    kwargs.setdefault("planner_effort", "FFTW_ESTIMATE")
    return ABLTopConfig(grid_dims=grid_dims, z_sample=2.0, horiz_bcs=bcs, **kwargs)


class TestConfig:
    def test_from_mapping_with_deck_keys(self):
        cfg = ABLTopConfig.from_mapping(
            {"grid_dimensions": [8, 6, 4], "horizontal_bcs": [1, 0], "z_sample": "2.5", "verbose": True}
        )
        assert cfg.grid_dims == (8, 6, 4)
        assert cfg.horiz_bcs == ("inflow", "periodic")
        assert cfg.z_sample == 2.5
        assert cfg.verbose

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError, match="unknown ABL top option 'lid_height'"):
            ABLTopConfig.from_mapping({"grid_dims": (8, 6), "z_sample": 1.0, "lid_height": 3.0})

    def test_missing_option(self):
        with pytest.raises(ConfigurationError, match="'z_sample' is required"):
            ABLTopConfig.from_mapping({"grid_dimensions": (8, 6)})

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"grid_dims": (8,)},
            {"horiz_bcs": ("periodic", "wall")},
            {"spacing_rtol": 0.0},
        ],
    )
    def test_invalid_values(self, kwargs):
        options = {"grid_dims": (8, 6), "z_sample": 1.0}
        options.update(kwargs)
        with pytest.raises(ConfigurationError):
            ABLTopConfig(**options)


class TestExecute:
    def test_small_periodic_mesh(self):
        mesh = structured_box_mesh(4, 4, 3)[0]
        i = mesh.structured_index[:, 0]
        vel = mesh.field("velocity")
        vel[:, 0] = 2.0
        vel[:, 2] = np.cos(np.pi * i / 2)

        cfg = ABLTopConfig(grid_dims=(4, 4, 3), z_sample=1.0, planner_effort="FFTW_ESTIMATE")
        with ABLTopBoundaryAlgorithm(mesh, "top", cfg) as algorithm:
            solution = algorithm.execute()

        e = np.exp(-np.pi / 2)
        assert solution.mean_velocity == pytest.approx((2.0, 0.0))
        assert algorithm.geometry.deltaZ == pytest.approx(1.0)
        for (ti, _), (u, v, w) in boundary_values(mesh).items():
            assert u == pytest.approx(2.0 + e * np.sin(np.pi * ti / 2))
            assert v == pytest.approx(0.0, abs=1e-12)
            assert w == pytest.approx(e * np.cos(np.pi * ti / 2), abs=1e-12)
        assert solution.u.mean() == pytest.approx(2.0)

    def test_writes_only_boundary_nodes(self, bcs):
        mesh = fill_velocity(structured_box_mesh(9, 6, 4)[0])
        with ABLTopBoundaryAlgorithm(mesh, "top", config(bcs)) as algorithm:
            solution = algorithm.execute()
        bc = mesh.field("velocity_bc")
        top = mesh.part_nodes("top")
        interior = np.setdiff1d(np.arange(mesh.n_nodes), top)
        assert np.all(bc[interior] == 0.0)
        values = boundary_values(mesh)
        assert len(values) == 54
        for (i, j), (u, v, w) in values.items():
            assert (u, v, w) == pytest.approx((solution.u[i, j], solution.v[i, j], solution.w[i, j]))

    def test_initialize_is_idempotent(self):
        mesh = fill_velocity(structured_box_mesh(9, 6, 4)[0])
        algorithm = ABLTopBoundaryAlgorithm(mesh, "top", config(("inflow", "periodic")))
        algorithm.initialize()
        plans, geometry, n_plans = algorithm.plans, algorithm.geometry, algorithm.plans.n_plans
        algorithm.initialize()
        algorithm.execute()
        algorithm.execute()
        assert algorithm.plans is plans
        assert algorithm.geometry is geometry
        assert algorithm.plans.n_plans == n_plans
        assert algorithm.n_steps == 2
        assert algorithm.last_solution.step == 2
        algorithm.close()

    def test_explicit_discovery_then_execute(self):
        mesh = fill_velocity(structured_box_mesh(9, 6, 4)[0])
        algorithm = ABLTopBoundaryAlgorithm(mesh, "top", config())
        algorithm.discover_connectivity()
        assert algorithm.catalog.k_sample == 2
        assert not algorithm.is_initialized
        algorithm.execute()
        assert algorithm.is_initialized
        algorithm.close()

    def test_repeated_steps_follow_the_sample(self):
        mesh = fill_velocity(structured_box_mesh(9, 6, 4)[0])
        with ABLTopBoundaryAlgorithm(mesh, "top", config()) as algorithm:
            first = algorithm.execute()
            mesh.field("velocity")[:, 2] *= 2.0
            second = algorithm.execute()
        np.testing.assert_allclose(second.w, 2.0 * first.w, atol=1e-12)

    def test_close(self):
        mesh = fill_velocity(structured_box_mesh(9, 6, 4)[0])
        algorithm = ABLTopBoundaryAlgorithm(mesh, "top", config())
        algorithm.execute()
        algorithm.close()
        algorithm.close()
        assert algorithm.plans.released
        with pytest.raises(RuntimeError, match="closed"):
            algorithm.execute()

    def test_close_before_initialize(self):
        mesh = fill_velocity(structured_box_mesh(9, 6, 4)[0])
        algorithm = ABLTopBoundaryAlgorithm(mesh, "top", config())
        algorithm.close()
        with pytest.raises(RuntimeError, match="closed"):
            algorithm.initialize()

    def test_missing_bc_field(self):
        mesh = structured_box_mesh(9, 6, 4)[0]
        del mesh.fields["velocity_bc"]
        algorithm = ABLTopBoundaryAlgorithm(mesh, "top", config())
        with pytest.raises(ConfigurationError, match="'velocity_bc' is not registered"):
            algorithm.execute()

    def test_custom_field_names(self):
        mesh = structured_box_mesh(9, 6, 4)[0]
        mesh.declare_field("u_avg")[:, 0] = 3.0
        mesh.declare_field("top_bc")
        cfg = config(velocity_field="u_avg", bc_velocity_field="top_bc")
        with ABLTopBoundaryAlgorithm(mesh, "top", cfg) as algorithm:
            algorithm.execute()
        top = mesh.part_nodes("top")
        np.testing.assert_allclose(mesh.field("top_bc")[top, 0], 3.0)
        assert np.all(mesh.field("velocity_bc") == 0.0)

    def test_verbose_report(self, capsys):
        mesh = fill_velocity(structured_box_mesh(9, 6, 4)[0])
        with ABLTopBoundaryAlgorithm(mesh, "top", config(verbose=True)) as algorithm:
            algorithm.execute()
        out = capsys.readouterr().out
        assert "ABL top BC: 9x6 periodic-periodic grid" in out
        assert "Step 1:" in out

    def test_quiet_by_default(self, capsys):
        mesh = fill_velocity(structured_box_mesh(9, 6, 4)[0])
        with ABLTopBoundaryAlgorithm(mesh, "top", config()) as algorithm:
            algorithm.execute()
        assert capsys.readouterr().out == ""


@pytest.mark.parametrize("n_ranks", [2, 3])
def test_partitioned_run_matches_serial(bcs, n_ranks, run_ranks):
    imax, jmax, kmax = 9, 6, 4

    def run(comm=None):
        size = 1 if comm is None else comm.Get_size()
        rank = 0 if comm is None else comm.Get_rank()
        mesh = fill_velocity(structured_box_mesh(imax, jmax, kmax, n_ranks=size)[rank])
        with ABLTopBoundaryAlgorithm(mesh, "top", config(bcs), comm=comm) as algorithm:
            solution = algorithm.execute()
        return solution, boundary_values(mesh)

    serial_solution, serial_values = run()
    results = run_ranks(n_ranks, run)

    written = {}
    for solution, values in results:
        for name in ("u", "v", "w"):
            np.testing.assert_allclose(getattr(solution, name), getattr(serial_solution, name), atol=1e-12)
        assert not set(written) & set(values)
        written.update(values)
    assert set(written) == set(serial_values)
    for key, value in written.items():
        np.testing.assert_allclose(value, serial_values[key], atol=1e-12)


def test_net_outflow_vanishes_for_periodic_plane():
    mesh = fill_velocity(structured_box_mesh(9, 6, 4)[0])
    with ABLTopBoundaryAlgorithm(mesh, "top", config()) as algorithm:
        solution = algorithm.execute()
        assert isinstance(solution, BoundarySolution)
        assert solution.net_outflow(algorithm.geometry) == pytest.approx(0.0, abs=1e-10)
