# bhgrav/tests/test_integrator.py
"""
Tests for the leapfrog integrator, seeding and body storage.

Validates:
1. Kick-drift-kick ordering with the post-drift force callback
2. Pinned body stays fixed
3. Seeded shell radii, spin and black hole option
4. BodyData locking, column views and validation
"""

import numpy as np
import pytest

from conftest import make_bodies
from gravsim.body_data import BodyData
from gravsim.integrators.leapfrog import Leapfrog
from gravsim.seeding import random_point_in_sphere, rand_range, seed_bodies


def _bd_with(bodies: np.ndarray) -> BodyData:
    bd = BodyData(bodies.shape[0])
    bd.set_bodies(bodies)
    return bd


class TestLeapfrog:
    """Numpy kick-drift-kick."""

    def test_constant_acceleration(self):
        bodies = make_bodies([[0.0, 0.0, 0.0]], velocities=[[1.0, 0.0, 0.0]])
        bodies[0, 8:11] = [0.0, -2.0, 0.0]
        bd = _bd_with(bodies)
        Leapfrog().step(bd, 0.5, lambda: None)
        out = bd.get_bodies()
        # x = v*dt + a*dt^2/2, v = v0 + a*dt
        np.testing.assert_allclose(out[0, 0:3], [0.5, -0.25, 0.0])
        np.testing.assert_allclose(out[0, 4:7], [1.0, -1.0, 0.0])

    def test_callback_sees_drifted_positions(self):
        bodies = make_bodies([[1.0, 0.0, 0.0]], velocities=[[2.0, 0.0, 0.0]])
        bd = _bd_with(bodies)
        seen = []

        def forces():
            arr = bd.get_bodies("cpu", writeable=True)
            seen.append(arr[0, 0])
            arr[0, 8] = 4.0
            bd.release_writeable()

        Leapfrog().step(bd, 0.1, forces)
        assert seen == [pytest.approx(1.2)]
        # second half kick uses the new acceleration
        assert bd.get_bodies()[0, 4] == pytest.approx(2.0 + 0.05 * 4.0)

    def test_pinned_body_untouched(self):
        bodies = make_bodies([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]], velocities=[[1.0, 1.0, 1.0], [0.0, 1.0, 0.0]])
        bodies[:, 8:11] = 1.0
        bd = _bd_with(bodies)
        Leapfrog().step(bd, 0.1, lambda: None, config={'_pinned_body': 0})
        out = bd.get_bodies()
        np.testing.assert_array_equal(out[0], bodies[0])
        assert out[1, 1] == pytest.approx(0.1 * 1.05)

    def test_lock_released_on_callback_error(self):
        bd = _bd_with(make_bodies([[0.0, 0.0, 0.0]]))

        def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            Leapfrog().step(bd, 0.1, failing)
        bd.get_bodies("cpu", writeable=True)
        bd.release_writeable()


class TestSeeding:
    """Initial distribution."""

    def test_points_in_shell(self):
        rng = np.random.default_rng(3)
        pts = random_point_in_sphere(rng, 2.0, 5.0, 2000)
        r = np.linalg.norm(pts, axis=1)
        assert r.min() >= 2.0 - 1e-12
        assert r.max() <= 5.0 + 1e-12

    def test_min_greater_than_max_raises(self):
        with pytest.raises(ValueError):
            random_point_in_sphere(np.random.default_rng(0), 3.0, 2.0, 10)

    def test_rand_range(self):
        vals = rand_range(np.random.default_rng(0), -1.0, 1.0, size=100)
        assert vals.min() >= -1.0 and vals.max() < 1.0

    def test_spin_and_mass(self):
        config = {'space_limit': 10.0, 'spawn_min_frac': 0.5, 'spin': 25.0, 'body_mass': 2.0}
        bodies = seed_bodies(500, config, np.random.default_rng(1))
        np.testing.assert_allclose(bodies[:, 4], bodies[:, 1] * 0.25)
        np.testing.assert_allclose(bodies[:, 5], -bodies[:, 0] * 0.25)
        np.testing.assert_array_equal(bodies[:, 6], 0.0)
        np.testing.assert_array_equal(bodies[:, 11], 2.0)
        r = np.linalg.norm(bodies[:, 0:3], axis=1)
        assert r.min() >= 5.0 - 1e-12 and r.max() <= 10.0 + 1e-12
        assert config['_pinned_body'] == -1

    def test_black_hole_pinned(self):
        config = {'space_limit': 10.0, 'black_hole_mass': 1000.0}
        bodies = seed_bodies(50, config, np.random.default_rng(2))
        np.testing.assert_array_equal(bodies[0, 0:3], 0.0)
        np.testing.assert_array_equal(bodies[0, 4:7], 0.0)
        assert bodies[0, 11] == 1000.0
        assert config['_pinned_body'] == 0

    def test_same_seed_same_bodies(self):
        config = {'space_limit': 5.0}
        a = seed_bodies(20, dict(config), np.random.default_rng(9))
        b = seed_bodies(20, dict(config), np.random.default_rng(9))
        np.testing.assert_array_equal(a, b)


class TestBodyData:
    """Storage semantics on the CPU."""

    def test_column_views(self):
        bd = _bd_with(make_bodies([[1.0, 2.0, 3.0]], velocities=[[4.0, 5.0, 6.0]], masses=[7.0]))
        np.testing.assert_array_equal(bd.get("positions")[0], [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(bd.get("velocities")[0], [4.0, 5.0, 6.0])
        assert bd.get("masses")[0] == 7.0

    def test_unknown_attribute(self):
        with pytest.raises(KeyError):
            BodyData(2).get("charges")

    def test_double_writeable_lock(self):
        bd = BodyData(2)
        bd.get_bodies("cpu", writeable=True)
        with pytest.raises(RuntimeError):
            bd.get_bodies("cpu", writeable=True)
        bd.release_writeable()
        bd.get_bodies("cpu", writeable=True)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            BodyData(3).set_bodies(np.zeros((2, 12)))
        with pytest.raises(TypeError):
            BodyData(1).set_bodies([[0.0] * 12])

    def test_set_bodies_copies(self):
        src = make_bodies([[1.0, 1.0, 1.0]])
        bd = _bd_with(src)
        src[0, 0] = 99.0
        assert bd.get_bodies()[0, 0] == 1.0

    def test_taichi_device_without_runtime(self):
        with pytest.raises(RuntimeError):
            BodyData(2, taichi_is_active=False).get_bodies("gpu:ti")

    def test_invalid_device(self):
        with pytest.raises(ValueError):
            BodyData(2).ensure("tpu")
