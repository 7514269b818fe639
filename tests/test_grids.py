# Copyright 2021 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Tests for jax_bdim.base.grids and jax_bdim.base.execution."""

import jax.numpy as jnp
import numpy as np
import pytest

from jax_bdim.base import errors
from jax_bdim.base import execution
from jax_bdim.base import grids


def test_grid_shape_and_offsets():
  grid = grids.Grid((8, 4))
  assert grid.shape == (10, 6)
  assert grid.ndim == 2
  assert grid.cell_faces == ((0.0, 0.5), (0.5, 0.0))
  np.testing.assert_allclose(grid.loc(None, (1, 1)), [0.5, 0.5])
  np.testing.assert_allclose(grid.loc(0, (1, 1)), [0.0, 0.5])
  np.testing.assert_allclose(grid.loc(1, (3, 2)), [2.5, 1.0])


def test_points_match_loc():
  grid = grids.Grid((4, 6, 2))
  points = grid.points(2, jnp.float64)
  assert points.shape == (6, 8, 4, 3)
  np.testing.assert_allclose(points[2, 3, 1], grid.loc(2, (2, 3, 1)))


@pytest.mark.parametrize('dims', [(4,), (2, 2, 2, 2), (4, 0), (4.5, 4)])
def test_invalid_grid(dims):
  with pytest.raises(errors.ConfigurationError):
    grids.Grid(dims)


def test_configuration_error_is_value_error():
  with pytest.raises(ValueError):
    grids.Grid((0, 4))


def test_inside_u_excludes_wall_face():
  a = jnp.zeros((6, 6))
  mask = grids.face_mask(a.shape, 0)
  assert not bool(mask[1, 3])
  assert bool(mask[2, 3])
  assert not bool(mask[5, 3])
  periodic = grids.face_mask(a.shape, 0, perdir=(0,))
  assert bool(periodic[1, 3])


def test_shift_windows():
  a = jnp.arange(36.).reshape(6, 6)
  np.testing.assert_array_equal(grids.shift(a, 0, 0), a[1:-1, 1:-1])
  np.testing.assert_array_equal(grids.shift(a, 1, 0), a[2:, 1:-1])
  np.testing.assert_array_equal(grids.shift(a, -1, 1), a[1:-1, :-2])


def test_apply_initial_condition(dtype):
  grid = grids.Grid((4, 4))
  u = grids.apply(lambda i, x: x[1] if i == 0 else 2 * x[0], grid, dtype)
  np.testing.assert_allclose(u[0][3, 2], grid.loc(0, (3, 2))[1])
  np.testing.assert_allclose(u[1][3, 2], 2 * grid.loc(1, (3, 2))[0])


@pytest.mark.parametrize('name', ['sequential', 'vectorized', 'compiled'])
def test_strategies_agree(name, dtype):
  grid = grids.Grid((4, 8))
  fn = lambda x: (jnp.sin(x[0]) * x[1], x * 2)
  expected = execution.map_points(fn, grid.points(0, dtype), execution.VECTORIZED)
  actual = execution.map_points(fn, grid.points(0, dtype), name)
  for e, a in zip(expected, actual):
    assert a.shape == e.shape
    np.testing.assert_allclose(a, e, rtol=1e-12)


def test_unknown_strategy():
  with pytest.raises(errors.ConfigurationError):
    execution.get_strategy('threaded')
  assert execution.get_strategy(None) is execution.VECTORIZED


def test_compiled_cache_reuses_function():
  strategy = execution.Compiled()
  f = lambda a: a + 1
  assert strategy.compile(f) is strategy.compile(f)
  np.testing.assert_array_equal(strategy.compile(f)(jnp.zeros(3)), jnp.ones(3))


def test_interp_linear_fields():
  grid = grids.Grid((8, 6))
  x, y = grid.mesh()
  p = x + 2 * y
  point = jnp.array([2.3, 3.7])
  np.testing.assert_allclose(grids.interp(point, p), 2.3 + 2 * 3.7)
  # each velocity component lives on its own faces
  u = tuple(grid.mesh(grid.offset(i))[i] for i in range(2))
  np.testing.assert_allclose(grids.interp(point, u), point)


def test_interp_nearest_and_outside():
  grid = grids.Grid((4, 4))
  x, y = grid.mesh()
  p = x * y
  np.testing.assert_allclose(grids.interp(jnp.array([1.4, 2.6]), p, order=0),
                             1.5 * 2.5)
  # beyond the ghost cells the nearest ghost value is used
  np.testing.assert_allclose(grids.interp(jnp.array([100., 0.5]), p),
                             p[-1, 1])
