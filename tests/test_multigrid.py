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
"""Tests for jax_bdim.base.multigrid."""

import logging

import jax.numpy as jnp
import numpy as np
import pytest

from jax_bdim.base import errors
from jax_bdim.base import grids
from jax_bdim.base import multigrid
from jax_bdim.base import poisson
from jax_bdim.immersion import measure

from conftest import circle


def make_solver(rng, dims=(32, 16), body=None, perdir=(), **kwargs):
  grid = grids.Grid(dims)
  if body is None:
    L, _, _ = measure.empty_fields(grid, jnp.float64, perdir)
  else:
    L, _, _, _ = measure.measure_fields(grid, body, dtype=jnp.float64,
                                        perdir=perdir)
  z = jnp.pad(jnp.asarray(rng.standard_normal(dims)), 1)
  return multigrid.MultiLevelPoisson(grid.zeros(jnp.float64), L, z, perdir,
                                     **kwargs)


def test_level_dims():
  assert multigrid.level_dims((64, 32)) == [
      (64, 32), (32, 16), (16, 8), (8, 4), (4, 2), (2, 1)]
  assert multigrid.level_dims((64, 32), maxlevels=3) == [
      (64, 32), (32, 16), (16, 8)]
  assert multigrid.level_dims((12, 8, 8)) == [(12, 8, 8), (6, 4, 4), (3, 2, 2)]


def test_too_few_levels(rng):
  with pytest.raises(errors.ConfigurationError):
    make_solver(rng, dims=(6, 6))
  with pytest.raises(errors.ConfigurationError):
    make_solver(rng, dims=(32, 32), maxlevels=2)


def test_restrict_conserves_the_sum(rng):
  b = jnp.pad(jnp.asarray(rng.standard_normal((8, 4))), 1)
  coarse = multigrid.restrict(b)
  assert coarse.shape == (6, 4)
  np.testing.assert_allclose(jnp.sum(coarse), jnp.sum(b))
  np.testing.assert_allclose(coarse[1, 1], jnp.sum(b[1:3, 1:3]))


def test_restrict_conductances():
  grid = grids.Grid((8, 8))
  L, _, _ = measure.empty_fields(grid, jnp.float64)
  coarse = multigrid.restrict_L(L)
  assert coarse[0].shape == (6, 6)
  np.testing.assert_allclose(coarse[0][2:-1, 1:-1], 1.)
  np.testing.assert_allclose(coarse[0][1], 0.)
  np.testing.assert_allclose(coarse[1][:, 1], 0.)


def test_restrict_in_three_dimensions(rng):
  b = jnp.pad(jnp.asarray(rng.standard_normal((4, 6, 8))), 1)
  coarse = multigrid.restrict(b)
  assert coarse.shape == (4, 5, 6)
  np.testing.assert_allclose(jnp.sum(coarse), jnp.sum(b))
  np.testing.assert_allclose(coarse[2, 3, 1], jnp.sum(b[3:5, 5:7, 1:3]))


def test_restrict_conductances_in_three_dimensions(rng):
  dims = (4, 6, 8)
  shape = tuple(n + 2 for n in dims)
  L = tuple(jnp.asarray(rng.uniform(size=shape)) for _ in range(3))
  coarse = multigrid.restrict_L(L)
  for i in range(3):
    fine = np.asarray(L[i])
    assert coarse[i].shape == tuple(n // 2 + 2 for n in dims)
    for index in np.ndindex(*(n // 2 for n in dims)):
      index = tuple(k + 1 for k in index)
      if index[i] == 1:
        # closed wall face
        assert float(coarse[i][index]) == 0.
        continue
      window = tuple(slice(2 * k - 1, 2 * k) if j == i else
                     slice(2 * k - 1, 2 * k + 1)
                     for j, k in enumerate(index))
      np.testing.assert_allclose(coarse[i][index], 0.5 * np.sum(fine[window]))


def test_prolongate():
  coarse = jnp.pad(jnp.arange(1., 7.).reshape(3, 2), 1)
  fine = multigrid.prolongate(coarse, (8, 6))
  np.testing.assert_array_equal(fine[1:3, 1:3], 1.)
  np.testing.assert_array_equal(fine[5:7, 3:5], 6.)
  np.testing.assert_array_equal(fine[0], 0.)


@pytest.mark.parametrize('perdir', [(), (1,)])
def test_solve_converges(rng, perdir):
  ml = make_solver(rng, perdir=perdir)
  report = ml.solve(tol=1e-8, itmx=64)
  assert report.converged
  assert report.residuals[-1] <= 1e-8
  assert ml.n == [report.iterations]


def test_solve_with_a_body(rng):
  ml = make_solver(rng, dims=(32, 32), body=circle((16., 16.), 5.))
  report = ml.solve(tol=1e-8, itmx=64)
  assert report.converged
  # solid cells are decoupled and keep a zero residual
  assert float(ml.r[16, 16]) == 0.


def test_resolve_is_idempotent(rng):
  ml = make_solver(rng)
  ml.solve(tol=1e-6, itmx=64)
  x = ml.x
  report = ml.solve(tol=1e-6, itmx=64)
  assert report.iterations == 0
  assert float(jnp.max(jnp.abs(ml.x - x))) < 1e-6


def test_iteration_cap_warns(rng, caplog):
  ml = make_solver(rng)
  with pytest.warns(errors.ConvergenceWarning):
    report = ml.solve(tol=1e-12, itmx=0)
  assert not report.converged
  assert report.iterations == 0
  assert any(r.levelname == 'WARNING' for r in caplog.records)


def test_residual_log(rng, caplog):
  ml = make_solver(rng)
  with caplog.at_level(logging.INFO, logger='jax_bdim.residuals'):
    report = ml.solve(tol=1e-8, itmx=64, log=True)
  records = [r for r in caplog.records if r.name == 'jax_bdim.residuals']
  assert len(records) == report.iterations
  solve, cycle, residual = records[-1].getMessage().split(',')
  assert (int(solve), int(cycle)) == (0, report.iterations)
  np.testing.assert_allclose(float(residual), report.residuals[-1], rtol=1e-5)


def test_update_with_new_conductances(rng):
  ml = make_solver(rng, dims=(32, 32))
  grid = grids.Grid((32, 32))
  L, _, _, _ = measure.measure_fields(grid, circle((12., 20.), 4.),
                                      dtype=jnp.float64)
  ml.update(L)
  np.testing.assert_array_equal(ml.L[0], L[0])
  expected = multigrid.restrict_L(L)
  np.testing.assert_allclose(ml.levels[1].L[0], expected[0])
  np.testing.assert_allclose(ml.levels[1].D,
                             poisson.set_diag(ml.levels[1]).D)
  assert ml.solve(tol=1e-8, itmx=64).converged


@pytest.mark.parametrize('strategy', ['sequential', 'compiled'])
def test_strategies_agree(rng, strategy):
  seed = rng.integers(1 << 30)
  expected = make_solver(np.random.default_rng(seed), strategy='vectorized')
  actual = make_solver(np.random.default_rng(seed), strategy=strategy)
  expected.solve(tol=1e-8, itmx=64)
  actual.solve(tol=1e-8, itmx=64)
  interior = grids.inside(2)
  a, e = actual.x[interior], expected.x[interior]
  np.testing.assert_allclose(a - jnp.mean(a), e - jnp.mean(e), atol=1e-5)
