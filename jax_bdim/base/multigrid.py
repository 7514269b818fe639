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
"""
Geometric multigrid solver for the pressure Poisson equation.

The hierarchy holds one `poisson.Poisson` system per level, each with half
the interior cells of the previous one along every axis. Coarse conductances
are restricted from the finest level's `μ₀`, so a body is represented
consistently on every level.

One V-cycle:

1.  Restrict the fine residual down the hierarchy, each coarse level
    starting from a zero solution.
2.  From the coarsest level up: smooth the coarse level with the conjugate
    gradient smoother (longer on the coarsest level, which is cheap),
    prolongate its solution as the finer level's error, and apply it with
    `poisson.increment`.

The top level driver `MultiLevelPoisson.solve` alternates V-cycles with a
smoothing pass on the finest level until the squared residual norm drops
below the tolerance. Residuals are mean corrected by `poisson.residual`, so
the restricted right hand sides of the singular coarse problems are always
compatible.
"""

import dataclasses
import logging
from typing import List, Optional, Sequence

import jax.numpy as jnp

from jax_bdim.base import boundaries
from jax_bdim.base import errors
from jax_bdim.base import execution
from jax_bdim.base import grids
from jax_bdim.base import poisson

logger = logging.getLogger(__name__)
residual_logger = logging.getLogger('jax_bdim.residuals')

Array = grids.Array
VectorField = grids.VectorField
SolverReport = poisson.SolverReport

MIN_LEVELS = 3


def divisible(dims: Sequence[int]) -> bool:
  """Whether a level with interior `dims` can be coarsened once more."""
  return all(n % 2 == 0 and n >= 2 for n in dims)


def level_dims(dims: Sequence[int], maxlevels: int = 10) -> List[tuple]:
  """Interior dimensions of every level, finest first."""
  levels = [tuple(dims)]
  while divisible(levels[-1]) and len(levels) < maxlevels:
    levels.append(tuple(n // 2 for n in levels[-1]))
  return levels


def _blocks(a: Array) -> Array:
  """Interior of `a` reshaped so that axis `2k+1` indexes the fine pair."""
  interior = a[grids.inside(a.ndim)]
  shape = []
  for n in interior.shape:
    shape += [n // 2, 2]
  return interior.reshape(shape)


def restrict(b: Array) -> Array:
  """
  Restricts a fine residual: each coarse cell sums its `2^D` fine cells.

  The sum (rather than the mean) is the integral of the residual over the
  coarse cell, which is what the restricted conductances balance.
  """
  blocks = _blocks(b)
  coarse = jnp.sum(blocks, axis=tuple(range(1, blocks.ndim, 2)))
  return jnp.pad(coarse, 1)


def restrict_L(L: VectorField, perdir: Sequence[int] = ()) -> VectorField:
  """
  Restricts face conductances to the next coarser level.

  The lower face `i` of a coarse cell is made of the `2^(D-1)` lower `i`
  faces of its first layer of fine cells; its conductance is half their sum.
  """
  ndim = len(L)
  coarse = []
  for i, Li in enumerate(L):
    blocks = _blocks(Li)
    # take the lower fine face along i, sum the pairs along the other axes.
    lower = jnp.take(blocks, 0, axis=2 * i + 1)
    other = tuple(2 * j + 1 - (j > i) for j in range(ndim) if j != i)
    coarse.append(jnp.pad(0.5 * jnp.sum(lower, axis=other), 1))
  return boundaries.BC(tuple(coarse), (0.,) * ndim, False, perdir)


def prolongate(coarse: Array, fine_shape: Sequence[int]) -> Array:
  """Piecewise constant injection of a coarse field onto the fine interior."""
  values = coarse[grids.inside(coarse.ndim)]
  for axis in range(coarse.ndim):
    values = jnp.repeat(values, 2, axis=axis)
  return jnp.zeros(fine_shape, coarse.dtype).at[
      grids.inside(coarse.ndim)].set(values)


class MultiLevelPoisson:
  """
  A hierarchy of Poisson systems solved by V-cycles.

  Args:
    x: initial pressure guess on the finest grid.
    L: finest face conductances (`μ₀`).
    z: right hand side.
    perdir: periodic axes.
    maxlevels: maximum number of levels.
    strategy: execution strategy of the array passes.
    coarse_it: conjugate gradient iterations on the coarsest level.

  Raises:
    ConfigurationError: if the grid cannot be halved into at least three
      levels.
  """

  def __init__(
      self,
      x: Array,
      L: VectorField,
      z: Array,
      perdir: Sequence[int] = (),
      maxlevels: int = 10,
      strategy: Optional[execution.ExecutionStrategy] = None,
      coarse_it: int = 32,
  ):
    dims = tuple(n - 2 for n in x.shape)
    shapes = level_dims(dims, maxlevels)
    if len(shapes) < MIN_LEVELS:
      raise errors.ConfigurationError(
          f'grid {dims} coarsens to only {len(shapes)} multigrid level(s); '
          f'at least {MIN_LEVELS} are needed, use dimensions divisible by '
          f'{2 ** (MIN_LEVELS - 1)}')
    self.perdir = tuple(perdir)
    self.coarse_it = coarse_it
    self.strategy = execution.get_strategy(strategy)
    self._pcg = self.strategy.compile(poisson.pcg, static_argnames=('it',))
    self._residual = self.strategy.compile(poisson.residual)
    self._increment = self.strategy.compile(poisson.increment)
    self.n: List[int] = []

    self.levels = [poisson.poisson(x, L, z, self.perdir)]
    for _ in shapes[1:]:
      self.levels.append(self._coarsen(self.levels[-1]))
    logger.debug('multigrid hierarchy %s', [p.shape for p in self.levels])

  def _coarsen(self, fine: poisson.Poisson) -> poisson.Poisson:
    L = restrict_L(fine.L, self.perdir)
    zeros = jnp.zeros(L[0].shape, fine.x.dtype)
    # A coarse level may be fully isolated, e.g. a single walled cell.
    return poisson.poisson(zeros, L, zeros, self.perdir, warn=False)

  # The finest level is the system seen by the flow solver.
  @property
  def x(self) -> Array:
    return self.levels[0].x

  @x.setter
  def x(self, value: Array):
    self.levels[0] = dataclasses.replace(self.levels[0], x=value)

  @property
  def z(self) -> Array:
    return self.levels[0].z

  @z.setter
  def z(self, value: Array):
    self.levels[0] = dataclasses.replace(self.levels[0], z=value)

  @property
  def L(self) -> VectorField:
    return self.levels[0].L

  @property
  def r(self) -> Array:
    return self.levels[0].r

  def update(self, L: Optional[VectorField] = None) -> None:
    """
    Rebuilds the coefficients of every level after `μ₀` changed.

    Args:
      L: new finest conductances; `None` reassembles from the current ones.
    """
    fine = self.levels[0]
    if L is not None:
      fine = dataclasses.replace(fine, L=tuple(L))
    levels = [poisson.set_diag(fine)]
    for coarse in self.levels[1:]:
      L = restrict_L(levels[-1].L, self.perdir)
      levels.append(poisson.set_diag(dataclasses.replace(coarse, L=L)))
    for l, level in enumerate(levels):
      poisson.check_degenerate(level, warn=(l == 0))
    self.levels = levels

  def vcycle(self) -> None:
    """One V-cycle correcting the finest level."""
    depth = len(self.levels)
    for l in range(depth - 1):
      self.levels[l + 1] = dataclasses.replace(
          self.levels[l + 1], x=jnp.zeros_like(self.levels[l + 1].x),
          r=restrict(self.levels[l].r))
    for l in reversed(range(depth - 1)):
      it = self.coarse_it if l + 1 == depth - 1 else 6
      coarse = self._pcg(self.levels[l + 1], it=it)
      self.levels[l + 1] = coarse
      fine = dataclasses.replace(
          self.levels[l], e=prolongate(coarse.x, self.levels[l].shape))
      self.levels[l] = self._increment(fine)

  def solve(self, tol: float = 1e-4, itmx: int = 32,
            log: bool = False) -> SolverReport:
    """
    Solves the finest level to `L2(r) <= tol` with at most `itmx` cycles.

    A solve that stops above tolerance is not an error: the best available
    solution is kept, and a `ConvergenceWarning` is issued and logged.

    Args:
      tol: absolute tolerance on the squared residual norm.
      itmx: maximum number of V-cycles.
      log: record the residual after each cycle in the report and on the
        `jax_bdim.residuals` logger, as `solve,cycle,residual` records.

    Returns:
      A `SolverReport`.
    """
    self.levels[0] = self._residual(self.levels[0])
    r2 = float(poisson.L2(self.levels[0]))
    residuals = [r2]
    nit = 0
    while r2 > tol and nit < itmx:
      self.vcycle()
      self.levels[0] = self._pcg(self.levels[0], it=6)
      r2 = float(poisson.L2(self.levels[0]))
      nit += 1
      if log:
        residuals.append(r2)
        residual_logger.info('%d,%d,%.6e', len(self.n), nit, r2)
    self.x = boundaries.perBC(self.x, self.perdir)
    self.n.append(nit)
    report = SolverReport(nit, residuals if log else [r2], r2 <= tol)
    poisson.warn_unconverged(report, tol)
    return report


def solver(ml: MultiLevelPoisson, tol: float = 1e-4, itmx: int = 32,
           log: bool = False) -> SolverReport:
  """Functional alias of `MultiLevelPoisson.solve`."""
  return ml.solve(tol=tol, itmx=itmx, log=log)
