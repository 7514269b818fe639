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
Rasterizes an immersed body onto the staggered grid.

The measurement turns a body's geometry into the three fields the momentum
step needs:

1.  `μ₀`, the fluid fraction on every face, which doubles as the face
    conductance of the pressure Poisson operator.
2.  `μ₁`, the first kernel moment times the surface normal, on every face.
3.  `V`, the body velocity on every face.

Only cells near the surface need the full `(d, n, V)` measurement: a cell
whose centre lies further than `2 + ϵ` from the surface is fully fluid, or
fully solid when its distance is negative. The centre distances are kept in
the scalar work field `σ`.

This is the most expensive pass of a step, and is only repeated when the
body moves.
"""

import logging
from typing import Optional, Tuple

import jax.numpy as jnp

from jax_bdim.base import boundaries
from jax_bdim.base import execution
from jax_bdim.base import grids
from jax_bdim.immersion import bodies
from jax_bdim.immersion import kernels

logger = logging.getLogger(__name__)

Array = grids.Array
VectorField = grids.VectorField
TensorField = grids.TensorField


def empty_fields(
    grid: grids.Grid,
    dtype=jnp.float32,
    perdir=(),
) -> Tuple[VectorField, TensorField, VectorField]:
  """`(μ₀, μ₁, V)` without any body: `μ₀ = 1` inside, zero `μ₁` and `V`."""
  zero = (0.,) * grid.ndim
  mu0 = boundaries.BC(grid.vector(1., dtype), zero, False, perdir)
  return mu0, grid.tensor(dtype), grid.vector(0., dtype)


def measure_fields(
    grid: grids.Grid,
    body: bodies.AbstractBody,
    t: float = 0.,
    eps: float = 1.,
    dtype=jnp.float32,
    perdir=(),
    strategy: Optional[execution.ExecutionStrategy] = None,
    exit_bc: bool = False,
) -> Tuple[VectorField, TensorField, VectorField, Array]:
  """
  Measures `body` at time `t` on every face of the grid.

  Args:
    grid: the grid.
    body: the immersed body.
    t: measurement time.
    eps: BDIM kernel half width.
    dtype: floating point type of the fields.
    perdir: periodic axes, for the boundary conditions of the results.
    strategy: execution strategy of the point maps.
    exit_bc: whether the upper `x` face of `V` is a convective exit.

  Returns:
    The tuple `(μ₀, μ₁, V, σ)`; `σ` holds the centre distances on interior
    cells and zero on ghosts. A NaN distance gives a NaN `μ₀`.
  """
  ndim = grid.ndim
  fastd2 = (2 + eps)**2
  interior = grids.inside(ndim)

  d_centre = execution.map_points(
      lambda x: body.sdf(x, t), grid.interior_points(None, dtype), strategy)
  near = d_centre**2 < fastd2
  solid = d_centre < 0
  if logger.isEnabledFor(logging.DEBUG):
    logger.debug('measure t=%s: %d cells near the surface, %d solid',
                 t, int(jnp.sum(near)), int(jnp.sum(solid & ~near)))

  mu0, mu1, V = empty_fields(grid, dtype)
  mu0, mu1, V = list(mu0), [list(row) for row in mu1], list(V)
  for i in range(ndim):
    d, n, v = execution.map_points(
        lambda x: body.measure(x, t, fastd2),
        grid.interior_points(i, dtype), strategy)
    far_value = jnp.where(jnp.isnan(d_centre), jnp.nan,
                          jnp.where(solid, 0., 1.))
    mu0[i] = mu0[i].at[interior].set(
        jnp.where(near, kernels.mu0(d, eps), far_value))
    V[i] = V[i].at[interior].set(jnp.where(near, v[..., i], 0.))
    moment = kernels.mu1(d, eps)
    for j in range(ndim):
      mu1[i][j] = mu1[i][j].at[interior].set(
          jnp.where(near, moment * n[..., j], 0.))

  zero = (0.,) * ndim
  mu0 = boundaries.BC(tuple(mu0), zero, False, perdir)
  V = boundaries.BC(tuple(V), zero, exit_bc, perdir)
  sigma = grids.set_inside(grid.zeros(dtype), d_centre.astype(dtype))
  return mu0, tuple(tuple(row) for row in mu1), V, sigma


def measure(
    flow,
    body: bodies.AbstractBody,
    t: float = 0.,
    eps: float = 1.,
    strategy: Optional[execution.ExecutionStrategy] = None,
):
  """
  Measures `body` into a `Flow`, replacing its `μ₀`, `μ₁`, `V` and `σ`.

  `NoBody` resets the flow to its un-immersed coefficients without
  evaluating anything.
  """
  strategy = flow.strategy if strategy is None else strategy
  if isinstance(body, bodies.NoBody):
    flow.mu0, flow.mu1, flow.V = empty_fields(flow.grid, flow.dtype, flow.perdir)
    return flow
  flow.mu0, flow.mu1, flow.V, flow.sigma = measure_fields(
      flow.grid, body, t, eps, flow.dtype, flow.perdir, strategy,
      flow.exit_bc)
  return flow


def measure_sdf(
    a: Array,
    body: bodies.AbstractBody,
    t: float = 0.,
    strategy: Optional[execution.ExecutionStrategy] = None,
) -> Array:
  """Returns the scalar field `a` with the body distance on its interior cells."""
  grid = grids.Grid(tuple(n - 2 for n in a.shape))
  d = execution.map_points(
      lambda x: body.sdf(x, t), grid.interior_points(None, a.dtype), strategy)
  return grids.set_inside(a, d.astype(a.dtype))
