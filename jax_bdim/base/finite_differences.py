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
Finite difference operators on the padded staggered grid.

All operators evaluate on the interior cells and return a padded array whose
ghost cells are zero; the caller applies boundary conditions where needed.
The grid spacing is one, so differences are not scaled.

On the staggered grid the natural differences are:

- `divergence`: from faces to the cell centre,
  `Σᵢ u[I+δi, i] - u[I, i]`.
- `backward_difference`: from cell centres to the lower face,
  `p[I] - p[I-δi]`. This is the pressure gradient on face `i`.
"""

from typing import Sequence

import jax.numpy as jnp

from jax_bdim.base import grids

Array = grids.Array
VectorField = grids.VectorField
TensorField = grids.TensorField


def _padded(values: Array) -> Array:
  """Embeds interior `values` in a zero padded array."""
  return jnp.pad(values, 1)


def stencil_sum(*arrays: Array) -> Array:
  """Sum of interior windows, embedded back into a padded array."""
  return _padded(sum(arrays))


def divergence(u: VectorField) -> Array:
  """Discrete divergence of a staggered vector field at the cell centres."""
  return stencil_sum(*[grids.shift(ui, 1, i) - grids.shift(ui, 0, i)
                       for i, ui in enumerate(u)])


def backward_difference(p: Array, axis: int) -> Array:
  """`p[I] - p[I-δ]` along `axis`: a centre field differenced onto faces."""
  return _padded(grids.shift(p, 0, axis) - grids.shift(p, -1, axis))


def central_difference(f: Array, axis: int) -> Array:
  """`f[I+δ] - f[I-δ]` along `axis`, undivided."""
  return _padded(grids.shift(f, 1, axis) - grids.shift(f, -1, axis))


def mu_ddn(mu1: Sequence[Array], f: Array) -> Array:
  """
  The BDIM first moment correction `μ₁ · ∂f/∂n` for one velocity component.

  Args:
    mu1: the `ndim` normal components of `μ₁` on the faces of this
      component.
    f: the component of the BDIM forcing field.

  Returns:
    `½ Σⱼ μ₁[j] (f[I+δj] - f[I-δj])` on the interior cells.
  """
  return stencil_sum(*[0.5 * grids.shift(m, 0, j) *
                       (grids.shift(f, 1, j) - grids.shift(f, -1, j))
                       for j, m in enumerate(mu1)])


def flux_out(u: VectorField) -> Array:
  """
  Total velocity flux leaving each cell through its faces.

  This is the quantity bounding the explicit time step: a cell emptied faster
  than once per step would violate the CFL condition.
  """
  return stencil_sum(*[jnp.maximum(0., grids.shift(ui, 1, i)) +
                       jnp.maximum(0., -grids.shift(ui, 0, i))
                       for i, ui in enumerate(u)])
