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
The staggered grid and the fields defined on it.

Fields are plain JAX arrays over a *padded* index space: the `dims` interior
cells of every axis are surrounded by one ghost cell on each side, so an
array has shape `dims + 2`. Index `0` and `shape - 1` along an axis are the
ghosts and hold boundary condition values; indices `1 .. shape - 2` hold
physical data.

- A scalar field (pressure, kernel moments at the cell centre) is a single
  array.
- A vector field (velocity, body velocity, face conductances, `μ₀`) is a
  tuple with one array per axis. Component `i` lives on the *lower* face of
  each cell normal to axis `i`.
- The first kernel moment `μ₁` is a tuple of tuples: `mu1[i][j]` is the
  `j`-th normal component measured on face `i`.

The grid spacing is one. A location on the grid is described, as elsewhere
in this package, by an offset in units of cells: the coordinate of cell `k`
along an axis is `k - 1 + offset`, with offset `0.5` at the cell centre and
`0` on the lower face. The first interior cell therefore spans `[0, 1]`.
"""
from __future__ import annotations

import dataclasses
import operator
from typing import Any, Callable, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp
import jax.scipy.ndimage
import numpy as np

from jax_bdim.base import errors
from jax_bdim.base import execution

# --- Type Aliases ---
Array = Union[np.ndarray, jax.Array]
ScalarField = Array
VectorField = Tuple[Array, ...]
TensorField = Tuple[Tuple[Array, ...], ...]
PyTree = Any


@dataclasses.dataclass(init=False, frozen=True)
class Grid:
  """
  Describes the interior size and padded shape of the computational grid.

  Attributes:
    dims: number of interior cells along each axis.
    shape: padded array shape, `dims + 2` (one ghost cell per face).
  """
  dims: Tuple[int, ...]
  shape: Tuple[int, ...]

  def __init__(self, dims: Sequence[int]):
    try:
      dims = tuple(operator.index(n) for n in dims)
    except TypeError:
      raise errors.ConfigurationError(
          f'grid dimensions must be integers, got {dims!r}') from None
    if len(dims) not in (2, 3):
      raise errors.ConfigurationError(
          f'only 2D and 3D grids are supported, got dims={dims}')
    if any(n < 1 for n in dims):
      raise errors.ConfigurationError(
          f'grid dimensions must be positive, got dims={dims}')
    object.__setattr__(self, 'dims', dims)
    object.__setattr__(self, 'shape', tuple(n + 2 for n in dims))

  @property
  def ndim(self) -> int:
    return len(self.dims)

  @property
  def cell_center(self) -> Tuple[float, ...]:
    """The offset `(0.5, 0.5, ...)` of the cell centre."""
    return self.ndim * (0.5,)

  @property
  def cell_faces(self) -> Tuple[Tuple[float, ...], ...]:
    """
    Offsets of the staggered faces, one per axis.

    For 2D this is `((0.0, 0.5), (0.5, 0.0))`: face `i` sits on the lower
    boundary of the cell along axis `i` and at the centre along the others.
    """
    d = self.ndim
    offsets = (np.ones([d, d]) - np.eye(d)) / 2.
    return tuple(tuple(float(o) for o in offset) for offset in offsets)

  def offset(self, i: Optional[int] = None) -> Tuple[float, ...]:
    """Offset of component `i`; `None` selects the cell centre."""
    return self.cell_center if i is None else self.cell_faces[i]

  def loc(self, i: Optional[int], index: Sequence[int]) -> np.ndarray:
    """Physical coordinates of component `i` of cell `index`."""
    return np.asarray(index, dtype=float) - 1 + np.asarray(self.offset(i))

  def axes(self, offset: Optional[Sequence[float]] = None) -> Tuple[Array, ...]:
    """1D coordinate arrays of the padded grid for the given offset."""
    if offset is None:
      offset = self.cell_center
    if len(offset) != self.ndim:
      raise ValueError(f'unexpected offset length: {len(offset)} vs {self.ndim}')
    return tuple(jnp.arange(n) - 1 + o for o, n in zip(offset, self.shape))

  def mesh(self, offset: Optional[Sequence[float]] = None) -> Tuple[Array, ...]:
    """Coordinate arrays of every padded cell, as `jnp.meshgrid(indexing='ij')`."""
    return tuple(jnp.meshgrid(*self.axes(offset), indexing='ij'))

  def points(self, i: Optional[int] = None, dtype=jnp.float32) -> Array:
    """Coordinates of component `i` stacked on a trailing axis, `(*shape, ndim)`."""
    return jnp.stack(self.mesh(self.offset(i)), axis=-1).astype(dtype)

  def interior_points(self, i: Optional[int] = None, dtype=jnp.float32) -> Array:
    """Like `points`, restricted to the interior cells, `(*dims, ndim)`."""
    return self.points(i, dtype)[inside(self.ndim)]

  def zeros(self, dtype=jnp.float32) -> ScalarField:
    return jnp.zeros(self.shape, dtype)

  def vector(self, fill: float = 0., dtype=jnp.float32) -> VectorField:
    return tuple(jnp.full(self.shape, fill, dtype) for _ in range(self.ndim))

  def tensor(self, dtype=jnp.float32) -> TensorField:
    return tuple(tuple(jnp.zeros(self.shape, dtype) for _ in range(self.ndim))
                 for _ in range(self.ndim))


# --- Index helpers ---
# All stencil operators below work on "inside windows": views of a padded
# array over the interior index range, displaced by a few cells.

def inside(ndim: int) -> Tuple[slice, ...]:
  """Interior cells of a padded array."""
  return (slice(1, -1),) * ndim


def inside_u(ndim: int, axis: int, perdir: Sequence[int] = ()) -> Tuple[slice, ...]:
  """
  Faces of component `axis` strictly inside the domain.

  The first interior face along a walled `axis` lies on the domain boundary
  and is owned by the boundary conditions. Along a periodic axis it is an
  ordinary face.
  """
  start = 1 if axis in perdir else 2
  return tuple(slice(start, -1) if d == axis else slice(1, -1)
               for d in range(ndim))


def delta(axis: int, ndim: int) -> Tuple[int, ...]:
  """Unit index offset `δ` along `axis`."""
  return tuple(int(d == axis) for d in range(ndim))


def shift(a: Array, offset: int, axis: int) -> Array:
  """
  Inside window of `a` displaced by `offset` cells along `axis`.

  `shift(a, 1, i)` is `a[I + δi]` for every interior index `I`, and
  `shift(a, 0, i)` is the interior itself.
  """
  return a[tuple(
      slice(1 + offset, n - 1 + offset) if d == axis else slice(1, n - 1)
      for d, n in enumerate(a.shape))]


def set_inside(a: Array, values: Array) -> Array:
  """Returns `a` with its interior replaced by `values`."""
  return a.at[inside(a.ndim)].set(values)


def interior_mask(shape: Sequence[int]) -> Array:
  """Boolean array that is `True` on interior cells."""
  return jnp.zeros(shape, bool).at[inside(len(shape))].set(True)


def face_mask(shape: Sequence[int], axis: int, perdir: Sequence[int] = ()) -> Array:
  """Boolean array that is `True` on the faces returned by `inside_u`."""
  return jnp.zeros(shape, bool).at[inside_u(len(shape), axis, perdir)].set(True)


def L2(a: Array) -> Array:
  """Sum of squares of `a` over the interior cells."""
  interior = a[inside(a.ndim)]
  return jnp.sum(interior * interior)


def apply(
    fn: Callable[[int, Array], Array],
    grid: Grid,
    dtype=jnp.float32,
    strategy: Optional[execution.ExecutionStrategy] = None,
) -> VectorField:
  """
  Evaluates `fn(i, x)` at the location of component `i` of every cell.

  This is how velocity initial conditions are put on the staggered grid. The
  function must be traceable by JAX; it is mapped over the cells with the
  given execution strategy.

  Args:
    fn: function of the component index and a coordinate vector.
    grid: the grid.
    dtype: floating point type of the result.
    strategy: execution strategy used for the point map.

  Returns:
    A vector field with `fn` evaluated on every padded cell, ghosts included.
  """
  def component(i):
    values = execution.map_points(
        lambda x: jnp.asarray(fn(i, x), dtype), grid.points(i, dtype), strategy)
    return values.astype(dtype)
  return tuple(component(i) for i in range(grid.ndim))


def interp(
    x: Array,
    a: Union[ScalarField, VectorField],
    order: int = 1,
) -> Array:
  """
  Interpolates a padded field at the point `x`.

  A scalar field is sampled at the cell centres, a vector field component
  `i` on the faces normal to axis `i`; a vector field gives the vector of its
  interpolated components. Points outside the padded array take the nearest
  ghost value.

  Args:
    x: point coordinates, shape `(ndim,)`.
    a: scalar or vector field.
    order: `1` for multilinear, `0` for nearest neighbour interpolation.

  Returns:
    The interpolated value, a scalar or an `(ndim,)` array.
  """
  x = jnp.asarray(x)
  if isinstance(a, tuple):
    ndim = len(a)
    return jnp.stack([
        _interp(x, ai, tuple(0. if j == i else 0.5 for j in range(ndim)), order)
        for i, ai in enumerate(a)])
  return _interp(x, a, (0.5,) * a.ndim, order)


def _interp(x, a, offset, order):
  # inverse of the coordinate `k - 1 + offset`
  index = x + 1 - jnp.asarray(offset, x.dtype)
  return jax.scipy.ndimage.map_coordinates(
      a, list(index), order=order, mode='nearest')
