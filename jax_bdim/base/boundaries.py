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
Boundary conditions on the padded staggered fields.

In finite volume methods values must be defined in "ghost cells" just outside
the computational domain to evaluate fluxes at the boundaries. This module
fills those ghost cells. Every function here is pure: it takes the padded
arrays and returns new ones.

For a vector field `u` with boundary velocity `U`, each component `i` is
treated along every axis `j` as follows:

- `j` periodic: the ghost layers are copies of the opposite interior layers.
- `i == j` (normal component): Dirichlet. Both the lower ghost and the
  first interior face, which lies on the domain boundary, are set to `U[i]`,
  as is the upper ghost, which is the upper boundary face.
- `i != j` (tangential component): zero gradient (Neumann).

The upper boundary face of the `x` velocity can instead be an open "exit"
filled by `exit_bc`, a one dimensional convective outflow condition.
"""

from typing import Callable, Sequence, Tuple, Union

import jax
import jax.numpy as jnp
import numpy as np

from jax_bdim.base import grids

# --- Type Aliases ---
Array = grids.Array
VectorField = grids.VectorField
# Boundary velocity: either constant components, or a function `U(i, t)`.
BoundaryVelocity = Union[Sequence[float], Callable[[int, float], float]]


class BCType:
  """
  String constants describing how the ghost cells of an axis are filled.
  """
  PERIODIC = 'periodic'
  DIRICHLET = 'dirichlet'
  NEUMANN = 'neumann'


def bc_type(component: int, axis: int, perdir: Sequence[int] = ()) -> str:
  """The boundary condition type of `component` along `axis`."""
  if axis in perdir:
    return BCType.PERIODIC
  return BCType.DIRICHLET if component == axis else BCType.NEUMANN


def _at(axis: int, index: int, ndim: int) -> Tuple:
  """Index expression selecting a full layer at `index` along `axis`."""
  return tuple(index if d == axis else slice(None) for d in range(ndim))


def _periodic(a: Array, axis: int) -> Array:
  n = a.shape[axis]
  a = a.at[_at(axis, 0, a.ndim)].set(a[_at(axis, n - 2, a.ndim)])
  return a.at[_at(axis, n - 1, a.ndim)].set(a[_at(axis, 1, a.ndim)])


def perBC(a: Array, perdir: Sequence[int] = ()) -> Array:
  """Fills the ghosts of a scalar field along the periodic axes `perdir`."""
  for axis in perdir:
    a = _periodic(a, axis)
  return a


def BC(
    u: VectorField,
    U: Sequence,
    exit_bc: bool = False,
    perdir: Sequence[int] = (),
) -> VectorField:
  """
  Applies the domain boundary conditions to a staggered vector field.

  Args:
    u: vector field to fill.
    U: boundary value of each component, as returned by `BCTuple`. These may
      be python floats or JAX scalars.
    exit_bc: leave the upper `x` boundary face of `u[0]` to `exit_bc`.
    perdir: periodic axes.

  Returns:
    The vector field with its ghost cells filled.
  """
  ndim = len(u)
  out = []
  for i, a in enumerate(u):
    for j in range(ndim):
      n = a.shape[j]
      kind = bc_type(i, j, perdir)
      if kind == BCType.PERIODIC:
        a = _periodic(a, j)
      elif kind == BCType.DIRICHLET:
        a = a.at[_at(j, 0, ndim)].set(U[i])
        a = a.at[_at(j, 1, ndim)].set(U[i])
        if not (exit_bc and i == 0):
          a = a.at[_at(j, n - 1, ndim)].set(U[i])
      else:
        a = a.at[_at(j, 0, ndim)].set(a[_at(j, 1, ndim)])
        a = a.at[_at(j, n - 1, ndim)].set(a[_at(j, n - 2, ndim)])
    out.append(a)
  return tuple(out)


def exit_bc(
    u: VectorField,
    u0: VectorField,
    U: Sequence,
    dt: float,
) -> VectorField:
  """
  Convective outflow on the upper boundary face of the `x` velocity.

  The face is advanced with the one dimensional convection equation
  `∂u/∂t + U ∂u/∂x = 0`, upwinded from the previous velocity `u0`, and the
  whole exit plane is then shifted so its mean flux equals the inflow `U[0]`,
  keeping the domain mass balanced.
  """
  ux, ux0 = u[0], u0[0]
  n = ux.shape[0]
  # The exit plane spans the interior of every other axis.
  exit_ = (n - 1,) + grids.inside(ux.ndim - 1)
  upstream = (n - 2,) + grids.inside(ux.ndim - 1)
  plane = ux0[exit_] - U[0] * dt * (ux0[exit_] - ux0[upstream])
  plane = plane - (jnp.mean(plane) - U[0])
  return (ux.at[exit_].set(plane),) + tuple(u[1:])


def BCTuple(U: BoundaryVelocity, t: float, ndim: int) -> Tuple:
  """
  Evaluates the boundary velocity at time `t`.

  `U` is either a sequence of `ndim` constants or a function `U(i, t)`.
  """
  if callable(U):
    return tuple(U(i, t) for i in range(ndim))
  return tuple(U)


def dUdt(U: BoundaryVelocity, t: float, ndim: int, dtype=jnp.float32) -> Tuple:
  """Time derivative of a boundary velocity function, zero for constants."""
  if not callable(U):
    return tuple(0. for _ in range(ndim))
  t = jnp.asarray(t, dtype)
  return tuple(jax.grad(lambda s, i=i: jnp.asarray(U(i, s), dtype))(t)
               for i in range(ndim))


def boundary_velocity_norm(U: Sequence[float]) -> float:
  """Velocity scale of a constant boundary velocity."""
  return float(np.linalg.norm(np.asarray(U, dtype=float)))
