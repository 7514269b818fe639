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
Convection and diffusion of the staggered velocity field.

Both terms are computed together in finite volume form: every velocity
component `uᵢ` has its own control volume, centred on its face, and the rate
of change is the net flux through the control volume's faces,

    r[I, i] = Σⱼ Φ[I, j] - Φ[I+δj, j]
    Φ       = U λ(uᵢ) - ν (uᵢ[I] - uᵢ[I-δj])

where `U = ½(uⱼ[I] + uⱼ[I-δi])` is the advecting velocity on the control
volume face and `λ` is an upwind biased face value chosen by a limiter:

-   `quick`: the QUICK scheme, median limited to stay bounded by its
    neighbours. This is the default.
-   `van_leer`: the van Leer TVD limiter.
-   `central`: second order central differencing, unlimited.

A limiter is a function `λ(u, c, d)` of the upwind, central and downwind
values relative to the flow direction. On the first and last faces of a non
periodic axis the upwind value lies outside the domain, so the flux falls
back to the central average there when the flow enters through that face.
"""

from typing import Callable, Sequence

import jax.numpy as jnp

from jax_bdim.base import grids

# --- Type Aliases ---
Array = grids.Array
VectorField = grids.VectorField
# A limiter `λ(u, c, d)` from upwind, central and downwind values.
LimiterFn = Callable[[Array, Array, Array], Array]


def median(a, b, c):
  return jnp.maximum(jnp.minimum(a, b), jnp.minimum(jnp.maximum(a, b), c))


def quick(u, c, d):
  """QUICK interpolation, limited by the median of its neighbours."""
  return median((5 * c + 2 * d - u) / 6, c, median(10 * c - 9 * u, c, d))


def van_leer(u, c, d):
  """
  van Leer limited face value.

  Returns `c` at extrema, where the scheme falls back to first order upwind.
  """
  extremum = (c <= jnp.minimum(u, d)) | (c >= jnp.maximum(u, d))
  # `u == d` is always an extremum; guard the division in the unused branch.
  span = jnp.where(extremum, 1., d - u)
  return jnp.where(extremum, c, c + (d - c) * (c - u) / span)


def central(u, c, d):
  del u  # unused.
  return 0.5 * (c + d)


def _window(a: Array, axis: int, start: int, stop: int, lag: int = -1) -> Array:
  """
  Slice `start:stop` along `axis`, interior along the other axes.

  With `lag >= 0` the window along axis `lag` is displaced by one cell
  towards the lower boundary, selecting `a[I - δ_lag]`.
  """
  index = []
  for d, n in enumerate(a.shape):
    if d == axis:
      index.append(slice(start, stop))
    elif d == lag:
      index.append(slice(0, n - 2))
    else:
      index.append(slice(1, n - 1))
  return a[tuple(index)]


def _flux_divergence(f, uj, i, j, nu, limiter, periodic):
  """Net flux `Φ[I] - Φ[I+δj]` into every interior control volume of `f`."""
  n = f.shape[j]
  if periodic:
    fk = _window(f, j, 1, n - 1)
    fkm1 = jnp.roll(fk, 1, axis=j)
    fkm2 = jnp.roll(fk, 2, axis=j)
    fkp1 = jnp.roll(fk, -1, axis=j)
    uk = _window(uj, j, 1, n - 1)
    if i == j:
      U = 0.5 * (uk + jnp.roll(uk, 1, axis=j))
    else:
      U = 0.5 * (uk + _window(uj, j, 1, n - 1, lag=i))
    positive = limiter(fkm2, fkm1, fk)
    negative = limiter(fkp1, fk, fkm1)
    flux = U * jnp.where(U > 0, positive, negative) - nu * (fk - fkm1)
    return flux - jnp.roll(flux, -1, axis=j)

  # Faces k = 1 .. n-1: the lower face of every interior cell plus the
  # upper boundary face.
  fk = _window(f, j, 1, n)
  fkm1 = _window(f, j, 0, n - 1)
  # Values beyond the ghost layer are never used; pad with the edge value.
  fkm2 = jnp.concatenate([_window(f, j, 0, 1), _window(f, j, 0, n - 2)], axis=j)
  fkp1 = jnp.concatenate([_window(f, j, 2, n), _window(f, j, n - 1, n)], axis=j)
  if i == j:
    U = 0.5 * (_window(uj, j, 1, n) + _window(uj, j, 0, n - 1))
  else:
    U = 0.5 * (_window(uj, j, 1, n) + _window(uj, j, 1, n, lag=i))

  position = jnp.arange(n - 1).reshape(
      [n - 1 if d == j else 1 for d in range(f.ndim)])
  average = 0.5 * (fk + fkm1)
  positive = jnp.where(position == 0, average, limiter(fkm2, fkm1, fk))
  negative = jnp.where(position == n - 2, average, limiter(fkp1, fk, fkm1))
  flux = U * jnp.where(U > 0, positive, negative) - nu * (fk - fkm1)
  lower = jnp.take(flux, jnp.arange(0, n - 2), axis=j)
  upper = jnp.take(flux, jnp.arange(1, n - 1), axis=j)
  return lower - upper


def conv_diff(
    u: VectorField,
    nu: float,
    perdir: Sequence[int] = (),
    limiter: LimiterFn = quick,
) -> VectorField:
  """
  Rate of change of the velocity due to convection and diffusion.

  Args:
    u: velocity with its boundary conditions applied.
    nu: kinematic viscosity.
    perdir: periodic axes.
    limiter: face value limiter, `quick`, `van_leer` or `central`.

  Returns:
    The vector field `r`, zero on ghost cells.
  """
  ndim = len(u)
  out = []
  for i, f in enumerate(u):
    r = 0.
    for j in range(ndim):
      r = r + _flux_divergence(f, u[j], i, j, nu, limiter, j in perdir)
    out.append(jnp.pad(r, 1))
  return tuple(out)
