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
Pressure projection of the velocity field.

In an incompressible fluid the velocity must be divergence free. After the
predictor or corrector velocity `u*` has been formed, the projection

1.  solves the variable coefficient Poisson equation `∇⋅(μ₀ ∇q) = ∇⋅u*` for
    the scaled pressure `q = p Δt` with the multigrid solver, starting from
    the previous pressure as the initial guess;
2.  corrects the velocity on every face, `u = u* - μ₀ ∇q`, which removes the
    discrete divergence of `u*` up to the solver tolerance;
3.  stores the new pressure `p = q / Δt`.

The conductance `μ₀` vanishes on solid and wall faces, so the correction
never changes the velocity imposed there.
"""

from typing import Optional

import jax.numpy as jnp

from jax_bdim.base import finite_differences as fd
from jax_bdim.base import grids
from jax_bdim.base import multigrid
from jax_bdim.base import poisson

SolverReport = poisson.SolverReport


def pressure_correction(u, L, x):
  """`u - L ∇x` on every face, the gradient taken as a backward difference."""
  return tuple(ui - Li * fd.backward_difference(x, i)
               for i, (ui, Li) in enumerate(zip(u, L)))


def project(
    flow,
    pois: multigrid.MultiLevelPoisson,
    w: float = 1.,
    tol: float = 1e-4,
    itmx: int = 32,
    log: bool = False,
) -> SolverReport:
  """
  Makes `flow.u` divergence free and updates `flow.p`.

  Args:
    flow: the `equations.Flow` state, modified in place.
    pois: the pressure solver, assembled from `flow.mu0`.
    w: fraction of the time step this projection covers, `½` in the
      corrector.
    tol: solver tolerance on the squared residual norm.
    itmx: maximum number of V-cycles.
    log: record the solver residual history.

  Returns:
    The solver report.
  """
  dt = w * flow.dt[-1]
  pois.z = fd.divergence(flow.u)
  pois.x = flow.p * dt
  report = pois.solve(tol=tol, itmx=itmx, log=log)
  flow.u = pressure_correction(flow.u, pois.L, pois.x)
  flow.p = pois.x / dt
  return report


def divergence_norm(u, mask: Optional[grids.Array] = None):
  """Largest discrete divergence magnitude over the interior, or `mask`."""
  div = fd.divergence(u)[grids.inside(len(u))]
  if mask is not None:
    div = div * mask[grids.inside(len(u))]
  return jnp.max(jnp.abs(div))
