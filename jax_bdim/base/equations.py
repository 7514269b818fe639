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
The flow state and the momentum step of the BDIM Navier-Stokes solver.

`Flow` holds every field of the fluid problem on the padded staggered grid.
`mom_step` advances it by one time step with a second order
predictor/corrector (Heun) scheme, each stage proceeding as:

1.  **Explicit terms**: convection and diffusion of the velocity
    (`advection.conv_diff`) plus any uniform domain acceleration
    (`accelerate`).
2.  **BDIM forcing**: the explicit update `f = u⁰ + Δt r` is blended with the
    body velocity, `u = μ₀ f + (1 - μ₀) V + μ₁ ∂f/∂n`, so the velocity tends
    to the body velocity inside the body and to the fluid update outside.
3.  **Boundary conditions** on the domain faces, with the optional
    convective exit.
4.  **Pressure projection** (`pressure.project`) with the multigrid solver,
    which makes the velocity divergence free.

The corrector averages the predictor and corrector estimates, and the next
time step is chosen from a CFL estimate of the final velocity.
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

import jax.numpy as jnp
import tree_math

from jax_bdim.base import advection
from jax_bdim.base import boundaries
from jax_bdim.base import errors
from jax_bdim.base import execution
from jax_bdim.base import finite_differences as fd
from jax_bdim.base import grids
from jax_bdim.base import multigrid
from jax_bdim.base import pressure
from jax_bdim.immersion import measure

logger = logging.getLogger(__name__)

# --- Type Aliases ---
Array = grids.Array
VectorField = grids.VectorField
BoundaryVelocity = boundaries.BoundaryVelocity
# A uniform domain acceleration `g(i, t)`.
AccelerationFn = Callable[[int, float], float]
# A velocity initial condition `u(i, x)`.
InitialConditionFn = Callable[[int, Array], Array]
SolverReport = multigrid.SolverReport


class Flow:
  """
  State of the fluid on the staggered grid.

  Args:
    dims: number of interior cells along each axis (2 or 3 axes).
    U: boundary velocity, `ndim` constants or a function `U(i, t)`.
    dt: initial time step.
    nu: kinematic viscosity.
    g: optional uniform acceleration `g(i, t)` of the domain.
    u_init: optional velocity initial condition `u(i, x)`; defaults to the
      boundary velocity at `t = 0`.
    perdir: periodic axes.
    exit_bc: use a convective exit on the upper `x` boundary.
    dtype: floating point type of every field.
    strategy: execution strategy of the per-cell passes.
    limiter: face value limiter of the convection term.

  Raises:
    ConfigurationError: for invalid dimensions, a boundary velocity of the
      wrong length, or inconsistent periodic and exit settings.
  """

  def __init__(
      self,
      dims: Sequence[int],
      U: BoundaryVelocity,
      dt: float = 0.25,
      nu: float = 0.,
      g: Optional[AccelerationFn] = None,
      u_init: Optional[InitialConditionFn] = None,
      perdir: Sequence[int] = (),
      exit_bc: bool = False,
      dtype=jnp.float32,
      strategy: Optional[execution.ExecutionStrategy] = None,
      limiter: advection.LimiterFn = advection.quick,
  ):
    self.grid = grid = grids.Grid(dims)
    ndim = grid.ndim
    if not callable(U) and len(U) != ndim:
      raise errors.ConfigurationError(
          f'boundary velocity has {len(U)} components for a {ndim}D grid')
    perdir = tuple(sorted(set(perdir)))
    if any(axis not in range(ndim) for axis in perdir):
      raise errors.ConfigurationError(
          f'periodic axes {perdir} out of range for a {ndim}D grid')
    if exit_bc and 0 in perdir:
      raise errors.ConfigurationError('the exit boundary cannot be periodic')
    if dt <= 0:
      raise errors.ConfigurationError(f'time step must be positive, got {dt}')
    if nu < 0:
      raise errors.ConfigurationError(f'viscosity must be >= 0, got {nu}')

    self.U = U
    self.nu = nu
    self.g = g
    self.perdir = perdir
    self.exit_bc = exit_bc
    self.dtype = dtype
    self.limiter = limiter
    self.strategy = execution.get_strategy(strategy)
    self._conv_diff = self.strategy.compile(
        advection.conv_diff, static_argnames=('perdir', 'limiter'))

    U0 = boundaries.BCTuple(U, 0., ndim)
    if u_init is None:
      u = tuple(jnp.full(grid.shape, U0[i], dtype) for i in range(ndim))
    else:
      u = grids.apply(u_init, grid, dtype, self.strategy)
    self.u = boundaries.BC(u, U0, exit_bc, perdir)
    self.u0 = self.u
    self.f = grid.vector(0., dtype)
    self.p = grid.zeros(dtype)
    self.sigma = grid.zeros(dtype)
    self.mu0, self.mu1, self.V = measure.empty_fields(grid, dtype, perdir)
    self.dt: List[float] = [float(dt)]

  def time(self) -> float:
    """Time of the current state, the sum of the completed steps."""
    return float(sum(self.dt[:-1]))

  def conv_diff(self, u: VectorField) -> VectorField:
    return self._conv_diff(u, self.nu, perdir=self.perdir, limiter=self.limiter)

  def __repr__(self):
    return (f'Flow(dims={self.grid.dims}, nu={self.nu}, perdir={self.perdir}, '
            f'exit_bc={self.exit_bc}, t={self.time():.4g})')


def accelerate(
    r: VectorField,
    t: float,
    g: Optional[AccelerationFn],
    U: BoundaryVelocity,
    dtype=jnp.float32,
) -> VectorField:
  """
  Adds the uniform acceleration of the domain to `r`.

  Two sources contribute: the acceleration function `g(i, t)`, and, for a
  time dependent boundary velocity `U(i, t)`, the frame acceleration `∂U/∂t`
  obtained with `jax.grad`.
  """
  ndim = len(r)
  dU = boundaries.dUdt(U, t, ndim, dtype)
  out = []
  for i, ri in enumerate(r):
    a = dU[i]
    if g is not None:
      a = a + g(i, t)
    out.append(ri + a)
  return tuple(out)


def scale_u(u: VectorField, k: float, perdir: Sequence[int] = ()) -> VectorField:
  """Multiplies the velocity on the faces strictly inside the domain by `k`."""
  return tuple(jnp.where(grids.face_mask(ui.shape, i, perdir), k * ui, ui)
               for i, ui in enumerate(u))


def bdim(flow: Flow) -> Flow:
  """
  Applies the BDIM forcing to `flow.u`, in place.

  `flow.f` must hold the explicit rate of change. It is replaced by the
  forcing field `f = u⁰ + Δt r - V`, and the interior faces are updated as
  `u += μ₁ ∂f/∂n + V + μ₀ f`.
  """
  dt = flow.dt[-1]
  f = tree_math.Vector(flow.u0) + dt * tree_math.Vector(flow.f)
  f = f - tree_math.Vector(flow.V)
  forced = tree_math.Vector(flow.V) + tree_math.Vector(flow.mu0) * f
  forced = forced.tree
  flow.f = f.tree
  u = []
  for i, ui in enumerate(flow.u):
    du = fd.mu_ddn(flow.mu1[i], flow.f[i]) + forced[i]
    u.append(jnp.where(grids.face_mask(ui.shape, i, flow.perdir), ui + du, ui))
  flow.u = tuple(u)
  return flow


def cfl(flow: Flow, dt_max: float = 10.) -> float:
  """
  Stable time step estimate: `min(dt_max, 1 / (max flux out + 5ν))`.
  """
  rate = float(jnp.max(fd.flux_out(flow.u))) + 5 * flow.nu
  if rate <= 0:
    return dt_max
  return min(dt_max, 1. / rate)


def _boundary(flow: Flow, U: Tuple) -> None:
  flow.u = boundaries.BC(flow.u, U, flow.exit_bc, flow.perdir)


def mom_step(
    flow: Flow,
    pois: multigrid.MultiLevelPoisson,
    tol: float = 1e-4,
    itmx: int = 32,
    log: bool = False,
) -> Tuple[SolverReport, SolverReport]:
  """
  Advances `flow` by one time step `flow.dt[-1]`, in place.

  Args:
    flow: the flow state.
    pois: pressure solver assembled from the current `flow.mu0`.
    tol: pressure solver tolerance.
    itmx: maximum V-cycles per pressure solve.
    log: record the pressure solver residual histories.

  Returns:
    The solver reports of the predictor and corrector projections. An
    unconverged projection has also issued a `ConvergenceWarning`.
  """
  ndim = flow.grid.ndim
  dt = flow.dt[-1]
  t0 = flow.time()
  t1 = t0 + dt
  U1 = boundaries.BCTuple(flow.U, t1, ndim)

  flow.u0 = flow.u
  flow.u = scale_u(flow.u, 0., flow.perdir)

  # predictor: u' = Π(u⁰ + Δt r(u⁰))
  flow.f = accelerate(flow.conv_diff(flow.u0), t0, flow.g, flow.U, flow.dtype)
  bdim(flow)
  _boundary(flow, U1)
  if flow.exit_bc:
    flow.u = boundaries.exit_bc(flow.u, flow.u0, U1, dt)
  predictor = pressure.project(flow, pois, 1., tol=tol, itmx=itmx, log=log)
  _boundary(flow, U1)

  # corrector: u = Π(½(u' + u⁰ + Δt r(u')))
  flow.f = accelerate(flow.conv_diff(flow.u), t1, flow.g, flow.U, flow.dtype)
  bdim(flow)
  flow.u = scale_u(flow.u, 0.5, flow.perdir)
  _boundary(flow, U1)
  corrector = pressure.project(flow, pois, 0.5, tol=tol, itmx=itmx, log=log)
  _boundary(flow, U1)

  flow.dt.append(cfl(flow))
  logger.debug('step to t=%.4g: dt=%.4g, next dt=%.4g, cycles=(%d, %d)',
               t1, dt, flow.dt[-1], predictor.iterations, corrector.iterations)
  return predictor, corrector
