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
Advancing a simulation forward in time.

A `Simulation` bundles the three pieces of a BDIM flow problem:

1.  the `equations.Flow` state on the grid,
2.  the immersed body, measured into the flow's `μ₀`, `μ₁` and `V`,
3.  the `multigrid.MultiLevelPoisson` pressure solver assembled from `μ₀`.

`sim_step` advances it by one or many `equations.mom_step` calls. Before each
step a moving body is remeasured at the end time of that step and the
pressure solver is rebuilt from the new `μ₀`; a static body is measured once
at construction and its solver is reused.

Time is reported in convective units, `t U / L`, where `L` is the length
scale and `U` the velocity scale of the problem.
"""

import logging
from typing import List, Optional, Sequence

import jax.numpy as jnp

from jax_bdim.base import advection
from jax_bdim.base import boundaries
from jax_bdim.base import equations
from jax_bdim.base import errors
from jax_bdim.base import execution
from jax_bdim.base import multigrid
from jax_bdim.immersion import bodies
from jax_bdim.immersion import measure

logger = logging.getLogger(__name__)

SolverReport = multigrid.SolverReport


class Simulation:
  """
  A flow, an immersed body and the pressure solver coupling them.

  Args:
    dims: number of interior cells along each axis.
    u_bc: boundary velocity, `ndim` constants or a function `u_bc(i, t)`.
    L: length scale.
    U: velocity scale; defaults to the magnitude of a constant `u_bc` and is
      required when `u_bc` is a function.
    dt: initial time step.
    nu: kinematic viscosity.
    eps: BDIM kernel half width.
    perdir: periodic axes.
    u_init: velocity initial condition `u(i, x)`.
    g: uniform domain acceleration `g(i, t)`.
    exit_bc: convective exit on the upper `x` boundary.
    body: the immersed body.
    dtype: floating point type.
    strategy: execution strategy, an instance or one of `'sequential'`,
      `'vectorized'`, `'compiled'`.
    maxlevels: maximum number of multigrid levels.
    limiter: face value limiter of the convection term.
    tol: pressure solver tolerance.
    itmx: maximum V-cycles per pressure solve.

  Raises:
    ConfigurationError: for any invalid parameter.
  """

  def __init__(
      self,
      dims: Sequence[int],
      u_bc: boundaries.BoundaryVelocity,
      L: float,
      U: Optional[float] = None,
      dt: float = 0.25,
      nu: float = 0.,
      eps: float = 1.,
      perdir: Sequence[int] = (),
      u_init: Optional[equations.InitialConditionFn] = None,
      g: Optional[equations.AccelerationFn] = None,
      exit_bc: bool = False,
      body: Optional[bodies.AbstractBody] = None,
      dtype=jnp.float32,
      strategy=None,
      maxlevels: int = 10,
      limiter: advection.LimiterFn = advection.quick,
      tol: float = 1e-4,
      itmx: int = 32,
  ):
    if U is None:
      if callable(u_bc):
        raise errors.ConfigurationError(
            'the velocity scale U must be given when u_bc is a function')
      U = boundaries.boundary_velocity_norm(u_bc)
    if L <= 0:
      raise errors.ConfigurationError(f'length scale must be positive, got {L}')
    if eps <= 0:
      raise errors.ConfigurationError(f'kernel width must be positive, got {eps}')

    self.strategy = execution.get_strategy(strategy)
    self.L = L
    self.U = U
    self.eps = eps
    self.tol = tol
    self.itmx = itmx
    self.body = bodies.NoBody() if body is None else body
    self.flow = equations.Flow(
        dims, u_bc, dt=dt, nu=nu, g=g, u_init=u_init, perdir=perdir,
        exit_bc=exit_bc, dtype=dtype, strategy=self.strategy, limiter=limiter)
    measure.measure(self.flow, self.body, t=0., eps=eps)
    self.pois = multigrid.MultiLevelPoisson(
        self.flow.p, self.flow.mu0, self.flow.sigma, self.flow.perdir,
        maxlevels=maxlevels, strategy=self.strategy)
    logger.info('simulation on %s grid, %d multigrid levels, body=%r',
                self.flow.grid.dims, len(self.pois.levels), self.body)

  def __repr__(self):
    return f'Simulation({self.flow!r}, L={self.L}, U={self.U})'


def time(sim: Simulation) -> float:
  """Dimensional time of the current state."""
  return sim.flow.time()


def sim_time(sim: Simulation) -> float:
  """Convective time `t U / L` of the current state."""
  return time(sim) * sim.U / sim.L


def sim_measure(sim: Simulation, t: Optional[float] = None) -> None:
  """
  Remeasures the body and rebuilds the pressure solver.

  Args:
    sim: the simulation.
    t: measurement time; defaults to the end of the next step.
  """
  if t is None:
    t = float(sum(sim.flow.dt))
  measure.measure(sim.flow, sim.body, t=t, eps=sim.eps)
  sim.pois.update(sim.flow.mu0)


def sim_step(
    sim: Simulation,
    t_end: Optional[float] = None,
    remeasure: bool = True,
    max_steps: Optional[int] = None,
    verbose: bool = False,
) -> List[SolverReport]:
  """
  Advances the simulation.

  Without `t_end` a single step is taken. Otherwise steps are taken until the
  convective time reaches `t_end`, or `max_steps` steps have been taken.

  Args:
    sim: the simulation.
    t_end: convective end time.
    remeasure: remeasure the body before each step; only useful for moving
      bodies. It is ignored without a body.
    max_steps: maximum number of steps.
    verbose: log the progress of every step at INFO level.

  Returns:
    The pressure solver reports, two per step.
  """
  remeasure = remeasure and not isinstance(sim.body, bodies.NoBody)
  reports = []
  steps = 0
  while True:
    if t_end is None and steps == 1:
      break
    if t_end is not None and sim_time(sim) >= t_end:
      break
    if max_steps is not None and steps >= max_steps:
      break
    if remeasure:
      sim_measure(sim)
    reports.extend(equations.mom_step(sim.flow, sim.pois, sim.tol, sim.itmx))
    steps += 1
    if verbose:
      logger.info('tU/L=%.4f, Δt=%.3f, cycles=%s', sim_time(sim),
                  sim.flow.dt[-1], [r.iterations for r in reports[-2:]])
  return reports
