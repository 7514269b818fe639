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
This `__init__.py` file makes the `jax_bdim.base` directory a Python package.

Importing the modules here allows `from jax_bdim.base import grids` and
friends. They are grouped by their role in the solver.
"""

# --- Foundations ---
# Exception and warning types, and the logging setup.
import jax_bdim.base.errors
import jax_bdim.base.log

# How per-cell passes are executed: sequential, vectorized or compiled.
import jax_bdim.base.execution

# The padded staggered grid and its index helpers.
import jax_bdim.base.grids

# Ghost cell filling: periodic, Dirichlet, Neumann and the convective exit.
import jax_bdim.base.boundaries

# Divergence, gradients and the BDIM normal derivative.
import jax_bdim.base.finite_differences


# --- Pressure ---
# The variable coefficient Poisson operator and its smoothers.
import jax_bdim.base.poisson

# The multigrid hierarchy solving it.
import jax_bdim.base.multigrid

# Projection of the velocity onto a divergence free field.
import jax_bdim.base.pressure


# --- Flow ---
# Convection and diffusion with flux limiters.
import jax_bdim.base.advection

# The flow state and the predictor/corrector momentum step.
import jax_bdim.base.equations

# The simulation driver that advances the flow in time.
import jax_bdim.base.time_stepping
