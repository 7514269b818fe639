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
This `__init__.py` file makes `jax_bdim` a Python package.

`jax_bdim` is an incompressible Navier-Stokes solver with immersed bodies,
written in JAX. Bodies enter the flow through the Boundary Data Immersion
Method (BDIM): the fluid and body equations are blended with a smooth kernel
around the body surface, so arbitrary, moving and deforming geometries are
described by nothing more than a signed distance function.

The package is organized into two subpackages:
- `base`: the grid, boundary conditions, finite difference operators, the
  pressure Poisson solver and the time stepping of the flow.
- `immersion`: the body geometry and its measurement onto the grid.
"""

# The `base` subpackage holds the Eulerian flow solver: the padded staggered
# fields, the momentum step and the multigrid pressure projection.
import jax_bdim.base

# The `immersion` subpackage turns a body's signed distance function into the
# BDIM coefficients `μ₀`, `μ₁` and the body velocity `V` used by the flow.
import jax_bdim.immersion
