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
Smoothed kernels of the Boundary Data Immersion Method (BDIM).

BDIM blends the fluid and body equations with a smooth, compactly supported
kernel of half width `ϵ` centred on the body surface. Integrating the kernel
gives the two moments used by the solver, both as functions of the signed
distance `d` to the surface:

1.  The zeroth moment `μ₀(d)`: the fraction of the kernel lying in the fluid.
    It is a regularized Heaviside function, `0` for `d ≤ -ϵ`, `1` for
    `d ≥ ϵ`, and smooth and monotonic in between.
2.  The first moment `μ₁(d)`: the kernel weighted by the distance, which
    multiplies the surface normal to correct the stencil at cut cells.

The kernel is the raised cosine `½(1 + cos(πd))` on `[-1, 1]`, and the
moments below are its closed form integrals.
"""

import jax.numpy as jnp


def kern(d):
  """The raised cosine kernel on `[-1, 1]`."""
  return 0.5 + 0.5 * jnp.cos(jnp.pi * d)


def kern0(d):
  """Zeroth moment of the kernel, `∫₋₁ᵈ kern`, for `d ∈ [-1, 1]`."""
  return 0.5 + 0.5 * d + 0.5 * jnp.sin(jnp.pi * d) / jnp.pi


def kern1(d):
  """First moment of the kernel for `d ∈ [-1, 1]`."""
  return (0.25 * (1 - d**2)
          - 0.5 * (d * jnp.sin(jnp.pi * d)
                   + (1 + jnp.cos(jnp.pi * d)) / jnp.pi) / jnp.pi)


def mu0(d, eps=1.):
  """
  Fluid fraction of a location at signed distance `d` from the body.

  Args:
    d: signed distance, negative inside the body.
    eps: kernel half width in cells.

  Returns:
    `μ₀ ∈ [0, 1]`, equal to `0.5` on the surface. The end values are exact.
  """
  return jnp.clip(kern0(jnp.clip(d / eps, -1, 1)), 0, 1)


def mu1(d, eps=1.):
  """First kernel moment at signed distance `d`, scaled by the width `eps`."""
  return eps * kern1(jnp.clip(d / eps, -1, 1))
