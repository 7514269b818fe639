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
"""Pytest configuration and fixtures for the solver tests."""

import jax

# The tolerances below assume double precision.
jax.config.update('jax_enable_x64', True)

import jax.numpy as jnp  # pylint: disable=g-import-not-at-top
import numpy as np
import pytest

from jax_bdim.immersion import bodies


@pytest.fixture
def dtype():
  return jnp.float64


@pytest.fixture
def rng():
  return np.random.default_rng(0)


def circle(center, radius):
  """An `AutoBody` circle (or sphere)."""
  center = jnp.asarray(center, dtype=jnp.float64)
  return bodies.AutoBody(lambda x, t: jnp.sqrt(jnp.sum((x - center)**2)) - radius)


@pytest.fixture
def make_circle():
  return circle
