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
"""Tests for jax_bdim.immersion.kernels and jax_bdim.immersion.bodies."""

import jax.numpy as jnp
import numpy as np
import pytest

from jax_bdim.base import errors
from jax_bdim.immersion import bodies
from jax_bdim.immersion import kernels

from conftest import circle


def test_kernel_moments_at_the_ends():
  np.testing.assert_allclose(kernels.kern0(jnp.array([-1., 0., 1.])), [0., 0.5, 1.],
                             atol=1e-15)
  np.testing.assert_allclose(kernels.kern1(jnp.array([-1., 1.])), 0., atol=1e-15)
  np.testing.assert_allclose(kernels.kern1(0.), 0.25 - 1 / np.pi**2)
  np.testing.assert_allclose(kernels.kern(jnp.array([-1., 0., 1.])), [0., 1., 0.],
                             atol=1e-15)


def test_mu0_is_monotonic_and_clipped():
  d = jnp.linspace(-3., 3., 61)
  mu0 = kernels.mu0(d, eps=2.)
  assert bool(jnp.all(jnp.diff(mu0) >= 0))
  np.testing.assert_array_equal(mu0[d <= -2.], 0.)
  np.testing.assert_array_equal(mu0[d >= 2.], 1.)
  assert bool(jnp.all((mu0 >= 0) & (mu0 <= 1)))
  np.testing.assert_allclose(kernels.mu1(jnp.array([-5., 5.]), eps=2.), 0.,
                             atol=1e-15)
  np.testing.assert_allclose(kernels.mu1(0., eps=2.), 2 * kernels.kern1(0.))


def test_no_body():
  body = bodies.NoBody()
  x = jnp.array([1., 2.])
  d, n, V = body.measure(x)
  assert jnp.isinf(d) and d > 0
  np.testing.assert_array_equal(n, 0.)
  np.testing.assert_array_equal(V, 0.)


def test_autobody_distance_and_normal():
  body = circle((5., 5.), 2.)
  d, n, V = body.measure(jnp.array([8., 5.]))
  np.testing.assert_allclose(d, 1.)
  np.testing.assert_allclose(n, [1., 0.], atol=1e-12)
  np.testing.assert_allclose(V, 0.)


def test_autobody_corrects_pseudo_distance():
  body = bodies.AutoBody(lambda x, t: 3 * (jnp.sqrt(jnp.sum(x**2)) - 1.))
  d, n, _ = body.measure(jnp.array([0., 2.]))
  np.testing.assert_allclose(d, 1.)
  np.testing.assert_allclose(n, [0., 1.], atol=1e-12)


def test_autobody_undefined_gradient_gives_zero_normal():
  body = circle((5., 5.), 2.)
  d, n, _ = body.measure(jnp.array([5., 5.]))
  np.testing.assert_allclose(d, -2.)
  np.testing.assert_array_equal(n, 0.)


def test_autobody_undefined_gradient_gives_zero_velocity():
  body = bodies.AutoBody(lambda x, t: jnp.sqrt(jnp.sum(x**2)) - 1.,
                         map=lambda x, t: x - jnp.array([t, 0.]))
  # the centre of the moving circle at t = 2
  d, n, V = body.measure(jnp.array([2., 0.]), t=2.)
  np.testing.assert_allclose(d, -1.)
  np.testing.assert_array_equal(n, 0.)
  np.testing.assert_array_equal(V, 0.)
  # away from the centre the body velocity is measured
  _, _, V = body.measure(jnp.array([2.5, 0.]), t=2.)
  np.testing.assert_allclose(V, [1., 0.])


def test_autobody_velocity_from_map():
  body = bodies.AutoBody(lambda x, t: jnp.sqrt(jnp.sum(x**2)) - 1.,
                         map=lambda x, t: x - jnp.array([2. * t, -t]))
  x = jnp.array([2.5, -1.])
  np.testing.assert_allclose(body.sdf(x, t=1.), -0.5)
  _, _, V = body.measure(x, t=1.)
  np.testing.assert_allclose(V, [2., -1.])


def test_autobody_far_fast_path():
  body = bodies.AutoBody(lambda x, t: jnp.sqrt(jnp.sum(x**2)) - 1.,
                         map=lambda x, t: x - jnp.array([t, 0.]))
  d, n, V = body.measure(jnp.array([10., 0.]), t=0., fastd2=9.)
  np.testing.assert_allclose(d, 9.)
  np.testing.assert_array_equal(n, 0.)
  np.testing.assert_array_equal(V, 0.)


def test_union_is_symmetric():
  a, b = circle((2., 2.), 1.), circle((5., 3.), 1.5)
  for x in ([0., 0.], [3.5, 2.5], [5., 3.], [9., 1.]):
    x = jnp.array(x)
    np.testing.assert_allclose((a + b).sdf(x), (b + a).sdf(x))
    np.testing.assert_allclose((a | b).measure(x)[0], (b | a).measure(x)[0])


def test_union_takes_the_closest_surface():
  a, b = circle((0., 0.), 1.), circle((4., 0.), 1.)
  d, n, _ = (a + b).measure(jnp.array([3.5, 0.]))
  np.testing.assert_allclose(d, -0.5)
  np.testing.assert_allclose(n, [-1., 0.], atol=1e-12)


def test_intersection_and_difference():
  a, b = circle((0., 0.), 2.), circle((2., 0.), 2.)
  x = jnp.array([1., 0.])
  np.testing.assert_allclose((a & b).sdf(x), -1.)
  # the lens is removed from a
  np.testing.assert_allclose((a - b).sdf(x), 1.)
  d, n, _ = (a - b).measure(x)
  np.testing.assert_allclose(d, 1.)
  np.testing.assert_allclose(n, [1., 0.], atol=1e-12)
  np.testing.assert_allclose((a - b).sdf(jnp.array([-1., 0.])), -1.)


def test_complement():
  a = circle((0., 0.), 1.)
  x = jnp.array([3., 0.])
  np.testing.assert_allclose((-a).sdf(x), -2.)
  d, n, _ = (-a).measure(x)
  np.testing.assert_allclose(d, -2.)
  np.testing.assert_allclose(n, [-1., 0.], atol=1e-12)
  assert -(-a) is a


def test_nested_combinations_are_flattened():
  a, b, c = circle((0., 0.), 1.), circle((3., 0.), 1.), circle((6., 0.), 1.)
  combined = (a + b) - c
  assert combined.bodies == [a, b, c]
  assert combined.ops == [bodies.UNION, bodies.DIFFERENCE]


@pytest.mark.parametrize('items, ops', [
    ([], []),
    (['a', 'b'], []),
    (['a', 'b'], ['xor']),
])
def test_invalid_bodies(items, ops):
  named = {'a': circle((0., 0.), 1.), 'b': circle((1., 0.), 1.)}
  with pytest.raises(errors.ConfigurationError):
    bodies.Bodies([named[k] for k in items], ops)


def test_deep_composition_does_not_recurse():
  n = 2000
  items = [circle((float(k), 0.), 0.25) for k in range(n)]
  flat = bodies.Bodies(items, [bodies.UNION] * (n - 1))
  nested = items[0]
  for item in items[1:]:
    nested = nested + item
  x = jnp.array([1500.5, 0.])
  np.testing.assert_allclose(flat.sdf(x), 0.25)
  np.testing.assert_allclose(nested.sdf(x), 0.25)
