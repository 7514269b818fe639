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
Immersed body geometry.

A body is anything that can answer two questions at a point `x` and time `t`:

- `sdf(x, t)`: the signed distance to its surface, negative inside. Only the
  sign and the zero level set must be exact.
- `measure(x, t, fastd2)`: the triple `(d, n, V)` of distance, outward unit
  normal and surface velocity. Far from the surface (`d² > fastd2`) a body may
  return zero normal and velocity.

Three variants are provided:

-   `NoBody`: no immersion at all.
-   `AutoBody`: a body defined by a signed distance function and an optional
    coordinate map `ξ = map(x, t)`. The normal comes from `jax.grad` of the
    distance and the velocity from the Jacobian of the map, so any motion
    or deformation expressed through `map` is measured automatically.
-   `Bodies`: boolean combinations (union, intersection, difference) of
    other bodies.

All functions are written for a single point and must be traceable by JAX:
the measurement pass maps them over the grid with `vmap` or `lax.map`.
"""

import dataclasses
from typing import Callable, List, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp

from jax_bdim.base import errors

Array = jax.Array
SDFFn = Callable[[Array, float], Array]
MapFn = Callable[[Array, float], Array]
Measurement = Tuple[Array, Array, Array]

UNION = 'union'
INTERSECTION = 'intersection'
DIFFERENCE = 'difference'
OPERATIONS = (UNION, INTERSECTION, DIFFERENCE)


class AbstractBody:
  """
  Interface of immersed bodies, with the boolean algebra operators.

  `a + b` and `a | b` are the union, `a & b` the intersection, `a - b` the
  difference and `-a` the complement of `a`.
  """

  def sdf(self, x: Array, t: float = 0.) -> Array:
    raise NotImplementedError

  def measure(self, x: Array, t: float = 0., fastd2=jnp.inf) -> Measurement:
    raise NotImplementedError

  def __add__(self, other):
    return Bodies([self, other], [UNION])

  __or__ = __add__

  def __and__(self, other):
    return Bodies([self, other], [INTERSECTION])

  def __sub__(self, other):
    return Bodies([self, other], [DIFFERENCE])

  def __neg__(self):
    return Complement(self)


class NoBody(AbstractBody):
  """The absence of a body: infinitely far from every point."""

  def sdf(self, x, t=0.):
    return jnp.asarray(jnp.inf, x.dtype)

  def measure(self, x, t=0., fastd2=jnp.inf):
    return self.sdf(x, t), jnp.zeros_like(x), jnp.zeros_like(x)

  def __repr__(self):
    return 'NoBody()'


def _identity(x, t):
  del t  # unused.
  return x


class AutoBody(AbstractBody):
  """
  A body from a signed distance function and a coordinate map.

  Args:
    sdf: signed distance `sdf(ξ, t)`, negative inside the body.
    map: coordinate map `ξ = map(x, t)`, identity by default. A time
      dependent map moves or deforms the body.
    compose: when true the body distance is `sdf(map(x, t), t)`. When false
      `sdf` is used as given and `map` only serves the velocity measurement.
  """

  def __init__(self, sdf: SDFFn, map: Optional[MapFn] = None,
               compose: bool = True):
    self.map = _identity if map is None else map
    self.compose = compose
    self._sdf = sdf
    if compose:
      self._distance = lambda x, t: sdf(self.map(x, t), t)
    else:
      self._distance = sdf

  def sdf(self, x, t=0.):
    return self._distance(x, jnp.asarray(t, x.dtype))

  def measure(self, x, t=0., fastd2=jnp.inf):
    """
    Distance, normal and velocity at `x`.

    The pseudo distance is corrected by the gradient magnitude,
    `d = sdf/|∇sdf|`, which makes non-metric distance functions accurate near
    the surface. An undefined gradient (e.g. at the centre of a circle)
    gives a zero normal and velocity.

    The velocity follows from the map: with `ξ = map(x, t)` fixed on a body
    point, `J ẋ + ∂map/∂t = 0`, so `V = -J⁻¹ ∂map/∂t`.
    """
    t = jnp.asarray(t, x.dtype)
    d = self._distance(x, t)
    n = jax.grad(self._distance)(x, t)
    m = jnp.sqrt(jnp.sum(n**2))
    valid = jnp.isfinite(m) & (m > 0)
    safe_m = jnp.where(valid, m, 1)
    d_corrected = jnp.where(valid, d / safe_m, d)
    n = jnp.where(valid, n / safe_m, 0)

    J = jax.jacfwd(self.map, argnums=0)(x, t)
    dot = jax.jacfwd(self.map, argnums=1)(x, t)
    V = jnp.where(valid, -jnp.linalg.solve(J, dot), 0)

    far = d**2 > fastd2
    return (jnp.where(far, d, d_corrected),
            jnp.where(far, 0, n),
            jnp.where(far, 0, V))

  def __repr__(self):
    return f'AutoBody({self._sdf!r}, compose={self.compose})'


class Complement(AbstractBody):
  """Everything outside `body`: distance and normal change sign."""

  def __init__(self, body: AbstractBody):
    self.body = body

  def sdf(self, x, t=0.):
    return -self.body.sdf(x, t)

  def measure(self, x, t=0., fastd2=jnp.inf):
    d, n, V = self.body.measure(x, t, fastd2)
    return -d, -n, V

  def __neg__(self):
    return self.body


def _combine(a: Measurement, b: Measurement, op: str) -> Measurement:
  """Reduces two measurements with a boolean operation."""
  (da, na, Va), (db, nb, Vb) = a, b
  if op == DIFFERENCE:
    # a - b is the intersection of a with the complement of b.
    db, nb = -db, -nb
    take_b = db > da
  elif op == INTERSECTION:
    take_b = db > da
  else:
    take_b = db < da
  return (jnp.where(take_b, db, da),
          jnp.where(take_b, nb, na),
          jnp.where(take_b, Vb, Va))


def _combine_sdf(da: Array, db: Array, op: str) -> Array:
  if op == DIFFERENCE:
    return jnp.maximum(da, -db)
  if op == INTERSECTION:
    return jnp.maximum(da, db)
  return jnp.minimum(da, db)


@dataclasses.dataclass(frozen=True)
class _Push:
  body: AbstractBody


@dataclasses.dataclass(frozen=True)
class _Apply:
  op: str


Instruction = Union[_Push, _Apply]


class Bodies(AbstractBody):
  """
  Boolean combination of bodies.

  `Bodies([a, b, c], [UNION, DIFFERENCE])` is `(a ∪ b) - c`: the operations
  are applied left to right. Nested combinations are flattened into a single
  postfix program, which `sdf` and `measure` evaluate with an explicit value
  stack. Evaluation never recurses on the Python call stack, so thousands of
  bodies can be combined.

  Args:
    bodies: the bodies to combine, at least one.
    ops: one operation per consecutive pair, each of `UNION`,
      `INTERSECTION` or `DIFFERENCE`.
  """

  def __init__(self, bodies: Sequence[AbstractBody], ops: Sequence[str]):
    bodies, ops = list(bodies), list(ops)
    if not bodies:
      raise errors.ConfigurationError('Bodies needs at least one body')
    if len(ops) != len(bodies) - 1:
      raise errors.ConfigurationError(
          f'{len(bodies)} bodies need {len(bodies) - 1} operations, '
          f'got {len(ops)}')
    for op in ops:
      if op not in OPERATIONS:
        raise errors.ConfigurationError(
            f'unknown body operation {op!r}, expected one of {OPERATIONS}')
    program = self._program_of(bodies[0])
    for body, op in zip(bodies[1:], ops):
      program.extend(self._program_of(body))
      program.append(_Apply(op))
    self.program: List[Instruction] = program

  @staticmethod
  def _program_of(body: AbstractBody) -> List[Instruction]:
    if isinstance(body, Bodies):
      return list(body.program)
    return [_Push(body)]

  @property
  def bodies(self) -> List[AbstractBody]:
    """The leaf bodies, in evaluation order."""
    return [ins.body for ins in self.program if isinstance(ins, _Push)]

  @property
  def ops(self) -> List[str]:
    return [ins.op for ins in self.program if isinstance(ins, _Apply)]

  def _evaluate(self, leaf, reduce):
    stack = []
    for ins in self.program:
      if isinstance(ins, _Push):
        stack.append(leaf(ins.body))
      else:
        b = stack.pop()
        a = stack.pop()
        stack.append(reduce(a, b, ins.op))
    (result,) = stack
    return result

  def sdf(self, x, t=0.):
    return self._evaluate(lambda body: body.sdf(x, t), _combine_sdf)

  def measure(self, x, t=0., fastd2=jnp.inf):
    return self._evaluate(lambda body: body.measure(x, t, fastd2), _combine)

  def __repr__(self):
    return f'Bodies({self.bodies!r}, {self.ops!r})'
