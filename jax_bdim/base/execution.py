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
Execution strategies for the per-cell passes of the solver.

Every pass over the grid is written once, as a kernel acting either on a
single point (body measurement, initial conditions) or on whole padded
arrays (stencil operators, smoothers). A strategy decides how that same
kernel is executed:

-   `SEQUENTIAL`: points are processed one after another with `jax.lax.map`
    and array passes run eagerly, op by op.
-   `VECTORIZED`: points are batched with `jax.vmap`; array passes run
    eagerly. This is the default.
-   `COMPILED`: point kernels become `jax.jit(jax.vmap(kernel))` and array
    passes are `jax.jit` compiled. Inputs may be placed on a given device
    first with `jax.device_put`.

The kernel bodies never change between strategies, which is what makes the
strategies interchangeable and testable against each other.
"""

import dataclasses
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp

from jax_bdim.base import errors

Array = jax.Array
PointFn = Callable[..., Any]


@dataclasses.dataclass(frozen=True)
class ExecutionStrategy:
  """Base strategy: runs point kernels with `vmap` and array passes eagerly."""
  name: str = 'vectorized'

  def map(self, fn: PointFn, *points: Array) -> Any:
    """
    Applies a point kernel to every row of the stacked `points` arrays.

    Args:
      fn: kernel taking one row of each array in `points`.
      *points: arrays sharing a leading batch axis.

    Returns:
      The kernel outputs stacked along a new leading axis.
    """
    return jax.vmap(fn)(*points)

  def compile(self, fn: Callable, static_argnames: Sequence[str] = ()) -> Callable:
    """Returns the array pass `fn` as this strategy executes it."""
    del static_argnames  # only meaningful when compiling.
    return fn


@dataclasses.dataclass(frozen=True)
class Sequential(ExecutionStrategy):
  """One point at a time through `jax.lax.map`."""
  name: str = 'sequential'

  def map(self, fn, *points):
    return jax.lax.map(lambda row: fn(*row), points)


@dataclasses.dataclass(frozen=True)
class Vectorized(ExecutionStrategy):
  name: str = 'vectorized'


@dataclasses.dataclass(frozen=True, eq=False)
class Compiled(ExecutionStrategy):
  """
  XLA compiled execution, optionally offloaded to `device`.

  Compiled array passes are cached per function so that repeated calls with
  arrays of the same shape reuse the compiled executable.
  """
  name: str = 'compiled'
  device: Optional[Any] = None
  _cache: Dict[Tuple[Callable, Tuple[str, ...]], Callable] = dataclasses.field(
      default_factory=dict, repr=False)

  def _put(self, tree):
    if self.device is None:
      return tree
    return jax.device_put(tree, self.device)

  def map(self, fn, *points):
    return jax.jit(jax.vmap(fn))(*self._put(points))

  def compile(self, fn, static_argnames=()):
    key = (fn, tuple(static_argnames))
    if key not in self._cache:
      jitted = jax.jit(fn, static_argnames=tuple(static_argnames))

      def offloaded(*args, **kwargs):
        return jitted(*self._put(args), **kwargs)

      self._cache[key] = offloaded
    return self._cache[key]


SEQUENTIAL = Sequential()
VECTORIZED = Vectorized()
COMPILED = Compiled()

_BY_NAME = {s.name: s for s in (SEQUENTIAL, VECTORIZED, COMPILED)}


def get_strategy(
    strategy: Union[str, ExecutionStrategy, None]
) -> ExecutionStrategy:
  """Resolves a strategy instance or name; `None` gives the default."""
  if strategy is None:
    return VECTORIZED
  if isinstance(strategy, ExecutionStrategy):
    return strategy
  try:
    return _BY_NAME[strategy]
  except KeyError:
    raise errors.ConfigurationError(
        f'unknown execution strategy {strategy!r}, expected one of '
        f'{sorted(_BY_NAME)}') from None


def map_points(
    fn: PointFn,
    points: Array,
    strategy: Optional[ExecutionStrategy] = None,
) -> Any:
  """
  Evaluates a point kernel over an array of points of shape `(*shape, ndim)`.

  The points are flattened to a batch, mapped with the strategy, and every
  output leaf is reshaped back to `(*shape, ...)`.
  """
  strategy = get_strategy(strategy)
  shape = points.shape[:-1]
  flat = jnp.reshape(points, (-1, points.shape[-1]))
  out = strategy.map(fn, flat)
  return jax.tree_util.tree_map(
      lambda leaf: jnp.reshape(leaf, shape + leaf.shape[1:]), out)
