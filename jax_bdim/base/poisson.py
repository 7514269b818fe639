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
The variable coefficient pressure Poisson operator and its smoothers.

The discrete problem is `A x = z` on the interior cells of the grid, where

    (A x)[I] = Σᵢ ( L[I,i] x[I-δi] + L[I+δi,i] x[I+δi] ) + D[I] x[I]
    D[I]     = -Σᵢ ( L[I,i] + L[I+δi,i] )

and `L[I,i]` is the conductance of the lower face `i` of cell `I`, which is
`μ₀` on that face. Solid faces have zero conductance, and so do the domain
walls after the boundary conditions are applied, which makes the operator a
Neumann Laplacian: every row sums to zero, `A·1 = 0`, and constants are in
its null space. Only `L` and the diagonal are stored; `A` is applied as a
stencil.

A cell all of whose faces are solid has `D = 0`. Such a degenerate cell is
decoupled from the system: its inverse diagonal is set to zero and its
residual is always zero.

Because the operator is singular, `residual` also removes the mean residual
over the non-degenerate cells. This makes the right hand side compatible
with the null space; the solved `x` satisfies that projected system.

The `Poisson` dataclass is registered as a JAX pytree, and every function
here is pure and traceable, so the same code runs eagerly, under `vmap` or
under `jax.jit`.
"""

import collections
import dataclasses
import logging
import warnings
from typing import Callable, List, Sequence, Tuple

import jax.numpy as jnp
from jax import lax
from jax.tree_util import register_pytree_node_class
import numpy as np
import scipy.sparse

from jax_bdim.base import boundaries
from jax_bdim.base import errors
from jax_bdim.base import grids

logger = logging.getLogger(__name__)

Array = grids.Array
VectorField = grids.VectorField

# Summary of a solve: cycles used, recorded residual norms, and convergence.
SolverReport = collections.namedtuple(
    'SolverReport', ['iterations', 'residuals', 'converged'])


@register_pytree_node_class
@dataclasses.dataclass
class Poisson:
  """
  State of one Poisson system.

  Attributes:
    L: face conductances, a vector field.
    D: assembled diagonal.
    iD: inverse diagonal, zero on degenerate and ghost cells.
    x: solution.
    e: error estimate (the correction applied by `increment`).
    r: residual.
    z: right hand side.
    perdir: periodic axes (static).
  """
  L: VectorField
  D: Array
  iD: Array
  x: Array
  e: Array
  r: Array
  z: Array
  perdir: Tuple[int, ...] = ()

  def tree_flatten(self):
    """Arrays are children; the periodic axes are static auxiliary data."""
    children = (self.L, self.D, self.iD, self.x, self.e, self.r, self.z)
    return children, (self.perdir,)

  @classmethod
  def tree_unflatten(cls, aux_data, children):
    return cls(*children, *aux_data)

  @property
  def shape(self) -> Tuple[int, ...]:
    return self.x.shape

  @property
  def ndim(self) -> int:
    return self.x.ndim


def _diagonal(L: VectorField) -> Tuple[Array, Array]:
  """Assembles `D` and `iD` from the face conductances."""
  D = jnp.pad(-sum(grids.shift(Li, 0, i) + grids.shift(Li, 1, i)
                   for i, Li in enumerate(L)), 1)
  tiny = 2 * jnp.finfo(D.dtype).eps
  degenerate = jnp.abs(D) < tiny
  iD = jnp.where(degenerate, 0., 1. / jnp.where(degenerate, 1., D))
  iD = iD * grids.interior_mask(D.shape)
  return D, iD


def set_diag(p: Poisson) -> Poisson:
  """Reassembles the diagonal after `p.L` changed."""
  D, iD = _diagonal(p.L)
  return dataclasses.replace(p, D=D, iD=iD)


def check_degenerate(p: Poisson, warn: bool = True) -> int:
  """
  Counts the degenerate interior cells of `p`.

  Isolated cells are expected inside solid bodies and are handled by the
  residual; a level with no coupled cell left has nothing to solve, and
  issues a `DegenerateGeometryWarning`.
  """
  interior = grids.inside(p.ndim)
  count = int(jnp.sum(p.iD[interior] == 0))
  logger.debug('poisson level %s: %d degenerate cells', p.shape, count)
  if warn and count == int(np.prod([n - 2 for n in p.shape])):
    warnings.warn(
        f'all {count} interior cells of the {p.shape} Poisson level are '
        'isolated by solid faces', errors.DegenerateGeometryWarning,
        stacklevel=3)
  return count


def poisson(
    x: Array,
    L: VectorField,
    z: Array,
    perdir: Sequence[int] = (),
    warn: bool = True,
) -> Poisson:
  """
  Builds and assembles a Poisson system.

  Args:
    x: initial guess, a padded scalar field.
    L: face conductances, a vector field on the same grid.
    z: right hand side.
    perdir: periodic axes.
    warn: warn when every interior cell is degenerate.

  Returns:
    The assembled `Poisson` system with zero residual and error buffers.
  """
  if len(L) != x.ndim or any(Li.shape != x.shape for Li in L):
    raise errors.ConfigurationError(
        f'conductances {[Li.shape for Li in L]} do not match field {x.shape}')
  zeros = jnp.zeros_like(x)
  p = Poisson(tuple(L), zeros, zeros, x, zeros, zeros, z, tuple(perdir))
  p = set_diag(p)
  check_degenerate(p, warn)
  return p


def _mult(L: VectorField, D: Array, x: Array, perdir=()) -> Array:
  x = boundaries.perBC(x, perdir)
  Ax = grids.shift(D, 0, 0) * grids.shift(x, 0, 0)
  for i, Li in enumerate(L):
    Ax = Ax + (grids.shift(Li, 0, i) * grids.shift(x, -1, i)
               + grids.shift(Li, 1, i) * grids.shift(x, 1, i))
  return jnp.pad(Ax, 1)


def mult(p: Poisson, x: Array) -> Array:
  """The matrix vector product `A·x`, zero on ghost cells."""
  return _mult(p.L, p.D, x, p.perdir)


def _dot(a: Array, b: Array) -> Array:
  return jnp.sum(a * b)


def residual(p: Poisson) -> Poisson:
  """
  Computes `r = z - A·x`, with the mean over coupled cells removed.

  Degenerate cells get `r = 0`, and the mean is subtracted from the other
  cells only, so that `sum(r) = 0` holds exactly as well.
  """
  x = boundaries.perBC(p.x, p.perdir)
  coupled = p.iD != 0
  r = jnp.where(coupled, p.z - _mult(p.L, p.D, x, p.perdir), 0.)
  count = jnp.maximum(jnp.sum(coupled), 1)
  r = jnp.where(coupled, r - jnp.sum(r) / count, 0.)
  return dataclasses.replace(p, x=x, r=r)


def increment(p: Poisson) -> Poisson:
  """Applies the error estimate: `x += e`, `r -= A·e`."""
  e = boundaries.perBC(p.e, p.perdir)
  r = p.r - _mult(p.L, p.D, e, p.perdir)
  return dataclasses.replace(p, x=p.x + e, r=r, e=e)


def jacobi(p: Poisson, it: int = 1) -> Poisson:
  """
  Jacobi smoothing, `it` sweeps of `e = r / D` followed by `increment`.

  Converges slowly but needs nothing beyond the diagonal.
  """
  def sweep(_, q):
    return increment(dataclasses.replace(q, e=q.r * q.iD))
  return lax.fori_loop(0, it, sweep, p)


def pcg(p: Poisson, it: int = 6, rho_tol: float = 1e-8) -> Poisson:
  """
  Conjugate gradient with the Jacobi (inverse diagonal) preconditioner.

  Stops after `it` iterations, once the step length `α` falls below 1% of
  its first value, or once the preconditioned residual `r·z` falls below
  `rho_tol`, whichever comes first.

  Args:
    p: Poisson system with an up to date residual.
    it: maximum number of iterations.
    rho_tol: absolute tolerance on `r·z`.

  Returns:
    The system with updated `x`, `r` and search direction `e`.
  """
  z = p.r * p.iD
  rho = _dot(p.r, z)
  dtype = rho.dtype

  def cond(state):
    i, _, _, _, _, _, done = state
    return jnp.logical_and(jnp.logical_not(done), i < it)

  def body(state):
    i, x, r, e, rho, alpha0, _ = state
    q = _mult(p.L, p.D, e, p.perdir)
    qe = _dot(q, e)
    alpha = rho / jnp.where(qe == 0, 1., qe)
    x = x + alpha * e
    r = r - alpha * q
    alpha0 = jnp.where(i == 0, jnp.abs(alpha), alpha0)
    z = r * p.iD
    rho2 = _dot(r, z)
    done = (jnp.abs(alpha) < 0.01 * alpha0) | (jnp.abs(rho2) < rho_tol)
    beta = rho2 / jnp.where(rho == 0, 1., rho)
    e = beta * e + z
    return (i + 1, x, r, e, rho2, alpha0.astype(dtype), done)

  state = (jnp.asarray(0), p.x, p.r, z, rho, jnp.zeros((), dtype),
           jnp.abs(rho) < rho_tol)
  _, x, r, e, _, _, _ = lax.while_loop(cond, body, state)
  return dataclasses.replace(p, x=x, r=r, e=e)


def L2(p: Poisson) -> Array:
  """Squared L2 norm of the residual."""
  return _dot(p.r, p.r)


def Linf(p: Poisson) -> Array:
  """Largest residual magnitude."""
  return jnp.max(jnp.abs(p.r))


def solver(
    p: Poisson,
    tol: float = 1e-4,
    itmx: int = 1000,
    smooth: Callable[[Poisson], Poisson] = pcg,
    log: bool = False,
) -> Tuple[Poisson, SolverReport]:
  """
  Single level solve, repeating `smooth` until `L2(r) <= tol`.

  Args:
    p: the Poisson system, with `x` as the initial guess.
    tol: absolute tolerance on the squared residual norm.
    itmx: maximum number of smoothing calls.
    smooth: smoother, `pcg` or `jacobi`.
    log: record the residual after every smoothing call.

  Returns:
    The solved system and a `SolverReport`.
  """
  p = residual(p)
  r2 = float(L2(p))
  residuals = [r2]
  nit = 0
  while r2 > tol and nit < itmx:
    p = smooth(p)
    r2 = float(L2(p))
    nit += 1
    if log:
      residuals.append(r2)
  p = dataclasses.replace(p, x=boundaries.perBC(p.x, p.perdir))
  report = SolverReport(nit, residuals if log else [r2], r2 <= tol)
  warn_unconverged(report, tol)
  return p, report


def warn_unconverged(report: SolverReport, tol: float) -> None:
  """Surfaces a solve that stopped above tolerance."""
  if report.converged:
    return
  message = (f'Poisson solve stopped after {report.iterations} iterations '
             f'with residual {report.residuals[-1]:.3e} > tol={tol:.1e}')
  logger.warning(message)
  warnings.warn(message, errors.ConvergenceWarning, stacklevel=3)


def as_matrix(p: Poisson) -> scipy.sparse.csr_matrix:
  """
  Assembles `A` over the interior cells as a SciPy sparse matrix.

  This is a diagnostic, used to inspect symmetry and spectrum; the solver
  never builds it. Couplings to non periodic ghost cells are dropped, which
  is exact once the wall conductances are zero.
  """
  dims = tuple(n - 2 for n in p.shape)
  index = np.arange(int(np.prod(dims))).reshape(dims)
  L = [np.asarray(Li) for Li in p.L]
  D = np.asarray(p.D)[grids.inside(p.ndim)]
  rows: List[np.ndarray] = [index.ravel()]
  cols: List[np.ndarray] = [index.ravel()]
  vals: List[np.ndarray] = [D.ravel()]
  for i in range(p.ndim):
    lower = np.asarray(grids.shift(L[i], 0, i))
    neighbour = np.roll(index, 1, axis=i)
    valid = np.ones(dims, bool)
    if i not in p.perdir:
      valid[_first_layer(i, p.ndim)] = False
    # A[I, I-δi] = L[I, i]; the transpose entry is A[I-δi, I] = L[I, i].
    for a, b in ((index, neighbour), (neighbour, index)):
      rows.append(a[valid])
      cols.append(b[valid])
      vals.append(lower[valid])
  n = index.size
  return scipy.sparse.csr_matrix(
      (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
      shape=(n, n))


def _first_layer(axis: int, ndim: int) -> Tuple:
  """Index of the first interior layer along `axis` of an interior array."""
  return tuple(0 if d == axis else slice(None) for d in range(ndim))
