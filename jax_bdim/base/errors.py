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
Exception and warning types raised by the solver.

Invalid construction parameters are fatal and raise `ConfigurationError`,
which subclasses `ValueError` so callers validating arguments the usual way
keep working. Numerical conditions that the solver recovers from locally are
reported as warnings: the step still completes, but the condition is visible
to the caller through `warnings` and the package logger.
"""


class ConfigurationError(ValueError):
  """Invalid grid, boundary, body or solver configuration."""


class ConvergenceWarning(RuntimeWarning):
  """The Poisson solver stopped at its iteration cap above tolerance."""


class DegenerateGeometryWarning(RuntimeWarning):
  """Every interior cell of a Poisson level is isolated by solid faces."""
