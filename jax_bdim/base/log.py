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
Logging setup for `jax_bdim`.

Every module logs through `logging.getLogger(__name__)`, so all records live
under the `jax_bdim` namespace. The package logger carries a `NullHandler`
and is silent unless the application configures logging, or calls `logger`
below to write a log file.

Pressure solver residuals are emitted on the dedicated `jax_bdim.residuals`
child logger as comma separated `solve,cycle,residual` messages, which
makes the log file directly loadable as a table.
"""

import logging

PACKAGE = 'jax_bdim'
RESIDUALS = PACKAGE + '.residuals'

logging.getLogger(PACKAGE).addHandler(logging.NullHandler())


class CSVFormatter(logging.Formatter):
  """Formats records as `logger,level,message` lines."""

  def __init__(self):
    super().__init__('%(name)s,%(levelname)s,%(message)s')


def logger(
    fname: str = PACKAGE,
    level: int = logging.DEBUG,
    stream: bool = False,
) -> logging.Logger:
  """
  Attaches a file handler writing `<fname>.log` to the package logger.

  Handlers previously installed by this function are removed first, so
  calling it again redirects the log rather than duplicating records.

  Args:
    fname: file name without the `.log` extension.
    level: minimum level written to the file.
    stream: also echo records to stderr.

  Returns:
    The configured `jax_bdim` logger.
  """
  log = logging.getLogger(PACKAGE)
  log.setLevel(level)
  for handler in log.handlers[:]:
    if getattr(handler, '_jax_bdim', False):
      log.removeHandler(handler)
      handler.close()

  formatter = CSVFormatter()
  handlers = [logging.FileHandler(fname + '.log', mode='w')]
  if stream:
    handlers.append(logging.StreamHandler())
  for handler in handlers:
    handler.setFormatter(formatter)
    handler.setLevel(level)
    handler._jax_bdim = True
    log.addHandler(handler)
  return log
