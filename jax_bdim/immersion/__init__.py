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
Immersed bodies and their rasterization onto the flow grid.
"""

# The smoothed BDIM kernels and their moments.
import jax_bdim.immersion.kernels

# Signed distance bodies and their boolean combinations.
import jax_bdim.immersion.bodies

# Measurement of a body into `μ₀`, `μ₁` and `V`.
import jax_bdim.immersion.measure
