# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""grpctestify: declarative gRPC test runner.

Runs ``.gctf`` test files against live gRPC services through ``grpcurl``,
many at once, validating responses, expected errors and jq assertions.

Usage::

    grpctestify tests/                         Run every .gctf under tests/
    grpctestify tests/users.gctf -p 4          Four tests at a time
    grpctestify tests/ --dry-run               Show the commands, call nothing
    grpctestify tests/ --log-format junit --log-output report.xml
"""

__version__ = '1.0.0'

__all__: list[str] = ['__version__']
