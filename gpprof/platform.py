#
# Copyright (C) 2022 Intel Corporation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
import platform
import sys
from typing import Tuple


def get_os_and_arch() -> Tuple[str, str]:
    """
    Returns the (platform family, CPU architecture) pair of the running interpreter, both lowercase,
    e.g ("linux", "x86_64") or ("darwin", "arm64").
    """
    return sys.platform.lower(), platform.machine().lower()
