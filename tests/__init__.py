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
from pathlib import Path

HERE = Path(__file__).parent
PARENT = HERE.parent
RESOURCES_DIRECTORY = PARENT / "gpprof" / "resources"

# a collapsed trace as the engine writes it: 3 stacks, 10 samples in total.
SAMPLE_TRACE = """\
<module> (app.py:10);main (app.py:5);compute (app.py:20) 7
<module> (app.py:10);main (app.py:5);read_input (app.py:30) 2
<module> (app.py:10);main (app.py:5);compute (app.py:20);inner (lib.py:3) 1
"""
SAMPLE_TRACE_STACKS = {
    ("<module>", "main", "compute"): 7,
    ("<module>", "main", "read_input"): 2,
    ("<module>", "main", "compute", "inner"): 1,
}
