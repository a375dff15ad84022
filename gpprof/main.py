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
import logging
import sys
from typing import List, Optional

import configargparse
import uvicorn

from gpprof import __version__
from gpprof.cpu_profiler import BusyPolicy, CPUProfiler
from gpprof.engine import get_engine_handle
from gpprof.exceptions import EngineResolutionFailure, UnsupportedPlatform
from gpprof.gpprof_types import port_number, positive_float, positive_integer
from gpprof.log import initial_root_logger_setup
from gpprof.server import DEFAULT_PROFILE_SECONDS, create_app
from gpprof.state import init_state

logger: logging.LoggerAdapter

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4001
DEFAULT_MAX_DURATION = 600.0
DEFAULT_LOG_FILE = "/var/log/gpprof/gpprof.log"
DEFAULT_LOG_MAX_SIZE = 1024 * 1024 * 5
DEFAULT_LOG_BACKUP_COUNT = 1


def parse_cmd_args(argv: Optional[List[str]] = None) -> configargparse.Namespace:
    parser = configargparse.ArgumentParser(
        description="Serves pprof CPU profiles of this process over HTTP.",
        auto_env_var_prefix="gpprof_",
        add_config_file_help=True,
        add_env_var_help=False,
        default_config_files=["/etc/gpprof/config.ini"],
    )
    parser.add_argument("--config", is_config_file=True, help="Config file path")
    parser.add_argument("--host", type=str, default=DEFAULT_HOST, help="Address to listen on (default: %(default)s)")
    parser.add_argument(
        "-p", "--port", type=port_number, default=DEFAULT_PORT, help="Port to listen on (default: %(default)s)"
    )
    parser.add_argument(
        "-d",
        "--default-duration",
        type=positive_float,
        dest="default_duration",
        default=DEFAULT_PROFILE_SECONDS,
        help="Profiling duration in seconds when the request doesn't specify one (default: %(default)s)",
    )
    parser.add_argument(
        "--max-duration",
        type=positive_float,
        dest="max_duration",
        default=DEFAULT_MAX_DURATION,
        help="Longest profiling duration a request may ask for, in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--busy-policy",
        dest="busy_policy",
        choices=[policy.value for policy in BusyPolicy],
        default=BusyPolicy.REJECT.value,
        help="What to do with a profiling request that arrives while another one is running: 'reject' it"
        " (HTTP 409), or 'wait' for the running session to finish. Defaults to '%(default)s'.",
    )
    parser.add_argument(
        "--engine-path",
        dest="engine_path",
        type=str,
        help="Path to the py-spy executable, instead of the packaged one",
    )
    parser.add_argument(
        "--run-id",
        dest="run_id",
        type=str,
        default=None,
        help="Identifier of this run, reported in the startup log line (default: a random identifier)",
    )

    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("-v", "--verbose", action="store_true", default=False, dest="verbose")

    logging_options = parser.add_argument_group("logging")
    logging_options.add_argument("--log-file", action="store", type=str, dest="log_file", default=DEFAULT_LOG_FILE)
    logging_options.add_argument(
        "--log-rotate-max-size",
        action="store",
        type=positive_integer,
        dest="log_rotate_max_size",
        default=DEFAULT_LOG_MAX_SIZE,
    )
    logging_options.add_argument(
        "--log-rotate-backup-count",
        action="store",
        type=positive_integer,
        dest="log_rotate_backup_count",
        default=DEFAULT_LOG_BACKUP_COUNT,
    )

    args = parser.parse_args(argv)
    if args.default_duration > args.max_duration:
        parser.error("--default-duration can't be longer than --max-duration")
    return args


def main() -> None:
    args = parse_cmd_args()

    state = init_state(run_id=args.run_id)
    global logger
    logger = initial_root_logger_setup(
        logging.DEBUG if args.verbose else logging.INFO,
        args.log_file,
        args.log_rotate_max_size,
        args.log_rotate_backup_count,
    )
    logger.info(
        "Running gpprof",
        version=__version__,
        run_id=state.run_id,
        commandline=" ".join(sys.argv[1:]),
        arguments=args.__dict__,
    )

    engine_handle = get_engine_handle(args.engine_path)
    try:
        # resolve eagerly, so an unsupported platform is reported at startup.
        engine_handle.get()
    except UnsupportedPlatform as e:
        logger.error(f"{e}, profiling is not available")
        sys.exit(1)
    except EngineResolutionFailure as e:
        # not fatal, resolution is retried by the first profiling request.
        logger.warning(str(e))

    profiler = CPUProfiler(
        engine_handle=engine_handle,
        busy_policy=BusyPolicy(args.busy_policy),
        max_duration=args.max_duration,
    )
    app = create_app(profiler, args.default_duration)

    logger.info(f"Serving pprof endpoints on http://{args.host}:{args.port}/debug/pprof/")
    # our own handlers are already installed on the gpprof logger
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
