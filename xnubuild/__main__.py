# SPDX-License-Identifier: LGPL-2.1-or-later

import faulthandler
import logging
import signal
import sys
from types import FrameType
from typing import Optional

from xnubuild import run_verb
from xnubuild.config import parse_config
from xnubuild.log import ARG_DEBUG, log_setup
from xnubuild.run import uncaught_exception_handler


def onsigterm(signal: int, frame: Optional[FrameType]) -> None:
    raise KeyboardInterrupt()


@uncaught_exception_handler()
def main() -> None:
    signal.signal(signal.SIGTERM, onsigterm)

    log_setup()
    args, config = parse_config(sys.argv[1:])

    if args.debug:
        ARG_DEBUG.set(True)
        logging.getLogger().setLevel(logging.DEBUG)
        faulthandler.enable()

    run_verb(args, config)


if __name__ == "__main__":
    main()
