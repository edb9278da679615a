# /*
# Copyright 2026 The Grove Authors.
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
# */

"""bench_manager - disposable-infrastructure benchmark orchestration package."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path

from rich.console import Console

RUN_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class MirroredConsole:
    """Console proxy that also writes to the open run log, if any."""

    def __init__(self, real_console: Console) -> None:
        object.__setattr__(self, "_real", real_console)
        object.__setattr__(self, "_mirror", None)

    def __getattr__(self, name: str):
        return getattr(self._real, name)

    def print(self, *objects, **kwargs) -> None:
        self._real.print(*objects, **kwargs)
        if self._mirror is not None:
            self._mirror.print(*objects, **kwargs)

    @contextmanager
    def mirrored(self, log_path: Path):
        """Mirror console output and ``bench_manager`` log records into *log_path*."""
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as fh:
            object.__setattr__(self, "_mirror", Console(file=fh, no_color=True, width=160))
            handler = logging.FileHandler(log_path, encoding="utf-8")
            handler.setFormatter(logging.Formatter(RUN_LOG_FORMAT))
            logger.addHandler(handler)
            try:
                yield log_path
            finally:
                logger.removeHandler(handler)
                handler.close()
                object.__setattr__(self, "_mirror", None)


console = MirroredConsole(Console(stderr=True))
logger = logging.getLogger("bench_manager")
