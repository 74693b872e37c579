"""
Scratch-directory file management for runs
"""

import os
import shutil
import secrets
import time
import logging
from dataclasses import dataclass, field
from typing import Iterable

logger = logging.getLogger(__name__)


@dataclass
class ArtifactSet:
    """Ordered paths created for one run, released as a unit."""

    paths: list[str] = field(default_factory=list)

    def add(self, path: str) -> str:
        self.paths.append(path)
        return path

    def __len__(self) -> int:
        return len(self.paths)

    def __bool__(self) -> bool:
        return bool(self.paths)


class Workspace:
    def __init__(self, root: str):
        self.root = root
        os.makedirs(root, exist_ok=True)

    def allocate(self, extension: str, content: str) -> str:
        """
        Write content to a freshly named file under the scratch directory

        Args:
            extension: File extension without the leading dot
            content: Source text, written as UTF-8

        Returns:
            Absolute path of the new file
        """
        name = f"tmp_{int(time.time() * 1000)}_{secrets.token_hex(8)}.{extension}"
        path = os.path.join(self.root, name)
        # "x" so a (vanishingly unlikely) name clash fails instead of clobbering
        with open(path, "x", encoding="utf-8", newline="") as f:
            f.write(content)
        return path

    @staticmethod
    def derived_path(path: str, new_suffix: str) -> str:
        stem, _ = os.path.splitext(path)
        return stem + new_suffix

    def release(self, paths: Iterable[str]) -> None:
        for path in list(paths):
            try:
                if os.path.isdir(path) and not os.path.islink(path):
                    shutil.rmtree(path)
                else:
                    os.unlink(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove artifact {path}: {e}")

    def purge(self, artifacts: ArtifactSet) -> None:
        """Release every path of the set and empty it, so a second purge is a no-op."""
        if not artifacts:
            return
        self.release(artifacts.paths)
        artifacts.paths.clear()
