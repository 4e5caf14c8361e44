"""Loading a program image into guest memory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from rvemu.memory import PhysicalMemory

logger = logging.getLogger(__name__)

_BUILTIN_WORDS = (
    0x1C00000C,
    0x29804180,
    0x28804184,
    0x002A0000,
    0xDEADBEEF,
)
BUILTIN_IMAGE = b"".join(word.to_bytes(4, "little") for word in _BUILTIN_WORDS)


class ImageError(Exception):
    """Raised when an image cannot be loaded."""


def load_image(memory: PhysicalMemory, path: Optional[Union[str, Path]] = None) -> int:
    """Load ``path`` at the start of memory and return its size.

    Without a path the built-in image is loaded and 0 is returned.
    """
    if path is None:
        memory.load(BUILTIN_IMAGE)
        logger.info("No image file specified, using built-in image")
        return 0
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise ImageError(f"Can't open {path}") from exc
    if len(data) > memory.size:
        raise ImageError("Image is too large to fit in memory")
    memory.load(data)
    return len(data)