"""Host path translation for bind mounts.

On Windows the Podman machine runs inside WSL, where host drives are mounted
under /mnt/<drive letter>. Paths handed to the engine for bind mounts must be
expressed the way that subsystem sees them.
"""

import re
import sys

_DRIVE_PATTERN = re.compile(r"^([A-Za-z]):[\\/]?")


def is_windows_host() -> bool:
    return sys.platform == "win32"


def translate_for_runtime(local_path: str, *, is_windows: bool | None = None) -> str:
    """Convert a local path into the form the container runtime expects.

    ``C:\\Users\\me\\f.txt`` becomes ``/mnt/c/Users/me/f.txt`` on Windows;
    any other host gets the path back unchanged.

    Args:
        local_path: Path on the machine running this process
        is_windows: Override host detection (defaults to the current platform)

    Returns:
        Path usable in a bind mount source
    """
    if is_windows is None:
        is_windows = is_windows_host()
    if not is_windows:
        return local_path

    path = _DRIVE_PATTERN.sub(lambda m: f"/mnt/{m.group(1).lower()}/", local_path)
    return path.replace("\\", "/")
