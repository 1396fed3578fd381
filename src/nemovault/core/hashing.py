""" Utility for hashing operations. """

import hashlib
from pathlib import Path


CHUNK_SIZE = 65536  # 64KB


def path_identity(path: Path | str) -> str:

    # Stable identity of a staged file: digest of its absolute path, not its content.

    absolute = str(Path(path).expanduser().absolute())
    return hashlib.sha256(absolute.encode("utf-8")).hexdigest()
