from __future__ import annotations

import hashlib
import time


def form_token(now: float | None = None) -> str:
    """Hex MD5 of the current Unix second.

    Only keeps browsers from reusing a cached form. It is never checked on
    submission and two renders in the same second share a token.
    """
    seconds = int(time.time() if now is None else now)
    return hashlib.md5(
        str(seconds).encode("ascii"), usedforsecurity=False
    ).hexdigest()
