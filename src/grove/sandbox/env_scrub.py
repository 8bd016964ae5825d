"""Environment scrubbing for workspace subprocesses.

Builds a copy of ``os.environ`` with credentials removed:
1. Names listed in ``SandboxConfig.secret_env_vars``.
2. Any name containing a common secret marker (``API_KEY``, ``TOKEN`` ...).

Tool commands and git invocations run with the scrubbed env so that
an agent's ``bash`` calls never see host credentials.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from grove.sandbox.config import SandboxConfig

logger = logging.getLogger(__name__)

_SECRET_PATTERNS = frozenset(
    {
        "API_KEY",
        "SECRET_KEY",
        "PRIVATE_KEY",
        "ACCESS_TOKEN",
        "AUTH_TOKEN",
    }
)


def build_sanitized_env(
    config: SandboxConfig,
    *,
    extra: dict[str, str] | None = None,
    extra_strip: list[str] | None = None,
) -> dict[str, str]:
    """Return a sanitized copy of os.environ, never mutating it.

    Args:
        config: SandboxConfig with the secret and allow lists.
        extra: Variables layered on top after scrubbing (e.g. git identity).
        extra_strip: Additional names to remove.
    """
    env = dict(os.environ)

    strip_set: set[str] = set(config.secret_env_vars)
    if extra_strip:
        strip_set.update(extra_strip)
    keep = set(config.allowed_env_vars)

    stripped: list[str] = []
    for key in list(env.keys()):
        if key in keep:
            continue
        key_upper = key.upper()
        if key in strip_set or any(p in key_upper for p in _SECRET_PATTERNS):
            del env[key]
            stripped.append(key)

    if stripped:
        logger.debug("Env scrub: stripped %d vars: %s", len(stripped), ", ".join(sorted(stripped)))

    if extra:
        env.update(extra)
    return env
