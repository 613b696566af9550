"""
Session policy.

Policy flags can be set in code or loaded from the environment (and a
``.env`` file) with :meth:`Policy.from_env`.
"""

import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv


_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class Policy:
    allow_v1: bool = False
    allow_v2: bool = True
    require_encryption: bool = False
    send_whitespace_tag: bool = False
    whitespace_start_ake: bool = False
    error_start_ake: bool = False
    debug: bool = False

    @classmethod
    def from_env(cls, dotenv_path=None) -> "Policy":
        """
        Build a policy from OTR_* environment variables.

        Reads ``.env`` first (``dotenv_path``, or the nearest one above the
        working directory), then OTR_ALLOW_V1, OTR_ALLOW_V2,
        OTR_REQUIRE_ENCRYPTION, OTR_SEND_WHITESPACE_TAG,
        OTR_WHITESPACE_START_AKE, OTR_ERROR_START_AKE and OTR_DEBUG.
        Unset variables keep their defaults.
        """
        load_dotenv(dotenv_path or find_dotenv(usecwd=True))
        return cls(
            allow_v1=_env_flag("OTR_ALLOW_V1", cls.allow_v1),
            allow_v2=_env_flag("OTR_ALLOW_V2", cls.allow_v2),
            require_encryption=_env_flag("OTR_REQUIRE_ENCRYPTION", cls.require_encryption),
            send_whitespace_tag=_env_flag("OTR_SEND_WHITESPACE_TAG", cls.send_whitespace_tag),
            whitespace_start_ake=_env_flag("OTR_WHITESPACE_START_AKE", cls.whitespace_start_ake),
            error_start_ake=_env_flag("OTR_ERROR_START_AKE", cls.error_start_ake),
            debug=_env_flag("OTR_DEBUG", cls.debug),
        )

    @property
    def versions(self) -> set:
        """Protocol versions this policy allows."""
        versions = set()
        if self.allow_v1:
            versions.add(1)
        if self.allow_v2:
            versions.add(2)
        return versions
