"""Settings for publish transactions.

Defaults match what the transaction needs on a typical machine; each can be
overridden per repository or through ``P4PUBLISH_*`` environment variables.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

ENV_TMPDIR = "P4PUBLISH_TMPDIR"
ENV_PREFIX = "P4PUBLISH_PREFIX"
ENV_LOOKBACK = "P4PUBLISH_LOOKBACK"
ENV_FILETYPE = "P4PUBLISH_FILETYPE"


def _default_temp_root() -> Path:
    return Path(tempfile.gettempdir())


@dataclass(frozen=True)
class PublishSettings:
    """Tunables for workspace provisioning, staging and cleanup.

    Attributes:
        temp_root: Directory under which each transaction's staging
            directory is created.
        workspace_prefix: Prefix of ephemeral workspace names.
        pending_lookback: How many recent changelists cleanup inspects when
            hunting for leftover pending changes.
        file_type: Depot file type used when opening new files for add.
    """
    temp_root: Path = field(default_factory=_default_temp_root)
    workspace_prefix: str = "p4publish_"
    pending_lookback: int = 1000
    file_type: str = "binary"

    def __post_init__(self):
        if self.pending_lookback < 1:
            raise ValueError(f"pending_lookback must be positive, got {self.pending_lookback}")
        object.__setattr__(self, "temp_root", Path(self.temp_root))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> PublishSettings:
        """Build settings from ``P4PUBLISH_*`` variables, then *overrides*."""
        env = os.environ if environ is None else environ
        values: dict = {}
        tmpdir = setting_value(env.get(ENV_TMPDIR))
        if tmpdir:
            values["temp_root"] = Path(tmpdir)
        prefix = setting_value(env.get(ENV_PREFIX))
        if prefix:
            values["workspace_prefix"] = prefix
        lookback = setting_value(env.get(ENV_LOOKBACK))
        if lookback:
            try:
                values["pending_lookback"] = int(lookback)
            except ValueError as exc:
                raise ValueError(f"{ENV_LOOKBACK} must be an integer, got {lookback!r}") from exc
        file_type = setting_value(env.get(ENV_FILETYPE))
        if file_type:
            values["file_type"] = file_type
        values.update(overrides)
        return cls(**values)


def setting_value(raw: str | None) -> str | None:
    """Return *raw* stripped, or None when unset or an unresolved ``${...}`` placeholder."""
    if raw is None:
        return None
    raw = raw.strip()
    if not raw or raw.startswith("${"):
        return None
    return raw
