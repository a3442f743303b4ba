"""
Layered environment resolution for the checkout client.

Values come from ``os.environ`` (or an explicit ``base``), gaps are filled
from a ``.env`` file, and explicit overrides always win. The result feeds
:class:`x402_checkout.core.config.CheckoutConfig`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

__all__ = ["CheckoutEnvironment", "build_environment", "parse_env_file"]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_env_file(path: Path) -> Dict[str, str]:
    """
    Read ``KEY=VALUE`` lines from ``path``.

    Blank lines and ``#`` comments are skipped, an ``export`` prefix is
    accepted and matching surrounding quotes are stripped. A missing file
    yields an empty mapping.
    """
    values: Dict[str, str] = {}
    try:
        data = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return values

    for raw_line in data.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, value = line.split("=", 1)
        values[key.strip()] = _unquote(value.strip())
    return values


@dataclass(frozen=True)
class CheckoutEnvironment:
    variables: Mapping[str, str]
    source: Optional[Path] = None

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return ``key``, treating blank values as unset."""
        value = self.variables.get(key)
        if value is None or not str(value).strip():
            return default
        return str(value).strip()


def build_environment(
    *,
    env_file: Optional[str] = ".env",
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
) -> CheckoutEnvironment:
    """
    Assemble a :class:`CheckoutEnvironment`.

    ``base`` defaults to :data:`os.environ`; pass ``env_file=None`` to skip the
    file entirely.
    """
    merged: Dict[str, str] = dict(os.environ if base is None else base)

    source: Optional[Path] = None
    if env_file is not None:
        source = Path(env_file).expanduser()
        for key, value in parse_env_file(source).items():
            merged.setdefault(key, value)

    if overrides:
        merged.update(overrides)

    return CheckoutEnvironment(variables=merged, source=source)
