"""Run configuration, read from the environment once at start-up."""

from __future__ import annotations

import fnmatch
import os
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_PREFIX = "/usr/local"
DEFAULT_CONCURRENCY = 16
MAX_CONCURRENCY = 32


class ConfigError(ValueError):
    """The environment holds an unusable setting."""


def split_globs(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip().strip("/") for part in value.split(":") if part.strip().strip("/"))


class CruftConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    prefix: str = DEFAULT_PREFIX
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1, le=MAX_CONCURRENCY)
    ignore_unpackaged: tuple[str, ...] = ()
    ignore_ldd: tuple[str, ...] = ()

    @field_validator("prefix")
    @classmethod
    def _absolute_prefix(cls, value: str) -> str:
        value = os.path.abspath(value or DEFAULT_PREFIX)
        return value.rstrip("/") or "/"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CruftConfig":
        env = os.environ if environ is None else environ
        raw_concurrency = env.get("CONCURRENCY", "").strip() or str(DEFAULT_CONCURRENCY)
        try:
            concurrency = int(raw_concurrency)
        except ValueError as exc:
            raise ConfigError(f"CONCURRENCY must be an integer, got {raw_concurrency!r}") from exc

        try:
            return cls(
                prefix=env.get("PREFIX") or DEFAULT_PREFIX,
                concurrency=concurrency,
                ignore_unpackaged=split_globs(env.get("IGNORE_UNPACKAGED")),
                ignore_ldd=split_globs(env.get("IGNORE_LDD")),
            )
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(x) for x in first.get("loc", ())) or "config"
            raise ConfigError(f"{field.upper()}: {first.get('msg')}") from exc

    def under_prefix(self, path: str) -> bool:
        if self.prefix == "/":
            return path.startswith("/")
        return path == self.prefix or path.startswith(self.prefix + "/")

    def is_ignored(self, path: str, globs: tuple[str, ...]) -> bool:
        """Match ``path`` against prefix-relative globs.

        A glob naming a directory also covers everything beneath it, so
        ``share/doc`` ignores ``share/doc/foo/README`` as well.
        """
        if not globs or not self.under_prefix(path):
            return False
        rel = path[len(self.prefix):].lstrip("/")
        for pattern in globs:
            if fnmatch.fnmatchcase(rel, pattern) or fnmatch.fnmatchcase(rel, pattern + "/*"):
                return True
        return False
