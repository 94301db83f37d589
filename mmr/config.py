"""
MMR configuration.

Where the accumulator keeps its nodes, which hash function it commits with,
and how it logs. Every field has a default and can be overridden through
environment variables. Nothing here imports heavy dependencies.

Environment variables (all optional):

  MMR_HASHER=sha3_256            # sha3_256 | blake2b_256 | keccak_256
  MMR_DB=memory://               # primary node store URI (memory:// or sqlite:///path.db)
  MMR_ARCHIVE_DB=memory://       # side archive URI; may be the same file as MMR_DB
  MMR_INDEXING_PREFIX=mmr-       # archive key prefix (0x-hex accepted)
  MMR_KEEP_LEAF_DATA=0           # 1 keeps full leaf payloads in the primary store
  MMR_LOG_LEVEL=INFO
  MMR_LOG_FORMAT=                # json | text | empty for auto
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from functools import lru_cache
from typing import Dict, List, Mapping, Optional

from .errors import ConfigError
from .hasher import get_hasher
from .storage import DEFAULT_INDEXING_PREFIX

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ------------------------------- helpers ------------------------------------


def _getenv(env: Mapping[str, str], key: str, default: Optional[str] = None) -> Optional[str]:
    v = env.get(key)
    return v if v is not None and v.strip() != "" else default


def _getenv_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    v = _getenv(env, key)
    if v is None:
        return default
    vv = v.strip().lower()
    if vv in _TRUE:
        return True
    if vv in _FALSE:
        return False
    raise ConfigError(f"Invalid boolean for {key}: {v!r}", data={"key": key, "value": v})


def _parse_prefix(value: str) -> bytes:
    """'mmr-' → b'mmr-'; '0x6d6d722d' → b'mmr-'."""
    v = value.strip()
    if v.lower().startswith("0x"):
        try:
            return bytes.fromhex(v[2:])
        except ValueError as e:
            raise ConfigError(f"Invalid hex prefix: {value!r}") from e
    return v.encode("utf-8")


# ------------------------------- config -------------------------------------


@dataclass(frozen=True)
class MMRConfig:
    """
    Top-level accumulator configuration.

    - hasher: registered hasher name committing every digest
    - db_uri / archive_uri: KV URIs for the primary store and the side archive
    - indexing_prefix: archive key prefix, one per range sharing an archive
    - keep_leaf_data: store Data leaves (not only their Hash) in the primary store
    - log_level / log_format: see mmr.logging
    """
    hasher: str = "sha3_256"
    db_uri: str = "memory://"
    archive_uri: str = "memory://"
    indexing_prefix: bytes = DEFAULT_INDEXING_PREFIX
    keep_leaf_data: bool = False
    log_level: str = "INFO"
    log_format: Optional[str] = None

    def validate(self) -> None:
        get_hasher(self.hasher)  # raises ConfigError for unknown names
        for name, uri in (("db_uri", self.db_uri), ("archive_uri", self.archive_uri)):
            if not (uri.startswith("memory://") or uri.startswith("sqlite:///") or uri.endswith(".db")):
                raise ConfigError(f"{name} must be memory:// or sqlite:///<path>", data={name: uri})
        if not self.indexing_prefix:
            raise ConfigError("indexing_prefix must be non-empty")
        if self.log_level.upper() not in _LEVELS:
            raise ConfigError(f"invalid log level {self.log_level!r}")
        if self.log_format not in (None, "json", "text"):
            raise ConfigError(f"invalid log format {self.log_format!r}")

    def to_dict(self) -> Dict[str, object]:
        d = asdict(self)
        d["indexing_prefix"] = self.indexing_prefix.decode("utf-8", "backslashreplace")
        return d

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "MMRConfig":
        """Build and validate a config from `env` (defaults to os.environ)."""
        env = os.environ if env is None else env
        fmt = _getenv(env, "MMR_LOG_FORMAT")
        cfg = cls(
            hasher=(_getenv(env, "MMR_HASHER", "sha3_256") or "sha3_256").strip().lower(),
            db_uri=_getenv(env, "MMR_DB", "memory://") or "memory://",
            archive_uri=_getenv(env, "MMR_ARCHIVE_DB", "memory://") or "memory://",
            indexing_prefix=_parse_prefix(_getenv(env, "MMR_INDEXING_PREFIX", "mmr-") or "mmr-"),
            keep_leaf_data=_getenv_bool(env, "MMR_KEEP_LEAF_DATA", False),
            log_level=(_getenv(env, "MMR_LOG_LEVEL", "INFO") or "INFO").strip().upper(),
            log_format=fmt.strip().lower() if fmt else None,
        )
        cfg.validate()
        return cfg


# ------------------------------- loader -------------------------------------


@lru_cache(maxsize=1)
def load_config() -> MMRConfig:
    """
    Load and validate configuration from the process environment (cached).
    Tests call `load_config.cache_clear()` to observe env changes.
    """
    return MMRConfig.from_env()


def format_config(cfg: Optional[MMRConfig] = None) -> str:
    cfg = cfg or load_config()
    lines: List[str] = [f"{k}: {v}" for k, v in cfg.to_dict().items()]
    return "\n".join(lines)


__all__ = [
    "DEFAULT_INDEXING_PREFIX",
    "MMRConfig",
    "load_config",
    "format_config",
]
