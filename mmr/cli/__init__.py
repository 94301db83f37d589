"""
mmr.cli
-------
Command-line entrypoints for an MMR kept in a KV database:

- append : append leaves
- info   : leaf count, node count, root
- peaks  : peak positions and digests
- prove  : inclusion proof for a leaf
- verify : stateless proof check

Usage:
  python -m mmr.cli --db sqlite:///mmr.db info
  mmr prove --help
"""
from __future__ import annotations

from .main import app, main

__all__ = ["app", "main"]
