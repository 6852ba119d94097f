"""Lockstep: layered dependency resolution and environment promotion."""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Recorded in every lock graph's provenance. Bump when resolution semantics
# change so that older artifacts can be told apart.
RESOLVER_VERSION = "lockstep-sat/1"
