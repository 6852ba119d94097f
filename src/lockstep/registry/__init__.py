"""Live package registry access for the resolver."""

from lockstep.registry.pypi_index import PyPIIndex, specifier_to_constraint

__all__ = ["PyPIIndex", "specifier_to_constraint"]
