"""Lock graphs: reproducible, content-addressed pinned package sets.

The package is split into focused submodules:

- ``models``: ``LockedPackage`` and ``LockProvenance``.
- ``lockgraph``: the ``LockGraph`` class with hashing and serialization.
- ``operations``: deserialization, validation and diffing.
- ``factory``: ``from_resolution`` for building graphs from resolver output.

All public names are re-exported here.
"""

from lockstep.core.lockgraph.models import LockedPackage, LockProvenance
from lockstep.core.lockgraph.lockgraph import LockGraph

from lockstep.core.lockgraph import operations as _ops
from lockstep.core.lockgraph import factory as _factory

LockGraph.from_dict = classmethod(_ops._from_dict)
LockGraph.from_json = classmethod(_ops._from_json)
LockGraph.read = classmethod(_ops._read)
LockGraph.validate = _ops._validate
LockGraph.diff = _ops._diff
LockGraph.from_resolution = classmethod(_factory._from_resolution)

__all__ = ["LockGraph", "LockedPackage", "LockProvenance"]
