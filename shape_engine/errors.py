"""Exception types raised by the shape engine."""

from __future__ import annotations


class PreconditionError(ValueError):
    """A caller-side precondition was violated.

    Raised when a required derived structure (BVH, visibility graph,
    elevation table) is missing, or when batch dimensions disagree with
    the mesh. These indicate a defect in the calling code, not a transient
    condition, so they are never retried.
    """
