"""Tag reconciliation for ciflow labels.

Keeps the repository's refs/tags namespace in line with the ciflow labels
on each pull request.
"""

from .reconciler import RefStore, TagReconciler, short_tag_ref, tag_ref

__all__ = [
    "RefStore",
    "TagReconciler",
    "short_tag_ref",
    "tag_ref",
]
