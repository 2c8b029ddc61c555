"""Label classification and tag naming for ciflow labels.

A ciflow label is a pull request label in one of the CI-trigger namespaces,
e.g. ``ciflow/trunk`` or ``ci/slow``. Each such label on PR #N maps to the
tag ``<label>/<N>``, which CI workflows watch for.
"""

import logging
from typing import Iterable, Set


logger = logging.getLogger(__name__)


CIFLOW_LABEL_PREFIXES = ("ciflow/", "ci/")


def is_ciflow_label(label: str) -> bool:
    """Check whether a label belongs to a CI-trigger namespace.

    The match is a case-sensitive prefix match against
    CIFLOW_LABEL_PREFIXES.
    """
    return label.startswith(CIFLOW_LABEL_PREFIXES)


def label_to_tag(label: str, pr_number: int) -> str:
    """Derive the tag name for a label on a pull request.

    Args:
        label: The ciflow label, e.g. "ciflow/trunk".
        pr_number: The pull request number.

    Returns:
        str: Tag name in format "{label}/{pr_number}", e.g. "ciflow/trunk/12345".
    """
    return f"{label}/{pr_number}"


def desired_tags(labels: Iterable[str], pr_number: int) -> Set[str]:
    """Compute the set of tags a pull request's labels call for."""
    ciflow_labels = [label for label in labels if is_ciflow_label(label)]
    logger.info(
        "Found ciflow labels on PR",
        extra={"pr_number": pr_number, "labels": ciflow_labels},
    )
    return {label_to_tag(label, pr_number) for label in ciflow_labels}
