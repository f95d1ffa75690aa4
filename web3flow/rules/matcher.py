"""
Transaction-to-workflow matching.
"""

from typing import Iterable, Optional

from web3flow.database.models import Workflow


def normalize_address(address: Optional[str]) -> str:
    """Lower-case and trim an address for comparison."""
    return (address or "").strip().lower()


def match_workflows(to_address: Optional[str], workflows: Iterable[Workflow]) -> list[Workflow]:
    """
    Find the active workflows watching a destination address.

    Args:
        to_address: Transaction recipient
        workflows: Candidate workflows

    Returns:
        Every active workflow whose source address equals the recipient,
        compared case-insensitively, in input order
    """
    target = normalize_address(to_address)
    if not target:
        return []

    return [
        workflow
        for workflow in workflows
        if workflow.is_active and normalize_address(workflow.source_address) == target
    ]
