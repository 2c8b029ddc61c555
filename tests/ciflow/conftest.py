"""Shared fixtures for ciflow tests."""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from src.ciflow.github.client import GitHubAPIError
from src.ciflow.github.models import GitRef


class InMemoryRefStore:
    """Reference store backed by a dict, mirroring GitHub's refs API.

    Listing is a prefix match, deleting a missing ref and creating an
    existing ref both fail with 422 like the real API. With yield_on_list
    set, listing hands control back to the event loop so concurrent
    callers interleave between reading and writing.
    """

    def __init__(
        self,
        refs: Optional[Dict[str, str]] = None,
        yield_on_list: bool = False,
    ):
        self.yield_on_list = yield_on_list
        self.refs: Dict[str, str] = dict(refs or {})
        self.calls: List[Tuple[str, ...]] = []
        self.extra_listing: List[GitRef] = []

    async def list_matching_refs(self, owner: str, repo: str, ref: str) -> List[GitRef]:
        self.calls.append(("list", ref))
        if self.yield_on_list:
            await asyncio.sleep(0)
        prefix = f"refs/{ref}"
        listed = [
            GitRef(ref=name, sha=sha)
            for name, sha in sorted(self.refs.items())
            if name.startswith(prefix)
        ]
        return listed + list(self.extra_listing)

    async def delete_ref(self, owner: str, repo: str, ref: str) -> None:
        self.calls.append(("delete", ref))
        full_ref = f"refs/{ref}"
        if full_ref not in self.refs:
            raise GitHubAPIError("Reference does not exist", status_code=422)
        del self.refs[full_ref]

    async def create_ref(self, owner: str, repo: str, ref: str, sha: str) -> GitRef:
        self.calls.append(("create", ref, sha))
        if ref in self.refs:
            raise GitHubAPIError("Reference already exists", status_code=422)
        self.refs[ref] = sha
        return GitRef(ref=ref, sha=sha)

    def mutating_calls(self) -> List[Tuple[str, ...]]:
        return [call for call in self.calls if call[0] != "list"]


@pytest.fixture
def ref_store():
    return InMemoryRefStore()


@pytest.fixture
def racing_ref_store():
    return InMemoryRefStore(yield_on_list=True)
