"""Unit tests for the TagReconciler.

Verifies that sync_tag and remove_tag issue exactly the reference store
calls needed to converge on the target state, that racing deliveries
converge, and that other store errors propagate to the caller.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from prometheus_client import CollectorRegistry

from src.ciflow.github.client import GitHubAPIError
from src.ciflow.github.models import GitRef
from src.ciflow.metrics import CiflowMetrics
from src.ciflow.tags.reconciler import TagReconciler, short_tag_ref, tag_ref


OWNER = "pytorch"
REPO = "pytorch"
TAG = "ciflow/trunk/12345"
OLD_SHA = "1111111111111111111111111111111111111111"
NEW_SHA = "2222222222222222222222222222222222222222"


def run_async(coro):
    return asyncio.run(coro)


@pytest.fixture
def reconciler(ref_store):
    return TagReconciler(ref_store=ref_store)


def test_tag_ref_paths():
    assert tag_ref(TAG) == "refs/tags/ciflow/trunk/12345"
    assert short_tag_ref(TAG) == "tags/ciflow/trunk/12345"


# ---------------------------------------------------------------------------
# sync_tag
# ---------------------------------------------------------------------------


def test_sync_creates_tag_when_none_exists(reconciler, ref_store):
    run_async(reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA))

    assert ref_store.refs == {tag_ref(TAG): NEW_SHA}
    assert ref_store.mutating_calls() == [("create", tag_ref(TAG), NEW_SHA)]


def test_sync_twice_is_idempotent(reconciler, ref_store):
    run_async(reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA))
    run_async(reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA))

    assert ref_store.refs == {tag_ref(TAG): NEW_SHA}
    assert ref_store.mutating_calls() == [("create", tag_ref(TAG), NEW_SHA)]


def test_sync_moves_tag_at_different_commit(reconciler, ref_store):
    ref_store.refs[tag_ref(TAG)] = OLD_SHA

    run_async(reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA))

    assert ref_store.refs == {tag_ref(TAG): NEW_SHA}
    assert ref_store.mutating_calls() == [
        ("delete", short_tag_ref(TAG)),
        ("create", tag_ref(TAG), NEW_SHA),
    ]


def test_sync_is_noop_when_tag_already_at_commit(reconciler, ref_store):
    ref_store.refs[tag_ref(TAG)] = NEW_SHA

    run_async(reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA))

    assert ref_store.refs == {tag_ref(TAG): NEW_SHA}
    assert ref_store.mutating_calls() == []


def test_sync_is_noop_when_any_listed_match_is_at_commit():
    store = AsyncMock()
    store.list_matching_refs.return_value = [
        GitRef(ref=tag_ref(TAG), sha=OLD_SHA),
        GitRef(ref=tag_ref(TAG), sha=NEW_SHA),
    ]

    run_async(TagReconciler(store).sync_tag(OWNER, REPO, TAG, NEW_SHA))

    store.delete_ref.assert_not_called()
    store.create_ref.assert_not_called()


def test_sync_ignores_prefix_matches_for_other_prs(reconciler, ref_store):
    # Listing "tags/ciflow/trunk/1" also returns the tag of PR 12
    ref_store.refs[tag_ref("ciflow/trunk/12")] = OLD_SHA

    run_async(reconciler.sync_tag(OWNER, REPO, "ciflow/trunk/1", NEW_SHA))

    assert ref_store.refs == {
        tag_ref("ciflow/trunk/12"): OLD_SHA,
        tag_ref("ciflow/trunk/1"): NEW_SHA,
    }
    assert ref_store.mutating_calls() == [
        ("create", tag_ref("ciflow/trunk/1"), NEW_SHA)
    ]


def test_sync_lists_with_short_ref(reconciler, ref_store):
    run_async(reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA))

    assert ref_store.calls[0] == ("list", short_tag_ref(TAG))


def test_sync_propagates_create_error():
    store = AsyncMock()
    store.list_matching_refs.return_value = []
    store.create_ref.side_effect = GitHubAPIError("boom", status_code=500)

    with pytest.raises(GitHubAPIError):
        run_async(TagReconciler(store).sync_tag(OWNER, REPO, TAG, NEW_SHA))

    store.create_ref.assert_called_once_with(OWNER, REPO, tag_ref(TAG), NEW_SHA)


def test_sync_does_not_create_when_delete_fails():
    store = AsyncMock()
    store.list_matching_refs.return_value = [GitRef(ref=tag_ref(TAG), sha=OLD_SHA)]
    store.delete_ref.side_effect = GitHubAPIError("boom", status_code=502)

    with pytest.raises(GitHubAPIError):
        run_async(TagReconciler(store).sync_tag(OWNER, REPO, TAG, NEW_SHA))

    store.create_ref.assert_not_called()


# ---------------------------------------------------------------------------
# remove_tag
# ---------------------------------------------------------------------------


def test_remove_deletes_exact_match(reconciler, ref_store):
    ref_store.refs[tag_ref(TAG)] = OLD_SHA

    run_async(reconciler.remove_tag(OWNER, REPO, TAG))

    assert ref_store.refs == {}
    assert ref_store.mutating_calls() == [("delete", short_tag_ref(TAG))]


def test_remove_without_match_makes_no_delete_call(reconciler, ref_store):
    run_async(reconciler.remove_tag(OWNER, REPO, TAG))

    assert ref_store.mutating_calls() == []


def test_remove_skips_prefix_matches(reconciler, ref_store):
    ref_store.refs[tag_ref("ciflow/trunk/12")] = OLD_SHA

    run_async(reconciler.remove_tag(OWNER, REPO, "ciflow/trunk/1"))

    assert ref_store.refs == {tag_ref("ciflow/trunk/12"): OLD_SHA}
    assert ref_store.mutating_calls() == []


def test_remove_deletes_only_first_exact_match():
    store = AsyncMock()
    store.list_matching_refs.return_value = [
        GitRef(ref=tag_ref(TAG), sha=OLD_SHA),
        GitRef(ref=tag_ref(TAG), sha=NEW_SHA),
    ]

    run_async(TagReconciler(store).remove_tag(OWNER, REPO, TAG))

    store.delete_ref.assert_called_once_with(OWNER, REPO, short_tag_ref(TAG))


def test_remove_propagates_list_error():
    store = AsyncMock()
    store.list_matching_refs.side_effect = GitHubAPIError("down", status_code=503)

    with pytest.raises(GitHubAPIError):
        run_async(TagReconciler(store).remove_tag(OWNER, REPO, TAG))

    store.delete_ref.assert_not_called()


def test_sync_tolerates_already_deleted_tag():
    store = AsyncMock()
    store.list_matching_refs.return_value = [GitRef(ref=tag_ref(TAG), sha=OLD_SHA)]
    store.delete_ref.side_effect = GitHubAPIError(
        "Reference does not exist", status_code=422
    )

    run_async(TagReconciler(store).sync_tag(OWNER, REPO, TAG, NEW_SHA))

    store.create_ref.assert_called_once_with(OWNER, REPO, tag_ref(TAG), NEW_SHA)


def test_sync_accepts_existing_tag_at_head_after_create_conflict():
    store = AsyncMock()
    store.list_matching_refs.side_effect = [
        [],
        [GitRef(ref=tag_ref(TAG), sha=NEW_SHA)],
    ]
    store.create_ref.side_effect = GitHubAPIError(
        "Reference already exists", status_code=422
    )

    run_async(TagReconciler(store).sync_tag(OWNER, REPO, TAG, NEW_SHA))

    assert store.list_matching_refs.call_count == 2


def test_sync_raises_create_conflict_when_tag_is_elsewhere():
    store = AsyncMock()
    store.list_matching_refs.side_effect = [
        [],
        [GitRef(ref=tag_ref(TAG), sha=OLD_SHA)],
    ]
    store.create_ref.side_effect = GitHubAPIError(
        "Reference already exists", status_code=422
    )

    with pytest.raises(GitHubAPIError) as exc_info:
        run_async(TagReconciler(store).sync_tag(OWNER, REPO, TAG, NEW_SHA))

    assert exc_info.value.status_code == 422


# ---------------------------------------------------------------------------
# Concurrent deliveries
# ---------------------------------------------------------------------------


def _gather(*coros):
    async def run():
        return await asyncio.gather(*coros, return_exceptions=True)

    return run_async(run())


def test_concurrent_syncs_to_same_commit_converge(racing_ref_store):
    registry = CollectorRegistry()
    reconciler = TagReconciler(
        racing_ref_store, metrics=CiflowMetrics(registry=registry)
    )

    results = _gather(
        reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA),
        reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA),
    )

    assert results == [None, None]
    assert racing_ref_store.refs == {tag_ref(TAG): NEW_SHA}
    assert registry.get_sample_value(
        "ciflow_tag_operations_total", {"operation": "created"}
    ) == 1
    assert registry.get_sample_value(
        "ciflow_tag_operations_total", {"operation": "unchanged"}
    ) == 1


def test_concurrent_syncs_moving_a_tag_converge(racing_ref_store):
    racing_ref_store.refs[tag_ref(TAG)] = OLD_SHA
    reconciler = TagReconciler(racing_ref_store)

    results = _gather(
        reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA),
        reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA),
    )

    assert results == [None, None]
    assert racing_ref_store.refs == {tag_ref(TAG): NEW_SHA}


def test_concurrent_removes_converge(racing_ref_store):
    racing_ref_store.refs[tag_ref(TAG)] = OLD_SHA
    reconciler = TagReconciler(racing_ref_store)

    results = _gather(
        reconciler.remove_tag(OWNER, REPO, TAG),
        reconciler.remove_tag(OWNER, REPO, TAG),
    )

    assert results == [None, None]
    assert racing_ref_store.refs == {}
    assert racing_ref_store.mutating_calls() == [
        ("delete", short_tag_ref(TAG)),
        ("delete", short_tag_ref(TAG)),
    ]


def test_remove_raises_other_delete_errors():
    store = AsyncMock()
    store.list_matching_refs.return_value = [GitRef(ref=tag_ref(TAG), sha=OLD_SHA)]
    store.delete_ref.side_effect = GitHubAPIError("boom", status_code=500)

    with pytest.raises(GitHubAPIError):
        run_async(TagReconciler(store).remove_tag(OWNER, REPO, TAG))


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def test_operations_are_counted(ref_store):
    registry = CollectorRegistry()
    reconciler = TagReconciler(ref_store, metrics=CiflowMetrics(registry=registry))
    ref_store.refs[tag_ref(TAG)] = OLD_SHA

    run_async(reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA))
    run_async(reconciler.sync_tag(OWNER, REPO, TAG, NEW_SHA))
    run_async(reconciler.remove_tag(OWNER, REPO, TAG))

    def count(operation):
        return registry.get_sample_value(
            "ciflow_tag_operations_total", {"operation": operation}
        )

    assert count("created") == 1
    assert count("deleted") == 2
    assert count("unchanged") == 1
