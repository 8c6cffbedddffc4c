from socialops.domain.schedule import index_history, merge_posts, reconcile_schedule


def _post(post_id, *, ayr_post_id=None, status="scheduled", approval_status="approved", scheduled_at=None):
    return {
        "id": post_id,
        "workspace_id": "ws-1",
        "caption": f"caption {post_id}",
        "status": status,
        "approval_status": approval_status,
        "ayr_post_id": ayr_post_id,
        "scheduled_at": scheduled_at,
    }


def test_history_never_adds_or_drops_local_posts():
    posts = [_post("p-1", ayr_post_id="ext-1"), _post("p-2")]
    history = [{"id": "ext-1", "status": "success"}, {"id": "ext-orphan", "status": "success"}]

    merged = merge_posts(posts, history)

    assert [row["id"] for row in merged] == ["p-1", "p-2"]
    assert merged[0]["ayrshareData"] == {"postId": "ext-1", "status": "success", "type": None}
    assert merged[1]["ayrshareData"] is None


def test_history_does_not_override_local_status():
    posts = [_post("p-1", ayr_post_id="ext-1", status="scheduled")]
    merged = merge_posts(posts, [{"id": "ext-1", "status": "error"}])
    assert merged[0]["status"] == "scheduled"
    assert merged[0]["ayrshareData"]["status"] == "error"


def test_index_history_skips_items_without_id():
    index = index_history([{"id": "a"}, {"status": "success"}, "junk", {"id": ""}, {"id": 7}])
    assert set(index) == {"a", "7"}


def test_reconcile_groups_by_status_and_approval():
    posts = [
        _post("p-1", ayr_post_id="ext-1", status="posted"),
        _post("p-2", status="draft", approval_status="pending"),
        _post("p-3", status="error", approval_status="rejected"),
        _post("p-4", status="scheduled", approval_status="bogus"),
    ]
    result = reconcile_schedule(posts, [{"id": "ext-1", "status": "success"}])

    assert result["total"] == 4
    assert [row["id"] for row in result["grouped"]["posted"]] == ["p-1"]
    assert result["grouped"]["posted"][0]["ayrshareData"]["status"] == "success"
    assert result["counts"] == {"pending": 1, "scheduled": 1, "posted": 1, "failed": 1}
    assert result["approval_counts"] == {"pending": 2, "changes_requested": 0, "approved": 1, "rejected": 1}


def test_reconcile_applies_filters_and_all_means_unfiltered():
    posts = [_post("p-1", status="posted"), _post("p-2", status="scheduled", approval_status="pending")]

    assert reconcile_schedule(posts, [], status_filter="all")["total"] == 2
    assert [row["id"] for row in reconcile_schedule(posts, [], status_filter="posted")["posts"]] == ["p-1"]
    assert [row["id"] for row in reconcile_schedule(posts, [], approval_filter="pending")["posts"]] == ["p-2"]


def test_reconcile_orders_by_scheduled_time_with_unscheduled_last():
    posts = [
        _post("p-late", scheduled_at="2026-03-02T10:00:00+00:00"),
        _post("p-none"),
        _post("p-early", scheduled_at="2026-03-01T10:00:00+00:00"),
    ]
    assert [row["id"] for row in reconcile_schedule(posts, [])["posts"]] == ["p-early", "p-late", "p-none"]


def test_reconcile_is_idempotent_for_the_same_inputs():
    posts = [_post("p-1", ayr_post_id="ext-1"), _post("p-2", ayr_post_id="ext-2")]
    history = [{"id": "ext-2", "status": "success", "type": "scheduled"}]

    first = reconcile_schedule(posts, history)
    second = reconcile_schedule(posts, history)

    assert first == second
    assert posts[0].get("ayrshareData") is None
