from datetime import datetime, timedelta

from circlefeed.feed.dedup import merge_cross_posts
from circlefeed.feed.posts import PostRecord

T0 = datetime(2026, 10, 18, 12, 0, 0)


def _row(post_id, *, hours_ago, circles, canonical_id=None, author="a" * 32, **extra):
    return PostRecord(
        post_id=post_id,
        author_id=author,
        media_kind="movie",
        tmdb_id="603",
        created_at=T0 - timedelta(hours=hours_ago),
        canonical_id=canonical_id,
        circle_ids=list(circles),
        merged_post_ids=[post_id],
        **extra,
    )


def test_cross_posts_collapse_to_newest_with_union_of_circles():
    rows = [
        _row("p3", hours_ago=1, circles=["B"], canonical_id="c1", comment="x" * 50),
        _row("p2", hours_ago=5, circles=["C", "B"], canonical_id="c1"),
        _row("p1", hours_ago=48, circles=["A"], canonical_id="c1", rating=5),
    ]

    merged = merge_cross_posts(rows)

    assert len(merged) == 1
    row = merged[0]
    assert row.post_id == "p3"
    assert row.comment == "x" * 50
    assert row.rating is None
    assert row.circle_ids == ["B", "C", "A"]
    assert row.merged_post_ids == ["p3", "p2", "p1"]


def test_merge_does_not_mutate_input_rows():
    rows = [
        _row("p2", hours_ago=1, circles=["B"], canonical_id="c1"),
        _row("p1", hours_ago=2, circles=["A"], canonical_id="c1"),
    ]
    merge_cross_posts(rows)
    assert rows[0].circle_ids == ["B"]
    assert rows[0].merged_post_ids == ["p2"]


def test_posts_without_canonical_id_pass_through():
    rows = [
        _row("p2", hours_ago=1, circles=["A"]),
        _row("p1", hours_ago=2, circles=["A"]),
    ]
    merged = merge_cross_posts(rows)
    assert [r.post_id for r in merged] == ["p2", "p1"]
    assert all(len(r.merged_post_ids) == 1 for r in merged)


def test_distinct_subjects_stay_separate_and_ordered():
    rows = [
        _row("p4", hours_ago=1, circles=["A"], canonical_id="c2"),
        _row("p3", hours_ago=2, circles=["B"], canonical_id="c1"),
        _row("p2", hours_ago=3, circles=["A"], canonical_id="c2"),
        _row("p1", hours_ago=4, circles=["C"]),
    ]
    merged = merge_cross_posts(rows)
    assert [r.post_id for r in merged] == ["p4", "p3", "p1"]
    assert merged[0].circle_ids == ["A"]
    assert merged[0].merged_post_ids == ["p4", "p2"]


def test_timestamp_ties_order_by_post_id_descending():
    rows = [
        _row("pb", hours_ago=1, circles=["A"]),
        _row("pa", hours_ago=1, circles=["A"]),
        _row("pc", hours_ago=1, circles=["A"]),
    ]
    assert [r.post_id for r in merge_cross_posts(rows)] == ["pc", "pb", "pa"]


def test_empty_input():
    assert merge_cross_posts([]) == []
