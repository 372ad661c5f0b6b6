"""Cross-post deduplication: one candidate row per canonical subject."""
import dataclasses
from typing import Iterable

from circlefeed.feed.posts import PostRecord


def chronological_key(row: PostRecord) -> tuple:
    return (row.created_at, row.post_id)


def merge_cross_posts(rows: Iterable[PostRecord]) -> list[PostRecord]:
    """
    Collapse posts that share a subject key into one row.

    `rows` must be ordered newest first on (created_at, post_id). The first
    row seen for a key is the representative; its circle list becomes the
    union of every contributing row's circles, in order of first discovery,
    and `merged_post_ids` lists every contributing post. Posts without a
    canonical id are their own subject, so they pass through unchanged.
    """
    merged: dict[str, PostRecord] = {}
    for row in rows:
        rep = merged.get(row.subject_key)
        if rep is None:
            merged[row.subject_key] = dataclasses.replace(
                row,
                circle_ids=list(dict.fromkeys(row.circle_ids)),
                merged_post_ids=[row.post_id],
            )
            continue
        for circle_id in row.circle_ids:
            if circle_id not in rep.circle_ids:
                rep.circle_ids.append(circle_id)
        if row.post_id not in rep.merged_post_ids:
            rep.merged_post_ids.append(row.post_id)

    return sorted(merged.values(), key=chronological_key, reverse=True)
