"""Article reconciliation.

Merges a freshly fetched batch of raw articles into a feed's stored
articles. New items are added unread, known items keep their local state and
get their display fields refreshed, and stored items missing from the batch
are kept: feeds are sliding windows, so absence upstream is not deletion.
"""

import hashlib
from datetime import datetime
from typing import Dict, List, Sequence, Set, Tuple

from feed_sync.models.schemas import Article, RawArticle, normalize_text, presentation_order


def article_id_for(raw: RawArticle) -> str:
    """Compute the stable identifier of a raw article.

    The GUID is used when the source provides a non-empty one. Otherwise the
    identifier is a hash of the normalized link and title, so trivial
    variations (case, whitespace, trailing slash) do not create new articles.
    """
    guid = (raw.guid or "").strip()
    if guid:
        return guid
    key = f"{normalize_text(raw.link)}\n{normalize_text(raw.title)}"
    return "sha256:" + hashlib.sha256(key.encode("utf-8")).hexdigest()


def reconcile(
    existing: Sequence[Article],
    fetched: Sequence[RawArticle],
    now: datetime,
    feed_id: str = "",
) -> Tuple[List[Article], int]:
    """Merge fetched raw articles into the existing articles of one feed.

    Args:
        existing: Articles currently stored for the feed (not modified)
        fetched: Raw articles from the latest fetch
        now: Timestamp recorded as first_seen on new articles
        feed_id: Owning feed; taken from the existing articles when empty

    Returns:
        Tuple of (merged articles newest first, number of new articles)
    """
    if not fetched:
        return list(existing), 0

    if not feed_id and existing:
        feed_id = existing[0].feed_id

    lookup: Dict[str, Article] = {article.id: article for article in existing}
    seen: Set[str] = set()
    merged: Dict[str, Article] = dict(lookup)
    new_count = 0

    for raw in fetched:
        article_id = article_id_for(raw)
        if article_id in seen:
            # Source listed the same item twice; first occurrence wins
            continue
        seen.add(article_id)

        current = lookup.get(article_id)
        if current is not None:
            merged[article_id] = current.with_state(
                title=raw.title,
                link=raw.link,
                published=raw.published or current.published,
                summary=raw.summary,
            )
        else:
            merged[article_id] = Article(
                id=article_id,
                feed_id=feed_id,
                title=raw.title,
                link=raw.link,
                published=raw.published,
                summary=raw.summary,
                read=False,
                dismissed=False,
                first_seen=now,
            )
            new_count += 1

    return presentation_order(list(merged.values())), new_count
