"""Manual review queue for sub-threshold matches."""

from ..errors import ReviewItemNotFound
from ..models.entities import ReviewItem, ReviewStatus
from ..models.records import utcnow
from ..store.gateway import REVIEW_QUEUE, StoreGateway
from .layers import mention_key


class ReviewQueue:
    """Persists review items. Approve/reject decisions live on the engine."""

    def __init__(self, store: StoreGateway):
        self.store = store

    def _row(self, item: ReviewItem) -> dict:
        row = item.model_dump(mode="json")
        # Flattened for equality filters
        row["mention_key"] = mention_key(item.mention, item.identity_index)
        return row

    async def save(self, item: ReviewItem) -> ReviewItem:
        await self.store.upsert(REVIEW_QUEUE, (item.item_id,), self._row(item))
        return item

    async def enqueue(self, item: ReviewItem) -> ReviewItem:
        existing = await self.pending_for_mention(
            mention_key(item.mention, item.identity_index)
        )
        if existing is not None:
            return existing
        return await self.save(item)

    async def get(self, item_id: str) -> ReviewItem:
        row = await self.store.get(REVIEW_QUEUE, (item_id,))
        if row is None:
            raise ReviewItemNotFound(item_id)
        return ReviewItem.model_validate(row)

    async def pending(self, limit: int | None = None) -> list[ReviewItem]:
        """Pending items, highest confidence first."""
        rows = await self.store.query(REVIEW_QUEUE, {"status": ReviewStatus.PENDING.value})
        items = [ReviewItem.model_validate(row) for row in rows]
        items.sort(key=lambda i: (-i.confidence, i.created_at))
        return items[:limit] if limit else items

    async def pending_for_mention(self, key: str) -> ReviewItem | None:
        rows = await self.store.query(
            REVIEW_QUEUE, {"mention_key": key, "status": ReviewStatus.PENDING.value}
        )
        return ReviewItem.model_validate(rows[0]) if rows else None

    async def for_candidate(self, entity_id: str) -> list[ReviewItem]:
        rows = await self.store.query(REVIEW_QUEUE, {"candidate_entity_id": entity_id})
        return [ReviewItem.model_validate(row) for row in rows]

    async def close_item(
        self, item: ReviewItem, status: ReviewStatus, entity_id: str
    ) -> ReviewItem:
        closed = item.model_copy(
            update={
                "status": status,
                "resolved_at": utcnow(),
                "resolved_entity_id": entity_id,
            }
        )
        return await self.save(closed)
