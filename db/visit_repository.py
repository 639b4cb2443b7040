"""MongoDB-backed visit log."""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from db.visit_log import ErrorCallback, SliceCallback, SliceQuery, Subscription, VisitLog
from models.visit import VisitRecord

logger = logging.getLogger(__name__)


class VisitStreamClosed(ConnectionError):
    """The change stream ended while the subscription was still active."""


class MongoVisitLog(VisitLog):
    """Visit log stored in the ``visits`` collection.

    Live slices use a change stream, so the deployment must be a replica set
    (Atlas clusters are).
    """

    name = "mongodb"

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.visits = db.visits

    async def append(self, record: VisitRecord) -> bool:
        """Insert a visit; MongoDB's clock sets ``timestamp``."""
        doc = record.to_document()
        doc.pop("timestamp", None)
        try:
            # upsert on a fresh _id is an insert that can use $currentDate
            await self.visits.update_one(
                {"_id": ObjectId()},
                {"$setOnInsert": doc, "$currentDate": {"timestamp": True}},
                upsert=True,
            )
            return True
        except PyMongoError as e:
            logger.error(f"Failed to append visit for {record.path}: {e}")
            return False

    async def fetch_slice(self, query: SliceQuery) -> List[VisitRecord]:
        """Run the slice query once."""
        criteria = {"timestamp": {"$gte": query.since}} if query.since is not None else {}
        cursor = self.visits.find(criteria).sort("timestamp", DESCENDING).limit(query.limit)
        docs = await cursor.to_list(length=query.limit)
        return [VisitRecord.from_document(doc) for doc in docs]

    def subscribe(
        self,
        query: SliceQuery,
        on_slice: SliceCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        subscription = Subscription(on_slice, on_error)
        subscription.attach(asyncio.create_task(self._watch(query, subscription)))
        return subscription

    async def _watch(self, query: SliceQuery, subscription: Subscription) -> None:
        pipeline = [{"$match": {"operationType": "insert"}}]
        try:
            # Open the stream before the first query so no insert falls in between
            async with self.visits.watch(pipeline) as stream:
                subscription.deliver(await self.fetch_slice(query))
                async for change in stream:
                    if subscription.cancelled:
                        return
                    timestamp = (change.get("fullDocument") or {}).get("timestamp")
                    if query.since is not None and isinstance(timestamp, datetime) and timestamp < query.since:
                        continue
                    subscription.deliver(await self.fetch_slice(query))
        except PyMongoError as e:
            logger.error(f"Visit log subscription failed: {e}")
            subscription.fail(e)
            return
        except Exception as e:
            # e.g. InvalidBSON while decoding a re-queried document
            logger.exception(f"Visit log subscription crashed: {e}")
            subscription.fail(e)
            return

        if not subscription.cancelled:
            logger.warning("Visit change stream closed unexpectedly")
            subscription.fail(VisitStreamClosed("visit change stream closed"))
