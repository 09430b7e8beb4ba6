"""
Repositories abstract the persistence layer from the application logic.

This module defines the record store interface for hydration profiles,
water logs, saved beverages and coach chat history, together with an
in-memory implementation (used for tests and local development) and a
MongoDB implementation (used in production). The pacing engine never
talks to a repository; the API fetches records here and hands them to
the engine as plain collections.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient

from .pacing import effective_amount, get_filtered_logs
from .schemas import (
    DEFAULT_BEVERAGES,
    BeverageCreate,
    BeverageRead,
    ChatMessageRead,
    ProfileCreate,
    ProfileRead,
    ProfileUpdate,
    WaterLogCreate,
    WaterLogRead,
)

logger = logging.getLogger(__name__)

LOG_RETENTION_DAYS = 30
CHAT_HISTORY_LIMIT = 100


def _default_beverages(profile: ProfileRead) -> List[BeverageCreate]:
    """Starter beverages sized in the profile's unit."""
    key = "serving_size_oz" if profile.unit_preference == "oz" else "serving_size_ml"
    return [
        BeverageCreate(
            name=bev["name"],
            serving_size=bev[key],
            hydration_factor=bev["hydration_factor"],
            icon=bev["icon"],
        )
        for bev in DEFAULT_BEVERAGES
    ]


def _localize(ts: datetime, now: datetime) -> datetime:
    """
    Attach a zone to a naive timestamp before it is written to MongoDB.

    BSON dates are UTC, so a naive value would be read back shifted. Naive
    timestamps belong to the zone of ``now``, or to the server's local zone
    when ``now`` is naive as well.
    """
    if ts.tzinfo is not None:
        return ts
    if now.tzinfo is not None:
        return ts.replace(tzinfo=now.tzinfo)
    return ts.astimezone()


class HydrationRepository:
    """Interface for hydration persistence backends.

    Methods taking a ``profile_id`` raise ``ValueError`` when the profile
    does not exist.
    """

    async def create_profile(self, profile: ProfileCreate) -> ProfileRead:
        raise NotImplementedError

    async def list_profiles(self) -> List[ProfileRead]:
        raise NotImplementedError

    async def get_profile(self, profile_id: str) -> Optional[ProfileRead]:
        raise NotImplementedError

    async def update_profile(self, profile_id: str, updates: ProfileUpdate) -> ProfileRead:
        raise NotImplementedError

    async def delete_profile(self, profile_id: str) -> None:
        raise NotImplementedError

    async def add_log(self, profile_id: str, log: WaterLogCreate, now: datetime) -> WaterLogRead:
        raise NotImplementedError

    async def list_logs(self, profile_id: str, now: datetime) -> List[WaterLogRead]:
        """Logs from the last 30 days, newest first."""
        raise NotImplementedError

    async def delete_log(self, log_id: str) -> None:
        raise NotImplementedError

    async def undo_last_log(self, profile_id: str, now: datetime) -> Optional[WaterLogRead]:
        """Delete the most recent log from today and return it."""
        today = get_filtered_logs(await self.list_logs(profile_id, now), "day", now)
        if not today:
            return None
        await self.delete_log(today[0].id)
        return today[0]

    async def add_beverage(self, profile_id: str, beverage: BeverageCreate, is_default: bool = False) -> BeverageRead:
        raise NotImplementedError

    async def list_beverages(self, profile_id: str) -> List[BeverageRead]:
        raise NotImplementedError

    async def delete_beverage(self, beverage_id: str) -> None:
        raise NotImplementedError

    async def add_chat_message(self, profile_id: str, role: str, content: str, now: datetime) -> ChatMessageRead:
        raise NotImplementedError

    async def list_chat_messages(self, profile_id: str) -> List[ChatMessageRead]:
        """Up to the last 100 messages, oldest first."""
        raise NotImplementedError

    async def clear_chat_history(self, profile_id: str) -> None:
        raise NotImplementedError

    async def _seed_beverages(self, profile: ProfileRead) -> None:
        for beverage in _default_beverages(profile):
            await self.add_beverage(profile.id, beverage, is_default=True)


class InMemoryRepository(HydrationRepository):
    """Simple in-memory repository for tests and local development.

    Records live in dictionaries keyed by generated IDs. Water logs are kept
    per profile in a list ordered newest first.
    """

    def __init__(self) -> None:
        self._profiles: Dict[str, ProfileRead] = {}
        self._logs: Dict[str, List[WaterLogRead]] = {}
        self._beverages: Dict[str, List[BeverageRead]] = {}
        self._chat: Dict[str, List[ChatMessageRead]] = {}
        self._id_counter = 0

    def _next_id(self) -> str:
        self._id_counter += 1
        return str(self._id_counter)

    def _require(self, profile_id: str) -> ProfileRead:
        profile = self._profiles.get(profile_id)
        if not profile:
            raise ValueError(f"Profile with id {profile_id} not found")
        return profile

    async def create_profile(self, profile: ProfileCreate) -> ProfileRead:
        profile_read = ProfileRead(id=self._next_id(), **profile.model_dump())
        self._profiles[profile_read.id] = profile_read
        self._logs[profile_read.id] = []
        self._beverages[profile_read.id] = []
        self._chat[profile_read.id] = []
        await self._seed_beverages(profile_read)
        logger.info("Created profile %s (%s)", profile_read.id, profile_read.username)
        return profile_read

    async def list_profiles(self) -> List[ProfileRead]:
        return list(self._profiles.values())

    async def get_profile(self, profile_id: str) -> Optional[ProfileRead]:
        return self._profiles.get(profile_id)

    async def update_profile(self, profile_id: str, updates: ProfileUpdate) -> ProfileRead:
        current = self._require(profile_id)
        updated = current.model_copy(update=updates.model_dump(exclude_unset=True, exclude_none=True))
        self._profiles[profile_id] = updated
        return updated

    async def delete_profile(self, profile_id: str) -> None:
        self._require(profile_id)
        for store in (self._profiles, self._logs, self._beverages, self._chat):
            store.pop(profile_id, None)
        logger.info("Deleted profile %s", profile_id)

    async def add_log(self, profile_id: str, log: WaterLogCreate, now: datetime) -> WaterLogRead:
        self._require(profile_id)
        entry = WaterLogRead(
            id=self._next_id(),
            profile_id=profile_id,
            amount=effective_amount(log.amount, log.hydration_factor),
            drink_type=log.drink_type,
            logged_at=log.logged_at or now,
        )
        logs = self._logs[profile_id]
        logs.append(entry)
        logs.sort(key=lambda item: item.logged_at.timestamp(), reverse=True)
        # Keep the 30 days behind the newest log
        self._logs[profile_id] = get_filtered_logs(logs, "month", logs[0].logged_at)
        return entry

    async def list_logs(self, profile_id: str, now: datetime) -> List[WaterLogRead]:
        self._require(profile_id)
        return get_filtered_logs(self._logs[profile_id], "month", now)

    async def delete_log(self, log_id: str) -> None:
        for logs in self._logs.values():
            for idx, entry in enumerate(logs):
                if entry.id == log_id:
                    del logs[idx]
                    return
        raise ValueError(f"Log with id {log_id} not found")

    async def add_beverage(self, profile_id: str, beverage: BeverageCreate, is_default: bool = False) -> BeverageRead:
        self._require(profile_id)
        beverage_read = BeverageRead(
            id=self._next_id(), profile_id=profile_id, is_default=is_default, **beverage.model_dump()
        )
        self._beverages[profile_id].append(beverage_read)
        return beverage_read

    async def list_beverages(self, profile_id: str) -> List[BeverageRead]:
        self._require(profile_id)
        return list(self._beverages[profile_id])

    async def delete_beverage(self, beverage_id: str) -> None:
        for beverages in self._beverages.values():
            for idx, beverage in enumerate(beverages):
                if beverage.id == beverage_id:
                    del beverages[idx]
                    return
        raise ValueError(f"Beverage with id {beverage_id} not found")

    async def add_chat_message(self, profile_id: str, role: str, content: str, now: datetime) -> ChatMessageRead:
        self._require(profile_id)
        message = ChatMessageRead(
            id=self._next_id(), profile_id=profile_id, role=role, content=content, created_at=now
        )
        self._chat[profile_id].append(message)
        del self._chat[profile_id][:-CHAT_HISTORY_LIMIT]
        return message

    async def list_chat_messages(self, profile_id: str) -> List[ChatMessageRead]:
        self._require(profile_id)
        return self._chat[profile_id][-CHAT_HISTORY_LIMIT:]

    async def clear_chat_history(self, profile_id: str) -> None:
        self._require(profile_id)
        self._chat[profile_id] = []


class MongoRepository(HydrationRepository):
    """MongoDB-backed repository for production use.

    This implementation uses Motor, an asynchronous MongoDB driver. The
    database holds four collections: `profiles`, `water_logs`,
    `beverages` and `chat_messages`. Every record other than a profile
    references its owner through `profile_id` (an ObjectId). Log
    timestamps are stored as BSON dates, so range queries run server side.
    """

    def __init__(self, mongo_uri: str, db_name: str = "blue_balance") -> None:
        self._client = AsyncIOMotorClient(mongo_uri, tz_aware=True)
        self._db = self._client[db_name]
        self._profiles = self._db["profiles"]
        self._logs = self._db["water_logs"]
        self._beverages = self._db["beverages"]
        self._chat = self._db["chat_messages"]

    @staticmethod
    def _oid(value: str) -> ObjectId:
        try:
            return ObjectId(value)
        except (InvalidId, TypeError):
            raise ValueError(f"Invalid id {value!r}")

    @staticmethod
    def _profile_from_doc(doc: dict) -> ProfileRead:
        data = {k: v for k, v in doc.items() if k != "_id"}
        return ProfileRead(id=str(doc["_id"]), **data)

    @staticmethod
    def _log_from_doc(doc: dict) -> WaterLogRead:
        return WaterLogRead(
            id=str(doc["_id"]),
            profile_id=str(doc["profile_id"]),
            amount=float(doc["amount"]),
            drink_type=doc.get("drink_type", "Water"),
            logged_at=doc["logged_at"],
        )

    async def _require(self, profile_id: str) -> ProfileRead:
        profile = await self.get_profile(profile_id)
        if not profile:
            raise ValueError(f"Profile with id {profile_id} not found")
        return profile

    async def create_profile(self, profile: ProfileCreate) -> ProfileRead:
        doc = profile.model_dump()
        result = await self._profiles.insert_one(doc)
        profile_read = ProfileRead(id=str(result.inserted_id), **profile.model_dump())
        await self._seed_beverages(profile_read)
        logger.info("Created profile %s (%s)", profile_read.id, profile_read.username)
        return profile_read

    async def list_profiles(self) -> List[ProfileRead]:
        cursor = self._profiles.find({})
        profiles: List[ProfileRead] = []
        async for doc in cursor:
            profiles.append(self._profile_from_doc(doc))
        return profiles

    async def get_profile(self, profile_id: str) -> Optional[ProfileRead]:
        try:
            oid = self._oid(profile_id)
        except ValueError:
            return None
        doc = await self._profiles.find_one({"_id": oid})
        if not doc:
            return None
        return self._profile_from_doc(doc)

    async def update_profile(self, profile_id: str, updates: ProfileUpdate) -> ProfileRead:
        await self._require(profile_id)
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        if changes:
            await self._profiles.update_one({"_id": self._oid(profile_id)}, {"$set": changes})
        return await self._require(profile_id)

    async def delete_profile(self, profile_id: str) -> None:
        await self._require(profile_id)
        oid = self._oid(profile_id)
        await self._profiles.delete_one({"_id": oid})
        for collection in (self._logs, self._beverages, self._chat):
            await collection.delete_many({"profile_id": oid})
        logger.info("Deleted profile %s", profile_id)

    async def add_log(self, profile_id: str, log: WaterLogCreate, now: datetime) -> WaterLogRead:
        await self._require(profile_id)
        doc = {
            "profile_id": self._oid(profile_id),
            "amount": effective_amount(log.amount, log.hydration_factor),
            "drink_type": log.drink_type,
            "logged_at": _localize(log.logged_at or now, now),
        }
        result = await self._logs.insert_one(doc)
        doc["_id"] = result.inserted_id
        return self._log_from_doc(doc)

    async def list_logs(self, profile_id: str, now: datetime) -> List[WaterLogRead]:
        await self._require(profile_id)
        since = _localize(now, now) - timedelta(days=LOG_RETENTION_DAYS)
        cursor = self._logs.find(
            {"profile_id": self._oid(profile_id), "logged_at": {"$gte": since}}
        ).sort("logged_at", -1)
        logs: List[WaterLogRead] = []
        async for doc in cursor:
            logs.append(self._log_from_doc(doc))
        return logs

    async def delete_log(self, log_id: str) -> None:
        result = await self._logs.delete_one({"_id": self._oid(log_id)})
        if result.deleted_count == 0:
            raise ValueError(f"Log with id {log_id} not found")

    async def add_beverage(self, profile_id: str, beverage: BeverageCreate, is_default: bool = False) -> BeverageRead:
        doc = beverage.model_dump()
        doc.update(profile_id=self._oid(profile_id), is_default=is_default)
        result = await self._beverages.insert_one(doc)
        return BeverageRead(
            id=str(result.inserted_id), profile_id=profile_id, is_default=is_default, **beverage.model_dump()
        )

    async def list_beverages(self, profile_id: str) -> List[BeverageRead]:
        await self._require(profile_id)
        cursor = self._beverages.find({"profile_id": self._oid(profile_id)})
        beverages: List[BeverageRead] = []
        async for doc in cursor:
            beverages.append(
                BeverageRead(
                    id=str(doc["_id"]),
                    profile_id=profile_id,
                    name=doc["name"],
                    serving_size=doc["serving_size"],
                    hydration_factor=doc["hydration_factor"],
                    icon=doc.get("icon", "droplet"),
                    is_default=doc.get("is_default", False),
                )
            )
        return beverages

    async def delete_beverage(self, beverage_id: str) -> None:
        result = await self._beverages.delete_one({"_id": self._oid(beverage_id)})
        if result.deleted_count == 0:
            raise ValueError(f"Beverage with id {beverage_id} not found")

    async def add_chat_message(self, profile_id: str, role: str, content: str, now: datetime) -> ChatMessageRead:
        doc = {"profile_id": self._oid(profile_id), "role": role, "content": content, "created_at": _localize(now, now)}
        result = await self._chat.insert_one(doc)
        return ChatMessageRead(
            id=str(result.inserted_id), profile_id=profile_id, role=role, content=content, created_at=now
        )

    async def list_chat_messages(self, profile_id: str) -> List[ChatMessageRead]:
        await self._require(profile_id)
        cursor = (
            self._chat.find({"profile_id": self._oid(profile_id)})
            .sort("created_at", -1)
            .limit(CHAT_HISTORY_LIMIT)
        )
        messages: List[ChatMessageRead] = []
        async for doc in cursor:
            messages.append(
                ChatMessageRead(
                    id=str(doc["_id"]),
                    profile_id=profile_id,
                    role=doc["role"],
                    content=doc["content"],
                    created_at=doc["created_at"],
                )
            )
        messages.reverse()
        return messages

    async def clear_chat_history(self, profile_id: str) -> None:
        await self._chat.delete_many({"profile_id": self._oid(profile_id)})
