"""
Per-owner scan collection and the add -> recompute -> regenerate pipeline.

A ScanSession is the only thing that mutates a collection. Every mutation
takes the session lock, applies the change (remote write first), then
recomputes stats, points and quests before the lock is released, so a second
add never interleaves with the first.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .classes.rewards import Quest, Redemption, Reward, ShippingAddress, UserPoints
from .classes.waste import AggregateStats, ScanRecord, local_now
from .errors import Err, Ok, Result, ValidationError
from .local_store import LocalStore
from .points import compute_user_points
from .quests import QuestCounters, check_quest_completion, derive_counters, generate_quests
from .rewards import RedemptionFlow
from .stats import recompute_stats

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    owner_key: str
    user_id: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    @classmethod
    def anonymous(cls, anonymous_id: str) -> "Identity":
        return cls(owner_key=anonymous_id)

    @classmethod
    def authenticated(cls, user_id: str) -> "Identity":
        return cls(owner_key=user_id, user_id=user_id)


class SessionSnapshot(BaseModel):
    owner_key: str
    records: List[ScanRecord]
    stats: AggregateStats
    points: UserPoints
    counters: QuestCounters
    quests: List[Quest]
    newly_completed: List[Quest] = Field(default_factory=list)


class SignInSummary(BaseModel):
    moved: int = 0
    synced: int = 0


class ScanSession:
    def __init__(self, identity: Identity, store, backup: Optional[LocalStore] = None, clock: Callable[[], datetime] = local_now):
        self.identity = identity
        self.store = store
        self.backup = backup
        self._clock = clock
        self._lock = asyncio.Lock()
        self._records: List[ScanRecord] = []
        self._redemptions: List[Redemption] = []
        self._snapshot: Optional[SessionSnapshot] = None
        self._refresh()

    @property
    def records(self) -> List[ScanRecord]:
        return list(self._records)

    @property
    def redemptions(self) -> List[Redemption]:
        return list(self._redemptions)

    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def _refresh(self) -> SessionSnapshot:
        now = self._clock()
        stats = recompute_stats(self._records, now)
        counters = derive_counters(self._records, stats, now)
        quests = generate_quests(counters, now)
        points = compute_user_points(self._records, stats.streak_days, self._redemptions, now)

        newly_completed = []
        if self._snapshot is not None:
            previous = {quest.id: quest for quest in self._snapshot.quests}
            for quest in quests:
                before = previous.get(quest.id)
                if before is None:
                    continue
                _, awarded = check_quest_completion(before, counters)
                if awarded:
                    newly_completed.append(quest)

        self._snapshot = SessionSnapshot(
            owner_key=self.identity.owner_key,
            records=list(self._records),
            stats=stats,
            points=points,
            counters=counters,
            quests=quests,
            newly_completed=newly_completed,
        )
        return self._snapshot

    def _backup(self) -> None:
        if self.backup is not None:
            self.backup.save_items(self._records, self.identity.owner_key)

    async def _load_locked(self) -> Result:
        loaded = await asyncio.to_thread(self.store.list_records, self.identity.owner_key)
        if not loaded.ok:
            return loaded
        redemptions = await asyncio.to_thread(self.store.list_redemptions, self.identity.owner_key)
        if not redemptions.ok:
            return redemptions

        self._records = sorted(loaded.value, key=lambda r: r.timestamp, reverse=True)
        self._redemptions = list(redemptions.value)
        self._snapshot = None
        # An empty remote never overwrites a backup that may still need syncing
        if self._records:
            self._backup()
        return Ok(self._refresh())

    async def load(self) -> Result:
        async with self._lock:
            return await self._load_locked()

    async def add_record(self, record: ScanRecord) -> Result:
        async with self._lock:
            if any(existing.id == record.id for existing in self._records):
                return Ok(self._snapshot)

            saved = await asyncio.to_thread(self.store.insert_record, self.identity.owner_key, record)
            if not saved.ok:
                return saved

            self._records.insert(0, record)
            snapshot = self._refresh()
            self._backup()
            return Ok(snapshot)

    async def remove_record(self, record_id: str) -> Result:
        async with self._lock:
            deleted = await asyncio.to_thread(self.store.delete_record, record_id, self.identity.owner_key)
            if not deleted.ok:
                return deleted

            before = len(self._records)
            self._records = [record for record in self._records if record.id != record_id]
            if len(self._records) == before and not deleted.value:
                return Ok(False)

            self._refresh()
            self._backup()
            return Ok(True)

    async def sign_in(self, user_id: str) -> Result:
        """
        Move anonymous records and redemptions to the authenticated user,
        push any device backup the store never saw, and reload. Safe to call
        more than once.
        """
        async with self._lock:
            previous_key = self.identity.owner_key
            moved = await asyncio.to_thread(self.store.associate_records, previous_key, user_id)
            if not moved.ok:
                return moved

            backed_up = self.backup.load_items(previous_key) if self.backup is not None else []
            synced = Ok(0)
            if backed_up:
                synced = await asyncio.to_thread(self.store.sync_local_items, user_id, backed_up)
                if not synced.ok:
                    return synced

            self.identity = Identity.authenticated(user_id)
            loaded = await self._load_locked()
            if not loaded.ok:
                return loaded
            if self.backup is not None and previous_key != user_id:
                self.backup.discard_items(previous_key)
            return Ok(SignInSummary(moved=moved.value, synced=synced.value))

    def start_redemption(self, reward: Reward) -> RedemptionFlow:
        return RedemptionFlow(
            reward,
            save_redemption=self.store.save_redemption,
            owner_key=self.identity.owner_key,
            clock=self._clock,
        )

    async def _submit_locked(self, flow: RedemptionFlow, address: ShippingAddress) -> Result:
        if not flow.can_afford(self._snapshot.points.current_balance):
            return Err(ValidationError(["Not enough points to redeem this reward"]))
        result = await asyncio.to_thread(flow.submit_address, address)
        if result.ok:
            self._redemptions.append(result.value)
            self._refresh()
        return result

    async def submit_redemption(self, flow: RedemptionFlow, address: ShippingAddress) -> Result:
        """
        Run the address step. Points are only spent once the store has the
        redemption, and then they stay spent even if the caller has gone.
        """
        async with self._lock:
            return await self._submit_locked(flow, address)

    async def redeem(self, reward: Reward, address: ShippingAddress) -> Result:
        """Drive a whole redemption attempt in one call."""
        flow = self.start_redemption(reward)
        async with self._lock:
            advanced = flow.proceed_to_address(self._snapshot.points.current_balance)
            if not advanced.ok:
                return advanced
            return await self._submit_locked(flow, address)


class SessionRegistry:
    """Keeps one ScanSession per owner key for the lifetime of the process."""

    def __init__(self, store, backup: Optional[LocalStore] = None, clock: Callable[[], datetime] = local_now):
        self.store = store
        self.backup = backup
        self._clock = clock
        self._sessions: Dict[str, ScanSession] = {}
        self._lock = asyncio.Lock()

    async def get(self, identity: Identity) -> Result:
        async with self._lock:
            session = self._sessions.get(identity.owner_key)
            if session is not None:
                return Ok(session)
            session = ScanSession(identity, self.store, self.backup, self._clock)
            loaded = await session.load()
            if not loaded.ok:
                return loaded
            self._sessions[identity.owner_key] = session
            return Ok(session)

    async def sign_in(self, anonymous_id: str, user_id: str) -> Result:
        session_result = await self.get(Identity.anonymous(anonymous_id))
        if not session_result.ok:
            return session_result
        session = session_result.value
        summary = await session.sign_in(user_id)
        if not summary.ok:
            return summary
        async with self._lock:
            self._sessions.pop(anonymous_id, None)
            self._sessions[user_id] = session
        return summary
