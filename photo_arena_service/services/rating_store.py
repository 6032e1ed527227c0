#!/usr/bin/env python3
"""
In-Memory Rating Store
======================

Stand-in for the storage collaborator: photo records plus committed rating
events, with the conditional write the rating engine relies on for
at-most-once application.
"""

import threading
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..core.data_classes import PhotoRecord, RatingEvent, RatingCommit
from ..core.exceptions import (
    DuplicatePhotoError, IdempotencyConflictError, PhotoNotFoundError, ValidationError
)

logger = logging.getLogger(__name__)

UpdateFunction = Callable[[PhotoRecord, PhotoRecord], Tuple[PhotoRecord, PhotoRecord]]


KEY_LOCK_STRIPES = 64


class InMemoryRatingStore:
    """Thread-safe photo and rating event storage"""

    def __init__(self, key_lock_stripes: int = KEY_LOCK_STRIPES):
        self._records_lock = threading.RLock()
        self._photos: Dict[str, PhotoRecord] = {}

        # Fixed stripes keyed by hash(idempotency_key); duplicates always share one
        self._key_locks: List[threading.Lock] = [threading.Lock() for _ in range(key_lock_stripes)]

        self._events: Dict[str, RatingEvent] = {}
        self._commits: Dict[str, RatingCommit] = {}

    def add_photo(self, record: PhotoRecord) -> PhotoRecord:
        """
        Register a new photo

        Raises:
            ValidationError: If the id is empty
            DuplicatePhotoError: If the id is already registered
        """
        if not record.id:
            raise ValidationError('id', record.id, 'photo id is required')
        with self._records_lock:
            if record.id in self._photos:
                raise DuplicatePhotoError(record.id)
            self._photos[record.id] = record
        logger.debug(f"Photo stored: {record.id} (owner: {record.owner_id}, in_pool: {record.in_pool})")
        return record

    def record_verification(self, record: PhotoRecord) -> PhotoRecord:
        """
        Store the outcome of a verification for `record.id`

        A new id is added as given. For a known id only verification_status
        and in_pool are updated; elo_score and rating_count are left alone.

        Raises:
            ValidationError: If the id is empty
            DuplicatePhotoError: If the id belongs to another owner
        """
        if not record.id:
            raise ValidationError('id', record.id, 'photo id is required')
        with self._records_lock:
            existing = self._photos.get(record.id)
            if existing is None:
                self._photos[record.id] = record
                return record
            if existing.owner_id != record.owner_id:
                raise DuplicatePhotoError(record.id)
            updated = replace(existing, in_pool=record.in_pool,
                              verification_status=record.verification_status)
            self._photos[record.id] = updated
        logger.info(f"Photo {record.id} re-verified ({record.verification_status.value}), "
                    f"rating kept at {updated.elo_score}")
        return updated

    def get_photo(self, photo_id: str) -> PhotoRecord:
        with self._records_lock:
            record = self._photos.get(photo_id)
        if record is None:
            raise PhotoNotFoundError(photo_id)
        return record

    def set_pool_membership(self, photo_id: str, in_pool: bool) -> PhotoRecord:
        with self._records_lock:
            record = self.get_photo(photo_id)
            record = replace(record, in_pool=in_pool)
            self._photos[photo_id] = record
        return record

    def get_pool_snapshot(self) -> List[PhotoRecord]:
        """Copy of the in-pool records; may be stale by the time it is used"""
        with self._records_lock:
            records = list(self._photos.values())
        return [record for record in records if record.in_pool]

    def get_owner_photo_ids(self, owner_id: str) -> Set[str]:
        with self._records_lock:
            return {record.id for record in self._photos.values() if record.owner_id == owner_id}

    def get_commit(self, idempotency_key: str) -> Optional[RatingCommit]:
        return self._commits.get(idempotency_key)

    @property
    def commit_count(self) -> int:
        return len(self._commits)

    def apply_rating(self, event: RatingEvent, update_fn: UpdateFunction) -> RatingCommit:
        """
        Apply `update_fn` to the event's photos once per idempotency key

        Args:
            event: Rating event to apply
            update_fn: (winner, loser) -> (new_winner, new_loser)

        Returns:
            The new RatingCommit, or the stored one flagged as duplicate

        Raises:
            IdempotencyConflictError: If the key was committed for another outcome
            PhotoNotFoundError: If either photo is unknown
        """
        with self._key_lock(event.idempotency_key):
            committed = self._commits.get(event.idempotency_key)
            if committed is not None:
                if not self._events[event.idempotency_key].same_outcome(event):
                    raise IdempotencyConflictError(event.idempotency_key)
                return replace(committed, duplicate=True)

            with self._records_lock:
                winner = self.get_photo(event.winner_photo_id)
                loser = self.get_photo(event.loser_photo_id)
                new_winner, new_loser = update_fn(winner, loser)
                self._photos[new_winner.id] = new_winner
                self._photos[new_loser.id] = new_loser

            commit = RatingCommit(
                idempotency_key=event.idempotency_key,
                winner_photo_id=new_winner.id,
                loser_photo_id=new_loser.id,
                new_winner_elo=new_winner.elo_score,
                new_loser_elo=new_loser.elo_score,
                rating_count_winner=new_winner.rating_count,
                rating_count_loser=new_loser.rating_count,
                committed_at=datetime.now()
            )
            self._events[event.idempotency_key] = event
            self._commits[event.idempotency_key] = commit
            return commit

    def _key_lock(self, idempotency_key: str) -> threading.Lock:
        return self._key_locks[hash(idempotency_key) % len(self._key_locks)]
