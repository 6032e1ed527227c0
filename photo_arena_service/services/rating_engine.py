#!/usr/bin/env python3
"""
Rating Engine Service
=====================

Pairwise comparison engine for the photo pool:

- pair selection: two distinct in-pool photos, uniformly at random, never the
  requester's own photos
- rating update: standard ELO with a fixed K for every photo
- outcome application: at most once per idempotency key, delegated to the
  rating store as a conditional write
"""

import logging
import math
import random
from dataclasses import replace
from typing import Iterable, Optional, Sequence, Tuple

from ..core.constants import DEFAULT_K_FACTOR, ELO_SCALE
from ..core.data_classes import PhotoRecord, RatingEvent, ComparisonPair, RatingCommit
from ..core.exceptions import (
    InsufficientPoolSizeError, MalformedRatingEventError, RatingIntegrityError
)
from ..config import Config
from .rating_store import InMemoryRatingStore

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def expected_score(rating: float, opponent_rating: float) -> float:
    """Probability that `rating` beats `opponent_rating`"""
    return 1.0 / (1.0 + 10.0 ** ((opponent_rating - rating) / ELO_SCALE))


def compute_elo(winner_elo: int, loser_elo: int, k_factor: int = DEFAULT_K_FACTOR) -> Tuple[int, int]:
    """
    Standard ELO update for a single win/loss outcome

    Args:
        winner_elo: Current rating of the winner
        loser_elo: Current rating of the loser
        k_factor: Maximum rating change per comparison

    Returns:
        (new_winner_elo, new_loser_elo)
    """
    expected_winner = expected_score(winner_elo, loser_elo)
    expected_loser = 1.0 - expected_winner

    new_winner = _round_half_up(winner_elo + k_factor * (1.0 - expected_winner))
    new_loser = _round_half_up(loser_elo + k_factor * (0.0 - expected_loser))
    return new_winner, new_loser


def select_pair(pool: Iterable[PhotoRecord],
                excluded_photo_ids: Iterable[str] = (),
                requester_id: Optional[str] = None,
                rng: Optional[random.Random] = None) -> ComparisonPair:
    """
    Pick two distinct eligible photos uniformly at random

    Args:
        pool: Pool snapshot (may be slightly stale)
        excluded_photo_ids: The requesting user's own photo ids
        requester_id: Owner id of the requester; their photos are excluded too
        rng: Random source (module default if None)

    Returns:
        ComparisonPair

    Raises:
        InsufficientPoolSizeError: If fewer than two photos are eligible
    """
    excluded = set(excluded_photo_ids)
    eligible = {}
    for record in pool:
        if not record.in_pool or record.id in excluded or record.id in eligible:
            continue
        if requester_id is not None and record.owner_id == requester_id:
            continue
        eligible[record.id] = record

    if len(eligible) < 2:
        raise InsufficientPoolSizeError(len(eligible))

    left, right = (rng or random).sample(list(eligible.values()), 2)
    return ComparisonPair(left=left, right=right)


class RatingEngine:
    """Applies comparison outcomes to the photo pool"""

    def __init__(self, store: InMemoryRatingStore, config: Optional[Config] = None,
                 rng: Optional[random.Random] = None):
        """
        Initialize rating engine

        Args:
            store: Rating store holding photo records and committed events
            config: Configuration object. If None, uses default Config()
            rng: Random source for pair selection
        """
        self.store = store
        self.config = config or Config()
        settings = self.config.get_rating_settings()
        self.k_factor = settings['k_factor']
        self.strict_integrity_checks = settings['strict_integrity_checks']
        self.rng = rng or random.Random()

        logger.info(f"RatingEngine initialized: K={self.k_factor}, "
                    f"strict_integrity_checks={self.strict_integrity_checks}")

    def select_pair(self, requester_id: Optional[str] = None,
                    excluded_photo_ids: Sequence[str] = ()) -> ComparisonPair:
        """Select a comparison pair from the current pool snapshot"""
        excluded = set(excluded_photo_ids)
        if requester_id is not None:
            excluded.update(self.store.get_owner_photo_ids(requester_id))

        return select_pair(
            self.store.get_pool_snapshot(),
            excluded_photo_ids=excluded,
            requester_id=requester_id,
            rng=self.rng
        )

    def update_ratings(self, winner: PhotoRecord, loser: PhotoRecord) -> Tuple[PhotoRecord, PhotoRecord]:
        """
        Compute the updated records for one outcome

        The only place where elo_score changes.

        Raises:
            MalformedRatingEventError: If either photo has left the pool
        """
        for record in (winner, loser):
            if not record.in_pool:
                raise MalformedRatingEventError(f"photo '{record.id}' is not in the pool")

        new_winner_elo, new_loser_elo = compute_elo(winner.elo_score, loser.elo_score, self.k_factor)
        return (
            replace(winner, elo_score=new_winner_elo, rating_count=winner.rating_count + 1),
            replace(loser, elo_score=new_loser_elo, rating_count=loser.rating_count + 1)
        )

    def apply_outcome(self, event: RatingEvent) -> RatingCommit:
        """
        Apply a rating event at most once

        Args:
            event: Winner/loser ids and the idempotency key

        Returns:
            RatingCommit; `duplicate` is True when the key was already applied

        Raises:
            RatingIntegrityError: Malformed event, unknown photo or key conflict
        """
        try:
            self._validate_event(event)
            commit = self.store.apply_rating(event, self.update_ratings)

        except RatingIntegrityError as e:
            self._report_integrity_failure(event, e)
            raise

        if commit.duplicate:
            logger.info(f"Duplicate rating event ignored: key={event.idempotency_key}")
        else:
            logger.info(f"Rating committed: key={commit.idempotency_key}, "
                        f"{commit.winner_photo_id}={commit.new_winner_elo}, "
                        f"{commit.loser_photo_id}={commit.new_loser_elo}")
        return commit

    def _validate_event(self, event: RatingEvent) -> None:
        if not event.idempotency_key:
            raise MalformedRatingEventError("idempotency key is required")
        if not event.winner_photo_id or not event.loser_photo_id:
            raise MalformedRatingEventError("winner and loser photo ids are required")
        if event.winner_photo_id == event.loser_photo_id:
            raise MalformedRatingEventError("winner and loser must be different photos")

    def _report_integrity_failure(self, event: RatingEvent, error: RatingIntegrityError) -> None:
        message = f"Rating integrity failure ({error.error_code}): {error.message} [event={event}]"
        if self.strict_integrity_checks:
            logger.critical(message)
        else:
            logger.warning(message)
