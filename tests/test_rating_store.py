"""Tests for the in-memory rating store."""

from dataclasses import replace

import pytest

from photo_arena_service.core.constants import VerificationStatus
from photo_arena_service.core.data_classes import PhotoRecord, RatingEvent
from photo_arena_service.core.exceptions import (
    DuplicatePhotoError, PhotoNotFoundError, ValidationError, IdempotencyConflictError
)
from photo_arena_service.services.rating_store import InMemoryRatingStore


def bump(winner, loser):
    return (replace(winner, elo_score=winner.elo_score + 10, rating_count=winner.rating_count + 1),
            replace(loser, elo_score=loser.elo_score - 10, rating_count=loser.rating_count + 1))


class TestPhotos:

    def test_add_and_get(self, rating_store):
        assert rating_store.get_photo('p1').owner_id == 'alice'
        assert rating_store.get_photo('p1').elo_score == 1000

    def test_missing_photo(self, rating_store):
        with pytest.raises(PhotoNotFoundError):
            rating_store.get_photo('nope')

    def test_photo_id_required(self, rating_store):
        with pytest.raises(ValidationError):
            rating_store.add_photo(PhotoRecord(id='', owner_id='x'))

    def test_pool_snapshot_and_membership(self, rating_store):
        rating_store.set_pool_membership('p2', False)
        ids = {record.id for record in rating_store.get_pool_snapshot()}
        assert ids == {'p1', 'p3', 'p4'}

        rating_store.set_pool_membership('p2', True)
        assert len(rating_store.get_pool_snapshot()) == 4

    def test_snapshot_is_a_copy(self, rating_store):
        snapshot = rating_store.get_pool_snapshot()
        rating_store.add_photo(PhotoRecord(id='p5', owner_id='dave'))
        assert len(snapshot) == 4

    def test_owner_photo_ids(self, rating_store):
        assert rating_store.get_owner_photo_ids('carol') == {'p3', 'p4'}
        assert rating_store.get_owner_photo_ids('nobody') == set()

    def test_duplicate_id_rejected(self, rating_store):
        rating_store.apply_rating(RatingEvent('p1', 'p2', 'k'), bump)

        with pytest.raises(DuplicatePhotoError):
            rating_store.add_photo(PhotoRecord(id='p1', owner_id='alice'))
        assert rating_store.get_photo('p1').elo_score == 1010


class TestRecordVerification:

    def test_new_photo_is_added(self, rating_store):
        record = rating_store.record_verification(PhotoRecord(
            id='p5', owner_id='dave', verification_status=VerificationStatus.ACCEPTED))

        assert rating_store.get_photo('p5') == record
        assert record.elo_score == 1000

    def test_known_photo_keeps_rating(self, rating_store):
        rating_store.apply_rating(RatingEvent('p1', 'p2', 'k'), bump)

        record = rating_store.record_verification(PhotoRecord(
            id='p1', owner_id='alice', in_pool=False,
            verification_status=VerificationStatus.LOW_CONFIDENCE))

        assert (record.elo_score, record.rating_count) == (1010, 1)
        assert record.in_pool is False
        assert record.verification_status == VerificationStatus.LOW_CONFIDENCE
        assert rating_store.get_commit('k').new_winner_elo == rating_store.get_photo('p1').elo_score

    def test_other_owner_rejected(self, rating_store):
        with pytest.raises(DuplicatePhotoError):
            rating_store.record_verification(PhotoRecord(id='p1', owner_id='mallory'))
        assert rating_store.get_photo('p1').owner_id == 'alice'


class TestApplyRating:

    def test_first_application_commits(self, rating_store):
        commit = rating_store.apply_rating(RatingEvent('p1', 'p2', 'k'), bump)

        assert not commit.duplicate
        assert (commit.new_winner_elo, commit.new_loser_elo) == (1010, 990)
        assert rating_store.get_commit('k') == commit
        assert rating_store.commit_count == 1

    def test_same_key_returns_stored_commit(self, rating_store):
        first = rating_store.apply_rating(RatingEvent('p1', 'p2', 'k'), bump)
        second = rating_store.apply_rating(RatingEvent('p1', 'p2', 'k'), bump)

        assert second.duplicate
        assert second.committed_at == first.committed_at
        assert rating_store.get_photo('p1').elo_score == 1010

    def test_conflicting_outcome(self, rating_store):
        rating_store.apply_rating(RatingEvent('p1', 'p2', 'k'), bump)
        with pytest.raises(IdempotencyConflictError):
            rating_store.apply_rating(RatingEvent('p1', 'p3', 'k'), bump)

    def test_failed_update_commits_nothing(self, rating_store):
        def broken(winner, loser):
            raise RuntimeError("update failed")

        with pytest.raises(RuntimeError):
            rating_store.apply_rating(RatingEvent('p1', 'p2', 'k'), broken)

        assert rating_store.get_commit('k') is None
        commit = rating_store.apply_rating(RatingEvent('p1', 'p2', 'k'), bump)
        assert not commit.duplicate

    def test_key_locks_do_not_grow(self):
        store = InMemoryRatingStore(key_lock_stripes=4)
        store.add_photo(PhotoRecord(id='a', owner_id='u1'))
        store.add_photo(PhotoRecord(id='b', owner_id='u2'))

        for i in range(50):
            store.apply_rating(RatingEvent('a', 'b', f'k{i}'), bump)

        assert len(store._key_locks) == 4
        assert store.commit_count == 50
        assert store.get_photo('a').rating_count == 50
