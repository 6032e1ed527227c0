"""Tests for ELO updates, pair selection and outcome application."""

import logging
import random
import threading
from collections import Counter

import pytest

from photo_arena_service.config import ProductionConfig
from photo_arena_service.core.data_classes import PhotoRecord, RatingEvent
from photo_arena_service.core.exceptions import (
    InsufficientPoolSizeError, MalformedRatingEventError, IdempotencyConflictError,
    PhotoNotFoundError, RatingIntegrityError
)
from photo_arena_service.services.rating_engine import (
    RatingEngine, compute_elo, expected_score, select_pair
)
from photo_arena_service.services.rating_store import InMemoryRatingStore


def pool_of(*entries):
    return [PhotoRecord(id=photo_id, owner_id=owner) for photo_id, owner in entries]


class TestElo:

    def test_equal_ratings(self):
        assert compute_elo(1000, 1000) == (1016, 984)

    def test_favourite_wins(self):
        assert compute_elo(1200, 1000) == (1208, 992)

    def test_underdog_wins(self):
        assert compute_elo(1000, 1200) == (1024, 1176)

    def test_custom_k_factor(self):
        assert compute_elo(1000, 1000, k_factor=16) == (1008, 992)

    def test_expected_scores_are_complementary(self):
        assert expected_score(1000, 1000) == pytest.approx(0.5)
        assert expected_score(1400, 1000) + expected_score(1000, 1400) == pytest.approx(1.0)

    def test_rating_is_roughly_conserved(self):
        winner, loser = compute_elo(1337, 1111)
        assert abs((winner + loser) - (1337 + 1111)) <= 1


class TestSelectPair:

    def test_pair_of_two(self):
        pair = select_pair(pool_of(('a', 'x'), ('b', 'y')), rng=random.Random(1))
        assert {pair.left.id, pair.right.id} == {'a', 'b'}

    def test_never_same_photo(self):
        pool = pool_of(('a', 'x'), ('b', 'y'), ('c', 'z'))
        rng = random.Random(3)
        for _ in range(200):
            pair = select_pair(pool, rng=rng)
            assert pair.left.id != pair.right.id

    def test_duplicate_records_count_once(self):
        pool = pool_of(('a', 'x'), ('a', 'x'))
        with pytest.raises(InsufficientPoolSizeError):
            select_pair(pool)

    def test_requester_photos_excluded(self):
        pool = pool_of(('a', 'me'), ('b', 'me'), ('c', 'y'), ('d', 'z'))
        rng = random.Random(5)
        for _ in range(50):
            pair = select_pair(pool, requester_id='me', rng=rng)
            assert {pair.left.id, pair.right.id} == {'c', 'd'}

    def test_excluded_ids(self):
        pool = pool_of(('a', 'x'), ('b', 'y'), ('c', 'z'))
        pair = select_pair(pool, excluded_photo_ids=['a'], rng=random.Random(2))
        assert {pair.left.id, pair.right.id} == {'b', 'c'}

    def test_out_of_pool_photos_skipped(self):
        pool = pool_of(('a', 'x'), ('b', 'y'))
        pool.append(PhotoRecord(id='c', owner_id='z', in_pool=False))
        for _ in range(20):
            pair = select_pair(pool)
            assert 'c' not in (pair.left.id, pair.right.id)

    @pytest.mark.parametrize("entries", [
        (),
        (('a', 'x'),),
        (('a', 'me'), ('b', 'x')),
        (('a', 'me'), ('b', 'me'), ('c', 'me')),
    ])
    def test_insufficient_pool(self, entries):
        with pytest.raises(InsufficientPoolSizeError):
            select_pair(pool_of(*entries), requester_id='me')

    def test_selection_is_uniform(self):
        pool = pool_of(('a', 'w'), ('b', 'x'), ('c', 'y'), ('d', 'z'))
        rng = random.Random(11)
        counts = Counter(
            frozenset((pair.left.id, pair.right.id))
            for pair in (select_pair(pool, rng=rng) for _ in range(6000))
        )

        assert len(counts) == 6
        for count in counts.values():
            assert 850 <= count <= 1150


class TestRatingEngineSelection:

    def test_own_photos_excluded_by_owner(self, rating_engine):
        for _ in range(30):
            pair = rating_engine.select_pair(requester_id='carol')
            assert {pair.left.id, pair.right.id} == {'p1', 'p2'}

    def test_explicit_exclusions_combine_with_owner(self, rating_engine):
        with pytest.raises(InsufficientPoolSizeError):
            rating_engine.select_pair(requester_id='carol', excluded_photo_ids=['p1'])

    def test_left_pool_photo_not_selected(self, rating_store, rating_engine):
        rating_store.set_pool_membership('p3', False)
        rating_store.set_pool_membership('p4', False)
        pair = rating_engine.select_pair()
        assert {pair.left.id, pair.right.id} == {'p1', 'p2'}


class TestApplyOutcome:

    def test_commit_updates_both_photos(self, rating_engine, rating_store):
        commit = rating_engine.apply_outcome(RatingEvent('p1', 'p2', 'key-1'))

        assert not commit.duplicate
        assert (commit.new_winner_elo, commit.new_loser_elo) == (1016, 984)
        assert commit.rating_count_winner == 1
        assert commit.rating_count_loser == 1

        assert rating_store.get_photo('p1').elo_score == 1016
        assert rating_store.get_photo('p2').elo_score == 984
        assert rating_store.get_photo('p3').elo_score == 1000

    def test_sequential_outcomes_accumulate(self, rating_engine, rating_store):
        rating_engine.apply_outcome(RatingEvent('p1', 'p2', 'key-1'))
        commit = rating_engine.apply_outcome(RatingEvent('p1', 'p3', 'key-2'))

        assert rating_store.get_photo('p1').rating_count == 2
        assert commit.new_winner_elo > 1016

    def test_duplicate_is_applied_once(self, rating_engine, rating_store):
        first = rating_engine.apply_outcome(RatingEvent('p1', 'p2', 'key-1'))
        second = rating_engine.apply_outcome(RatingEvent('p1', 'p2', 'key-1', timestamp=99.0))

        assert second.duplicate
        assert second.new_winner_elo == first.new_winner_elo
        assert rating_store.get_photo('p1').rating_count == 1
        assert rating_store.get_photo('p1').elo_score == 1016
        assert rating_store.commit_count == 1

    def test_key_reused_for_other_outcome(self, rating_engine, rating_store):
        rating_engine.apply_outcome(RatingEvent('p1', 'p2', 'key-1'))

        with pytest.raises(IdempotencyConflictError):
            rating_engine.apply_outcome(RatingEvent('p2', 'p1', 'key-1'))
        assert rating_store.get_photo('p2').elo_score == 984

    @pytest.mark.parametrize("event", [
        RatingEvent('p1', 'p1', 'key-1'),
        RatingEvent('p1', 'p2', ''),
        RatingEvent('', 'p2', 'key-1'),
    ])
    def test_malformed_events(self, rating_engine, rating_store, event):
        with pytest.raises(MalformedRatingEventError):
            rating_engine.apply_outcome(event)
        assert rating_store.commit_count == 0

    def test_unknown_photo(self, rating_engine, rating_store):
        with pytest.raises(PhotoNotFoundError):
            rating_engine.apply_outcome(RatingEvent('p1', 'ghost', 'key-1'))
        assert rating_store.get_photo('p1').rating_count == 0

    def test_photo_outside_pool(self, rating_engine, rating_store):
        rating_store.set_pool_membership('p2', False)
        with pytest.raises(MalformedRatingEventError):
            rating_engine.apply_outcome(RatingEvent('p1', 'p2', 'key-1'))
        assert rating_store.get_commit('key-1') is None

    def test_strict_mode_logs_critical(self, rating_engine, caplog):
        with caplog.at_level(logging.WARNING):
            with pytest.raises(RatingIntegrityError):
                rating_engine.apply_outcome(RatingEvent('p1', 'p1', 'key-1'))
        assert any(record.levelno == logging.CRITICAL for record in caplog.records)

    def test_lenient_mode_logs_warning(self, rating_store, caplog):
        engine = RatingEngine(rating_store, ProductionConfig())
        with caplog.at_level(logging.WARNING):
            with pytest.raises(RatingIntegrityError):
                engine.apply_outcome(RatingEvent('p1', 'p1', 'key-1'))

        levels = {record.levelno for record in caplog.records}
        assert logging.WARNING in levels
        assert logging.CRITICAL not in levels

    def test_concurrent_duplicates(self, rating_engine, rating_store):
        barrier = threading.Barrier(8)
        commits = []
        lock = threading.Lock()

        def submit():
            barrier.wait()
            commit = rating_engine.apply_outcome(RatingEvent('p1', 'p2', 'shared-key'))
            with lock:
                commits.append(commit)

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(commits) == 8
        assert sum(not commit.duplicate for commit in commits) == 1
        assert rating_store.get_photo('p1').rating_count == 1
        assert rating_store.get_photo('p2').elo_score == 984

    def test_concurrent_distinct_events(self, config):
        store = InMemoryRatingStore()
        for photo_id in ('a', 'b'):
            store.add_photo(PhotoRecord(id=photo_id, owner_id=photo_id))
        engine = RatingEngine(store, config)

        threads = [
            threading.Thread(target=engine.apply_outcome, args=(RatingEvent('a', 'b', f'key-{i}'),))
            for i in range(20)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get_photo('a').rating_count == 20
        assert store.get_photo('b').rating_count == 20
        assert store.commit_count == 20
