import sqlite3

import pytest

from techflix_rec import recommender, store
from techflix_rec.models import Opinion, Viewer


def test_module_functions_read_from_store(seeded_store):
    seeded_store({
        1: {10: None, 20: None, 30: None, 40: Opinion.LIKE},
        2: {10: None, 20: None, 30: Opinion.LIKE, 50: Opinion.LIKE, 60: None},
        3: {10: None, 20: None, 70: Opinion.LIKE},
    })

    assert recommender.similar_viewers(1) == [2]
    assert recommender.most_influencing_viewers() == [2, 1, 3]
    assert recommender.movie_recommendations(1) == [50, 60]
    assert recommender.conditional_recommendations(1, 40) == []


def test_zero_watch_viewer_fixture_with_three_viewers(seeded_store):
    seeded_store({2: {10: None}, 3: {20: None}}, extra_viewers=[1])

    assert recommender.similar_viewers(1) == [2, 3]
    assert recommender.similar_viewers(99) == []


def test_results_follow_store_changes_between_calls(seeded_store):
    seeded_store({
        1: {10: None, 20: None},
        2: {10: None, 20: None, 30: None},
    })

    assert recommender.movie_recommendations(1) == [30]

    store.add_view(1, 30)
    assert recommender.movie_recommendations(1) == []

    store.delete_viewer(Viewer(2, "viewer-2"))
    assert recommender.similar_viewers(1) == []


def test_conditional_recommendations_through_store(seeded_store):
    seeded_store({
        1: {5: Opinion.DISLIKE, 6: None},
        2: {5: Opinion.DISLIKE, 6: None, 100: Opinion.LIKE},
        3: {5: Opinion.LIKE, 6: None, 200: Opinion.LIKE},
    })

    assert recommender.conditional_recommendations(1, 5) == [100]
    store.remove_movie_rating(1, 5)
    assert recommender.conditional_recommendations(1, 5) == []


def test_store_failure_propagates_to_caller(fresh_db):
    # Schema never created: the read fails and the engine does not mask it
    with pytest.raises(sqlite3.OperationalError):
        recommender.similar_viewers(1)
