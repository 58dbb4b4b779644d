import sqlite3

import pytest

from techflix_rec import store
from techflix_rec.models import Movie, Opinion, StoreResult, Viewer


@pytest.fixture
def db(fresh_db):
    fresh_db.init_db()
    return fresh_db


def test_viewer_lifecycle(db):
    assert store.create_viewer(Viewer(1, "Ada")) is StoreResult.OK
    assert store.get_viewer(1) == Viewer(1, "Ada")

    assert store.update_viewer(Viewer(1, "Grace")) is StoreResult.OK
    assert store.get_viewer(1).name == "Grace"

    assert store.delete_viewer(Viewer(1, "Grace")) is StoreResult.OK
    assert store.get_viewer(1) is None
    assert store.delete_viewer(Viewer(1, "Grace")) is StoreResult.NOT_EXISTS


@pytest.mark.parametrize(
    "viewer, expected",
    [
        (Viewer(0, "zero"), StoreResult.BAD_PARAMS),
        (Viewer(-3, "negative"), StoreResult.BAD_PARAMS),
        (Viewer(2, None), StoreResult.BAD_PARAMS),
        (Viewer(None, "no id"), StoreResult.BAD_PARAMS),
        (Viewer(2, ""), StoreResult.BAD_PARAMS),
    ],
)
def test_create_viewer_rejects_bad_params(db, viewer, expected):
    assert store.create_viewer(viewer) is expected


def test_create_viewer_twice_already_exists(db):
    assert store.create_viewer(Viewer(1, "Ada")) is StoreResult.OK
    assert store.create_viewer(Viewer(1, "Someone else")) is StoreResult.ALREADY_EXISTS


def test_update_viewer_missing_or_nameless(db):
    assert store.update_viewer(Viewer(7, "Nobody")) is StoreResult.NOT_EXISTS
    store.create_viewer(Viewer(7, "Somebody"))
    assert store.update_viewer(Viewer(7, None)) is StoreResult.BAD_PARAMS
    assert store.get_viewer(7).name == "Somebody"


def test_movie_lifecycle(db):
    movie = Movie(3, "Heat", "Crime")
    assert store.create_movie(movie) is StoreResult.OK
    assert store.create_movie(movie) is StoreResult.ALREADY_EXISTS
    assert store.create_movie(Movie(4, "Untitled", None)) is StoreResult.BAD_PARAMS
    assert store.create_movie(Movie(0, "Zero", "")) is StoreResult.BAD_PARAMS

    assert store.update_movie(Movie(3, "Heat", "Los Angeles crime saga")) is StoreResult.OK
    assert store.get_movie(3).description == "Los Angeles crime saga"
    assert store.update_movie(Movie(3, "Heat", None)) is StoreResult.BAD_PARAMS
    assert store.update_movie(Movie(9, "Missing", "x")) is StoreResult.NOT_EXISTS

    assert store.delete_movie(movie) is StoreResult.OK
    assert store.get_movie(3) is None
    assert store.delete_movie(movie) is StoreResult.NOT_EXISTS


def test_views_and_opinions(db):
    store.create_viewer(Viewer(1, "Ada"))
    store.create_movie(Movie(10, "Alien", ""))

    assert store.add_movie_rating(1, 10, Opinion.LIKE) is StoreResult.NOT_EXISTS  # not watched yet
    assert store.add_view(1, 10) is StoreResult.OK
    assert store.add_view(1, 10) is StoreResult.ALREADY_EXISTS
    assert store.add_view(1, 99) is StoreResult.NOT_EXISTS
    assert store.add_view(2, 10) is StoreResult.NOT_EXISTS

    assert store.remove_movie_rating(1, 10) is StoreResult.NOT_EXISTS  # no opinion yet
    assert store.add_movie_rating(1, 10, Opinion.LIKE) is StoreResult.OK
    assert store.get_movie_likes_count(10) == 1
    assert store.add_movie_rating(1, 10, Opinion.DISLIKE) is StoreResult.OK
    assert store.get_movie_likes_count(10) == 0
    assert store.get_movie_dislikes_count(10) == 1

    assert store.remove_movie_rating(1, 10) is StoreResult.OK
    assert store.get_movie_view_count(10) == 1
    assert store.get_movie_dislikes_count(10) == 0

    assert store.remove_view(1, 10) is StoreResult.OK
    assert store.remove_view(1, 10) is StoreResult.NOT_EXISTS
    assert store.get_movie_view_count(10) == 0


def test_add_movie_rating_requires_an_opinion(db):
    store.create_viewer(Viewer(1, "Ada"))
    store.create_movie(Movie(10, "Alien", ""))
    store.add_view(1, 10)

    assert store.add_movie_rating(1, 10, None) is StoreResult.BAD_PARAMS
    assert store.add_movie_rating(1, 10, "LIKE") is StoreResult.BAD_PARAMS


def test_counts_for_unknown_movie_are_zero(db):
    assert store.get_movie_view_count(404) == 0
    assert store.get_movie_likes_count(404) == 0
    assert store.get_movie_dislikes_count(404) == 0


def test_deleting_viewer_or_movie_cascades_to_ratings(db):
    for viewer_id in (1, 2):
        store.create_viewer(Viewer(viewer_id, f"v{viewer_id}"))
    for movie_id in (10, 20):
        store.create_movie(Movie(movie_id, f"m{movie_id}", ""))
    for viewer_id in (1, 2):
        for movie_id in (10, 20):
            store.add_view(viewer_id, movie_id)

    store.delete_viewer(Viewer(1, "v1"))
    assert store.get_movie_view_count(10) == 1

    store.delete_movie(Movie(20, "m20", ""))
    with db.get_db(read_only=True) as conn:
        rows = conn.execute("SELECT viewer_id, movie_id FROM ratings").fetchall()
    assert [tuple(r) for r in rows] == [(2, 10)]


@pytest.mark.parametrize(
    "error, expected",
    [
        (sqlite3.IntegrityError("UNIQUE constraint failed: viewers.viewer_id"), StoreResult.ALREADY_EXISTS),
        (sqlite3.IntegrityError("FOREIGN KEY constraint failed"), StoreResult.NOT_EXISTS),
        (sqlite3.IntegrityError("NOT NULL constraint failed: movies.movie_name"), StoreResult.BAD_PARAMS),
        (sqlite3.IntegrityError("CHECK constraint failed: movie_id > 0"), StoreResult.BAD_PARAMS),
        (sqlite3.OperationalError("database is locked"), StoreResult.ERROR),
    ],
)
def test_classify_error(error, expected):
    assert store.classify_error(error) is expected


def test_store_errors_become_error_result(fresh_db):
    # No schema: every write fails with an OperationalError
    assert store.create_viewer(Viewer(1, "Ada")) is StoreResult.ERROR
