"""
Viewer, movie and rating records on top of the SQLite rating store.

Mutating calls return a StoreResult instead of raising so that callers (the CLI,
or a service wrapping this module) can map outcomes to their own responses.
"""
import sqlite3
import logging

from .database import get_db
from .models import Movie, Opinion, StoreResult, Viewer

logger = logging.getLogger(__name__)


def classify_error(error: sqlite3.Error) -> StoreResult:
    """
    Map a SQLite failure to a StoreResult.

    UNIQUE/PRIMARY KEY -> ALREADY_EXISTS, FOREIGN KEY -> NOT_EXISTS,
    NOT NULL/CHECK -> BAD_PARAMS, anything else -> ERROR.
    """
    if not isinstance(error, sqlite3.IntegrityError):
        logger.warning(f"Unexpected database error: {error}")
        return StoreResult.ERROR

    message = str(error).upper()
    if "UNIQUE" in message or "PRIMARY KEY" in message:
        return StoreResult.ALREADY_EXISTS
    if "FOREIGN KEY" in message:
        return StoreResult.NOT_EXISTS
    if "NOT NULL" in message or "CHECK" in message:
        return StoreResult.BAD_PARAMS

    logger.warning(f"Unclassified integrity error: {error}")
    return StoreResult.ERROR


def _execute(query: str, params: tuple) -> tuple[StoreResult, int]:
    """Run a single write, returning (result, affected row count)."""
    try:
        with get_db() as conn:
            cursor = conn.execute(query, params)
            return StoreResult.OK, cursor.rowcount
    except sqlite3.Error as e:
        return classify_error(e), 0


def _affected_or_missing(query: str, params: tuple) -> StoreResult:
    result, affected = _execute(query, params)
    if result is StoreResult.OK and affected == 0:
        return StoreResult.NOT_EXISTS
    return result


# Viewers

def create_viewer(viewer: Viewer) -> StoreResult:
    result, _ = _execute(
        "INSERT INTO viewers (viewer_id, viewer_name) VALUES (?, ?)",
        (viewer.id, viewer.name)
    )
    if result is StoreResult.OK:
        logger.debug(f"Created viewer {viewer.id}")
    return result


def get_viewer(viewer_id: int) -> Viewer | None:
    with get_db(read_only=True) as conn:
        row = conn.execute(
            "SELECT viewer_id, viewer_name FROM viewers WHERE viewer_id = ?", (viewer_id,)
        ).fetchone()
    return Viewer(id=row['viewer_id'], name=row['viewer_name']) if row else None


def update_viewer(viewer: Viewer) -> StoreResult:
    """Rename a viewer."""
    if get_viewer(viewer.id) is None:
        return StoreResult.NOT_EXISTS
    if not viewer.name:
        return StoreResult.BAD_PARAMS
    return _affected_or_missing(
        "UPDATE viewers SET viewer_name = ? WHERE viewer_id = ?",
        (viewer.name, viewer.id)
    )


def delete_viewer(viewer: Viewer) -> StoreResult:
    """Delete a viewer; their ratings go with them."""
    return _affected_or_missing("DELETE FROM viewers WHERE viewer_id = ?", (viewer.id,))


# Movies

def create_movie(movie: Movie) -> StoreResult:
    result, _ = _execute(
        "INSERT INTO movies (movie_id, movie_name, movie_description) VALUES (?, ?, ?)",
        (movie.id, movie.name, movie.description)
    )
    if result is StoreResult.OK:
        logger.debug(f"Created movie {movie.id}")
    return result


def get_movie(movie_id: int) -> Movie | None:
    with get_db(read_only=True) as conn:
        row = conn.execute(
            "SELECT movie_id, movie_name, movie_description FROM movies WHERE movie_id = ?",
            (movie_id,)
        ).fetchone()
    if not row:
        return None
    return Movie(id=row['movie_id'], name=row['movie_name'], description=row['movie_description'])


def update_movie(movie: Movie) -> StoreResult:
    """Replace a movie's description."""
    if get_movie(movie.id) is None:
        return StoreResult.NOT_EXISTS
    if movie.description is None:
        return StoreResult.BAD_PARAMS
    return _affected_or_missing(
        "UPDATE movies SET movie_description = ? WHERE movie_id = ?",
        (movie.description, movie.id)
    )


def delete_movie(movie: Movie) -> StoreResult:
    return _affected_or_missing("DELETE FROM movies WHERE movie_id = ?", (movie.id,))


# Views and opinions

def add_view(viewer_id: int, movie_id: int) -> StoreResult:
    """Record that a viewer watched a movie, with no opinion yet."""
    result, _ = _execute(
        "INSERT INTO ratings (viewer_id, movie_id, opinion) VALUES (?, ?, NULL)",
        (viewer_id, movie_id)
    )
    return result


def remove_view(viewer_id: int, movie_id: int) -> StoreResult:
    return _affected_or_missing(
        "DELETE FROM ratings WHERE viewer_id = ? AND movie_id = ?",
        (viewer_id, movie_id)
    )


def add_movie_rating(viewer_id: int, movie_id: int, opinion: Opinion) -> StoreResult:
    """Set the viewer's opinion on a movie they already watched."""
    if not isinstance(opinion, Opinion):
        return StoreResult.BAD_PARAMS
    return _affected_or_missing(
        "UPDATE ratings SET opinion = ? WHERE viewer_id = ? AND movie_id = ?",
        (opinion.value, viewer_id, movie_id)
    )


def remove_movie_rating(viewer_id: int, movie_id: int) -> StoreResult:
    """Clear an existing opinion, keeping the view."""
    return _affected_or_missing(
        "UPDATE ratings SET opinion = NULL WHERE viewer_id = ? AND movie_id = ? AND opinion IS NOT NULL",
        (viewer_id, movie_id)
    )


def _count_ratings(movie_id: int, opinion: Opinion | None = None) -> int:
    query = "SELECT COUNT(*) FROM ratings WHERE movie_id = ?"
    params: tuple = (movie_id,)
    if opinion is not None:
        query += " AND opinion = ?"
        params += (opinion.value,)
    with get_db(read_only=True) as conn:
        return conn.execute(query, params).fetchone()[0]


def get_movie_view_count(movie_id: int) -> int:
    return _count_ratings(movie_id)


def get_movie_likes_count(movie_id: int) -> int:
    return _count_ratings(movie_id, Opinion.LIKE)


def get_movie_dislikes_count(movie_id: int) -> int:
    return _count_ratings(movie_id, Opinion.DISLIKE)
