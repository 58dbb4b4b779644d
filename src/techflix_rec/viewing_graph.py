import logging
from typing import Iterable

import numpy as np
from scipy.sparse import csr_matrix

from .database import get_db, load_viewing_rows
from .models import Opinion

logger = logging.getLogger(__name__)


class ViewingGraph:
    """
    Read-only snapshot of the bipartite viewer/movie graph.

    Rows of the sparse matrices are viewers with at least one watch pair, ordered
    by ascending viewer id; columns are watched movies ordered by ascending movie id.
    Ordering the axes by id lets every ranking break ties by index position.
    """

    def __init__(
        self,
        ratings: dict[int, dict[int, Opinion | None]],
        viewer_ids: Iterable[int] | None = None,
    ):
        """
        Args:
            ratings: Dict mapping viewer_id -> {movie_id: opinion or None}
            viewer_ids: Every known viewer, including those who watched nothing.
                Defaults to the viewers present in ``ratings``.
        """
        self.ratings = {viewer: dict(movies) for viewer, movies in ratings.items() if movies}
        self.viewer_ids = set(viewer_ids) if viewer_ids is not None else set(ratings)
        self.viewer_ids |= set(self.ratings)

        self.watch_matrix: csr_matrix | None = None
        self.like_matrix: csr_matrix | None = None
        self.vote_counts: np.ndarray | None = None
        self._build_sparse_matrices()

    @classmethod
    def from_rows(cls, rows: Iterable[tuple[int, int | None, str | None]]) -> "ViewingGraph":
        """Build from (viewer_id, movie_id, opinion) rows; movie_id None marks a viewer with no views."""
        ratings: dict[int, dict[int, Opinion | None]] = {}
        viewer_ids = set()
        for viewer_id, movie_id, opinion in rows:
            viewer_ids.add(viewer_id)
            if movie_id is not None:
                ratings.setdefault(viewer_id, {})[movie_id] = Opinion.parse(opinion)
        return cls(ratings, viewer_ids)

    def _build_sparse_matrices(self):
        active = sorted(self.ratings)
        self.active_viewer_ids = np.array(active, dtype=np.int64)
        self._viewer_index = {viewer: idx for idx, viewer in enumerate(active)}

        movies = sorted({movie for watched in self.ratings.values() for movie in watched})
        self.movie_ids = np.array(movies, dtype=np.int64)
        self._movie_index = {movie: idx for idx, movie in enumerate(movies)}

        n_viewers = len(active)
        n_movies = len(movies)

        watch_rows, watch_cols = [], []
        like_rows, like_cols = [], []
        votes = np.zeros(n_viewers, dtype=np.int64)

        for viewer, watched in self.ratings.items():
            row = self._viewer_index[viewer]
            for movie, opinion in watched.items():
                col = self._movie_index[movie]
                watch_rows.append(row)
                watch_cols.append(col)
                if opinion is not None:
                    votes[row] += 1
                if opinion is Opinion.LIKE:
                    like_rows.append(row)
                    like_cols.append(col)

        self.watch_matrix = self._binary_matrix(watch_rows, watch_cols, (n_viewers, n_movies))
        self.like_matrix = self._binary_matrix(like_rows, like_cols, (n_viewers, n_movies))
        self.vote_counts = votes

        logger.debug(f"Built viewing graph: {n_viewers} active viewers × {n_movies} movies, {len(watch_rows)} views")

    @staticmethod
    def _binary_matrix(rows: list[int], cols: list[int], shape: tuple[int, int]) -> csr_matrix:
        if rows:
            return csr_matrix(
                (np.ones(len(rows), dtype=np.int64), (rows, cols)),
                shape=shape,
                dtype=np.int64,
            )
        return csr_matrix(shape, dtype=np.int64)

    def viewer_row(self, viewer_id: int) -> int | None:
        """Matrix row for a viewer, or None when the viewer has watched nothing."""
        return self._viewer_index.get(viewer_id)

    def has_viewer(self, viewer_id: int) -> bool:
        return viewer_id in self.viewer_ids

    def watched_movies(self, viewer_id: int) -> set[int]:
        return set(self.ratings.get(viewer_id, {}))

    def viewers_who_watched(self, movie_id: int) -> set[int]:
        col = self._movie_index.get(movie_id)
        if col is None:
            return set()
        rows = self.watch_matrix[:, col].nonzero()[0]
        return set(self.active_viewer_ids[rows].tolist())

    def opinion(self, viewer_id: int, movie_id: int) -> Opinion | None:
        return self.ratings.get(viewer_id, {}).get(movie_id)

    def all_viewer_ids(self) -> set[int]:
        return set(self.viewer_ids)


def load_viewing_graph() -> ViewingGraph:
    """Read a consistent snapshot of the rating store and release the connection."""
    with get_db(read_only=True) as conn:
        rows = load_viewing_rows(conn)
    return ViewingGraph.from_rows(rows)
