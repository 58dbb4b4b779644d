import logging

import numpy as np

from .config import (
    RECOMMENDATION_LIMIT,
    INFLUENCER_LIMIT,
    OVERLAP_NUMERATOR,
    OVERLAP_OFFSET,
    OVERLAP_DENOMINATOR,
)
from .viewing_graph import ViewingGraph, load_viewing_graph

logger = logging.getLogger(__name__)


def overlap_threshold(n_watched: int) -> int:
    """
    Minimum number of shared movies for a viewer to count as similar.

    Integer division, so n=4 -> 3 and n=0 -> 0 (everyone with a history qualifies).
    """
    return (OVERLAP_NUMERATOR * n_watched + OVERLAP_OFFSET) // OVERLAP_DENOMINATOR


class ViewerRecommender:
    """
    Overlap-based viewer similarity and popularity-among-peers recommendations.

    Every method is a pure function of the ViewingGraph snapshot it was built with.
    Unknown viewers and movies produce empty results rather than errors.
    """

    def __init__(
        self,
        graph: ViewingGraph,
        limit: int = RECOMMENDATION_LIMIT,
        influencer_limit: int = INFLUENCER_LIMIT,
    ):
        if limit < 1 or influencer_limit < 1:
            raise ValueError(f"Result limits must be at least 1 (limit={limit}, influencer_limit={influencer_limit})")
        self.graph = graph
        self.limit = limit
        self.influencer_limit = influencer_limit

    def similar_viewers(self, viewer_id: int) -> list[int]:
        """
        Viewers who watched at least ``overlap_threshold(n)`` of the n movies
        ``viewer_id`` watched, ascending by id and excluding ``viewer_id`` itself.
        """
        graph = self.graph
        if not graph.has_viewer(viewer_id) or graph.watch_matrix.shape[0] == 0:
            return []

        watch = graph.watch_matrix
        ref_row = graph.viewer_row(viewer_id)

        if ref_row is None:
            n_watched = 0
            overlaps = np.zeros(watch.shape[0], dtype=np.int64)
        else:
            target = watch[ref_row]
            n_watched = int(target.nnz)
            # One sparse matrix-vector product gives the overlap with every viewer
            overlaps = np.asarray((watch @ target.T).toarray()).ravel()

        qualifies = overlaps >= overlap_threshold(n_watched)
        if ref_row is not None:
            qualifies[ref_row] = False

        similar = graph.active_viewer_ids[qualifies].tolist()
        logger.debug(f"Viewer {viewer_id}: {len(similar)} similar viewers (n={n_watched}, threshold={overlap_threshold(n_watched)})")
        return similar

    def most_influencing_viewers(self) -> list[int]:
        """
        Top viewers by number of views, then number of opinions, then ascending id.
        Viewers with views but no opinions rank with zero votes.
        """
        graph = self.graph
        if graph.watch_matrix.shape[0] == 0:
            return []

        views = np.asarray(graph.watch_matrix.getnnz(axis=1), dtype=np.int64)
        votes = graph.vote_counts
        ids = graph.active_viewer_ids

        # lexsort uses the last key as primary
        order = np.lexsort((ids, -votes, -views))
        return ids[order][:self.influencer_limit].tolist()

    def movie_recommendations(self, viewer_id: int) -> list[int]:
        """Unseen movies watched by similar viewers, most liked among them first."""
        return self._rank_candidates(viewer_id, self.similar_viewers(viewer_id))

    def conditional_recommendations(self, viewer_id: int, movie_id: int) -> list[int]:
        """
        Like ``movie_recommendations`` but only counting similar viewers who share
        ``viewer_id``'s opinion on ``movie_id``. No opinion means no peers.
        """
        reference = self.graph.opinion(viewer_id, movie_id)
        if reference is None:
            return []

        peers = [
            other for other in self.similar_viewers(viewer_id)
            if self.graph.opinion(other, movie_id) is reference
        ]
        return self._rank_candidates(viewer_id, peers)

    def _rank_candidates(self, viewer_id: int, peers: list[int]) -> list[int]:
        """
        Rank every movie watched by ``peers`` and unseen by ``viewer_id``.

        The candidate set comes from the watch matrix and like counts are read
        for those columns afterwards, so unliked candidates stay in with zero.
        """
        graph = self.graph
        rows = [graph.viewer_row(peer) for peer in peers]
        rows = [row for row in rows if row is not None]
        if not rows:
            return []

        peer_views = np.asarray(graph.watch_matrix[rows].sum(axis=0)).ravel()
        peer_likes = np.asarray(graph.like_matrix[rows].sum(axis=0)).ravel()

        candidate_mask = peer_views > 0
        ref_row = graph.viewer_row(viewer_id)
        if ref_row is not None:
            seen = graph.watch_matrix[ref_row].toarray().ravel() > 0
            candidate_mask &= ~seen

        candidates = np.flatnonzero(candidate_mask)
        if candidates.size == 0:
            return []

        movie_ids = graph.movie_ids[candidates]
        order = np.lexsort((movie_ids, -peer_likes[candidates]))
        ranked = movie_ids[order][:self.limit].tolist()
        logger.debug(f"Viewer {viewer_id}: {candidates.size} candidates from {len(rows)} peers, returning {len(ranked)}")
        return ranked


def similar_viewers(viewer_id: int) -> list[int]:
    return ViewerRecommender(load_viewing_graph()).similar_viewers(viewer_id)


def most_influencing_viewers() -> list[int]:
    return ViewerRecommender(load_viewing_graph()).most_influencing_viewers()


def movie_recommendations(viewer_id: int) -> list[int]:
    return ViewerRecommender(load_viewing_graph()).movie_recommendations(viewer_id)


def conditional_recommendations(viewer_id: int, movie_id: int) -> list[int]:
    return ViewerRecommender(load_viewing_graph()).conditional_recommendations(viewer_id, movie_id)
