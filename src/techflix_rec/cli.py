import argparse
import json
import logging
import atexit
import sys
from datetime import datetime

from .database import init_db, get_db, clear_tables, drop_tables, close_pool, get_table_counts
from .config import EXPORT_CHUNK_SIZE, IMPORT_CHUNK_SIZE, INFLUENCER_LIMIT, RECOMMENDATION_LIMIT
from .models import Movie, Opinion, StoreResult, Viewer
from .recommender import ViewerRecommender
from .viewing_graph import load_viewing_graph
from . import store
from tqdm import tqdm

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def _check(result: StoreResult, action: str) -> None:
    """Log the outcome of a store call and exit non-zero on failure."""
    if result is StoreResult.OK:
        logger.info(f"{action}: ok")
        return
    logger.error(f"{action}: {result.value}")
    sys.exit(1)


def _parse_opinion(value: str) -> Opinion:
    try:
        return Opinion.parse(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid opinion '{value}' (expected like or dislike)")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid limit '{value}' (expected a positive integer)")
    if number < 1:
        raise argparse.ArgumentTypeError(f"Invalid limit {number} (must be at least 1)")
    return number


def _format_ids(ids: list[int]) -> str:
    return ", ".join(str(i) for i in ids) if ids else "(none)"


def cmd_init(args: argparse.Namespace) -> None:
    init_db()
    logger.info("Database initialized")


def cmd_clear(args: argparse.Namespace) -> None:
    init_db()
    clear_tables()


def cmd_drop(args: argparse.Namespace) -> None:
    drop_tables()


def cmd_add_viewer(args: argparse.Namespace) -> None:
    init_db()
    _check(store.create_viewer(Viewer(id=args.viewer_id, name=args.name)), f"Add viewer {args.viewer_id}")


def cmd_add_movie(args: argparse.Namespace) -> None:
    init_db()
    movie = Movie(id=args.movie_id, name=args.name, description=args.description)
    _check(store.create_movie(movie), f"Add movie {args.movie_id}")


def cmd_view(args: argparse.Namespace) -> None:
    init_db()
    _check(store.add_view(args.viewer_id, args.movie_id), f"Viewer {args.viewer_id} watched {args.movie_id}")


def cmd_unview(args: argparse.Namespace) -> None:
    init_db()
    _check(store.remove_view(args.viewer_id, args.movie_id), f"Remove view {args.viewer_id}/{args.movie_id}")


def cmd_rate(args: argparse.Namespace) -> None:
    init_db()
    result = store.add_movie_rating(args.viewer_id, args.movie_id, args.opinion)
    _check(result, f"Viewer {args.viewer_id} {args.opinion.value.lower()}s {args.movie_id}")


def cmd_unrate(args: argparse.Namespace) -> None:
    init_db()
    _check(store.remove_movie_rating(args.viewer_id, args.movie_id), f"Remove opinion {args.viewer_id}/{args.movie_id}")


def cmd_similar_viewers(args: argparse.Namespace) -> None:
    """Show viewers whose watch history overlaps the given viewer's."""
    init_db()
    graph = load_viewing_graph()
    similar = ViewerRecommender(graph).similar_viewers(args.viewer_id)

    if not graph.has_viewer(args.viewer_id):
        logger.warning(f"Viewer {args.viewer_id} does not exist")

    logger.info(f"Similar viewers for {args.viewer_id}: {_format_ids(similar)}")
    if args.verbose:
        watched = graph.watched_movies(args.viewer_id)
        for other in similar:
            shared = len(watched & graph.watched_movies(other))
            logger.info(f"  {other}: {shared}/{len(watched)} shared movies")


def cmd_influencers(args: argparse.Namespace) -> None:
    """Show the most engaged viewers."""
    init_db()
    graph = load_viewing_graph()
    ranked = ViewerRecommender(graph, influencer_limit=args.limit).most_influencing_viewers()

    logger.info("Most influencing viewers:")
    logger.info("-" * 50)
    for viewer_id in ranked:
        watched = graph.watched_movies(viewer_id)
        votes = sum(1 for movie in watched if graph.opinion(viewer_id, movie) is not None)
        logger.info(f"  {viewer_id}: {len(watched)} views, {votes} opinions")
    if not ranked:
        logger.info("  (none)")


def cmd_recommend(args: argparse.Namespace) -> None:
    """Recommend unseen movies, optionally conditioned on a shared opinion."""
    init_db()
    graph = load_viewing_graph()
    recommender = ViewerRecommender(graph, limit=args.limit)

    if args.given is not None:
        movie_ids = recommender.conditional_recommendations(args.viewer_id, args.given)
        if graph.opinion(args.viewer_id, args.given) is None:
            logger.warning(f"Viewer {args.viewer_id} has no opinion on movie {args.given}")
    else:
        movie_ids = recommender.movie_recommendations(args.viewer_id)

    if args.format == 'json':
        print(json.dumps({"viewer_id": args.viewer_id, "given": args.given, "movies": movie_ids}))
        return

    logger.info(f"Recommendations for viewer {args.viewer_id}:")
    for rank, movie_id in enumerate(movie_ids, 1):
        movie = store.get_movie(movie_id)
        title = movie.name if movie else "?"
        logger.info(f"  {rank:2d}. [{movie_id}] {title} ({store.get_movie_likes_count(movie_id)} likes overall)")
    if not movie_ids:
        logger.info("  (none)")


def cmd_stats(args: argparse.Namespace) -> None:
    """Show database statistics."""
    init_db()
    counts = get_table_counts()

    logger.info("\nDatabase Statistics:")
    logger.info(f"  Viewers: {counts['viewers']}")
    logger.info(f"  Movies: {counts['movies']}")
    logger.info(f"  Views: {counts['ratings']}")
    logger.info(f"  Opinions: {counts['opinions']}")

    if counts['ratings'] > 0:
        with get_db(read_only=True) as conn:
            top_movies = conn.execute("""
                SELECT movie_id, COUNT(*) AS views
                FROM ratings
                GROUP BY movie_id
                ORDER BY views DESC, movie_id ASC
                LIMIT 5
            """).fetchall()

        logger.info("\nMost watched movies:")
        for movie_id, views in top_movies:
            logger.info(f"  {movie_id}: {views} views")


def cmd_export(args: argparse.Namespace) -> None:
    """Export database to JSON file."""
    def _stream_rows(conn, query: str):
        cursor = conn.execute(query)
        while True:
            chunk = cursor.fetchmany(EXPORT_CHUNK_SIZE)
            if not chunk:
                break
            for row in chunk:
                yield dict(row)

    init_db()
    counts = {}
    with get_db(read_only=True) as conn, open(args.file, 'w') as f:
        f.write('{')
        for table, query in (
            ("viewers", "SELECT viewer_id, viewer_name FROM viewers ORDER BY viewer_id"),
            ("movies", "SELECT movie_id, movie_name, movie_description FROM movies ORDER BY movie_id"),
            ("ratings", "SELECT viewer_id, movie_id, opinion FROM ratings ORDER BY viewer_id, movie_id"),
        ):
            f.write(f'"{table}":[')
            counts[table] = 0
            for row in _stream_rows(conn, query):
                if counts[table]:
                    f.write(',')
                json.dump(row, f)
                counts[table] += 1
            f.write('],')
        f.write('"exported_at": "%s"}' % datetime.now().isoformat())

    logger.info(
        f"Exported {counts['viewers']} viewers, {counts['movies']} movies "
        f"and {counts['ratings']} ratings to {args.file}"
    )


def cmd_import(args: argparse.Namespace) -> None:
    """Import database from JSON file."""
    with open(args.file, 'r') as f:
        data = json.load(f)

    init_db()

    def _batched(items, size=IMPORT_CHUNK_SIZE):
        for i in range(0, len(items), size):
            yield items[i:i+size]

    statements = (
        ("viewers", """
            INSERT INTO viewers (viewer_id, viewer_name) VALUES (:viewer_id, :viewer_name)
            ON CONFLICT(viewer_id) DO UPDATE SET viewer_name = excluded.viewer_name
        """),
        ("movies", """
            INSERT INTO movies (movie_id, movie_name, movie_description)
            VALUES (:movie_id, :movie_name, :movie_description)
            ON CONFLICT(movie_id) DO UPDATE SET
                movie_name = excluded.movie_name,
                movie_description = excluded.movie_description
        """),
        ("ratings", """
            INSERT INTO ratings (viewer_id, movie_id, opinion) VALUES (:viewer_id, :movie_id, :opinion)
            ON CONFLICT(viewer_id, movie_id) DO UPDATE SET opinion = excluded.opinion
        """),
    )

    # Parents before ratings so foreign keys resolve; one transaction for the whole file
    with get_db() as conn:
        for table, statement in statements:
            rows = data.get(table, [])
            if table == "ratings":
                rows = [{**row, "opinion": row.get("opinion")} for row in rows]
            chunks = list(_batched(rows))
            for chunk in tqdm(chunks, desc=f"Importing {table}", disable=not chunks):
                conn.executemany(statement, chunk)
            logger.info(f"Imported {len(rows)} {table}")

    logger.info(f"Import completed from {args.file}")


def main():
    parser = argparse.ArgumentParser(description="Techflix viewer similarity and movie recommendations")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Schema commands
    init_parser = subparsers.add_parser("init", help="Create the database schema")
    init_parser.set_defaults(func=cmd_init)

    clear_parser = subparsers.add_parser("clear", help="Delete all rows, keeping the schema")
    clear_parser.set_defaults(func=cmd_clear)

    drop_parser = subparsers.add_parser("drop", help="Drop all tables")
    drop_parser.set_defaults(func=cmd_drop)

    # Records
    viewer_parser = subparsers.add_parser("add-viewer", help="Add a viewer")
    viewer_parser.add_argument("viewer_id", type=int, help="Positive viewer id")
    viewer_parser.add_argument("name", help="Viewer name")
    viewer_parser.set_defaults(func=cmd_add_viewer)

    movie_parser = subparsers.add_parser("add-movie", help="Add a movie")
    movie_parser.add_argument("movie_id", type=int, help="Positive movie id")
    movie_parser.add_argument("name", help="Movie name")
    movie_parser.add_argument("--description", default="", help="Movie description")
    movie_parser.set_defaults(func=cmd_add_movie)

    view_parser = subparsers.add_parser("view", help="Mark a movie as watched by a viewer")
    view_parser.add_argument("viewer_id", type=int)
    view_parser.add_argument("movie_id", type=int)
    view_parser.set_defaults(func=cmd_view)

    unview_parser = subparsers.add_parser("unview", help="Remove a watched movie (and its opinion)")
    unview_parser.add_argument("viewer_id", type=int)
    unview_parser.add_argument("movie_id", type=int)
    unview_parser.set_defaults(func=cmd_unview)

    rate_parser = subparsers.add_parser("rate", help="Like or dislike a watched movie")
    rate_parser.add_argument("viewer_id", type=int)
    rate_parser.add_argument("movie_id", type=int)
    rate_parser.add_argument("opinion", type=_parse_opinion, help="like or dislike")
    rate_parser.set_defaults(func=cmd_rate)

    unrate_parser = subparsers.add_parser("unrate", help="Clear an opinion, keeping the view")
    unrate_parser.add_argument("viewer_id", type=int)
    unrate_parser.add_argument("movie_id", type=int)
    unrate_parser.set_defaults(func=cmd_unrate)

    # Engine
    similar_parser = subparsers.add_parser("similar-viewers", help="Find viewers with overlapping watch history")
    similar_parser.add_argument("viewer_id", type=int)
    similar_parser.set_defaults(func=cmd_similar_viewers)

    influencers_parser = subparsers.add_parser("influencers", help="Rank viewers by views and opinions")
    influencers_parser.add_argument("--limit", type=_positive_int, default=INFLUENCER_LIMIT, help="Number of viewers to show")
    influencers_parser.set_defaults(func=cmd_influencers)

    rec_parser = subparsers.add_parser("recommend", help="Recommend unseen movies")
    rec_parser.add_argument("viewer_id", type=int)
    rec_parser.add_argument("--given", type=int, metavar="MOVIE_ID",
                            help="Only count similar viewers sharing your opinion on this movie")
    rec_parser.add_argument("--limit", type=_positive_int, default=RECOMMENDATION_LIMIT, help="Number of recommendations")
    rec_parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")
    rec_parser.set_defaults(func=cmd_recommend)

    # Maintenance
    stats_parser = subparsers.add_parser("stats", help="Show database statistics")
    stats_parser.set_defaults(func=cmd_stats)

    export_parser = subparsers.add_parser("export", help="Export database to JSON")
    export_parser.add_argument("file", help="Output JSON file path")
    export_parser.set_defaults(func=cmd_export)

    import_parser = subparsers.add_parser("import", help="Import database from JSON")
    import_parser.add_argument("file", help="Input JSON file path")
    import_parser.set_defaults(func=cmd_import)

    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
