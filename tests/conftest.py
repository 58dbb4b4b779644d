import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    The module is reloaded again from the restored environment afterwards.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("TECHFLIX_DB", str(db_path))
    import techflix_rec.config as config

    importlib.reload(config)
    yield config
    monkeypatch.undo()
    importlib.reload(config)


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload config/database modules with a temp DB and cleanly close the pool after use.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("TECHFLIX_DB", str(db_path))

    import techflix_rec.config as config
    import techflix_rec.database as database

    importlib.reload(config)
    importlib.reload(database)

    yield database
    database.close_pool()
    monkeypatch.undo()
    importlib.reload(config)
    importlib.reload(database)


@pytest.fixture
def seeded_store(fresh_db):
    """
    Initialized store with helpers to add viewers, movies and views in one call.
    """
    from techflix_rec import store
    from techflix_rec.models import Movie, StoreResult, Viewer

    fresh_db.init_db()

    def seed(watches: dict[int, dict[int, object]], extra_viewers=(), extra_movies=()):
        viewer_ids = set(watches) | set(extra_viewers)
        movie_ids = {m for movies in watches.values() for m in movies} | set(extra_movies)
        for viewer_id in sorted(viewer_ids):
            assert store.create_viewer(Viewer(viewer_id, f"viewer-{viewer_id}")) is StoreResult.OK
        for movie_id in sorted(movie_ids):
            assert store.create_movie(Movie(movie_id, f"movie-{movie_id}", "")) is StoreResult.OK
        for viewer_id, movies in watches.items():
            for movie_id, opinion in movies.items():
                store.add_view(viewer_id, movie_id)
                if opinion is not None:
                    store.add_movie_rating(viewer_id, movie_id, opinion)

    yield seed
