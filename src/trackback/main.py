"""Main application entry point for TrackBack."""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from trackback.api import create_api_router
from trackback.config import Config, get_config
from trackback.database.item_repository import SQLiteItemStore
from trackback.database.match_repository import MatchRepository
from trackback.models.buckets import BucketScheme
from trackback.services.matching_engine import MatchingEngine
from trackback.version import VERSION

_file_sink_id: int | None = None


def configure_logging(config: Config | None = None) -> Path:
    """Add the rotating file sink for all logs.

    Calling it again replaces the previous file sink.

    Returns:
        Path of the log file
    """
    global _file_sink_id
    config = config or get_config()

    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    if _file_sink_id is not None:
        logger.remove(_file_sink_id)

    # Rotation at 10 MB, keep 5 old files
    _file_sink_id = logger.add(
        log_path,
        rotation="10 MB",
        retention=5,
        level=config.log_level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        backtrace=True,
        diagnose=True,
    )
    logger.info(f"Logging to file: {log_path}")
    return log_path


def build_engine(config: Config | None = None) -> MatchingEngine:
    """Create the SQLite stores and the matching engine over them."""
    config = config or get_config()
    scheme = BucketScheme(
        time_bucket_days=config.time_bucket_days,
        geo_cell_degrees=config.geo_cell_degrees,
    )
    item_store = SQLiteItemStore(config.database_path, bucket_scheme=scheme)
    match_repository = MatchRepository(config.database_path)
    return MatchingEngine(item_store, match_repository, config=config)


def create_app(engine: MatchingEngine | None = None) -> FastAPI:
    """Create the review API application.

    Args:
        engine: Matching engine to serve (built from config when omitted)

    Returns:
        FastAPI app; the engine is started on startup and stopped on shutdown
    """
    engine = engine or build_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine.start()
        try:
            yield
        finally:
            engine.stop()

    app = FastAPI(title="TrackBack Matcher", version=VERSION, lifespan=lifespan)
    app.state.engine = engine
    app.include_router(create_api_router(engine))

    logger.info("REST API endpoints configured")
    return app


def main() -> None:
    """Entry point for the TrackBack review API server."""
    import uvicorn

    config = get_config()
    configure_logging(config)
    logger.info("Starting TrackBack matcher")

    app = create_app(build_engine(config))
    uvicorn.run(app, host=config.api_host, port=config.api_port)


if __name__ == "__main__":
    main()
