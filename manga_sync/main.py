"""
Main entry point for Manga Sync Service.

Starts the Flask web server and the import scheduler.
"""

import os
import atexit
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from flask import Flask

from manga_sync.config import get_config_from_env
from manga_sync.db.database import init_db
from manga_sync.services import Services, build_services
from manga_sync.sync.runner import ImportRunner
from manga_sync.utils.logging import get_logger, setup_logging, init_db_logging
from manga_sync.web.routes.api import EXTENSION_KEY

logger = get_logger(__name__)

IMPORT_JOB_ID = 'manga_import'
INITIAL_JOB_ID = 'initial_import'


def create_app(services: Services) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        services: Components the routes use

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    app.extensions[EXTENSION_KEY] = services

    from manga_sync.web.routes.api import api_bp
    from manga_sync.web.routes.config import config_bp
    from manga_sync.web.routes.manga import manga_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(config_bp)
    app.register_blueprint(manga_bp)

    @app.route('/health')
    def health():
        return {'status': 'ok', 'timestamp': datetime.utcnow().isoformat()}

    return app


def run_import(runner: ImportRunner) -> None:
    """Run a scheduled import."""
    logger.info("Starting scheduled import")

    handle = runner.run_scheduled()
    if handle is None:
        return

    logger.info(
        "Scheduled import finished",
        run_id=handle.run_id,
        status=handle.status,
        error=handle.error,
    )


def start_scheduler(
    runner: ImportRunner,
    interval_hours: float = 24,
    scheduler: Optional[BackgroundScheduler] = None,
) -> BackgroundScheduler:
    """
    Start the import scheduler.

    Runs once immediately, then every ``interval_hours``.

    Args:
        runner: Import runner
        interval_hours: Import interval in hours
        scheduler: Scheduler to use (a new BackgroundScheduler if not provided)

    Returns:
        The started scheduler
    """
    scheduler = scheduler or BackgroundScheduler()

    scheduler.add_job(
        run_import,
        trigger=IntervalTrigger(hours=interval_hours),
        args=[runner],
        id=IMPORT_JOB_ID,
        name='Manga Import',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    # Run the first import right away
    scheduler.add_job(
        run_import,
        trigger='date',
        args=[runner],
        id=INITIAL_JOB_ID,
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started", interval_hours=interval_hours)
    return scheduler


def shutdown_scheduler(scheduler: BackgroundScheduler, services: Services) -> None:
    """Shutdown the scheduler and services gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown")

    services.close()


def main():
    """Main entry point."""
    config = get_config_from_env()

    setup_logging(config.log_level)

    database = init_db(config.database_url)
    init_db_logging(database)

    services = build_services(config, database)

    logger.info(
        "Starting Manga Sync Service",
        version="0.1.0",
        import_interval_hours=config.import_interval_hours,
        import_limit=config.import_limit,
    )

    app = create_app(services)

    scheduler = start_scheduler(services.runner, services.config_manager.get_config().import_interval_hours)

    atexit.register(database.close)
    atexit.register(shutdown_scheduler, scheduler, services)

    port = int(os.getenv("PORT", "5000"))

    from waitress import serve
    serve(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
