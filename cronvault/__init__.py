import os
import json
import logging
from logging.handlers import RotatingFileHandler

import click
from flask import Flask
from flask_sqlalchemy import SQLAlchemy


# Initialize extensions
db = SQLAlchemy()


def configure_logging(app):
    """Configure application logging"""

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'cronvault.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def register_commands(app):
    """Register CLI commands (flask --app cronvault <command>)."""

    @app.cli.command('run-backup')
    def run_backup_command():
        """Run one backup now and print the result."""
        from cronvault.backup.executor import run_backup
        from cronvault.models import record_run

        result = run_backup(app.config)
        record_run(result, 'cli')

        click.echo(json.dumps(result.to_dict(), indent=2))
        if not result.success:
            raise SystemExit(1)


def create_app(config_name=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from cronvault.config import config
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app)

    # Ensure the sqlite directory exists
    db_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if db_uri.startswith('sqlite:///') and db_uri != 'sqlite:///:memory:':
        os.makedirs(os.path.dirname(db_uri.replace('sqlite:///', '')), exist_ok=True)

    # Initialize extensions
    db.init_app(app)

    # Register blueprints
    from cronvault.routes import backup_routes
    app.register_blueprint(backup_routes.bp)

    register_commands(app)

    from cronvault.scheduler import get_next_run_time

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy', 'next_backup': get_next_run_time()}, 200

    # Create history tables
    from cronvault import models  # noqa: F401
    with app.app_context():
        db.create_all()

    # Initialize and start scheduler (only in designated worker or when enabled)
    from cronvault.scheduler import init_scheduler, start_scheduler, stop_scheduler
    import atexit

    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    # Scheduler initialization logic (only when SCHEDULER_ENABLED):
    # - Testing: never
    # - Development mode: Only in Flask reloader child process (not parent)
    # - Production mode: Only in designated scheduler worker (SCHEDULER_WORKER=true)
    if app.config.get('TESTING', False) or not app.config['SCHEDULER_ENABLED']:
        should_init_scheduler = False
    elif is_development:
        should_init_scheduler = is_reloader_child
    else:
        should_init_scheduler = is_scheduler_worker

    if should_init_scheduler:
        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler initialization skipped in this process")

    return app
