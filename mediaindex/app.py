"""
Flask application factory for the media indexer.

Creates and configures the Flask application with blueprints,
error handlers, and CLI commands.
"""

import os
import logging
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from mediaindex.config import get_config, Config


def create_app(config: Config = None) -> Flask:
    """Application factory for creating Flask app."""

    if config is None:
        config = get_config()

    # Initialize directories
    config.init_dirs()

    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config)
    app.config['MEDIAINDEX_CONFIG'] = config

    # Configure logging
    configure_logging(app, config)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Register CLI commands
    register_cli_commands(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring."""
        from mediaindex.indexer.runner import get_runner
        return jsonify({
            'status': 'healthy',
            'building': get_runner().building,
            'version': config.APP_VERSION
        })

    app.logger.info(f"Media indexer initialized (env: {os.environ.get('MEDIAINDEX_ENV', 'development')})")

    return app


def configure_logging(app: Flask, config: Config):
    """Configure application logging."""
    log_level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format=config.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(config.LOG_DIR / 'mediaindex.log')
        ]
    )

    # Set Flask logger level
    app.logger.setLevel(log_level)

    # Reduce noise from werkzeug and urllib3 in production
    if not config.DEBUG:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)


def register_blueprints(app: Flask):
    """Register all API blueprints."""
    from mediaindex.api.indexer import indexer_bp

    app.register_blueprint(indexer_bp, url_prefix='/api')


def register_error_handlers(app: Flask):
    """Register error handlers."""

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({'error': 'Bad request', 'message': str(error)}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found', 'message': str(error)}), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"Internal error: {error}")
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(Exception)
    def handle_exception(error):
        if isinstance(error, HTTPException):
            return jsonify({'error': error.name, 'message': error.description}), error.code
        app.logger.exception(f"Unhandled exception: {error}")
        return jsonify({'error': 'An unexpected error occurred'}), 500


def register_cli_commands(app: Flask):
    """Register CLI commands."""

    @app.cli.command('build-index')
    def build_index_command():
        """Build the media index for the configured site."""
        from mediaindex.indexer.builder import IndexBuilder
        from mediaindex.indexer.context import BuildContext
        config = app.config['MEDIAINDEX_CONFIG']
        entries = IndexBuilder(BuildContext.from_config(config)).run()
        print(f"Index built: {len(entries)} entries.")
