"""
Main entry point for the Book Catalog Service.

Starts the Flask API under waitress.
"""

import atexit
from datetime import datetime
from typing import Optional

from flask import Flask, jsonify

from bookcatalog.config import CatalogConfig, get_config_from_env
from bookcatalog.db.database import init_db, close_db
from bookcatalog.utils.logging import get_logger, setup_logging, init_db_logging

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(config: Optional[CatalogConfig] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Environment-level configuration; loaded from the
            environment when omitted

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)

    config = config or get_config_from_env()
    app.secret_key = config.secret_key
    app.config['CATALOG_CONFIG'] = config
    app.config['MAX_CONTENT_LENGTH'] = config.max_upload_mb * 1024 * 1024

    # Register blueprints
    from bookcatalog.web.routes.books import books_bp
    from bookcatalog.web.routes.imports import imports_bp
    from bookcatalog.web.routes.settings import settings_bp

    app.register_blueprint(books_bp)
    app.register_blueprint(imports_bp)
    app.register_blueprint(settings_bp)

    # Health check
    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'timestamp': datetime.utcnow().isoformat()})

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Not found'}), 404

    @app.errorhandler(413)
    def too_large(error):
        return jsonify({'success': False, 'error': 'Upload too large'}), 413

    @app.errorhandler(500)
    def server_error(error):
        logger.error("Unhandled error", error=str(getattr(error, 'original_exception', error)))
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    return app


def main():
    """Main entry point."""
    config = get_config_from_env()

    # Setup logging
    setup_logging(config.log_level)

    # Initialize database
    init_db(config.database_url)

    # Initialize database logging (must be after init_db)
    init_db_logging()

    logger.info(
        "Starting Book Catalog Service",
        version=__version__,
        port=config.port
    )

    app = create_app(config)

    # Register shutdown handler
    atexit.register(close_db)

    # Run Flask app with waitress
    from waitress import serve
    serve(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
