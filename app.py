import os
import logging

from yt_dlp.version import __version__ as yt_dlp_version
from dotenv import load_dotenv
from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from logging_setup import configure_logging
from reliability_config import get_pipeline_config


def create_app(service=None) -> Flask:
    """
    Build the Flask app.

    Args:
        service: Optional TranscriptService; the process-wide default is
            used when omitted.
    """
    load_dotenv()
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        use_json=os.getenv("USE_MINIMAL_LOGGING", "true").lower() == "true"
    )

    app = Flask(__name__)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)
    if service is not None:
        app.config["TRANSCRIPT_SERVICE"] = service

    from routes import transcript_routes
    app.register_blueprint(transcript_routes)

    @app.route('/health')
    @app.route('/healthz')
    def health_check():
        """Health check with enabled strategies and yt-dlp version"""
        if service is not None:
            config = service.config
            strategies = [strategy.name for strategy in service.strategies]
        else:
            config = get_pipeline_config()
            strategies = config.enabled_strategies()

        health_info = {
            'status': 'healthy' if strategies else 'degraded',
            'message': 'Transcript API is running',
            'strategies': strategies,
            'proxy_enabled': bool(config.proxy_url),
            'yt_dlp_version': yt_dlp_version,
        }
        if not strategies:
            health_info['message'] = 'All transcript strategies are disabled'
            return health_info, 503
        return health_info, 200

    logging.info("Transcript API app created")
    return app
