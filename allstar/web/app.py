"""
Flask application factory
Creates the administration app around an AgentService
"""
import logging
from typing import Optional

from flask import Flask
from flask_cors import CORS

from ..config import get_config
from ..pipeline.orchestrator import build_orchestrator
from ..service import AgentService
from .routes import register_routes


logger = logging.getLogger(__name__)


def create_app(service: Optional[AgentService] = None, api_token: Optional[str] = None):
    """
    Create and configure the Flask application

    Args:
        service: Service to expose; built from configuration when omitted
        api_token: Bearer token required on admin routes; read from
            configuration when omitted, open when empty

    Returns:
        Configured Flask app instance
    """
    if service is None:
        service = AgentService(build_orchestrator())
    if api_token is None:
        api_token = get_config().server.api_token

    app = Flask(__name__)
    CORS(app)

    register_routes(app, service, api_token)

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """
    Run the HTTP server until interrupted

    Args:
        host: Host to bind to
        port: Port to listen on
    """
    server = get_config().server
    host = host or server.host
    port = port or server.port

    app = create_app()
    logger.info(f"Agent HTTP server listening on port {port}")
    logger.info("Runs are manual-only - use POST /trigger to start")
    app.run(host=host, port=port, debug=False, threaded=True)
