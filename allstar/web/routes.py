"""
Flask API routes
Start, stop and inspect runs; grade single listings on demand
"""
import logging
from functools import wraps
from typing import Optional

from flask import jsonify, request

from ..errors import (
    GraderError,
    InvalidGradeResponse,
    NoActiveRunError,
    RunInProgressError,
    SourceError,
    UnsupportedSourceError,
)
from ..service import AgentService


logger = logging.getLogger(__name__)


def register_routes(app, service: AgentService, api_token: Optional[str] = None):
    """Register all routes with the Flask app"""

    def require_token(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            # No token configured = open
            if api_token and request.headers.get("Authorization") != f"Bearer {api_token}":
                return jsonify({"error": "Unauthorized"}), 401
            return view(*args, **kwargs)
        return wrapper

    @app.route('/', methods=['GET'])
    @app.route('/health', methods=['GET'])
    def health():
        status = service.status()
        return jsonify({
            "status": "ok",
            "is_running": status["is_running"],
            "current_run_id": status["current_run_id"],
        })

    @app.route('/trigger', methods=['POST'])
    @require_token
    def trigger():
        """
        Start a run in the background

        Query Parameters:
            dry_run: "true" grades with a fixed verdict instead of the model

        Body (optional JSON):
            triggered_by: Actor label stored on the run
        """
        dry_run = request.args.get('dry_run') == 'true'
        body = request.get_json(silent=True) or {}
        triggered_by = body.get('triggered_by') if isinstance(body, dict) else None

        try:
            service.trigger(dry_run=dry_run, triggered_by=triggered_by or None)
        except RunInProgressError as e:
            return jsonify({"error": str(e), "current_run_id": e.current_run_id}), 409

        return jsonify({"message": "Run started", "dry_run": dry_run}), 202

    @app.route('/stop', methods=['POST'])
    @require_token
    def stop():
        try:
            service.cancel()
        except NoActiveRunError as e:
            return jsonify({"error": str(e)}), 409
        return jsonify({"message": "Stop signal sent"}), 200

    @app.route('/status', methods=['GET'])
    @require_token
    def status():
        return jsonify(service.status()), 200

    @app.route('/grade-url', methods=['POST'])
    @require_token
    def grade_url():
        """
        Fetch, store and grade one listing

        Body (JSON):
            url: eBay or Craigslist listing URL (required)
            triggered_by: Actor label stored on the run (optional)
        """
        body = request.get_json(silent=True) or {}
        listing_url = body.get('url') if isinstance(body, dict) else None
        if not listing_url or not isinstance(listing_url, str):
            return jsonify({"error": 'Missing or invalid "url" field'}), 400

        try:
            result = service.grade_url(listing_url, body.get('triggered_by') or None)
        except UnsupportedSourceError as e:
            return jsonify({"error": str(e)}), 400
        except (SourceError, GraderError, InvalidGradeResponse) as e:
            logger.error(f"[grade-url] Upstream error: {e}")
            return jsonify({"error": str(e)}), 502
        except Exception as e:
            logger.error(f"[grade-url] Error: {e}")
            return jsonify({"error": str(e)}), 500

        return jsonify(result.model_dump()), 200

    @app.route('/stats', methods=['GET'])
    @require_token
    def stats():
        try:
            return jsonify(service.stats()), 200
        except Exception as e:
            logger.error(f"[stats] Error: {e}")
            return jsonify({"error": str(e)}), 500

    @app.route('/system-prompt', methods=['GET'])
    @require_token
    def system_prompt():
        try:
            return jsonify(service.system_prompt()), 200
        except Exception as e:
            logger.error(f"[system-prompt] Error: {e}")
            return jsonify({"error": str(e)}), 500

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method not allowed"}), 405
