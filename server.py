#!/usr/bin/env python3
"""
RPG task system - HTTP server.
Exposes the per-user game-state document over a small JSON CRUD API.

The storage handle is injected: :func:`create_app` takes a SQLAlchemy session
factory, and every request opens its own session from it.  ``main()`` builds
the real engine from ``DATABASE_URL`` and refuses to start when the database
is unreachable.
"""

import argparse
import logging
import os
import sys
import time
from typing import Optional

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, g, jsonify, request
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

import database
from app.exceptions import InvalidInput, StateError
from app.services import GameStateService
from openapi_spec import build_spec

SERVICE_NAME = 'rpg-task-system'
DEFAULT_PORT = 3000

logger = logging.getLogger('rpg.server')

api = Blueprint('api', __name__)


def setup_logging(level: str = 'INFO') -> logging.Logger:
    """Configure the root ``rpg`` logger.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Returns:
        Configured logger instance.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger('rpg')
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('[%(levelname)s] %(name)s: %(message)s'))
        root.addHandler(handler)
    root.setLevel(numeric)
    return root


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def get_session():
    """Return the SQLAlchemy session bound to the current request."""
    if 'db' not in g:
        g.db = current_app.extensions['rpg_session_factory']()
    return g.db


def get_service() -> GameStateService:
    return current_app.extensions['rpg_state_service']


def _json_body() -> dict:
    """Return the JSON object body of the request ({} when empty)."""
    if not request.get_data():
        return {}
    body = request.get_json(silent=True)
    if body is None:
        raise InvalidInput('Request body must be valid JSON')
    if not isinstance(body, dict):
        raise InvalidInput('Request body must be a JSON object')
    return body


def _user_id(source) -> str:
    user_id = source.get('user_id')
    if user_id is None or user_id == '':
        return database.DEFAULT_USER_ID
    user_id = str(user_id)
    if len(user_id) > database.MAX_USER_ID_LENGTH:
        raise InvalidInput(f"'user_id' is longer than {database.MAX_USER_ID_LENGTH} characters")
    return user_id


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@api.route('/')
def index():
    """Service banner."""
    return jsonify({
        'status': 'ok',
        'service': SERVICE_NAME,
        'message': 'Backend running. Use /api/* endpoints.',
    })


@api.route('/api/health')
def health():
    return jsonify({'status': 'ok', 'time': int(time.time() * 1000)})


@api.route('/api/state', methods=['GET'])
def get_state():
    """Get the game state of ``?user_id=`` (default ``default``)."""
    document = get_service().get_state(get_session(), _user_id(request.args))
    return jsonify(document)


@api.route('/api/state', methods=['POST'])
def save_state():
    """Replace the whole game state of the body's ``user_id``."""
    body = _json_body()
    get_service().save_state(get_session(), _user_id(body), body)
    return jsonify({'success': True, 'message': 'State saved'})


@api.route('/api/stats/<stat_name>', methods=['PATCH'])
def patch_stat(stat_name):
    """Set (``value``) or adjust (``delta``) a single stat."""
    body = _json_body()
    stats = get_service().patch_stat(
        get_session(), _user_id(body), stat_name,
        value=body.get('value'), delta=body.get('delta'),
    )
    return jsonify({'success': True, 'stats': stats})


@api.route('/api/custom-tasks', methods=['GET'])
def list_custom_tasks():
    custom = get_service().list_custom_tasks(get_session(), _user_id(request.args))
    return jsonify(custom)


@api.route('/api/custom-tasks', methods=['POST'])
def add_custom_task():
    body = _json_body()
    task, custom = get_service().add_custom_task(get_session(), _user_id(body), body.get('task'))
    return jsonify({'success': True, 'task': task, 'customTasks': custom})


@api.route('/api/custom-tasks/<task_id>', methods=['PATCH'])
def update_custom_task(task_id):
    body = _json_body()
    custom = get_service().update_custom_task(
        get_session(), _user_id(body), task_id, body.get('updates'),
    )
    return jsonify({'success': True, 'customTasks': custom})


@api.route('/api/custom-tasks/<task_id>', methods=['DELETE'])
def delete_custom_task(task_id):
    custom = get_service().delete_custom_task(get_session(), _user_id(request.args), task_id)
    return jsonify({'success': True, 'customTasks': custom})


# ---------------------------------------------------------------------------
# API Documentation — OpenAPI 3.0 + Swagger UI
# ---------------------------------------------------------------------------

@api.route('/api/openapi.json')
def openapi_spec():
    """Serve the OpenAPI 3.0 specification as JSON."""
    return jsonify(build_spec(server_url=request.url_root.rstrip('/')))


@api.route('/api/docs')
def swagger_ui():
    """Serve an interactive Swagger UI for the REST API."""
    openapi_url = '/api/openapi.json'
    html = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>RPG Task System API Documentation</title>
  <link rel="stylesheet"
        href="https://unpkg.com/swagger-ui-dist@5/swagger-ui.css">
</head>
<body>
  <div id="swagger-ui"></div>
  <script src="https://unpkg.com/swagger-ui-dist@5/swagger-ui-bundle.js"></script>
  <script>
    SwaggerUIBundle({{
      url: "{openapi_url}",
      dom_id: "#swagger-ui",
      presets: [SwaggerUIBundle.presets.apis, SwaggerUIBundle.SwaggerUIStandalonePreset],
      layout: "BaseLayout",
      deepLinking: true,
    }});
  </script>
</body>
</html>"""
    return html, 200, {'Content-Type': 'text/html; charset=utf-8'}


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(session_factory, service: Optional[GameStateService] = None) -> Flask:
    """Build the Flask application.

    Args:
        session_factory: Callable returning a new SQLAlchemy session, usually
            from :func:`database.create_session_factory`.
        service: Optional pre-built service (defaults to one over ``database``).
    """
    app = Flask(__name__)
    app.json.sort_keys = False
    CORS(app)

    app.extensions['rpg_session_factory'] = session_factory
    app.extensions['rpg_state_service'] = service or GameStateService(database)
    app.register_blueprint(api)

    @app.teardown_appcontext
    def close_session(_exc):
        db = g.pop('db', None)
        if db is not None:
            db.close()

    @app.errorhandler(StateError)
    def handle_state_error(e):
        if e.status_code >= 500:
            logger.error(f"{e.message}: {e.details}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception(f"Unhandled error: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    return app


def bootstrap_database(engine) -> None:
    """Check connectivity, create tables and seed the default document."""
    database.check_connection(engine)
    database.init_db(engine)
    db = database.create_session_factory(engine)()
    try:
        database.ensure_default_state(db)
    finally:
        db.close()


def main(argv=None) -> int:
    """Main entry point for the HTTP server."""
    load_dotenv()
    parser = argparse.ArgumentParser(description='RPG task system API server')
    parser.add_argument('--host', default=os.getenv('HOST', '0.0.0.0'), help='Bind address')
    parser.add_argument('--port', type=int, default=int(os.getenv('PORT', DEFAULT_PORT)),
                        help='HTTP port')
    parser.add_argument('--database-url', default=os.getenv('DATABASE_URL', database.DATABASE_URL),
                        help='SQLAlchemy database URL')
    parser.add_argument('--log-level', default=os.getenv('RPG_LOG_LEVEL', 'INFO'),
                        help='Log level (DEBUG, INFO, WARNING, ERROR)')
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    engine = database.create_db_engine(args.database_url)
    try:
        bootstrap_database(engine)
    except (SQLAlchemyError, StateError) as e:
        logger.error(f"Database connection failed: {e}")
        engine.dispose()
        return 1
    logger.info("Connected to database")

    app = create_app(database.create_session_factory(engine))
    logger.info(f"Server running on port {args.port}")
    try:
        app.run(host=args.host, port=args.port)
    finally:
        engine.dispose()
        logger.info("Database connection closed")
    return 0


if __name__ == '__main__':
    sys.exit(main())
