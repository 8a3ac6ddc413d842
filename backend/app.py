from __future__ import annotations

import logging

from flask import Flask, jsonify
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException

from gradebook import config
from gradebook.config import ConfigError
from gradebook.db import get_db
from gradebook.routes import BLUEPRINTS
from gradebook.utils.http import handle_config_error, json_error

try:
    _LOG_LEVEL = config.get_log_level()
except ConfigError:
    _LOG_LEVEL = logging.INFO
logging.basicConfig(
    level=_LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = Flask(__name__)
app.secret_key = config.SECRET_KEY
app.config["SESSION_COOKIE_NAME"] = config.SESSION_COOKIE_NAME
app.config["SESSION_COOKIE_HTTPONLY"] = True

for blueprint in BLUEPRINTS:
    app.register_blueprint(blueprint)

logger = logging.getLogger(__name__)


@app.errorhandler(HTTPException)
def _http_error(exc: HTTPException):
    return json_error(exc.description or exc.name, exc.code or 500)


@app.errorhandler(Exception)
def _unhandled_error(exc: Exception):
    logger.exception("Unhandled error while serving request")
    return json_error("Internal Server Error", 500)


@app.get("/api/health")
def health():
    return jsonify({"ok": True})


@app.get("/api/health/db")
def health_db():
    try:
        get_db().command("ping")
        return jsonify({"ok": True, "database": "reachable"})
    except ConfigError as exc:
        return handle_config_error(exc)
    except PyMongoError:
        logger.exception("MongoDB ping failed")
        return jsonify({"ok": False, "database": "unreachable"}), 503


if __name__ == "__main__":
    app.run(debug=True)
