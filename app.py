# app.py

import logging
import os
from http import HTTPStatus

from dotenv import load_dotenv
from flask import Flask, jsonify

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.monitoring import (  # noqa: E402
    DevelopmentMonitoringConfig,
    ProductionMonitoringConfig,
    TestingMonitoringConfig,
)
from config.validation import validate_and_exit  # noqa: E402
from fundops_app.importer import init_importer  # noqa: E402
from fundops_app.utils.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Validate environment variables (only in production)
flask_env = os.environ.get("FLASK_ENV", "development")
if flask_env == "production":
    validate_and_exit(flask_env)

# Load configuration based on the environment
if flask_env == "production":
    app.config.from_object(ProductionConfig)
    app.config.from_object(ProductionMonitoringConfig)
elif os.environ.get("FLASK_ENV") == "testing":
    app.config.from_object(TestingConfig)
    app.config.from_object(TestingMonitoringConfig)
else:
    app.config.from_object(DevelopmentConfig)
    app.config.from_object(DevelopmentMonitoringConfig)

# Initialize logging before the importer so its startup messages are captured
setup_logging(app)
init_importer(app)


# Register error handlers
@app.errorhandler(404)
def not_found_error(error):
    return jsonify({"error": "Not found."}), HTTPStatus.NOT_FOUND


@app.errorhandler(413)
def upload_too_large(error):
    limit = app.config.get("IMPORTER_MAX_UPLOAD_MB")
    return jsonify({"error": f"Upload exceeds the {limit} MB limit."}), HTTPStatus.REQUEST_ENTITY_TOO_LARGE


@app.errorhandler(500)
def internal_error(error):
    logger.error("Unhandled error: %s", error)
    return jsonify({"error": "Internal server error."}), HTTPStatus.INTERNAL_SERVER_ERROR


if __name__ == "__main__":
    # Use production-ready server configuration
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
