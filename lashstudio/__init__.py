from __future__ import annotations

import atexit
from typing import Mapping

from flask import Flask
from flask_cors import CORS

from .config import Config
from .extensions import db
from .routes import register_routes
from .services import init_notifications


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)

    if isinstance(config_object, Mapping):
        app.config.from_object(Config)
        app.config.from_mapping(config_object)
    elif config_object:
        app.config.from_object(config_object)
    else:
        app.config.from_object(Config)
        app.config.from_envvar("APP_SETTINGS", silent=True)

    db.init_app(app)

    # Allow the storefront to talk to the API
    CORS(
        app,
        origins=app.config.get("CORS_ORIGINS", "*"),
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "Stripe-Signature"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    )

    dispatcher = init_notifications(app)
    atexit.register(dispatcher.shutdown, wait=False)

    register_routes(app)

    return app
