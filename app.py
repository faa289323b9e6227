import os
import logging
from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate

from Analysis import analysis_bp
from Authentication import access_gate, auth_bp
from backend import BackendClient
from config import Config
from models import db
from Quiz import quiz_bp
from Streak import streak_bp

# Configure logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

migrate = Migrate()


def create_app(config_class=Config):
    # Missing backend settings are fatal
    config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)
    CORS(app, resources={r"/*": {
        "origins": app.config["FRONTEND_URL"],
        "methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": ["Content-Type"],
        "supports_credentials": True
    }})
    db.init_app(app)
    migrate.init_app(app, db)

    app.extensions["backend"] = BackendClient.from_config(app.config, db.session)

    # Every request passes the access gate before reaching a page
    app.before_request(access_gate)
    for blueprint in (auth_bp, quiz_bp, analysis_bp, streak_bp):
        app.register_blueprint(blueprint)

    if app.config.get("CREATE_TABLES"):
        with app.app_context():
            db.create_all()

    logger.info("Application created")
    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 5000)))
