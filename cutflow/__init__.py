from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS

db = SQLAlchemy()
migrate = Migrate()

def create_app(testing: bool=False, config_object=None):
    from .config import Config, TestingConfig

    app = Flask(__name__)
    app.config.from_object(config_object or (TestingConfig if testing else Config))
    app.logger.setLevel(app.config["LOG_LEVEL"])

    CORS(app)
    db.init_app(app)
    migrate.init_app(app, db)

    from . import models  # noqa: F401
    from .routes import bp as main_bp
    from .api import api as api_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp, url_prefix="/api")

    return app
