from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from pingpong.config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    allowed_origins = flask_app.config.get('ALLOWED_ORIGINS') or []

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Import and register blueprints here
    from pingpong.main import main
    flask_app.register_blueprint(main)

    from pingpong.api.challenges import challenges
    flask_app.register_blueprint(challenges, url_prefix='/api/challenges')

    from pingpong.api.slack import slack
    flask_app.register_blueprint(slack, url_prefix='/slack')

    from pingpong.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Notification gateway is per-app so tests can swap it out
    from pingpong.services.challenges.runtime import build_gateway
    flask_app.extensions['pingpong.gateway'] = build_gateway(flask_app)

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the database, seeding a demo team."""
        from pingpong.models import Team
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            db.session.add(Team(id='T-DEMO', name='Demo team'))
            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('dispatch-pending')
    def dispatch_pending_command():
        """Handles every queued challenge change event."""
        from pingpong.services.challenges.runtime import build_dispatcher
        with flask_app.app_context():
            handled = build_dispatcher(flask_app).drain()
            print(f'Dispatched {handled} change event(s).')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(dispatch_pending_command)

    return flask_app
