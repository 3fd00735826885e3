from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from quickfire.main import main
    flask_app.register_blueprint(main)

    from quickfire.api.quiz import quiz
    from quickfire.api.powerups import powerups
    from quickfire.api.leaderboard import leaderboard
    from quickfire.api.admin import admin
    flask_app.register_blueprint(quiz, url_prefix='/api/quiz')
    flask_app.register_blueprint(powerups, url_prefix='/api/powerups')
    flask_app.register_blueprint(leaderboard, url_prefix='/api/leaderboard')
    flask_app.register_blueprint(admin, url_prefix='/api/admin')

    from quickfire.services.quiz.errors import QuizError

    @flask_app.errorhandler(QuizError)
    def handle_quiz_error(exc):
        return jsonify(exc.to_dict()), exc.status

    from quickfire.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from quickfire.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'unauthorized'}), 401

    _register_commands(flask_app)

    if not flask_app.config.get('TESTING'):
        from quickfire.services.quiz.scheduler import start_maintenance_loop
        start_maintenance_loop(flask_app)

    return flask_app


def _register_commands(flask_app):
    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from quickfire.models import User
        from quickfire.services.quiz.powerups import seed_catalog
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            seed_catalog()

            # Seed users
            users = [('testuser1', 'US'), ('testuser2', 'GB'), ('testuser3', 'US')]
            for name, country in users:
                user = User(username=name, country=country)
                user.set_password('password')
                db.session.add(user)

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('seed-powerups')
    def seed_powerups_command():
        """Installs or refreshes the default powerup catalog."""
        from quickfire.services.quiz.powerups import seed_catalog
        with flask_app.app_context():
            created = seed_catalog()
            print(f'Powerup catalog seeded ({created} new).')

    @click.command('sweep-stale')
    def sweep_stale_command():
        """Abandons stale sessions and completes expired ones."""
        from quickfire.services.quiz.sessions import sweep_stale_sessions
        with flask_app.app_context():
            closed = sweep_stale_sessions()
            print(f'Closed {len(closed)} session(s).')

    @click.command('leaderboard-rebuild')
    @click.option('--all', 'rebuild_all', is_flag=True, help='Rebuild every live snapshot, not only dirty ones.')
    def leaderboard_rebuild_command(rebuild_all):
        """Rebuilds live leaderboard snapshots."""
        from quickfire.services.leaderboard.aggregator import rebuild_dirty_snapshots
        with flask_app.app_context():
            rebuilt = rebuild_dirty_snapshots(include_clean=rebuild_all)
            print(f'Rebuilt {rebuilt} snapshot(s).')

    @click.command('period-rollover')
    def period_rollover_command():
        """Archives closed leaderboard windows and opens fresh ones."""
        from quickfire.services.leaderboard.archive import rollover
        with flask_app.app_context():
            report = rollover()
            print(f"Archived {report['archived']} window(s), deferred {report['deferred']}, failed {report['failed']}.")

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(seed_powerups_command)
    flask_app.cli.add_command(sweep_stale_command)
    flask_app.cli.add_command(leaderboard_rebuild_command)
    flask_app.cli.add_command(period_rollover_command)
