from flask import Flask, Blueprint, current_app, request, jsonify, send_file
from flask.cli import with_appcontext
from models import db, utcnow, Admin, Riddle, Submission, User
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from flask_socketio import SocketIO, emit
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.security import generate_password_hash
import click
import os
import logging

import auth
import content
import game
import leaderboard
import moderation
from auth import admin_required
from config import Config
from content import parse_bool
from errors import HuntError, BackendUnavailable, NotAuthenticated, NotAuthorized, NotFound, UploadFailed, ValidationFailed
from storage import PUBLIC_BUCKETS, storage

logger = logging.getLogger(__name__)

login_manager = LoginManager()
socketio = SocketIO()
bp = Blueprint('hunt', __name__)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    logger.warning(f"Unauthenticated request to {request.path} from IP: {request.remote_addr}")
    error = NotAuthenticated()
    return jsonify(error.to_dict()), error.status_code


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(level=app.config['LOG_LEVEL'])

    if app.config['HINT1_DELAY_SECONDS'] > app.config['HINT2_DELAY_SECONDS']:
        raise ValueError('HINT1_DELAY_SECONDS must not be greater than HINT2_DELAY_SECONDS')
    app.config['COUNTDOWN_TARGET_AT'] = game.parse_countdown_target(app.config.get('COUNTDOWN_TARGET'))

    db.init_app(app)
    login_manager.init_app(app)
    storage.init_app(app)
    socketio.init_app(app,
                      cors_allowed_origins="*",
                      logger=app.debug,
                      engineio_logger=app.debug)

    app.register_blueprint(bp)
    app.cli.add_command(init_db_command)
    app.cli.add_command(seed_riddles_command)
    app.cli.add_command(grant_admin_command)
    app.cli.add_command(set_score_command)

    initialize_database(app)
    return app


# ==================== DATABASE SETUP ====================

SAMPLE_RIDDLES = [
    {
        'order_number': 1,
        'question': 'I wear a red cap and guard the garden, yet I never move. What am I?',
        'answer': 'gnome',
        'hint1': 'You will find me among the flowers.',
        'hint2': 'I am usually made of clay and have a white beard.',
        'riddle_type': 'photo',
    },
    {
        'order_number': 2,
        'question': 'I live under the bridge and demand a toll. What am I?',
        'answer': 'troll',
        'hint1': 'Three goats once met me.',
        'hint2': 'Sunlight turns me to stone.',
        'riddle_type': 'photo',
    },
    {
        'order_number': 3,
        'question': 'Mrglglgl! I lurk by the shore in a famous game. What am I?',
        'answer': 'murloc',
        'hint1': 'I am green and travel in packs.',
        'hint2': 'Azeroth is my home.',
        'riddle_type': 'photo',
    },
]


def seed_admin(email, password):
    """Create a confirmed administrator account unless the email exists."""
    email = email.strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user:
        user = User(
            name='Administrator',
            email=email,
            password=generate_password_hash(password),
            confirmed_at=utcnow(),
        )
        db.session.add(user)
        db.session.commit()
        logger.info(f"Admin user created: {email}")
    auth.grant_admin(user)
    return user


def add_sample_riddles():
    added = 0
    for data in SAMPLE_RIDDLES:
        if not Riddle.query.filter_by(order_number=data['order_number']).first():
            db.session.add(Riddle(**data))
            added += 1
    db.session.commit()
    logger.info(f"Added {added} sample riddles")
    return added


def initialize_database(app):
    with app.app_context():
        db.create_all()
        game.get_settings()
        if app.config.get('ADMIN_EMAIL') and app.config.get('ADMIN_PASSWORD'):
            seed_admin(app.config['ADMIN_EMAIL'], app.config['ADMIN_PASSWORD'])


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create tables and the settings row."""
    db.create_all()
    game.get_settings()
    click.echo('Database tables created.')


@click.command('seed-riddles')
@with_appcontext
def seed_riddles_command():
    """Add the sample riddle sequence."""
    added = add_sample_riddles()
    click.echo(f'Added {added} riddles.')


@click.command('grant-admin')
@with_appcontext
@click.argument('email')
def grant_admin_command(email):
    """Give an existing user administrator access."""
    user = User.query.filter_by(email=email.strip().lower()).first()
    if user is None:
        raise click.ClickException(f'No user with email {email}')
    if auth.grant_admin(user):
        click.echo(f'{email} is now an administrator.')
    else:
        click.echo(f'{email} is already an administrator.')


@click.command('set-score')
@with_appcontext
@click.argument('email')
@click.argument('score', type=int)
def set_score_command(email, score):
    """Set the leaderboard score of a user."""
    user = User.query.filter_by(email=email.strip().lower()).first()
    if user is None:
        raise click.ClickException(f'No user with email {email}')
    leaderboard.set_score(user, score)
    click.echo(f'Score for {email} set to {score}.')


# ==================== ERROR HANDLING ====================

@bp.app_errorhandler(HuntError)
def handle_hunt_error(error):
    return jsonify(error.to_dict()), error.status_code


@bp.app_errorhandler(SQLAlchemyError)
def handle_database_error(error):
    db.session.rollback()
    logger.exception(f"Database error on {request.path}")
    failure = BackendUnavailable()
    return jsonify(failure.to_dict()), failure.status_code


@bp.app_errorhandler(RequestEntityTooLarge)
def handle_too_large(error):
    failure = UploadFailed('Image is too large.')
    return jsonify(failure.to_dict()), 413


# ==================== MAIN ROUTES ====================

@bp.route('/')
def index():
    return jsonify({'name': 'Riddle Hunt', 'riddles_visible': game.riddles_visible()})


@bp.route('/register', methods=['POST'])
def register():
    user = auth.register(
        request.form.get('name'),
        request.form.get('email'),
        request.form.get('password'),
        is_team=parse_bool(request.form.get('is_team')),
        team_name=request.form.get('team_name'),
    )
    message = 'Registration successful!'
    if user.confirmed_at is None:
        message += ' Please check your email to verify your account.'
    return jsonify({'success': True, 'message': message, 'user_id': user.id}), 201


@bp.route('/confirm/<token>')
def confirm(token):
    user = auth.confirm_email(token)
    return jsonify({'success': True, 'message': f'Email {user.email} confirmed. You can now log in.'})


@bp.route('/login', methods=['POST'])
def login():
    user = auth.authenticate(request.form.get('email'), request.form.get('password'))
    login_user(user)
    return jsonify({
        'success': True,
        'message': f'Welcome, {auth.resolve_display_name(user).name}!',
        'is_admin': auth.is_admin(user),
    })


@bp.route('/admin/login', methods=['POST'])
def admin_login():
    user = auth.authenticate(request.form.get('email'), request.form.get('password'))
    if not auth.is_admin(user):
        logger.warning(f"Non-admin user '{user.email}' attempted admin login from IP: {request.remote_addr}")
        raise NotAuthorized('Invalid credentials or not authorized as admin')
    login_user(user)
    return jsonify({'success': True, 'message': 'Logged in as administrator', 'is_admin': True})


@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True, 'message': 'Logged out'})


@bp.route('/api/session')
def session_info():
    identity = auth.current_identity()
    if identity is None:
        return jsonify({'authenticated': False})
    display = auth.resolve_display_name(current_user)
    return jsonify({
        'authenticated': True,
        'user_id': identity.user_id,
        'name': display.name,
        'is_team': display.is_team,
        'is_admin': identity.is_admin,
    })


@bp.route('/api/riddle')
@login_required
def current_riddle():
    view = game.current_riddle(current_user, admin=auth.is_admin(current_user))
    payload = view.to_dict()
    if view.status == game.HIDDEN:
        payload['message'] = 'Riddles are currently not available. Please check back later.'
    elif view.status == game.COMPLETE:
        payload['message'] = 'Congratulations! You have solved every riddle.'
    return jsonify(payload)


@bp.route('/api/riddle/<int:riddle_id>/submit', methods=['POST'])
@login_required
def submit_answer(riddle_id):
    result = game.submit_answer(
        current_user,
        riddle_id,
        request.form.get('answer', ''),
        image=request.files.get('image'),
        admin=auth.is_admin(current_user),
    )

    socketio.emit('riddle_solved', {
        'riddle_id': riddle_id,
        'solver': auth.resolve_display_name(current_user).name,
        'completed': result.completed,
    })

    if result.completed:
        message = 'Correct answer! You have solved every riddle.'
    else:
        message = 'Correct answer! Moving to the next riddle.'
    return jsonify({
        'success': True,
        'message': message,
        'submission_id': result.submission.id,
        'completed': result.completed,
        'next_riddle_id': result.next_riddle.id if result.next_riddle else None,
    })


@bp.route('/api/leaderboard')
def api_leaderboard():
    return jsonify(leaderboard.get_leaderboard_data())


@bp.route('/api/settings')
def api_settings():
    return jsonify({'riddles_visible': game.riddles_visible()})


@bp.route('/api/countdown')
def api_countdown():
    target = current_app.config['COUNTDOWN_TARGET_AT']
    remaining = game.time_left(target)
    remaining['target'] = target.isoformat() if target else None
    return jsonify(remaining)


# ==================== STORAGE ROUTES ====================

@bp.route('/storage/public/<bucket>/<path:path>')
def public_object(bucket, path):
    if bucket not in PUBLIC_BUCKETS:
        raise NotFound('Object not found.')
    return send_file(storage.locate(bucket, path))


@bp.route('/storage/signed/<token>')
def signed_object(token):
    bucket, path = storage.resolve_signed_token(token)
    return send_file(storage.locate(bucket, path))


# ==================== ADMIN ROUTES ====================

@bp.route('/admin')
@login_required
@admin_required
def admin_dashboard():
    """Overview statistics"""
    return jsonify({
        'total_users': User.query.count(),
        'total_admins': Admin.query.count(),
        'total_riddles': Riddle.query.count(),
        'total_submissions': Submission.query.count(),
        'pending_submissions': moderation.pending_count(),
        'riddles_visible': game.riddles_visible(),
    })


@bp.route('/admin/settings/visibility', methods=['POST'])
@login_required
@admin_required
def toggle_visibility():
    """Show or hide riddles; toggles when no value is given"""
    if 'visible' in request.form:
        visible = parse_bool(request.form['visible'])
    else:
        visible = not game.riddles_visible()

    visible = game.set_riddles_visible(visible)
    socketio.emit('riddles_visibility', {'riddles_visible': visible})

    message = 'Riddles are visible to users' if visible else 'Riddles are hidden from users'
    return jsonify({'success': True, 'message': message, 'riddles_visible': visible})


@bp.route('/admin/riddles', methods=['GET'])
@login_required
@admin_required
def admin_riddles():
    return jsonify([riddle.to_dict(include_answer=True) for riddle in content.list_riddles()])


@bp.route('/admin/riddles', methods=['POST'])
@login_required
@admin_required
def create_riddle():
    riddle = content.create_riddle(request.form, image=request.files.get('image'))
    return jsonify({
        'success': True,
        'message': 'Riddle added successfully!',
        'riddle': riddle.to_dict(include_answer=True),
    }), 201


@bp.route('/admin/riddles/<int:riddle_id>', methods=['POST'])
@login_required
@admin_required
def update_riddle(riddle_id):
    riddle = content.update_riddle(riddle_id, request.form, image=request.files.get('image'))
    return jsonify({
        'success': True,
        'message': 'Riddle updated successfully!',
        'riddle': riddle.to_dict(include_answer=True),
    })


@bp.route('/admin/riddles/<int:riddle_id>/delete', methods=['POST'])
@login_required
@admin_required
def delete_riddle(riddle_id):
    content.delete_riddle(riddle_id)
    return jsonify({'success': True, 'message': 'Riddle deleted successfully!'})


@bp.route('/admin/submissions')
@login_required
@admin_required
def admin_submissions():
    """Pending submissions, newest first"""
    page = request.args.get('page', 1, type=int)
    return jsonify(moderation.pending_submissions(page))


@bp.route('/admin/submissions/<int:submission_id>/review', methods=['POST'])
@login_required
@admin_required
def review_submission(submission_id):
    if 'approved' not in request.form:
        raise ValidationFailed('approved is required.')
    approved = parse_bool(request.form['approved'])
    submission = moderation.review_submission(submission_id, approved)
    action = 'approved' if submission.is_approved else 'rejected'
    return jsonify({'success': True, 'message': f'Submission {action}', 'is_approved': submission.is_approved})


# SocketIO events
@socketio.on('connect')
def handle_connect():
    emit('leaderboard_update', {'status': 'connected'})


@socketio.on('request_leaderboard')
def handle_leaderboard_request():
    leaderboard_data = leaderboard.get_leaderboard_data()
    emit('leaderboard_data', {'leaderboard': leaderboard_data})


if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get('PORT', 5000))
    socketio.run(app, host='0.0.0.0', port=port, debug=False, allow_unsafe_werkzeug=True)
