"""Registration, sign-in and caller identity."""
import logging
from dataclasses import dataclass
from functools import wraps

from flask import current_app, request
from flask_login import current_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from errors import NotAuthenticated, NotAuthorized, NotFound, ValidationFailed
from models import db, utcnow, Admin, Team, User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class Individual:
    name: str
    is_team = False


@dataclass(frozen=True)
class TeamName:
    name: str
    is_team = True


def resolve_display_name(user):
    """Individual or TeamName for ``user``; team users show their team's name."""
    if user is None:
        return Individual('Unknown')
    if user.is_team:
        team = user.team or Team.query.filter_by(user_id=user.id).first()
        return TeamName(team.name if team else user.name)
    return Individual(user.name)


@dataclass(frozen=True)
class Identity:
    user_id: int
    is_admin: bool


def is_admin(user):
    if user is None or not getattr(user, 'is_authenticated', False):
        return False
    return is_admin_id(user.id)


def current_identity():
    """Resolve the caller of the current request, or None when anonymous."""
    if not current_user.is_authenticated:
        return None
    return Identity(user_id=current_user.id, is_admin=is_admin(current_user))


def _confirmation_serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt='email-confirm')


def make_confirmation_token(user):
    return _confirmation_serializer().dumps(user.email)


def register(name, email, password, is_team=False, team_name=None):
    name = (name or '').strip()
    team_name = (team_name or '').strip()
    email = (email or '').strip().lower()
    if is_team and not team_name:
        raise ValidationFailed('Team name is required.')
    # teams may register under the team name alone
    name = name or (team_name if is_team else '')
    if not name:
        raise ValidationFailed('Name is required.')
    if not email or '@' not in email:
        raise ValidationFailed('A valid email address is required.')
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')

    if User.query.filter_by(email=email).first():
        raise ValidationFailed('Email is already registered.')

    user = User(
        name=name,
        email=email,
        password=generate_password_hash(password),
        is_team=bool(is_team),
    )
    if not current_app.config['REQUIRE_EMAIL_CONFIRMATION']:
        user.confirmed_at = utcnow()
    db.session.add(user)
    try:
        db.session.flush()
        if is_team:
            db.session.add(Team(name=team_name, user_id=user.id))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationFailed('Email is already registered.')

    if user.confirmed_at is None:
        token = make_confirmation_token(user)
        logger.info(f"Confirmation link for {email}: /confirm/{token}")
    logger.info(f"Registered {'team' if is_team else 'user'} '{name}' ({email})")
    return user


def confirm_email(token):
    try:
        email = _confirmation_serializer().loads(token, max_age=current_app.config['CONFIRMATION_MAX_AGE'])
    except SignatureExpired:
        raise ValidationFailed('This confirmation link has expired.')
    except BadSignature:
        raise ValidationFailed('Invalid confirmation link.')

    user = User.query.filter_by(email=email).first()
    if user is None:
        raise NotFound('No account for this confirmation link.')
    if user.confirmed_at is None:
        user.confirmed_at = utcnow()
        db.session.commit()
        logger.info(f"Confirmed email {email}")
    return user


def authenticate(email, password):
    email = (email or '').strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password, password or ''):
        logger.warning(f"Failed login for '{email}' from IP: {request.remote_addr}")
        raise NotAuthenticated('Invalid credentials.')
    if current_app.config['REQUIRE_EMAIL_CONFIRMATION'] and user.confirmed_at is None:
        raise NotAuthenticated('Please confirm your email address before logging in.')
    return user


def grant_admin(user):
    if is_admin_id(user.id):
        return False
    db.session.add(Admin(user_id=user.id))
    db.session.commit()
    logger.info(f"Granted admin to {user.email}")
    return True


def is_admin_id(user_id):
    return db.session.query(Admin.id).filter_by(user_id=user_id).first() is not None


def admin_required(f):
    """Reject non-admins, logging each attempt and each admin access."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            logger.warning(f"Unauthorized access attempt to admin panel from IP: {request.remote_addr}")
            raise NotAuthenticated()

        if not is_admin(current_user):
            logger.warning(f"Non-admin user '{current_user.email}' attempted to access admin panel from IP: {request.remote_addr}")
            raise NotAuthorized('Admin access required.')

        logger.info(f"Admin user '{current_user.email}' accessed {request.path} from IP: {request.remote_addr}")
        return f(*args, **kwargs)
    return decorated_function
