import logging

from sqlalchemy.exc import IntegrityError

from errors import NotFound, ValidationFailed
from models import db, Riddle, Submission, UserProgress
from storage import RIDDLE_IMAGES_BUCKET, build_object_path, storage

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('question', 'answer', 'hint1', 'hint2', 'order_number')
TEXT_FIELDS = ('question', 'answer', 'hint1', 'hint2')


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def list_riddles():
    return Riddle.query.order_by(Riddle.order_number.asc(), Riddle.id.asc()).all()


def get_riddle(riddle_id):
    riddle = db.session.get(Riddle, riddle_id)
    if riddle is None:
        raise NotFound('Riddle not found.')
    return riddle


def _parse_order_number(value):
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationFailed('Order number must be a whole number.')


def _check_order_number_free(order_number, riddle_id=None):
    clash = Riddle.query.filter(Riddle.order_number == order_number)
    if riddle_id is not None:
        clash = clash.filter(Riddle.id != riddle_id)
    existing = clash.first()
    if existing is not None:
        raise ValidationFailed(f'Order number {order_number} is already used by riddle {existing.id}.')


def _apply_fields(riddle, fields):
    for name in TEXT_FIELDS:
        if name in fields:
            value = str(fields.get(name) or '').strip()
            if not value:
                raise ValidationFailed(f'{name} must not be empty.')
            setattr(riddle, name, value)
    if 'order_number' in fields:
        order_number = _parse_order_number(fields.get('order_number'))
        _check_order_number_free(order_number, riddle.id)
        riddle.order_number = order_number
    if 'riddle_type' in fields:
        riddle.riddle_type = (fields.get('riddle_type') or '').strip() or None
    if 'is_active' in fields:
        riddle.is_active = parse_bool(fields.get('is_active'))


def _is_stored_image(url):
    return bool(url) and url.startswith(storage.public_url(RIDDLE_IMAGES_BUCKET, ''))


def _stored_path(url):
    return url[len(storage.public_url(RIDDLE_IMAGES_BUCKET, '')):]


def _upload_image(image):
    path = build_object_path('riddles', image.filename)
    storage.upload(RIDDLE_IMAGES_BUCKET, path, image)
    return path


def _commit(new_image_path=None):
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        if new_image_path:
            storage.remove(RIDDLE_IMAGES_BUCKET, new_image_path)
        logger.warning(f"Riddle change rejected by the database: {e}")
        raise ValidationFailed('Order number is already in use.')


def create_riddle(fields, image=None):
    missing = [name for name in REQUIRED_FIELDS if not str(fields.get(name) or '').strip()]
    if missing:
        raise ValidationFailed(f"Missing required fields: {', '.join(missing)}.")

    riddle = Riddle(is_active=parse_bool(fields.get('is_active'), default=True))
    _apply_fields(riddle, fields)

    image_path = None
    if image is not None and image.filename:
        image_path = _upload_image(image)
        riddle.reference_image_url = storage.public_url(RIDDLE_IMAGES_BUCKET, image_path)

    db.session.add(riddle)
    _commit(image_path)
    logger.info(f"Riddle {riddle.id} created at order number {riddle.order_number}")
    return riddle


def update_riddle(riddle_id, fields, image=None):
    riddle = get_riddle(riddle_id)
    _apply_fields(riddle, fields)

    old_url = riddle.reference_image_url
    image_path = None
    if image is not None and image.filename:
        image_path = _upload_image(image)
        riddle.reference_image_url = storage.public_url(RIDDLE_IMAGES_BUCKET, image_path)

    _commit(image_path)
    if image_path and _is_stored_image(old_url):
        storage.remove(RIDDLE_IMAGES_BUCKET, _stored_path(old_url))
    logger.info(f"Riddle {riddle.id} updated")
    return riddle


def delete_riddle(riddle_id):
    riddle = get_riddle(riddle_id)
    in_use = (
        UserProgress.query.filter_by(current_riddle_id=riddle.id).first() is not None
        or Submission.query.filter_by(riddle_id=riddle.id).first() is not None
    )
    if in_use:
        raise ValidationFailed('Riddle is still referenced by player progress or submissions.')

    image_url = riddle.reference_image_url
    db.session.delete(riddle)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationFailed('Riddle is still referenced by player progress or submissions.')

    if _is_stored_image(image_url):
        storage.remove(RIDDLE_IMAGES_BUCKET, _stored_path(image_url))
    logger.info(f"Riddle {riddle_id} deleted")
