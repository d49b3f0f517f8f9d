import pytest

import content
from conftest import create_riddles, create_user, image_file
from errors import NotFound, ValidationFailed
from models import db, utcnow, Riddle, UserProgress
from storage import RIDDLE_IMAGES_BUCKET, storage

FIELDS = {
    'question': 'What has roots nobody sees?',
    'answer': 'mountain',
    'hint1': 'It is taller than trees.',
    'hint2': 'Up, up it goes.',
    'order_number': '4',
}


def test_create_riddle(ctx):
    riddle = content.create_riddle(dict(FIELDS, riddle_type='photo'))

    stored = db.session.get(Riddle, riddle.id)
    assert stored.order_number == 4
    assert stored.answer == 'mountain'
    assert stored.riddle_type == 'photo'
    assert stored.is_active is True
    assert stored.reference_image_url is None


def test_create_requires_all_fields(ctx):
    with pytest.raises(ValidationFailed):
        content.create_riddle(dict(FIELDS, hint2=''))
    with pytest.raises(ValidationFailed):
        content.create_riddle(dict(FIELDS, order_number='fourth'))

    assert Riddle.query.count() == 0


def test_order_number_must_be_unique(ctx):
    create_riddles(order_numbers=(4,), answers=('gnome',))

    with pytest.raises(ValidationFailed):
        content.create_riddle(FIELDS)

    assert Riddle.query.count() == 1


def test_update_riddle(ctx):
    first, second = create_riddles(answers=('gnome', 'troll'))

    content.update_riddle(second.id, {'answer': 'ogre', 'is_active': 'false'})

    stored = db.session.get(Riddle, second.id)
    assert stored.answer == 'ogre'
    assert stored.is_active is False
    assert stored.order_number == 2
    with pytest.raises(ValidationFailed):
        content.update_riddle(second.id, {'order_number': str(first.order_number)})


def test_update_keeps_own_order_number(ctx):
    riddle = create_riddles(answers=('gnome',))[0]

    content.update_riddle(riddle.id, {'order_number': '1', 'question': 'Changed?'})

    assert db.session.get(Riddle, riddle.id).question == 'Changed?'


def test_reference_image_goes_to_public_bucket(ctx):
    riddle = content.create_riddle(FIELDS, image=image_file('garden.png'))

    url = riddle.reference_image_url
    assert url.startswith('/storage/public/riddle-images/riddles/')
    path = url[len('/storage/public/riddle-images/'):]
    assert storage.exists(RIDDLE_IMAGES_BUCKET, path)

    content.update_riddle(riddle.id, {}, image=image_file('garden2.png'))

    assert not storage.exists(RIDDLE_IMAGES_BUCKET, path)
    assert db.session.get(Riddle, riddle.id).reference_image_url != url


def test_delete_riddle_removes_image(ctx):
    riddle = content.create_riddle(FIELDS, image=image_file('garden.png'))
    path = riddle.reference_image_url[len('/storage/public/riddle-images/'):]

    content.delete_riddle(riddle.id)

    assert Riddle.query.count() == 0
    assert not storage.exists(RIDDLE_IMAGES_BUCKET, path)
    with pytest.raises(NotFound):
        content.delete_riddle(riddle.id)


def test_list_riddles_in_order(ctx):
    create_riddles(answers=('c', 'a', 'b'), order_numbers=(3, 1, 2))

    assert [r.answer for r in content.list_riddles()] == ['a', 'b', 'c']


def test_parse_bool():
    assert content.parse_bool('true') is True
    assert content.parse_bool('On') is True
    assert content.parse_bool('0') is False
    assert content.parse_bool(None, default=True) is True


def test_riddle_in_use_cannot_be_deleted(ctx):
    riddle = create_riddles(answers=('gnome',))[0]
    user = create_user('p@example.com')
    db.session.add(UserProgress(user_id=user.id, current_riddle_id=riddle.id, start_time=utcnow()))
    db.session.commit()

    with pytest.raises(ValidationFailed):
        content.delete_riddle(riddle.id)

    assert Riddle.query.count() == 1
