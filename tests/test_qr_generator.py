import io

import pytest
from PIL import Image

from eventportal.modules.database_manager import generate_id
from eventportal.modules.identity_codec import IdentityCodec
from eventportal.modules.qr_generator import QRGenerator, RenderFailure


@pytest.fixture
def generator():
    return QRGenerator(IdentityCodec('testing-qr-key'))


def test_render_qr_honours_size(generator):
    img = generator.render_qr('eventportal://attendance/abc', size=240)
    assert img.size == (240, 240)


def test_render_qr_defaults(generator):
    assert generator.render_qr('payload').size == (200, 200)


@pytest.mark.parametrize('kwargs', [
    {'payload': ''},
    {'payload': 'x', 'size': 0},
    {'payload': 'x', 'margin': -1},
    {'payload': 'x', 'error_correction': 'Z'},
])
def test_render_qr_rejects_bad_input(generator, kwargs):
    with pytest.raises(RenderFailure):
        generator.render_qr(**kwargs)


def test_participant_qr_embeds_token(generator):
    participant_id = generate_id()
    qr = generator.generate_participant_qr(participant_id)

    assert generator.codec.decode(qr['qr_data']) == participant_id
    assert qr['filename'] == f'qr_{participant_id}.png'
    assert Image.open(io.BytesIO(qr['png'])).format == 'PNG'


def test_data_url(generator):
    url = generator.to_data_url(generator.render_qr('payload'))
    assert url.startswith('data:image/png;base64,')


def test_flyer_is_non_empty(generator):
    event = {
        'name': 'Annual Climate Summit',
        'theme': 'Weather for everyone',
        'start_date': '2025-03-05',
        'end_date': '2025-03-07',
        'location': 'Main Hall',
    }
    flyer = generator.render_flyer('Alice Johnson', event, generator.codec.encode(generate_id()))

    assert flyer.size == (900, 1200)
    assert flyer.convert('L').getextrema() != (255, 255)


def test_flyer_requires_name(generator):
    with pytest.raises(RenderFailure):
        generator.render_flyer('  ', {'name': 'Summit'})


def test_flyer_uses_background(tmp_path):
    background = tmp_path / 'bg.png'
    Image.new('RGB', (100, 100), (10, 20, 30)).save(background)
    generator = QRGenerator(settings={'flyer_background': str(background)})

    flyer = generator.render_flyer('Alice Johnson', {'name': 'Summit'})
    assert flyer.getpixel((5, 5)) == (10, 20, 30)
