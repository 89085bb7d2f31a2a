import base64
import io
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from PIL import Image

from ideaboard import (build_page_links, get_paginated_items, filter_ideas, sort_ideas, make_ip_key,
                       find_banned_word, resize_image, decode_data_url, jinja_truncate_filter,
                       to_local_filter, ADMIN_SEARCH_FIELDS)
from conftest import make_image_bytes


def idea(**kwargs):
    fields = dict(title='', description='', author_name='', category='General', likes=0,
                  timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc))
    fields.update(kwargs)
    return SimpleNamespace(**fields)


def test_page_links_hidden_for_single_page():
    assert build_page_links(1, 0) == []
    assert build_page_links(1, 1) == []


def test_page_links_ellipsis_around_current():
    assert build_page_links(1, 5) == [1, 2, None, 5]
    assert build_page_links(5, 10) == [1, None, 4, 5, 6, None, 10]
    assert build_page_links(3, 5) == [1, 2, 3, 4, 5]


def test_pagination_slices_and_clamps():
    items = list(range(25))
    page_items, total_pages, page = get_paginated_items(items, 3, 10)
    assert page_items == [20, 21, 22, 23, 24]
    assert (total_pages, page) == (3, 3)
    assert get_paginated_items(items, 99, 10)[2] == 3
    assert get_paginated_items(items, 0, 10)[0] == list(range(10))
    assert get_paginated_items([], 4, 10) == ([], 0, 1)


def test_filter_by_category_and_search():
    ideas = [idea(title='Solar Park', category='Energy'),
             idea(title='Bike lanes', description='More SOLAR lights', category='Transport'),
             idea(title='Library', author_name='Nguyen Solaria', category='Education')]
    assert filter_ideas(ideas, 'all', '  solar ') == ideas
    assert filter_ideas(ideas, 'Energy', '') == [ideas[0]]
    assert filter_ideas(ideas, 'Transport', 'solar') == [ideas[1]]
    assert filter_ideas(ideas, 'all', 'solar', ADMIN_SEARCH_FIELDS) == [ideas[0], ideas[2]]


def test_sort_by_likes_keeps_creation_order_on_ties():
    a, b, c, d = idea(title='a', likes=2), idea(title='b', likes=5), idea(title='c', likes=2), idea(title='d', likes=None)
    assert [i.title for i in sort_ideas([a, b, c, d], 'likes')] == ['b', 'a', 'c', 'd']


def test_sort_newest_handles_naive_and_aware_timestamps():
    older = idea(title='older', timestamp=datetime(2024, 1, 1, 8, 0))
    newer = idea(title='newer', timestamp=datetime(2024, 1, 2, tzinfo=timezone.utc))
    assert [i.title for i in sort_ideas([older, newer], 'newest')] == ['newer', 'older']


def test_ip_key_replaces_separators():
    assert make_ip_key('203.0.113.5') == '203_0_113_5'
    assert make_ip_key('::1') == '__1'
    assert make_ip_key('') == 'unknown'


def test_banned_word_matching_is_case_insensitive():
    assert find_banned_word('This is a SCAM offer') == 'scam'
    assert find_banned_word('Build a new park') is None
    assert find_banned_word('spam here', banned_words=['spam']) == 'spam'
    assert find_banned_word('') is None


def _decode_image(data_url):
    assert data_url.startswith('data:image/jpeg;base64,')
    return Image.open(io.BytesIO(base64.b64decode(data_url.split(',', 1)[1])))


def test_resize_image_scales_down_preserving_aspect_ratio():
    image = _decode_image(resize_image(io.BytesIO(make_image_bytes((800, 600)))))
    assert image.format == 'JPEG'
    assert image.size == (400, 300)


def test_resize_image_never_scales_up():
    image = _decode_image(resize_image(io.BytesIO(make_image_bytes((120, 60)))))
    assert image.size == (120, 60)


def test_resize_image_converts_transparent_images():
    image = _decode_image(resize_image(io.BytesIO(make_image_bytes((300, 500), mode='RGBA'))))
    assert image.mode == 'RGB'
    assert image.size == (240, 400)


def test_resize_image_rejects_garbage():
    with pytest.raises(ValueError):
        resize_image(io.BytesIO(b'not an image'))


def test_decode_data_url():
    assert decode_data_url('data:text/plain;base64,aGVsbG8=') == ('text/plain', b'hello')
    with pytest.raises(ValueError):
        decode_data_url('plain text')


def test_truncate_filter_cuts_on_words():
    assert jinja_truncate_filter('short', 10) == 'short'
    assert jinja_truncate_filter('one two three four', 12) == 'one two...'
    assert jinja_truncate_filter(None) == ''


def test_to_local_filter_uses_configured_timezone():
    assert to_local_filter(datetime(2024, 1, 1, 0, 0)) == '01/01/2024 07:00'
    assert to_local_filter('2024-01-01T00:00:00Z') == '01/01/2024 07:00'
    assert to_local_filter(None) == 'N/A'


def test_resize_image_rejects_decompression_bombs(monkeypatch):
    monkeypatch.setattr(Image, 'MAX_IMAGE_PIXELS', 1000)
    with pytest.raises(ValueError):
        resize_image(io.BytesIO(make_image_bytes((800, 600))))
