import pytest

from parseql.errors import ValidationError
from parseql.execute import (
    connection_results_array,
    cursor_to_offset,
    global_id,
    input_to_dict,
    offset_to_cursor,
    parse_id,
    where_from_query_input,
)
from parseql.types import PointerInput, StringQuery


@pytest.mark.parametrize('class_name,object_id', [
    ('Post', 'abc123XYZ0'),
    ('_User', 'u1'),
    ('Post', 'id:with:colons'),
    ('Unicodé', 'ünï'),
])
def test_global_id_round_trip(class_name, object_id):
    gid = global_id(class_name, object_id)
    assert gid != object_id
    assert parse_id(gid) == (class_name, object_id)


def test_global_id_is_deterministic():
    assert global_id('Post', 'a') == global_id('Post', 'a')
    assert global_id('Post', 'a') != global_id('Author', 'a')


@pytest.mark.parametrize('bad', ['not-base64!!', 'UG9zdA=='])
def test_parse_id_rejects_garbage(bad):
    with pytest.raises(ValidationError):
        parse_id(bad)


def test_cursor_round_trip():
    assert cursor_to_offset(offset_to_cursor(7)) == 7
    assert cursor_to_offset(None) is None
    with pytest.raises(ValidationError):
        cursor_to_offset(global_id('Post', 'x'))


def test_page_size_is_capped():
    window = connection_results_array(list(range(500)), {'first': 500}, 100)
    assert len(window['nodes']) == 100
    assert window['page_info']['has_next_page'] is True
    assert window['page_info']['has_previous_page'] is False


def test_default_page_is_max_size():
    window = connection_results_array(list(range(150)), {}, 100)
    assert window['nodes'] == list(range(100))


def test_first_after_window():
    results = list(range(10))
    first_page = connection_results_array(results, {'first': 3}, 100)
    assert first_page['nodes'] == [0, 1, 2]
    end_cursor = first_page['page_info']['end_cursor']
    second_page = connection_results_array(results, {'first': 3, 'after': end_cursor}, 100)
    assert second_page['nodes'] == [3, 4, 5]
    assert [e['node'] for e in second_page['edges']] == [3, 4, 5]
    assert second_page['page_info']['start_cursor'] == offset_to_cursor(3)


def test_last_before_window():
    results = list(range(10))
    page = connection_results_array(results, {'last': 2, 'before': offset_to_cursor(5)}, 100)
    assert page['nodes'] == [3, 4]
    assert page['page_info']['has_previous_page'] is True
    assert page['page_info']['has_next_page'] is False


def test_empty_results():
    page = connection_results_array([], {'first': 5}, 100)
    assert page['nodes'] == [] and page['edges'] == []
    assert page['page_info']['start_cursor'] is None
    assert page['page_info']['has_next_page'] is False


def test_negative_page_size_rejected():
    with pytest.raises(ValidationError):
        connection_results_array([1], {'first': -1}, 100)


def test_input_to_dict_uses_graphql_names_and_skips_unset():
    query = StringQuery(in_=['a', 'b'], starts_with='He')
    assert input_to_dict(query) == {'in': ['a', 'b'], 'startsWith': 'He'}
    assert input_to_dict(PointerInput(object_id='x1')) == {'objectId': 'x1'}


def test_where_translation(blog_schema):
    where = where_from_query_input(
        {
            'title': {'startsWith': 'He', 'ne': 'Hello'},
            'views': {'gt': 5, 'in': [1, 2]},
            'author': {'id': global_id('Author', 'a1')},
            'location': {'near': {'latitude': 1, 'longitude': 2}, 'maxDistanceInKilometers': 10},
        },
        blog_schema['Post'],
    )
    assert where['title'] == {'$regex': '^He', '$ne': 'Hello'}
    assert where['views'] == {'$gt': 5, '$in': [1, 2]}
    assert where['author'] == {'__type': 'Pointer', 'className': 'Author', 'objectId': 'a1'}
    assert where['location']['$nearSphere']['__type'] == 'GeoPoint'
    assert where['location']['$maxDistanceInKilometers'] == 10


def test_where_pointer_with_foreign_id_rejected(blog_schema):
    with pytest.raises(ValidationError):
        where_from_query_input({'author': {'id': global_id('Post', 'p1')}}, blog_schema['Post'])
