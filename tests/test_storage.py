import pytest
from sqlalchemy import event

from parseql.auth import Auth, derive_context, master, nobody
from parseql.errors import ConflictError, InvalidSessionToken, NotFound, ValidationError
from parseql.storage.filters import compile_where
from parseql.storage.query import matches


@pytest.mark.asyncio
async def test_create_and_get(storage, blog_schema):
    res = await storage.create(nobody(), 'Post', {'title': 'hello', 'views': 3}, blog_schema)
    assert len(res['objectId']) == 10
    assert res['createdAt'].endswith('Z')
    record = await storage.get(nobody(), 'Post', res['objectId'], blog_schema)
    assert record['className'] == 'Post'
    assert record['title'] == 'hello'
    assert record['views'] == 3
    assert record['createdAt'] == record['updatedAt'] == res['createdAt']


@pytest.mark.asyncio
async def test_get_missing_raises_not_found(storage, blog_schema):
    with pytest.raises(NotFound) as exc:
        await storage.get(nobody(), 'Post', 'nope', blog_schema)
    assert exc.value.code == 101


@pytest.mark.asyncio
@pytest.mark.parametrize('data', [
    {'title': 42},
    {'views': 'many'},
    {'published': 'yes'},
    {'unknown': 1},
    {'objectId': 'forced'},
    {'author': {'__type': 'Pointer', 'className': 'Post', 'objectId': 'x'}},
    {'location': {'__type': 'GeoPoint', 'latitude': 100, 'longitude': 0}},
])
async def test_create_validates_against_schema(storage, blog_schema, data):
    with pytest.raises(ValidationError):
        await storage.create(nobody(), 'Post', data, blog_schema)


@pytest.mark.asyncio
async def test_unknown_class_rejected(storage, blog_schema):
    with pytest.raises(ValidationError) as exc:
        await storage.create(nobody(), 'Ghost', {}, blog_schema)
    assert exc.value.code == 103


@pytest.mark.asyncio
async def test_update_operations(storage, blog_schema, make_object):
    oid = await make_object('Post', title='t', views=1, tags=['a'])
    res = await storage.update(master(), 'Post', oid, {
        'views': {'__op': 'Increment', 'amount': 2},
        'tags': {'__op': 'Delete'},
        'title': None,
    }, blog_schema)
    assert res['updatedAt'].endswith('Z')
    record = await storage.get(master(), 'Post', oid, blog_schema)
    assert record['views'] == 3
    assert 'tags' not in record and 'title' not in record
    assert record['updatedAt'] >= record['createdAt']


@pytest.mark.asyncio
async def test_update_missing_raises_not_found(storage, blog_schema):
    with pytest.raises(NotFound):
        await storage.update(master(), 'Post', 'nope', {'title': 'x'}, blog_schema)


@pytest.mark.asyncio
async def test_relations_and_redirect(storage, blog_schema, make_object):
    author = await make_object('Author', name='ann')
    p1 = await make_object('Post', title='one')
    p2 = await make_object('Post', title='two')
    await make_object('Post', title='unrelated')
    pointers = [{'__type': 'Pointer', 'className': 'Post', 'objectId': p} for p in (p1, p2)]
    await storage.update(master(), 'Author', author, {'posts': {'__op': 'AddRelation', 'objects': pointers}}, blog_schema)
    where = {'$relatedTo': {'object': {'__type': 'Pointer', 'className': 'Author', 'objectId': author}, 'key': 'posts'}}
    related = await storage.find(master(), 'Author', where, blog_schema, redirect_class_name_for_key='posts')
    assert [r['objectId'] for r in related] == [p1, p2]
    assert all(r['className'] == 'Post' for r in related)

    await storage.update(master(), 'Author', author, {'posts': {'__op': 'RemoveRelation', 'objects': pointers[:1]}}, blog_schema)
    related = await storage.find(master(), 'Author', where, blog_schema, redirect_class_name_for_key='posts')
    assert [r['objectId'] for r in related] == [p2]

    await storage.delete(master(), 'Post', p2, blog_schema)
    assert await storage.find(master(), 'Author', where, blog_schema, redirect_class_name_for_key='posts') == []


@pytest.mark.asyncio
async def test_redirect_requires_relation(storage, blog_schema):
    with pytest.raises(ValidationError):
        await storage.find(master(), 'Author', {}, blog_schema, redirect_class_name_for_key='name')


@pytest.mark.asyncio
async def test_find_filters_and_order(storage, blog_schema, make_object):
    a = await make_object('Post', title='alpha', views=1)
    b = await make_object('Post', title='beta', views=10)
    c = await make_object('Post', title='gamma', views=20)
    found = await storage.find(nobody(), 'Post', {'views': {'$gte': 10}}, blog_schema)
    assert [r['objectId'] for r in found] == [b, c]
    found = await storage.find(nobody(), 'Post', {'$or': [{'title': 'alpha'}, {'views': {'$gt': 15}}]}, blog_schema)
    assert [r['objectId'] for r in found] == [a, c]
    with pytest.raises(ValidationError):
        await storage.find(nobody(), 'Post', {'views': {'$bogus': 1}}, blog_schema)


@pytest.mark.asyncio
async def test_acl_restricts_reads_and_writes(storage, blog_schema, make_object):
    oid = await make_object('Post', title='secret', ACL={'u1': {'read': True, 'write': True}})
    public = await make_object('Post', title='public')
    owner = Auth(user={'objectId': 'u1'})
    found = await storage.find(nobody(), 'Post', {}, blog_schema)
    assert [r['objectId'] for r in found] == [public]
    with pytest.raises(NotFound):
        await storage.get(nobody(), 'Post', oid, blog_schema)
    with pytest.raises(NotFound):
        await storage.update(nobody(), 'Post', oid, {'title': 'x'}, blog_schema)
    assert (await storage.get(owner, 'Post', oid, blog_schema))['title'] == 'secret'
    assert len(await storage.find(master(), 'Post', {}, blog_schema)) == 2


@pytest.mark.asyncio
async def test_user_signup_mints_session(storage, blog_schema, config):
    res = await storage.create(nobody(), '_User', {'username': 'ann', 'password': 'pw', 'email': 'a@x.io'}, blog_schema)
    assert res['sessionToken'].startswith('r:')
    session = await storage.get_session(res['sessionToken'])
    assert session['user_id'] == res['objectId']

    auth = await derive_context(storage, config=config, session_token=res['sessionToken'])
    assert auth.user_id == res['objectId']
    record = await storage.get(auth, '_User', res['objectId'], blog_schema)
    assert record['sessionToken'] == res['sessionToken']
    assert 'password' not in record
    assert not any(k.startswith('_') for k in record)


@pytest.mark.asyncio
async def test_user_requires_credentials_and_unique_names(storage, blog_schema):
    with pytest.raises(ValidationError) as exc:
        await storage.create(nobody(), '_User', {'password': 'pw'}, blog_schema)
    assert exc.value.code == 200
    with pytest.raises(ValidationError) as exc:
        await storage.create(nobody(), '_User', {'username': 'bob'}, blog_schema)
    assert exc.value.code == 201
    await storage.create(nobody(), '_User', {'username': 'bob', 'password': 'pw', 'email': 'b@x.io'}, blog_schema)
    with pytest.raises(ConflictError) as exc:
        await storage.create(nobody(), '_User', {'username': 'bob', 'password': 'pw'}, blog_schema)
    assert exc.value.code == 202
    with pytest.raises(ConflictError) as exc:
        await storage.create(nobody(), '_User', {'username': 'bobby', 'password': 'pw', 'email': 'b@x.io'}, blog_schema)
    assert exc.value.code == 203


@pytest.mark.asyncio
async def test_derive_context(storage, config):
    anonymous = await derive_context(storage, config=config, installation_id='inst')
    assert anonymous.user is None and anonymous.installation_id == 'inst'
    with pytest.raises(InvalidSessionToken):
        await derive_context(storage, config=config, session_token='r:missing')


@pytest.mark.asyncio
async def test_delete_user_drops_sessions(storage, blog_schema):
    res = await storage.create(nobody(), '_User', {'username': 'cat', 'password': 'pw'}, blog_schema)
    await storage.delete(master(), '_User', res['objectId'], blog_schema)
    assert await storage.get_session(res['sessionToken']) is None
    with pytest.raises(NotFound):
        await storage.delete(master(), '_User', res['objectId'], blog_schema)


def test_matcher_semantics():
    record = {
        'title': 'Hello',
        'tags': ['a', 'b'],
        'author': {'__type': 'Pointer', 'className': 'Author', 'objectId': 'a1'},
        'publishedAt': {'__type': 'Date', 'iso': '2024-01-02T00:00:00.000Z'},
        'location': {'__type': 'GeoPoint', 'latitude': 48.85, 'longitude': 2.35},
    }
    assert matches(record, {'tags': 'a'})
    assert matches(record, {'author': {'__type': 'Pointer', 'className': 'Author', 'objectId': 'a1'}})
    assert matches(record, {'publishedAt': {'$gt': {'__type': 'Date', 'iso': '2023-12-31T00:00:00.000Z'}}})
    assert matches(record, {'missing': {'$exists': False}})
    assert not matches(record, {'title': {'$regex': '^he'}})
    paris_ish = {'__type': 'GeoPoint', 'latitude': 48.86, 'longitude': 2.34}
    assert matches(record, {'location': {'$nearSphere': paris_ish, '$maxDistanceInKilometers': 5}})
    london = {'__type': 'GeoPoint', 'latitude': 51.5, 'longitude': -0.12}
    assert not matches(record, {'location': {'$nearSphere': london, '$maxDistanceInKilometers': 5}})


def _bound_values(parameters):
    if isinstance(parameters, dict):
        return list(parameters.values())
    return list(parameters or ())


@pytest.mark.asyncio
async def test_find_filters_in_sql(storage, engine, blog_schema, make_object):
    for i in range(5):
        await make_object('Post', title=f'p{i}', views=i)
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append((statement, parameters))

    event.listen(engine.sync_engine, 'before_cursor_execute', _record)
    try:
        found = await storage.find(master(), 'Post', {'title': 'p3', 'views': {'$gte': 2}}, blog_schema)
    finally:
        event.remove(engine.sync_engine, 'before_cursor_execute', _record)
    assert [r['title'] for r in found] == ['p3']
    selects = [(s, p) for s, p in statements if 'parse_objects' in s]
    assert selects
    assert any('p3' in _bound_values(p) for _, p in selects)


@pytest.mark.asyncio
async def test_user_uniqueness_is_checked_in_sql(storage, engine, blog_schema):
    await storage.create(nobody(), '_User', {'username': 'dora', 'password': 'pw'}, blog_schema)
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append((statement, parameters))

    event.listen(engine.sync_engine, 'before_cursor_execute', _record)
    try:
        with pytest.raises(ConflictError):
            await storage.create(nobody(), '_User', {'username': 'dora', 'password': 'pw'}, blog_schema)
    finally:
        event.remove(engine.sync_engine, 'before_cursor_execute', _record)
    assert any('dora' in _bound_values(p) for s, p in statements if 'parse_objects' in s)


def test_compile_where_splits_sql_and_residual(blog_schema):
    post = blog_schema['Post']
    clauses, residual = compile_where({
        'title': {'$ne': 'x', '$regex': '^a'},
        'views': {'$in': [1, 2]},
        'author': {'__type': 'Pointer', 'className': 'Author', 'objectId': 'a1'},
        'publishedAt': {'$lt': {'__type': 'Date', 'iso': '2024-01-01T00:00:00Z'}},
        'tags': 'a',
    }, post)
    assert len(clauses) == 4
    assert residual == {'title': {'$regex': '^a'}, 'tags': {'$eq': 'a'}}

    clauses, residual = compile_where({'$or': [{'title': 'a'}, {'tags': 'b'}]}, post)
    assert clauses == []
    assert residual == {'$or': [{'title': 'a'}, {'tags': 'b'}]}

    clauses, residual = compile_where({'$or': [{'title': 'a'}, {'views': {'$gt': 1}}]}, post)
    assert len(clauses) == 1 and residual == {}


def test_compile_where_rejects_unknown_operator(blog_schema):
    with pytest.raises(ValidationError) as exc:
        compile_where({'views': {'$bogus': 1}}, blog_schema['Post'])
    assert exc.value.code == 102


@pytest.mark.asyncio
async def test_find_filters_dates_pointers_and_exists(storage, blog_schema, make_object):
    author = await make_object('Author', name='ann')
    pointer = {'__type': 'Pointer', 'className': 'Author', 'objectId': author}
    early = await make_object('Post', title='early', publishedAt={'__type': 'Date', 'iso': '2023-05-01T00:00:00.000Z'}, author=pointer)
    late = await make_object('Post', title='late', publishedAt={'__type': 'Date', 'iso': '2024-05-01T00:00:00.000Z'})
    bare = await make_object('Post', title='bare')

    found = await storage.find(master(), 'Post', {'publishedAt': {'$gt': {'__type': 'Date', 'iso': '2024-01-01T00:00:00Z'}}}, blog_schema)
    assert [r['objectId'] for r in found] == [late]
    found = await storage.find(master(), 'Post', {'author': pointer}, blog_schema)
    assert [r['objectId'] for r in found] == [early]
    found = await storage.find(master(), 'Post', {'publishedAt': {'$exists': False}}, blog_schema)
    assert [r['objectId'] for r in found] == [bare]
    found = await storage.find(master(), 'Post', {'title': {'$ne': 'early', '$regex': 'a'}}, blog_schema)
    assert [r['objectId'] for r in found] == [late, bare]
    found = await storage.find(master(), 'Post', {'title': {'$nin': ['late']}}, blog_schema)
    assert [r['objectId'] for r in found] == [early, bare]


@pytest.mark.asyncio
async def test_invalid_regex_is_a_validation_error(storage, blog_schema, make_object):
    await make_object('Post', title='x')
    with pytest.raises(ValidationError) as exc:
        await storage.find(master(), 'Post', {'title': {'$regex': '(unclosed'}}, blog_schema)
    assert exc.value.code == 102
    with pytest.raises(ValidationError):
        matches({'title': 'x'}, {'title': {'$regex': '['}})
