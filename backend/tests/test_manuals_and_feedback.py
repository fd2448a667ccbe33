import uuid


def _manual(client, admin, **overrides):
    body = {
        'title': 'Rack Installation Guide',
        'category': 'Hardware',
        'content': 'Mount rails before sliding the chassis in.',
        'tags': ['rack', 'Rails'],
        'pdf_url': 'https://files.example.com/manuals/rack.pdf',
    }
    body.update(overrides)
    r = client.post('/manuals', json=body, headers=admin['headers'])
    assert r.status_code == 201, r.text
    return r.json()


def test_manual_crud(client, admin, trainee):
    created = _manual(client, admin)
    assert created['tags'] == ['rack', 'Rails']
    got = client.get(f"/manuals/{created['id']}", headers=trainee['headers'])
    assert got.status_code == 200
    assert got.json()['pdf_url'].endswith('rack.pdf')

    upd = client.put(f"/manuals/{created['id']}", json={'content': 'Updated', 'tags': ['rack']},
                     headers=admin['headers'])
    assert upd.status_code == 200
    assert upd.json()['content'] == 'Updated'
    assert upd.json()['tags'] == ['rack']
    assert upd.json()['title'] == 'Rack Installation Guide'

    assert client.put(f"/manuals/{created['id']}", json={'title': 'x'}, headers=trainee['headers']).status_code == 403
    assert client.delete(f"/manuals/{created['id']}", headers=admin['headers']).status_code == 204
    assert client.get(f"/manuals/{created['id']}", headers=trainee['headers']).status_code == 404


def test_manual_search_and_categories(client, admin, trainee):
    marker = uuid.uuid4().hex[:8]
    category = f'Networking-{marker}'
    a = _manual(client, admin, title=f'Switch setup {marker}', category=category, tags=['vlan'])
    b = _manual(client, admin, title=f'Cabling {marker}', category='Hardware', content='Use CAT6 for VLAN trunks')
    c = _manual(client, admin, title=f'Storage {marker}', category='Hardware', tags=['SAN'])

    by_tag = client.get('/manuals', params={'q': 'VLAN'}, headers=trainee['headers']).json()
    ids = {m['id'] for m in by_tag}
    assert a['id'] in ids and b['id'] in ids and c['id'] not in ids

    by_cat = client.get('/manuals', params={'q': marker, 'category': category}, headers=trainee['headers']).json()
    assert [m['id'] for m in by_cat] == [a['id']]
    everything = client.get('/manuals', params={'q': marker, 'category': 'all'}, headers=trainee['headers']).json()
    assert len(everything) == 3

    cats = client.get('/manuals/categories', headers=trainee['headers']).json()
    assert category in cats and 'Hardware' in cats
    assert len(cats) == len(set(cats))


def test_trainee_cannot_create_manual(client, trainee):
    r = client.post('/manuals', json={'title': 't', 'category': 'c'}, headers=trainee['headers'])
    assert r.status_code == 403


def test_feedback_flow(client, admin, make_trainee):
    erin = make_trainee('Erin Example')
    frank = make_trainee('Frank Example')
    r = client.post('/feedback', json={'subject': 'Quiz typo', 'message': 'Question 2 has a typo'},
                    headers=erin['headers'])
    assert r.status_code == 201
    fb = r.json()
    assert fb['status'] == 'pending'
    assert fb['user_name'] == 'Erin Example'
    assert fb['admin_comments'] == []
    client.post('/feedback', json={'subject': 'Other', 'message': 'Hi'}, headers=frank['headers'])

    own = client.get('/feedback', headers=erin['headers']).json()
    assert [f['id'] for f in own] == [fb['id']]

    comment = client.post(f"/feedback/{fb['id']}/comments", json={'comment': 'Fixed, thanks'}, headers=admin['headers'])
    assert comment.status_code == 201
    assert comment.json()['admin_name'] == 'Course Admin'

    status = client.put(f"/feedback/{fb['id']}/status", json={'status': 'resolved'}, headers=admin['headers'])
    assert status.status_code == 200
    assert status.json()['status'] == 'resolved'
    assert [c['comment'] for c in status.json()['admin_comments']] == ['Fixed, thanks']

    all_items = client.get('/feedback', headers=admin['headers']).json()
    assert {fb['id']} <= {f['id'] for f in all_items}
    assert len({f['user_id'] for f in all_items}) >= 2


def test_feedback_admin_actions_guarded(client, admin, trainee):
    fb = client.post('/feedback', json={'subject': 's', 'message': 'm'}, headers=trainee['headers']).json()
    assert client.put(f"/feedback/{fb['id']}/status", json={'status': 'reviewed'},
                      headers=trainee['headers']).status_code == 403
    assert client.post(f"/feedback/{fb['id']}/comments", json={'comment': 'x'},
                       headers=trainee['headers']).status_code == 403
    assert client.put('/feedback/missing/status', json={'status': 'reviewed'},
                      headers=admin['headers']).status_code == 404
    assert client.put(f"/feedback/{fb['id']}/status", json={'status': 'closed'},
                      headers=admin['headers']).status_code == 422
