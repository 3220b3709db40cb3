from discipleship.roles import Role


def test_profile_lookup_by_user(client, make_account):
    ana = make_account(name='Ana')
    ben = make_account(name='Ben')
    leader = make_account(Role.DISCIPLER, name='Leader')

    r = client.get(f'/profiles/by-user/{ana.user_id}', headers=ana.headers)
    assert r.status_code == 200
    assert r.json()['name'] == 'Ana'
    assert r.json()['role'] == 'disciple'

    # disciples cannot read other people's profiles
    assert client.get(f'/profiles/by-user/{ana.user_id}', headers=ben.headers).status_code == 403
    assert client.get(f'/profiles/by-user/{ana.user_id}', headers=leader.headers).json()['name'] == 'Ana'

    r = client.get('/profiles/by-user/no-such-user', headers=leader.headers)
    assert r.status_code == 200
    assert r.json() is None


def test_update_own_profile(client, make_account):
    account = make_account(name='Old Name')
    r = client.patch('/profiles/me', json={'name': ' New Name ', 'phone': '555-0100'}, headers=account.headers)
    assert r.status_code == 200
    assert r.json()['name'] == 'New Name'
    assert r.json()['phone'] == '555-0100'
    assert r.json()['role'] == 'disciple'

    assert client.patch('/profiles/me', json={'name': '   '}, headers=account.headers).status_code == 400
    # role is not a self-service field
    r = client.patch('/profiles/me', json={'role': 'master'}, headers=account.headers)
    assert r.status_code == 200
    assert r.json()['role'] == 'disciple'


def test_discipler_manages_own_disciples(client, make_account):
    leader = make_account(Role.DISCIPLER, name='Paul')
    other = make_account(Role.DISCIPLER, name='Barnabas')

    r = client.post('/disciples', json={'name': 'Timothy', 'phone': '555-0101', 'spiritual_stage': 'new believer'},
                    headers=leader.headers)
    assert r.status_code == 201
    timothy = r.json()
    assert timothy['discipler_id'] == leader.profile['id']
    assert timothy['user_id'] is None
    assert timothy['role'] == 'disciple'

    client.post('/disciples', json={'name': 'Titus'}, headers=leader.headers)
    names = [p['name'] for p in client.get('/disciples', headers=leader.headers).json()]
    assert names == ['Timothy', 'Titus']
    found = client.get('/disciples', params={'search': 'believer'}, headers=leader.headers).json()
    assert [p['name'] for p in found] == ['Timothy']
    assert client.get('/disciples', headers=other.headers).json() == []


def test_disciple_cannot_use_discipler_endpoints(client, make_account):
    account = make_account()
    r = client.get('/disciples', headers=account.headers)
    assert r.status_code == 403
    assert r.json()['detail'] == 'discipler role required'
    assert client.post('/disciples', json={'name': 'X'}, headers=account.headers).status_code == 403
    assert client.get('/admin/stats', headers=account.headers).status_code == 403


def test_master_sees_every_disciple(client, make_account):
    leader = make_account(Role.DISCIPLER)
    master = make_account(Role.MASTER)
    created = client.post('/disciples', json={'name': 'Silas'}, headers=leader.headers).json()
    ids = [p['id'] for p in client.get('/disciples', headers=master.headers).json()]
    assert created['id'] in ids


def test_notes_history(client, make_account):
    leader = make_account(Role.DISCIPLER)
    other = make_account(Role.DISCIPLER)
    master = make_account(Role.MASTER)
    disciple = client.post('/disciples', json={'name': 'Mark'}, headers=leader.headers).json()
    url = f"/disciples/{disciple['id']}/notes"

    r = client.post(url, json={'content': 'First meeting', 'prayer_requests': 'family'}, headers=leader.headers)
    assert r.status_code == 201
    assert r.json()['discipler_id'] == leader.profile['id']
    client.post(url, json={'content': 'Second meeting'}, headers=leader.headers)

    notes = client.get(url, headers=leader.headers).json()
    assert [n['content'] for n in notes] == ['Second meeting', 'First meeting']
    assert len(client.get(url, headers=master.headers).json()) == 2

    r = client.post(url, json={'content': 'Not mine'}, headers=other.headers)
    assert r.status_code == 403
    assert r.json()['detail'] == 'not your disciple'
    assert client.get('/disciples/missing/notes', headers=leader.headers).status_code == 404


def test_admin_profile_listing(client, make_account):
    master = make_account(Role.MASTER)
    leader = make_account(Role.DISCIPLER, name='Priscilla')
    disciple = client.post('/disciples', json={'name': 'Apollos'}, headers=leader.headers).json()

    rows = client.get('/admin/profiles', params={'search': 'Apollos'}, headers=master.headers).json()
    row = next(r for r in rows if r['id'] == disciple['id'])
    assert row['discipler_name'] == 'Priscilla'

    rows = client.get('/admin/profiles', params={'role': 'discipler'}, headers=master.headers).json()
    assert rows and all(r['role'] == 'discipler' for r in rows)
    assert client.get('/admin/profiles', params={'role': 'pastor'}, headers=master.headers).status_code == 400
    assert client.get('/admin/profiles', headers=leader.headers).status_code == 403


def test_assign_discipler_rules(client, make_account):
    master = make_account(Role.MASTER)
    leader = make_account(Role.DISCIPLER)
    disciple = make_account()
    other_disciple = make_account()
    url = f"/admin/profiles/{disciple.profile['id']}/discipler"

    r = client.put(url, json={'discipler_id': leader.profile['id']}, headers=master.headers)
    assert r.status_code == 200
    assert r.json()['discipler_id'] == leader.profile['id']

    r = client.put(url, json={'discipler_id': master.profile['id']}, headers=master.headers)
    assert r.status_code == 200

    r = client.put(url, json={'discipler_id': other_disciple.profile['id']}, headers=master.headers)
    assert r.status_code == 400
    r = client.put(url, json={'discipler_id': disciple.profile['id']}, headers=master.headers)
    assert r.status_code == 400
    r = client.put(url, json={'discipler_id': 'missing'}, headers=master.headers)
    assert r.status_code == 404

    r = client.put(url, json={'discipler_id': None}, headers=master.headers)
    assert r.status_code == 200
    assert r.json()['discipler_id'] is None
    assert client.put('/admin/profiles/missing/discipler', json={'discipler_id': None},
                      headers=master.headers).status_code == 404


def test_assigned_disciple_sees_discipler_on_dashboard(client, make_account):
    master = make_account(Role.MASTER)
    leader = make_account(Role.DISCIPLER, name='Aquila')
    disciple = make_account()
    client.put(f"/admin/profiles/{disciple.profile['id']}/discipler", json={'discipler_id': leader.profile['id']},
               headers=master.headers)
    board = client.get('/dashboard', headers=disciple.headers).json()
    assert board['discipler_name'] == 'Aquila'
    assert board['disciples'] == [] and board['stats'] is None
    ids = [p['id'] for p in client.get('/disciples', headers=leader.headers).json()]
    assert disciple.profile['id'] in ids


def test_role_changes(client, make_account):
    master = make_account(Role.MASTER)
    other_master = make_account(Role.MASTER)
    member = make_account()

    url = f"/admin/profiles/{member.profile['id']}/role"
    r = client.put(url, json={'role': 'discipler'}, headers=master.headers)
    assert r.status_code == 200
    assert r.json()['role'] == 'discipler'
    # the new role applies to the next request
    assert client.get('/disciples', headers=member.headers).status_code == 200

    client.post('/disciples', json={'name': 'Onesimus'}, headers=member.headers)
    r = client.put(url, json={'role': 'disciple'}, headers=master.headers)
    assert r.status_code == 400

    assert client.put(url, json={'role': 'master'}, headers=master.headers).status_code == 400
    r = client.put(f"/admin/profiles/{other_master.profile['id']}/role", json={'role': 'disciple'},
                   headers=master.headers)
    assert r.status_code == 400
    assert client.put(url, json={'role': 'pastor'}, headers=master.headers).status_code == 422
    assert client.put('/admin/profiles/missing/role', json={'role': 'discipler'},
                      headers=master.headers).status_code == 404


def test_demoting_discipler_without_disciples(client, make_account):
    master = make_account(Role.MASTER)
    leader = make_account(Role.DISCIPLER)
    r = client.put(f"/admin/profiles/{leader.profile['id']}/role", json={'role': 'disciple'}, headers=master.headers)
    assert r.status_code == 200
    assert client.get('/disciples', headers=leader.headers).status_code == 403


def test_stats_track_new_profiles(client, make_account):
    master = make_account(Role.MASTER)
    before = client.get('/admin/stats', headers=master.headers).json()
    make_account()
    after = client.get('/admin/stats', headers=master.headers).json()
    assert after['total_users'] == before['total_users'] + 1
    assert after['disciples'] == before['disciples'] + 1
    assert after['unassigned'] == before['unassigned'] + 1
    assert after['total_users'] == after['disciples'] + after['disciplers'] + after['masters']

    board = client.get('/dashboard', headers=master.headers).json()
    assert board['stats']['total_users'] == after['total_users']
