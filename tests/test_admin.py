import pytest

from ideaboard import db, Admin, Idea, Comment, Interaction, Category
from conftest import login

JSON = {'Accept': 'application/json'}


def test_login_page_for_anonymous_visitors(client):
    response = client.get('/admin')
    assert b'Sign In' in response.data
    assert b'Pending ideas' not in response.data


def test_login_failure_and_success(client):
    response = client.post('/admin/login', data={'username': 'root', 'password': 'nope'}, follow_redirects=True)
    assert b'Invalid username or password.' in response.data

    response = client.post('/admin/login', data={'username': '  ROOT ', 'password': 'rootpass'}, follow_redirects=True)
    assert b'Pending ideas' in response.data
    with client.session_transaction() as sess:
        assert 'admin_id' in sess


def test_logout_clears_session(admin_client):
    admin_client.post('/admin/logout')
    with admin_client.session_transaction() as sess:
        assert 'admin_id' not in sess
    assert admin_client.get('/admin/api/me').status_code == 401


def test_me_reports_superadmin_permissions(admin_client):
    data = admin_client.get('/admin/api/me').get_json()
    assert data['username'] == 'root'
    assert data['role'] == 'superadmin'
    assert data['permissions'] == sorted(['approve', 'edit', 'delete', 'categories', 'comments', 'admins'])


def test_moderation_requires_login(client, make_idea):
    idea_id = make_idea(status='pending')
    assert client.post(f'/admin/idea/{idea_id}/approve', json={}).status_code == 401
    assert client.get(f'/admin/idea/{idea_id}', headers=JSON).status_code == 401


def test_approve_moves_idea_into_feed(app, admin_client, make_idea):
    idea_id = make_idea(title='Community garden', status='pending')
    response = admin_client.post(f'/admin/idea/{idea_id}/approve', json={})
    assert response.get_json() == {'success': True, 'status': 'approved'}
    assert [i['title'] for i in admin_client.get('/api/ideas').get_json()['ideas']] == ['Community garden']
    assert admin_client.post('/admin/idea/999/approve', json={}).status_code == 404


def test_edit_requires_title_and_description(app, admin_client, make_idea):
    idea_id = make_idea()
    bad = admin_client.post(f'/admin/idea/{idea_id}/edit', json={'title': 'New title', 'description': ' '})
    assert bad.status_code == 400
    good = admin_client.post(f'/admin/idea/{idea_id}/edit', json={'title': 'New title', 'description': 'New text'})
    assert good.get_json()['title'] == 'New title'
    with app.app_context():
        idea = db.session.get(Idea, idea_id)
        assert (idea.title, idea.description) == ('New title', 'New text')


def test_delete_removes_idea_comments_and_interactions(app, admin_client, make_idea):
    idea_id = make_idea()
    admin_client.post(f'/idea/{idea_id}/like', json={}, headers={'X-Forwarded-For': '203.0.113.1'})
    admin_client.post(f'/idea/{idea_id}/comment', json={'text': 'nice'}, headers={'X-Forwarded-For': '203.0.113.1'})
    assert admin_client.post(f'/admin/idea/{idea_id}/delete', json={}).get_json() == {'success': True}
    with app.app_context():
        assert db.session.get(Idea, idea_id) is None
        assert Comment.query.count() == 0
        assert Interaction.query.count() == 0


def test_details_include_private_fields(admin_client, make_idea):
    idea_id = make_idea(status='pending', author_phone='0900', author_address='5 Hill Street')
    idea = admin_client.get(f'/admin/idea/{idea_id}', headers=JSON).get_json()['idea']
    assert idea['author_address'] == '5 Hill Street'
    assert idea['author_phone'] == '0900'


def test_moderator_permissions_are_enforced(client, make_idea, make_admin):
    idea_id = make_idea(status='pending')
    make_admin('mod', permissions=['edit'])
    login(client, 'mod', 'secret123')
    denied = client.post(f'/admin/idea/{idea_id}/approve', json={})
    assert denied.status_code == 403
    assert denied.get_json()['success'] is False
    assert client.post(f'/admin/idea/{idea_id}/delete', json={}).status_code == 403
    assert client.post(f'/admin/idea/{idea_id}/edit', json={'title': 't', 'description': 'd'}).status_code == 200


def test_permission_changes_apply_without_relogin(app, client, make_idea, make_admin):
    idea_id = make_idea(status='pending')
    mod_id = make_admin('mod', permissions=['approve'])
    login(client, 'mod', 'secret123')
    assert client.get('/admin/api/me').get_json()['permissions'] == ['approve']

    with app.app_context():
        db.session.get(Admin, mod_id).permissions = 'edit'
        db.session.commit()
    assert client.get('/admin/api/me').get_json()['permissions'] == ['edit']
    assert client.post(f'/admin/idea/{idea_id}/approve', json={}).status_code == 403


def test_deleted_admin_is_logged_out(app, client, make_admin):
    mod_id = make_admin('mod', permissions=['approve'])
    login(client, 'mod', 'secret123')
    with app.app_context():
        db.session.delete(db.session.get(Admin, mod_id))
        db.session.commit()
    assert client.get('/admin/api/me').status_code == 401
    with client.session_transaction() as sess:
        assert 'admin_id' not in sess


def test_dashboard_lists_and_paginates_pending(admin_client, make_idea):
    for n in range(12):
        make_idea(title=f'pending {n}', status='pending')
    html = admin_client.get('/admin').get_data(as_text=True)
    assert html.count('class="idea-row"') == 10
    assert 'pending_page=2' in html
    second = admin_client.get('/admin?pending_page=2').get_data(as_text=True)
    assert second.count('class="idea-row"') == 2


def test_dashboard_search_and_category_filter(admin_client, make_idea):
    make_idea(title='Solar park', author_name='Bob', category='Energy')
    make_idea(title='Bike lanes', author_name='Carol', category='Transport')
    html = admin_client.get('/admin?q=carol').get_data(as_text=True)
    assert 'Bike lanes' in html and 'Solar park' not in html
    html = admin_client.get('/admin?category=Energy').get_data(as_text=True)
    assert 'Solar park' in html and 'Bike lanes' not in html


def test_category_management(app, admin_client):
    admin_client.post('/admin/categories', data={'name': ' Health '})
    response = admin_client.post('/admin/categories', data={'name': 'Health'}, follow_redirects=True)
    assert b'already exists' in response.data
    with app.app_context():
        category = Category.query.one()
        assert category.name == 'Health'
        category_id = category.id
    assert b'Health' in admin_client.get('/submit').data

    response = admin_client.post(f'/admin/categories/{category_id}/delete', follow_redirects=True)
    assert b'Category deleted!' in response.data
    with app.app_context():
        assert Category.query.count() == 0


def test_category_management_requires_permission(app, client, make_admin):
    make_admin('mod', permissions=['approve'])
    login(client, 'mod', 'secret123')
    response = client.post('/admin/categories', data={'name': 'Sports'}, follow_redirects=True)
    assert b'You do not have permission' in response.data
    with app.app_context():
        assert Category.query.count() == 0


def test_create_admin_account(app, admin_client):
    response = admin_client.post('/admin/accounts', data={'username': 'Mod', 'password': '123'}, follow_redirects=True)
    assert b'at least 6 characters' in response.data

    admin_client.post('/admin/accounts', data={'username': ' Mod ', 'password': 'secret123',
                                               'permissions': ['approve', 'comments', 'bogus']})
    with app.app_context():
        mod = Admin.query.filter_by(username='mod').one()
        assert mod.role == 'moderator'
        assert mod.permission_set == {'approve', 'comments'}

    response = admin_client.post('/admin/accounts', data={'username': 'mod', 'password': 'secret123'}, follow_redirects=True)
    assert b'already exists' in response.data


def test_update_permissions(app, admin_client, make_admin):
    mod_id = make_admin('mod', permissions=['approve'])
    admin_client.post(f'/admin/accounts/{mod_id}/permissions', data={'permissions': ['delete', 'edit']})
    with app.app_context():
        assert db.session.get(Admin, mod_id).permission_set == {'delete', 'edit'}

    with app.app_context():
        root_id = Admin.query.filter_by(username='root').one().id
    response = admin_client.post(f'/admin/accounts/{root_id}/permissions', data={'permissions': []}, follow_redirects=True)
    assert b'always has every permission' in response.data


def test_delete_admin_accounts(app, admin_client, make_admin):
    mod_id = make_admin('mod')
    with app.app_context():
        root_id = Admin.query.filter_by(username='root').one().id

    response = admin_client.post(f'/admin/accounts/{root_id}/delete', follow_redirects=True)
    assert b'You cannot delete your own account.' in response.data

    admin_client.post(f'/admin/accounts/{mod_id}/delete')
    with app.app_context():
        assert db.session.get(Admin, mod_id) is None


def test_last_superadmin_cannot_be_deleted(app, client, make_admin):
    make_admin('manager', permissions=['admins'])
    with app.app_context():
        root_id = Admin.query.filter_by(username='root').one().id
    login(client, 'manager', 'secret123')
    response = client.post(f'/admin/accounts/{root_id}/delete', follow_redirects=True)
    assert b'The last super-admin cannot be deleted.' in response.data
    with app.app_context():
        assert db.session.get(Admin, root_id) is not None


def test_accounts_page_requires_admins_permission(client, make_admin):
    make_admin('mod', permissions=['approve'])
    login(client, 'mod', 'secret123')
    response = client.get('/admin/accounts')
    assert response.status_code == 302


@pytest.mark.parametrize('body', [['New title', 'New text'], {'title': 5, 'description': 'New text'},
                                  {'title': 'New title', 'description': {'text': 'x'}}])
def test_edit_rejects_malformed_body(app, admin_client, make_idea, body):
    idea_id = make_idea(title='Old title')
    response = admin_client.post(f'/admin/idea/{idea_id}/edit', json=body)
    assert response.status_code == 400
    assert response.get_json()['success'] is False
    with app.app_context():
        assert db.session.get(Idea, idea_id).title == 'Old title'


def test_logout_only_accepts_post(admin_client):
    assert admin_client.get('/admin/logout').status_code == 405
    with admin_client.session_transaction() as sess:
        assert 'admin_id' in sess
