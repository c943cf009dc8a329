import base64
import json

import pytest
from sqlalchemy import update

from mailcrawl.models import Account
from mailcrawl.mailsync.state import SyncStatus
from mailcrawl.webhooks.push import parse_notification

from tests.util.base import message_count, get_folder_cursor

ADDRESS = 'mailcrawltest@example.com'


def pubsub_envelope(data):
    encoded = base64.b64encode(json.dumps(data).encode('utf-8'))
    return {'message': {'data': encoded.decode('ascii'),
                        'messageId': '2070443601311540'},
            'subscription': 'projects/mailcrawl-test/subscriptions/push'}


@pytest.fixture
def spawned(monkeypatch, orchestrator):
    """Run push-triggered forward passes to completion before returning."""
    greenlets = []
    trigger = orchestrator.trigger_forward_async

    def trigger_and_record(account_id):
        greenlet = trigger(account_id)
        greenlets.append(greenlet)
        return greenlet

    monkeypatch.setattr(orchestrator, 'trigger_forward_async',
                        trigger_and_record)
    return greenlets


def test_parse_direct_notification():
    assert parse_notification({'address': ADDRESS, 'changeMarker': '12'}) == \
        (ADDRESS, '12')
    assert parse_notification({'address': ADDRESS}) == (ADDRESS, None)


def test_parse_pubsub_envelope():
    payload = pubsub_envelope({'emailAddress': ADDRESS, 'historyId': 9876})
    assert parse_notification(payload) == (ADDRESS, 9876)


@pytest.mark.parametrize('payload', [
    None,
    [],
    'address',
    {},
    {'message': {}},
    {'message': {'data': 'not base64!'}},
    {'message': {'data': base64.b64encode(b'not json').decode('ascii')}},
    {'message': {'data': base64.b64encode(b'[1, 2]').decode('ascii')}},
])
def test_parse_malformed_notification(payload):
    assert parse_notification(payload) is None


def test_push_triggers_forward_pass(db, seeded_account, mailbox,
                                    webhooks_client, spawned):
    mailbox.add_messages('INBOX', [110, 111])
    r = webhooks_client.post_data('/push', {'address': ADDRESS,
                                            'changeMarker': '4242'})
    assert r.status_code == 200
    assert json.loads(r.data)['message'] == 'accepted'

    assert len(spawned) == 1
    spawned[0].join()
    assert message_count(db, seeded_account.id) == 12
    assert get_folder_cursor(db, seeded_account.id,
                             'inbox').forward_cursor == 111


def test_pubsub_push_triggers_forward_pass(db, seeded_account, mailbox,
                                           webhooks_client, spawned):
    mailbox.add_messages('INBOX', [110])
    r = webhooks_client.post_data('/push', pubsub_envelope(
        {'emailAddress': ADDRESS, 'historyId': 9876}))
    assert r.status_code == 200
    assert json.loads(r.data)['message'] == 'accepted'
    spawned[0].join()
    assert message_count(db, seeded_account.id) == 11


def test_push_for_unknown_account(db, seeded_account, webhooks_client,
                                  spawned):
    r = webhooks_client.post_data('/push', {'address': 'nobody@example.com'})
    assert r.status_code == 200
    assert json.loads(r.data)['message'] == 'ignored'
    assert spawned == []


def test_push_for_account_not_syncing(db, seeded_account, webhooks_client,
                                      spawned):
    db.session.execute(update(Account).where(
        Account.id == seeded_account.id).values(sync_status=SyncStatus.error))
    db.session.commit()
    r = webhooks_client.post_data('/push', {'address': ADDRESS})
    assert r.status_code == 200
    assert json.loads(r.data)['message'] == 'ignored'
    assert spawned == []


@pytest.mark.parametrize('body', [
    {'address': ''},
    {'address': None},
    {'message': {'data': 'not base64!'}},
    {'something': 'else'},
])
def test_malformed_push_is_acknowledged(db, webhooks_client, spawned, body):
    r = webhooks_client.post_data('/push', body)
    assert r.status_code == 200
    assert json.loads(r.data)['message'] == 'ignored'
    assert spawned == []


def test_non_json_push_is_acknowledged(db, webhooks_client, spawned):
    r = webhooks_client.client.post('/w/push', data='hello',
                                    content_type='text/plain')
    assert r.status_code == 200
    assert spawned == []


def test_push_address_matching_is_canonical(db, seeded_account,
                                            webhooks_client, spawned):
    r = webhooks_client.post_data('/push', {'address': ' ' + ADDRESS.upper()})
    assert json.loads(r.data)['message'] == 'accepted'
    spawned[0].join()


def test_account_status_api(db, seeded_account, test_client):
    r = test_client.get('/accounts')
    assert r.status_code == 200
    statuses = json.loads(r.data)
    assert [s['id'] for s in statuses] == [seeded_account.id]

    r = test_client.get('/accounts/{}'.format(seeded_account.id))
    assert r.status_code == 200
    status = json.loads(r.data)
    assert status['state'] == 'syncing'
    assert status['forward_cursor'] == 109

    r = test_client.get('/accounts/4242')
    assert r.status_code == 404
    assert json.loads(r.data)['type'] == 'invalid_request_error'


def test_unknown_route_is_json_error(db, test_client):
    r = test_client.get('/nothing/here')
    assert r.status_code == 404
    assert json.loads(r.data)['type'] == 'api_error'
