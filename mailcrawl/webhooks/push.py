"""
Provider change notifications.

Accepts either our own `{"address": ..., "changeMarker": ...}` body or a
Google Cloud Pub/Sub push envelope, whose base64 `message.data` holds
`{"emailAddress": ..., "historyId": ...}` as published by a Gmail watch.

Every request is answered with 200 as soon as the forward pass has been
spawned, or as soon as we've decided to ignore it: a non-2xx answer only
makes the provider retry, and retrying a notification for an account we
don't know won't help.

"""
import base64
import binascii
import json

from flask import Blueprint, request, jsonify, make_response

from mailcrawl.log import get_logger
from mailcrawl.mailsync.push import handle_notification
log = get_logger()

app = Blueprint(
    'webhooks',
    'webhooks_api',
    url_prefix='/w')


def resp(http_code, message=None, **kwargs):
    resp = kwargs
    if message:
        resp['message'] = message
    return make_response(jsonify(resp), http_code)


def parse_notification(payload):
    """
    Returns (address, change_marker) from a notification body, or None if it
    isn't one we understand.

    """
    if not isinstance(payload, dict):
        return None
    if 'address' in payload:
        return payload.get('address'), payload.get('changeMarker')

    message = payload.get('message')
    if not isinstance(message, dict) or 'data' not in message:
        return None
    try:
        data = json.loads(base64.b64decode(message['data']).decode('utf-8'))
    except (TypeError, ValueError, binascii.Error):
        return None
    if not isinstance(data, dict):
        return None
    return data.get('emailAddress'), data.get('historyId')


@app.route('/push', methods=['POST'])
def push_notification():
    payload = request.get_json(force=True, silent=True)
    parsed = parse_notification(payload)
    if parsed is None:
        log.info('ignoring malformed push notification')
        return resp(200, 'ignored')

    address, change_marker = parsed
    if handle_notification(address, change_marker) is None:
        return resp(200, 'ignored')
    return resp(200, 'accepted')
