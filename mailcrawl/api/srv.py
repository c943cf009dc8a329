from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from mailcrawl.log import get_logger
from mailcrawl.mailsync.admin import list_sync_status
from mailcrawl.mailsync.exc import AccountNotFound
from mailcrawl.webhooks.push import app as webhooks_api


def default_json_error(ex):
    """ Exception -> flask JSON responder """
    logger = get_logger()
    logger.error('Uncaught error thrown by Flask/Werkzeug', exc_info=ex)
    response = jsonify(message=str(ex), type='api_error')
    response.status_code = (ex.code
                            if isinstance(ex, HTTPException)
                            else 500)
    return response


def create_app():
    app = Flask(__name__)
    # Handle both /endpoint and /endpoint/ without redirecting.
    # Note that we need to set this *before* registering the blueprint.
    app.url_map.strict_slashes = False
    app.register_error_handler(Exception, default_json_error)
    app.register_blueprint(webhooks_api)

    @app.route('/')
    def home():
        return 'mailcrawl push API'

    @app.route('/accounts')
    def accounts_status():
        return jsonify(list_sync_status())

    @app.route('/accounts/<int:account_id>')
    def account_status(account_id):
        try:
            return jsonify(list_sync_status(account_id)[0])
        except AccountNotFound:
            response = jsonify(message='Unknown account',
                               type='invalid_request_error')
            response.status_code = 404
            return response

    return app
