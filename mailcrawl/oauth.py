"""
Access token renewal for OAuth2 providers.

"""
import requests

from mailcrawl.mailsync.exc import AuthenticationError, TransientError
from mailcrawl.log import get_logger
log = get_logger()


def new_access_token(token_url, client_id, client_secret, refresh_token):
    """
    Exchange a refresh token for a new access token.

    Returns
    -------
    (str, int)
        The access token and its lifetime in seconds.

    Raises
    ------
    AuthenticationError
        If the grant was refused (revoked access, deleted client, no refresh
        token).
    TransientError
        On network errors or provider-side failures.

    """
    if not refresh_token:
        raise AuthenticationError('No refresh token')

    data = {'refresh_token': refresh_token,
            'client_id': client_id,
            'client_secret': client_secret,
            'grant_type': 'refresh_token'}
    headers = {'Content-type': 'application/x-www-form-urlencoded',
               'Accept': 'text/plain'}
    try:
        response = requests.post(token_url, data=data, headers=headers,
                                 timeout=30)
    except requests.exceptions.RequestException as e:
        log.error('Network error renewing access token', error=e)
        raise TransientError('Network error renewing access token')

    try:
        session_dict = response.json()
    except ValueError:
        log.error('Invalid JSON renewing on renewing token',
                  response=response.text)
        raise TransientError('Invalid JSON response on renewing token')

    if 'error' in session_dict:
        if session_dict['error'] in ('invalid_grant', 'deleted_client',
                                     'unauthorized_client',
                                     'invalid_client'):
            # The user revoked access, or the app itself is gone.
            raise AuthenticationError(session_dict['error'])
        # You can also get e.g. {"error": "internal_failure"}
        log.error('Error renewing access token', session_dict=session_dict)
        raise TransientError('Server error renewing access token')

    try:
        return session_dict['access_token'], int(
            session_dict.get('expires_in', 3600))
    except KeyError:
        raise TransientError('No access token in token response')


class OAuthRequestsWrapper(requests.auth.AuthBase):
    """Helper class for setting the Authorization header on HTTP requests."""

    def __init__(self, token):
        self.token = token

    def __call__(self, r):
        r.headers['Authorization'] = 'Bearer {}'.format(self.token)
        return r
