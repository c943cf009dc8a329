"""
Generic IMAP adapter; used for every provider of type 'generic'.

"""
from mailcrawl.mailsync.backends.imap.adapter import ImapAdapter  # noqa

PROVIDER = 'generic'
ADAPTER_CLS = 'ImapAdapter'
