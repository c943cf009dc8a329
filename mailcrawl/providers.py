from mailcrawl.mailsync.exc import NotSupportedError

__all__ = ['provider_info', 'providers', 'FOLDER_TYPES', 'PRIMARY_FOLDER']


# Logical folder types, in the order they are synced. The primary folder is
# always first and can never be disabled.
FOLDER_TYPES = ['inbox', 'sent', 'drafts', 'trash', 'spam', 'archive',
                'starred', 'important']
PRIMARY_FOLDER = 'inbox'

DEFAULT_MAX_PARALLEL_FOLDERS = 3


def provider_info(provider_name):
    """
    Like providers[provider_name] except raises
    mailcrawl.mailsync.exc.NotSupportedError instead of KeyError when the
    provider is not found.

    """
    if provider_name not in providers:
        raise NotSupportedError('Provider: {} not supported.'.format(
            provider_name))

    return providers[provider_name]


def folder_candidates(provider_name, folder_type):
    """
    Ordered provider folder names to try for a logical folder type: the
    primary name first, then each alias.

    """
    info = provider_info(provider_name)
    candidates = []
    primary = info['folder_map'].get(folder_type)
    if primary is not None:
        candidates.append(primary)
    for alias in info.get('folder_aliases', {}).get(folder_type, []):
        if alias not in candidates:
            candidates.append(alias)
    return candidates


providers = dict([
    ("gmail", {
        "type": "gmail",
        "imap": ("imap.gmail.com", 993),
        "auth": "oauth2",
        "token_url": "https://oauth2.googleapis.com/token",
        "push": True,
        "domains": ["gmail.com", "googlemail.com"],
        "folder_map": {
            "inbox": "INBOX",
            "sent": "[Gmail]/Sent Mail",
            "drafts": "[Gmail]/Drafts",
            "trash": "[Gmail]/Trash",
            "spam": "[Gmail]/Spam",
            "archive": "[Gmail]/All Mail",
            "starred": "[Gmail]/Starred",
            "important": "[Gmail]/Important",
        },
        # Some locales still use the old Google Mail branding.
        "folder_aliases": {
            "sent": ["[Google Mail]/Sent Mail", "Sent", "Sent Messages"],
            "drafts": ["[Google Mail]/Drafts", "Drafts"],
            "trash": ["[Google Mail]/Trash", "Trash", "Deleted Messages"],
            "spam": ["[Google Mail]/Spam", "Spam", "Junk"],
            "archive": ["[Google Mail]/All Mail", "Archive"],
            # Starred and Important can be hidden from IMAP in the Gmail
            # settings; All Mail still holds their messages.
            "starred": ["[Google Mail]/Starred", "[Gmail]/All Mail"],
            "important": ["[Google Mail]/Important", "[Gmail]/All Mail"],
        },
    }),
    ("outlook", {
        "type": "generic",
        "imap": ("outlook.office365.com", 993),
        "auth": "password",
        "domains": ["outlook.com", "hotmail.com", "live.com", "msn.com"],
        "folder_map": {
            "inbox": "INBOX",
            "sent": "Sent Items",
            "drafts": "Drafts",
            "trash": "Deleted Items",
            "spam": "Junk Email",
            "archive": "Archive",
        },
        "folder_aliases": {
            "sent": ["Sent", "Sent Messages"],
            "trash": ["Deleted", "Trash"],
            "spam": ["Junk", "Spam"],
        },
    }),
    ("yahoo", {
        "type": "generic",
        "imap": ("imap.mail.yahoo.com", 993),
        "auth": "password",
        "domains": ["yahoo.com", "ymail.com", "rocketmail.com"],
        "folder_map": {
            "inbox": "INBOX",
            "sent": "Sent",
            "drafts": "Draft",
            "trash": "Trash",
            "spam": "Bulk Mail",
            "archive": "Archive",
        },
        "folder_aliases": {
            "drafts": ["Drafts"],
            "spam": ["Bulk", "Spam"],
        },
    }),
    ("icloud", {
        "type": "generic",
        "imap": ("imap.mail.me.com", 993),
        "auth": "password",
        "domains": ["icloud.com", "me.com", "mac.com"],
        "folder_map": {
            "inbox": "INBOX",
            "sent": "Sent Messages",
            "drafts": "Drafts",
            "trash": "Deleted Messages",
            "spam": "Junk",
            "archive": "Archive",
        },
    }),
    ("zoho", {
        "type": "generic",
        "imap": ("imap.zoho.com", 993),
        "auth": "password",
        "domains": ["zoho.com", "zohomail.com"],
        "folder_map": {
            "inbox": "INBOX",
            "sent": "Sent",
            "drafts": "Drafts",
            "trash": "Trash",
            "spam": "Spam",
            "archive": "Archives",
        },
    }),
    ("custom", {
        "type": "generic",
        # The server is taken from the account credentials.
        "auth": "password",
        "folder_map": {
            "inbox": "INBOX",
            "sent": "Sent",
            "drafts": "Drafts",
            "trash": "Trash",
            "spam": "Spam",
            "archive": "Archive",
        },
        "folder_aliases": {
            "sent": ["Sent Items", "Sent Messages", "INBOX.Sent"],
            "drafts": ["INBOX.Drafts"],
            "trash": ["Deleted Items", "Deleted Messages", "INBOX.Trash"],
            "spam": ["Junk", "Junk Email", "INBOX.Junk", "INBOX.Spam"],
            "archive": ["Archives", "INBOX.Archive"],
        },
    }),
])
