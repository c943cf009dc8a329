# Failure taxonomy shared by the provider adapters and the crawlers. Adapters
# translate whatever their client library raises into one of these; crawlers
# only ever catch these.


class SyncError(Exception):
    pass


class TransientError(SyncError):
    """Network timeout, throttling or a dropped connection. Retry eligible."""
    pass


class AuthenticationError(SyncError):
    """Expired or revoked credential. Forces a credential refresh before
    any retry."""
    pass


class StructuralError(SyncError):
    """The remote mailbox does not look the way we expect. The folder is
    skipped for the pass."""
    pass


class FolderNotFound(StructuralError):

    def __init__(self, folder_type, tried=None):
        self.folder_type = folder_type
        self.tried = tried or []
        super(FolderNotFound, self).__init__(
            'No folder for {!r} (tried {})'.format(folder_type, self.tried))


class MalformedResponse(StructuralError):
    pass


class TerminalError(SyncError):
    """Account revoked, unsupported or otherwise beyond automatic repair."""
    pass


class NotSupportedError(TerminalError):
    pass


class InvalidTransition(Exception):

    def __init__(self, state, event):
        self.state = state
        self.event = event
        super(InvalidTransition, self).__init__(
            'No transition from {} on {}'.format(state, event))


class AccountNotFound(Exception):
    pass


class LeaseLost(Exception):
    """The pass's lease expired and another worker took it over. The pass
    stops; the new holder carries on."""
    pass
