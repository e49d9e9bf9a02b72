"""Exception classes shared by the transfer protocol and the content store."""


class PeerDropError(Exception):
    """
    Base exception class for all peerdrop errors.
    """
    pass


class NoActiveChannel(PeerDropError):
    """
    Raised when a transfer is started or an envelope is sent on a channel
    that is not open.
    """
    pass


class NoFilesSelected(PeerDropError):
    """
    Raised when a transfer is started with an empty file list.
    """
    pass


class ChannelError(PeerDropError):
    """
    Raised when the underlying transport fails (connect, write or read).

    The protocol never retries; the caller decides what to do.
    """
    pass


class ProtocolViolation(PeerDropError):
    """
    Raised when an envelope is malformed or arrives out of order.

    The offending envelope has already been dropped when this is raised.
    """
    pass


class IncompleteTransfer(PeerDropError):
    """
    Raised when a file is assembled while chunks are still missing.
    """

    def __init__(self, missing, expected_total: int):
        self.missing = list(missing)
        self.expected_total = expected_total
        preview = ", ".join(str(i) for i in self.missing[:8])
        if len(self.missing) > 8:
            preview += ", ..."
        super().__init__(
            f"{len(self.missing)} of {expected_total} chunks missing: [{preview}]"
        )


class StoreIOError(PeerDropError):
    """
    Raised when the durable tier of the content store is unavailable.

    The in-memory effect of the operation has already taken place.
    """
    pass


class TransferError(PeerDropError):
    """
    Raised when a transfer session is driven out of order (started
    twice, or sending before metadata went out), or when a source file
    no longer matches the size announced for it.
    """
    pass
