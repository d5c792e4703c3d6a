"""Status codes and the exceptions raised across LedgerSync.

Every exception derives from :class:`~.status.BaseStatusException`, which carries a
:class:`~.status.Status` and its user-facing message, logs the error and reports it
through the ``error`` signal. Remote failures (e.g. ``LockTimeoutException``) and
input validation failures (e.g. ``InvalidAmountException``) share this base.
"""
