"""Application-wide Qt signals for LedgerSync.

This module provides:
    - Signals: custom Qt signals for configuration changes, local state changes,
      the pull/push lifecycle of the remote sync, and error reporting.
"""
import logging

from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for application config, data, and sync events."""
    configSectionChanged = QtCore.Signal(str)  # Section name

    stateChanged = QtCore.Signal(str)  # Slice name
    transactionsChanged = QtCore.Signal(list)
    savingsChanged = QtCore.Signal(list)
    categoriesChanged = QtCore.Signal(str, list)  # Transaction type, categories

    dataAboutToBePulled = QtCore.Signal()
    dataPulled = QtCore.Signal(object)  # LedgerState
    pushStarted = QtCore.Signal(int)  # Sequence number
    pushFinished = QtCore.Signal(int, bool, str)  # Sequence number, success, message

    showLogs = QtCore.Signal()
    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        @QtCore.Slot(int, bool, str)
        def push_finished(seq: int, ok: bool, message: str) -> None:
            if not ok:
                logging.debug(f'Push #{seq} reported failure: {message}')

        self.pushFinished.connect(push_finished)


signals = Signals()
