import threading


class CancelToken:
    """
    Cancellation token passed down the download call chain.

    Set from a signal handler or another thread; polled by the transfer
    engine on every progress tick.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()
