"""
In-process publish/subscribe for payment updates, streamed to browsers as
Server-Sent Events. Publishing is fire-and-forget: it never raises into the
caller, so a notification problem cannot undo committed work.
"""
import json
import logging
import queue
import threading

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 20
KEEPALIVE_SECONDS = 15


def payment_channel(order_number, transaction_type):
    phase = 'dp' if transaction_type == 'down_payment' else 'full'
    return f"payments/{order_number}/{phase}"


class Broadcaster:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = {}  # channel -> set of queues

    def subscribe(self, channel):
        q = queue.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        with self._lock:
            self._subscribers.setdefault(channel, set()).add(q)
        return q

    def unsubscribe(self, channel, q):
        with self._lock:
            subscribers = self._subscribers.get(channel)
            if subscribers is None:
                return
            subscribers.discard(q)
            if not subscribers:
                del self._subscribers[channel]

    def subscriber_count(self, channel):
        with self._lock:
            return len(self._subscribers.get(channel, ()))

    def publish(self, channel, payload):
        """Deliver ``payload`` to every subscriber of ``channel``. Returns the number reached."""
        try:
            message = json.dumps(payload)
            with self._lock:
                targets = list(self._subscribers.get(channel, ()))
        except Exception as e:
            logger.error(f"Error preparing notification for {channel}: {str(e)}")
            return 0

        delivered = 0
        for q in targets:
            try:
                q.put_nowait(message)
                delivered += 1
            except queue.Full:
                logger.warning(f"Dropping slow subscriber on {channel}")
                self.unsubscribe(channel, q)
        logger.debug(f"Published to {channel}: {delivered} subscriber(s)")
        return delivered

    def stream(self, channel, keepalive=KEEPALIVE_SECONDS):
        """Generator of SSE frames for one subscriber; unsubscribes when the client goes away."""
        q = self.subscribe(channel)
        try:
            yield ": connected\n\n"
            while True:
                try:
                    message = q.get(timeout=keepalive)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {message}\n\n"
        finally:
            self.unsubscribe(channel, q)
