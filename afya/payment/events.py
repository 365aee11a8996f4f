import queue
import json
from typing import Dict, Any


class PaymentEventBroker:
	"""In-memory broadcaster for payment status changes, keyed by payment id.
	This is suitable for single-process deployments. For multi-process, replace with Redis pub/sub.
	"""

	def __init__(self):
		self._payment_to_queues: Dict[str, set] = {}

	def subscribe(self, payment_id: str) -> queue.Queue:
		q: queue.Queue = queue.Queue()
		self._payment_to_queues.setdefault(payment_id, set()).add(q)
		return q

	def unsubscribe(self, payment_id: str, q: queue.Queue) -> None:
		qs = self._payment_to_queues.get(payment_id)
		if not qs:
			return
		qs.discard(q)
		if not qs:
			self._payment_to_queues.pop(payment_id, None)

	def subscriber_count(self, payment_id: str) -> int:
		return len(self._payment_to_queues.get(payment_id, ()))

	def publish(self, payment_id: str, event: Dict[str, Any]) -> None:
		message = json.dumps(event)
		for q in list(self._payment_to_queues.get(payment_id, set())):
			q.put_nowait(message)
