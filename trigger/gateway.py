import logging
import threading

from core.contracts import TriggerEvent
from transport.base import TriggerPublisher
from utils.clock import now_ns

L = logging.getLogger("trigger_sync.gateway")

_epoch_lock = threading.Lock()
_last_epoch = 0


def _next_epoch() -> int:
	"""Wall-clock ns, strictly increasing within this process."""
	global _last_epoch
	with _epoch_lock:
		_last_epoch = max(now_ns(), _last_epoch + 1)
		return _last_epoch


class TriggerGateway:
	"""Stamps and publishes triggers; sole owner of the global trigger id counter."""

	def __init__(self, publisher: TriggerPublisher):
		self.publisher = publisher
		self._lock = threading.Lock()
		self._seq = 0
		# Distinguishes this id sequence from one a restarted publisher will start.
		self.epoch = _next_epoch()
		self.published_count = 0
		self.undelivered_count = 0

	def report_trigger(
		self, source: str = "TRIGGER", hardware_timestamp_ns: int | None = None
	) -> TriggerEvent:
		# Stamp before taking the lock: the hardware time is the interrupt instant.
		hw_ts = hardware_timestamp_ns if hardware_timestamp_ns is not None else now_ns()
		with self._lock:
			self._seq += 1
			event = TriggerEvent(
				trigger_id=self._seq,
				hardware_timestamp_ns=hw_ts,
				publish_timestamp_ns=now_ns(),
				publisher_epoch=self.epoch,
			)
			# Publishing under the lock keeps wire order equal to id order.
			delivered = self.publisher.publish(event)
			self.published_count += 1
			if delivered == 0:
				self.undelivered_count += 1
		L.info(
			"Published trigger: id=%d src=%s hw_ts=%d ipc_latency=%dns subscribers=%d",
			event.trigger_id,
			source,
			event.hardware_timestamp_ns,
			event.publish_delay_ns,
			delivered,
		)
		return event

	@property
	def last_trigger_id(self) -> int:
		with self._lock:
			return self._seq


__all__ = ["TriggerGateway"]
