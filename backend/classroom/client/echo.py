"""Echo suppression for zone updates.

The server rebroadcasts every merged zone, sender included. Each client keeps
one serialized baseline per sync concern and drops incoming values equal to
it, so one concern's echo never masks a genuine change to another.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Set

logger = logging.getLogger(__name__)

CONCERNS = ("shapes", "matches", "resultsRevealed", "answers", "submitted", "page")


def serialize(value: Any) -> str:
	return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class EchoGuard:
	"""Last value this client sent or adopted, per concern."""

	def __init__(self) -> None:
		self._baselines: Dict[str, str] = {}

	def record(self, concern: str, value: Any) -> None:
		"""Remember a value as the current baseline for `concern`."""
		try:
			self._baselines[concern] = serialize(value)
		except (TypeError, ValueError):
			logger.debug("echo baseline not serializable concern=%s", concern, exc_info=True)
			self._baselines.pop(concern, None)

	def is_echo(self, concern: str, value: Any) -> bool:
		baseline = self._baselines.get(concern)
		if baseline is None:
			return False
		try:
			return serialize(value) == baseline
		except (TypeError, ValueError):
			logger.debug("echo comparison failed concern=%s", concern, exc_info=True)
			return False

	def changes(self, state: Mapping[str, Any], concerns: Iterable[str]) -> Dict[str, Any]:
		"""Return the concerns in `state` that differ from their baselines."""
		return {
			concern: state[concern]
			for concern in concerns
			if concern in state and not self.is_echo(concern, state[concern])
		}

	def baseline(self, concern: str) -> Optional[str]:
		return self._baselines.get(concern)

	def reset(self, concern: Optional[str] = None) -> None:
		if concern is None:
			self._baselines.clear()
		else:
			self._baselines.pop(concern, None)


class LiveGate:
	"""Concerns with a local operation in progress.

	While a concern is live, remote values for it are held back so the user's
	own input is not rewound. Other concerns are unaffected.
	"""

	def __init__(self) -> None:
		self._live: Set[str] = set()

	def begin(self, concern: str) -> None:
		self._live.add(concern)

	def end(self, concern: str) -> None:
		self._live.discard(concern)

	def is_live(self, concern: str) -> bool:
		return concern in self._live

	def active(self) -> frozenset[str]:
		return frozenset(self._live)

	def clear(self) -> None:
		self._live.clear()
