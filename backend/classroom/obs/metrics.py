"""Central registry for Prometheus metrics used across the classroom sync core."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

SOCKET_CLIENTS = Gauge(
	"classroom_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"classroom_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

ROOMS_ACTIVE = Gauge(
	"classroom_rooms_active",
	"Lesson rooms currently held in memory",
)

ZONE_MERGES = Counter(
	"classroom_zone_merges_total",
	"Zone actions merged into room state",
	["activity_type", "action"],
)

FRAMES_REJECTED = Counter(
	"classroom_frames_rejected_total",
	"Inbound frames rejected before touching room state",
	["code"],
)

HISTORY_DUMP_ENTRIES = Histogram(
	"classroom_history_dump_entries",
	"Session log entries sent per history_dump",
	buckets=(0, 10, 50, 100, 250, 500, 1000, 2500, 5000),
)

SNAPSHOT_WRITE_FAILURES = Counter(
	"classroom_snapshot_write_failures_total",
	"Local resilience snapshot writes that were swallowed",
	["reason"],
)

REDIS_UP = Gauge(
	"classroom_redis_up",
	"Redis availability as seen by health checks",
)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def set_rooms_active(count: int) -> None:
	ROOMS_ACTIVE.set(float(count))


def zone_merged(activity_type: str, action: str) -> None:
	ZONE_MERGES.labels(activity_type=activity_type, action=action).inc()


def frame_rejected(code: str) -> None:
	FRAMES_REJECTED.labels(code=code).inc()


def history_dump_sent(entries: int) -> None:
	HISTORY_DUMP_ENTRIES.observe(float(entries))


def snapshot_write_failed(reason: str) -> None:
	SNAPSHOT_WRITE_FAILURES.labels(reason=reason).inc()


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1.0 if ok else 0.0)
