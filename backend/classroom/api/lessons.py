"""HTTP endpoints around live lesson rooms: socket tickets and an ops view."""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from classroom.api.ops import require_admin
from classroom.domain.lessons import sockets
from classroom.domain.lessons.schemas import ParticipantSummary, RoomStateView
from classroom.domain.lessons.store import registry
from classroom.infra.auth import AuthenticatedUser, get_current_user
from classroom.settings import settings

router = APIRouter(prefix="/lessons", tags=["lessons"])


class SocketTicketResponse(BaseModel):
	ticket: str
	expires_in: int


@router.post("/{lesson_id}/socket-ticket", response_model=SocketTicketResponse)
async def create_socket_ticket(
	lesson_id: str,
	user: AuthenticatedUser = Depends(get_current_user),
) -> SocketTicketResponse:
	ticket = await sockets.issue_ticket(user.id, user.role, lesson_id, name=user.display_name)
	return SocketTicketResponse(ticket=ticket, expires_in=settings.socket_ticket_ttl_seconds)


@router.get("/{lesson_id}/state", response_model=RoomStateView, dependencies=[Depends(require_admin)])
async def lesson_state(lesson_id: str) -> RoomStateView:
	if registry.get(lesson_id) is None:
		raise HTTPException(status.HTTP_404_NOT_FOUND, detail="room_not_found")
	async with registry.mutate(lesson_id) as room:
		return RoomStateView(
			lesson_id=room.lesson_id,
			lesson=room.lesson.to_dict() if room.lesson is not None else None,
			slide_index=room.slide_index,
			zone_activity_type=room.zone.get("activity_type"),  # type: ignore[arg-type]
			zone_keys=sorted(str(key) for key in room.zone.keys()),
			participants=[ParticipantSummary(**item) for item in room.roster()],
			log_entries=len(room.log),
			media=room.media.to_payload(time.time()) if room.media is not None else None,
		)
