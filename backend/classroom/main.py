"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classroom.api import lessons, ops
from classroom.api.errors import install_error_handlers
from classroom.api.middleware_request_id import RequestIdMiddleware
from classroom.domain.lessons.sockets import LessonNamespace
from classroom.domain.lessons.store import registry
from classroom.obs import init as obs_init
from classroom.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	try:
		yield
	finally:
		# Rooms live only as long as the process; nothing is persisted.
		await registry.clear()


app = FastAPI(title="Classroom Sync Core", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	if settings.is_dev():
		allow_origins = [
			"http://localhost:3000",
			"http://127.0.0.1:3000",
			"http://localhost:5173",
			"http://127.0.0.1:5173",
		]
	else:
		allow_origins = [origin for origin in allow_origins if origin != "*"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
lesson_namespace = LessonNamespace(registry)
sio.register_namespace(lesson_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

# Ensure every request carries an X-Request-Id and make it available on request.state
app.add_middleware(RequestIdMiddleware)

app.include_router(ops.router)
app.include_router(lessons.router)
