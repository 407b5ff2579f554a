"""Observability package bootstrap."""

from __future__ import annotations

from fastapi import FastAPI

from classroom.obs import logging as obs_logging
from classroom.settings import settings

_initialised = False


def init(app: FastAPI) -> None:
	global _initialised
	if _initialised:
		return
	if not settings.obs_enabled:
		return
	app.state.logger = obs_logging.configure_logging()
	_initialised = True


__all__ = ["init"]
