"""
Request dependencies.

Process-scoped services are created in the application lifespan and kept
on ``app.state``; handlers receive them through these dependencies.
"""

from fastapi import Request
from fastapi.requests import HTTPConnection

from alcovia.intervention.state_machine import InterventionController
from alcovia.notifications.dispatcher import NotificationDispatcher


def get_controller(request: Request) -> InterventionController:
    controller: InterventionController = request.app.state.controller
    return controller


def get_dispatcher(connection: HTTPConnection) -> NotificationDispatcher:
    """Dispatcher for both HTTP requests and push sockets."""
    dispatcher: NotificationDispatcher = connection.app.state.dispatcher
    return dispatcher
