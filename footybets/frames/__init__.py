"""Frame navigation: screens, routing table and dispatch."""

from footybets.frames.routing import ROUTES, GoTo, Invoke, dispatch, resolve
from footybets.frames.screens import FrameContext, FramePayload, Screen

__all__ = ["ROUTES", "FrameContext", "FramePayload", "GoTo", "Invoke", "Screen", "dispatch", "resolve"]
