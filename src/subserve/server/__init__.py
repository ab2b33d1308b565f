"""Local HTTP serving of subdomain content."""

from subserve.server.app import ContentServer, create_app
from subserve.server.responder import ContentResponder, not_found

__all__ = ["ContentServer", "ContentResponder", "create_app", "not_found"]
