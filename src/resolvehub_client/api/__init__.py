from .client import BackendClient
from .models import AssistantQueryRequest

__all__ = [
    "BackendClient",
    "AssistantQueryRequest",
]
