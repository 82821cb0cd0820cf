"""FastAPI endpoints for Avatar Studio"""

from .studio_api import initialize_app
from .models import CreateSessionRequest, FieldsUpdateRequest, ErrorResponse

__all__ = [
    'initialize_app',
    'CreateSessionRequest',
    'FieldsUpdateRequest',
    'ErrorResponse'
]
