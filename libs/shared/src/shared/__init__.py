from .schemas import ErrorResponse
from .request_context import RequestIDMiddleware

__all__ = ["ErrorResponse", "RequestIDMiddleware"]
