from starlette.status import (HTTP_400_BAD_REQUEST, HTTP_401_UNAUTHORIZED,
                              HTTP_403_FORBIDDEN, HTTP_404_NOT_FOUND,
                              HTTP_409_CONFLICT, HTTP_503_SERVICE_UNAVAILABLE)


class AuctionError(Exception):
    code = 'error'
    status_code = HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str = None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def as_dict(self):
        return {'error': self.code, 'detail': self.message,
                'retryable': self.retryable}


class NotFound(AuctionError):
    code = 'not_found'
    status_code = HTTP_404_NOT_FOUND


class Unauthorized(AuctionError):
    code = 'unauthorized'
    status_code = HTTP_401_UNAUTHORIZED


class Forbidden(AuctionError):
    """Authenticated, but not the owner of what is being changed."""
    code = 'forbidden'
    status_code = HTTP_403_FORBIDDEN


class ValidationFailed(AuctionError):
    code = 'validation_failed'
    status_code = HTTP_400_BAD_REQUEST


class WindowClosed(AuctionError):
    code = 'window_closed'
    status_code = HTTP_409_CONFLICT


class BidTooLow(AuctionError):
    code = 'bid_too_low'
    status_code = HTTP_409_CONFLICT


class PersistenceFailure(AuctionError):
    code = 'persistence_failure'
    status_code = HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
