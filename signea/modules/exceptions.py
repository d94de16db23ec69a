"""
Exceptions Module - SIGNEA Event Management Core

Error taxonomy shared by the PIX codec, the GPS validator and the session
lifecycle manager. Every error carries a human-readable message, a
machine-readable code and optional details so the HTTP layer can turn it
into a JSON body without knowing the concrete type.

An invalid session is never raised: it is a state transition handled by
the session manager.
"""

from typing import Any, Dict, Optional


class SigneaError(Exception):
    """Base exception for all SIGNEA core errors."""

    def __init__(self, message: str, code: str = 'SIGNEA_ERROR',
                 details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details,
        }


class ValidationError(SigneaError):
    """Raised when input to a pure computation violates its contract."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code='VALIDATION_ERROR', details=details)


class GeolocationError(SigneaError):
    """Raised when the device location cannot be acquired."""

    PERMISSION_DENIED = 'PERMISSION_DENIED'
    POSITION_UNAVAILABLE = 'POSITION_UNAVAILABLE'
    TIMEOUT = 'TIMEOUT'

    MESSAGES = {
        PERMISSION_DENIED: 'Permissão de localização negada. Ative o GPS e permita o acesso.',
        POSITION_UNAVAILABLE: 'Localização indisponível. Verifique se o GPS está ativado.',
        TIMEOUT: 'Tempo esgotado ao obter localização. Tente novamente.',
    }

    def __init__(self, code: str, message: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        if code not in self.MESSAGES:
            raise ValueError(f"Unknown geolocation error code: {code}")
        super().__init__(message or self.MESSAGES[code], code=code, details=details)


class AuthenticationError(SigneaError):
    """Raised when credentials are rejected or the account cannot sign in."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code='AUTHENTICATION_ERROR', details=details)


class NetworkError(SigneaError):
    """Raised by provider and store adapters when the backend cannot be reached."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code='NETWORK_ERROR', details=details)
