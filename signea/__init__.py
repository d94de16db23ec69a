# SIGNEA - App Package
"""
Core package of the SIGNEA event management application.
Contains the PIX codec, the GPS proximity validator and the session
lifecycle manager, plus the collaborators they are wired to.
"""

__version__ = "1.0.0"
__description__ = "PIX payloads, GPS attendance validation and session lifecycle for SIGNEA"

from .modules.pix_codec import PixGenerator
from .modules.gps_validator import GeoPoint
from .modules.session_manager import SessionManager
from .modules.session_guard import SessionGuard
from .modules.auth_provider import DatabaseAuthProvider
from .modules.database_manager import DatabaseManager
from .modules.notifier import Notifier

__all__ = [
    'PixGenerator',
    'GeoPoint',
    'SessionManager',
    'SessionGuard',
    'DatabaseAuthProvider',
    'DatabaseManager',
    'Notifier'
]
