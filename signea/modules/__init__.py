# SIGNEA - Modules Package
"""
Core modules of the SIGNEA event management application.
"""

__version__ = "1.0.0"
__description__ = "Core modules for SIGNEA"

# Module descriptions
MODULES = {
    'pix_codec': 'PIX BR Code payload generation and QR rendering',
    'gps_validator': 'GPS proximity validation for check-in',
    'session_manager': 'Session lifecycle and activity monitoring',
    'session_guard': 'Route guard for protected areas',
    'auth_provider': 'Authentication provider interface and database implementation',
    'session_store': 'Local and remote session storage',
    'database_manager': 'Database operations and schema management',
    'email_validation': 'Institutional e-mail validation and menu permissions',
    'notifier': 'User-facing notifications',
    'exceptions': 'Error taxonomy'
}

def get_module_info():
    """Get information about available modules"""
    return MODULES
