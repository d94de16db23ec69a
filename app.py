"""
SIGNEA Event Management - Main Application

This module is the HTTP entry point of the SIGNEA core. It builds the
database client once per application, wires the session lifecycle manager,
the PIX codec and the GPS validator into request handlers, and guards the
protected endpoints.

Features:
- Login, logout and session inspection
- Route guard with a sliding inactivity window
- PIX charge payload and QR code generation
- Attendance location validation
"""

import logging
import os
from datetime import timedelta
from functools import wraps

from flask import Flask, current_app, g, jsonify, redirect, request, session, url_for

from config import init_config
from signea.modules.auth_provider import DatabaseAuthProvider
from signea.modules.database_manager import DatabaseManager
from signea.modules.email_validation import get_menu_permissions
from signea.modules.exceptions import AuthenticationError, GeolocationError, ValidationError
from signea.modules.gps_validator import (
    ReportedLocationProvider,
    acquire_device_location,
    check_attendance_location,
)
from signea.modules.notifier import FlashNotifier
from signea.modules.pix_codec import PixGenerator, validate_pix_payload
from signea.modules.session_manager import SessionManager
from signea.modules.session_store import FlaskSessionStore, ShadowSessionStore

logger = logging.getLogger(__name__)


def create_app(config_name=None, **overrides):
    """
    Build the Flask application and its long-lived collaborators.

    Args:
        config_name (str): Key of the configuration class to load
        **overrides: Configuration values replacing the class defaults

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    init_config(app, config_name)
    app.config.update(overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format=app.config['LOG_FORMAT']
    )

    app.extensions['signea'] = {
        'db': DatabaseManager(app.config['DATABASE_PATH']),
        'pix': PixGenerator(
            app.config['PIX_PAYEE_KEY'],
            app.config['PIX_MERCHANT_NAME'],
            app.config['PIX_MERCHANT_CITY'],
            qr_width=app.config['PIX_QR_WIDTH']
        ),
    }

    register_routes(app)
    logger.info("SIGNEA application created")
    return app


def get_auth_provider():
    """Auth provider keeping its session in the current Flask session."""
    if 'auth_provider' not in g:
        g.auth_provider = DatabaseAuthProvider(
            current_app.extensions['signea']['db'],
            FlaskSessionStore(session),
            token_ttl=current_app.config['PROVIDER_TOKEN_TTL'],
            email_domains=current_app.config['INSTITUTIONAL_EMAIL_DOMAINS']
        )
    return g.auth_provider


def get_session_manager():
    """Session manager for the user of the current request."""
    if 'session_manager' not in g:
        config = current_app.config
        g.session_manager = SessionManager(
            get_auth_provider(),
            ShadowSessionStore(current_app.extensions['signea']['db']),
            FlaskSessionStore(session),
            inactivity_timeout=config['SESSION_INACTIVITY_TIMEOUT'],
            activity_debounce=timedelta(seconds=config['SESSION_ACTIVITY_DEBOUNCE_SECONDS']),
            settle_seconds=config['SESSION_ACTIVITY_SETTLE_SECONDS'],
            check_interval_seconds=config['SESSION_CHECK_INTERVAL_SECONDS']
        )
    return g.session_manager


def session_required(f):
    """Decorator to require a valid session for protected routes"""
    @wraps(f)
    async def decorated_function(*args, **kwargs):
        manager = get_session_manager()
        if not await manager.check_session():
            if request.path.startswith('/api/'):
                return jsonify({'success': False, 'message': 'Sessão inválida ou expirada'}), 401
            return redirect(url_for('login_page', next=request.path))
        return await f(*args, **kwargs)
    return decorated_function


def register_routes(app):
    """Attach the HTTP endpoints to an application."""

    @app.route('/health')
    def health():
        return jsonify({'status': 'healthy'})

    @app.route('/login', methods=['GET'])
    def login_page():
        """Login entry point the guard redirects to"""
        return jsonify({
            'message': 'Login required',
            'next': request.args.get('next', '/')
        }), 401

    @app.route('/api/register', methods=['POST'])
    def register():
        """Create an account with an institutional e-mail"""
        try:
            data = request.get_json(silent=True) or {}
            result = get_auth_provider().create_user(
                data.get('email', ''),
                data.get('full_name', '').strip(),
                data.get('password', '')
            )
            return jsonify(result), (201 if result['success'] else 400)

        except Exception as e:
            logger.error(f"Registration error: {str(e)}")
            return jsonify({
                'success': False,
                'message': 'An error occurred while creating the account'
            }), 500

    @app.route('/api/login', methods=['POST'])
    async def login():
        """Authenticate and open a session"""
        try:
            data = request.get_json(silent=True) or {}
            email = data.get('email', '').strip()
            password = data.get('password', '')

            if not email or not password:
                return jsonify({
                    'success': False,
                    'message': 'Informe e-mail e senha.'
                }), 400

            user_session = await get_session_manager().start_session(email, password)
            FlashNotifier().success('Login realizado com sucesso!')

            return jsonify({
                'success': True,
                'email': user_session.subject,
                'expires_at': user_session.expires_at.isoformat()
            })

        except AuthenticationError as e:
            return jsonify({'success': False, 'message': e.message}), 401
        except Exception as e:
            logger.error(f"Login error: {str(e)}")
            return jsonify({
                'success': False,
                'message': 'An error occurred during login'
            }), 500

    @app.route('/api/logout', methods=['POST'])
    async def logout():
        """Sign out; always succeeds"""
        await get_session_manager().logout()
        FlashNotifier().success('Logout realizado com sucesso!')
        return jsonify({'success': True})

    @app.route('/api/session')
    @session_required
    async def session_info():
        """Current session and menu permissions"""
        user_session = get_session_manager().session
        return jsonify({
            'email': user_session.subject,
            'source': user_session.source,
            'expires_at': user_session.expires_at.isoformat(),
            'last_activity_at': user_session.last_activity_at.isoformat(),
            'permissions': get_menu_permissions(
                user_session.subject,
                current_app.config['FULL_ACCESS_EMAILS']
            )
        })

    @app.route('/api/pix/charge', methods=['POST'])
    @session_required
    async def create_pix_charge():
        """Generate the PIX payload and QR code of a registration fee"""
        try:
            data = request.get_json(silent=True) or {}
            charge = current_app.extensions['signea']['pix'].create_charge(
                data.get('amount'),
                str(data.get('transaction_id', ''))
            )
            return jsonify({'success': True, **charge})

        except ValidationError as e:
            return jsonify({'success': False, **e.to_dict()}), 400
        except Exception as e:
            logger.error(f"PIX charge error: {str(e)}")
            return jsonify({
                'success': False,
                'message': 'An error occurred while generating the PIX charge'
            }), 500

    @app.route('/api/pix/validate', methods=['POST'])
    @session_required
    async def validate_pix():
        """Check the checksum of a PIX payload"""
        data = request.get_json(silent=True) or {}
        payload = data.get('payload', '') if isinstance(data, dict) else None
        if not isinstance(payload, str) or not payload:
            return jsonify({'valid': False})
        return jsonify({'valid': validate_pix_payload(payload)})

    @app.route('/api/attendance/location', methods=['POST'])
    @session_required
    async def validate_attendance_location():
        """Validate the participant position reported for a check-in"""
        notifier = FlashNotifier()
        try:
            data = request.get_json(silent=True) or {}
            event = data.get('event') or {}

            error_code = data.get('geolocation_error')
            if error_code is not None and error_code not in GeolocationError.MESSAGES:
                error_code = GeolocationError.POSITION_UNAVAILABLE

            provider = ReportedLocationProvider(
                data.get('latitude'),
                data.get('longitude'),
                data.get('accuracy', 0.0),
                error_code=error_code
            )
            location = await acquire_device_location(
                provider,
                timeout_ms=current_app.config['GEOLOCATION_TIMEOUT_MS']
            )

            event.setdefault('radius_meters', current_app.config['DEFAULT_VALIDATION_RADIUS_METERS'])
            result = check_attendance_location(event, location)
            if not result['valid']:
                notifier.error(result['message'])

            return jsonify({'success': True, **result})

        except GeolocationError as e:
            notifier.error(e.message)
            return jsonify({'success': False, **e.to_dict()}), 400
        except ValidationError as e:
            return jsonify({'success': False, **e.to_dict()}), 400
        except Exception as e:
            logger.error(f"Attendance location error: {str(e)}")
            return jsonify({
                'success': False,
                'message': 'An error occurred while validating the location'
            }), 500


if __name__ == '__main__':
    application = create_app()
    application.run(
        host=os.environ.get('HOST', '127.0.0.1'),
        port=int(os.environ.get('PORT', 5000)),
        debug=application.config['DEBUG']
    )
