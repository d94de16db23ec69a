"""
E-mail Validation Module - SIGNEA Event Management Core

Only institutional e-mail addresses may register. The domain decides
which menus a user sees: staff addresses get the organizer and campus
areas, student addresses only the participant area.
"""

from typing import Dict, Iterable, Optional

STUDENT_DOMAIN = '@aluno.iffar.edu.br'
STAFF_DOMAIN = '@iffarroupilha.edu.br'

VALID_EMAIL_DOMAINS = (STUDENT_DOMAIN, STAFF_DOMAIN)


def is_valid_institutional_email(email: str,
                                 domains: Iterable[str] = VALID_EMAIL_DOMAINS) -> bool:
    """
    Check whether an e-mail belongs to one of the institutional domains.

    The comparison ignores case and surrounding whitespace. An address made
    only of the domain, with no local part, is rejected.

    Args:
        email (str): Address to check
        domains (Iterable[str]): Accepted domains, each starting with '@'

    Returns:
        bool: True if the address is institutional
    """
    if not email or not isinstance(email, str):
        return False

    normalized = email.strip().lower()

    for domain in domains:
        domain = domain.lower()
        if normalized.endswith(domain) and len(normalized) > len(domain):
            return True

    return False


def get_email_validation_error_message(domains: Iterable[str] = VALID_EMAIL_DOMAINS) -> str:
    """User-facing message listing the accepted domains."""
    return f"Apenas e-mails institucionais ({' ou '.join(domains)}) são permitidos"


def get_email_domain(email: str) -> Optional[str]:
    """
    Extract the domain of an e-mail, including the '@'.

    Returns:
        str: Lower-cased domain, or None if the address has no '@'
    """
    if not email or not isinstance(email, str):
        return None

    at_index = email.rfind('@')
    if at_index == -1:
        return None

    return email[at_index:].lower()


def get_menu_permissions(email: str,
                         full_access_emails: Iterable[str] = ()) -> Dict[str, bool]:
    """
    Decide which application areas a user may open.

    Args:
        email (str): Signed-in user's e-mail
        full_access_emails (Iterable[str]): Addresses granted every area

    Returns:
        Dict[str, bool]: Flags for the 'usuario', 'organizador' and 'campus' areas
    """
    if not email:
        return {'usuario': False, 'organizador': False, 'campus': False}

    email_lower = email.strip().lower()

    if email_lower in {address.lower() for address in full_access_emails}:
        return {'usuario': True, 'organizador': True, 'campus': True}

    if email_lower.endswith(STAFF_DOMAIN):
        return {'usuario': True, 'organizador': True, 'campus': True}

    if email_lower.endswith(STUDENT_DOMAIN):
        return {'usuario': True, 'organizador': False, 'campus': False}

    return {'usuario': False, 'organizador': False, 'campus': False}
