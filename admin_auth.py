"""
Admin account, OTP and session storage for the certificate desk.

The credential record is a small JSON file; OTPs and login sessions live in
process memory and are lost on restart.
"""

import json
import logging
import os
import secrets
import smtplib
import threading
from datetime import datetime, timedelta
from email.message import EmailMessage
from tempfile import NamedTemporaryFile

from werkzeug.security import check_password_hash, generate_password_hash

from errors import AuthError

OTP_LENGTH = 6
MIN_PASSWORD_LENGTH = 6


def hash_password(password):
    """Hash a password."""
    return generate_password_hash(password)


def check_password(hashed, password):
    """Verify a password."""
    return check_password_hash(hashed, password)


def normalize_email(value):
    return str(value or '').strip().lower()


class AdminCredentialStore:
    """The single admin account, persisted as {email, password_hash}."""

    def __init__(self, path, default_email, default_password):
        self.path = path
        self.default_email = default_email
        self.default_password = default_password
        self._lock = threading.Lock()

    def ensure(self):
        """Create the account with the default credential if the file is missing."""
        with self._lock:
            if os.path.exists(self.path):
                return self._read()
            account = {
                'email': normalize_email(self.default_email),
                'password_hash': hash_password(self.default_password),
            }
            self._write(account)
        logging.info("Admin account created with default credential for %s", account['email'])
        return account

    def _read(self):
        try:
            with open(self.path, encoding='utf-8') as fh:
                account = json.load(fh)
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"Admin credential file {self.path} is unreadable: {exc}") from exc
        if not account.get('email') or not account.get('password_hash'):
            raise RuntimeError(f"Admin credential file {self.path} is missing email or password_hash.")
        return account

    def _write(self, account):
        directory = os.path.dirname(os.path.abspath(self.path))
        with NamedTemporaryFile('w', encoding='utf-8', dir=directory, delete=False, suffix='.tmp') as fh:
            json.dump(account, fh, indent=2)
            tmp_path = fh.name
        os.replace(tmp_path, self.path)

    def load(self):
        if not os.path.exists(self.path):
            return self.ensure()
        with self._lock:
            return self._read()

    def is_admin_email(self, email):
        return normalize_email(email) == normalize_email(self.load()['email'])

    def verify(self, email, password):
        account = self.load()
        if normalize_email(email) != normalize_email(account['email']):
            return False
        return check_password(account['password_hash'], password or '')

    def set_password(self, new_password):
        self.load()
        with self._lock:
            account = self._read()
            account['password_hash'] = hash_password(new_password)
            self._write(account)
        logging.info("Admin password updated for %s", account['email'])


class MemoryStore:
    """Thread-safe in-memory key/value store."""

    def __init__(self):
        self._items = {}
        self._lock = threading.Lock()

    def get(self, key, default=None):
        with self._lock:
            return self._items.get(key, default)

    def set(self, key, value):
        with self._lock:
            self._items[key] = value

    def delete(self, key):
        with self._lock:
            self._items.pop(key, None)


class OtpStore(MemoryStore):
    """Pending password-reset codes keyed by email."""

    def __init__(self, ttl_minutes=5, clock=datetime.now):
        super().__init__()
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock

    def issue(self, email):
        """Create a fresh code for the email, replacing any pending one."""
        code = f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"
        self.set(normalize_email(email), {'code': code, 'expires_at': self.clock() + self.ttl})
        return code

    def redeem(self, email, code):
        """Check and delete a code in one step so it can only be used once."""
        key = normalize_email(email)
        with self._lock:
            entry = self._items.get(key)
            if not entry:
                raise AuthError('Invalid or expired OTP.')
            if self.clock() > entry['expires_at']:
                del self._items[key]
                raise AuthError('OTP has expired. Please request a new one.')
            if not secrets.compare_digest(entry['code'], str(code or '').strip()):
                raise AuthError('Invalid OTP.')
            del self._items[key]

    def consume(self, email):
        self.delete(normalize_email(email))


class SessionStore(MemoryStore):
    """Server-side login sessions; the browser only holds the session id."""

    def create(self, **data):
        session_id = secrets.token_urlsafe(24)
        self.set(session_id, dict(data))
        return session_id

    def is_admin(self, session_id):
        if not session_id:
            return False
        return bool((self.get(session_id) or {}).get('admin'))


def send_email(to_email, subject, body, smtp_settings):
    """Send a plain-text email. Returns (ok, message)."""
    smtp_host = smtp_settings.get('host')
    smtp_port = int(smtp_settings.get('port') or 587)
    smtp_user = smtp_settings.get('user')
    smtp_password = smtp_settings.get('password')
    smtp_from = smtp_settings.get('from') or smtp_user or ''

    if not smtp_host or not smtp_user or not smtp_password or not smtp_from:
        return False, "SMTP is not configured. Set SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM."

    msg = EmailMessage()
    msg['Subject'] = subject
    msg['From'] = smtp_from
    msg['To'] = to_email
    msg.set_content(body)

    try:
        with smtplib.SMTP(smtp_host, smtp_port, timeout=10) as server:
            server.starttls()
            server.login(smtp_user, smtp_password)
            server.send_message(msg)
        return True, "Email sent successfully."
    except (smtplib.SMTPException, OSError) as exc:
        return False, f"Email send failed: {exc}"
