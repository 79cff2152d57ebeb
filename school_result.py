"""
School Result Desk

Flask backend that serves report cards and provisional certificates from the
school's results workbook, plus the admin desk that issues certificates.
"""

import logging
import os
import re
import secrets
from datetime import datetime
from functools import wraps

from dotenv import load_dotenv
from flask import (
    Flask, current_app, jsonify, redirect, render_template, request,
    send_from_directory, session, url_for,
)
from flask_cors import CORS
from flask_wtf import FlaskForm
from flask_wtf.csrf import CSRFError, CSRFProtect
from wtforms import PasswordField, StringField, validators

from admin_auth import (
    MIN_PASSWORD_LENGTH, AdminCredentialStore, OtpStore, SessionStore,
    normalize_email, send_email,
)
from errors import AuthError, NotFoundError, ResultError, ValidationError
from marks import TERM_KEYS, aggregate_result, certificate_division, first_present
from records import CERTIFICATE_HEADER, TERMS, RecordStore

load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

app = Flask(__name__, template_folder='templates', static_folder='public', static_url_path='')
app.json.sort_keys = False

ALLOW_INSECURE_DEFAULTS = os.environ.get('ALLOW_INSECURE_DEFAULTS', '').strip().lower() in ('1', 'true', 'yes')
secret_key = os.environ.get('SECRET_KEY')
if not secret_key:
    if ALLOW_INSECURE_DEFAULTS:
        secret_key = 'dev-secret-key-change-me'
    else:
        raise RuntimeError("SECRET_KEY is required in production. Set SECRET_KEY or enable ALLOW_INSECURE_DEFAULTS for local development.")
if not ALLOW_INSECURE_DEFAULTS and len(secret_key) < 32:
    raise RuntimeError("SECRET_KEY is too short. Use at least 32 characters in production.")
app.secret_key = secret_key
app.config['WTF_CSRF_TIME_LIMIT'] = None
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'

csrf = CSRFProtect(app)

RESULTS_WORKBOOK = os.environ.get('RESULTS_WORKBOOK', os.path.join(BASE_DIR, 'results.xlsx')).strip()
ADMIN_CREDENTIALS_FILE = os.environ.get('ADMIN_CREDENTIALS_FILE', os.path.join(BASE_DIR, 'admin.json')).strip()
ADMIN_DEFAULT_EMAIL = os.environ.get('ADMIN_DEFAULT_EMAIL', 'admin@starpublicschool.in').strip()
ADMIN_DEFAULT_PASSWORD = os.environ.get('ADMIN_DEFAULT_PASSWORD', 'admin@123')
SCHOOL_NAME = os.environ.get('SCHOOL_NAME', 'STAR PUBLIC SCHOOL').strip()
SCHOOL_ADDRESS = os.environ.get('SCHOOL_ADDRESS', 'Main road Mathia Bazar, Meghwal').strip()
PROVISIONAL_TERM = os.environ.get('PROVISIONAL_TERM', 'annual').strip().lower()
if PROVISIONAL_TERM not in TERMS:
    raise RuntimeError(f"PROVISIONAL_TERM must be one of {', '.join(TERMS)}.")
PROVISIONAL_YEAR = os.environ.get('PROVISIONAL_YEAR', 'Annual Exam 2025').strip()
OTP_TTL_MINUTES = int(os.environ.get('OTP_TTL_MINUTES', 5))
CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]
SMTP_SETTINGS = {
    'host': os.environ.get('SMTP_HOST'),
    'port': os.environ.get('SMTP_PORT', '587'),
    'user': os.environ.get('SMTP_USER'),
    'password': os.environ.get('SMTP_PASSWORD'),
    'from': os.environ.get('SMTP_FROM'),
}
CERTIFICATE_PREFIX = '000'

# Short class codes used on the certificate desk.
CLASS_ALIASES = {
    'NURA': 'NURSERY-A',
    'NURB': 'NURSERY-B',
    'NURC': 'NURSERY-C',
    'LKGA': 'L.K.G-A',
    'LKGB': 'L.K.G-B',
    'UKGA': 'U.K.G-A',
    'UKGB': 'U.K.G-B',
}

CORS(app, resources={r"/result": {"origins": CORS_ORIGINS}})

# Set up logging
logging.basicConfig(filename=os.environ.get('LOG_FILE', 'app.log'), level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
if ALLOW_INSECURE_DEFAULTS:
    logging.warning("ALLOW_INSECURE_DEFAULTS is enabled. Development-only fallbacks may be active.")

app.extensions['record_store'] = RecordStore(RESULTS_WORKBOOK)
app.extensions['admin_store'] = AdminCredentialStore(ADMIN_CREDENTIALS_FILE, ADMIN_DEFAULT_EMAIL, ADMIN_DEFAULT_PASSWORD)
app.extensions['otp_store'] = OtpStore(ttl_minutes=OTP_TTL_MINUTES)
app.extensions['session_store'] = SessionStore()

app.extensions['admin_store'].ensure()
if app.extensions['admin_store'].verify(ADMIN_DEFAULT_EMAIL, ADMIN_DEFAULT_PASSWORD):
    logging.warning("Admin account still uses the default password. Reset it from the admin login page.")


class AdminLoginForm(FlaskForm):
    email = StringField('Email', [validators.DataRequired(), validators.Length(max=254)])
    password = PasswordField('Password', [validators.DataRequired()])


def get_store(name):
    return current_app.extensions[name]


def is_valid_email(value):
    """Simple email validation."""
    email = (value or '').strip()
    return bool(re.fullmatch(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$', email))


def canonicalize_classname(value):
    """Class key without punctuation (e.g. 'L.K.G-A' -> 'LKGA')."""
    return re.sub(r'[^A-Za-z0-9]+', '', (value or '').strip()).upper()


def canonical_class(value):
    """Expand desk abbreviations (NURA -> NURSERY-A); otherwise uppercase as typed."""
    return CLASS_ALIASES.get(canonicalize_classname(value), (value or '').strip().upper())


def error_response(message):
    return jsonify({'error': message})


def is_admin():
    return get_store('session_store').is_admin(session.get('sid'))


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not is_admin():
            return redirect(url_for('admin_login'))
        return view(*args, **kwargs)
    return wrapper


def parse_result_query(args):
    """Validate /result query parameters; returns (class, roll, terminal)."""
    class_name = (args.get('class') or '').strip().upper()
    roll = (args.get('roll') or '').strip()
    terminal = (args.get('terminal') or '').strip().lower()
    if not class_name or not roll:
        raise ValidationError('Class and Roll number are required.')
    if not terminal:
        raise ValidationError('Please select terminal.')
    if terminal not in TERMS:
        raise ValidationError('Invalid terminal selected.')
    return class_name, roll, terminal


def build_result_payload(class_name, roll, terminal, records):
    summary = aggregate_result(records, class_name, terminal)
    payload = {
        'schoolName': SCHOOL_NAME,
        'schoolAddress': SCHOOL_ADDRESS,
        'studentName': first_present(records, 'name'),
        'fatherName': first_present(records, 'father_name'),
        'class': class_name,
        'roll': roll,
        'terminal': terminal,
        'marks': summary['marks'],
        'totals': summary['totals'],
        'totalFullMarks': summary['totalFullMarks'],
    }
    for _, key, _ in TERM_KEYS:
        payload['percentage' + key.capitalize()] = summary['percentages'][key]
    payload['division'] = summary['division']
    payload['description'] = summary['description']
    return payload


def generate_certificate_number(existing):
    """'000' followed by six random digits, not already in ``existing``."""
    while True:
        number = f"{CERTIFICATE_PREFIX}{secrets.randbelow(10 ** 6):06d}"
        if number not in existing:
            return number


def ensure_certificate_number(record_store, term, class_name, roll):
    """Return the student's record, assigning and saving a PC No when missing."""
    with record_store.locked():
        record = record_store.lookup(term, class_name, roll)
        if record is None:
            raise NotFoundError('Student not found.')
        if record.certificate_no:
            return record
        number = generate_certificate_number(record_store.certificate_numbers(term))
        record.set_field('certificate_no', number, CERTIFICATE_HEADER)
        record_store.persist(term, record)
    logging.info("Assigned certificate number %s to class %s roll %s", number, class_name, roll)
    return record


def start_admin_session(email):
    store = get_store('session_store')
    old_sid = session.get('sid')
    if old_sid:
        store.delete(old_sid)
    session.clear()
    session['sid'] = store.create(admin=True, email=normalize_email(email))


# ==================== ROUTES ====================

@app.errorhandler(CSRFError)
def csrf_error(error):
    """Handle CSRF token errors."""
    form = AdminLoginForm(formdata=None)
    return render_template('admin/login.html', form=form,
                           error='Your session has expired. Please login again.')


@app.route('/')
def home():
    return send_from_directory(app.static_folder, 'index.html')


@app.route('/result')
def result():
    """Report card JSON for one student; errors come back as {error}."""
    try:
        class_name, roll, terminal = parse_result_query(request.args)
        records = get_store('record_store').lookup_all(class_name, roll)
        payload = build_result_payload(class_name, roll, terminal, records)
    except ResultError as exc:
        return error_response(exc.message)
    return jsonify(payload)


@app.route('/provisional')
def provisional():
    """Provisional certificate fields; assigns a PC No on first issue."""
    if not is_admin():
        return error_response('Admin login required.')
    class_name = canonical_class(request.args.get('class'))
    roll = (request.args.get('roll') or '').strip()
    if not class_name or not roll:
        return error_response('Class and Roll required.')

    try:
        record = ensure_certificate_number(get_store('record_store'), PROVISIONAL_TERM, class_name, roll)
    except ResultError as exc:
        return error_response(exc.message)
    except (RuntimeError, OSError) as exc:
        logging.error("Could not save certificate number for class %s roll %s: %s", class_name, roll, exc)
        return error_response('Could not save the certificate number. Please try again.')

    return jsonify({
        'studentName': record.name,
        'fatherName': record.father_name,
        'schoolName': record.field('school_name') or SCHOOL_NAME,
        'class': record.field('roll_code') or record.class_name or class_name,
        'rollNo': record.roll,
        'year': record.field('year') or PROVISIONAL_YEAR,
        'division': certificate_division(record, class_name),
        'date': datetime.now().strftime('%d/%m/%Y'),
        'pcNo': record.certificate_no,
    })


@app.route('/provisional.html')
@admin_required
def provisional_page():
    return send_from_directory(app.static_folder, 'provisional.html')


# ==================== ADMIN ROUTES ====================

@app.route('/admin')
def admin_home():
    if is_admin():
        return redirect(url_for('admin_dashboard'))
    return redirect(url_for('admin_login'))


@app.route('/admin/login', methods=['GET', 'POST'])
def admin_login():
    form = AdminLoginForm()
    if request.method == 'GET':
        if is_admin():
            return redirect(url_for('admin_dashboard'))
        return render_template('admin/login.html', form=form)

    if not form.validate_on_submit():
        return render_template('admin/login.html', form=form, error='Please enter email and password.')

    email = form.email.data.strip()
    if get_store('admin_store').verify(email, form.password.data):
        start_admin_session(email)
        logging.info("Admin logged in: %s", normalize_email(email))
        return redirect(url_for('provisional_page'))

    logging.warning("Failed admin login for %s from %s", normalize_email(email), request.remote_addr)
    return render_template('admin/login.html', form=form, error='Invalid email or password.')


@app.route('/admin/logout')
def admin_logout():
    sid = session.get('sid')
    if sid:
        get_store('session_store').delete(sid)
        logging.info("Admin logged out")
    session.clear()
    return redirect(url_for('admin_login'))


@app.route('/admin/dashboard')
@admin_required
def admin_dashboard():
    return render_template('admin/dashboard.html', school_name=SCHOOL_NAME)


def json_payload():
    """Request body as a dict; raises ValidationError for anything else."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object.')
    return payload


@app.route('/admin/request-otp', methods=['POST'])
@csrf.exempt
def admin_request_otp():
    """Email a one-time code for resetting the admin password."""
    try:
        payload = json_payload()
    except ResultError as exc:
        return error_response(exc.message)
    email = normalize_email(payload.get('email'))
    if not email:
        return error_response('Email is required.')
    if not is_valid_email(email):
        return error_response('Please enter a valid email address.')
    if not get_store('admin_store').is_admin_email(email):
        logging.warning("OTP requested for unknown email %s", email)
        return error_response('Email is not registered.')

    otp_store = get_store('otp_store')
    code = otp_store.issue(email)
    ok, message = send_email(
        email,
        f"{SCHOOL_NAME} admin password reset",
        f"Your password reset code is {code}. It is valid for {OTP_TTL_MINUTES} minutes.",
        SMTP_SETTINGS,
    )
    if not ok:
        otp_store.consume(email)
        logging.warning("Failed to send OTP to %s: %s", email, message)
        return error_response('Failed to send OTP. Please try again later.')

    logging.info("OTP issued for %s", email)
    return jsonify({'success': True, 'message': 'OTP sent to your email.'})


@app.route('/admin/reset-password', methods=['POST'])
@csrf.exempt
def admin_reset_password():
    """Set a new admin password after checking the emailed code."""
    try:
        payload = json_payload()
        email = normalize_email(payload.get('email'))
        otp = str(payload.get('otp') or '').strip()
        new_password = str(payload.get('newPassword') or '')
        if not email or not otp or not new_password:
            raise ValidationError('Email, OTP and new password are required.')
        if not get_store('admin_store').is_admin_email(email):
            raise AuthError('Email is not registered.')
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        get_store('otp_store').redeem(email, otp)
    except ResultError as exc:
        return error_response(exc.message)

    get_store('admin_store').set_password(new_password)
    logging.info("Admin password reset via OTP for %s", email)
    return jsonify({'success': True, 'message': 'Password reset successfully. Please login.'})


# ==================== MAIN ====================

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', '0').strip().lower() in ('1', 'true', 'yes')
    app.run(host='0.0.0.0', port=port, debug=debug)
