import os

from dotenv import load_dotenv

from admin_auth import MIN_PASSWORD_LENGTH, AdminCredentialStore, normalize_email


def main():
    load_dotenv()
    credentials_file = (os.getenv("ADMIN_CREDENTIALS_FILE") or "admin.json").strip()
    email = (os.getenv("RESET_EMAIL") or "").strip()
    raw_password = os.getenv("RESET_PASSWORD") or ""

    if not email:
        raise RuntimeError("RESET_EMAIL is required.")
    if len(raw_password) < MIN_PASSWORD_LENGTH:
        raise RuntimeError(f"RESET_PASSWORD must be at least {MIN_PASSWORD_LENGTH} characters.")
    if not os.path.exists(credentials_file):
        raise RuntimeError(f"{credentials_file} not found. Start the app once to create it.")

    store = AdminCredentialStore(credentials_file, email, raw_password)
    if store.is_admin_email(email):
        store.set_password(raw_password)
        print(f"Password reset successfully for {normalize_email(email)}.")
    else:
        print(f"No admin account for {email}.")


if __name__ == "__main__":
    main()
