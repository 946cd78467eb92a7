# create.py
"""Bootstrap API users.

    python create.py            # new admin
    python create.py employee   # new employee, asks for a commission rate
    python create.py token      # rotate an existing user's API token
"""
import sys
from getpass import getpass

from taskledger import create_app
from taskledger.extensions import db
from taskledger.models.user import User
from taskledger.utils import to_decimal


def _new_user(role: str):
    email = input(f"{role.capitalize()} email: ").strip().lower()
    if User.query.filter_by(email=email).first():
        print("User with that email already exists. Use `python create.py token` for a new token.")
        return
    name = input("Full name: ").strip()
    phone = input("Phone (optional): ").strip()
    password = getpass("Password: ")

    user = User(name=name, email=email, phone=phone or None, role=role)
    if role == "employee":
        rate = input("Commission rate, e.g. 0.15 (blank = default): ").strip()
        if rate:
            user.commission_rate = to_decimal(rate)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    print(f"{role.capitalize()} {email} created.")
    print(f"API token: {user.api_token}")


def _rotate():
    email = input("Email: ").strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None:
        print("No such user.")
        return
    token = user.rotate_token()
    db.session.commit()
    print(f"New API token for {email}: {token}")


def main(argv):
    what = argv[1] if len(argv) > 1 else "admin"
    app = create_app()
    with app.app_context():
        db.create_all()
        if what == "token":
            _rotate()
        elif what in ("admin", "employee"):
            _new_user(what)
        else:
            print(__doc__)


if __name__ == "__main__":
    main(sys.argv)
