"""
Create the admin user that logs in at /admin/login.

Usage:
    python create_user.py [--name NAME] [--email EMAIL]
"""

import argparse
import getpass

import config
from app import hash_password
from store import DuplicateEmailError, StoreError, open_store


def prompt(label: str, value: str = "") -> str:
    value = (value or input(f"Enter {label}: ")).strip()
    if not value:
        raise SystemExit(f"{label.capitalize()} must not be empty")
    return value


def create_user(store, name: str, email: str, password: str) -> dict:
    return store.create_user(name=name, email=email, password=hash_password(password))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create a blog admin user")
    parser.add_argument("--name", default="", help="Display name, used as the post author")
    parser.add_argument("--email", default="", help="Login email")
    parser.add_argument(
        "--store",
        default=config.STORE_URI,
        help="Store connection string (defaults to STORE_URI)",
    )
    args = parser.parse_args(argv)

    name = prompt("name", args.name)
    email = prompt("email", args.email)
    password = getpass.getpass("Enter password: ")
    if not password:
        raise SystemExit("Password must not be empty")

    try:
        store = open_store(args.store)
    except StoreError as exc:
        raise SystemExit(f"Could not open store: {exc}")
    try:
        create_user(store, name, email, password)
    except DuplicateEmailError as exc:
        raise SystemExit(str(exc))
    except StoreError as exc:
        raise SystemExit(f"Could not create user: {exc}")
    finally:
        store.close()

    print("User created successfully!")


if __name__ == "__main__":
    main()
