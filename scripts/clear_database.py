"""
Clear ALL data in a development or staging database.
Prompts for the confirmation code CLEAR-<ENV>-<YEAR> before doing anything.
Run: APP_ENV=development python -m scripts.clear_database --mode=development

--mode must name the environment the configured database belongs to (APP_ENV).
"""
import argparse
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.session import SessionLocal
from app.services.data_reset import clear_all_data, expected_confirmation_code


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Clear all data in the database")
    parser.add_argument("--mode", default=None,
                        help="Environment to clear; must match APP_ENV")
    args = parser.parse_args(argv)

    setup_logging()
    env = settings.APP_ENV
    if args.mode and args.mode != env:
        print(f"--mode={args.mode} does not match APP_ENV={env}. Operation cancelled.")
        return 1

    print(f"WARNING: You are about to clear ALL data in the {env} environment")
    print("This action cannot be undone!\n")

    code = expected_confirmation_code(env)
    print(f"To proceed, please type the following confirmation code: {code}")
    user_input = input("Confirmation code: ").strip()

    if user_input != code:
        print("\nConfirmation code does not match. Operation cancelled.")
        return 0

    print("\nClearing database...")
    db = SessionLocal()
    try:
        result = clear_all_data(db, user_input)
    finally:
        db.close()
    print(result.message)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
