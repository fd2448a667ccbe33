"""CLI script to change a portal user's role.

Administrators are provisioned out of band: sign up normally, then promote.
Usage: python scripts/promote_user.py USERNAME [--role admin|trainee]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from training_portal.database import engine, create_db_and_tables
from training_portal import repositories, services
from training_portal.errors import PortalError
from training_portal.models import Role


def main(username: str, role: Role = Role.ADMIN) -> int:
    """Set `role` on the account named `username` (or with that email)."""
    create_db_and_tables()
    with Session(engine) as session:
        repo = repositories.UserRepository(session)
        user = repo.get_by_username(username) or repo.get_by_email(username)
        if not user:
            print(f'No user found for {username!r}')
            return 1
        try:
            updated = services.AuthService(session).set_role(user.id, role)
        except PortalError as e:
            print(f'Failed to update {username!r}: {e.message}')
            return 1
        print(f"{updated['username']} is now {updated['role']}")
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('username', help='Username or email of the account to change')
    parser.add_argument('--role', choices=[r.value for r in Role], default=Role.ADMIN.value)
    args = parser.parse_args()
    sys.exit(main(args.username, Role(args.role)))
