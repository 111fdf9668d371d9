"""Auth and profile verification script.

Signs a user in (or up, with --sign-up) against the Supabase project in .env,
waits for profile reconciliation to settle, and reports what a protected view
would see: the gate decision, the session's user, and the profile row.

Prerequisites:
  - .env at the repo root with SUPABASE_URL, SUPABASE_ANON_KEY, SUPABASE_DB_URL
  - Dependencies installed: `pip install -e .`

Usage:
  python scripts/verify_auth.py EMAIL PASSWORD
  python scripts/verify_auth.py EMAIL PASSWORD --sign-up --role landlord
"""

import argparse
import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv
from rentkenya_session.gate import SessionGate
from rentkenya_session.provider import AuthProvider
from rentkenya_shared.errors import RentKenyaError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main(args: argparse.Namespace) -> int:
    """Run the flow and log the resulting state. Returns a process exit code."""
    async with AuthProvider.from_settings() as auth:
        gate = SessionGate(auth)
        logger.info(f"Initial gate decision: {gate.decide().kind}")

        try:
            if args.sign_up:
                profile = await auth.sign_up(args.email, args.password, args.role)
                logger.info(f"Signed up {profile.id} as {profile.role}")
            else:
                await auth.sign_in(args.email, args.password)
                logger.info(f"Signed in as {args.email}")
        except RentKenyaError as e:
            logger.error(f"Authentication failed: {e}")
            return 1

        snapshot = await auth.wait_until_settled(timeout=args.timeout)
        logger.info(f"Gate decision: {gate.decide().kind}")
        logger.info(f"User: {snapshot.user_id}")
        logger.info(f"Reconciliation: {snapshot.status}")
        if snapshot.profile is None:
            logger.warning("No profile row visible for this user")
            return 1
        logger.info(f"Profile: {snapshot.profile.display_name} ({snapshot.profile.role})")

        if not args.keep_session:
            await auth.sign_out()
            logger.info(f"Signed out; gate decision: {gate.decide().kind}")

    return 0


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--sign-up", action="store_true", help="create the account first")
    parser.add_argument("--role", choices=["landlord", "tenant"], default="tenant")
    parser.add_argument("--timeout", type=float, default=30.0)
    parser.add_argument("--keep-session", action="store_true")
    return parser.parse_args()


if __name__ == "__main__":
    load_dotenv(Path(__file__).resolve().parents[1] / ".env")
    raise SystemExit(asyncio.run(main(parse_args())))
