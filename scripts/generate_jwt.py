"""Mint an HS256 admin token for the slot ingestion endpoint.

Usage:
  export SLOT_JWT_SECRET="your-secret"
  python scripts/generate_jwt.py --sub ops-alice --role admin
  python scripts/generate_jwt.py --sub ops-bob --role user --role super_admin --hours 1

Pass the output as `Authorization: Bearer <token>` to POST /v1/admin/ingest-slot.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.security.auth import JWT_SECRET_ENV, sign_jwt  # noqa: E402
from app.security.roles import Role  # noqa: E402


def main() -> int:
    ap = argparse.ArgumentParser(description="Generate an admin bearer token")
    ap.add_argument("--sub", required=True)
    ap.add_argument(
        "--role",
        dest="roles",
        action="append",
        required=True,
        choices=[r.value for r in Role],
        help="repeat for a multi-role token",
    )
    ap.add_argument("--hours", type=float, default=12.0)
    args = ap.parse_args()

    secret = os.environ.get(JWT_SECRET_ENV)
    if not secret:
        raise SystemExit(f"Missing {JWT_SECRET_ENV} in environment.")

    claims: dict[str, object] = {"sub": args.sub, "exp": int(time.time() + args.hours * 3600)}
    if len(args.roles) == 1:
        claims["role"] = args.roles[0]
    else:
        claims["roles"] = args.roles

    print(sign_jwt(claims, secret))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
