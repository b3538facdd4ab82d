#!/usr/bin/env python3
"""
Operator tooling for the gift-code inventory.

  python init_inventory.py init
  python init_inventory.py add-profile --id u1 --email a@b.co --role admin
  python init_inventory.py add-product --id steam-50 --name "Steam 50" \
                                       --price 25000
  python init_inventory.py load-codes --product steam-50 --file codes.txt
  python init_inventory.py recount [--product steam-50]
  python init_inventory.py inventory --product steam-50

Uses DATABASE_URL (default sqlite:///./giftcodes.db).
"""
import argparse
import asyncio
import os
import sys

from giftcodes.errors import GiftCodeError
from giftcodes.infra.sql import make_async_engine
from giftcodes.model import Base, ProductRecord, ProfileRecord
from giftcodes.model.inventory._sql import InventoryStore
from giftcodes.model.profiles._sql import ProfileDirectory
from giftcodes.model.states import ROLE_ADMIN, ROLE_CLIENT, ROLE_PROVIDER


def read_codes(path: str) -> list[str]:
    # one code per line; blanks and # comments ignored
    codes = []
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                codes.append(line)
    return codes


async def run(args: argparse.Namespace) -> int:
    engine, sessions = make_async_engine(
        os.environ.get("DATABASE_URL", "sqlite:///./giftcodes.db")
    )
    inventory = InventoryStore(sessions=sessions)
    profiles = ProfileDirectory(sessions=sessions)
    try:
        if args.cmd == "init":
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print('✅ schema present / created')

        elif args.cmd == "add-profile":
            await profiles.add_profile(ProfileRecord(
                id=args.id, email=args.email, full_name=args.name,
                role=args.role,
            ))
            print(f'✅ profile {args.id} ({args.role}) created')

        elif args.cmd == "add-product":
            await inventory.add_product(ProductRecord(
                id=args.id, name=args.name, price=args.price,
                currency=args.currency,
            ))
            print(f'✅ product {args.id} created')

        elif args.cmd == "load-codes":
            added, skipped = 0, 0
            for code in read_codes(args.file):
                try:
                    await inventory.add_code(args.product, code,
                                             provider_id=args.provider)
                    added += 1
                except GiftCodeError as e:
                    skipped += 1
                    print(f'⚠️  skipped code: {e.message}')
            print(f'✅ {added} codes loaded, {skipped} skipped')

        elif args.cmd == "recount":
            for pid, stock in (await inventory.recount(args.product)).items():
                print(f'{pid}: stock={stock}')

        elif args.cmd == "inventory":
            inv = await inventory.inventory(args.product)
            if inv is None:
                print(f'unknown product {args.product}')
                return 1
            print(inv)
    except GiftCodeError as e:
        print(f'❌ {e.message}', file=sys.stderr)
        return 1
    finally:
        await engine.dispose()
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Gift-code inventory tooling")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("init", help="create tables")

    sp = sub.add_parser("add-profile", help="register a user profile")
    sp.add_argument("--id", required=True)
    sp.add_argument("--email", required=True)
    sp.add_argument("--name", default="")
    sp.add_argument("--role", default=ROLE_CLIENT,
                    choices=[ROLE_ADMIN, ROLE_CLIENT, ROLE_PROVIDER])

    sp = sub.add_parser("add-product", help="create a gift-card product")
    sp.add_argument("--id", required=True)
    sp.add_argument("--name", required=True)
    sp.add_argument("--price", type=int, required=True)
    sp.add_argument("--currency", default="cop")

    sp = sub.add_parser("load-codes", help="load codes from a text file")
    sp.add_argument("--product", required=True)
    sp.add_argument("--file", required=True)
    sp.add_argument("--provider", default=None)

    sp = sub.add_parser("recount", help="rebuild stock counters")
    sp.add_argument("--product", default=None)

    sp = sub.add_parser("inventory", help="show counter vs item table")
    sp.add_argument("--product", required=True)
    return p


if __name__ == '__main__':
    sys.exit(asyncio.run(run(build_parser().parse_args())))
