"""Catalogue, codes and profiles every test starts from."""
from giftcodes.model import ProductRecord, ProfileRecord
from giftcodes.model.states import ROLE_ADMIN, ROLE_CLIENT, ROLE_PROVIDER

STEAM = "steam-50"      # 3 codes
XBOX = "xbox-25"        # 1 code
EMPTY = "psn-10"        # 0 codes

ADMIN = "admin-1"
BUYER = "buyer-1"
OTHER_BUYER = "buyer-2"
PROVIDER = "provider-1"

BASE_URL = "https://shop.example.com"


async def seed(inventory, profiles) -> None:
    for pid, name, price in ((STEAM, "Steam 50", 25000),
                             (XBOX, "Xbox 25", 12000),
                             (EMPTY, "PSN 10", 5000)):
        await inventory.add_product(
            ProductRecord(id=pid, name=name, price=price)
        )
    for n in range(3):
        await inventory.add_code(STEAM, f"STEAM-CODE-{n}",
                                 provider_id=PROVIDER)
    await inventory.add_code(XBOX, "XBOX-CODE-0", provider_id=PROVIDER)

    for uid, role, name in ((ADMIN, ROLE_ADMIN, "Ana Admin"),
                            (BUYER, ROLE_CLIENT, "Bruno Buyer"),
                            (OTHER_BUYER, ROLE_CLIENT, ""),
                            (PROVIDER, ROLE_PROVIDER, "Pia Provider")):
        await profiles.add_profile(ProfileRecord(
            id=uid, email=f"{uid}@example.com", full_name=name, role=role,
        ))
