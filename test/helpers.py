"""
Shared test data and seeding helpers
"""

from consent_store.registry import ConsentRegistry

TEST_SECRET = "kX9#vQ2$mL7!pR4@wT8^zN3&bH6*cJ1%"


async def seed_purposes(registry: ConsentRegistry, *codes: str) -> None:
    for code in codes:
        await registry.purposes.create_purpose(
            {"code": code, "name": code.title(), "description": f"{code.title()} cookies", "data_category": code}
        )
