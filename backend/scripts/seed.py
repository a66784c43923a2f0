# scripts/seed.py
import asyncio
import random
from decimal import Decimal

from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import AsyncSessionLocal, engine
from app.db.crud_users import create_user, get_user_by_email
from app.db.crud_spaces import create_space

# (city, postcode prefix, lat, lng)
CITIES = [
    ("London", "SW1A", 51.5014, -0.1419),
    ("Manchester", "M1", 53.4808, -2.2426),
    ("Bristol", "BS1", 51.4545, -2.5879),
]


async def seed():
    async with AsyncSessionLocal() as db:
        # create tables (if migrations not run)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        owners = []
        for i in range(3):
            email = f'owner{i}@example.com'
            u = await get_user_by_email(db, email)
            if not u:
                u = await create_user(db, name=f'Owner {i}', email=email, phone=f'+4477000000{i}')
            owners.append(u)

        renter = await get_user_by_email(db, 'renter@example.com')
        if not renter:
            renter = await create_user(db, name='Renter', email='renter@example.com')

        for i in range(12):
            city, postcode, lat, lng = random.choice(CITIES)
            space = await create_space(
                db,
                random.choice(owners).id,
                space_name=f'Driveway {i}',
                space_type=random.choice(['driveway', 'garage', 'parking_spot']),
                address_line1=f'{i + 1} High Street',
                city=city,
                postcode=f'{postcode} {i}AA',
                latitude=Decimal(str(round(lat + random.uniform(-0.05, 0.05), 6))),
                longitude=Decimal(str(round(lng + random.uniform(-0.05, 0.05), 6))),
                amenities=random.sample(['covered', 'cctv', 'ev_charging', '24_7_access'], 2),
                photos=[],
                price_per_hour=Decimal(random.choice(['2.50', '4.00', '5.00'])),
                price_per_day=Decimal(random.choice(['15.00', '25.00', '30.00'])),
            )
            # seed data skips moderation
            space.status = 'active'
            db.add(space)
        await db.commit()

        print('Seed complete')
        print('renter token:', create_access_token({'user_id': renter.id}))


if __name__ == '__main__':
    asyncio.run(seed())
