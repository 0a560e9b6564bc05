import uuid
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence, Tuple

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app.config import Settings
from app.core.database import Database
from app.main import create_app
from app.models.experiment import ABTest, ABTestAllocation, ABTestConversion
from app.models.schemas import CreateABTestRequest, VariantConfig
from app.services.experiments.service import ABTestService


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'ab_tests.db'}",
        ENVIRONMENT="test",
        LOG_LEVEL="WARNING",
    )


@pytest_asyncio.fixture
async def database(settings):
    db = Database.from_settings(settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def session(database):
    async with database.session() as s:
        yield s


@pytest.fixture
def service(session, settings):
    return ABTestService(session, settings)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def make_config():
    def _make(
        split: Sequence[int] = (50, 50),
        status: str = "running",
        control_index: Optional[int] = 0,
        **kwargs,
    ) -> CreateABTestRequest:
        names = ["control"] + [f"variant_{chr(ord('a') + i)}" for i in range(len(split) - 1)]
        variants = [
            VariantConfig(
                name=names[i],
                template_id=f"template-{i}",
                traffic_percentage=pct,
                is_control=(i == control_index),
            )
            for i, pct in enumerate(split)
        ]
        return CreateABTestRequest(
            name=kwargs.pop("name", "Hero headline test"),
            status=status,
            variants=variants,
            **kwargs,
        )

    return _make


@pytest.fixture
def seed_traffic(session):
    """Insert allocations and conversions directly: {variant_index: (visitors, converters)}."""

    async def _seed(
        test: ABTest,
        counts: Dict[int, Tuple[int, int]],
        when: Optional[datetime] = None,
    ) -> None:
        when = when or datetime.now(timezone.utc)
        for index, (visitors, converters) in counts.items():
            variant = test.variants[index]
            for n in range(visitors):
                visitor_id = f"{variant.name}-visitor-{n}"
                session.add(
                    ABTestAllocation(
                        id=str(uuid.uuid4()),
                        test_id=test.id,
                        variant_id=variant.id,
                        user_identifier=visitor_id,
                        allocated_at=when,
                    )
                )
                if n < converters:
                    session.add(
                        ABTestConversion(
                            id=str(uuid.uuid4()),
                            test_id=test.id,
                            variant_id=variant.id,
                            user_identifier=visitor_id,
                            conversion_type="conversion",
                            converted_at=when,
                        )
                    )
        await session.commit()

    return _seed
