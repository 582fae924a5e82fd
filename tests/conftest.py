import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from careslot.core.errors import DeliveryError  # noqa: E402
from careslot.database import Base  # noqa: E402
from careslot.models import appointment, availability, reminder, schedule_template  # noqa: E402,F401
from careslot.services.notifications import DeliveryReceipt, NotificationChannel  # noqa: E402


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingChannel(NotificationChannel):
    def __init__(self, fail_for: set[str] | None = None):
        self.sent: list[tuple[str, str, str]] = []
        self.fail_for = fail_for or set()

    def send(self, channel: str, recipient: str, content: str) -> DeliveryReceipt:
        self.validate_channel(channel)
        if recipient in self.fail_for:
            raise DeliveryError(f'Provider rejected {recipient}')
        self.sent.append((channel, recipient, content))
        return DeliveryReceipt(channel=channel, recipient=recipient, reference=f'ref-{len(self.sent)}')


@pytest.fixture
def session_factory():
    engine = create_engine('sqlite:///:memory:')
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "careslot.db"}',
        connect_args={'timeout': 30, 'check_same_thread': False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 20, 9, 0))


@pytest.fixture
def channel():
    return RecordingChannel()
