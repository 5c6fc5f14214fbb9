"""
session_scope() commits on success and rolls back on error.

Runs against a private file-backed SQLite database so the suite's shared
in-memory connection never sees a real COMMIT.
"""

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

import school_kernel.db.engine as engine_module
import school_kernel.models  # noqa: F401
from school_kernel.db.base import Base
from school_kernel.db.engine import session_scope
from school_kernel.models.school import School


@pytest.fixture
def private_factory(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'scope.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    monkeypatch.setattr(engine_module, "_SessionFactory", factory)
    yield factory
    engine.dispose()


def count_schools(factory):
    with factory() as session:
        return session.execute(select(func.count(School.id))).scalar()


class TestSessionScope:

    def test_commits_on_success(self, private_factory):
        with session_scope() as session:
            session.add(School(code="hillcrest", name="Hillcrest"))

        assert count_schools(private_factory) == 1

    def test_rolls_back_and_reraises(self, private_factory):
        with pytest.raises(RuntimeError, match="boom"):
            with session_scope() as session:
                session.add(School(code="hillcrest", name="Hillcrest"))
                session.flush()
                raise RuntimeError("boom")

        assert count_schools(private_factory) == 0

    def test_requires_initialized_engine(self, monkeypatch):
        monkeypatch.setattr(engine_module, "_SessionFactory", None)

        with pytest.raises(RuntimeError, match="not initialized"):
            with session_scope():
                pass
