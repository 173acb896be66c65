from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase, Session

from portal import config


class Base(DeclarativeBase):
    pass


engine = create_async_engine(config.ASYNC_DB_URL, echo=False, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

SET_CALLER = text("select set_config('portal.caller_id', :caller_id, true)")


async def get_db():
    async with SessionLocal() as session:
        yield session


@event.listens_for(Session, "after_begin")
def _apply_caller(session, transaction, connection):
    # Transaction-local, so it is re-applied on every begin and never leaks
    # to the next user of a pooled connection.
    caller_id = session.info.get("caller_id")
    if caller_id is None or connection.dialect.name != "postgresql":
        return
    connection.execute(SET_CALLER, {"caller_id": caller_id})


async def bind_caller(db: AsyncSession, caller_id) -> None:
    """
    Expose the acting profile id to Postgres row-level security policies.
    Other dialects have no RLS, so only the session info is recorded there.
    """
    db.info["caller_id"] = str(caller_id)
    if db.in_transaction() and db.bind.dialect.name == "postgresql":
        await db.execute(SET_CALLER, {"caller_id": str(caller_id)})


async def create_all() -> None:
    # Local development only; deployments run the Alembic migrations.
    import portal.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
