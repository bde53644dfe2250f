from fastapi import APIRouter, Depends
from sqlalchemy import func, inspect, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from simdash.dependencies import get_session
from simdash.models import Device, Simulator

router = APIRouter()

REQUIRED_TABLES = ("simulators", "devices")


@router.get("")
async def health_check():
    """Report basic service health.

    Returns:
        A simple status message.
    """
    return {"status": "ok"}


@router.get("/db-check")
async def db_check(session: AsyncSession = Depends(get_session)):
    """Verify database connectivity and required tables.

    Returns:
        Status details indicating database health, with simulator and device counts.
    """
    try:
        await session.execute(text("SELECT 1"))

        connection = await session.connection()
        tables = await connection.run_sync(
            lambda sync_conn: set(inspect(sync_conn).get_table_names())
        )
        for table in REQUIRED_TABLES:
            if table not in tables:
                return {"status": "error", "details": f"table '{table}' missing"}

        simulator_count = (await session.execute(select(func.count(Simulator.id)))).scalar() or 0
        device_count = (await session.execute(select(func.count(Device.id)))).scalar() or 0
        return {
            "status": "ok",
            "metrics": {"simulator_count": simulator_count, "device_count": device_count},
        }
    except SQLAlchemyError as e:
        return {"status": "error", "details": str(e)}
