"""
inventory/store.py -- SQLAlchemy-backed persistence layer for the vehicle inventory.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in inventory/models.py
remain the authoritative domain representation. Swapping SQLite for PostgreSQL
is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. VehicleStore is the repository;
_row_to_vehicle is the mapper. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL.

Concurrency: update_vehicle() and delete_vehicle() are single statements with
no version check. Two editors saving the same vehicle is last-writer-wins.

Usage:
    store = VehicleStore()                               # SQLite default
    store = VehicleStore("postgresql://user:pw@host/db") # PostgreSQL
    vehicle_id = store.create_vehicle(vehicle)
    store.update_vehicle(vehicle_id, price=18500.0)
    store.search(VehicleSearch(manufacturer="Toyota", min_year=2015))
    store.close()
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import BigInteger, Column, Float, Integer, MetaData, String, Table, Text, and_, create_engine, event
from sqlalchemy.engine import Engine

from inventory.models import Vehicle, VehicleSearch, VehicleStatus

DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'carlot_inventory.db'}"

# Columns a caller may change through update_vehicle().
_MUTABLE_FIELDS = frozenset(
    {
        "manufacturer",
        "model",
        "year",
        "price",
        "color",
        "engine_type",
        "vin",
        "mileage",
        "fuel_type",
        "transmission_type",
        "images",
        "status",
    }
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_vehicles = Table(
    "vehicles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("manufacturer", String(100), nullable=False, index=True),
    Column("model", String(100), nullable=False),
    Column("year", Integer, nullable=False),
    Column("price", Float, nullable=False),
    Column("color", String(50), nullable=False),
    Column("engine_type", String(100), nullable=False),
    Column("vin", BigInteger, nullable=False),
    Column("mileage", Integer, nullable=False),
    Column("fuel_type", String(50), nullable=False),
    Column("transmission_type", String(50), nullable=False),
    Column("images", Text),  # JSON array serialized as text
    Column("status", String(20), nullable=False, server_default=VehicleStatus.AVAILABLE.value),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _serialize(fields: dict) -> dict:
    """Convert domain values into column values (images -> JSON, status -> str)."""
    out = dict(fields)
    if "images" in out:
        out["images"] = json.dumps(list(out["images"] or []))
    if "status" in out:
        out["status"] = VehicleStatus(out["status"]).value
    return out


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VehicleStore:
    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # Handlers call the store from threadpool workers, so a pooled
            # connection may be used from more than one thread.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def create_vehicle(self, vehicle: Vehicle) -> int:
        """Insert a new vehicle and return its assigned database ID."""
        values = _serialize(
            {
                "manufacturer": vehicle.manufacturer,
                "model": vehicle.model,
                "year": vehicle.year,
                "price": vehicle.price,
                "color": vehicle.color,
                "engine_type": vehicle.engine_type,
                "vin": vehicle.vin,
                "mileage": vehicle.mileage,
                "fuel_type": vehicle.fuel_type,
                "transmission_type": vehicle.transmission_type,
                "images": vehicle.images,
                "status": vehicle.status,
            }
        )
        with self.engine.connect() as conn:
            result = conn.execute(_vehicles.insert().values(created_at=_now_iso(), **values))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        """Fetch a single vehicle by ID. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_vehicles.select().where(_vehicles.c.id == vehicle_id)).fetchone()
        return _row_to_vehicle(row) if row is not None else None

    def list_vehicles(self) -> list[Vehicle]:
        """Return every vehicle, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_vehicles.select().order_by(_vehicles.c.id.desc())).fetchall()
        return [_row_to_vehicle(r) for r in rows]

    def update_vehicle(self, vehicle_id: int, **fields) -> bool:
        """Update any subset of the mutable vehicle fields.

        images must be passed as list[str]; status as VehicleStatus or its
        value. Unknown field names raise ValueError before any SQL is issued.

        Returns True if a row was updated, False if vehicle_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown vehicle fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_vehicle(vehicle_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_vehicles.update().where(_vehicles.c.id == vehicle_id).values(**_serialize(fields)))
            conn.commit()
        return result.rowcount > 0

    def set_status(self, vehicle_id: int, status: VehicleStatus) -> bool:
        """Write only the status column. Returns False if vehicle_id was not found."""
        return self.update_vehicle(vehicle_id, status=status)

    def delete_vehicle(self, vehicle_id: int) -> bool:
        """Delete a vehicle. Returns True if a row was removed, False if it was already gone."""
        with self.engine.connect() as conn:
            result = conn.execute(_vehicles.delete().where(_vehicles.c.id == vehicle_id))
            conn.commit()
        return result.rowcount > 0

    def search(self, filters: VehicleSearch) -> list[Vehicle]:
        """Return vehicles matching every supplied filter.

        Text filters are exact matches. Range bounds are inclusive. Filters
        left as None add no clause at all, so an empty VehicleSearch returns
        the whole inventory.
        """
        clauses = []
        if filters.manufacturer is not None:
            clauses.append(_vehicles.c.manufacturer == filters.manufacturer)
        if filters.model is not None:
            clauses.append(_vehicles.c.model == filters.model)
        if filters.min_year is not None:
            clauses.append(_vehicles.c.year >= filters.min_year)
        if filters.max_year is not None:
            clauses.append(_vehicles.c.year <= filters.max_year)
        if filters.min_price is not None:
            clauses.append(_vehicles.c.price >= filters.min_price)
        if filters.max_price is not None:
            clauses.append(_vehicles.c.price <= filters.max_price)

        stmt = _vehicles.select()
        if clauses:
            stmt = stmt.where(and_(*clauses))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_vehicles.c.id.desc())).fetchall()
        return [_row_to_vehicle(r) for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(_vehicles.select().limit(1)).fetchall()
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_vehicle(row) -> Vehicle:
    images: list[str] = json.loads(row.images) if row.images else []
    return Vehicle(
        id=row.id,
        manufacturer=row.manufacturer,
        model=row.model,
        year=row.year,
        price=row.price,
        color=row.color,
        engine_type=row.engine_type,
        vin=row.vin,
        mileage=row.mileage,
        fuel_type=row.fuel_type,
        transmission_type=row.transmission_type,
        images=images,
        status=VehicleStatus(row.status),
        created_at=row.created_at,
    )
