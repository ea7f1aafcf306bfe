"""
storage/repository.py

All SQL for services, per-port / per-client entities, their daily history
and relay configs. Callers own the transaction scope: write methods are
meant to run inside ``db.transaction()``, read methods inside ``db.read()``
(or any enclosing transaction).

Table and column names come only from the fixed _ENTITY_TABLES map below;
caller input is always bound as a parameter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, NamedTuple

from ..errors import ValidationError
from ..models import CLIENT, PORT
from .database import Database

logger = logging.getLogger(__name__)


class EntityTables(NamedTuple):
    entity: str
    key: str
    history: str
    fk: str


_ENTITY_TABLES: dict[str, EntityTables] = {
    PORT: EntityTables("inbound_traffics", "tag", "inbound_traffic_history", "inbound_traffic_id"),
    CLIENT: EntityTables("client_traffics", "email", "client_traffic_history", "client_traffic_id"),
}


def tables_for(kind: str) -> EntityTables:
    try:
        return _ENTITY_TABLES[kind]
    except KeyError:
        raise ValidationError(f"unknown entity kind {kind!r}") from None


def day_after(day: str) -> str:
    """
    Exclusive upper bound for a ``YYYY-MM-DD`` date.

    History dates are compared as plain text against [day, day_after(day))
    so the date indexes stay usable and a stray time-of-day suffix still
    lands on its calendar date.
    """
    try:
        return (date.fromisoformat(day[:10]) + timedelta(days=1)).isoformat()
    except (TypeError, ValueError):
        raise ValidationError(f"invalid date {day!r} (expected YYYY-MM-DD)") from None


# ---------------------------------------------------------------------------
# HistoryFilter: explicit optional filters for the flat history listing
# ---------------------------------------------------------------------------

@dataclass
class HistoryFilter:
    """
    Optional filters for ``TrafficRepository.query_history``.

    ``tag`` selects inbound history, ``email`` selects client history;
    with neither, inbound history is listed. Dates are inclusive
    ``YYYY-MM-DD`` strings.
    """

    service_id: int | None = None
    tag: str | None = None
    email: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    limit: int = 100

    @property
    def kind(self) -> str:
        return CLIENT if self.email else PORT

    def render(self) -> tuple[str, list[Any]]:
        """Return (WHERE clause, params) against the aliases h (history) and e (entity)."""
        if self.tag and self.email:
            raise ValidationError("filter by tag or by email, not both")
        tables = tables_for(self.kind)
        clauses: list[str] = []
        params: list[Any] = []
        if self.service_id is not None:
            clauses.append("h.service_id = ?")
            params.append(self.service_id)
        key = self.email if self.kind == CLIENT else self.tag
        if key:
            clauses.append(f"e.{tables.key} = ?")
            params.append(key)
        if self.start_date:
            clauses.append("h.date >= ?")
            params.append(self.start_date)
        if self.end_date:
            clauses.append("h.date < ?")
            params.append(day_after(self.end_date))
        where = "WHERE " + " AND ".join(clauses) if clauses else ""
        return where, params


class TrafficRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def db(self) -> Database:
        return self._db

    # ==================================================================
    # Services
    # ==================================================================

    def get_or_create_service(self, ip_address: str, now: float) -> tuple[int, bool]:
        """Return (service_id, created)."""
        cur = self._db.execute(
            """
            INSERT INTO services (ip_address, service_name, first_seen, last_seen)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(ip_address) DO NOTHING
            """,
            (ip_address, ip_address, now, now),
        )
        created = cur.rowcount == 1
        row = self._db.execute(
            "SELECT id FROM services WHERE ip_address = ?", (ip_address,)
        ).fetchone()
        return row["id"], created

    def touch_service(self, service_id: int, now: float) -> None:
        self._db.execute(
            "UPDATE services SET last_seen = ?, updated_at = ? WHERE id = ?",
            (now, now, service_id),
        )

    def get_service(self, service_id: int) -> dict | None:
        row = self._db.execute(
            "SELECT * FROM services WHERE id = ?", (service_id,)
        ).fetchone()
        return dict(row) if row else None

    def list_services(self) -> list[dict]:
        rows = self._db.execute(
            "SELECT * FROM services ORDER BY last_seen DESC, id"
        ).fetchall()
        return [dict(r) for r in rows]

    def delete_service(self, service_id: int) -> bool:
        cur = self._db.execute("DELETE FROM services WHERE id = ?", (service_id,))
        return cur.rowcount > 0

    def rename_service(self, service_id: int, name: str | None, now: float) -> bool:
        cur = self._db.execute(
            "UPDATE services SET custom_name = ?, updated_at = ? WHERE id = ?",
            (name, now, service_id),
        )
        return cur.rowcount > 0

    # ==================================================================
    # Entities
    # ==================================================================

    def get_or_create_inbound(self, service_id: int, tag: str, port: int) -> int:
        self._db.execute(
            """
            INSERT INTO inbound_traffics (service_id, tag, port)
            VALUES (?, ?, ?)
            ON CONFLICT(service_id, tag) DO NOTHING
            """,
            (service_id, tag, port),
        )
        row = self._db.execute(
            "SELECT id FROM inbound_traffics WHERE service_id = ? AND tag = ?",
            (service_id, tag),
        ).fetchone()
        return row["id"]

    def get_or_create_client(self, service_id: int, email: str) -> int:
        self._db.execute(
            """
            INSERT INTO client_traffics (service_id, email)
            VALUES (?, ?)
            ON CONFLICT(service_id, email) DO NOTHING
            """,
            (service_id, email),
        )
        row = self._db.execute(
            "SELECT id FROM client_traffics WHERE service_id = ? AND email = ?",
            (service_id, email),
        ).fetchone()
        return row["id"]

    def mark_entity_updated(self, kind: str, entity_id: int, now: float) -> None:
        t = tables_for(kind)
        self._db.execute(
            f"UPDATE {t.entity} SET last_updated = ? WHERE id = ?", (now, entity_id)
        )

    def add_live(self, kind: str, entity_id: int, up: int, down: int) -> None:
        t = tables_for(kind)
        self._db.execute(
            f"UPDATE {t.entity} SET up = up + ?, down = down + ? WHERE id = ?",
            (up, down, entity_id),
        )

    def get_entity(self, kind: str, service_id: int, key: str) -> dict | None:
        t = tables_for(kind)
        row = self._db.execute(
            f"SELECT * FROM {t.entity} WHERE service_id = ? AND {t.key} = ?",
            (service_id, key),
        ).fetchone()
        return dict(row) if row else None

    def list_entities(self, kind: str, service_id: int) -> list[dict]:
        t = tables_for(kind)
        rows = self._db.execute(
            f"SELECT * FROM {t.entity} WHERE service_id = ? ORDER BY {t.key}",
            (service_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def rename_entity(self, kind: str, service_id: int, key: str, name: str | None) -> bool:
        t = tables_for(kind)
        cur = self._db.execute(
            f"UPDATE {t.entity} SET custom_name = ? WHERE service_id = ? AND {t.key} = ?",
            (name, service_id, key),
        )
        return cur.rowcount > 0

    def count_active_entities(self) -> dict[int, tuple[int, int]]:
        """{service_id: (active ports, active clients)} in two grouped passes."""
        counts: dict[int, list[int]] = {}
        for idx, kind in enumerate((PORT, CLIENT)):
            t = tables_for(kind)
            rows = self._db.execute(
                f"""
                SELECT service_id, COUNT(*) AS cnt FROM {t.entity}
                WHERE status = 'active'
                GROUP BY service_id
                """
            ).fetchall()
            for r in rows:
                counts.setdefault(r["service_id"], [0, 0])[idx] = r["cnt"]
        return {sid: (c[0], c[1]) for sid, c in counts.items()}

    # ==================================================================
    # Live counters (COUNTER_MODE=live)
    # ==================================================================

    def nonzero_live_counters(self, kind: str) -> list[dict]:
        t = tables_for(kind)
        rows = self._db.execute(
            f"""
            SELECT id, service_id, up, down FROM {t.entity}
            WHERE status = 'active' AND (up != 0 OR down != 0)
            """
        ).fetchall()
        return [dict(r) for r in rows]

    def reset_live_counters(self, kind: str) -> int:
        t = tables_for(kind)
        cur = self._db.execute(
            f"""
            UPDATE {t.entity} SET up = 0, down = 0
            WHERE status = 'active' AND (up != 0 OR down != 0)
            """
        )
        return cur.rowcount

    def live_inbound_totals(self) -> dict[int, tuple[int, int]]:
        rows = self._db.execute(
            """
            SELECT service_id, SUM(up) AS up, SUM(down) AS down
            FROM inbound_traffics GROUP BY service_id
            """
        ).fetchall()
        return {r["service_id"]: (r["up"] or 0, r["down"] or 0) for r in rows}

    # ==================================================================
    # History
    # ==================================================================

    def add_history(
        self, kind: str, entity_id: int, service_id: int, date: str, up: int, down: int
    ) -> None:
        """Add (up, down) to the (entity, date) bucket, creating it if absent."""
        t = tables_for(kind)
        self._db.execute(
            f"""
            INSERT INTO {t.history} ({t.fk}, service_id, date, daily_up, daily_down)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT({t.fk}, date) DO UPDATE SET
                daily_up   = daily_up + excluded.daily_up,
                daily_down = daily_down + excluded.daily_down
            """,
            (entity_id, service_id, date, up, down),
        )

    def history_rows(
        self,
        kind: str,
        entity_id: int,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict]:
        t = tables_for(kind)
        clauses = [f"{t.fk} = ?"]
        params: list[Any] = [entity_id]
        if start_date:
            clauses.append("date >= ?")
            params.append(start_date)
        if end_date:
            clauses.append("date < ?")
            params.append(day_after(end_date))
        rows = self._db.execute(
            f"""
            SELECT date, daily_up, daily_down FROM {t.history}
            WHERE {" AND ".join(clauses)}
            ORDER BY date
            """,
            tuple(params),
        ).fetchall()
        return [dict(r) for r in rows]

    def service_history_rows(
        self, service_id: int, start_date: str, end_date: str
    ) -> list[dict]:
        """Inbound history across every port of one service."""
        rows = self._db.execute(
            """
            SELECT date, daily_up, daily_down FROM inbound_traffic_history
            WHERE service_id = ?
              AND date >= ? AND date < ?
            ORDER BY date
            """,
            (service_id, start_date, day_after(end_date)),
        ).fetchall()
        return [dict(r) for r in rows]

    def history_totals(self, kind: str, entity_id: int) -> tuple[int, int]:
        t = tables_for(kind)
        row = self._db.execute(
            f"""
            SELECT COALESCE(SUM(daily_up), 0) AS up, COALESCE(SUM(daily_down), 0) AS down
            FROM {t.history} WHERE {t.fk} = ?
            """,
            (entity_id,),
        ).fetchone()
        return row["up"], row["down"]

    def day_totals_by_entity(
        self, kind: str, service_id: int, day: str
    ) -> dict[int, tuple[int, int]]:
        """{entity_id: (up, down)} for one service on one date."""
        t = tables_for(kind)
        rows = self._db.execute(
            f"""
            SELECT {t.fk} AS entity_id,
                   SUM(daily_up) AS up, SUM(daily_down) AS down
            FROM {t.history}
            WHERE service_id = ? AND date >= ? AND date < ?
            GROUP BY {t.fk}
            """,
            (service_id, day, day_after(day)),
        ).fetchall()
        return {r["entity_id"]: (r["up"] or 0, r["down"] or 0) for r in rows}

    def day_inbound_totals(self, day: str) -> dict[int, tuple[int, int]]:
        """{service_id: (up, down)} of inbound history for one date."""
        rows = self._db.execute(
            """
            SELECT service_id, SUM(daily_up) AS up, SUM(daily_down) AS down
            FROM inbound_traffic_history
            WHERE date >= ? AND date < ?
            GROUP BY service_id
            """,
            (day, day_after(day)),
        ).fetchall()
        return {r["service_id"]: (r["up"] or 0, r["down"] or 0) for r in rows}

    def query_history(self, flt: HistoryFilter) -> list[dict]:
        t = tables_for(flt.kind)
        where, params = flt.render()
        sql = f"""
            SELECT h.date, h.daily_up, h.daily_down, h.service_id,
                   e.{t.key} AS entity_key, s.ip_address
            FROM {t.history} h
            JOIN {t.entity} e ON e.id = h.{t.fk}
            JOIN services s ON s.id = h.service_id
            {where}
            ORDER BY h.date DESC, e.{t.key}
            LIMIT ?
        """
        params.append(max(1, min(flt.limit, 1000)))
        rows = self._db.execute(sql, tuple(params)).fetchall()
        return [dict(r) for r in rows]

    # ==================================================================
    # Relay configs
    # ==================================================================

    def list_relay_configs(self) -> list[dict]:
        rows = self._db.execute(
            """
            SELECT id, source_api_host, source_api_port,
                   source_api_password, target_api_url
            FROM relay_configs ORDER BY id
            """
        ).fetchall()
        return [dict(r) for r in rows]

    def add_relay_config(self, cfg: dict) -> int:
        cur = self._db.execute(
            """
            INSERT INTO relay_configs
                (source_api_host, source_api_port, source_api_password, target_api_url)
            VALUES (?, ?, ?, ?)
            """,
            (
                cfg["source_api_host"],
                cfg["source_api_port"],
                cfg["source_api_password"],
                cfg["target_api_url"],
            ),
        )
        return cur.lastrowid

    def update_relay_config(self, config_id: int, cfg: dict) -> bool:
        cur = self._db.execute(
            """
            UPDATE relay_configs
            SET source_api_host = ?, source_api_port = ?,
                source_api_password = ?, target_api_url = ?
            WHERE id = ?
            """,
            (
                cfg["source_api_host"],
                cfg["source_api_port"],
                cfg["source_api_password"],
                cfg["target_api_url"],
                config_id,
            ),
        )
        return cur.rowcount > 0

    def delete_relay_config(self, config_id: int) -> bool:
        cur = self._db.execute("DELETE FROM relay_configs WHERE id = ?", (config_id,))
        return cur.rowcount > 0

    def clear_relay_configs(self) -> None:
        self._db.execute("DELETE FROM relay_configs")
