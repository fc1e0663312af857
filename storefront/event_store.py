"""
Storefront — イベントストア

注文集約のすべての状態変化をイベントとして追記する。
集約の再構築 (リプレイ) と履歴の参照に使う。

expected_version による楽観的ロック:
    (aggregate_id, version) の UNIQUE 制約に違反した場合、
    同じ集約に対する同時書き込みがあったと判断して
    ConcurrentModification を送出する。
"""

import json
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConcurrentModification


async def append_event(
    session: AsyncSession,
    aggregate_id: UUID,
    aggregate_type: str,
    event_type: str,
    event_data: dict,
    expected_version: int,
) -> int:
    """
    イベントを追記し、新しいバージョン番号を返す。

    コミットは呼び出し側のトランザクションに任せる。
    """
    new_version = expected_version + 1
    try:
        await session.execute(
            text("""
                INSERT INTO event_store
                    (id, aggregate_id, aggregate_type, event_type, event_data, version, created_at)
                VALUES
                    (:id, :agg_id, :agg_type, :evt_type, :evt_data, :version, :now)
            """),
            {
                "id": str(uuid4()),
                "agg_id": str(aggregate_id),
                "agg_type": aggregate_type,
                "evt_type": event_type,
                "evt_data": json.dumps(event_data, default=str),
                "version": new_version,
                "now": datetime.now(timezone.utc),
            },
        )
    except IntegrityError as exc:
        raise ConcurrentModification(
            f"{aggregate_type} {aggregate_id} was modified concurrently "
            f"(expected version {expected_version})"
        ) from exc
    return new_version


async def load_events(
    session: AsyncSession,
    aggregate_id: UUID,
) -> list[dict]:
    """指定した集約の全イベントをバージョン順に読み出す。"""
    result = await session.execute(
        text("""
            SELECT event_type, event_data, version, created_at
            FROM event_store
            WHERE aggregate_id = :agg_id
            ORDER BY version ASC
        """),
        {"agg_id": str(aggregate_id)},
    )
    return [
        {
            "event_type": row.event_type,
            "event_data": json.loads(row.event_data) if isinstance(row.event_data, str) else row.event_data,
            "version": row.version,
            "created_at": isoformat(row.created_at),
        }
        for row in result.fetchall()
    ]


def isoformat(value) -> str | None:
    """DB から読んだ日時を ISO 文字列にする (SQLite は文字列のまま返す)。"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
