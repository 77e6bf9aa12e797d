"""
Keyed accessors over the relational store.

Every credential read or delete is scoped by owner inside the query itself,
so a row belonging to another principal is indistinguishable from a
missing row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import DEFAULT_AUTH_HEADER, Credential, ServiceDefinition, UsageLog


class CredentialStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def fetch(self, credential_id: str, owner_id: str) -> Optional[Credential]:
        async with self._sessions() as session:
            return await session.scalar(
                select(Credential).where(
                    Credential.id == credential_id,
                    Credential.owner_id == owner_id,
                )
            )

    async def create(
        self, *, owner_id: str, name: str, service_name: str, ciphertext: str
    ) -> Credential:
        now = datetime.utcnow()
        credential = Credential(  # type: ignore[call-arg]
            owner_id=owner_id,
            name=name,
            service_name=service_name,
            ciphertext=ciphertext,
            created_at=now,
            updated_at=now,
        )
        async with self._sessions() as session:
            session.add(credential)
            await session.commit()
        return credential

    async def list_for_owner(self, owner_id: str) -> List[Credential]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(Credential)
                .where(Credential.owner_id == owner_id)
                .order_by(Credential.created_at.desc())
            )
            return list(rows)

    async def delete(self, credential_id: str, owner_id: str) -> bool:
        async with self._sessions() as session:
            result = await session.execute(
                delete(Credential).where(
                    Credential.id == credential_id,
                    Credential.owner_id == owner_id,
                )
            )
            await session.commit()
            return bool(result.rowcount)


class ServiceRegistry:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def fetch(self, name: str) -> Optional[ServiceDefinition]:
        async with self._sessions() as session:
            return await session.get(ServiceDefinition, name)

    async def list_all(self) -> List[ServiceDefinition]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(ServiceDefinition).order_by(ServiceDefinition.name)
            )
            return list(rows)

    async def register(
        self,
        name: str,
        base_url: str,
        *,
        description: str = "",
        auth_header: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> ServiceDefinition:
        """Insert or replace a service definition. Names are stored lowercase.

        Raises ValueError unless `base_url` is an absolute http(s) URL.
        """
        try:
            url = httpx.URL(base_url)
        except (httpx.InvalidURL, TypeError) as e:
            raise ValueError(f"Invalid base_url for service {name!r}") from e
        if not url.is_absolute_url or url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"base_url for service {name!r} must be an absolute http(s) URL")

        async with self._sessions() as session:
            definition = ServiceDefinition(  # type: ignore[call-arg]
                name=name.strip().lower(),
                description=description,
                base_url=base_url,
                auth_header=auth_header or DEFAULT_AUTH_HEADER,
                config=config or {},
            )
            definition = await session.merge(definition)
            await session.commit()
            return definition


class UsageStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def append(self, row: UsageLog) -> None:
        async with self._sessions() as session:
            session.add(row)
            await session.commit()

    async def list_for_owner(self, owner_id: str, limit: int = 100) -> List[UsageLog]:
        async with self._sessions() as session:
            rows = await session.scalars(
                select(UsageLog)
                .where(UsageLog.owner_id == owner_id)
                .order_by(UsageLog.timestamp.desc())
                .limit(limit)
            )
            return list(rows)

    async def count_for_credential(self, credential_id: str) -> int:
        async with self._sessions() as session:
            total = await session.scalar(
                select(func.count())
                .select_from(UsageLog)
                .where(UsageLog.credential_id == credential_id)
            )
            return int(total or 0)
