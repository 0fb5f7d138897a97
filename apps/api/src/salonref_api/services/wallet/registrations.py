"""Device registration bookkeeping for the Wallet web service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.models.wallet import DevicePassRegistration


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_update_tag(tag: str | None) -> datetime | None:
    """Decode the ``passesUpdatedSince`` tag previously returned as ``lastUpdated``."""

    if not tag:
        return None
    try:
        return datetime.fromtimestamp(int(tag), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _whole_seconds(value: datetime) -> int:
    return int(ensure_aware(value).timestamp())


def format_update_tag(value: datetime) -> str:
    return str(_whole_seconds(value))


@dataclass(slots=True)
class UpdatedSerials:
    serial_numbers: list[str]
    last_updated: datetime | None


class WalletRegistrationService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _find(self, device_id: str, pass_type_id: str, serial_number: str) -> DevicePassRegistration | None:
        stmt = select(DevicePassRegistration).where(
            DevicePassRegistration.device_library_identifier == device_id,
            DevicePassRegistration.pass_type_identifier == pass_type_id,
            DevicePassRegistration.serial_number == serial_number,
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def register(
        self,
        device_id: str,
        pass_type_id: str,
        serial_number: str,
        push_token: str,
        *,
        balance_cents: int | None = None,
    ) -> bool:
        """Upsert the registration; True when it did not exist before."""

        now = datetime.now(timezone.utc)
        registration = await self._find(device_id, pass_type_id, serial_number)
        if registration is not None:
            registration.push_token = push_token
            registration.updated_at = now
            await self._session.commit()
            return False

        self._session.add(
            DevicePassRegistration(
                device_library_identifier=device_id,
                pass_type_identifier=pass_type_id,
                serial_number=serial_number,
                push_token=push_token,
                balance_cents=balance_cents,
                created_at=now,
                updated_at=now,
            )
        )
        try:
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            return await self.register(device_id, pass_type_id, serial_number, push_token)
        return True

    async def unregister(self, device_id: str, pass_type_id: str, serial_number: str) -> bool:
        result = await self._session.execute(
            delete(DevicePassRegistration).where(
                DevicePassRegistration.device_library_identifier == device_id,
                DevicePassRegistration.pass_type_identifier == pass_type_id,
                DevicePassRegistration.serial_number == serial_number,
            )
        )
        await self._session.commit()
        return bool(result.rowcount)

    async def updated_serials(
        self,
        device_id: str,
        pass_type_id: str,
        updated_since: datetime | None = None,
    ) -> UpdatedSerials:
        stmt = select(DevicePassRegistration).where(
            DevicePassRegistration.device_library_identifier == device_id,
            DevicePassRegistration.pass_type_identifier == pass_type_id,
        )
        rows = list((await self._session.execute(stmt)).scalars().all())
        if updated_since is not None:
            # tags carry whole seconds only
            threshold = _whole_seconds(updated_since)
            rows = [row for row in rows if _whole_seconds(row.updated_at) > threshold]
        if not rows:
            return UpdatedSerials(serial_numbers=[], last_updated=None)
        return UpdatedSerials(
            serial_numbers=sorted({row.serial_number for row in rows}),
            last_updated=max(ensure_aware(row.updated_at) for row in rows),
        )

    async def cached_balance(self, pass_type_id: str, serial_number: str) -> tuple[int | None, datetime | None]:
        stmt = (
            select(DevicePassRegistration)
            .where(
                DevicePassRegistration.pass_type_identifier == pass_type_id,
                DevicePassRegistration.serial_number == serial_number,
            )
            .order_by(DevicePassRegistration.updated_at.desc())
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None, None
        return row.balance_cents, ensure_aware(row.updated_at)
