"""
Group provisioning: the store rows and the WhatsApp group behind a new
carpool circle.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal

import requests

from cajurona.adapters.ports import WhatsAppGateway
from cajurona.domain.phones import lookup_formats, normalize_phone
from cajurona.domain.schedule import Weekday
from cajurona.domain.store import ZERO, CarpoolStore, Group, Leg, PricingModel, Trip

log = logging.getLogger(__name__)

LEGS: tuple[Leg, ...] = ("ida", "volta")


def week_start(day: date) -> date:
    """Monday of the week containing `day`."""
    return day - timedelta(days=day.weekday())


class GroupProvisioner:

    def __init__(self, store: CarpoolStore, gateway: WhatsAppGateway):
        self._store = store
        self._gateway = gateway

    async def create_group(
        self,
        name: str,
        driver_name: str,
        driver_phone: str,
        outbound_time: str = "07:00",
        return_time: str = "18:00",
        pricing_model: PricingModel = "semanal",
        weekly_price: Decimal = ZERO,
        per_trip_price: Decimal = ZERO,
        cancellation_window_minutes: int = 30,
        week_of: date | None = None,
    ) -> Group:
        """
        Create the group with its driver membership, one week of trips and
        a WhatsApp group whose invite link is stored on the group.
        """
        phone = normalize_phone(driver_phone)
        driver = await self._store.find_user_by_phones(lookup_formats(phone))
        if driver is None:
            driver = await self._store.create_user(driver_name, phone)

        group = await self._store.create_group(
            name,
            driver.user_id,
            outbound_time,
            return_time,
            pricing_model,
            weekly_price=weekly_price,
            per_trip_price=per_trip_price,
            cancellation_window_minutes=cancellation_window_minutes,
        )
        await self._store.create_member(
            group.group_id, driver.user_id, is_driver=True, approval_status="aprovado",
        )
        trips = await self.create_week_trips(group, week_of or date.today())
        log.info("Group %r created with %d trips", name, len(trips))

        whatsapp = self._gateway.create_group(name, [phone])
        try:
            link = self._gateway.get_invite_link(whatsapp.group_jid)
        except requests.RequestException as exc:
            log.warning("No invite link for %s yet: %s", whatsapp.group_jid, exc)
            link = None
        await self._store.set_group_whatsapp(group.group_id, whatsapp.group_jid, link)

        return await self._store.get_group(group.group_id)

    async def create_week_trips(self, group: Group, week_of: date) -> list[Trip]:
        """Trips for Monday..Friday × both legs; existing trips are left alone."""
        monday = week_start(week_of)
        created = []
        for weekday in Weekday:
            day = monday + timedelta(days=weekday - 1)
            for leg in LEGS:
                if await self._store.find_trip(group.group_id, day, leg):
                    continue
                created.append(
                    await self._store.create_trip(
                        group.group_id, day, leg, group.departure_for(leg)
                    )
                )
        return created

    async def renew_invite_link(self, group: Group) -> str | None:
        if not group.whatsapp_group_id:
            log.warning("Group %s has no WhatsApp group", group.group_id)
            return None
        link = self._gateway.renew_invite_link(group.whatsapp_group_id)
        await self._store.set_group_whatsapp(group.group_id, group.whatsapp_group_id, link)
        return link
