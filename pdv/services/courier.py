"""Courier (motoboy) notification over the messaging channel."""
import logging
from abc import ABC, abstractmethod

import httpx
from sqlalchemy.orm import Session

from pdv.config import settings
from pdv.models.core import Motoboy
from pdv.services.billing import money

logger = logging.getLogger(__name__)


class Messenger(ABC):
    @abstractmethod
    async def send(self, phone: str, text: str) -> bool:
        ...


class WhatsAppMessenger(Messenger):
    """Posts to the messaging gateway's ``/api/messages/send`` endpoint."""

    def __init__(self, base_url: str, device_id: str | None = None, timeout: float | None = None):
        self.url = base_url.rstrip("/") + "/api/messages/send"
        self.device_id = device_id
        self.timeout = timeout or settings.MESSAGING_TIMEOUT_S

    async def send(self, phone: str, text: str) -> bool:
        body = {"phone": phone, "message": text}
        if self.device_id:
            body["device_id"] = self.device_id
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(self.url, json=body)
                r.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("message to %s failed: %s", phone, exc)
            return False
        return True


class NullMessenger(Messenger):
    async def send(self, phone: str, text: str) -> bool:
        logger.warning("messaging not configured; message to %s dropped", phone)
        return False


def default_messenger() -> Messenger:
    if not settings.MESSAGING_URL:
        return NullMessenger()
    return WhatsAppMessenger(settings.MESSAGING_URL, settings.MESSAGING_DEVICE_ID)


def courier_message(payload: dict) -> str:
    o = payload["order"]
    lines = [
        "🛵 *NOVA ENTREGA DISPONÍVEL*",
        "",
        f"📦 Pedido: #{o['order_number']}",
        f"👤 Cliente: {o['customer_name'] or '-'}",
        f"📱 Telefone: {o['customer_phone'] or '-'}",
    ]
    if payload["items"]:
        lines.append("🍽️ Itens: " + ", ".join(f"{i['quantity']}x {i['name']}" for i in payload["items"]))
    lines += [
        f"💰 Valor: R$ {money(o['total']):.2f}",
        "",
        "📍 Aguardando coleta no balcão",
    ]
    return "\n".join(lines)


def active_couriers(db: Session) -> list[Motoboy]:
    return (
        db.query(Motoboy)
        .filter(Motoboy.is_active.is_(True), Motoboy.deleted_at.is_(None))
        .order_by(Motoboy.name.asc())
        .all()
    )


def check_courier(db: Session, motoboy_id: str | None) -> tuple[Motoboy | None, str | None]:
    """Return (courier, warning). A missing phone is a configuration warning, never an error."""
    if not motoboy_id:
        return None, None
    m = db.get(Motoboy, motoboy_id)
    if m is None or m.deleted_at is not None or not m.is_active:
        return None, "Motoboy não encontrado ou inativo"
    if not m.phone:
        return m, f"Motoboy {m.name} sem telefone cadastrado"
    return m, None


async def notify(messenger: Messenger, phone: str, payload: dict) -> bool:
    ok = await messenger.send(phone, courier_message(payload))
    if ok:
        logger.info("courier at %s notified for order %s", phone, payload["order"]["order_number"])
    return ok
