"""Receipt rendering and dispatch.

Two renderings of the same order snapshot: a compact kitchen ticket and the
full customer receipt, the latter printed as two numbered copies ("vias").
A print surface turns a payload into a document and sends it to a printer;
the default one posts to the local print agent configured on the Printer row.
"""
import asyncio
from abc import ABC, abstractmethod
import logging
import re
from datetime import datetime

import httpx
from sqlalchemy.orm import Session

from pdv.config import settings
from pdv.errors import PrintError
from pdv.models.common import utcnow, as_utc
from pdv.models.core import DiningTable, Order, OrderStatus, PaymentMethod, Printer, SalesChannel
from pdv.services.billing import live_items, money, restaurant_settings

logger = logging.getLogger(__name__)

CUSTOMER_VIAS = 2
WIDTH = 42

PAYMENT_LABELS = {
    "cash": "Dinheiro",
    "credit_card": "Cartão de Crédito",
    "debit_card": "Cartão de Débito",
    "pix": "PIX",
    "pending": "Pendente",
}

CHANNEL_BADGES = {
    SalesChannel.KIOSK: "TOTEM",
    SalesChannel.DINE_IN: "MESA",
    SalesChannel.ONLINE: "ONLINE",
}

PREFIX_BADGES = (("TOTEM", "TOTEM"), ("MESA", "MESA"), ("PED", "ONLINE"))
DELIVERY_BADGES = {"delivery": "DELIVERY", "pickup": "RETIRADA"}


def channel_badge(order_number: str, delivery_type: str, channel: SalesChannel | None = None) -> str:
    if channel in CHANNEL_BADGES:
        return CHANNEL_BADGES[channel]
    # legacy rows without a channel still carry it in the number prefix
    for prefix, badge in PREFIX_BADGES:
        if channel is None and order_number.startswith(prefix):
            return badge
    return DELIVERY_BADGES.get(delivery_type, "BALCÃO")


def _fmt(x) -> str:
    return f"R$ {money(x):.2f}"


def _row(left: str, right: str) -> str:
    gap = max(1, WIDTH - len(left) - len(right))
    return f"{left}{' ' * gap}{right}"


def _stamp(dt: datetime | None) -> str:
    dt = as_utc(dt) or utcnow()
    return dt.strftime("%d/%m/%Y %H:%M")


def _barcode(text: str) -> str:
    return f"*{text}*"


# --- payload ----------------------------------------------------------------

def build_payload(db: Session, order: Order) -> dict:
    """Plain-data snapshot of the order; safe to hand to background work."""
    rs = restaurant_settings(db)
    table_number = None
    if order.table_id:
        t = db.get(DiningTable, order.table_id)
        table_number = t.number if t else None

    return {
        "restaurant": {"name": rs.name, "phone": rs.phone, "address": rs.address, "footer": rs.receipt_footer},
        "table_number": table_number,
        "order": {
            "id": order.id,
            "order_number": order.order_number,
            "sequential_number": order.sequential_number,
            "channel": order.channel.value,
            "channel_badge": channel_badge(order.order_number, order.delivery_type.value, order.channel),
            "delivery_type": order.delivery_type.value,
            "status": order.status.value,
            "paid": order.status == OrderStatus.COMPLETED and order.payment_method != PaymentMethod.PENDING,
            "payment_method": order.payment_method.value,
            "customer_name": order.customer_name,
            "customer_phone": order.customer_phone,
            "customer_cpf": order.customer_cpf,
            "notes": order.notes,
            "created_at": _stamp(order.created_at),
            "subtotal": str(money(order.subtotal)),
            "service_fee": str(money(order.service_fee)),
            "service_fee_rate": str(order.service_fee_rate or 0),
            "delivery_fee": str(money(order.delivery_fee)),
            "discount": str(money(order.discount)),
            "total": str(money(order.total)),
        },
        "items": [
            {
                "name": i.name,
                "quantity": i.quantity,
                "unit_price": str(money(i.unit_price)),
                "total_price": str(money(i.total_price)),
                "notes": i.notes,
            }
            for i in live_items(db, order.id)
        ],
    }


# --- rendering --------------------------------------------------------------

def render_kitchen(payload: dict) -> str:
    o = payload["order"]
    lines = [
        (o["customer_name"] or "Cliente").center(WIDTH),
        ("✓ PAGO" if o["paid"] else "PENDENTE").center(WIDTH),
        "-" * WIDTH,
        _row("Pedido:", o["order_number"]),
        _row("Data/Hora:", o["created_at"]),
    ]
    if payload.get("table_number"):
        lines.append(_row("Mesa:", str(payload["table_number"])))
    lines += [
        _row("Canal:", f"[{o['channel_badge']}]"),
        _row("Total:", _fmt(o["total"])),
        "-" * WIDTH,
    ]
    for item in payload["items"]:
        lines.append(f"{item['quantity']}x {item['name']}")
        if item["notes"]:
            lines.append(f"   ↳ {item['notes']}")
    if o["notes"]:
        lines += ["-" * WIDTH, f"OBS: {o['notes']}"]
    lines += [
        "",
        _barcode(o["order_number"]).center(WIDTH),
        "",
        "_" * 30,
        "Responsável pela Preparação",
        payload["restaurant"]["name"],
    ]
    return "\n".join(lines)


def render_customer(payload: dict, via: int, total_vias: int = CUSTOMER_VIAS) -> str:
    o = payload["order"]
    barcode_key = re.sub(r"\s+", "", (o["customer_name"] or "").upper()) or o["order_number"]
    lines = [
        f"VIA {via} DE {total_vias}".center(WIDTH),
        payload["restaurant"]["name"].center(WIDTH),
        f"[{o['channel_badge']}]".center(WIDTH),
        "=" * WIDTH,
        _barcode(barcode_key).center(WIDTH),
        _row("Pedido:", o["order_number"]),
        _row("Data:", o["created_at"]),
    ]
    if payload.get("table_number"):
        lines.append(_row("Mesa:", str(payload["table_number"])))
    if o["customer_name"] or o["customer_phone"]:
        lines.append("-" * WIDTH)
        if o["customer_name"]:
            lines.append(_row("Cliente:", o["customer_name"]))
        if o["customer_phone"]:
            lines.append(_row("Telefone:", o["customer_phone"]))
        if o["customer_cpf"]:
            lines.append(_row("CPF:", o["customer_cpf"]))
    lines += ["-" * WIDTH, "ITENS DO PEDIDO:"]
    for idx, item in enumerate(payload["items"], start=1):
        lines.append(_row(f"{idx}. {item['quantity']}x {item['name']}", _fmt(item["total_price"])))
        if item["notes"]:
            lines.append(f"   ↳ {item['notes']}")
    lines += ["-" * WIDTH, _row("Subtotal:", _fmt(o["subtotal"]))]
    if money(o["service_fee"]) > 0:
        rate = money(o["service_fee_rate"]).normalize()
        lines.append(_row(f"Taxa de Serviço ({rate:f}%):", _fmt(o["service_fee"])))
    if money(o["delivery_fee"]) > 0:
        lines.append(_row("Taxa de Entrega:", _fmt(o["delivery_fee"])))
    if money(o["discount"]) > 0:
        lines.append(_row("Desconto:", f"-{_fmt(o['discount'])}"))
    lines += [
        "=" * WIDTH,
        f"TOTAL A RECEBER: {_fmt(o['total'])}".center(WIDTH),
        "=" * WIDTH,
        _row("Forma de Pagamento:", PAYMENT_LABELS.get(o["payment_method"], o["payment_method"])),
    ]
    if o["notes"]:
        lines += ["-" * WIDTH, "Observações:", o["notes"]]
    if o["sequential_number"]:
        lines += ["", f"Compra Nº {o['sequential_number']:06d}".center(WIDTH)]
    lines += ["", (payload["restaurant"]["footer"] or "").center(WIDTH), _stamp(None).center(WIDTH)]
    return "\n".join(lines)


# --- print surfaces ---------------------------------------------------------

class PrintSurface(ABC):
    """render(payload) -> document; print(document) delivers it or raises PrintError."""

    def render(self, payload: dict, *, variant: str, via: int | None = None) -> dict:
        text = render_kitchen(payload) if variant == "kitchen" else render_customer(payload, via or 1)
        return {
            "type": "RECEIPT",
            "variant": variant,
            "via": via,
            "order_number": payload["order"]["order_number"],
            "text": text,
        }

    @abstractmethod
    async def print(self, document: dict) -> None:
        ...


class AgentPrintSurface(PrintSurface):
    def __init__(self, url: str, timeout: float | None = None):
        self.url = url
        self.timeout = timeout or settings.PRINT_TIMEOUT_S

    async def print(self, document: dict) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(self.url, json=document)
                r.raise_for_status()
        except httpx.HTTPError as exc:
            raise PrintError(f"print agent at {self.url} failed: {exc}") from exc


class UnconfiguredPrintSurface(PrintSurface):
    def __init__(self, reason: str):
        self.reason = reason

    async def print(self, document: dict) -> None:
        raise PrintError(self.reason)


def surface_for(db: Session, kind: str) -> PrintSurface:
    """Resolve the billing or kitchen printer from RestaurantSettings."""
    rs = restaurant_settings(db)
    printer_id = rs.kitchen_printer_id if kind == "kitchen" else rs.billing_printer_id
    p = db.get(Printer, printer_id) if printer_id else None
    if not p or not p.connection_url:
        return UnconfiguredPrintSurface(f"No {kind} printer configured")
    return AgentPrintSurface(p.connection_url)


# --- dispatch ---------------------------------------------------------------

async def print_kitchen(surface: PrintSurface, payload: dict) -> list[str]:
    try:
        await surface.print(surface.render(payload, variant="kitchen"))
    except PrintError as exc:
        logger.warning("kitchen ticket for %s not printed: %s", payload["order"]["order_number"], exc)
        return [f"Falha ao imprimir comanda da cozinha: {exc}"]
    return []


async def print_customer_copies(surface: PrintSurface, payload: dict, stagger_ms: int | None = None) -> list[str]:
    """Print both customer vias, the second one ``stagger_ms`` after the first.

    Returns operator warnings; an empty list means both copies went out.
    """
    stagger = (settings.RECEIPT_VIA_STAGGER_MS if stagger_ms is None else stagger_ms) / 1000
    warnings: list[str] = []
    for via in range(1, CUSTOMER_VIAS + 1):
        if via > 1:
            await asyncio.sleep(stagger)
        try:
            await surface.print(surface.render(payload, variant="customer", via=via))
        except PrintError as exc:
            logger.warning("via %s of %s not printed: %s", via, payload["order"]["order_number"], exc)
            warnings.append(f"Falha ao imprimir via {via}: {exc}")
    return warnings
