import logging
import re
from datetime import datetime
from typing import Protocol

import requests

from stockflow.core.config import settings
from stockflow.core.observability import log_event

logger = logging.getLogger("stockflow.notify")

_ID_MONTHS = (
    "Januari",
    "Februari",
    "Maret",
    "April",
    "Mei",
    "Juni",
    "Juli",
    "Agustus",
    "September",
    "Oktober",
    "November",
    "Desember",
)


def normalize_phone(phone: str, *, country_code: str | None = None) -> str:
    """Keep digits only and swap a leading trunk ``0`` for the country code (08xx -> 628xx)."""
    digits = re.sub(r"[^0-9]", "", phone or "")
    if digits.startswith("0"):
        digits = (country_code or settings.phone_country_code) + digits[1:]
    return digits


def format_long_date(value: datetime) -> str:
    return f"{value.day} {_ID_MONTHS[value.month - 1]} {value.year}"


def build_loan_reminder_message(
    borrower_name: str,
    product_name: str,
    qty: int,
    due_date: datetime,
    transaction_code: str,
) -> str:
    return "\n".join(
        [
            "⚠️ *Pengingat Peminjaman Barang*",
            "",
            f"Halo *{borrower_name}*,",
            "",
            "Kami ingin mengingatkan bahwa peminjaman barang berikut sudah melewati batas waktu:",
            "",
            f"📦 Barang: *{product_name}*",
            f"🔢 Jumlah: *{qty}*",
            f"📅 Jatuh Tempo: *{format_long_date(due_date)}*",
            f"🔖 Kode: *{transaction_code}*",
            "",
            "Mohon segera mengembalikan barang tersebut.",
            "Terima kasih.",
            "",
            f"— _{settings.app_name}_",
        ]
    )


class NotificationSender(Protocol):
    name: str

    def send(self, phone: str, message: str) -> bool:
        ...


class StubWhatsAppSender:
    name = "whatsapp_stub"

    def send(self, phone: str, message: str) -> bool:
        log_event(logger, "notification_stub_send", provider=self.name, phone=phone, chars=len(message))
        return True


class WahaSender:
    """Sends WhatsApp text through a WAHA (WhatsApp HTTP API) instance."""

    name = "waha"

    def __init__(
        self,
        *,
        base_url: str,
        session: str = "default",
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    def send(self, phone: str, message: str) -> bool:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        try:
            response = requests.post(
                f"{self.base_url}/api/sendText",
                json={"chatId": f"{phone}@c.us", "text": message, "session": self.session},
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            log_event(
                logger,
                "notification_send_failed",
                level=logging.WARNING,
                provider=self.name,
                phone=phone,
                error=str(exc),
            )
            return False
        if not response.ok:
            log_event(
                logger,
                "notification_send_rejected",
                level=logging.WARNING,
                provider=self.name,
                phone=phone,
                status_code=response.status_code,
            )
        return response.ok


def get_notification_sender(name: str | None = None) -> NotificationSender:
    normalized = (name or settings.notification_provider_default or "").strip().lower()
    if normalized == StubWhatsAppSender.name:
        return StubWhatsAppSender()
    if normalized == WahaSender.name:
        if not settings.waha_base_url:
            raise ValueError("WAHA_BASE_URL is not configured")
        return WahaSender(
            base_url=settings.waha_base_url,
            session=settings.waha_session,
            api_key=settings.waha_api_key,
            timeout_seconds=settings.notification_timeout_seconds,
        )
    raise ValueError(
        f"Unknown notification provider '{name}'. Available: {StubWhatsAppSender.name}, {WahaSender.name}"
    )
