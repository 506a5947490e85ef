"""Kiosk UI sessions.

A session is an opaque token with a server-side ``expires_at`` that every
interaction pushes forward. State changes go through conditional UPDATEs so
an inactivity reset and a checkout can never both win.
"""
import logging
from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from pdv.config import settings
from pdv.errors import KioskSessionExpired
from pdv.models.common import utcnow, as_utc
from pdv.models.core import KioskSession, KioskSessionState
from pdv.util.security import opaque_token

logger = logging.getLogger(__name__)

LIVE_STATES = (KioskSessionState.ACTIVE, KioskSessionState.AWAITING_PAYMENT)


class KioskSessionStore:
    def __init__(self, db: Session, inactivity_seconds: int | None = None):
        self.db = db
        self.ttl = timedelta(seconds=inactivity_seconds or settings.KIOSK_INACTIVITY_SECONDS)

    def _deadline(self):
        return utcnow() + self.ttl

    def open(self) -> KioskSession:
        s = KioskSession(token=opaque_token(), state=KioskSessionState.ACTIVE, expires_at=self._deadline())
        self.db.add(s)
        self.db.commit()
        return s

    def get(self, token: str) -> KioskSession | None:
        s = self.db.query(KioskSession).filter(KioskSession.token == token).first()
        if s is None:
            return None
        if s.state in LIVE_STATES and as_utc(s.expires_at) <= utcnow():
            self._expire(s)
        return s

    def _expire(self, s: KioskSession) -> None:
        res = self.db.execute(
            update(KioskSession)
            .where(KioskSession.id == s.id, KioskSession.state.in_(LIVE_STATES))
            .values(state=KioskSessionState.EXPIRED)
        )
        self.db.commit()
        self.db.refresh(s)
        if res.rowcount:
            # only the UI state is reset; any order already placed stays as is
            logger.info("kiosk session %s expired after inactivity", s.id)

    def touch(self, token: str) -> KioskSession:
        now = utcnow()
        res = self.db.execute(
            update(KioskSession)
            .where(
                KioskSession.token == token,
                KioskSession.state.in_(LIVE_STATES),
                KioskSession.expires_at > now,
            )
            .values(expires_at=now + self.ttl)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        s = self.get(token)
        if s is not None and res.rowcount != 1:
            raise KioskSessionExpired("kiosk session expired, start a new one")
        if s is not None:
            self.db.refresh(s)
        return s

    def begin_checkout(self, token: str) -> KioskSession | None:
        """Atomically move ``active -> checking_out`` while the session is still live.

        Raises ``KioskSessionExpired`` when inactivity already reset it (or a
        checkout is already running); returns ``None`` for unknown tokens.
        """
        res = self.db.execute(
            update(KioskSession)
            .where(
                KioskSession.token == token,
                KioskSession.state == KioskSessionState.ACTIVE,
                KioskSession.expires_at > utcnow(),
            )
            .values(state=KioskSessionState.CHECKING_OUT)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        s = self.get(token)
        if s is None:
            return None
        if res.rowcount != 1:
            raise KioskSessionExpired("kiosk session is no longer active")
        self.db.refresh(s)
        return s

    def release(self, s: KioskSession) -> None:
        """Checkout was rejected before an order existed: back to ``active``."""
        self.db.rollback()
        s.state = KioskSessionState.ACTIVE
        s.expires_at = self._deadline()
        self.db.commit()

    def attach_order(self, s: KioskSession, order_id: str) -> None:
        s.order_id = order_id
        s.state = KioskSessionState.AWAITING_PAYMENT
        s.expires_at = self._deadline()
        self.db.commit()

    def finish(self, s: KioskSession) -> None:
        s.state = KioskSessionState.CLOSED
        self.db.commit()
