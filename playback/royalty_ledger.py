"""
Royalty Ledger - Exactly-once crediting of valid plays

Key layout on the backing KeyValueStore:
    royalty:record:{track_id}:{session_id}   -> RoyaltyRecord
    royalty:session:{session_id}             -> track id (duplicate-credit guard)
    royalty:balance:{recipient}:{track_id}   -> {"amount", "plays"} per recipient and track
    royalty:totals:{track_id}                -> {"total_plays", "total_royalties_accrued"}
    royalty:halted:{track_id}                -> reason crediting was stopped

Crediting a play and marking its session ENDED_VALID form one unit: the
session commit runs inside credit() under the per-track lock, and every
ledger write is undone if that commit fails.

Any detected inconsistency raises LedgerConsistencyError, is logged with
full context and halts crediting for the track until resume_track() is
called after manual reconciliation. Nothing is ever corrected silently.
"""

import time
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import Settings, settings as default_settings
from playback.catalog import percentages_sum_ok
from playback.errors import LedgerConsistencyError
from playback.locks import KeyedLock
from playback.models import (
    PlaybackSession,
    QualityTier,
    RecipientShare,
    RoyaltyRecord,
    Track,
    iso_timestamp,
)
from playback.quality_policy import QualityPolicy
from playback.storage import KeyValueStore
from utils.logger import logger


RECORD_PREFIX = "royalty:record:"
SESSION_MARK_PREFIX = "royalty:session:"
BALANCE_PREFIX = "royalty:balance:"
TOTALS_PREFIX = "royalty:totals:"
HALTED_PREFIX = "royalty:halted:"

ZERO = Decimal("0")


def _utc_date(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).date().isoformat()


class _WriteJournal:
    """Records previous values of every key written so the batch can be undone"""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._previous: List[Tuple[str, Optional[Any]]] = []

    def set(self, key: str, value: Any) -> None:
        self._previous.append((key, self.store.get(key)))
        self.store.set(key, value)

    def rollback(self) -> None:
        for key, previous in reversed(self._previous):
            if previous is None:
                self.store.delete(key)
            else:
                self.store.set(key, previous)
        self._previous.clear()


class RoyaltyLedger:
    """
    Per-track, per-recipient royalty accrual.

    Credits for one track are serialized by a per-track lock so split
    arithmetic and counter increments never interleave.
    """

    def __init__(
        self,
        store: KeyValueStore,
        quality_policy: Optional[QualityPolicy] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.quality_policy = quality_policy or QualityPolicy(self.settings)
        self.clock = clock
        self._track_locks = KeyedLock("track", timeout=self.settings.LOCK_TIMEOUT_SECONDS)

    # ------------------------------------------------------------------
    # Payout arithmetic
    # ------------------------------------------------------------------

    def compute_payout(self, tier: QualityTier) -> Decimal:
        """Per-play payout for a tier, quantized to the smallest money unit"""
        raw = self.settings.PER_PLAY_RATE * self.quality_policy.quality_multiplier(tier)
        return raw.quantize(self.settings.MONEY_UNIT, rounding=ROUND_HALF_EVEN)

    def compute_split(
        self,
        track: Track,
        payout: Decimal,
        session_id: Optional[str] = None,
    ) -> List[RecipientShare]:
        """
        Split a payout across the track's recipients.

        Percentages are weighted by their actual sum, which may differ from
        1.0 by the accepted tolerance. Each share is rounded down to the
        smallest unit, so the residual is never negative; it goes to the
        first recipient so the shares always sum to exactly the payout.

        Raises:
            LedgerConsistencyError: If percentages do not sum to 1.0 within
                tolerance, or the split cannot be made to sum to the payout
        """
        recipients = track.royalty_recipients
        if not recipients or not percentages_sum_ok(recipients):
            raise LedgerConsistencyError(
                f"Royalty percentages for track {track.id} do not sum to 1.0",
                track_id=track.id,
                session_id=session_id,
                split=[r.to_dict() for r in recipients],
            )

        unit = self.settings.MONEY_UNIT
        weight_total = sum((r.percentage for r in recipients), ZERO)
        amounts = [
            (payout * r.percentage / weight_total).quantize(unit, rounding=ROUND_DOWN)
            for r in recipients
        ]
        amounts[0] += payout - sum(amounts, ZERO)
        shares = [RecipientShare(recipient=r.address, amount=a) for r, a in zip(recipients, amounts)]

        if any(s.amount < 0 for s in shares) or sum((s.amount for s in shares), ZERO) != payout:
            raise LedgerConsistencyError(
                f"Royalty split for track {track.id} does not sum to payout {payout}",
                track_id=track.id,
                session_id=session_id,
                split=[s.to_dict() for s in shares],
            )
        return shares

    # ------------------------------------------------------------------
    # Crediting
    # ------------------------------------------------------------------

    def credit(
        self,
        session: PlaybackSession,
        track: Track,
        commit: Callable[[RoyaltyRecord], None],
    ) -> RoyaltyRecord:
        """
        Credit one valid play and commit the session transition with it.

        Args:
            session: Session being ended as valid (already transitioned in memory)
            track: Catalog track supplying the recipients
            commit: Persists the ENDED_VALID session; runs after the ledger
                writes, under the track lock. If it raises, the ledger writes
                are rolled back and the error propagates.

        Raises:
            LedgerConsistencyError: Halted track, duplicate credit or bad split
        """
        with self._track_locks.hold(track.id):
            halted = self.store.get(f"{HALTED_PREFIX}{track.id}")
            if halted is not None:
                raise self._fail(LedgerConsistencyError(
                    f"Crediting for track {track.id} is halted pending reconciliation",
                    track_id=track.id,
                    session_id=session.session_id,
                    split=halted.get("split"),
                ), halt=False)

            if self.store.get(f"{SESSION_MARK_PREFIX}{session.session_id}") is not None:
                raise self._fail(LedgerConsistencyError(
                    f"Session {session.session_id} has already been credited",
                    track_id=track.id,
                    session_id=session.session_id,
                ))

            payout = self.compute_payout(session.tier)
            try:
                shares = self.compute_split(track, payout, session.session_id)
            except LedgerConsistencyError as e:
                raise self._fail(e)

            now = self.clock()
            record = RoyaltyRecord(
                track_id=track.id,
                session_id=session.session_id,
                listener_id=session.user_id,
                tier=session.tier,
                amount=payout,
                per_recipient_split=shares,
                timestamp=now,
            )

            journal = _WriteJournal(self.store)
            try:
                journal.set(f"{RECORD_PREFIX}{track.id}:{session.session_id}", record.to_dict())
                journal.set(f"{SESSION_MARK_PREFIX}{session.session_id}", track.id)

                totals = self._read_totals(track.id)
                journal.set(f"{TOTALS_PREFIX}{track.id}", {
                    "total_plays": totals["total_plays"] + 1,
                    "total_royalties_accrued": str(Decimal(totals["total_royalties_accrued"]) + payout),
                })

                for share in shares:
                    key = f"{BALANCE_PREFIX}{share.recipient}:{track.id}"
                    balance = self.store.get(key) or {"amount": "0", "plays": 0}
                    journal.set(key, {
                        "amount": str(Decimal(balance["amount"]) + share.amount),
                        "plays": balance["plays"] + 1,
                    })

                commit(record)
            except Exception:
                logger.exception(
                    f"Royalty credit for session {session.session_id} on track {track.id} "
                    f"failed; rolling back ledger writes"
                )
                journal.rollback()
                raise

        self.apply_totals(track)
        logger.info(
            f"Royalty credited: track={track.id} session={session.session_id} "
            f"amount={payout} split={[s.to_dict() for s in shares]}"
        )
        return record

    def _fail(self, error: LedgerConsistencyError, halt: bool = True) -> LedgerConsistencyError:
        """Log a consistency failure with full context and halt the track"""
        logger.error(
            f"LEDGER CONSISTENCY FAILURE: {error.message} "
            f"(track={error.track_id}, session={error.session_id}, split={error.split})"
        )
        if halt:
            self.halt_track(error.track_id, error.message, error.session_id, error.split)
        return error

    def is_credited(self, session_id: str) -> bool:
        return self.store.get(f"{SESSION_MARK_PREFIX}{session_id}") is not None

    # ------------------------------------------------------------------
    # Halting
    # ------------------------------------------------------------------

    def halt_track(
        self,
        track_id: str,
        reason: str,
        session_id: Optional[str] = None,
        split: Optional[Any] = None,
    ) -> None:
        self.store.set(f"{HALTED_PREFIX}{track_id}", {
            "reason": reason,
            "session_id": session_id,
            "split": split,
            "halted_at": self.clock(),
        })
        logger.error(f"Crediting halted for track {track_id}: {reason}")

    def is_halted(self, track_id: str) -> bool:
        return self.store.get(f"{HALTED_PREFIX}{track_id}") is not None

    def halted_tracks(self) -> Dict[str, Dict[str, Any]]:
        return {
            key[len(HALTED_PREFIX):]: value
            for key, value in self.store.scan_prefix(HALTED_PREFIX)
        }

    def resume_track(self, track_id: str) -> bool:
        """Re-enable crediting after manual reconciliation. Returns True if it was halted"""
        with self._track_locks.hold(track_id):
            resumed = self.store.delete(f"{HALTED_PREFIX}{track_id}")
        if resumed:
            logger.warning(f"Crediting resumed for track {track_id} after reconciliation")
        return resumed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _read_totals(self, track_id: str) -> Dict[str, Any]:
        return self.store.get(f"{TOTALS_PREFIX}{track_id}") or {
            "total_plays": 0,
            "total_royalties_accrued": "0",
        }

    def apply_totals(self, track: Track) -> Track:
        """Fill a catalog track's royalty counters from the ledger totals"""
        totals = self._read_totals(track.id)
        track.total_plays = totals["total_plays"]
        track.total_royalties_accrued = Decimal(totals["total_royalties_accrued"])
        return track

    def records_for_track(self, track_id: str) -> List[RoyaltyRecord]:
        return [
            RoyaltyRecord.from_dict(value)
            for _, value in self.store.scan_prefix(f"{RECORD_PREFIX}{track_id}:")
        ]

    def get_track_stats(self, track_id: str) -> Dict[str, Any]:
        """Play and royalty statistics for one track, derived from the ledger"""
        totals = self._read_totals(track_id)
        records = self.records_for_track(track_id)
        today = _utc_date(self.clock())

        total_plays = totals["total_plays"]
        listeners = {r.listener_id for r in records}
        unique = len(listeners)
        return {
            "track_id": track_id,
            "total_plays": total_plays,
            "plays_today": sum(1 for r in records if _utc_date(r.timestamp) == today),
            "total_royalties_accrued": totals["total_royalties_accrued"],
            "unique_listeners": unique,
            "average_listens_per_user": round(total_plays / unique, 4) if unique else 0,
            "crediting_halted": self.is_halted(track_id),
        }

    def get_artist_earnings(self, artist_id: str) -> Dict[str, Any]:
        """
        Aggregate an artist's balances across every track they receive from.

        Returns:
            total, today's earnings, per-track breakdown and the most recent
            records in which the artist received a share
        """
        today = _utc_date(self.clock())
        prefix = f"{BALANCE_PREFIX}{artist_id}:"

        total = ZERO
        today_total = ZERO
        breakdown = []
        recent: List[Tuple[float, Dict[str, Any]]] = []

        for key, balance in self.store.scan_prefix(prefix):
            track_id = key[len(prefix):]
            amount = Decimal(balance["amount"])
            total += amount
            breakdown.append({"track_id": track_id, "amount": str(amount), "plays": balance["plays"]})

            for record in self.records_for_track(track_id):
                share = next((s for s in record.per_recipient_split if s.recipient == artist_id), None)
                if share is None:
                    continue
                if _utc_date(record.timestamp) == today:
                    today_total += share.amount
                entry = record.to_public_dict()
                entry["artist_share"] = str(share.amount)
                recent.append((record.timestamp, entry))

        breakdown.sort(key=lambda b: Decimal(b["amount"]), reverse=True)
        recent.sort(key=lambda item: item[0], reverse=True)
        return {
            "artist_id": artist_id,
            "total_earnings": str(total),
            "today_earnings": str(today_total),
            "breakdown": breakdown,
            "recent_records": [entry for _, entry in recent[: self.settings.RECENT_RECORDS_LIMIT]],
            "as_of": iso_timestamp(self.clock()),
        }
