"""Check orchestration.

`DrugMonitor` owns all run state: the single-flight guard, the set of drugs
whose query failed in the latest run and the handle of the pending retry
wave.  A run checks every configured drug in order and notifies subscribers
of each successful result; failed drugs get exactly one deferred retry.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Optional, Sequence, Set

from . import config, db, notifier
from .db import Subscriber
from .notifier import MessageTransport
from .pharmacy_api import CheckOutcome, check_drug

logger = logging.getLogger(__name__)

Checker = Callable[[str], CheckOutcome]


class DrugMonitor:
    def __init__(
        self,
        drugs: Iterable[str],
        *,
        transport: MessageTransport,
        checker: Checker = check_drug,
        list_subscribers: Callable[[], List[Subscriber]] = db.get_active_subscribers,
        deactivate: Callable[[int], bool] = db.deactivate_subscriber,
        retry_delay: float = config.RETRY_DELAY_SECONDS,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self.drugs: List[str] = [d.strip() for d in drugs if d and d.strip()]
        self._transport = transport
        self._checker = checker
        self._list_subscribers = list_subscribers
        self._deactivate = deactivate
        self.retry_delay = retry_delay
        self._timer_factory = timer_factory

        self._run_guard = threading.Lock()
        # protects _failed_drugs, _retry_timer and _retry_generation
        self._state_lock = threading.Lock()
        self._failed_drugs: Set[str] = set()
        self._retry_timer: Optional[threading.Timer] = None
        # bumped on every schedule and cancel; a wave only runs if its generation is current
        self._retry_generation = 0

    # ---- state ---------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._run_guard.locked()

    @property
    def failed_drugs(self) -> Set[str]:
        with self._state_lock:
            return set(self._failed_drugs)

    @property
    def pending_retry(self) -> Optional[threading.Timer]:
        with self._state_lock:
            return self._retry_timer

    # ---- main run --------------------------------------------------------------

    def run_checks(self) -> bool:
        """Check all drugs once. Returns False if another run was in progress."""
        if not self._run_guard.acquire(blocking=False):
            logger.warning("A check is already running, skipping")
            return False

        try:
            subscribers = self._list_subscribers()
            logger.info("=== Starting drug check ===")
            logger.info("Drugs: %s", ", ".join(self.drugs))
            logger.info("Active subscribers: %d", len(subscribers))

            failed: Set[str] = set()
            for drug in self.drugs:
                try:
                    ok = self._check_and_notify(drug, subscribers)
                except Exception:
                    logger.exception("Unexpected error while processing %s", drug)
                    continue
                if not ok:
                    logger.warning("Skipping notifications for %s because of an API error", drug)
                    failed.add(drug)

            logger.info("=== Drug check finished ===")
            if failed:
                self.schedule_retry(failed)
        except Exception:
            logger.exception("Unexpected error during drug check")
        finally:
            self._run_guard.release()
        return True

    def _check_and_notify(self, drug: str, subscribers: Sequence[Subscriber]) -> bool:
        """Check one drug and notify on success. Returns False if the query failed."""
        outcome = self._checker(drug)
        if not outcome.ok:
            logger.error("Error checking %s: %s", drug, outcome.error)
            return False

        result = outcome.result
        logger.info("%s: %s", drug, "AVAILABLE" if result.is_available else "not available")
        notifier.notify_subscribers(
            drug,
            result,
            subscribers,
            transport=self._transport,
            deactivate=self._deactivate,
        )
        logger.info("Notifications sent for %s", drug)
        return True

    # ---- retry wave ------------------------------------------------------------

    def schedule_retry(self, failed_drugs: Iterable[str]) -> None:
        """Schedule one retry wave for `failed_drugs`, replacing any pending one."""
        failed = set(failed_drugs)
        if not failed:
            return

        with self._state_lock:
            if self._retry_timer is not None:
                self._retry_timer.cancel()
                logger.info("Cancelled pending retry for %s", ", ".join(sorted(self._failed_drugs)))
            self._failed_drugs = failed
            self._retry_generation += 1
            timer = self._timer_factory(
                self.retry_delay, self._run_retry_wave, args=(self._retry_generation,),
            )
            timer.daemon = True
            timer.name = "drug-retry"
            self._retry_timer = timer
            timer.start()

        logger.info("Retry scheduled for %d drugs in %.0f seconds", len(failed), self.retry_delay)

    def _run_retry_wave(self, generation: int) -> None:
        with self._state_lock:
            if generation != self._retry_generation:
                # superseded or cancelled between firing and taking the lock
                return
            drugs = sorted(self._failed_drugs)
            self._failed_drugs = set()
            self._retry_timer = None

        if not drugs:
            return

        logger.info("Retrying drugs that failed: %s", ", ".join(drugs))
        try:
            subscribers = self._list_subscribers()
        except Exception:
            logger.exception("Could not load subscribers for the retry wave")
            return

        for drug in drugs:
            try:
                ok = self._check_and_notify(drug, subscribers)
            except Exception:
                logger.exception("Unexpected error while retrying %s", drug)
                continue
            if not ok:
                logger.warning("%s failed again; it will be checked on the next scheduled run", drug)

    def shutdown(self) -> None:
        """Cancel a pending retry wave, if any."""
        with self._state_lock:
            self._retry_generation += 1
            if self._retry_timer is not None:
                self._retry_timer.cancel()
                self._retry_timer = None
            self._failed_drugs = set()


__all__ = ["DrugMonitor"]
