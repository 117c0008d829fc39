# This file is part of lfchain
#
# lfchain is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
#
# Copyright 2026 lfchain contributors


"""
Rolling credential protocol: creation of hash chain cards, verification of
the value presented by a card and advance of the card to the next chain
value.
"""

from enum import Enum
from typing import Callable, List, Optional
import queue
import time
import colorama
from . import LFChainError
from .allocator import IdentifierAllocator
from .chain import HashChainGenerator, value_from_bytes
from .record import HashChainRecord, parse_tag_payload
from .store import CredentialStore
from .worker import TagEvent, TagResult, TagWorker


# Bounded wait of one protocol tick, in seconds.
POLL_TICK = 0.1


class Mismatch(LFChainError):
    """Thrown when the value presented by a card is not the expected one."""

    def __init__(self, card_id: int, expected: bytes, got: bytes):
        super().__init__(
            f"Card {card_id} value mismatch: expected {expected.hex()}, "
            f"got {got.hex()}"
        )
        self.card_id = card_id
        self.expected = expected
        self.got = got


class MalformedPayload(LFChainError):
    """Thrown when a card payload is not a rolling credential payload."""

    def __init__(self, data: bytes):
        super().__init__(f"Unexpected card payload {data.hex()}")
        self.data = data


class ChainExhausted(LFChainError):
    """Thrown when advancing a card already at the last chain value."""

    def __init__(self, card_id: int):
        super().__init__(f"Chain of card {card_id} exhausted, card must be re-created")
        self.card_id = card_id


class ProtocolState(Enum):
    IDLE = 0
    CREATING = 1
    CREATE_SUCCEEDED = 2
    CREATE_FAILED = 3
    VERIFYING = 4
    VERIFY_SUCCEEDED = 5
    VERIFY_FAILED = 6
    ADVANCING = 7
    ADVANCE_SUCCEEDED = 8
    ADVANCE_FAILED = 9

    @property
    def running(self) -> bool:
        """True when a tag operation is outstanding."""
        return self in (
            ProtocolState.CREATING,
            ProtocolState.VERIFYING,
            ProtocolState.ADVANCING,
        )


class Outcome:
    """
    Result of a protocol step, for display. `state` is the outcome state the
    protocol entered. Failed outcomes carry the error which caused them.
    """

    def __init__(
        self,
        state: ProtocolState,
        reason: str,
        card_id: Optional[int] = None,
        value: Optional[int] = None,
        error: Optional[LFChainError] = None,
    ):
        self.state = state
        self.reason = reason
        self.card_id = card_id
        self.value = value
        self.error = error

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def __repr__(self):
        return f"Outcome({self.state.name}, {self.reason!r})"


class CheckoutContext:
    """
    Holds the record being created or verified. A record is checked out for
    the duration of one create, or one verify and advance pair, and released
    when a terminal outcome is reached.
    """

    def __init__(self):
        self.record: Optional[HashChainRecord] = None
        # Record with the index to be persisted once the card is written.
        self.pending: Optional[HashChainRecord] = None

    def checkout(self, record: HashChainRecord):
        if self.record is not None:
            raise RuntimeError("A record is already checked out")
        self.record = record

    def release(self):
        self.record = None
        self.pending = None


class RollingAuthProtocol:
    """
    Orchestrates rolling credential operations over a :class:`TagWorker`.

    Tag operations are asynchronous. Worker callbacks only post their results
    into an event queue, which is serviced by :meth:`poll`. After a successful
    verification, the read handler posts a message into a single slot
    channel, and the write-back to the card is issued by a separate advance
    task consuming that channel. Hence a write is never started from the
    completion of the read.
    """

    def __init__(
        self,
        worker: TagWorker,
        allocator: IdentifierAllocator,
        store: CredentialStore,
        generator: Optional[HashChainGenerator] = None,
        auto_advance: bool = True,
        on_outcome: Optional[Callable[[Outcome], None]] = None,
    ):
        """
        :param worker: Tag reader/writer.
        :param allocator: Card identifiers allocator.
        :param store: Records store.
        :param generator: Hash chain generator. Default generator builds
            seeds from the clock and OS randomness.
        :param auto_advance: If True, a verified card is advanced right away.
            Otherwise :meth:`advance` must be called.
        :param on_outcome: Called with every outcome.
        """
        self.worker = worker
        self.allocator = allocator
        self.store = store
        self.generator = generator or HashChainGenerator()
        self.auto_advance = auto_advance
        self.on_outcome = on_outcome
        self.context = CheckoutContext()
        self.state = ProtocolState.IDLE
        self.outcome: Optional[Outcome] = None
        # Outcomes since the last step was started.
        self.history: List[Outcome] = []
        self.verbose = False
        self.__events: queue.Queue = queue.Queue()
        self.__advance_channel: queue.Queue = queue.Queue(maxsize=1)
        # Serial number of the outstanding tag operation. Results of older
        # operations are discarded.
        self.__serial = 0

    def log(self, message: str, color=colorama.Fore.RESET):
        if self.verbose:
            print(f"{color}[{self.state.name}] {message}{colorama.Fore.RESET}")

    @property
    def waiting(self) -> bool:
        """True while the current step has not reached an outcome yet."""
        if self.state.running:
            return True
        return self.state == ProtocolState.VERIFY_SUCCEEDED and self.auto_advance

    def create(self):
        """
        Starts creation of a new card: a chain is generated, an identifier
        allocated and the first chain value written to the card. The record is
        stored once the card has been written.
        """
        self.__begin(ProtocolState.CREATING)
        try:
            self.allocator.ensure_table_exists()
            chain = self.generator.generate_fresh()
            card_id = self.allocator.allocate()
        except LFChainError as e:
            self.__finish(
                ProtocolState.CREATE_FAILED, f"Identifier allocation failed: {e}", error=e
            )
            return
        record = HashChainRecord(card_id, chain, 0)
        self.context.checkout(record)
        self.log(f"Allocated card {card_id}")
        self.__write(record.tag_payload(), ProtocolState.CREATE_FAILED)

    def verify(self):
        """Starts reading a card to verify the chain value it holds."""
        self.__begin(ProtocolState.VERIFYING)
        self.__serial += 1
        serial = self.__serial
        try:
            self.worker.read_async(lambda result: self.__events.put((serial, result)))
        except LFChainError as e:
            self.__finish(ProtocolState.VERIFY_FAILED, f"Read failed: {e}", error=e)

    def advance(self):
        """
        Requests the advance of the verified card. Only required when
        `auto_advance` is disabled.
        """
        if self.state != ProtocolState.VERIFY_SUCCEEDED or self.context.record is None:
            raise RuntimeError("No verified card to advance")
        try:
            self.__advance_channel.put_nowait(self.__serial)
        except queue.Full as e:
            raise RuntimeError("Advance already requested") from e

    def acknowledge(self):
        """Leaves an outcome state and goes back to idle."""
        if self.state.running:
            raise RuntimeError("Operation still running")
        self.context.release()
        self.__drain_advance_channel()
        self.state = ProtocolState.IDLE
        self.outcome = None

    def cancel(self):
        """Aborts the current step and goes back to idle."""
        if self.state == ProtocolState.IDLE:
            return
        self.log("Cancelled", colorama.Fore.RED)
        try:
            self.worker.stop()
        finally:
            self.__serial += 1
            self.context.release()
            self.__drain_advance_channel()
            self.state = ProtocolState.IDLE
            self.outcome = None

    def poll(self, timeout: float = POLL_TICK) -> Optional[Outcome]:
        """
        Processes tag operation results. Waits at most `timeout` seconds for
        a result, handles all available results, then runs the advance task.

        :return: Outcome if the current step is finished, None otherwise.
        """
        try:
            events = [self.__events.get(timeout=timeout)]
        except queue.Empty:
            events = []
        while True:
            try:
                events.append(self.__events.get_nowait())
            except queue.Empty:
                break
        for serial, result in events:
            if serial == self.__serial:
                self.__handle(result)
        self.__advance_task()
        if self.waiting:
            return None
        return self.outcome

    def run(self, timeout: Optional[float] = None) -> Optional[Outcome]:
        """
        Polls until the current step is finished.

        :param timeout: Maximum duration in seconds. If the step is not
            finished in time, it is cancelled. None waits forever.
        :return: Final outcome, or None if the step was cancelled.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            outcome = self.poll()
            if outcome is not None or not self.waiting:
                return outcome
            if deadline is not None and time.monotonic() >= deadline:
                self.cancel()
                return None

    def __begin(self, state: ProtocolState):
        if self.state != ProtocolState.IDLE:
            raise RuntimeError(f"Cannot start while in state {self.state.name}")
        self.history = []
        self.outcome = None
        self.state = state
        self.log("Started")

    def __write(self, payload: bytes, failed_state: ProtocolState):
        self.__serial += 1
        serial = self.__serial
        try:
            self.worker.write_async(
                payload, lambda result: self.__events.put((serial, result))
            )
        except LFChainError as e:
            self.__finish(failed_state, f"Write failed: {e}", error=e)

    def __report(self, outcome: Outcome):
        self.outcome = outcome
        self.history.append(outcome)
        color = colorama.Fore.GREEN if outcome.succeeded else colorama.Fore.RED
        self.log(outcome.reason, color)
        if self.on_outcome is not None:
            self.on_outcome(outcome)

    def __finish(self, state: ProtocolState, reason: str, **kwargs):
        self.state = state
        self.context.release()
        self.__report(Outcome(state, reason, **kwargs))

    def __handle(self, result: TagResult):
        if result.event == TagEvent.SENSE_START:
            self.log("Card detected")
            return
        if self.state == ProtocolState.CREATING:
            self.__on_create_written(result)
        elif self.state == ProtocolState.VERIFYING:
            self.__on_read(result)
        elif self.state == ProtocolState.ADVANCING:
            self.__on_advance_written(result)

    def __on_create_written(self, result: TagResult):
        error = result.error()
        if error is not None:
            self.__finish(
                ProtocolState.CREATE_FAILED, f"Card write failed: {error}", error=error
            )
            return
        if result.event != TagEvent.WRITE_OK:
            return
        record = self.context.record
        try:
            self.store.create(record)
        except LFChainError as e:
            # The card now holds a value which has no record.
            self.__finish(
                ProtocolState.CREATE_FAILED, f"Record not saved: {e}", error=e
            )
            return
        self.__finish(
            ProtocolState.CREATE_SUCCEEDED,
            f"Card {record.card_id} created",
            card_id=record.card_id,
            value=record.value(0),
        )

    def __on_read(self, result: TagResult):
        error = result.error()
        if error is not None:
            self.__finish(ProtocolState.VERIFY_FAILED, f"Read failed: {error}", error=error)
            return
        if result.event != TagEvent.READ_DONE:
            return
        try:
            card_id, value_bytes = parse_tag_payload(result.data)
        except ValueError:
            error = MalformedPayload(result.data)
            self.__finish(ProtocolState.VERIFY_FAILED, str(error), error=error)
            return
        try:
            record = self.store.read(card_id)
        except LFChainError as e:
            self.__finish(
                ProtocolState.VERIFY_FAILED, f"Unknown card: {e}", card_id=card_id, error=e
            )
            return
        if not record.matches(value_bytes):
            error = Mismatch(card_id, record.tag_payload()[1:], value_bytes)
            self.__finish(
                ProtocolState.VERIFY_FAILED, str(error), card_id=card_id, error=error
            )
            return
        self.context.checkout(record)
        self.state = ProtocolState.VERIFY_SUCCEEDED
        self.__report(
            Outcome(
                ProtocolState.VERIFY_SUCCEEDED,
                f"Card {card_id} verified at index {record.current_index}",
                card_id=card_id,
                value=value_from_bytes(value_bytes),
            )
        )
        if self.auto_advance:
            self.__advance_channel.put_nowait(self.__serial)

    def __advance_task(self):
        try:
            serial = self.__advance_channel.get_nowait()
        except queue.Empty:
            return
        record = self.context.record
        if (
            serial != self.__serial
            or self.state != ProtocolState.VERIFY_SUCCEEDED
            or record is None
        ):
            return
        self.state = ProtocolState.ADVANCING
        if record.exhausted:
            error = ChainExhausted(record.card_id)
            self.__finish(
                ProtocolState.ADVANCE_FAILED, str(error), card_id=record.card_id, error=error
            )
            return
        pending = record.copy()
        pending.current_index += 1
        self.context.pending = pending
        self.log(f"Advancing card {record.card_id} to index {pending.current_index}")
        self.__write(pending.tag_payload(), ProtocolState.ADVANCE_FAILED)

    def __on_advance_written(self, result: TagResult):
        pending = self.context.pending
        error = result.error()
        if error is not None:
            self.__finish(
                ProtocolState.ADVANCE_FAILED,
                f"Card write failed, verify again: {error}",
                card_id=pending.card_id,
                error=error,
            )
            return
        if result.event != TagEvent.WRITE_OK:
            return
        try:
            self.store.update(pending)
        except LFChainError as e:
            self.__finish(
                ProtocolState.ADVANCE_FAILED,
                f"Record not updated: {e}",
                card_id=pending.card_id,
                error=e,
            )
            return
        self.__finish(
            ProtocolState.ADVANCE_SUCCEEDED,
            f"Card {pending.card_id} advanced to index {pending.current_index}",
            card_id=pending.card_id,
            value=pending.value(),
        )

    def __drain_advance_channel(self):
        try:
            self.__advance_channel.get_nowait()
        except queue.Empty:
            pass
