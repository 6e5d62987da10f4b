from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from inbox_ledger.models import TransactionGuess


@dataclass(frozen=True)
class NotATransaction:
    message_id: str
    kind: Literal["not_a_transaction"] = "not_a_transaction"


@dataclass(frozen=True)
class One:
    message_id: str
    guess: TransactionGuess
    kind: Literal["one"] = "one"


@dataclass(frozen=True)
class Many:
    message_id: str
    guesses: tuple[TransactionGuess, ...]
    kind: Literal["many"] = "many"


@dataclass(frozen=True)
class ExtractionFailed:
    message_id: str
    reason: str
    kind: Literal["failed"] = "failed"


RawExtraction = NotATransaction | One | Many | ExtractionFailed


def keyed_guesses(extraction: One | Many) -> list[tuple[str, TransactionGuess]]:
    """Pair each guess with its dedup key.

    A single guess is keyed by the message id itself; guesses from a
    multi-transaction message get ``<id>#1``, ``<id>#2``, ...
    """
    match extraction:
        case One(message_id=message_id, guess=guess):
            return [(message_id, guess)]
        case Many(message_id=message_id, guesses=guesses):
            return [(f"{message_id}#{index}", guess) for index, guess in enumerate(guesses, start=1)]
