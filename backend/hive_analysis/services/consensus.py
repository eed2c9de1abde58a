"""Consensus and agreement statistics over feedback votes.

Pure functions with no storage access: callers load responses, buckets and
vote rows and pass them in.

Percentages are whole numbers. Agree and disagree percentages are rounded
independently (half up), disagree is capped at what agree leaves over, and
pass takes the remainder, so the three always sum to 100 for any response
with at least one vote.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Literal, Sequence, Union

ItemId = Union[int, str]

RECOGNISED_VOTES = ("agree", "pass", "disagree")


@dataclass(slots=True)
class ConsensusResponse:
    id: ItemId
    response_text: str


@dataclass(slots=True)
class ConsensusVote:
    response_id: ItemId
    feedback: str


@dataclass(slots=True)
class ConsensusBucket:
    bucket_id: ItemId
    consolidated_statement: str
    response_ids: list[ItemId]


@dataclass(slots=True)
class VoteCounts:
    agree: int = 0
    pass_: int = 0
    disagree: int = 0

    @property
    def total(self) -> int:
        return self.agree + self.pass_ + self.disagree

    def add(self, feedback: str) -> None:
        if feedback == "agree":
            self.agree += 1
        elif feedback == "pass":
            self.pass_ += 1
        elif feedback == "disagree":
            self.disagree += 1


@dataclass(slots=True)
class ConsensusItem:
    id: ItemId
    response_text: str
    agree_percent: int
    pass_percent: int
    disagree_percent: int
    agree_votes: int
    pass_votes: int
    disagree_votes: int
    total_votes: int


@dataclass(slots=True)
class AgreementSummary:
    id: ItemId
    response_text: str
    agree_percent: int
    pass_percent: int
    disagree_percent: int
    total_votes: int
    type: Literal["agreement", "divisive"]


@dataclass(slots=True)
class AgreementSummaries:
    agreement: list[AgreementSummary] = field(default_factory=list)
    divisive: list[AgreementSummary] = field(default_factory=list)


@dataclass(slots=True)
class AgreementSummaryOptions:
    min_votes: int = 5
    max_per_type: int = 5
    agreement_agree_percent_min: int = 70
    divisive_agree_percent_min: int = 40
    divisive_agree_percent_max: int = 60
    divisive_disagree_percent_min: int = 35


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_percent(value: float) -> int:
    if not math.isfinite(value):
        return 0
    return int(max(0, min(100, value)))


def percentages(counts: VoteCounts) -> tuple[int, int, int]:
    """Return ``(agree, pass, disagree)`` percentages; zeros when there are no votes."""

    total = counts.total
    if total <= 0:
        return 0, 0, 0
    agree = clamp_percent(round_half_up(counts.agree / total * 100))
    # 1 agree / 7 disagree rounds to 13 + 88; the cap keeps pass at 0, not -1.
    disagree = min(clamp_percent(round_half_up(counts.disagree / total * 100)), 100 - agree)
    return agree, 100 - agree - disagree, disagree


def tally_votes(votes: Iterable[ConsensusVote]) -> dict[ItemId, VoteCounts]:
    tallies: dict[ItemId, VoteCounts] = {}
    for vote in votes:
        if vote.feedback not in RECOGNISED_VOTES:
            continue
        tallies.setdefault(vote.response_id, VoteCounts()).add(vote.feedback)
    return tallies


def _item(item_id: ItemId, text: str, counts: VoteCounts) -> ConsensusItem:
    agree, pass_, disagree = percentages(counts)
    return ConsensusItem(
        id=item_id,
        response_text=text,
        agree_percent=agree,
        pass_percent=pass_,
        disagree_percent=disagree,
        agree_votes=counts.agree,
        pass_votes=counts.pass_,
        disagree_votes=counts.disagree,
        total_votes=counts.total,
    )


def compute_response_consensus(
    responses: Sequence[ConsensusResponse],
    votes: Iterable[ConsensusVote],
) -> list[ConsensusItem]:
    """Per-response consensus in input order; responses without votes are omitted."""

    tallies = tally_votes(votes)
    items: list[ConsensusItem] = []
    for response in responses:
        counts = tallies.get(response.id)
        if counts is None or counts.total == 0:
            continue
        items.append(_item(response.id, response.response_text, counts))
    return items


def compute_consolidated_consensus(
    buckets: Sequence[ConsensusBucket],
    unconsolidated: Sequence[ConsensusResponse],
    votes: Iterable[ConsensusVote],
) -> list[ConsensusItem]:
    """Consensus over consolidated buckets followed by unconsolidated responses.

    A bucket is scored by the votes cast on its first member only, since that
    is the response voters were shown. Items with votes come first, then the
    zero-vote items, each part keeping input order.
    """

    tallies = tally_votes(votes)
    voted: list[ConsensusItem] = []
    unvoted: list[ConsensusItem] = []

    for bucket in buckets:
        representative = bucket.response_ids[0] if bucket.response_ids else None
        counts = tallies.get(representative, VoteCounts()) if representative is not None else VoteCounts()
        item = _item(bucket.bucket_id, bucket.consolidated_statement, counts)
        (voted if counts.total > 0 else unvoted).append(item)

    for response in unconsolidated:
        counts = tallies.get(response.id, VoteCounts())
        item = _item(response.id, response.response_text, counts)
        (voted if counts.total > 0 else unvoted).append(item)

    return voted + unvoted


def compute_agreement_summaries(
    responses: Sequence[ConsensusResponse],
    votes: Iterable[ConsensusVote],
    options: AgreementSummaryOptions | None = None,
) -> AgreementSummaries:
    """Top agreement and divisive responses among those with at least ``min_votes`` votes.

    Agreement: agree% >= 70, sorted by agree% desc, total desc, id asc.
    Divisive: agree% in [40, 60] and disagree% >= 35, sorted by distance of
    agree% from 50 asc, min(agree, disagree) desc, total desc, id asc.
    Each list is capped at ``max_per_type``. The two bands cannot overlap.
    """

    opts = options or AgreementSummaryOptions()
    tallies = tally_votes(votes)

    rows: list[tuple[ConsensusResponse, VoteCounts, tuple[int, int, int]]] = []
    for response in responses:
        counts = tallies.get(response.id, VoteCounts())
        if counts.total < opts.min_votes or counts.total == 0:
            continue
        rows.append((response, counts, percentages(counts)))

    agreement_rows = [row for row in rows if row[2][0] >= opts.agreement_agree_percent_min]
    agreement_rows.sort(key=lambda row: (-row[2][0], -row[1].total, row[0].id))

    divisive_rows = [
        row
        for row in rows
        if opts.divisive_agree_percent_min <= row[2][0] <= opts.divisive_agree_percent_max
        and row[2][2] >= opts.divisive_disagree_percent_min
        and row[2][0] < opts.agreement_agree_percent_min
    ]
    divisive_rows.sort(
        key=lambda row: (
            abs(row[2][0] - 50),
            -min(row[1].agree, row[1].disagree),
            -row[1].total,
            row[0].id,
        )
    )

    def _summary(row, kind) -> AgreementSummary:
        response, counts, (agree, pass_, disagree) = row
        return AgreementSummary(
            id=response.id,
            response_text=response.response_text,
            agree_percent=agree,
            pass_percent=pass_,
            disagree_percent=disagree,
            total_votes=counts.total,
            type=kind,
        )

    return AgreementSummaries(
        agreement=[_summary(row, "agreement") for row in agreement_rows[: opts.max_per_type]],
        divisive=[_summary(row, "divisive") for row in divisive_rows[: opts.max_per_type]],
    )
