"""Greedy, order-preserving packing of hunks into one model request.

Hunks are never reordered or split. Packing stops at the first hunk that
does not fit; everything after it is reported back as unpacked rather than
dropped silently. Prior comment threads are only ever packed into the space
left over once the hunks are fixed, so they can never displace a hunk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Sequence

from prwarden_core.patch import Hunk
from prwarden_core.utils.tokens import TokenCounter, count_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackedHunk:
    hunk: Hunk
    comment_chain: str = ""

    def render(self) -> str:
        text = f"\n{self.hunk.render()}\n"
        if self.comment_chain:
            text += f"""
<comment_chains>
```
{self.comment_chain}
```
</comment_chains>
"""
        return text


@dataclass
class PackPlan:
    packed: list[Hunk] = field(default_factory=list)
    unpacked: list[Hunk] = field(default_factory=list)
    tokens: int = 0

    @property
    def empty(self) -> bool:
        return not self.packed


def pack_hunks(
    hunks: Sequence[Hunk],
    budget: int,
    base_tokens: int,
    counter: TokenCounter = count_tokens,
) -> PackPlan:
    """Fit as many leading hunks as the budget allows.

    ``base_tokens`` is the cost of the prompt skeleton for this file, so the
    running total starts there rather than at zero.
    """
    plan = PackPlan(tokens=base_tokens)
    for index, hunk in enumerate(hunks):
        cost = counter(PackedHunk(hunk).render())
        if plan.tokens + cost > budget:
            plan.unpacked = list(hunks[index:])
            logger.info(
                "Only packing %d / %d hunks, tokens: %d / %d",
                len(plan.packed),
                len(hunks),
                plan.tokens,
                budget,
            )
            break
        plan.tokens += cost
        plan.packed.append(hunk)
    return plan


def attach_chains(
    plan: PackPlan,
    chains: Sequence[str],
    budget: int,
    counter: TokenCounter = count_tokens,
) -> tuple[list[PackedHunk], int]:
    """Pair each packed hunk with its comment-chain text if it still fits.

    ``chains`` is parallel to ``plan.packed``. Returns the packed hunks and the
    final token total.
    """
    tokens = plan.tokens
    packed = []
    for hunk, chain in zip(plan.packed, chains):
        if chain:
            # Charge the fenced section as rendered, not just the chain text.
            bare = PackedHunk(hunk=hunk)
            cost = counter(replace(bare, comment_chain=chain).render()) - counter(bare.render())
            if tokens + cost > budget:
                logger.debug("Dropping comment chain for hunk at line %d: over budget", hunk.new.start)
                chain = ""
            else:
                tokens += cost
        packed.append(PackedHunk(hunk=hunk, comment_chain=chain))
    return packed, tokens


def render_patches(packed: Sequence[PackedHunk]) -> str:
    return "".join(p.render() for p in packed)
