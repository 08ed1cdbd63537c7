"""Referral chain resolution over the sub-affiliate graph."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from commission_engine.models import SubAffiliate

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 5


@dataclass(frozen=True)
class ChainLink:
    """One beneficiary in a referral chain."""

    level: int
    affiliate_id: UUID


class ReferralArena:
    """In-memory index of referral edges, keyed by the referred affiliate.

    Built once per settlement so the whole chain is resolved without a
    query per level.
    """

    def __init__(self, edges: list[tuple[UUID, UUID, int]]):
        self._ancestors: dict[UUID, list[tuple[int, UUID]]] = defaultdict(list)
        for parent_id, sub_id, level in edges:
            self._ancestors[sub_id].append((level, parent_id))
        for links in self._ancestors.values():
            links.sort(key=lambda link: (link[0], str(link[1])))

    @classmethod
    def load(cls, session: Session) -> ReferralArena:
        rows = session.execute(
            select(
                SubAffiliate.parent_affiliate_id,
                SubAffiliate.sub_affiliate_id,
                SubAffiliate.level,
            )
        )
        return cls([(row[0], row[1], row[2]) for row in rows])

    def links_of(self, affiliate_id: UUID) -> list[tuple[int, UUID]]:
        """``(level, ancestor)`` rows of an affiliate, nearest first."""
        return list(self._ancestors.get(affiliate_id, []))


def resolve_chain(
    arena: ReferralArena,
    payer_id: UUID | None,
    *,
    direct_affiliate_id: UUID | None = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[ChainLink]:
    """Ordered beneficiaries of a payment made by ``payer_id``.

    The payer's own ancestors come first. When the payer has none, the
    affiliate credited on the payment itself is level 1, followed by that
    affiliate's ancestors. Edges may be direct (level 1 only) or a closure
    table (one row per ancestor per level). Direct edges are walked upward
    from the last beneficiary; once rows beyond level 1 have supplied
    ancestors, the chain is complete and no walk happens. Self-ancestry,
    cycles and repeated ancestors are dropped.
    """
    chain: list[UUID] = []
    seen: set[UUID] = set()

    def extend(links: list[tuple[int, UUID]], *, walking: bool) -> bool:
        """Append new ancestors; True when rows beyond level 1 supplied any."""
        path = set(chain)
        from_closure = False
        for level, candidate in links:
            if len(chain) >= max_depth:
                break
            if candidate == payer_id or (walking and candidate in path):
                logger.warning(
                    "Referral cycle through %s for payer %s; stopping there",
                    candidate,
                    payer_id,
                )
                continue
            if candidate in seen:
                logger.debug("Skipping repeated ancestor %s for payer %s", candidate, payer_id)
                continue
            seen.add(candidate)
            chain.append(candidate)
            from_closure = from_closure or level > 1
        return from_closure

    complete = False
    if payer_id is not None:
        complete = extend(arena.links_of(payer_id), walking=False)
    if not chain and direct_affiliate_id is not None:
        extend([(1, direct_affiliate_id)], walking=False)

    # Walk direct edges upward from the furthest beneficiary
    while not complete and chain and len(chain) < max_depth:
        before = len(chain)
        complete = extend(arena.links_of(chain[-1]), walking=True)
        if len(chain) == before:
            break

    return [ChainLink(level=i + 1, affiliate_id=a) for i, a in enumerate(chain)]


class ReferralChainResolver:
    """Resolves referral chains against the current referral graph."""

    def __init__(self, session: Session, max_depth: int = DEFAULT_MAX_DEPTH):
        self.session = session
        self.max_depth = max_depth

    def resolve(
        self, payer_id: UUID | None, direct_affiliate_id: UUID | None = None
    ) -> list[ChainLink]:
        arena = ReferralArena.load(self.session)
        return resolve_chain(
            arena,
            payer_id,
            direct_affiliate_id=direct_affiliate_id,
            max_depth=self.max_depth,
        )
