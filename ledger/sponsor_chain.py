from typing import List, Dict
import logging

from extensions import db
from models import User

logger = logging.getLogger(__name__)

MAX_SPONSOR_DEPTH = 20  # commissions never reach past level 20


class SponsorChainHelper:
    """
    Read-only walk up the sponsor_id back-references.
    Level 1 is the direct sponsor, level 2 the sponsor's sponsor, and so on.
    """

    @staticmethod
    def resolve_sponsor_chain(user_id: int, max_depth: int = MAX_SPONSOR_DEPTH) -> List[Dict]:
        """
        Return [{"sponsor_id", "level", "name"}, ...] ordered from the direct
        sponsor upward. Stops at a null sponsor, at max_depth, or when an id
        repeats.
        """
        chain = []
        if max_depth <= 0:
            return chain

        visited = {user_id}
        current = db.session.get(User, user_id)
        if current is None:
            logger.warning(f"Sponsor chain requested for unknown user {user_id}")
            return chain

        level = 1
        sponsor_id = current.sponsor_id
        while sponsor_id is not None and level <= max_depth:
            if sponsor_id in visited:
                logger.error(f"Sponsor cycle detected at user {sponsor_id} while walking from {user_id}")
                break
            visited.add(sponsor_id)

            sponsor = db.session.get(User, sponsor_id)
            if sponsor is None:
                logger.warning(f"Dangling sponsor reference {sponsor_id} in chain of {user_id}")
                break

            chain.append({
                "sponsor_id": sponsor.id,
                "level": level,
                "name": sponsor.display_name,
            })
            sponsor_id = sponsor.sponsor_id
            level += 1

        return chain
