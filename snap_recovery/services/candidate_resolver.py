"""Candidate resolution: target networks to regions to snapshots."""

import logging

from ..clients.base import CandidateInventory, LocationResolver
from ..errors import classify, permanent
from ..models.recovery import RecoveryInfo, RecoveryRequest

logger = logging.getLogger(__name__)


class CandidateResolver:
    def __init__(self, locations: LocationResolver, inventory: CandidateInventory):
        self.locations = locations
        self.inventory = inventory

    def _validate(self, request: RecoveryRequest) -> None:
        if not request.target_network_ids:
            raise permanent("At least one target network id is required")
        if not request.target_resource_group:
            raise permanent("Target resource group is required")
        if request.max_time_generated is None:
            raise permanent("maxTimeGenerated is required")

    async def resolve(self, request: RecoveryRequest) -> RecoveryInfo:
        """Resolve regions for the target networks, then query snapshots in them.

        Raises ClassifiedError; the caller decides whether to retry.
        """
        self._validate(request)

        try:
            bindings = await self.locations.resolve_regions(list(request.target_network_ids))
        except Exception as e:
            raise classify(e, operation="Location resolution") from e
        if not bindings:
            logger.info(
                f"[{request.batch_id}] No locations resolved for networks {', '.join(request.target_network_ids)}"
            )
            return RecoveryInfo()

        regions = list(dict.fromkeys(b.location for b in bindings))
        logger.info(f"[{request.batch_id}] Networks resolve to regions: {', '.join(regions)}")

        try:
            candidates = await self.inventory.find_candidates(
                regions, request.max_time_generated, request.vm_filter
            )
        except Exception as e:
            raise classify(e, operation="Snapshot query") from e

        logger.info(f"[{request.batch_id}] Found {len(candidates)} snapshot candidates")
        return RecoveryInfo(candidates=candidates, bindings=bindings)
