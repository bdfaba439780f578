"""
Preview-to-production promotion.

A preview instance becomes a production instance in place: a fresh auth
secret, PREVIEW_MODE=false and the team roster are set without staging,
so the platform restarts the instance and the start script provisions a
real database. No rebuild, no redeploy.
"""
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import async_session
from app.models import DeploymentStatus, GenerationRecord, OrgDeployment
from app.services.compute import ComputeClient, SecretsUpdate, get_compute_client
from app.services.compute.artifacts import TEAM_ROSTER_ENV

logger = logging.getLogger(__name__)


@dataclass
class TeamMember:
    name: str
    email: str
    password_hash: str | None = None

    def to_wire(self) -> dict:
        data = {"name": self.name, "email": self.email}
        if self.password_hash:
            data["passwordHash"] = self.password_hash
        return data


def roster_secrets(team_members: list[TeamMember]) -> dict[str, str]:
    """Fresh auth secret plus the roster, when there is one."""
    bundle = {"AUTH_SECRET": secrets.token_hex(32)}
    if team_members:
        bundle[TEAM_ROSTER_ENV] = json.dumps([m.to_wire() for m in team_members])
    return bundle


def build_promotion_secrets(team_members: list[TeamMember], stage: bool = False) -> SecretsUpdate:
    """Production environment: PREVIEW_MODE off, fresh auth secret, roster."""
    bundle = {"PREVIEW_MODE": "false", **roster_secrets(team_members)}
    return SecretsUpdate(set=bundle, stage=stage)


async def set_deployment_status(
    session_factory: async_sessionmaker[AsyncSession],
    deployment_id: str,
    status: DeploymentStatus,
    **fields,
) -> bool:
    """Update a deployment's status and any extra columns. False if it is gone."""
    async with session_factory() as db:
        deployment = await db.get(OrgDeployment, deployment_id)
        if deployment is None:
            return False
        deployment.status = status.value
        for key, value in fields.items():
            setattr(deployment, key, value)
        await db.commit()
    return True


class PromotionController:
    """Flips running previews into production instances."""

    def __init__(
        self,
        compute: ComputeClient | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        self._compute = compute or get_compute_client()
        self._session_factory = session_factory or async_session

    async def promote(
        self,
        deployment_id: str,
        instance_name: str,
        team_members: list[TeamMember],
        subdomain: str | None = None,
    ) -> bool:
        """
        Promote ``instance_name`` for deployment ``deployment_id``.

        Never raises; a failure leaves the deployment FAILED.

        Returns:
            True if the instance was promoted
        """
        if not await set_deployment_status(self._session_factory, deployment_id, DeploymentStatus.DEPLOYING):
            logger.error(f"[Launch {deployment_id}] Deployment not found")
            return False

        try:
            logger.info(f"[Launch {deployment_id}] Setting secrets on {instance_name}")
            await self._compute.set_secrets(instance_name, build_promotion_secrets(team_members))
        except Exception as e:
            logger.error(f"[Launch {deployment_id}] Failed: {e}")
            await set_deployment_status(self._session_factory, deployment_id, DeploymentStatus.FAILED)
            return False

        url = f"https://{instance_name}.fly.dev"
        async with self._session_factory() as db:
            deployment = await db.get(OrgDeployment, deployment_id)
            deployment.status = DeploymentStatus.RUNNING.value
            deployment.instance_id = instance_name
            deployment.url = url
            if subdomain:
                deployment.subdomain = subdomain
            deployment.deployed_at = datetime.utcnow()

            # The promoted instance must never be reclaimed by the expiration
            # sweep. Other previews of the same app keep their expiry.
            rows = await db.execute(
                select(GenerationRecord).where(GenerationRecord.preview_instance_id == instance_name)
            )
            for record in rows.scalars():
                record.preview_expires_at = None

            await db.commit()

        logger.info(f"[Launch {deployment_id}] Live at {url}")
        return True


# Global singleton
_promotion_controller: PromotionController | None = None


def get_promotion_controller() -> PromotionController:
    """Get or create the global promotion controller."""
    global _promotion_controller
    if _promotion_controller is None:
        _promotion_controller = PromotionController()
    return _promotion_controller
