"""
API payload factories for request bodies and expected responses.
"""
from typing import Any

from .base import fake, generate_uuid


def deploy_preview_payload(generation_id: str | None = None, kind: str = "draft") -> dict[str, Any]:
    return {"generationId": generation_id or generate_uuid(), "kind": kind}


def redeploy_template_payload(
    template_name: str = "starter",
    instance_name: str = "launchpad-template-starter",
) -> dict[str, Any]:
    return {"templateName": template_name, "instanceName": instance_name}


def secrets_payload(set: dict[str, str] | None = None, unset: list[str] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if set is not None:
        payload["set"] = set
    if unset is not None:
        payload["unset"] = unset
    return payload


def launch_payload(
    deployment_id: str,
    instance_name: str,
    team_members: list[dict[str, str]] | None = None,
    subdomain: str | None = None,
) -> dict[str, Any]:
    if team_members is None:
        team_members = [{"name": fake.name(), "email": fake.email()}]
    payload = {
        "deploymentId": deployment_id,
        "instanceName": instance_name,
        "teamMembers": team_members,
    }
    if subdomain:
        payload["subdomain"] = subdomain
    return payload


def production_deploy_payload(
    deployment_id: str,
    org_slug: str = "acme",
    **sources: Any,
) -> dict[str, Any]:
    """Body for POST /deploy. Source and launch fields are passed in camelCase."""
    payload = {
        "deploymentId": deployment_id,
        "orgSlug": org_slug,
        "teamMembers": [{"name": fake.name(), "email": fake.email()}],
    }
    payload.update(sources)
    return payload
