"""Static AI plugin manifest served at ``/.well-known/ai-plugin.json``."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from calendar_bridge.api.deps import get_config
from calendar_bridge.config import BridgeConfig, PluginConfig

router = APIRouter(tags=["plugin"])


def build_plugin_manifest(plugin: PluginConfig, base_url: str) -> dict[str, Any]:
    base_url = base_url.rstrip("/")
    manifest: dict[str, Any] = {
        "schema_version": "v1",
        "name_for_human": plugin.name_for_human,
        "name_for_model": plugin.name_for_model,
        "description_for_human": plugin.description_for_human,
        "description_for_model": plugin.description_for_model,
        "auth": {"type": "none"},
        "api": {"type": "openapi", "url": f"{base_url}/openapi.json"},
        "contact_email": plugin.contact_email,
        "legal_info_url": plugin.legal_info_url,
    }
    if plugin.logo_url is not None:
        manifest["logo_url"] = plugin.logo_url
    return manifest


@router.get("/.well-known/ai-plugin.json")
async def ai_plugin_manifest(
    request: Request,
    config: BridgeConfig = Depends(get_config),
) -> dict[str, Any]:
    return build_plugin_manifest(config.plugin, str(request.base_url))
