from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from browser_control.core.models import Cookie, Viewport

DEFAULT_API_URL = "https://www.browserbase.com/v1"
DEFAULT_REGION = "ap-southeast-1"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() == "true"


@dataclass(frozen=True)
class CloudBrowserConfig:
    """Credentials and placement for Browserbase-hosted sessions."""
    api_key: str
    project_id: str
    region: Optional[str] = DEFAULT_REGION
    api_url: str = DEFAULT_API_URL


@dataclass
class ControllerOptions:
    headless: bool = True
    viewport: Viewport = field(default_factory=lambda: Viewport(width=1280, height=1032))
    cookies: list[Cookie] = field(default_factory=list)
    use_cloud: bool = False
    cloud: Optional[CloudBrowserConfig] = None

    @property
    def cloud_enabled(self) -> bool:
        return self.use_cloud and self.cloud is not None


def cloud_config_from_env() -> CloudBrowserConfig | None:
    api_key = os.getenv("BROWSERBASE_API_KEY")
    project_id = os.getenv("BROWSERBASE_PROJECT_ID")
    if not api_key or not project_id:
        return None
    return CloudBrowserConfig(
        api_key=api_key,
        project_id=project_id,
        region=os.getenv("BROWSERBASE_REGION") or DEFAULT_REGION,
        api_url=(os.getenv("BROWSERBASE_API_URL") or DEFAULT_API_URL).rstrip("/"),
    )


def controller_defaults_from_env() -> ControllerOptions:
    return ControllerOptions(
        headless=_env_flag("BROWSER_CONTROL_HEADLESS", True),
        viewport=Viewport(
            width=int(os.getenv("BROWSER_CONTROL_VIEWPORT_WIDTH", "1280")),
            height=int(os.getenv("BROWSER_CONTROL_VIEWPORT_HEIGHT", "1032")),
        ),
        use_cloud=_env_flag("USE_BROWSERBASE", False),
        cloud=cloud_config_from_env(),
    )


def merge_options(
    environment: ControllerOptions,
    overrides: dict[str, Any] | None,
    cookies: list[Cookie] | None = None,
) -> ControllerOptions:
    """Overlay caller-supplied options on the environment defaults.

    Caller values win; keys that are absent or None keep the environment value.
    """
    overrides = overrides or {}
    merged = replace(environment, cookies=list(cookies or []))
    if overrides.get("headless") is not None:
        merged.headless = bool(overrides["headless"])
    if overrides.get("viewport") is not None:
        viewport = overrides["viewport"]
        merged.viewport = viewport if isinstance(viewport, Viewport) else Viewport.from_dict(viewport)
    if overrides.get("use_cloud") is not None:
        merged.use_cloud = bool(overrides["use_cloud"])
    if overrides.get("cloud") is not None:
        merged.cloud = overrides["cloud"]
    return merged
