"""
Static manifest templates for the operand and the loader that parses them.

Templates may hold ${NAME} placeholders that are filled from configuration when
the template is loaded. A template is immutable once loaded: every render hands
out a fresh working copy for the hooks to mutate.
"""

# Standard
from dataclasses import dataclass, field
from typing import Dict, Optional
import copy
import os
import re

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config, constants
from ..exceptions import ConfigError, assert_config

log = alog.use_channel("ASSET")

ASSETS_DIR = os.path.dirname(__file__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


## Loading #####################################################################


def read_asset(asset_name: str) -> bytes:
    """Read the raw content of a named asset

    Raises:
        ConfigError: No asset with the given name exists
    """
    asset_path = os.path.normpath(os.path.join(ASSETS_DIR, asset_name))
    assert_config(
        asset_path.startswith(ASSETS_DIR + os.sep) and os.path.isfile(asset_path),
        f"No asset named [{asset_name}]",
    )
    with open(asset_path, "rb") as handle:
        return handle.read()


def default_replacements() -> Dict[str, str]:
    """The placeholder values for the current configuration"""
    replacements = {
        "NAMESPACE": config.operator_namespace,
        "LOG_LEVEL": str(constants.OPERAND_LOG_LEVELS["Normal"]),
    }
    for image_name, image in config.images.items():
        replacements[f"{image_name.upper()}_IMAGE"] = image
    return replacements


def substitute(content: str, replacements: Dict[str, str], asset_name: str = "") -> str:
    """Fill every ${NAME} placeholder in the content

    Raises:
        ConfigError: A placeholder has no replacement
    """
    unknown = sorted(set(PLACEHOLDER_PATTERN.findall(content)) - set(replacements))
    if unknown:
        raise ConfigError(f"Asset [{asset_name}] has unknown placeholders {unknown}")
    return PLACEHOLDER_PATTERN.sub(lambda match: replacements[match.group(1)], content)


@dataclass(frozen=True)
class ManifestTemplate:
    """A parsed asset. Use render() to get a copy that can be mutated."""

    name: str
    manifest: dict = field(repr=False)

    @property
    def kind(self) -> str:
        return self.manifest.get("kind")

    @property
    def api_version(self) -> str:
        return self.manifest.get("apiVersion")

    @property
    def object_name(self) -> str:
        return self.manifest.get("metadata", {}).get("name")

    @property
    def namespace(self) -> Optional[str]:
        return self.manifest.get("metadata", {}).get("namespace")

    def render(self) -> dict:
        return copy.deepcopy(self.manifest)


def load_template(
    asset_name: str,
    replacements: Optional[Dict[str, str]] = None,
) -> ManifestTemplate:
    """Read, substitute and parse a named asset

    Args:
        asset_name:  str
            Path of the asset relative to the assets directory
        replacements:  Optional[Dict[str, str]]
            Placeholder values merged over default_replacements()

    Returns:
        template:  ManifestTemplate
            The parsed template

    Raises:
        ConfigError: The asset is missing, has unknown placeholders or does not
            hold a single manifest
    """
    all_replacements = default_replacements()
    all_replacements.update(replacements or {})
    content = substitute(
        read_asset(asset_name).decode("utf-8"), all_replacements, asset_name
    )
    try:
        manifest = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ConfigError(f"Asset [{asset_name}] is not valid yaml: {err}") from err
    assert_config(
        isinstance(manifest, dict) and "kind" in manifest,
        f"Asset [{asset_name}] does not hold a manifest",
    )
    log.debug3("Loaded template [%s] for %s", asset_name, manifest["kind"])
    return ManifestTemplate(name=asset_name, manifest=manifest)
