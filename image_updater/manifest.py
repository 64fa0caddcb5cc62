"""
docker-compose discovery and parsing.

Only `services.<name>.image` is read; everything else in the file is
ignored.
"""
from pathlib import Path
from typing import Dict, List

import aiofiles
import yaml

from . import log

COMPOSE_NAMES = ("docker-compose", "compose")
COMPOSE_EXTENSIONS = (".yml", ".yaml")
SKIP_DIRS = {".git", "node_modules", "vendor"}


async def load_yaml(path: Path):
    """Load YAML file asynchronously."""
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        content = await f.read()
        return yaml.safe_load(content)


def is_compose_file(filename: str) -> bool:
    return any(n in filename for n in COMPOSE_NAMES) and filename.endswith(COMPOSE_EXTENSIONS)


def find_compose_files(root: Path) -> List[Path]:
    """Recursively find compose files under root, sorted, skipping vendored trees."""
    found = []
    for path in root.rglob("*"):
        if any(part in SKIP_DIRS for part in path.relative_to(root).parts[:-1]):
            continue
        if path.is_file() and is_compose_file(path.name):
            log.debug(f"Found compose file: {path}")
            found.append(path)
    return sorted(found)


async def load_images(path: Path) -> Dict[str, str]:
    """
    Return {service: image} for a compose file.

    A missing or unparseable file yields an empty mapping.
    """
    try:
        data = await load_yaml(path)
    except (OSError, UnicodeDecodeError) as e:
        log.warn(f"Could not read {path}: {e}", indent=1)
        return {}
    except yaml.YAMLError as e:
        log.warn(f"Could not parse {path}: {e}", indent=1)
        return {}

    if not isinstance(data, dict):
        return {}
    services = data.get("services")
    if not isinstance(services, dict):
        return {}

    images = {}
    for name, service in services.items():
        if not isinstance(service, dict):
            continue
        image = service.get("image")
        if image:
            images[str(name)] = str(image)
    return images
