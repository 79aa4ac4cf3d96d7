import importlib
import sys
from pathlib import Path

from core.logger import Logger
logger = Logger(__name__)

SUBMODULES = ("service", "api", "cron")


def load_from_directory(base_path: str = "modules", submodules=None):
    """
    Import the api/service/cron submodules of every package directory
    under ``base_path`` so their registry side effects run.

    Packages here are namespace packages, so directories are scanned
    directly instead of relying on ``__init__.py`` discovery.
    """
    submodules = submodules or SUBMODULES

    base_dir = Path(__file__).resolve().parent.parent / base_path
    logger.info(f"Scanning base path: {base_dir}")

    if str(base_dir.parent) not in sys.path:
        sys.path.insert(0, str(base_dir.parent))

    if not base_dir.exists():
        logger.warning(f"Directory not found: {base_dir}")
        return

    for package_dir in sorted(p for p in base_dir.iterdir() if p.is_dir() and not p.name.startswith("_")):
        name = f"{base_path}.{package_dir.name}"
        for sub in submodules:
            if not (package_dir / f"{sub}.py").exists():
                continue
            submodule_path = f"{name}.{sub}"
            try:
                importlib.import_module(submodule_path)
                logger.info(f"Loaded submodule: {submodule_path}")
            except Exception as e:
                logger.error(f"Failed to load {submodule_path}: {e}")


def auto_load_all():
    for base in ("services", "modules"):
        load_from_directory(base)


def dynamic_import(module_path: str, class_name: str):
    """
    Dynamically import and return a class from a module path.
    e.g., module_path='modules.validation.cron', class_name='NightlyValidationJob'
    """
    try:
        module = importlib.import_module(module_path)
        return getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        raise ImportError(f"Failed to import {class_name} from {module_path}: {e}")
