import importlib
import pkgutil

from fastapi import APIRouter, FastAPI
from loguru import logger


def discover_routers(package_name: str = "gacha_engine.api") -> list[APIRouter]:
    """Collect the module-level `router` of every module in a package, sorted by module name."""
    package = importlib.import_module(package_name)

    routers: list[APIRouter] = []
    for module_info in sorted(pkgutil.iter_modules(package.__path__), key=lambda m: m.name):
        module = importlib.import_module(f"{package_name}.{module_info.name}")
        router = getattr(module, "router", None)
        if not isinstance(router, APIRouter):
            logger.warning(f"Module {module.__name__} has no router, skipping")
            continue

        routers.append(router)
        logger.debug(f"Discovered router {router.prefix} in {module.__name__}")

    return routers


def register_routers(app: FastAPI, prefix: str = "/api") -> None:
    """Mount every router of `gacha_engine.api` under `prefix`."""
    for router in discover_routers():
        app.include_router(router, prefix=prefix)
