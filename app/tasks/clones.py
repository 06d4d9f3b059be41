from __future__ import annotations
import asyncio
import importlib
import logging
from typing import Any, Dict, Optional
from app.agents.ports import Collaborators
from app.core.config import settings
from app.core.exceptions import CloneCancelledError, CloningError
from app.core.runner import clone_page
from app.core.workflow import CloneRequest
from app.tasks.celery_app import celery_app

log = logging.getLogger(__name__)


def load_collaborators(path: Optional[str] = None) -> Collaborators:
    """
    Build collaborators from a "package.module:callable" factory path
    (settings.collaborator_factory by default).
    """
    path = path or settings.collaborator_factory
    if not path:
        raise CloningError("COLLABORATOR_FACTORY is not configured; the worker cannot run clones")
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise CloningError(f"Invalid collaborator factory '{path}', expected 'module:callable'")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory()


@celery_app.task(name="run_clone_job")
def run_clone_job(
    source_url: str,
    feature_name: str,
    page_slug: str,
    is_dynamic_route: bool = False,
    parent_route: Optional[str] = None,
    resume: bool = False,
) -> Dict[str, Any]:
    request = CloneRequest(
        source_url=source_url,
        feature_name=feature_name,
        page_slug=page_slug,
        is_dynamic_route=is_dynamic_route,
        parent_route=parent_route,
        resume=resume,
    )
    extra = {"slug": page_slug, "phase": "-"}
    log.info("Starting clone job", extra=extra)
    try:
        result = asyncio.run(clone_page(request, load_collaborators()))
    except CloneCancelledError:
        log.warning("Clone job cancelled; progress saved as paused", extra=extra)
        return {"page_slug": page_slug, "success": False, "status": "paused", "archive_id": None, "summary": ""}
    except Exception:
        log.exception("Clone job failed", extra=extra)
        raise

    log.info(f"Clone job finished with status {result.status.value}", extra=extra)
    return {
        "page_slug": result.page_slug,
        "success": result.success,
        "status": result.status.value,
        "archive_id": result.archive_id,
        "summary": result.summary,
    }
