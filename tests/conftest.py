"""Shared fixtures: a throwaway SQLite progress store and scripted collaborators."""
from unittest.mock import AsyncMock, MagicMock
import pytest
from app.agents.ports import Collaborators
from app.core import rate_limiter
from app.core.config import settings
from app.core.rate_limiter import RateLimiter
from app.core.workflow import CloneRequest
from app.db.session import Base, make_engine, make_session_factory
from app.schemas.collaborators import PageCapture, VerificationReport
from app.services.progress_store import ProgressStore

SOURCE_URL = "https://example.com/free-ai-tools"
SLUG = "free-ai-tools"

SOURCE_HTML = """
<html>
  <head><title>Free AI Tools</title></head>
  <body><h1>Free AI Tools</h1><p>Directory of tools.</p></body>
</html>
"""


@pytest.fixture
def store(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'progress.db'}")
    Base.metadata.create_all(bind=engine)
    yield ProgressStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture(autouse=True)
def host_limiters(monkeypatch):
    """Fresh per-host limiter registry whose limiters never wait."""
    monkeypatch.setattr(rate_limiter, "_registry", {})
    monkeypatch.setattr(settings, "min_request_interval_ms", 0)
    return rate_limiter._registry


@pytest.fixture
def limiter():
    """Limiter that never actually sleeps."""
    return RateLimiter(min_interval_ms=0, sleep=AsyncMock())


@pytest.fixture
def clone_request():
    return CloneRequest(source_url=SOURCE_URL, feature_name="free-ai-tools", page_slug=SLUG)


@pytest.fixture
def make_collaborators():
    return build_collaborators


def build_collaborators(verify_results=None, implementer=True, page_html=SOURCE_HTML):
    """Collaborators returning canned payloads. `verify_results` is a list of VerificationReport."""
    analyzer = MagicMock()
    analyzer.analyze = AsyncMock(return_value={
        "url": SOURCE_URL,
        "title": "Free AI Tools",
        "sections": [{"type": "hero"}, {"type": "grid"}],
    })
    extractor = MagicMock()
    extractor.extract = AsyncMock(return_value={
        "metadata": {"title": "Free AI Tools"},
        "text_content": [{"text": "Directory of tools."}],
    })
    planner = MagicMock()
    planner.plan = AsyncMock(return_value={
        "page_route": "/free-ai-tools",
        "components": [{"name": "ToolGrid"}],
        "data_files": [{"path": "data/tools.json"}],
    })
    verifier = MagicMock()
    verifier.verify = AsyncMock(side_effect=list(verify_results or [VerificationReport(passed=True)]))

    impl = None
    if implementer:
        impl = MagicMock()
        impl.implement = AsyncMock(return_value={
            "files_created": ["app/free-ai-tools/page.tsx", "components/ToolGrid.tsx"],
            "files_modified": ["next.config.js"],
        })

    page_source = MagicMock()
    page_source.capture = AsyncMock(side_effect=lambda url: PageCapture(
        url=url,
        title="Free AI Tools",
        html=page_html,
        snapshot="Free AI Tools\nDirectory of tools.",
        status_code=200,
    ))
    return Collaborators(
        analyzer=analyzer,
        extractor=extractor,
        planner=planner,
        verifier=verifier,
        implementer=impl,
        page_source=page_source,
    )
