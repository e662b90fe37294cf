"""
Test fixtures and configuration for pytest.
"""

import asyncio
import os
import sys
from io import BytesIO
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.gemini_backend import encode_image_ref
from services.guide_workflow import GuideWorkflow
from services.image_validation import EncodedInput, encode_input
from services.orchestrator import GenerationOrchestrator
from services.slots import Variant, VariantProfile

TEST_PROFILES = {
    Variant.FAST: VariantProfile(Variant.FAST, "Nano Banana", "fast-model", "Fast reimagining"),
    Variant.PRO: VariantProfile(Variant.PRO, "Nano Banana Pro", "pro-model", "High-fidelity plating"),
}


class FakeBackend:
    """
    In-memory generation backend.

    Calls are numbered per kind ("fast", "pro", "guide") in the order they
    start; batch tasks start in dispatch order, so call n of "fast" is slot n.
    With ``hold=True`` every call waits until the test releases it, which lets
    tests choose the settlement order.
    """

    def __init__(self, *, hold: bool = False):
        self.hold = hold
        self.calls: list[tuple[str, int]] = []
        self.failures: dict[tuple[str, int], Exception] = {}
        self.fail_kind: dict[str, Exception] = {}
        self._gates: dict[tuple[str, int], asyncio.Event] = {}

    def count(self, kind: str) -> int:
        return sum(1 for k, _ in self.calls if k == kind)

    def release(self, kind: str, number: int) -> None:
        self._gates.setdefault((kind, number), asyncio.Event()).set()

    def release_all(self) -> None:
        for kind, number in list(self.calls):
            self.release(kind, number)

    async def _generate(self, kind: str) -> str:
        key = (kind, self.count(kind))
        self.calls.append(key)
        if self.hold:
            await self._gates.setdefault(key, asyncio.Event()).wait()
        else:
            await asyncio.sleep(0)
        if kind in self.fail_kind:
            raise self.fail_kind[kind]
        if key in self.failures:
            raise self.failures[key]
        return encode_image_ref(f"{kind}-{key[1]}".encode(), "image/png")

    async def generate_fast(self, data: bytes, mime_type: str) -> str:
        return await self._generate("fast")

    async def generate_pro(self, data: bytes, mime_type: str) -> str:
        return await self._generate("pro")

    async def generate_guide(self, image_ref: str) -> str:
        return await self._generate("guide")


async def drain(rounds: int = 20) -> None:
    """Let every ready task run until it blocks again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


# ============== Test Data Fixtures ==============


def make_image_bytes(size=(128, 128), color="white", format="PNG") -> bytes:
    img = Image.new("RGB", size, color=color)
    buffer = BytesIO()
    img.save(buffer, format=format)
    return buffer.getvalue()


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Generate sample PNG image bytes for testing."""
    return make_image_bytes(color="red")


@pytest.fixture
def sample_jpeg_bytes() -> bytes:
    """Generate sample JPEG image bytes for testing."""
    return make_image_bytes(color="blue", format="JPEG")


@pytest.fixture
def encoded_input(sample_image_bytes: bytes) -> EncodedInput:
    return encode_input(sample_image_bytes, "image/png")


# ============== Generation Fixtures ==============


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def held_backend() -> FakeBackend:
    return FakeBackend(hold=True)


def build_orchestrator(backend, listener=None, batch_width: int = 3) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        backend,
        batch_width=batch_width,
        profiles=TEST_PROFILES,
        listener=listener,
    )


@pytest.fixture
def orchestrator(backend: FakeBackend, encoded_input: EncodedInput) -> GenerationOrchestrator:
    orch = build_orchestrator(backend)
    orch.load_input(encoded_input)
    return orch


@pytest.fixture
def held_orchestrator(held_backend: FakeBackend, encoded_input: EncodedInput) -> GenerationOrchestrator:
    orch = build_orchestrator(held_backend)
    orch.load_input(encoded_input)
    return orch


def build_guide_workflow(orchestrator: GenerationOrchestrator, backend=None, listener=None) -> GuideWorkflow:
    return GuideWorkflow(backend or orchestrator.backend, orchestrator.stores, listener=listener)


# ============== Client Fixtures ==============


@pytest_asyncio.fixture(scope="function")
async def api_session(held_backend: FakeBackend) -> AsyncGenerator[tuple, None]:
    """Test client wired to a fresh session using a held fake backend."""
    from api.dependencies import get_guide_workflow, get_orchestrator
    from main import app

    orchestrator = build_orchestrator(held_backend)
    workflow = build_guide_workflow(orchestrator)

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_guide_workflow] = lambda: workflow

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac, orchestrator, held_backend

    held_backend.release_all()
    await drain()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def client(api_session) -> AsyncGenerator[AsyncClient, None]:
    ac, _, _ = api_session
    yield ac
