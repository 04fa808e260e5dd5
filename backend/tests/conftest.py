"""
conftest.py: Shared pytest fixtures for the load estimator backend test suite.

No database, LLM or network fixtures are defined here. DXF drawings are
generated in memory with ezdxf, and the two external collaborators
(classifier, retriever) are replaced by the in-process fakes below.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import io
import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


def rect(x: float, y: float, w: float, h: float) -> list[tuple[float, float]]:
    """Counter-clockwise rectangle with its lower-left corner at (x, y)."""
    return [(x, y), (x + w, y), (x + w, y + h), (x, y + h)]


# ---------------------------------------------------------------------------
# DXF builder
# ---------------------------------------------------------------------------

class DxfBuilder:
    """
    Minimal fluent wrapper over ezdxf for test drawings.

    Every entity defaults to layer "0"; named layers are added to the layer
    table on first use so layer detection sees them.
    """

    def __init__(self, insunits: int | None = None):
        import ezdxf
        self.doc = ezdxf.new("R2010")
        if insunits is not None:
            self.doc.header["$INSUNITS"] = insunits
        self.msp = self.doc.modelspace()

    def _layer(self, name: str) -> str:
        if not self.doc.layers.has_entry(name):
            self.doc.layers.add(name)
        return name

    def room(self, points, layer: str = "0", closed: bool = True) -> "DxfBuilder":
        self.msp.add_lwpolyline(points, close=closed, dxfattribs={"layer": self._layer(layer)})
        return self

    def legacy_room(self, points, layer: str = "0") -> "DxfBuilder":
        self.msp.add_polyline2d(points, close=True, dxfattribs={"layer": self._layer(layer)})
        return self

    def polyface(self, points, layer: str = "0") -> "DxfBuilder":
        face = self.msp.add_polyface(dxfattribs={"layer": self._layer(layer)})
        face.append_face([(x, y, 0) for x, y in points])
        return self

    def polymesh(self, origin, size: float, layer: str = "0") -> "DxfBuilder":
        mesh = self.msp.add_polymesh(size=(2, 2), dxfattribs={"layer": self._layer(layer)})
        for i in range(2):
            for j in range(2):
                mesh.set_mesh_vertex((i, j), (origin[0] + i * size, origin[1] + j * size, 0))
        return self

    def text(self, content: str, at, layer: str = "0") -> "DxfBuilder":
        self.msp.add_text(content, dxfattribs={"layer": self._layer(layer), "insert": at, "height": 0.2})
        return self

    def mtext(self, content: str, at, layer: str = "0") -> "DxfBuilder":
        self.msp.add_mtext(content, dxfattribs={"layer": self._layer(layer), "insert": at})
        return self

    def to_string(self) -> str:
        stream = io.StringIO()
        self.doc.write(stream)
        return stream.getvalue()


@pytest.fixture
def dxf():
    """Factory: dxf(insunits=None) → fresh DxfBuilder."""
    return DxfBuilder


@pytest.fixture
def apartment_dxf():
    """
    Metre-unit apartment, file order:
      1. LIVING ROOM  5 × 4 = 20 m²
      2. BEDROOM      4 × 3.75 = 15 m²
      3. "            4 × 3 = 12 m²  (ditto → BEDROOM)
      4. CORRIDOR     6 × 1.5 = 9 m²
    """
    return (
        DxfBuilder()
        .room(rect(0, 0, 5, 4)).text("LIVING ROOM", (2.5, 2))
        .room(rect(10, 0, 4, 3.75)).text("BEDROOM", (12, 1.8))
        .room(rect(20, 0, 4, 3)).text('"', (22, 1.5))
        .room(rect(30, 0, 6, 1.5)).text("CORRIDOR", (33, 0.75))
        .to_string()
    )


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

def classification(label: str, category: str = "C1", density: float = 40.0, df: float = 0.6, **extra):
    from app.models.classification import RoomClassification
    fields = {
        "room_label": label,
        "room_type": label.title(),
        "customer_category": category,
        "category_description": f"Category {category}",
        "load_density_va_m2": density,
        "demand_factor": df,
        "loads_included": "Lights + Power Sockets",
        "ac_included": False,
        "code_reference": "DPS-01 Table 8",
        "classification_reason": "test",
    }
    fields.update(extra)
    return RoomClassification(**fields)


class FakeClassifier:
    """
    Returns canned classifications. `responses` is a list consumed one per
    call (the last one repeats); an Exception instance is raised instead.
    """

    def __init__(self, *responses):
        self.responses = list(responses) or [[]]
        self.calls: list[dict] = []

    async def classify(self, rooms, code_context, include_ac, focus_categories=None):
        self.calls.append({
            "rooms": [r.name for r in rooms],
            "code_context": code_context,
            "include_ac": include_ac,
            "focus_categories": focus_categories,
        })
        response = self.responses[min(len(self.calls) - 1, len(self.responses) - 1)]
        if isinstance(response, Exception):
            raise response
        return list(response)


class FakeRetriever:
    """
    search() returns `chunks` for every query (or chunks_by_query[query]);
    queries listed in `fail_on` raise, and fail_all makes every query raise.
    """

    def __init__(self, chunks=None, chunks_by_query=None, fail_on=(), fail_all=False):
        self.chunks = list(chunks or [])
        self.chunks_by_query = dict(chunks_by_query or {})
        self.fail_on = set(fail_on)
        self.fail_all = fail_all
        self.queries: list[tuple[str, int]] = []

    async def search(self, query, top_k):
        from app.services.code_retriever import RetrievedChunk
        self.queries.append((query, top_k))
        if self.fail_all or query in self.fail_on:
            raise ConnectionError("knowledge base unreachable")
        contents = self.chunks_by_query.get(query, self.chunks)
        return [RetrievedChunk(content=c, source="dps-01.pdf") for c in contents]


@pytest.fixture
def make_classification():
    return classification


@pytest.fixture
def fake_classifier():
    return FakeClassifier


@pytest.fixture
def fake_retriever():
    return FakeRetriever


@pytest.fixture(autouse=True)
def _reset_pipeline_metrics():
    """Pipeline metrics are a process singleton; isolate every test."""
    from app.services.perf_monitor import metrics
    metrics.reset()
    yield
    metrics.reset()
