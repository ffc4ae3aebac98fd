"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from refindex.db.connection import ConnectionManager
from refindex.db.schema import initialize
from refindex.ingest.embedding import EmbeddingService

DIMS = 8


def fake_vector(text: str, dims: int = DIMS) -> list[float]:
    """Deterministic, never-zero vector derived from *text*."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [1.0] + [digest[i] / 255.0 for i in range(dims - 1)]


class FakeEmbedder:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [fake_vector(t) for t in texts]


def _litellm_response(model: str, input: list[str], **_: object) -> SimpleNamespace:
    return SimpleNamespace(
        data=[{"index": i, "embedding": fake_vector(t)} for i, t in enumerate(input)]
    )


# ------------------------------------------------------------------
# HTML pages
# ------------------------------------------------------------------


def class_page(
    title: str,
    description: str = "",
    *,
    kind: str = "class in UnityEngine",
    inherits: str | None = None,
    implemented_in: str | None = None,
    properties: list[tuple[str, str, str]] = (),
    methods: list[tuple[str, str, str]] = (),
    example: tuple[str, str] | None = None,
    extra: dict[str, str] | None = None,
) -> str:
    """Render a scripting-reference class page.

    *properties* / *methods* are (name, href, summary) rows; *example* is
    (intro paragraph, code).
    """
    meta = [f'<h1 class="heading inherit">{title}</h1>']
    if kind:
        meta.append(f'<p class="cl mb0 left mr10">{kind}</p>')
    if inherits:
        meta.append(
            f'<p class="cl mb0 left mr10">Inherits from:<a href="{inherits}.html">{inherits}</a></p>'
        )
    if implemented_in:
        meta.append(
            '<p class="cl mb0 left mr10">Implemented in:'
            f'<a href="{implemented_in}.html">{implemented_in}</a></p>'
        )
    body = [f'<div class="mb20 clear">{"".join(meta)}</div>']

    if description or example:
        desc = f"<p>{description}</p>" if description else ""
        if example:
            desc += f'<p>{example[0]}</p><pre class="codeExampleCS">{example[1]}</pre>'
        body.append(f'<div class="subsection"><h2>Description</h2>{desc}</div>')

    for heading, rows in (("Properties", properties), ("Public Methods", methods)):
        if rows:
            trs = "".join(
                f'<tr><td class="lbl"><a href="{href}">{name}</a></td><td class="desc">{summary}</td></tr>'
                for name, href, summary in rows
            )
            body.append(
                f'<div class="subsection"><h2>{heading}</h2><table class="list">{trs}</table></div>'
            )

    for heading, text in (extra or {}).items():
        body.append(f'<div class="subsection"><h2>{heading}</h2><p>{text}</p></div>')

    return (
        "<html><head><title>x</title></head><body>"
        f'<div class="content"><div class="section">{"".join(body)}</div></div>'
        "</body></html>"
    )


METHOD_PAGE = """<html><body>
<div class="content">
  <div class="section">
    <div class="mb20 clear"><h1 class="heading inherit">Rigidbody.AddForce</h1></div>
    <div class="subsection">
      <h2>Declaration</h2>
      <div class="signature-CS sig-block">public void AddForce(Vector3 force, ForceMode mode);</div>
      <h3>Parameters</h3>
      <table class="list">
        <tr><td class="name lbl">force</td><td class="desc">Force vector in world coordinates.</td></tr>
        <tr><td class="name lbl">mode</td><td class="desc">Type of force to apply.</td></tr>
      </table>
      <h3>Description</h3>
      <p>Adds a force to the Rigidbody.</p>
      <p>Force is applied continuously along the direction of the force vector.</p>
      <pre class="codeExampleCS">using UnityEngine;

public class Example : MonoBehaviour
{
    Rigidbody rb;
}</pre>
    </div>
    <div class="subsection">
      <h2>Declaration</h2>
      <div class="signature-CS sig-block">public void AddForce(float x, float y, float z);</div>
      <h3>Description</h3>
      <p>Adds a force to the Rigidbody by components.</p>
    </div>
  </div>
</div>
</body></html>
"""


def write_corpus(root: Path) -> dict[str, Path]:
    """Write a three-page corpus: two classes and a method page, cross-linked."""
    root.mkdir(parents=True, exist_ok=True)
    pages = {
        "Rigidbody": class_page(
            "Rigidbody",
            "Control of an object's position through physics simulation. "
            'See also <a href="ForceMode.html">ForceMode</a>.',
            inherits="Component",
            implemented_in="UnityEngine.PhysicsModule",
            properties=[("mass", "Rigidbody-mass.html", "The mass of the rigidbody.")],
            methods=[("AddForce", "Rigidbody.AddForce.html", "Adds a force to the Rigidbody.")],
        ),
        "Component": class_page(
            "Component", "Base class for everything attached to a GameObject."
        ),
        "Rigidbody.AddForce": METHOD_PAGE,
    }
    paths: dict[str, Path] = {}
    for key, html in pages.items():
        path = root / f"{key}.html"
        path.write_text(html, encoding="utf-8")
        paths[key] = path
    return paths


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / ".refindex.db"


@pytest.fixture
def connections(db_path: Path) -> ConnectionManager:
    return ConnectionManager(db_path, max_attempts=2, backoff_seconds=0.01)


@pytest.fixture
def tmp_db(connections: ConnectionManager):
    """File-based DB in tmp_path with schema and vec tables initialized, closed after test."""
    conn = connections.connect()
    initialize(conn, DIMS)
    yield conn
    conn.close()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def embeddings(fake_embedder: FakeEmbedder):
    service = EmbeddingService(lambda: fake_embedder, pool_size=2)
    yield service
    service.close()


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    root = tmp_path / "corpus"
    write_corpus(root)
    return root


@pytest.fixture
def mock_litellm():
    """Patch litellm.embedding with deterministic vectors."""
    with patch("refindex.ingest.embedding.litellm.embedding", side_effect=_litellm_response) as m:
        yield m


@pytest.fixture
def make_page():
    return class_page


@pytest.fixture
def method_page() -> str:
    return METHOD_PAGE


@pytest.fixture
def vectorize():
    return fake_vector
