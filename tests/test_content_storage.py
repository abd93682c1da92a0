from io import BytesIO

import httpx
import pytest
from pypdf import PdfReader, PdfWriter

from core.config import ContentSettings
from infrastructure.external.storage import (
    ConfigurationError,
    HttpProvider,
    LocalProvider,
    NotFoundError,
    TransientError,
    ValidationError,
    create_content_storage,
    watermark_pdf,
)


@pytest.fixture
def content_dir(tmp_path):
    books = tmp_path / "books"
    books.mkdir()
    (books / "novel.pdf").write_bytes(b"0123456789" * 10)
    return tmp_path


@pytest.mark.asyncio
async def test_local_provider_reads_and_streams(content_dir):
    provider = LocalProvider(str(content_dir), chunk_size=16)

    info = await provider.stat("books/novel.pdf")
    chunks = [chunk async for chunk in provider.open_stream("/books/novel.pdf")]

    assert info.size == 100
    assert info.content_type == "application/pdf"
    assert len(chunks) == 7
    assert b"".join(chunks) == await provider.read("books/novel.pdf")


@pytest.mark.asyncio
async def test_local_provider_missing_and_traversal(content_dir):
    provider = LocalProvider(str(content_dir / "books"))

    with pytest.raises(NotFoundError):
        await provider.stat("missing.pdf")
    with pytest.raises(ValidationError):
        await provider.read("../../etc/passwd")
    with pytest.raises(ValidationError):
        await provider.stat("")


def _origin(request: httpx.Request) -> httpx.Response:
    if request.headers.get("authorization") != "Bearer origin-token":
        return httpx.Response(403)
    if request.url.path == "/content/books/a.pdf":
        return httpx.Response(200, content=b"%PDF-data", headers={"content-type": "application/pdf"})
    if request.url.path == "/content/books/busy.pdf":
        return httpx.Response(503)
    return httpx.Response(404)


@pytest.mark.asyncio
async def test_http_provider_fetches_from_origin():
    provider = HttpProvider(
        "https://origin.example/content/", token="origin-token", transport=httpx.MockTransport(_origin)
    )

    info = await provider.stat("books/a.pdf")
    streamed = b"".join([chunk async for chunk in provider.open_stream("books/a.pdf")])

    assert info.content_type == "application/pdf"
    assert info.size == len(b"%PDF-data")
    assert streamed == b"%PDF-data"
    assert await provider.read("books/a.pdf") == b"%PDF-data"
    with pytest.raises(NotFoundError):
        await provider.stat("books/gone.pdf")
    with pytest.raises(TransientError):
        await provider.read("books/busy.pdf")
    await provider.close()


def test_factory_selects_provider(tmp_path):
    assert isinstance(create_content_storage(ContentSettings(local_base_path=str(tmp_path))), LocalProvider)
    http = create_content_storage(ContentSettings(provider="http", http_base_url="https://origin.example"))
    assert isinstance(http, HttpProvider)
    with pytest.raises(ConfigurationError):
        create_content_storage(ContentSettings(provider="http"))
    with pytest.raises(ConfigurationError):
        create_content_storage(ContentSettings(provider="ftp"))


def _blank_pdf(pages: int = 2) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=300, height=400)
    out = BytesIO()
    writer.write(out)
    return out.getvalue()


def test_watermark_stamps_every_page():
    stamped = watermark_pdf(_blank_pdf(), "buyer-1 | Order ORD-ABC123")

    reader = PdfReader(BytesIO(stamped))
    assert len(reader.pages) == 2
    for page in reader.pages:
        annots = [a.get_object() for a in page["/Annots"]]
        assert any(a.get("/Contents") == "buyer-1 | Order ORD-ABC123" for a in annots)


def test_watermark_leaves_unreadable_input_alone():
    assert watermark_pdf(b"not a pdf at all", "x") == b"not a pdf at all"
