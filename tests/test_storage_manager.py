import io
import uuid
from datetime import datetime

import pytest
from starlette.datastructures import UploadFile

from app.errors import NotFound, UploadTooLarge
from app.services.storage_manager import StorageKey, StorageManager, file_extension


@pytest.mark.parametrize("filename,expected", [
    ("photo.png", ".png"),
    ("archive.tar.gz", ".gz"),
    ("README", ""),
    (".bashrc", ".bashrc"),
    ("trailing.", "."),
    ("some.dir/noext", ""),
    ("", ""),
    (None, ""),
])
def test_file_extension(filename, expected):
    assert file_extension(filename) == expected


def test_storage_key_paths():
    random_id = uuid.UUID("12345678-1234-5678-1234-567812345678")
    key = StorageKey(year=2024, month=3, day=5, random_id=random_id, extension=".png")

    assert key.filename == "12345678-1234-5678-1234-567812345678.png"
    assert key.relative_path == "2024/03/05/12345678-1234-5678-1234-567812345678.png"
    assert StorageManager.public_url(key, "files") == f"files/{key.relative_path}"


def test_storage_key_generate():
    key = StorageKey.generate("photo.jpeg", datetime(2023, 11, 9, 23, 59))
    assert (key.year, key.month, key.day) == (2023, 11, 9)
    assert key.extension == ".jpeg"
    assert key.random_id.version == 4

    other = StorageKey.generate("photo.jpeg", datetime(2023, 11, 9, 23, 59))
    assert other.random_id != key.random_id


@pytest.fixture
def manager(tmp_path):
    return StorageManager(
        tmp_path / "data",
        tmp_path / "data" / ".tmp",
        max_upload_size=1024,
        clock=lambda: datetime(2024, 3, 5),
    )


@pytest.mark.asyncio
async def test_initialize_cleans_staging_files(manager):
    manager.temp_dir.mkdir(parents=True)
    leftover = manager.temp_dir / "abc.png.part"
    leftover.write_bytes(b"partial")

    await manager.initialize()

    assert manager.upload_dir.is_dir()
    assert not leftover.exists()


@pytest.mark.asyncio
async def test_store_and_resolve(manager):
    await manager.initialize()
    content = b"x" * 1000

    key, size = await manager.store(UploadFile(io.BytesIO(content), filename="a.txt"), "a.txt")

    assert size == len(content)
    assert manager.filesystem_path(key).read_bytes() == content
    assert list(manager.temp_dir.iterdir()) == []

    path, stat_result = await manager.resolve("2024", "03", "05", key.filename)
    assert path == manager.filesystem_path(key)
    assert stat_result.st_size == len(content)


@pytest.mark.asyncio
async def test_store_too_large_leaves_nothing(manager):
    await manager.initialize()

    with pytest.raises(UploadTooLarge):
        await manager.store(UploadFile(io.BytesIO(b"x" * 1025), filename="a.bin"), "a.bin")

    assert [p for p in manager.upload_dir.rglob("*") if p.is_file()] == []


@pytest.mark.asyncio
async def test_resolve_missing_file(manager):
    await manager.initialize()
    with pytest.raises(NotFound):
        await manager.resolve("2024", "03", "05", "missing.png")


@pytest.mark.asyncio
async def test_resolve_directory(manager):
    await manager.initialize()
    (manager.upload_dir / "2024" / "03" / "05" / "dir").mkdir(parents=True)
    with pytest.raises(NotFound):
        await manager.resolve("2024", "03", "05", "dir")


@pytest.mark.asyncio
async def test_resolve_outside_upload_root(manager, tmp_path):
    await manager.initialize()
    secret = tmp_path / "secret.txt"
    secret.write_text("do not serve")

    with pytest.raises(NotFound):
        await manager.resolve("..", ".", ".", "secret.txt")


@pytest.mark.asyncio
async def test_resolve_through_symlinked_root(tmp_path):
    real_dir = tmp_path / "real"
    real_dir.mkdir()
    link = tmp_path / "link"
    link.symlink_to(real_dir, target_is_directory=True)
    manager = StorageManager(link, link / ".tmp", clock=lambda: datetime(2024, 3, 5))
    await manager.initialize()

    key, _ = await manager.store(UploadFile(io.BytesIO(b"abc"), filename="a.txt"), "a.txt")

    path, _ = await manager.resolve("2024", "03", "05", key.filename)
    assert path.read_bytes() == b"abc"
    assert manager.upload_root == real_dir.resolve()
