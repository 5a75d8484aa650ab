"""文件服务单元测试"""

import os
from datetime import datetime
from pathlib import Path

import pytest

from file_server.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from file_server.models.schemas import SortField, SortOrder
from file_server.services.archive_service import ArchiveState
from file_server.services.file_service import DirectoryLister, FileService
from file_server.tests.helpers import make_upload, set_mtime, write_file


class TestDirectoryLister:
    """目录列表测试"""

    @pytest.fixture
    def directory(self, temp_dir: Path) -> Path:
        set_mtime(write_file(temp_dir / "a"), 1)
        set_mtime(write_file(temp_dir / "b"), 2)
        set_mtime(write_file(temp_dir / "c"), 1)
        return temp_dir

    def test_sort_by_mtime_then_name(self, directory: Path):
        names = [entry.name for entry in DirectoryLister().list(directory)]

        assert names == ["a", "c", "b"]

    def test_sort_descending(self, directory: Path):
        names = [entry.name for entry in DirectoryLister().list(directory, descending=True)]

        assert names == ["b", "c", "a"]

    def test_sort_by_name(self, directory: Path):
        names = [entry.name for entry in DirectoryLister().list(directory, SortField.NAME)]

        assert names == ["a", "b", "c"]

    def test_entry_fields(self, temp_dir: Path):
        set_mtime(write_file(temp_dir / "file.txt", b"12345"), 1_700_000_000)
        (temp_dir / "sub").mkdir()

        entries = {entry.name: entry for entry in DirectoryLister().list(temp_dir)}

        assert entries["file.txt"].size == 5
        assert not entries["file.txt"].is_directory
        assert entries["sub"].is_directory
        assert entries["file.txt"].modified_time.timestamp() == 1_700_000_000
        assert entries["file.txt"].modified_time.tzinfo is not None

    def test_dangling_symlink_is_listed(self, temp_dir: Path):
        write_file(temp_dir / "good.txt")
        os.symlink(temp_dir / "missing-target", temp_dir / "dangling")

        entries = {entry.name: entry for entry in DirectoryLister().list(temp_dir)}

        assert set(entries) == {"good.txt", "dangling"}
        assert not entries["dangling"].is_directory

    def test_unreadable_child_is_skipped(self, temp_dir: Path, monkeypatch):
        write_file(temp_dir / "good.txt")
        real_scandir = os.scandir

        class _Unreadable:
            name = "locked"
            path = str(temp_dir / "locked")

            def stat(self, follow_symlinks=True):
                raise PermissionError(13, "Permission denied", self.path)

        class _Listing:
            def __init__(self, directory):
                with real_scandir(directory) as iterator:
                    self.children = list(iterator) + [_Unreadable()]

            def __enter__(self):
                return self

            def __exit__(self, *exc_info):
                return False

            def __iter__(self):
                return iter(self.children)

        monkeypatch.setattr("file_server.services.file_service.os.scandir", _Listing)

        names = [entry.name for entry in DirectoryLister().list(temp_dir)]

        assert names == ["good.txt"]

    def test_missing_directory_is_not_found(self, temp_dir: Path):
        with pytest.raises(NotFoundError):
            DirectoryLister().list(temp_dir / "missing")

    def test_serialized_field_names(self, temp_dir: Path):
        write_file(temp_dir / "x.txt")

        entry = DirectoryLister().list(temp_dir)[0]
        payload = entry.model_dump(mode="json", by_alias=True)

        assert set(payload) == {"name", "size", "isDirectory", "modifiedTime"}


class TestFileServiceRead:
    """读取操作测试"""

    @pytest.mark.asyncio
    async def test_listing_uses_default_order(self, file_service: FileService):
        root = file_service.settings.root
        set_mtime(write_file(root / "docs" / "old.txt"), 10)
        set_mtime(write_file(root / "docs" / "new.txt"), 20)

        result = await file_service.open_target("docs")

        assert [entry.name for entry in result.listing.items] == ["old.txt", "new.txt"]

    @pytest.mark.asyncio
    async def test_listing_honours_requested_order(self, file_service: FileService):
        root = file_service.settings.root
        set_mtime(write_file(root / "docs" / "b.txt"), 10)
        set_mtime(write_file(root / "docs" / "a.txt"), 20)

        result = await file_service.open_target("docs", sort_by=SortField.NAME, order=SortOrder.DESC)

        assert [entry.name for entry in result.listing.items] == ["b.txt", "a.txt"]

    @pytest.mark.asyncio
    async def test_regular_file_is_returned_for_download(self, file_service: FileService):
        path = write_file(file_service.settings.root / "notes.txt")

        result = await file_service.open_target("notes.txt")

        assert result.is_file
        assert result.path == path

    @pytest.mark.asyncio
    async def test_directory_download_opens_archive(self, file_service: FileService):
        write_file(file_service.settings.root / "docs" / "a.txt")

        result = await file_service.open_target("docs", download=True)

        assert result.archive is not None
        b"".join(result.archive)
        assert result.archive.state is ArchiveState.COMPLETED

    @pytest.mark.asyncio
    async def test_missing_target_is_not_found(self, file_service: FileService):
        with pytest.raises(NotFoundError):
            await file_service.open_target("nope")

    @pytest.mark.asyncio
    async def test_escape_is_forbidden(self, file_service: FileService):
        with pytest.raises(ForbiddenError):
            await file_service.open_target("../")


class TestFileServiceMutations:
    """上传、移动与删除测试"""

    @pytest.mark.asyncio
    async def test_upload_defaults_to_staging_dir(self, file_service: FileService):
        stored = await file_service.upload(make_upload("photo.jpg", b"jpg"))
        again = await file_service.upload(make_upload("photo.jpg", b"jpg2"))

        assert stored == "upload/photo.jpg"
        assert again == "upload/photo(1).jpg"

    @pytest.mark.asyncio
    async def test_upload_into_destination(self, file_service: FileService):
        (file_service.settings.root / "docs").mkdir()

        stored = await file_service.upload(make_upload("../../evil.txt", b"x"), destination="docs")

        assert stored == "docs/evil.txt"

    @pytest.mark.asyncio
    async def test_upload_into_missing_destination(self, file_service: FileService):
        with pytest.raises(NotFoundError):
            await file_service.upload(make_upload("a.txt", b"x"), destination="missing")

    @pytest.mark.asyncio
    async def test_upload_without_filename(self, file_service: FileService):
        with pytest.raises(ValidationError):
            await file_service.upload(make_upload("", b"x"))

    @pytest.mark.asyncio
    async def test_move_renames(self, file_service: FileService):
        root = file_service.settings.root
        write_file(root / "a.txt", b"a")
        (root / "docs").mkdir()

        moved = await file_service.move("a.txt", "docs/b.txt")

        assert moved == "docs/b.txt"
        assert not (root / "a.txt").exists()
        assert (root / "docs" / "b.txt").read_bytes() == b"a"

    @pytest.mark.asyncio
    async def test_move_onto_existing_is_conflict(self, file_service: FileService):
        root = file_service.settings.root
        write_file(root / "a.txt", b"a")
        write_file(root / "b.txt", b"b")

        with pytest.raises(ConflictError):
            await file_service.move("a.txt", "b.txt")
        assert (root / "b.txt").read_bytes() == b"b"

    @pytest.mark.asyncio
    async def test_move_missing_source(self, file_service: FileService):
        with pytest.raises(NotFoundError):
            await file_service.move("ghost.txt", "b.txt")

    @pytest.mark.asyncio
    async def test_move_into_missing_parent(self, file_service: FileService):
        write_file(file_service.settings.root / "a.txt")

        with pytest.raises(NotFoundError):
            await file_service.move("a.txt", "missing/b.txt")

    @pytest.mark.asyncio
    async def test_move_outside_root_is_forbidden(self, file_service: FileService):
        write_file(file_service.settings.root / "a.txt")

        with pytest.raises(ForbiddenError):
            await file_service.move("a.txt", "../a.txt")

    @pytest.mark.asyncio
    async def test_protected_subtree_rejects_move_and_delete(self, file_service: FileService):
        root = file_service.settings.root
        write_file(root / "keep" / "DO_NOT_DELETE", b"")
        write_file(root / "keep" / "deep" / "nested" / "file.txt")
        write_file(root / "free.txt")

        for target in ("keep", "keep/DO_NOT_DELETE", "keep/deep", "keep/deep/nested/file.txt"):
            with pytest.raises(ForbiddenError):
                await file_service.delete(target)
            with pytest.raises(ForbiddenError):
                await file_service.move(target, "moved")

        assert (root / "keep" / "deep" / "nested" / "file.txt").exists()
        assert await file_service.delete("free.txt")

    @pytest.mark.asyncio
    async def test_root_and_trash_cannot_be_removed(self, file_service: FileService):
        for target in ("", "/", "trash"):
            with pytest.raises(ForbiddenError):
                await file_service.delete(target)

    @pytest.mark.asyncio
    async def test_delete_moves_to_quarantine(self, file_service: FileService):
        root = file_service.settings.root
        write_file(root / "docs" / "a.txt", b"a")
        write_file(root / "docs" / "b.txt", b"b")
        now = datetime(2024, 1, 2, 3, 4, 5)

        first = await file_service.delete("docs/a.txt", now=now)
        second = await file_service.delete("docs/b.txt", now=now)

        assert first == "trash/2024-01-02-03-04-05/a.txt"
        assert second == "trash/2024-01-02-03-04-05/b.txt"
        listing = await file_service.open_target("docs")
        assert listing.listing.items == []

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_found(self, file_service: FileService):
        with pytest.raises(NotFoundError):
            await file_service.delete("ghost.txt")

    @pytest.mark.asyncio
    async def test_delete_symlink_keeps_target(self, file_service: FileService):
        root = file_service.settings.root
        target = write_file(root / "docs" / "real.txt", b"real")
        os.symlink(target, root / "link.txt")

        trashed = await file_service.delete("link.txt", now=datetime(2024, 1, 2, 3, 4, 5))

        assert trashed == "trash/2024-01-02-03-04-05/link.txt"
        assert not os.path.lexists(root / "link.txt")
        assert target.read_bytes() == b"real"
        assert os.path.islink(root / trashed)

    @pytest.mark.asyncio
    async def test_delete_dangling_symlink(self, file_service: FileService):
        root = file_service.settings.root
        os.symlink(root / "gone.txt", root / "dangling")

        trashed = await file_service.delete("dangling", now=datetime(2024, 1, 2, 3, 4, 5))

        assert trashed == "trash/2024-01-02-03-04-05/dangling"
        assert not os.path.lexists(root / "dangling")
        assert os.path.islink(root / trashed)

    @pytest.mark.asyncio
    async def test_move_symlink_moves_the_link(self, file_service: FileService):
        root = file_service.settings.root
        target = write_file(root / "docs" / "real.txt", b"real")
        os.symlink(target, root / "link.txt")

        moved = await file_service.move("link.txt", "renamed.txt")

        assert moved == "renamed.txt"
        assert os.path.islink(root / "renamed.txt")
        assert target.read_bytes() == b"real"
        assert not os.path.lexists(root / "link.txt")

    @pytest.mark.asyncio
    async def test_symlink_to_directory_is_trashed_as_link(self, file_service: FileService):
        root = file_service.settings.root
        write_file(root / "docs" / "a.txt", b"a")
        os.symlink(root / "docs", root / "shortcut")

        await file_service.delete("shortcut", now=datetime(2024, 1, 2, 3, 4, 5))

        assert (root / "docs" / "a.txt").read_bytes() == b"a"
        assert not os.path.lexists(root / "shortcut")

    @pytest.mark.asyncio
    async def test_symlink_into_protected_subtree_is_forbidden(self, file_service: FileService):
        root = file_service.settings.root
        write_file(root / "keep" / "DO_NOT_DELETE", b"")
        target = write_file(root / "keep" / "file.txt", b"k")
        os.symlink(target, root / "alias.txt")

        with pytest.raises(ForbiddenError):
            await file_service.delete("alias.txt")

        assert os.path.islink(root / "alias.txt")
        assert target.exists()

    @pytest.mark.asyncio
    async def test_symlink_parent_escape_is_forbidden(self, file_service: FileService, tmp_path: Path):
        outside = write_file(tmp_path / "outside" / "secret.txt")
        os.symlink(outside.parent, file_service.settings.root / "out")

        with pytest.raises(ForbiddenError):
            await file_service.delete("out/secret.txt")
        assert outside.exists()

    @pytest.mark.asyncio
    async def test_upload_creates_missing_staging_dir(self, file_service: FileService):
        staging = file_service.settings.upload_dir
        staging.rmdir()

        stored = await file_service.upload(make_upload("a.txt", b"x"))

        assert stored == "upload/a.txt"
        assert (staging / "a.txt").read_bytes() == b"x"
