from collections.abc import Sequence

import pytest

from cms_repo_sync.meta_consts import BACKEND_SERVICE, FILE_TYPE
from cms_repo_sync.records import (
    BaseFileListItem,
    LastCommit,
    RepositoryContentsEntry,
    RepositoryContentsMap,
    RepositoryContext,
)
from cms_repo_sync.sync import (
    FolderClassifier,
    SyncSinks,
    create_file_list,
    fetch_and_parse_files,
    is_index_file,
    parse_file,
)

CLASSIFIER = FolderClassifier(
    entry_folders=["content", "content/posts/"],
    asset_folders=["static/uploads", "content/posts"],
)


def _file(path: str, **kwargs) -> BaseFileListItem:
    return BaseFileListItem(path=path, sha=f"sha:{path}", **kwargs)


class TestFolderClassifier:
    def test_deepest_folder_wins(self) -> None:
        assert CLASSIFIER.get_entry_folder("content/posts/a.md") == "content/posts"
        assert CLASSIFIER.get_entry_folder("content/about.md") == "content"
        assert CLASSIFIER.get_entry_folder("contents/a.md") is None
        assert CLASSIFIER.get_asset_folder("static/uploads/2024/a.png") == "static/uploads"

    def test_empty_folder_matches_everything(self) -> None:
        classifier = FolderClassifier(asset_folders=[""])

        assert classifier.get_asset_folder("a.png") == ""
        assert classifier.get_entry_folder("a.md") is None

    def test_scan_paths(self) -> None:
        assert CLASSIFIER.scan_paths == ["content", "content/posts", "static/uploads"]


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("content/_index.md", True),
        ("_index.en.md", True),
        ("content/index.md", False),
        ("content/_index", False),
        ("content/my_index.md", False),
    ],
)
def test_is_index_file(path: str, expected: bool) -> None:
    assert is_index_file(path) is expected


class TestCreateFileList:
    def test_classification(self) -> None:
        files = [
            _file("content/posts/a.md"),
            _file("content/posts/cover.jpg"),
            _file("static/uploads/b.png"),
            _file("static/uploads/_index.md"),
            _file("static/uploads/.gitkeep"),
            _file(".gitattributes"),
            _file("content/.DS_Store"),
            _file("README.md"),
        ]

        file_list = create_file_list(files, CLASSIFIER)

        # A file in both an entry and an asset folder is an entry only
        assert [(f.path, f.type, f.folder) for f in file_list.entry_files] == [
            ("content/posts/a.md", FILE_TYPE.entry, "content/posts"),
            ("content/posts/cover.jpg", FILE_TYPE.entry, "content/posts"),
        ]
        assert [(f.path, f.type, f.folder) for f in file_list.asset_files] == [
            ("static/uploads/b.png", FILE_TYPE.asset, "static/uploads"),
        ]
        assert [(f.path, f.type) for f in file_list.config_files] == [
            ("static/uploads/.gitkeep", FILE_TYPE.config),
            (".gitattributes", FILE_TYPE.config),
        ]
        assert file_list.count == 5
        assert files[0].type is None

    def test_without_classifier_every_file_is_an_entry(self) -> None:
        file_list = create_file_list([_file("a.md"), _file("img/b.png"), _file(".hidden")])

        assert [f.path for f in file_list.entry_files] == ["a.md", "img/b.png"]
        assert file_list.asset_files == []
        assert file_list.config_files == []


def test_parse_file_merges_fetched_data() -> None:
    fetched = {"a.md": RepositoryContentsEntry(sha="1", size=9, text="body", meta={"commit_date": None})}

    parsed = parse_file(_file("a.md", type=FILE_TYPE.entry), fetched)

    assert (parsed.size, parsed.text, parsed.meta) == (9, "body", {"commit_date": None})
    assert parse_file(_file("b.md", size=3), fetched).text is None
    assert parse_file(_file("a.md", size=3), fetched).size == 3


class StubRepository:
    """Records the calls the pipeline makes."""

    def __init__(self, files: list[BaseFileListItem], message: str = "Update") -> None:
        self.files = files
        self.message = message
        self.calls: list[tuple] = []

    async def fetch_default_branch_name(self) -> str:
        self.calls.append(("default_branch",))
        return "trunk"

    async def fetch_last_commit(self) -> LastCommit:
        self.calls.append(("last_commit",))
        return LastCommit(hash="c0ffee", message=self.message)

    async def fetch_file_list(self, last_hash: str | None = None) -> list[BaseFileListItem]:
        self.calls.append(("file_list", last_hash))
        return self.files

    async def fetch_file_contents(
        self,
        items: Sequence[BaseFileListItem],
        progress=None,
    ) -> RepositoryContentsMap:
        self.calls.append(("contents", [item.path for item in items]))
        return {
            item.path: RepositoryContentsEntry(sha=item.sha, size=len(item.path), text=f"text of {item.path}")
            for item in items
            if item.type != FILE_TYPE.asset
        }

    async def run(self, repository: RepositoryContext, **kwargs):
        return await fetch_and_parse_files(
            repository,
            self.fetch_default_branch_name,
            self.fetch_last_commit,
            self.fetch_file_list,
            self.fetch_file_contents,
            **kwargs,
        )


@pytest.fixture
def repository() -> RepositoryContext:
    return RepositoryContext(service=BACKEND_SERVICE.gitea, owner="o", repo="r")


class TestFetchAndParseFiles:
    @pytest.mark.asyncio
    async def test_full_run(self, repository: RepositoryContext) -> None:
        stub = StubRepository(
            [
                _file("content/posts/a.md"),
                _file("static/uploads/b.png"),
                _file(".gitkeep"),
                _file("layouts/base.html"),
            ]
        )
        delivered: dict[str, list[str]] = {}

        async def on_entries(files: list[BaseFileListItem]) -> None:
            delivered["entries"] = [f.path for f in files]

        def on_assets(files: list[BaseFileListItem]) -> None:
            delivered["assets"] = [f.path for f in files]

        result = await stub.run(
            repository,
            classifier=CLASSIFIER,
            sinks=SyncSinks(on_entries=on_entries, on_assets=on_assets),
        )

        assert stub.calls == [
            ("default_branch",),
            ("last_commit",),
            ("file_list", "c0ffee"),
            ("contents", ["content/posts/a.md", "static/uploads/b.png", ".gitkeep"]),
        ]
        assert result.branch == "trunk"
        assert result.is_last_commit_published
        assert result.entry_files[0].text == "text of content/posts/a.md"
        assert result.asset_files[0].text is None
        assert result.config_files[0].size == len(".gitkeep")
        assert result.count == 3
        assert delivered == {"entries": ["content/posts/a.md"], "assets": ["static/uploads/b.png"]}

    @pytest.mark.asyncio
    async def test_known_branch_and_skip_ci(self, repository: RepositoryContext) -> None:
        stub = StubRepository([_file("a.md")], message="[skip ci] Update a")

        result = await stub.run(repository.with_branch("main"))

        assert ("default_branch",) not in stub.calls
        assert result.branch == "main"
        assert not result.is_last_commit_published

    @pytest.mark.asyncio
    async def test_empty_listing_skips_contents(self, repository: RepositoryContext) -> None:
        stub = StubRepository([_file("layouts/base.html")])
        delivered: list[list[BaseFileListItem]] = []

        result = await stub.run(
            repository.with_branch("main"),
            classifier=CLASSIFIER,
            sinks=SyncSinks(on_entries=delivered.append, on_assets=delivered.append, on_config_files=delivered.append),
        )

        assert [call[0] for call in stub.calls] == ["last_commit", "file_list"]
        assert delivered == [[], [], []]
        assert result.count == 0
