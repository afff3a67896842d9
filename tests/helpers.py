from pathlib import Path

from dulwich.objects import Commit, Tree
from dulwich.repo import Repo

from cms_repo_sync.records import BaseFileListItem
from cms_repo_sync.meta_consts import FILE_TYPE

GITEA_API = "https://gitea.example.com/api/v1"
GITHUB_API = "https://api.github.com"
GITLAB_API = "https://gitlab.com/api/v4"
GITLAB_GRAPHQL = "https://gitlab.com/api/graphql"


def make_entries(count: int, folder: str = "content") -> list[BaseFileListItem]:
    """Build `count` classified entry items with predictable paths and SHAs.

    Args:
        count: Number of items.
        folder: Folder the entries live in.

    Returns:
        list[BaseFileListItem]: `{folder}/post-{i}.md` with sha `sha{i}` and size `i`.
    """
    return [
        BaseFileListItem(path=f"{folder}/post-{i}.md", sha=f"sha{i}", size=i, type=FILE_TYPE.entry)
        for i in range(count)
    ]


def add_commit(root: Path, message: str, *, ref: bytes = b"refs/heads/main", packed: bool = False) -> str:
    """Point `ref` at a new commit of an empty tree.

    Args:
        root: Repository root (or the common git dir's repository for worktrees).
        message: Commit message, without trailing newline.
        ref: The ref to update.
        packed: Write the objects into a pack file instead of loose objects.

    Returns:
        str: The commit hash.
    """
    with Repo(str(root)) as repo:
        tree = Tree()
        commit = Commit()
        commit.tree = tree.id
        commit.author = commit.committer = b"Jane Doe <jane@example.com>"
        commit.author_time = commit.commit_time = 1704067200
        commit.author_timezone = commit.commit_timezone = 0
        commit.encoding = b"UTF-8"
        commit.message = message.encode() + b"\n"

        if packed:
            repo.object_store.add_objects([(tree, None), (commit, None)])
        else:
            repo.object_store.add_object(tree)
            repo.object_store.add_object(commit)

        repo.refs[ref] = commit.id
        return commit.id.decode("ascii")
