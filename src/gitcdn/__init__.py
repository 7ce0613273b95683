from .config import CDNConfig
from .committer import TreeMutationCommitter, CommitResult, RenameResult, RenameState
from .exceptions import (
    GitCDNError, ConfigError, PathCollision, NotFound, IsADirectory, BranchNotFound,
    RefUpdateConflict, StorageUnavailable, GitHubAPIError, TreeTruncated, RenameAborted, PartialRename,
)
from .listing import FileInfo, list_files, read_file, file_exists
from .stores import ObjectStore, RepoInfo, open_store
from .tree import EntryMode, ObjectType, TreeEntry, TreeSnapshot, CommitRecord, BranchRef, TreeDelta
from .urls import raw_url, jsdelivr_url, blob_url, cdn_urls, parse_github_url

__all__ = [
    "CDNConfig", "TreeMutationCommitter", "CommitResult", "RenameResult", "RenameState",
    "GitCDNError", "ConfigError", "PathCollision", "NotFound", "IsADirectory", "BranchNotFound",
    "RefUpdateConflict", "StorageUnavailable", "GitHubAPIError", "TreeTruncated", "RenameAborted",
    "PartialRename",
    "FileInfo", "list_files", "read_file", "file_exists",
    "ObjectStore", "RepoInfo", "open_store",
    "EntryMode", "ObjectType", "TreeEntry", "TreeSnapshot", "CommitRecord", "BranchRef", "TreeDelta",
    "raw_url", "jsdelivr_url", "blob_url", "cdn_urls", "parse_github_url",
]
