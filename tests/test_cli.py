"""
Tests for the folderserver CLI.

Tests cover:
- init, mkdir (with and without --parents) and add
- ls with paging, sorting, type filters and --as
- path, rm, mv and rename
- grant, revoke and access
- user and group sub-commands
- seed and dump
- config
- Error reporting and exit codes
"""

import shutil
import tempfile
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from folderserver.cli import app
from folderserver.config import CONFIG_ENV_VAR
from folderserver.models import AccessLevel, NodeType
from folderserver.store import FolderStore

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep every test away from the user's real configuration."""
    config_path = tmp_path / "config.json"
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config_path))
    return config_path


@pytest.fixture
def store_dir():
    """Create a temporary folder store and return its path."""
    temp_dir = tempfile.mkdtemp()
    store = FolderStore.open(Path(temp_dir))
    store.close()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def populated_dir(store_dir):
    """Store with /studies holding three templates and two folders, and user bob."""
    store = FolderStore.open(store_dir)
    try:
        studies = store.repository.create_folder(store.root.id, "studies")
        for name in ("Gamma", "Alpha", "Beta"):
            store.repository.create_resource(studies.id, NodeType.TEMPLATE, name)
        store.repository.create_folder(studies.id, "cohort-a")
        store.repository.create_folder(studies.id, "cohort-b")
        store.repository.create_folder(store.root.id, "private")
        with store.users() as users:
            users.add_user("bob", "Bob")
    finally:
        store.close()
    return store_dir


def invoke(store_dir, *args, **kwargs):
    return runner.invoke(app, [*args, "--store", str(store_dir)], **kwargs)


def open_store(path):
    return FolderStore.open(path)


class TestInit:

    def test_init(self, tmp_path):
        target = tmp_path / "folders"
        result = runner.invoke(app, ["init", str(target)])
        assert result.exit_code == 0
        assert "initialized" in result.stdout
        assert (target / "folders.db").exists()

    def test_missing_store(self, tmp_path):
        result = invoke(tmp_path / "nowhere", "ls", "/")
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_no_store_configured(self):
        result = runner.invoke(app, ["ls", "/"])
        assert result.exit_code == 1
        assert "No store path" in result.stdout

    def test_store_from_config(self, populated_dir):
        assert runner.invoke(app, ["config", "--store-path", str(populated_dir)]).exit_code == 0
        result = runner.invoke(app, ["ls", "/"])
        assert result.exit_code == 0
        assert "studies" in result.stdout


class TestMkdir:

    def test_mkdir(self, store_dir):
        result = invoke(store_dir, "mkdir", "/studies", "--owner", "alice")
        assert result.exit_code == 0
        assert "Created /studies" in result.stdout

        store = open_store(store_dir)
        try:
            assert store.repository.find_folder_by_path("/studies").owner_id == "alice"
        finally:
            store.close()

    def test_missing_parent(self, store_dir):
        result = invoke(store_dir, "mkdir", "/a/b/c")
        assert result.exit_code == 1
        assert "Parent folder not found: /a" in result.stdout

    def test_parents(self, store_dir):
        result = invoke(store_dir, "mkdir", "-p", "/a/b/c")
        assert result.exit_code == 0
        assert "Created /a/b/c" in result.stdout

        again = invoke(store_dir, "mkdir", "-p", "/a/b/c")
        assert again.exit_code == 0

    def test_duplicate(self, store_dir):
        invoke(store_dir, "mkdir", "/studies")
        result = invoke(store_dir, "mkdir", "/studies")
        assert result.exit_code == 1
        assert "already exists" in result.stdout

    def test_root(self, store_dir):
        result = invoke(store_dir, "mkdir", "/")
        assert result.exit_code == 0
        assert "always exists" in result.stdout


class TestAdd:

    def test_add_template(self, populated_dir):
        result = invoke(populated_dir, "add", "/studies", "Vitals", "--type", "element")
        assert result.exit_code == 0
        assert "Added element 'Vitals'" in result.stdout

    def test_add_folder_rejected(self, populated_dir):
        result = invoke(populated_dir, "add", "/studies", "x", "--type", "folder")
        assert result.exit_code == 1
        assert "mkdir" in result.stdout

    def test_unknown_type(self, populated_dir):
        result = invoke(populated_dir, "add", "/studies", "x", "--type", "dataset")
        assert result.exit_code == 1
        assert "Invalid input" in result.stdout

    def test_unknown_folder(self, populated_dir):
        result = invoke(populated_dir, "add", "/missing", "x")
        assert result.exit_code == 1


class TestList:

    def test_ls(self, populated_dir):
        result = invoke(populated_dir, "ls", "/studies")
        assert result.exit_code == 0
        for name in ("Alpha", "Beta", "Gamma", "cohort-a", "cohort-b"):
            assert name in result.stdout
        assert "Showing 5 of 5" in result.stdout

    def test_paging(self, populated_dir):
        """
        Given: /studies holds five children
        When: the first two are listed
        Then: the summary shows the total and the offset of the next page
        """
        result = invoke(populated_dir, "ls", "/studies", "--limit", "2", "--types", "template,folder")
        assert result.exit_code == 0
        assert "Alpha" in result.stdout
        assert "Gamma" not in result.stdout
        assert "Showing 2 of 5" in result.stdout
        assert "More: --offset 2" in result.stdout

    def test_type_filter_and_sort(self, populated_dir):
        result = invoke(populated_dir, "ls", "/studies", "--types", "template", "--sort", "-name", "--limit", "1")
        assert "Gamma" in result.stdout
        assert "Showing 1 of 3" in result.stdout

    def test_invalid_limit(self, populated_dir):
        result = invoke(populated_dir, "ls", "/studies", "--limit", "0")
        assert result.exit_code == 1
        assert "Invalid input" in result.stdout

    def test_not_normalized(self, populated_dir):
        result = invoke(populated_dir, "ls", "/studies/")
        assert result.exit_code == 1
        assert "normalized" in result.stdout

    def test_missing_folder(self, populated_dir):
        result = invoke(populated_dir, "ls", "/missing")
        assert result.exit_code == 1
        assert "Folder not found" in result.stdout

    def test_as_user_without_access(self, populated_dir):
        result = invoke(populated_dir, "ls", "/studies", "--as", "bob")
        assert result.exit_code == 1
        assert "Folder not found" in result.stdout

    def test_as_unknown_user(self, populated_dir):
        result = invoke(populated_dir, "ls", "/studies", "--as", "mallory")
        assert result.exit_code == 1
        assert "Access denied" in result.stdout

    def test_empty_folder(self, populated_dir):
        result = invoke(populated_dir, "ls", "/private")
        assert result.exit_code == 0
        assert "No contents found" in result.stdout


class TestPath:

    def test_path(self, populated_dir):
        result = invoke(populated_dir, "path", "/studies/cohort-a")
        assert result.exit_code == 0
        assert "/studies/cohort-a" in result.stdout

    def test_path_as_user(self, populated_dir):
        invoke(populated_dir, "grant", "/studies/cohort-a", "bob")
        result = invoke(populated_dir, "path", "/studies/cohort-a", "--as", "bob")
        assert result.exit_code == 0
        assert "/studies/cohort-a" in result.stdout

    def test_missing(self, populated_dir):
        assert invoke(populated_dir, "path", "/missing").exit_code == 1


class TestTreeEdits:

    def test_rm_leaf(self, populated_dir):
        result = invoke(populated_dir, "rm", "/private", "--yes")
        assert result.exit_code == 0
        assert "Deleted folder 'private'" in result.stdout

    def test_rm_non_empty_needs_recursive(self, populated_dir):
        result = invoke(populated_dir, "rm", "/studies", "--yes")
        assert result.exit_code == 1
        assert "hierarchy" in result.stdout

        result = invoke(populated_dir, "rm", "/studies", "-r", "-y")
        assert result.exit_code == 0

    def test_rm_asks_for_confirmation(self, populated_dir):
        result = invoke(populated_dir, "rm", "/private", input="n\n")
        assert result.exit_code == 0
        assert "cancelled" in result.stdout

        store = open_store(populated_dir)
        try:
            assert store.repository.find_folder_by_path("/private") is not None
        finally:
            store.close()

    def test_mv(self, populated_dir):
        result = invoke(populated_dir, "mv", "/studies/cohort-a", "/private")
        assert result.exit_code == 0
        assert "Moved to /private/cohort-a" in result.stdout

    def test_mv_into_own_subtree(self, populated_dir):
        result = invoke(populated_dir, "mv", "/studies", "/studies/cohort-a")
        assert result.exit_code == 1

    def test_rename(self, populated_dir):
        result = invoke(populated_dir, "rename", "/studies", "trials")
        assert result.exit_code == 0
        assert "Renamed to /trials" in result.stdout
        assert invoke(populated_dir, "ls", "/trials").exit_code == 0

    def test_rename_resource_by_id(self, populated_dir):
        store = open_store(populated_dir)
        try:
            studies = store.repository.find_folder_by_path("/studies")
            node = store.repository.create_resource(studies.id, NodeType.INSTANCE, "draft")
        finally:
            store.close()

        result = invoke(populated_dir, "rename", node.id, "final")
        assert result.exit_code == 0
        assert "Renamed to final" in result.stdout


class TestPermissions:

    def test_grant_and_list_as_user(self, populated_dir):
        result = invoke(populated_dir, "grant", "/studies", "bob")
        assert result.exit_code == 0
        assert "Granted read on 'studies' to user bob" in result.stdout

        result = invoke(populated_dir, "ls", "/studies", "--as", "bob")
        assert result.exit_code == 0
        assert "Showing 5 of 5" in result.stdout

    def test_grant_level(self, populated_dir):
        invoke(populated_dir, "grant", "/private", "bob", "--level", "write")

        store = open_store(populated_dir)
        try:
            accessible = store.service.accessible_node_ids(store.principal("bob"))
            assert accessible[store.repository.find_folder_by_path("/private").id] is AccessLevel.WRITE
        finally:
            store.close()

    def test_bad_level(self, populated_dir):
        assert invoke(populated_dir, "grant", "/private", "bob", "--level", "owner").exit_code == 1

    def test_revoke(self, populated_dir):
        invoke(populated_dir, "grant", "/studies", "bob")

        result = invoke(populated_dir, "revoke", "/studies", "bob")
        assert "Revoked" in result.stdout

        result = invoke(populated_dir, "revoke", "/studies", "bob")
        assert "No grant" in result.stdout

    def test_access(self, populated_dir):
        result = invoke(populated_dir, "access", "bob")
        assert result.exit_code == 0
        assert "cannot access any nodes" in result.stdout

        invoke(populated_dir, "grant", "/private", "bob")
        result = invoke(populated_dir, "access", "bob")
        assert "private" in result.stdout
        assert "read" in result.stdout

    def test_group_grant(self, populated_dir):
        assert invoke(populated_dir, "group", "add", "lab", "--name", "Lab").exit_code == 0
        assert invoke(populated_dir, "group", "member", "lab", "bob").exit_code == 0
        assert invoke(populated_dir, "grant", "/private", "lab", "--group").exit_code == 0

        result = invoke(populated_dir, "ls", "/private", "--as", "bob")
        assert result.exit_code == 0


class TestUsersAndGroups:

    def test_user_add_and_list(self, store_dir):
        result = invoke(store_dir, "user", "add", "alice", "--name", "Alice", "--email", "a@example.org", "--admin")
        assert result.exit_code == 0
        assert "Saved user alice (admin)" in result.stdout

        result = invoke(store_dir, "user", "list")
        assert "Alice" in result.stdout
        assert "a@example.org" in result.stdout

    def test_no_users(self, store_dir):
        assert "No users found" in invoke(store_dir, "user", "list").stdout

    def test_member_of_unknown_group(self, populated_dir):
        result = invoke(populated_dir, "group", "member", "nobody", "bob")
        assert result.exit_code == 1
        assert "not found" in result.stdout


class TestSeedAndDump:

    SEED = "tree:\n  - folder: studies\n    children:\n      - template: Demographics\n"

    def test_seed_new_store(self, tmp_path):
        seed_file = tmp_path / "seed.yaml"
        seed_file.write_text(self.SEED)

        result = runner.invoke(app, ["seed", str(seed_file), "--store", str(tmp_path / "store")])

        assert result.exit_code == 0
        assert "Seeded 2 nodes" in result.stdout

    def test_seed_missing_file(self, store_dir, tmp_path):
        result = invoke(store_dir, "seed", str(tmp_path / "missing.yaml"))
        assert result.exit_code == 1

    def test_dump_stdout(self, populated_dir):
        result = invoke(populated_dir, "dump", "/studies")
        assert result.exit_code == 0
        data = yaml.safe_load(result.stdout)
        assert [list(entry.items())[0] for entry in data["tree"]] == [
            ("folder", "cohort-a"),
            ("folder", "cohort-b"),
            ("template", "Alpha"),
            ("template", "Beta"),
            ("template", "Gamma"),
        ]

    def test_dump_to_file(self, populated_dir, tmp_path):
        out = tmp_path / "tree.yaml"
        result = invoke(populated_dir, "dump", "-o", str(out))
        assert result.exit_code == 0
        assert yaml.safe_load(out.read_text())["tree"][0] == {"folder": "private"}

    def test_dump_resource_rejected(self, populated_dir):
        store = open_store(populated_dir)
        try:
            node = store.repository.create_resource(store.root.id, NodeType.FIELD, "Weight")
        finally:
            store.close()
        assert invoke(populated_dir, "dump", node.id).exit_code == 1


class TestConfig:

    def test_show_defaults(self):
        result = runner.invoke(app, ["config", "--show"])
        assert result.exit_code == 0
        assert "Default Limit: 50" in result.stdout
        assert "Port: 9010" in result.stdout

    def test_set_values(self, isolated_config):
        result = runner.invoke(app, ["config", "--server-port", "8080", "--case-insensitive"])
        assert result.exit_code == 0
        assert "Configuration saved" in result.stdout
        assert isolated_config.exists()

        result = runner.invoke(app, ["config", "--show"])
        assert "Port: 8080" in result.stdout
        assert "Case Sensitive: False" in result.stdout

    def test_invalid_sort(self):
        result = runner.invoke(app, ["config", "--default-sort", "size"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.stdout
