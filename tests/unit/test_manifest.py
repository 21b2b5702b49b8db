"""Tests for the structure-preserving manifest editor."""

import pytest
import tomlkit

from core.dependency import Dependency, GitSource, RegistrySource
from core.errors import ManifestError, NotFoundError, ParseError
from core.manifest import Manifest, sort_key
from core.models import DependencyKind, DependencyTable
from tests.conftest import package_manifest

DEPS = DependencyTable()


class TestReading:
    """Test parsing and querying a manifest."""

    def test_invalid_toml(self):
        """Should raise ParseError on malformed documents."""
        with pytest.raises(ParseError):
            Manifest.from_text("[package\nname = 1\n")

    def test_unmodified_round_trip(self, sample_manifest):
        manifest = Manifest.from_text(sample_manifest)
        assert manifest.to_string() == sample_manifest
        assert not manifest.is_modified

    def test_sections_lists_every_table(self):
        text = package_manifest(
            "demo",
            '\n[dependencies]\nserde = "1"\n\n[dev-dependencies]\nrand = "0.8"\n'
            '\n[target."cfg(unix)".dependencies]\nlibc = "0.2"\n',
        )
        tables = [table for table, _ in Manifest.from_text(text).sections()]
        assert tables == [
            DependencyTable(DependencyKind.NORMAL),
            DependencyTable(DependencyKind.DEVELOPMENT),
            DependencyTable(DependencyKind.NORMAL, "cfg(unix)"),
        ]

    def test_dependencies_skip_unreadable_entries(self):
        """Inherited entries without a source are not reported."""
        text = package_manifest(
            "demo", '\n[dependencies]\nserde = { workspace = true }\nlog = "0.4"\n'
        )
        keys = [key for _, key, _ in Manifest.from_text(text).dependencies()]
        assert keys == ["log"]

    def test_find_by_crate_name(self):
        """Renamed entries are found by their package name."""
        text = package_manifest(
            "demo", '\n[dependencies]\njson = { version = "1", package = "serde_json" }\n'
        )
        found = Manifest.from_text(text).find("serde_json")
        assert len(found) == 1
        table, key, dep = found[0]
        assert table == DEPS
        assert key == "json"
        assert dep.rename == "json"

    def test_non_table_section(self):
        """A dependency section that is not a table is a parse error."""
        manifest = Manifest.from_text('dependencies = "oops"\n' + package_manifest("demo"))
        with pytest.raises(ParseError):
            manifest.get_table(DEPS)


class TestValidate:
    """Test the package-manifest guard."""

    def test_package_is_valid(self, sample_manifest):
        Manifest.from_text(sample_manifest).validate()

    def test_virtual_manifest_is_refused(self):
        """Should suggest --all for workspace roots."""
        manifest = Manifest.from_text('[workspace]\nmembers = ["a"]\n')
        with pytest.raises(ManifestError) as exc_info:
            manifest.validate()
        assert "--all" in str(exc_info.value)

    def test_document_without_package(self):
        with pytest.raises(ManifestError):
            Manifest.from_text('[dependencies]\nserde = "1"\n').validate()


class TestInsert:
    """Test adding and updating entries."""

    def test_new_entry_preserves_surroundings(self, sample_manifest):
        """Only the new line should appear; comments and blank lines stay put."""
        manifest = Manifest.from_text(sample_manifest)
        action, previous, written = manifest.insert(
            DEPS, Dependency("regex", RegistrySource("1.5"))
        )

        assert action == "added"
        assert previous is None
        assert written.requirement == "1.5"
        assert manifest.to_string() == sample_manifest.replace(
            'serde = "1.0"  # serialization\n',
            'serde = "1.0"  # serialization\nregex = "1.5"\n',
        )

    def test_new_entry_goes_before_next_header_comment(self):
        """A comment introducing the next table stays attached to it."""
        text = package_manifest(
            "demo", '\n[dependencies]\nserde = "1"\n\n# features\n[features]\ndefault = []\n'
        )
        manifest = Manifest.from_text(text)

        manifest.insert(DEPS, Dependency("regex", RegistrySource("1.5")))

        assert manifest.to_string() == text.replace('serde = "1"\n', 'serde = "1"\nregex = "1.5"\n')

    def test_update_keeps_inline_comment(self, sample_manifest):
        manifest = Manifest.from_text(sample_manifest)
        action, previous, written = manifest.insert(
            DEPS, Dependency("serde", RegistrySource("^1.2"))
        )

        assert action == "updated"
        assert previous.requirement == "1.0"
        assert 'serde = "^1.2"  # serialization\n' in manifest.to_string()
        assert "# keep me" in manifest.to_string()

    def test_update_merges_detailed_entry(self):
        """Fields not given in the update are kept."""
        text = package_manifest(
            "demo", '\n[dependencies]\ntokio = { version = "1", features = ["full"] }\n'
        )
        manifest = Manifest.from_text(text)
        action, _, written = manifest.insert(DEPS, Dependency("tokio", RegistrySource("1.28")))

        assert action == "updated"
        assert written.features == ("full",)
        output = manifest.to_string()
        assert 'version = "1.28"' in output
        assert 'features = ["full"]' in output

    def test_update_keeps_unknown_keys(self):
        text = package_manifest(
            "demo", '\n[dependencies]\nserde = { version = "1", registry = "internal" }\n'
        )
        manifest = Manifest.from_text(text)
        manifest.insert(DEPS, Dependency("serde", RegistrySource("1.2"), optional=True))

        entry = tomlkit.parse(manifest.to_string())["dependencies"]["serde"]
        assert entry["registry"] == "internal"
        assert entry["version"] == "1.2"
        assert entry["optional"] is True

    def test_identical_insert_is_unchanged(self, sample_manifest):
        manifest = Manifest.from_text(sample_manifest)
        action, _, _ = manifest.insert(DEPS, Dependency("serde", RegistrySource("1.0")))
        assert action == "unchanged"
        assert not manifest.is_modified

    def test_creates_missing_table(self):
        manifest = Manifest.from_text(package_manifest("demo"))
        manifest.insert(
            DependencyTable(DependencyKind.DEVELOPMENT), Dependency("rand", RegistrySource("0.8"))
        )
        document = tomlkit.parse(manifest.to_string())
        assert document["dev-dependencies"]["rand"] == "0.8"

    def test_creates_target_table(self, sample_manifest):
        """Target parents are written as dotted headers only."""
        manifest = Manifest.from_text(sample_manifest)
        table = DependencyTable(DependencyKind.NORMAL, "cfg(windows)")
        manifest.insert(table, Dependency("winapi", RegistrySource("0.3")))

        output = manifest.to_string()
        assert "[target]\n" not in output
        document = tomlkit.parse(output)
        assert document["target"]["cfg(windows)"]["dependencies"]["winapi"] == "0.3"

    def test_git_dependency_written_as_table(self, sample_manifest):
        manifest = Manifest.from_text(sample_manifest)
        manifest.insert(DEPS, Dependency("tool", GitSource("https://github.com/o/tool", tag="v1")))
        entry = tomlkit.parse(manifest.to_string())["dependencies"]["tool"]
        assert entry["git"] == "https://github.com/o/tool"
        assert entry["tag"] == "v1"

    def test_rename_moves_plain_entry(self, sample_manifest):
        """Re-adding under an alias replaces the unaliased entry."""
        manifest = Manifest.from_text(sample_manifest)
        action, previous, written = manifest.insert(
            DEPS, Dependency("serde", RegistrySource("1.0"), rename="serde1")
        )

        assert action == "updated"
        assert previous.rename is None
        dependencies = tomlkit.parse(manifest.to_string())["dependencies"]
        assert "serde" not in dependencies
        assert dependencies["serde1"]["package"] == "serde"

    def test_insert_with_sort(self):
        text = package_manifest("demo", '\n[dependencies]\nzeta = "1"\n')
        manifest = Manifest.from_text(text)
        manifest.insert(DEPS, Dependency("alpha", RegistrySource("2")), sort=True)
        keys = list(tomlkit.parse(manifest.to_string())["dependencies"].keys())
        assert keys == ["alpha", "zeta"]


class TestRemove:
    """Test removing entries."""

    def test_remove_drops_empty_table(self, sample_manifest):
        manifest = Manifest.from_text(sample_manifest)
        removed = manifest.remove(DEPS, "serde")

        assert removed.requirement == "1.0"
        output = manifest.to_string()
        assert "[dependencies]" not in output
        assert "[features]\n# keep me\ndefault = []\n" in output

    def test_remove_keeps_other_entries(self):
        text = package_manifest("demo", '\n[dependencies]\nserde = "1"\nlog = "0.4"\n')
        manifest = Manifest.from_text(text)
        manifest.remove(DEPS, "serde")
        assert manifest.to_string() == package_manifest("demo", '\n[dependencies]\nlog = "0.4"\n')

    def test_remove_is_scoped_to_table(self):
        """A key only present in another table is not found."""
        text = package_manifest("demo", '\n[dev-dependencies]\nrand = "0.8"\n')
        manifest = Manifest.from_text(text)
        with pytest.raises(NotFoundError):
            manifest.remove(DEPS, "rand")
        assert not manifest.is_modified

    def test_remove_last_target_entry_drops_parents(self, sample_manifest):
        manifest = Manifest.from_text(sample_manifest)
        table = DependencyTable(DependencyKind.NORMAL, "cfg(windows)")
        manifest.insert(table, Dependency("winapi", RegistrySource("0.3")))
        manifest.remove(table, "winapi")
        assert "target" not in manifest.document


class TestSetRequirement:
    """Test in-place version rewrites."""

    def test_string_form_keeps_comment(self, sample_manifest):
        manifest = Manifest.from_text(sample_manifest)
        manifest.set_requirement(DEPS, "serde", "^1.0.200")
        assert 'serde = "^1.0.200"  # serialization\n' in manifest.to_string()

    def test_table_form(self):
        text = package_manifest("demo", '\n[dependencies.rand]\nversion = "0.7"\nfeatures = ["small_rng"]\n')
        manifest = Manifest.from_text(text)
        manifest.set_requirement(DEPS, "rand", "^0.8.5")
        assert manifest.to_string() == text.replace('"0.7"', '"^0.8.5"')

    def test_missing_key(self, sample_manifest):
        with pytest.raises(NotFoundError):
            Manifest.from_text(sample_manifest).set_requirement(DEPS, "regex", "1")


class TestNormalizeSort:
    """Test table reordering."""

    def test_sorts_case_insensitively(self):
        text = package_manifest("demo", '\n[dependencies]\nzeta = "1"\nAlpha = "1"\nbeta = "1"  # bee\n')
        manifest = Manifest.from_text(text)

        assert manifest.normalize_sort(DEPS) is True
        assert manifest.to_string() == package_manifest(
            "demo", '\n[dependencies]\nAlpha = "1"\nbeta = "1"  # bee\nzeta = "1"\n'
        )

    def test_trailing_comment_stays_before_next_table(self):
        text = package_manifest(
            "demo", '\n[dependencies]\nzeta = "1"\nalpha = "1"\n\n# Feature flags\n[features]\ndefault = []\n'
        )
        manifest = Manifest.from_text(text)

        assert manifest.normalize_sort(DEPS) is True
        assert manifest.to_string() == package_manifest(
            "demo", '\n[dependencies]\nalpha = "1"\nzeta = "1"\n\n# Feature flags\n[features]\ndefault = []\n'
        )

    def test_sorted_table_is_untouched(self):
        text = package_manifest("demo", '\n[dependencies]\nalpha = "1"\nbeta = "1"\n')
        manifest = Manifest.from_text(text)
        assert manifest.normalize_sort(DEPS) is False
        assert not manifest.is_modified

    def test_missing_table(self, sample_manifest):
        manifest = Manifest.from_text(sample_manifest)
        assert manifest.normalize_sort(DependencyTable(DependencyKind.BUILD)) is False

    def test_sort_key_breaks_ties_by_exact_key(self):
        assert sorted(["serde", "Serde", "SERDE"], key=sort_key) == ["SERDE", "Serde", "serde"]
