"""Tests for the SavedVariables store."""

import os
import tempfile
from pathlib import Path

import pytest

from archon_updater.data.models import ManagedEntry, Settings
from archon_updater.storage.store import OpaqueEntry, PersistedStore, TriviaEntry
from archon_updater.utils.errors import ParseError, SchemaError, WriteError
from archon_updater.utils.logger import get_logger


MANAGED_LABEL = "Thrall - Arms - Broodtwister (Heroic) [Archon]"

SAMPLE = (
    "\n"
    "ArchonTalentBuilds = {\n"
    "\t[\"My Raid Build\"] = {\n"
    "\t\t[\"code\"] = \"USERCODE\",\n"
    "\t},\n"
    "\t[\"" + MANAGED_LABEL + "\"] = {\n"
    "\t\t[\"code\"] = \"OLDCODE\",\n"
    "\t\t[\"class\"] = \"WARRIOR\",\n"
    "\t},\n"
    "\t-- keep me\n"
    "\t[\"Notes\"] = \"hand written\",\n"
    "}\n"
    "OtherAddonDB = {\n"
    "\t[\"x\"] = 1,\n"
    "}\n"
)


def create_store(**overrides):
    """Create a PersistedStore with default settings."""
    return PersistedStore(Settings(**overrides))


def write_file(tmpdir, text, name="ArchonTalentBuilds.lua"):
    """Write text to a file in tmpdir and return its path."""
    path = Path(tmpdir) / name
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)
    return path


def test_round_trip_is_byte_identical():
    """Test that an unedited document serializes to the original text."""
    log = get_logger()
    log.info("Testing round trip...")

    store = create_store()
    doc = store.parse(SAMPLE)
    assert store.serialize(doc) == SAMPLE.encode("utf-8")

    log.info("PASSED: round trip")


def test_round_trip_opaque_only_variants():
    """Test byte-identical output for unusual but valid formatting."""
    log = get_logger()
    log.info("Testing opaque-only round trips...")

    store = create_store()
    samples = [
        "ArchonTalentBuilds = {}",
        "ArchonTalentBuilds = {\r\n\t[\"a\"] = 1,\r\n\t[2] = { \"x\"; \"y\" },\r\n}\r\n",
        "-- header\nArchonTalentBuilds={[\"a\"]=1;b=[[long\nstring]] --[[c]] }\n-- footer",
        "ArchonTalentBuilds = {\n    [\"no trailing separator\"] = true\n    -- tail comment\n}\n",
        "\ufeffArchonTalentBuilds = {\n\t\"positional\",\n\t[\"Ünïcødé\"] = \"✓\",\n}\n",
    ]
    for text in samples:
        doc = store.parse(text)
        assert doc.managed == []
        assert store.serialize(doc) == text.encode("utf-8")

        again = store.parse(store.serialize(doc).decode("utf-8"))
        assert [e.raw for e in again.entries] == [e.raw for e in doc.entries]

    log.info("PASSED: opaque-only round trips")


def test_parse_separates_managed_entries():
    """Test classification of managed and opaque entries."""
    log = get_logger()
    log.info("Testing entry classification...")

    store = create_store()
    doc = store.parse(SAMPLE)

    assert len(doc.opaque) == 2
    assert len(doc.managed) == 1
    managed = doc.managed[0]
    assert managed.label == MANAGED_LABEL
    assert managed.build_code == "OLDCODE"
    assert managed.fields == {"class": "WARRIOR"}
    assert isinstance(doc.entries[0], OpaqueEntry)
    assert isinstance(doc.entries[1], ManagedEntry)
    assert "-- keep me" in doc.entries[2].raw
    assert doc.find(MANAGED_LABEL) is managed
    assert doc.find("nope [Archon]") is None

    log.info("PASSED: entry classification")


def test_clear_managed_preserves_opaque():
    """Test that clearing removes only managed entries."""
    log = get_logger()
    log.info("Testing clear_managed...")

    store = create_store()
    doc = store.parse(SAMPLE)
    opaque_before = [e.raw for e in doc.opaque]

    assert store.clear_managed(doc) == 1
    assert doc.managed == []
    assert [e.raw for e in doc.opaque] == opaque_before

    text = store.serialize(doc).decode("utf-8")
    assert "OLDCODE" not in text
    assert "USERCODE" in text
    assert "-- keep me" in text
    assert text.endswith("OtherAddonDB = {\n\t[\"x\"] = 1,\n}\n")

    reparsed = store.parse(text)
    assert [e.raw for e in reparsed.opaque] == opaque_before

    log.info("PASSED: clear_managed")


def test_upsert_replaces_in_place():
    """Test that replacing an entry keeps its position."""
    log = get_logger()
    log.info("Testing upsert replace...")

    store = create_store()
    doc = store.parse(SAMPLE)

    added = store.upsert(doc, ManagedEntry(label=MANAGED_LABEL, build_code="NEWCODE"))
    assert added is False
    assert len(doc.entries) == 3
    assert isinstance(doc.entries[1], ManagedEntry)
    assert doc.entries[1].build_code == "NEWCODE"

    text = store.serialize(doc).decode("utf-8")
    assert "OLDCODE" not in text
    assert (
        "\t},\n\t[\"" + MANAGED_LABEL + "\"] = {\n\t\t[\"code\"] = \"NEWCODE\",\n\t},\n\t-- keep me"
    ) in text

    log.info("PASSED: upsert replace")


def test_upsert_appends_new_entries():
    """Test that new entries go after every existing entry."""
    log = get_logger()
    log.info("Testing upsert append...")

    store = create_store()
    doc = store.parse(SAMPLE)

    label = "Jaina - Frost - Ara Kara (M+) [Archon]"
    added = store.upsert(doc, ManagedEntry(
        label=label,
        build_code="NEW",
        fields={"class": "MAGE"},
    ))
    assert added is True
    assert doc.entries[-1].label == label

    text = store.serialize(doc).decode("utf-8")
    expected_tail = (
        "\t[\"Notes\"] = \"hand written\",\n"
        "\t[\"" + label + "\"] = {\n"
        "\t\t[\"code\"] = \"NEW\",\n"
        "\t\t[\"class\"] = \"MAGE\",\n"
        "\t},\n"
        "}\n"
        "OtherAddonDB"
    )
    assert expected_tail in text

    reparsed = store.parse(text)
    assert reparsed.find(label).build_code == "NEW"
    assert len(reparsed.opaque) == 2

    log.info("PASSED: upsert append")


def test_upsert_is_idempotent():
    """Test that the same entry twice does not grow the document."""
    log = get_logger()
    log.info("Testing upsert idempotence...")

    store = create_store()
    doc = store.parse(SAMPLE)
    entry = ManagedEntry(label="A - Fury - B (Mythic) [Archon]", build_code="C")

    assert store.upsert(doc, entry) is True
    first = store.serialize(doc)
    assert store.upsert(doc, entry) is False
    assert store.serialize(doc) == first
    assert len(doc.managed) == 2

    # Serialize, reload and upsert again: still byte-identical
    reloaded = store.parse(first.decode("utf-8"))
    store.upsert(reloaded, entry)
    assert store.serialize(reloaded) == first

    log.info("PASSED: upsert idempotence")


def test_upsert_collapses_duplicate_labels():
    """Test that hand-duplicated managed labels end up as one entry."""
    log = get_logger()
    log.info("Testing duplicate label collapse...")

    store = create_store()
    text = (
        "ArchonTalentBuilds = {\n"
        "\t[\"X [Archon]\"] = { [\"code\"] = \"1\" },\n"
        "\t[\"mine\"] = 1,\n"
        "\t[\"X [Archon]\"] = { [\"code\"] = \"2\" },\n"
        "}\n"
    )
    doc = store.parse(text)
    assert len(doc.managed) == 2

    store.upsert(doc, ManagedEntry(label="X [Archon]", build_code="3"))
    assert len(doc.managed) == 1
    assert isinstance(doc.entries[0], ManagedEntry)
    assert doc.entries[0].build_code == "3"

    log.info("PASSED: duplicate label collapse")


def test_clear_managed_keeps_user_comments():
    """Test that comments written next to managed entries survive removal."""
    log = get_logger()
    log.info("Testing comment preservation on clear...")

    store = create_store()

    # Trailing comment on the user's own entry
    doc = store.parse(
        "ArchonTalentBuilds = {\n"
        "\t[\"mine\"] = { [\"code\"] = \"A\" }, -- my favourite, do not touch\n"
        "\t[\"X - Arms - Foo (Heroic) [Archon]\"] = { [\"code\"] = \"B\" },\n"
        "}\n"
    )
    assert store.clear_managed(doc) == 1
    assert doc.managed == []
    assert store.serialize(doc).decode("utf-8") == (
        "ArchonTalentBuilds = {\n"
        "\t[\"mine\"] = { [\"code\"] = \"A\" }, -- my favourite, do not touch\n"
        "}\n"
    )

    # Comment line above the managed block
    doc = store.parse(
        "ArchonTalentBuilds = {\n"
        "\t[\"mine\"] = 1,\n"
        "\t-- Archon builds below\n"
        "\t[\"X [Archon]\"] = { [\"code\"] = \"1\" },\n"
        "}\n"
    )
    store.clear_managed(doc)
    assert isinstance(doc.entries[-1], TriviaEntry)
    assert store.serialize(doc).decode("utf-8") == (
        "ArchonTalentBuilds = {\n"
        "\t[\"mine\"] = 1,\n"
        "\t-- Archon builds below\n"
        "}\n"
    )

    store.upsert(doc, ManagedEntry(label="Y [Archon]", build_code="2"))
    text = store.serialize(doc).decode("utf-8")
    assert text.index("-- Archon builds below") < text.index("Y [Archon]")

    reparsed = store.parse(text)
    assert reparsed.find("Y [Archon]").build_code == "2"
    store.clear_managed(reparsed)
    assert "\t-- Archon builds below\n}\n" in store.serialize(reparsed).decode("utf-8")

    # Compact table: the comment must still end before the next field
    doc = store.parse("ArchonTalentBuilds = {[\"a\"]=1, -- c\n[\"X [Archon]\"]={[\"code\"]=\"1\"},[\"b\"]=2}")
    store.clear_managed(doc)
    text = store.serialize(doc).decode("utf-8")
    assert text == "ArchonTalentBuilds = {[\"a\"]=1, -- c\n[\"b\"]=2}"
    assert [e.raw for e in store.parse(text).opaque] == ["[\"a\"]=1,", " -- c\n[\"b\"]=2"]

    # Last field without separator: the closing brace stays outside the comment
    doc = store.parse("ArchonTalentBuilds = {[\"a\"]=1, -- c\n[\"X [Archon]\"]=\"1\"}")
    store.clear_managed(doc)
    assert store.serialize(doc).decode("utf-8") == "ArchonTalentBuilds = {[\"a\"]=1, -- c\n}"

    log.info("PASSED: comment preservation on clear")


def test_duplicate_collapse_keeps_user_comments():
    """Test that removing a duplicate managed label keeps the comment above it."""
    log = get_logger()
    log.info("Testing comment preservation on duplicate collapse...")

    store = create_store()
    doc = store.parse(
        "ArchonTalentBuilds = {\n"
        "\t[\"X [Archon]\"] = { [\"code\"] = \"1\" },\n"
        "\t[\"mine\"] = 1,\n"
        "\t--[[ old copy ]]\n"
        "\t[\"X [Archon]\"] = { [\"code\"] = \"2\" },\n"
        "}\n"
    )
    store.upsert(doc, ManagedEntry(label="X [Archon]", build_code="3"))

    assert len(doc.managed) == 1
    text = store.serialize(doc).decode("utf-8")
    assert text.endswith("\t[\"mine\"] = 1,\n\t--[[ old copy ]]\n}\n")
    assert store.parse(text).find("X [Archon]").build_code == "3"

    log.info("PASSED: comment preservation on duplicate collapse")


def test_upsert_rejects_unmarked_label():
    """Test that upsert never writes entries without the marker."""
    log = get_logger()
    log.info("Testing unmarked label rejection...")

    store = create_store()
    doc = store.parse(SAMPLE)
    with pytest.raises(ValueError):
        store.upsert(doc, ManagedEntry(label="My Raid Build", build_code="X"))

    log.info("PASSED: unmarked label rejection")


def test_separator_added_when_appending():
    """Test comma insertion after a last entry without separator."""
    log = get_logger()
    log.info("Testing separator fix-up...")

    store = create_store()
    doc = store.parse("ArchonTalentBuilds = { [\"a\"] = 1 }")
    store.upsert(doc, ManagedEntry(label="New [Archon]", build_code="C"))

    text = store.serialize(doc).decode("utf-8")
    assert text == (
        "ArchonTalentBuilds = { [\"a\"] = 1,\n"
        "\t[\"New [Archon]\"] = {\n"
        "\t\t[\"code\"] = \"C\",\n"
        "\t},\n"
        " }"
    )
    assert len(store.parse(text).entries) == 2

    log.info("PASSED: separator fix-up")


def test_append_to_empty_table():
    """Test appending to an empty constructor."""
    log = get_logger()
    log.info("Testing append to empty table...")

    store = create_store()
    doc = store.parse("ArchonTalentBuilds = {}")
    store.upsert(doc, ManagedEntry(label="New [Archon]", build_code="C"))

    assert store.serialize(doc).decode("utf-8") == (
        "ArchonTalentBuilds = {\n"
        "\t[\"New [Archon]\"] = {\n"
        "\t\t[\"code\"] = \"C\",\n"
        "\t},\n"
        "}"
    )

    log.info("PASSED: append to empty table")


def test_indent_detection():
    """Test that new entries follow the document's indentation."""
    log = get_logger()
    log.info("Testing indent detection...")

    store = create_store()
    doc = store.parse("ArchonTalentBuilds = {\n    [\"a\"] = 1,\n}\n")
    assert doc.indent == "    "

    store.upsert(doc, ManagedEntry(label="New [Archon]", build_code="C"))
    assert store.serialize(doc).decode("utf-8") == (
        "ArchonTalentBuilds = {\n"
        "    [\"a\"] = 1,\n"
        "    [\"New [Archon]\"] = {\n"
        "        [\"code\"] = \"C\",\n"
        "    },\n"
        "}\n"
    )

    log.info("PASSED: indent detection")


def test_preservation_after_clear_and_readd():
    """Test that N opaque entries survive clearing and re-adding M managed ones."""
    log = get_logger()
    log.info("Testing preservation...")

    store = create_store()
    lines = ["ArchonTalentBuilds = {"]
    for i in range(4):
        lines.append(f"\t[\"user {i}\"] = {{ [\"code\"] = \"U{i}\" }},")
        lines.append(f"\t[\"managed {i} [Archon]\"] = {{ [\"code\"] = \"M{i}\" }},")
    lines.append("}")
    doc = store.parse("\n".join(lines) + "\n")
    opaque_before = [e.raw for e in doc.opaque]
    assert len(opaque_before) == 4
    assert len(doc.managed) == 4

    store.clear_managed(doc)
    for i in range(3):
        store.upsert(doc, ManagedEntry(label=f"managed {i} [Archon]", build_code=f"N{i}"))

    reparsed = store.parse(store.serialize(doc).decode("utf-8"))
    assert [e.raw for e in reparsed.opaque] == opaque_before
    assert [e.build_code for e in reparsed.managed] == ["N0", "N1", "N2"]

    log.info("PASSED: preservation")


def test_schema_errors():
    """Test documents that parse but have the wrong shape."""
    log = get_logger()
    log.info("Testing schema errors...")

    store = create_store()

    with pytest.raises(SchemaError) as exc:
        store.parse("OtherAddonDB = {}\n", "x.lua")
    assert "x.lua" in str(exc.value)
    assert "ArchonTalentBuilds" in str(exc.value)

    with pytest.raises(SchemaError):
        store.parse("ArchonTalentBuilds = \"not a table\"\n")

    with pytest.raises(SchemaError):
        store.parse("ArchonTalentBuilds = {}\nArchonTalentBuilds = {}\n")

    with pytest.raises(SchemaError):
        store.parse("")

    log.info("PASSED: schema errors")


def test_parse_errors():
    """Test files that are not valid Lua."""
    log = get_logger()
    log.info("Testing parse errors...")

    store = create_store()

    with pytest.raises(ParseError) as exc:
        store.parse("ArchonTalentBuilds = {\n\t[\"a\"] = \n}", "bad.lua")
    assert "bad.lua" in str(exc.value)
    assert "line 3" in str(exc.value)

    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ParseError):
            store.load(Path(tmpdir) / "missing.lua")

    log.info("PASSED: parse errors")


def test_create_if_missing():
    """Test starting a new document for a missing file."""
    log = get_logger()
    log.info("Testing create_if_missing...")

    store = create_store(create_if_missing=True)
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "new.lua"
        doc = store.load(path)
        assert doc.entries == []

        store.upsert(doc, ManagedEntry(label="New [Archon]", build_code="C"))
        store.save(doc, path)

        reloaded = store.load(path)
        assert reloaded.find("New [Archon]").build_code == "C"

    log.info("PASSED: create_if_missing")


def test_load_and_save_file():
    """Test a full load/edit/save cycle with backup."""
    log = get_logger()
    log.info("Testing load and save...")

    store = create_store(backup=True)
    with tempfile.TemporaryDirectory() as tmpdir:
        path = write_file(tmpdir, SAMPLE)
        doc = store.load(path)
        store.upsert(doc, ManagedEntry(label=MANAGED_LABEL, build_code="NEWCODE"))

        written = store.save(doc)
        assert written == path

        backup = path.with_name(path.name + ".bak")
        assert backup.read_bytes() == SAMPLE.encode("utf-8")
        assert store.load(path).find(MANAGED_LABEL).build_code == "NEWCODE"

        leftovers = [p for p in os.listdir(tmpdir) if p.endswith(".tmp")]
        assert leftovers == []

    log.info("PASSED: load and save")


def test_load_save_preserves_crlf_and_raw_bytes():
    """Test that line endings and undecodable bytes survive a cycle."""
    log = get_logger()
    log.info("Testing raw byte preservation...")

    store = create_store(backup=False)
    raw = b"ArchonTalentBuilds = {\r\n\t[\"caf\xe9\"] = 1,\r\n}\r\n"
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "raw.lua"
        path.write_bytes(raw)

        doc = store.load(path)
        store.save(doc, path)
        assert path.read_bytes() == raw
        assert not path.with_name("raw.lua.bak").exists()

    log.info("PASSED: raw byte preservation")


def test_save_failure_leaves_file_untouched():
    """Test that a failed write raises WriteError and keeps the old file."""
    log = get_logger()
    log.info("Testing write failure...")

    store = create_store()
    with tempfile.TemporaryDirectory() as tmpdir:
        path = write_file(tmpdir, SAMPLE)
        doc = store.load(path)

        # Sets cannot be written as Lua
        store.upsert(doc, ManagedEntry(label="Bad [Archon]", build_code="X", fields={"s": {1, 2}}))
        with pytest.raises(WriteError):
            store.save(doc, path)
        assert path.read_bytes() == SAMPLE.encode("utf-8")

        with pytest.raises(WriteError):
            store.save(store.parse(SAMPLE), Path(tmpdir) / "no" / "such" / "dir.lua")

    log.info("PASSED: write failure")


def run_all_tests():
    """Run all store tests."""
    log = get_logger()
    log.info("=" * 50)
    log.info("Persisted Store Tests")
    log.info("=" * 50)

    tests = [
        ("Round Trip", test_round_trip_is_byte_identical),
        ("Opaque Round Trips", test_round_trip_opaque_only_variants),
        ("Entry Classification", test_parse_separates_managed_entries),
        ("Clear Managed", test_clear_managed_preserves_opaque),
        ("Upsert Replace", test_upsert_replaces_in_place),
        ("Upsert Append", test_upsert_appends_new_entries),
        ("Upsert Idempotence", test_upsert_is_idempotent),
        ("Duplicate Labels", test_upsert_collapses_duplicate_labels),
        ("Comments On Clear", test_clear_managed_keeps_user_comments),
        ("Comments On Collapse", test_duplicate_collapse_keeps_user_comments),
        ("Unmarked Label", test_upsert_rejects_unmarked_label),
        ("Separator Fix-up", test_separator_added_when_appending),
        ("Empty Table", test_append_to_empty_table),
        ("Indent Detection", test_indent_detection),
        ("Preservation", test_preservation_after_clear_and_readd),
        ("Schema Errors", test_schema_errors),
        ("Parse Errors", test_parse_errors),
        ("Create If Missing", test_create_if_missing),
        ("Load And Save", test_load_and_save_file),
        ("Raw Bytes", test_load_save_preserves_crlf_and_raw_bytes),
        ("Write Failure", test_save_failure_leaves_file_untouched),
    ]

    passed = 0
    failed = 0

    for name, test_func in tests:
        try:
            log.info(f"\n--- {name} ---")
            test_func()
            passed += 1
        except Exception as e:
            log.error(f"FAILED: {name} - {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    log.info("\n" + "=" * 50)
    log.info(f"Results: {passed} passed, {failed} failed")
    log.info("=" * 50)

    return failed == 0


if __name__ == "__main__":
    from archon_updater.utils.logger import setup_logger

    setup_logger(level="DEBUG", file=False)
    success = run_all_tests()
    exit(0 if success else 1)
