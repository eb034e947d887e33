"""Tests for reconciliation and the scan entry point."""

import tempfile
import threading
from unittest.mock import patch

import pytest

from docdive.common import compute_crc64
from docdive.processing.config import ScanConfig
from docdive.processing.decomposer import Decomposer
from docdive.processing.errors import ExternalToolError, FileMetadataError, MalformedMessageError
from docdive.processing.models import LeafDescriptor, OutputRecord
from docdive.processing.reconciler import Reconciler, scan
from docdive.processing.workspace import TempWorkspace


def leftovers(scratch_root):
    if not scratch_root.exists():
        return []
    return list(scratch_root.iterdir())


class TestScan:
    """Tests for full scans."""
    
    def test_empty_file(self, tmp_path, scan_config):
        path = tmp_path / "empty.txt"
        path.write_bytes(b"")
        
        records = scan(path, config=scan_config)
        
        assert records == [OutputRecord("empty.txt", (), 0, 0, "")]
    
    def test_nested_zip_records(self, nested_zip, scan_config, scratch_root):
        original = nested_zip.read_bytes()
        
        records = scan(nested_zip, config=scan_config)
        
        assert [(r.display_name, r.lineage) for r in records] == [
            ("outer.zip", ()),
            ("inner.zip", ("outer.zip",)),
            ("hello.txt", ("outer.zip", "inner.zip")),
        ]
        assert records[0].content_fingerprint == compute_crc64(nested_zip)
        assert records[0].byte_size == len(original)
        assert records[0].text == ""
        assert records[1].text == ""
        assert records[2].text == "Hello from the inner archive"
        assert records[2].byte_size == len("Hello from the inner archive")
        assert nested_zip.read_bytes() == original
        assert leftovers(scratch_root) == []
    
    def test_rescan_skips_unchanged(self, nested_zip, scan_config):
        first = scan(nested_zip, config=scan_config)
        
        second = scan(nested_zip, prior_results=first, config=scan_config)
        
        assert [r.text for r in second] == [None, None, None]
        assert [r.key for r in second] == [r.key for r in first]
        assert [r.content_fingerprint for r in second] == [r.content_fingerprint for r in first]
    
    def test_force_reextract(self, nested_zip, scratch_root):
        config = ScanConfig(temp_root=str(scratch_root), force_reextract=True)
        first = scan(nested_zip, config=config)
        
        second = scan(nested_zip, prior_results=first, config=config)
        
        assert [r.text for r in second] == ["", "", "Hello from the inner archive"]
    
    def test_changed_leaf_is_extracted(self, nested_zip, scan_config):
        first = scan(nested_zip, config=scan_config)
        prior = [
            OutputRecord(r.display_name, r.lineage, r.content_fingerprint + 1, r.byte_size, r.text)
            if r.display_name == "hello.txt" else r
            for r in first
        ]
        
        second = scan(nested_zip, prior_results=prior, config=scan_config)
        
        assert [r.text for r in second] == [None, None, "Hello from the inner archive"]
    
    def test_prior_keyed_on_lineage(self, nested_zip, scan_config):
        first = scan(nested_zip, config=scan_config)
        hello = first[2]
        prior = [OutputRecord("hello.txt", ("elsewhere.zip",), hello.content_fingerprint, hello.byte_size, "old")]
        
        second = scan(nested_zip, prior_results=prior, config=scan_config)
        
        assert second[2].text == "Hello from the inner archive"
    
    def test_keep_temp_files(self, nested_zip, scratch_root):
        config = ScanConfig(temp_root=str(scratch_root), delete_temp_files=False)
        
        scan(nested_zip, config=config)
        
        kept = list(scratch_root.rglob("hello.txt"))
        assert len(kept) == 1
        assert kept[0].read_text(encoding="utf-8") == "Hello from the inner archive"
    
    def test_default_scratch_under_system_temp(self, nested_zip, tmp_path, monkeypatch):
        system_temp = tmp_path / "systemp"
        system_temp.mkdir()
        monkeypatch.setattr(tempfile, "tempdir", str(system_temp))
        monkeypatch.chdir(tmp_path)
        allocated = []
        allocate = TempWorkspace.allocate
        
        def recording_allocate(self, parent=None):
            directory = allocate(self, parent)
            allocated.append(directory)
            return directory
        
        monkeypatch.setattr(TempWorkspace, "allocate", recording_allocate)
        
        records = scan(nested_zip, config=ScanConfig())
        
        assert records[2].text == "Hello from the inner archive"
        assert allocated
        assert all(system_temp / "extract_text_from_file" in d.parents for d in allocated)
        assert not (tmp_path / "${TEMP}").exists()


class TestCancellation:
    """Tests for cooperative cancellation between leaves."""
    
    def test_cancelled_before_start(self, nested_zip, scan_config, scratch_root):
        event = threading.Event()
        event.set()
        
        assert scan(nested_zip, cancel_event=event, config=scan_config) == []
        assert leftovers(scratch_root) == []
    
    @pytest.mark.parametrize("cancel_after", [1, 2])
    def test_cancelled_midway(self, nested_zip, scan_config, scratch_root, cancel_after):
        event = threading.Event()
        calls = []
        
        def extract(leaf, **kwargs):
            calls.append(leaf.display_name)
            if len(calls) == cancel_after:
                event.set()
            return "text"
        
        with patch("docdive.processing.reconciler.extract_leaf_text", side_effect=extract):
            records = scan(nested_zip, cancel_event=event, config=scan_config)
        
        assert len(records) == cancel_after
        assert [r.display_name for r in records] == calls
        assert leftovers(scratch_root) == []
    
    def test_unset_event_runs_to_completion(self, nested_zip, scan_config):
        records = scan(nested_zip, cancel_event=threading.Event(), config=scan_config)
        assert len(records) == 3


class TestAbort:
    """Tests for scan-aborting errors."""
    
    def test_malformed_message_aborts_and_cleans_up(self, tmp_path, scan_config, scratch_root, zip_builder):
        path = tmp_path / "mail.zip"
        path.write_bytes(zip_builder({"note.txt": "first", "mail.msg": b"\xd0\xcf\x11\xe0" + b"\x00" * 60}))
        
        with patch(
            "docdive.processing.msg_walker.MsgWalker.walk",
            side_effect=MalformedMessageError("Missing subject stream"),
        ):
            with pytest.raises(MalformedMessageError):
                scan(path, config=scan_config)
        
        assert leftovers(scratch_root) == []
        assert path.exists()
    
    def test_tool_failure_aborts_and_cleans_up(self, tmp_path, scan_config, scratch_root, zip_builder):
        path = tmp_path / "docs.zip"
        path.write_bytes(zip_builder({"report.pdf": b"%PDF-1.4\n" + b"\x00" * 40}))
        
        with patch(
            "docdive.processing.external_tools.ExternalTools.pdf_page_count",
            side_effect=ExternalToolError("Failed to execute pdfinfo"),
        ):
            with pytest.raises(ExternalToolError):
                scan(path, config=scan_config)
        
        assert leftovers(scratch_root) == []


class TestReconciler:
    """Tests for the Reconciler on hand-built leaves."""
    
    def test_releases_materialized_leaves_only(self, nested_zip, workspace, scan_config):
        leaves = Decomposer(workspace, config=scan_config).decompose(nested_zip)
        
        records = Reconciler(workspace, config=scan_config).reconcile(leaves)
        
        assert len(records) == 3
        assert nested_zip.exists()
        assert not any(leaf.path.exists() for leaf in leaves[1:])
    
    def test_missing_leaf_is_metadata_error(self, tmp_path, workspace, scan_config):
        leaf = LeafDescriptor(path=tmp_path / "gone.txt", depth=0, extractable=True)
        
        with pytest.raises(FileMetadataError):
            Reconciler(workspace, config=scan_config).reconcile([leaf])
    
    def test_prior_with_several_fingerprints(self, tmp_path, workspace, scan_config):
        path = tmp_path / "a.txt"
        path.write_text("some text", encoding="utf-8")
        fingerprint = compute_crc64(path)
        prior = [
            OutputRecord("a.txt", (), fingerprint + 7, 9, "old"),
            OutputRecord("a.txt", (), fingerprint, 9, "current"),
        ]
        reconciler = Reconciler(workspace, prior_results=prior, config=scan_config)
        
        assert reconciler.is_unchanged("a.txt", (), fingerprint)
        assert not reconciler.is_unchanged("a.txt", ("x.zip",), fingerprint)
        assert reconciler.reconcile([LeafDescriptor(path=path, depth=0, extractable=True)])[0].text is None
    
    def test_prior_with_list_lineage(self, nested_zip, scan_config):
        first = scan(nested_zip, config=scan_config)
        prior = [
            OutputRecord(r.display_name, list(r.lineage), r.content_fingerprint, r.byte_size, r.text)
            for r in first
        ]
        
        second = scan(nested_zip, prior_results=prior, config=scan_config)
        
        assert [r.text for r in second] == [None, None, None]
