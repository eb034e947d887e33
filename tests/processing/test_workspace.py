"""Tests for the scratch workspace."""

import pytest

from docdive.processing.workspace import TempWorkspace


class TestTempWorkspace:
    """Tests for TempWorkspace."""
    
    def test_allocate_creates_unique_dirs(self, workspace, scratch_root):
        first = workspace.allocate()
        second = workspace.allocate()
        
        assert first != second
        assert first.is_dir() and second.is_dir()
        assert first.parent == scratch_root
    
    def test_allocate_under_parent(self, workspace):
        parent = workspace.allocate()
        child = workspace.allocate(parent=parent)
        
        assert child.parent == parent
    
    def test_place_free_name(self, workspace):
        directory = workspace.allocate()
        
        assert workspace.place(directory, "a.txt") == directory / "a.txt"
    
    def test_place_collision_keeps_name(self, workspace):
        """Test that a taken name goes to a fresh subdirectory."""
        directory = workspace.allocate()
        first = workspace.place(directory, "a.txt")
        first.write_text("first")
        
        second = workspace.place(directory, "a.txt")
        
        assert second != first
        assert second.name == "a.txt"
        assert second.parent.parent == directory
        assert first.read_text() == "first"
    
    def test_owns(self, workspace, tmp_path):
        directory = workspace.allocate()
        
        assert workspace.owns(directory / "x" / "y.txt")
        assert not workspace.owns(tmp_path / "input.zip")
    
    def test_release_deletes_owned_file(self, workspace):
        path = workspace.allocate() / "done.txt"
        path.write_text("x")
        
        workspace.release(path)
        
        assert not path.exists()
    
    def test_release_never_touches_foreign_file(self, workspace, tmp_path):
        """Test that files outside the workspace are never deleted."""
        original = tmp_path / "input.txt"
        original.write_text("keep me")
        
        workspace.release(original)
        
        assert original.exists()
    
    def test_release_missing_file(self, workspace):
        workspace.release(workspace.allocate() / "gone.txt")
    
    def test_cleanup_removes_everything(self, workspace):
        first = workspace.allocate()
        nested = workspace.allocate(parent=first)
        (nested / "f.txt").write_text("x")
        second = workspace.allocate()
        
        workspace.cleanup()
        
        assert not first.exists()
        assert not second.exists()
    
    def test_cleanup_disabled_keeps_files(self, scratch_root):
        workspace = TempWorkspace(scratch_root, delete_on_cleanup=False)
        directory = workspace.allocate()
        path = directory / "f.txt"
        path.write_text("x")
        
        workspace.release(path)
        workspace.cleanup()
        
        assert path.exists()
