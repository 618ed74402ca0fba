#!/usr/bin/env python3
"""Tests for the file-backed checkpoint store."""

import os
from unittest.mock import patch

import pytest

from oracle_responder.utils.checkpoint_store import CheckpointError, CheckpointStore


class TestCheckpointStore:
    """Test suite for CheckpointStore."""

    def test_load_without_file_returns_start_height(self, tmp_path):
        store = CheckpointStore(tmp_path / "cursor.txt", start_height=42376888)
        assert store.load() == 42376888

    def test_save_then_load(self, tmp_path):
        store = CheckpointStore(tmp_path / "cursor.txt", start_height=0)
        store.save(101)
        assert store.load() == 101
        assert (tmp_path / "cursor.txt").read_text() == "101"

    def test_save_creates_parent_directory(self, tmp_path):
        store = CheckpointStore(tmp_path / "state" / "cursor.txt", start_height=0)
        store.save(7)
        assert store.load() == 7

    def test_save_leaves_no_temp_files(self, tmp_path):
        store = CheckpointStore(tmp_path / "cursor.txt", start_height=0)
        store.save(1)
        store.save(2)
        assert os.listdir(tmp_path) == ["cursor.txt"]

    def test_load_tolerates_whitespace(self, tmp_path):
        path = tmp_path / "cursor.txt"
        path.write_text("  55\n")
        assert CheckpointStore(path, start_height=0).load() == 55

    def test_corrupt_checkpoint_raises(self, tmp_path):
        path = tmp_path / "cursor.txt"
        path.write_text("not-a-number")
        with pytest.raises(CheckpointError, match="Corrupt checkpoint"):
            CheckpointStore(path, start_height=0).load()

    def test_negative_checkpoint_raises(self, tmp_path):
        path = tmp_path / "cursor.txt"
        path.write_text("-4")
        with pytest.raises(CheckpointError, match="negative height"):
            CheckpointStore(path, start_height=0).load()

    def test_write_failure_raises_and_keeps_previous_value(self, tmp_path):
        store = CheckpointStore(tmp_path / "cursor.txt", start_height=0)
        store.save(10)

        with patch("oracle_responder.utils.checkpoint_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(CheckpointError, match="Failed to write checkpoint"):
                store.save(11)

        assert store.load() == 10
        assert os.listdir(tmp_path) == ["cursor.txt"]
