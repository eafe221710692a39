"""Fixtures for audio selector tests."""

import random

import pytest


@pytest.fixture
def library(tmp_path):
    """Audio folder with three tracks and one non-audio file."""
    folder = tmp_path / "audio"
    folder.mkdir()
    for name in ["b_song.mp3", "A_song.flac", "c_song.ogg", "notes.txt"]:
        (folder / name).write_bytes(b"\x00")
    return folder


@pytest.fixture
def rng():
    return random.Random(1234)
