"""Unit tests for reading WAV files as chunks."""

import os

import numpy as np
import pytest

from notescribe.audio.wav_file import iter_wav_chunks, read_wav_info


@pytest.mark.unit
class TestReadWavInfo:
    """Test cases for WAV header reading."""

    def test_header_fields(self, write_wav):
        """Test rate, channels, width and duration are read from the header."""
        path = write_wav("stereo.wav", np.zeros(48000 * 2, dtype="<i2"), sample_rate=48000, channels=2)

        info = read_wav_info(path)

        assert (info.sample_rate, info.channels, info.sample_width) == (48000, 2, 2)
        assert info.frame_count == 48000
        assert info.duration_seconds == 1.0

    def test_not_a_wav_file(self, temp_data_dir):
        """Test a non-WAV file raises ValueError."""
        path = os.path.join(temp_data_dir, "notes.txt")
        with open(path, "w", encoding="utf-8") as f:
            f.write("not audio")

        with pytest.raises(ValueError, match="Not a PCM WAV file"):
            read_wav_info(path)


@pytest.mark.unit
class TestIterWavChunks:
    """Test cases for slicing a WAV file into AudioChunks."""

    def test_chunks_cover_the_file(self, write_wav):
        """Test a 7 s file in 3 s chunks yields 3 s, 3 s and a final 1 s chunk."""
        path = write_wav("meeting.wav", np.zeros(48000 * 7, dtype="<i2"))

        chunks = list(iter_wav_chunks(path, chunk_seconds=3.0))

        assert [c.sample_count for c in chunks] == [144000, 144000, 48000]
        assert [c.sequence_number for c in chunks] == [1, 2, 3]
        assert [c.is_final for c in chunks] == [False, False, True]
        assert [c.started_at for c in chunks] == [0.0, 3.0, 6.0]
        assert chunks[-1].ended_at == 7.0
        assert all(c.sample_rate == 48000 and c.samples.dtype == np.float32 for c in chunks)

    def test_int16_scaling(self, write_wav):
        """Test 16-bit samples are scaled by 32768."""
        path = write_wav("levels.wav", [-32768, 0, 16384, 32767])

        chunk = next(iter_wav_chunks(path))

        np.testing.assert_allclose(chunk.samples, [-1.0, 0.0, 0.5, 32767 / 32768])

    def test_unsigned_8bit(self, write_wav):
        """Test 8-bit WAV is treated as unsigned around 128."""
        path = write_wav("old.wav", bytes([0, 128, 255]), sample_width=1)

        chunk = next(iter_wav_chunks(path))

        np.testing.assert_allclose(chunk.samples, [-1.0, 0.0, 127 / 128])

    def test_24bit(self, write_wav):
        """Test packed 24-bit samples are sign-extended."""
        # -8388608, 4194304, -1
        path = write_wav("studio.wav", b"\x00\x00\x80" + b"\x00\x00\x40" + b"\xff\xff\xff", sample_width=3)

        chunk = next(iter_wav_chunks(path))

        np.testing.assert_allclose(chunk.samples, [-1.0, 0.5, -1 / 8388608])

    def test_stereo_frames_are_two_dimensional(self, write_wav):
        """Test multi-channel files yield (frames, channels) samples."""
        path = write_wav("stereo.wav", np.zeros(4800 * 2, dtype="<i2"), channels=2)

        chunk = next(iter_wav_chunks(path))

        assert chunk.samples.shape == (4800, 2)
        assert chunk.channels == 2

    def test_empty_file_yields_nothing(self, write_wav):
        """Test a WAV file without frames produces no chunks."""
        path = write_wav("empty.wav", b"")

        assert list(iter_wav_chunks(path)) == []

    def test_invalid_chunk_length(self, write_wav):
        """Test a non-positive chunk length is rejected."""
        path = write_wav("meeting.wav", [0, 0])

        with pytest.raises(ValueError):
            list(iter_wav_chunks(path, chunk_seconds=0))
