import shutil
import tempfile
import unittest
from unittest.mock import MagicMock, patch
from pathlib import Path

import ffmpeg

from app_previews.exceptions import InvalidTimestampError, PosterGenerationError, UnknownDeviceError
from app_previews.models import UploadRecord
from app_previews.poster import PosterGenerator, preview_resolution_for, timestamp_to_seconds


def landscape_probe(width=1920, height=1080, **extra):
    stream = {'codec_type': 'video', 'width': width, 'height': height}
    stream.update(extra)
    return {'streams': [{'codec_type': 'audio'}, stream]}


def fake_frame_grab(mock_ffmpeg):
    """Makes the mocked ffmpeg chain write a frame to whatever output path it is given."""
    mock_ffmpeg.Error = ffmpeg.Error
    chain = mock_ffmpeg.input.return_value.video.filter.return_value.filter.return_value

    def output(path, **kwargs):
        node = MagicMock()
        node.overwrite_output.return_value.run.side_effect = lambda **kw: Path(path).write_bytes(b"new frame")
        return node

    chain.output.side_effect = output
    return chain


class TestPosterGenerator(unittest.TestCase):
    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def record(self, name, timestamp="00.05", device="iphone6"):
        video = self.test_dir / f"{name}.mp4"
        video.write_bytes(b"video")
        return UploadRecord("en-US", device, timestamp, 1, video, self.test_dir / f"{name}.jpg")

    @patch('app_previews.poster.ffmpeg')
    def test_generates_missing_poster(self, mock_ffmpeg):
        fake_frame_grab(mock_ffmpeg)
        mock_ffmpeg.probe.return_value = landscape_probe()
        record = self.record("intro", timestamp="01.02")

        generated = PosterGenerator().ensure_posters([record])

        self.assertEqual(generated, 1)
        self.assertEqual(record.poster_path.read_bytes(), b"new frame")
        self.assertEqual(list(self.test_dir.glob(".*")), [])
        mock_ffmpeg.input.assert_called_once_with(str(record.video_path), ss=62)
        mock_ffmpeg.input.return_value.video.filter.assert_called_once_with(
            'scale', 1334, 750, force_original_aspect_ratio='increase')
        chain = mock_ffmpeg.input.return_value.video.filter.return_value
        chain.filter.assert_called_once_with('crop', 1334, 750)

    @patch('app_previews.poster.ffmpeg')
    def test_existing_poster_is_left_untouched(self, mock_ffmpeg):
        fake_frame_grab(mock_ffmpeg)
        record = self.record("cached")
        record.poster_path.write_bytes(b"original poster")

        generated = PosterGenerator().ensure_posters([record], force=False)

        self.assertEqual(generated, 0)
        self.assertEqual(record.poster_path.read_bytes(), b"original poster")
        mock_ffmpeg.probe.assert_not_called()
        mock_ffmpeg.input.assert_not_called()

    @patch('app_previews.poster.ffmpeg')
    def test_force_regenerates_existing_poster(self, mock_ffmpeg):
        fake_frame_grab(mock_ffmpeg)
        mock_ffmpeg.probe.return_value = landscape_probe()
        record = self.record("cached")
        record.poster_path.write_bytes(b"original poster")

        generated = PosterGenerator().ensure_posters([record], force=True)

        self.assertEqual(generated, 1)
        self.assertEqual(record.poster_path.read_bytes(), b"new frame")

    @patch('app_previews.poster.ffmpeg')
    def test_malformed_timestamp_stops_the_batch(self, mock_ffmpeg):
        fake_frame_grab(mock_ffmpeg)
        mock_ffmpeg.probe.return_value = landscape_probe()
        first = self.record("a", timestamp="00.01")
        bad = self.record("b", timestamp="5.5")
        after = self.record("c", timestamp="00.03")

        with self.assertRaises(InvalidTimestampError) as ctx:
            PosterGenerator().ensure_posters([first, bad, after])

        self.assertIn("5.5", str(ctx.exception))
        self.assertIn("minutes.seconds", str(ctx.exception))
        self.assertTrue(first.poster_path.exists())
        self.assertFalse(bad.poster_path.exists())
        self.assertFalse(after.poster_path.exists())
        self.assertEqual(mock_ffmpeg.input.call_count, 1)

    @patch('app_previews.poster.ffmpeg')
    def test_non_numeric_timestamp_fails_before_probing(self, mock_ffmpeg):
        fake_frame_grab(mock_ffmpeg)
        record = self.record("a", timestamp="abc")

        with self.assertRaises(InvalidTimestampError):
            PosterGenerator().ensure_posters([record])
        mock_ffmpeg.probe.assert_not_called()

    @patch('app_previews.poster.ffmpeg')
    def test_portrait_video_swaps_resolution(self, mock_ffmpeg):
        fake_frame_grab(mock_ffmpeg)
        mock_ffmpeg.probe.return_value = landscape_probe(width=886, height=1920)
        record = self.record("tall", device="iphone65")

        PosterGenerator().ensure_posters([record])

        mock_ffmpeg.input.return_value.video.filter.assert_called_once_with(
            'scale', 886, 1920, force_original_aspect_ratio='increase')

    @patch('app_previews.poster.ffmpeg')
    def test_rotated_stream_counts_as_portrait(self, mock_ffmpeg):
        mock_ffmpeg.Error = ffmpeg.Error
        mock_ffmpeg.probe.return_value = landscape_probe(tags={'rotate': '90'})
        self.assertTrue(PosterGenerator().is_portrait(Path("phone.mov")))

        mock_ffmpeg.probe.return_value = landscape_probe(side_data_list=[{'rotation': -90}])
        self.assertTrue(PosterGenerator().is_portrait(Path("phone.mov")))

        mock_ffmpeg.probe.return_value = landscape_probe(tags={'rotate': '180'})
        self.assertFalse(PosterGenerator().is_portrait(Path("phone.mov")))

    @patch('app_previews.poster.ffmpeg')
    def test_ffmpeg_failure_is_reported(self, mock_ffmpeg):
        mock_ffmpeg.Error = ffmpeg.Error
        mock_ffmpeg.probe.return_value = landscape_probe()
        chain = mock_ffmpeg.input.return_value.video.filter.return_value.filter.return_value
        chain.output.return_value.overwrite_output.return_value.run.side_effect = ffmpeg.Error(
            'ffmpeg', b'', b'moov atom not found')
        record = self.record("broken")

        with self.assertRaises(PosterGenerationError) as ctx:
            PosterGenerator().ensure_posters([record])

        self.assertIn("moov atom not found", str(ctx.exception))
        self.assertFalse(record.poster_path.exists())

    @patch('app_previews.poster.ffmpeg')
    def test_video_without_video_stream(self, mock_ffmpeg):
        mock_ffmpeg.Error = ffmpeg.Error
        mock_ffmpeg.probe.return_value = {'streams': [{'codec_type': 'audio'}]}

        with self.assertRaises(PosterGenerationError):
            PosterGenerator().is_portrait(Path("audio_only.mp4"))


class TestPosterHelpers(unittest.TestCase):
    def test_timestamp_to_seconds(self):
        self.assertEqual(timestamp_to_seconds("00.05"), 5)
        self.assertEqual(timestamp_to_seconds("02.30"), 150)

    def test_timestamp_pattern_is_strict(self):
        for bad in ("5.5", "abc", "00:05", "000.05", "00.5", None, 5.5):
            with self.assertRaises(InvalidTimestampError):
                timestamp_to_seconds(bad)

    def test_preview_resolution_for(self):
        self.assertEqual(preview_resolution_for("iphone6", False), (1334, 750))
        self.assertEqual(preview_resolution_for("iphone6", True), (750, 1334))
        self.assertEqual(preview_resolution_for("ipadPro129", True), (1200, 1600))

    def test_unknown_device(self):
        with self.assertRaises(UnknownDeviceError):
            preview_resolution_for("nokia3310", False)

if __name__ == '__main__':
    unittest.main()
