from __future__ import annotations

import os
import tempfile
import unittest
from unittest import mock
from datetime import datetime, timedelta, timezone
from pathlib import Path

from vellum.codec import Codec
from vellum.errors import (
    CompressionFailure,
    DecompressionFailure,
    ErrorKind,
    InvalidConfiguration,
    IOFailure,
    LockedOrMalformed,
    MissingUnlockInstant,
    ModeMismatch,
    ProtectionFailure,
    TimeLocked,
)
from vellum.fileio import read_file, write_file_atomic
from vellum.hamming import HammingCodec
from vellum.intoxicator import Intoxicator
from vellum.pipeline import COMPOSITIONS, Pipeline, Step, content_layers
from vellum.settings import OperationMode, ProtectionCustomSetting, RunSettings, TimeLockSettings
from vellum.timelock import EnvelopeInfo, TimeLock, UnlockedPayload


NOW = datetime(2030, 6, 1, tzinfo=timezone.utc)
FORWARD_MODES = (OperationMode.PROTECT, OperationMode.COMPRESS, OperationMode.PROTECT_AND_COMPRESS)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingFS:
    """Filesystem boundary that records every access."""

    def __init__(self):
        self.reads = []
        self.writes = []

    def read(self, path: str) -> bytes:
        self.reads.append(path)
        return read_file(path)

    def write(self, path: str, data: bytes) -> None:
        self.writes.append(path)
        write_file_atomic(path, data)


class FailingCodec(Codec):
    def compress(self, data: bytes):
        raise RuntimeError("codec rejected input")


class AlwaysUnlocked:
    """Time lock stand-in: one content byte in front of the payload, never restricted."""

    def __init__(self):
        self.calls = []

    def now(self) -> datetime:
        return NOW

    def lock(self, data: bytes, unlock_at: datetime, *, content: int = 0) -> bytes:
        self.calls.append("lock")
        return bytes([content]) + data

    def build_unlocked_file(self, data: bytes, *, content: int = 0) -> bytes:
        self.calls.append("build_unlocked_file")
        return bytes([content]) + data

    def unwrap(self, envelope: bytes) -> UnlockedPayload:
        self.calls.append("unwrap")
        info = EnvelopeInfo(1, 0, False, envelope[0], None, len(envelope) - 1, 0, 0, 0)
        return UnlockedPayload(data=envelope[1:], info=info)


def _sample_data() -> bytes:
    return b"The quick brown fox jumps over the lazy dog.\n" * 40 + os.urandom(512)


class PipelineTestCase(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name)
        self.clock = FakeClock(NOW)
        self.time_lock = TimeLock(clock=self.clock, time_cost=1, memory_cost_kib=64, parallelism=1)
        self.fs = RecordingFS()

    def make_pipeline(self, **kwargs) -> Pipeline:
        kwargs.setdefault("time_lock", self.time_lock)
        kwargs.setdefault("reader", self.fs.read)
        kwargs.setdefault("writer", self.fs.write)
        return Pipeline(**kwargs)

    def write_source(self, data: bytes, name: str = "source.bin") -> str:
        path = self.root / name
        path.write_bytes(data)
        return str(path)

    def settings(self, mode: OperationMode, source: str, base: str = "out", **kwargs) -> RunSettings:
        return RunSettings(source_path=source, output_path=str(self.root / base), mode=mode, **kwargs)

    def roundtrip(self, pipeline: Pipeline, mode: OperationMode, data: bytes, forward_kwargs=None, inverse_kwargs=None) -> bytes:
        source = self.write_source(data)
        forward = pipeline.run(self.settings(mode, source, "forward", **(forward_kwargs or {})))
        inverse = pipeline.run(self.settings(mode.inverse, forward.output_path, "inverse", **(inverse_kwargs or {})))
        return Path(inverse.output_path).read_bytes()


class CompositionTests(unittest.TestCase):
    def test_inverse_compositions_mirror_forward(self):
        inverse_step = {
            Step.COMPRESS: Step.DECOMPRESS,
            Step.PROTECT: Step.UNPROTECT,
            Step.LOCK: Step.UNLOCK,
        }
        for mode in FORWARD_MODES:
            with self.subTest(mode=mode):
                forward = COMPOSITIONS[mode]
                expected = tuple(inverse_step[step] for step in reversed(forward))
                self.assertEqual(COMPOSITIONS[mode.inverse], expected)
                self.assertEqual(forward[-1], Step.LOCK)

    def test_every_mode_has_a_composition(self):
        self.assertEqual(set(COMPOSITIONS), set(OperationMode))
        for mode in OperationMode:
            self.assertEqual(content_layers(mode), content_layers(mode.inverse))


class RoundTripTests(PipelineTestCase):
    def test_all_inverse_pairs_unlocked(self):
        data = _sample_data()
        pipeline = self.make_pipeline()
        for mode in FORWARD_MODES:
            for strength in (1, 3, 6):
                with self.subTest(mode=mode, strength=strength):
                    out = self.roundtrip(
                        pipeline,
                        mode,
                        data,
                        forward_kwargs={"strength": strength},
                        inverse_kwargs={"strength": strength},
                    )
                    self.assertEqual(out, data)

    def test_correct_errors_setting_without_damage(self):
        data = _sample_data()
        out = self.roundtrip(
            self.make_pipeline(),
            OperationMode.PROTECT_AND_COMPRESS,
            data,
            inverse_kwargs={"custom_setting": ProtectionCustomSetting.CORRECT_ERRORS},
        )
        self.assertEqual(out, data)

    def test_empty_file(self):
        for mode in FORWARD_MODES:
            with self.subTest(mode=mode):
                self.assertEqual(self.roundtrip(self.make_pipeline(), mode, b""), b"")

    def test_past_unlock_instant(self):
        data = _sample_data()
        lock = TimeLockSettings(enabled=True, unlock_at=NOW - timedelta(days=30))
        pipeline = self.make_pipeline()
        source = self.write_source(data)
        for mode in FORWARD_MODES:
            with self.subTest(mode=mode):
                forward = pipeline.run(self.settings(mode, source, "locked", time_lock=lock))
                self.assertTrue(any("already passed" in w for w in forward.warnings))
                self.assertEqual(forward.unlock_at, lock.unlock_at)
                inverse = pipeline.run(self.settings(mode.inverse, forward.output_path, "restored"))
                self.assertEqual(Path(inverse.output_path).read_bytes(), data)
                self.assertEqual(inverse.unlock_at, lock.unlock_at)

    def test_sixteen_byte_example(self):
        data = b"\xab" * 16
        source = self.write_source(data)
        pipeline = self.make_pipeline()
        first = pipeline.run(self.settings(OperationMode.PROTECT, source, strength=3))
        second = pipeline.run(self.settings(OperationMode.PROTECT, source, strength=3))
        self.assertEqual(first.output_path, second.output_path)
        self.assertTrue(first.output_path.endswith(".ham3"))
        restored = pipeline.run(self.settings(OperationMode.UNLOCK, first.output_path, strength=3))
        self.assertEqual(Path(restored.output_path).read_bytes(), data)
        self.assertEqual(restored.input_size, first.output_size)

    def test_existing_output_replaced(self):
        source = self.write_source(b"fresh content")
        target = self.root / "out.dfl"
        target.write_bytes(b"stale" * 1000)
        report = self.make_pipeline().run(self.settings(OperationMode.COMPRESS, source))
        self.assertEqual(report.output_path, str(target))
        self.assertEqual(target.stat().st_size, report.output_size)

    def test_substituted_time_lock(self):
        fake = AlwaysUnlocked()
        data = _sample_data()
        out = self.roundtrip(self.make_pipeline(time_lock=fake), OperationMode.PROTECT, data)
        self.assertEqual(out, data)
        self.assertEqual(fake.calls, ["build_unlocked_file", "unwrap"])


class ErrorInjectionTests(PipelineTestCase):
    def test_injected_errors_corrected(self):
        data = _sample_data()
        source = self.write_source(data)
        pipeline = self.make_pipeline()
        forward = pipeline.run(
            self.settings(
                OperationMode.PROTECT,
                source,
                "damaged",
                custom_setting=ProtectionCustomSetting.ADD_RANDOM_ERROR,
                seed=7,
            )
        )
        blocks = -(-len(data) * 8 // HammingCodec(3).data_bits)
        self.assertEqual(forward.injected_bits, blocks)
        self.assertEqual(forward.warnings, [])
        self.assertTrue(forward.output_path.endswith(".ham3e"))

        detect_only = pipeline.run(self.settings(OperationMode.UNLOCK, forward.output_path, "detected"))
        self.assertEqual(detect_only.detected_blocks, blocks)
        self.assertEqual(detect_only.corrected_blocks, 0)
        self.assertTrue(any("left in place" in w for w in detect_only.warnings))

        corrected = pipeline.run(
            self.settings(
                OperationMode.UNLOCK,
                forward.output_path,
                "corrected",
                custom_setting=ProtectionCustomSetting.CORRECT_ERRORS,
            )
        )
        self.assertEqual(corrected.corrected_blocks, blocks)
        self.assertEqual(corrected.warnings, [])
        self.assertEqual(Path(corrected.output_path).read_bytes(), data)

    def test_injection_beyond_capacity_is_reported(self):
        data = _sample_data()
        source = self.write_source(data)
        pipeline = self.make_pipeline(intoxicator=Intoxicator(flips_per_chunk=2, seed=5))
        forward = pipeline.run(
            self.settings(
                OperationMode.PROTECT_AND_COMPRESS,
                source,
                "lossy",
                custom_setting=ProtectionCustomSetting.ADD_RANDOM_ERROR,
            )
        )
        self.assertTrue(any("lossy" in w for w in forward.warnings))
        outcome = pipeline.attempt(
            self.settings(
                OperationMode.UNLOCK_AND_DECOMPRESS,
                forward.output_path,
                "lossy-restored",
                custom_setting=ProtectionCustomSetting.CORRECT_ERRORS,
            )
        )
        # Every codeword carries two flips: nothing is correctable, so the
        # compressed container no longer verifies.
        self.assertFalse(outcome.ok)
        self.assertIsInstance(outcome.error, DecompressionFailure)
        self.assertFalse((self.root / "lossy-restored.uncham3c").exists())

    def test_uncorrectable_blocks_warned(self):
        data = _sample_data()
        source = self.write_source(data)
        pipeline = self.make_pipeline(intoxicator=Intoxicator(flips_per_chunk=2, seed=5))
        forward = pipeline.run(
            self.settings(OperationMode.PROTECT, source, "lossy", custom_setting=ProtectionCustomSetting.ADD_RANDOM_ERROR)
        )
        restored = pipeline.run(
            self.settings(
                OperationMode.UNLOCK,
                forward.output_path,
                "restored",
                custom_setting=ProtectionCustomSetting.CORRECT_ERRORS,
            )
        )
        blocks = -(-len(data) * 8 // HammingCodec(3).data_bits)
        self.assertEqual(restored.uncorrectable_blocks, blocks)
        self.assertTrue(any("output is damaged" in w for w in restored.warnings))


class FailureTests(PipelineTestCase):
    def assert_untouched(self):
        self.assertEqual(self.fs.reads, [])
        self.assertEqual(self.fs.writes, [])

    def test_empty_paths_fail_before_io(self):
        source = self.write_source(b"data")
        pipeline = self.make_pipeline()
        for src, out in (("", "out"), ("   ", "out"), (source, ""), (source, " \t")):
            with self.subTest(source=src, output=out):
                settings = RunSettings(source_path=src, output_path=out, mode=OperationMode.PROTECT)
                with self.assertRaises(InvalidConfiguration):
                    pipeline.run(settings)
        self.assert_untouched()

    def test_missing_unlock_instant(self):
        source = self.write_source(b"data")
        lock = TimeLockSettings(enabled=True, unlock_at=None)
        pipeline = self.make_pipeline()
        for mode in FORWARD_MODES:
            with self.subTest(mode=mode):
                with self.assertRaises(MissingUnlockInstant) as ctx:
                    pipeline.run(self.settings(mode, source, time_lock=lock))
                self.assertIsInstance(ctx.exception, InvalidConfiguration)
        self.assert_untouched()
        self.assertEqual(sorted(p.name for p in self.root.iterdir()), ["source.bin"])

    def test_inverse_modes_ignore_lock_settings(self):
        data = b"inverse ignores lock settings"
        pipeline = self.make_pipeline()
        source = self.write_source(data)
        forward = pipeline.run(self.settings(OperationMode.COMPRESS, source))
        lock = TimeLockSettings(enabled=True, unlock_at=None)
        inverse = pipeline.run(self.settings(OperationMode.DECOMPRESS, forward.output_path, "back", time_lock=lock))
        self.assertEqual(Path(inverse.output_path).read_bytes(), data)

    def test_compression_failure_leaves_output_untouched(self):
        source = self.write_source(b"will not compress")
        pipeline = self.make_pipeline(codec_factory=lambda name, level: FailingCodec())
        target = self.root / "out.dfl"

        with self.assertRaises(CompressionFailure) as ctx:
            pipeline.run(self.settings(OperationMode.COMPRESS, source))
        self.assertIn("codec rejected input", str(ctx.exception))
        self.assertFalse(target.exists())

        target.write_bytes(b"previous output")
        outcome = pipeline.attempt(self.settings(OperationMode.COMPRESS, source))
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.error.kind, ErrorKind.COMPRESSION_FAILURE)
        self.assertEqual(target.read_bytes(), b"previous output")
        self.assertEqual(self.fs.writes, [])
        self.assertEqual(sorted(p.name for p in self.root.iterdir()), ["out.dfl", "source.bin"])

    def test_time_gated_unlock(self):
        data = _sample_data()
        source = self.write_source(data)
        unlock_at = NOW + timedelta(days=2)
        pipeline = self.make_pipeline()
        forward = pipeline.run(
            self.settings(OperationMode.PROTECT, source, "gated", time_lock=TimeLockSettings(True, unlock_at))
        )
        self.assertTrue(forward.output_path.endswith(".ham3-tl"))
        self.assertEqual(forward.warnings, [])

        unlock = self.settings(OperationMode.UNLOCK, forward.output_path, "opened")
        with self.assertRaises(TimeLocked) as ctx:
            pipeline.run(unlock)
        self.assertIsInstance(ctx.exception, LockedOrMalformed)
        self.assertEqual(ctx.exception.kind, ErrorKind.LOCKED_OR_MALFORMED)
        self.assertFalse((self.root / "opened.unham3").exists())

        self.clock.now = unlock_at + timedelta(seconds=1)
        report = pipeline.run(unlock)
        self.assertEqual(Path(report.output_path).read_bytes(), data)

    def test_key_derivation_failure_is_not_blamed_on_the_instant(self):
        source = self.write_source(b"data")
        weak = TimeLock(clock=self.clock, time_cost=1, memory_cost_kib=1, parallelism=1)
        lock = TimeLockSettings(enabled=True, unlock_at=NOW + timedelta(days=1))
        with self.assertRaises(InvalidConfiguration) as ctx:
            self.make_pipeline(time_lock=weak).run(self.settings(OperationMode.COMPRESS, source, time_lock=lock))
        self.assertIn("key derivation failed", str(ctx.exception))
        self.assertNotIn("Invalid unlock instant", str(ctx.exception))
        self.assertEqual(self.fs.writes, [])

    def test_mode_mismatch(self):
        source = self.write_source(_sample_data())
        pipeline = self.make_pipeline()
        compressed = pipeline.run(self.settings(OperationMode.COMPRESS, source, "c"))
        with self.assertRaisesRegex(ModeMismatch, "use 'decompress'"):
            pipeline.run(self.settings(OperationMode.UNLOCK, compressed.output_path, "x"))
        protected = pipeline.run(self.settings(OperationMode.PROTECT, source, "p"))
        with self.assertRaisesRegex(ModeMismatch, "use 'unlock'"):
            pipeline.run(self.settings(OperationMode.UNLOCK_AND_DECOMPRESS, protected.output_path, "x"))
        self.assertFalse(any(p.name.startswith("x.") for p in self.root.iterdir()))

    def test_unrecognised_input(self):
        source = self.write_source(b"just some plain bytes, not an envelope" * 4)
        with self.assertRaises(LockedOrMalformed):
            self.make_pipeline().run(self.settings(OperationMode.DECOMPRESS, source))

    def test_damaged_compressed_payload(self):
        source = self.write_source(b"plain bytes that were never compressed")
        envelope = self.time_lock.build_unlocked_file(
            read_file(source), content=content_layers(OperationMode.COMPRESS)
        )
        wrapped = self.write_source(envelope, "wrapped.bin")
        with self.assertRaises(DecompressionFailure):
            self.make_pipeline().run(self.settings(OperationMode.DECOMPRESS, wrapped))

    def test_invalid_strength(self):
        source = self.write_source(b"data")
        with self.assertRaisesRegex(ProtectionFailure, "unsupported protection strength"):
            self.make_pipeline().run(self.settings(OperationMode.PROTECT, source, strength=9))
        self.assertEqual(self.fs.writes, [])

    def test_strength_mismatch(self):
        source = self.write_source(b"strength matters")
        pipeline = self.make_pipeline()
        forward = pipeline.run(self.settings(OperationMode.PROTECT, source, strength=3))
        with self.assertRaisesRegex(ProtectionFailure, "strength 3"):
            pipeline.run(self.settings(OperationMode.UNLOCK, forward.output_path, strength=4))

    def test_missing_source(self):
        with self.assertRaises(IOFailure) as ctx:
            self.make_pipeline().run(self.settings(OperationMode.PROTECT, str(self.root / "missing.bin")))
        self.assertEqual(ctx.exception.phase, IOFailure.READ)
        self.assertEqual(self.fs.writes, [])

    def test_unwritable_destination(self):
        source = self.write_source(b"data")
        settings = RunSettings(
            source_path=source,
            output_path=str(self.root / "no" / "such" / "dir" / "out"),
            mode=OperationMode.COMPRESS,
        )
        outcome = self.make_pipeline().attempt(settings)
        self.assertFalse(outcome.ok)
        self.assertIsInstance(outcome.error, IOFailure)
        self.assertEqual(outcome.error.phase, IOFailure.WRITE)

    def test_failed_replace_keeps_existing_output(self):
        source = self.write_source(b"new contents")
        target = self.root / "out.dfl"
        target.write_bytes(b"old")
        with mock.patch("vellum.fileio.os.replace", side_effect=OSError("disk detached")):
            with self.assertRaises(IOFailure) as ctx:
                self.make_pipeline().run(self.settings(OperationMode.COMPRESS, source))
        self.assertEqual(ctx.exception.phase, IOFailure.WRITE)
        self.assertIn("disk detached", str(ctx.exception))
        self.assertEqual(target.read_bytes(), b"old")
        self.assertEqual(sorted(p.name for p in self.root.iterdir()), ["out.dfl", "source.bin"])


class TimingTests(PipelineTestCase):
    def test_elapsed_covers_read_transform_write(self):
        ticks = iter([10.0, 10.25])
        source = self.write_source(b"timed")
        report = self.make_pipeline(timer=lambda: next(ticks)).run(self.settings(OperationMode.COMPRESS, source))
        self.assertAlmostEqual(report.elapsed_ms, 250.0)
        self.assertEqual(report.steps, (Step.COMPRESS, Step.LOCK))


if __name__ == "__main__":
    unittest.main()
