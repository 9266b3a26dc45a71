import importlib.util
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import cv2
import numpy as np

from clashvision.config import SessionConfig
from clashvision.decode import DetectorVariant
from clashvision.errors import ConfigError, ImageLoadError, InferenceError, ModelLoadError, OutputWriteError, ShapeError
from clashvision.export import ExportFormat
from clashvision.session import DetectionSession, SessionState, load_session

HAS_ORT = importlib.util.find_spec("onnxruntime") is not None


def _dense_output() -> np.ndarray:
    # Candidates in 64x64 model input space: two overlapping class-0 boxes,
    # one class-1 box and one below the confidence threshold.
    candidates = [
        [20.0, 30.0, 10.0, 10.0, 0.9, 0.1],
        [21.0, 31.0, 10.0, 10.0, 0.8, 0.1],
        [45.0, 30.0, 8.0, 8.0, 0.1, 0.7],
        [5.0, 5.0, 2.0, 2.0, 0.1, 0.1],
    ]
    return np.asarray(candidates, dtype=np.float32).T[None, ...]


def _topk_output() -> np.ndarray:
    rows = [
        [15.0, 25.0, 25.0, 35.0, 0.9, 0.0],
        [41.0, 26.0, 49.0, 34.0, 0.7, 1.0],
        [0.0, 0.0, 4.0, 4.0, 0.1, 0.0],
    ]
    return np.asarray(rows, dtype=np.float32)[None, ...]


class RecordingInfer:
    def __init__(self, output: np.ndarray, name: str = "output0"):
        self.output = output
        self.name = name
        self.tensors = []

    def __call__(self, tensor: np.ndarray):
        self.tensors.append(tensor)
        return {self.name: self.output}


class SessionTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.out_dir = self.tmp / "out"
        # 128x64 screenshot: letterboxed into 64x64 at scale 0.5 with 16px top/bottom padding.
        self.image_path = self.tmp / "village.png"
        cv2.imwrite(str(self.image_path), np.full((64, 128, 3), 40, dtype=np.uint8))
        self.config = SessionConfig(input_size=(64, 64))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def session(self, infer=None, **kwargs) -> DetectionSession:
        cfg = kwargs.pop("config", self.config)
        return DetectionSession(infer or RecordingInfer(_dense_output()), config=cfg, **kwargs)


class TestProcessImage(SessionTestCase):
    def test_writes_image_and_text_record(self) -> None:
        infer = RecordingInfer(_dense_output())
        session = self.session(infer)
        result = session.process_image(self.image_path, self.out_dir)

        self.assertEqual(session.state, SessionState.SAVED)
        self.assertEqual(result.num_detections, 2)
        self.assertEqual([b.class_id for b in result.detections], [0, 1])
        self.assertEqual(result.image_size, (64, 64))
        self.assertEqual(result.annotated_path, self.out_dir / "village.jpg")
        self.assertEqual(result.detections_path, self.out_dir / "village.txt")

        annotated = cv2.imread(str(result.annotated_path))
        self.assertEqual(annotated.shape, (64, 64, 3))
        self.assertEqual(
            result.detections_path.read_text(),
            "0 0.312500 0.468750 0.156250 0.156250\n1 0.703125 0.468750 0.125000 0.125000\n",
        )

        self.assertEqual(len(infer.tensors), 1)
        tensor = infer.tensors[0]
        self.assertEqual(tensor.shape, (1, 3, 64, 64))
        self.assertEqual(tensor.dtype, np.float32)
        self.assertLessEqual(float(tensor.max()), 1.0)

    def test_no_nms_keeps_overlaps(self) -> None:
        cfg = SessionConfig(input_size=(64, 64), use_nms=False)
        result = self.session(config=cfg).process_image(self.image_path, self.out_dir)
        self.assertEqual(result.num_detections, 3)

    def test_empty_detections_write_empty_record(self) -> None:
        cfg = SessionConfig(input_size=(64, 64), confidence_threshold=0.95)
        result = self.session(config=cfg).process_image(self.image_path, self.out_dir)
        self.assertEqual(result.num_detections, 0)
        self.assertEqual(result.detections_path.read_bytes(), b"")
        self.assertTrue(result.annotated_path.exists())

    def test_json_record(self) -> None:
        cfg = SessionConfig(input_size=(64, 64), export_format=ExportFormat.JSON)
        result = self.session(config=cfg).process_image(self.image_path, self.out_dir)
        self.assertEqual(result.detections_path.suffix, ".json")
        doc = json.loads(result.detections_path.read_text())
        self.assertEqual(doc["image"], {"width": 64, "height": 64})
        self.assertEqual(doc["summary"]["total_detections"], 2)
        self.assertEqual(doc["detections"][0]["class_name"], "Elixir Storage")
        self.assertEqual(doc["detections"][0]["bbox"], [15.0, 25.0, 25.0, 35.0])

    def test_restore_original_maps_back_to_source(self) -> None:
        cfg = SessionConfig(input_size=(64, 64), restore_original=True)
        result = self.session(config=cfg).process_image(self.image_path, self.out_dir)
        self.assertEqual(result.image_size, (128, 64))
        first = result.detections[0]
        self.assertAlmostEqual(first.x1, 30.0)
        self.assertAlmostEqual(first.y1, 18.0)
        self.assertAlmostEqual(first.x2, 50.0)
        self.assertAlmostEqual(first.y2, 38.0)
        annotated = cv2.imread(str(result.annotated_path))
        self.assertEqual(annotated.shape, (64, 128, 3))
        line = result.detections_path.read_text().splitlines()[0]
        self.assertEqual(line, "0 0.312500 0.437500 0.156250 0.312500")

    def test_topk_variant(self) -> None:
        session = self.session(RecordingInfer(_topk_output()), variant="yolov10")
        self.assertIs(session.variant, DetectorVariant.YOLOV10)
        result = session.process_image(self.image_path, self.out_dir)
        self.assertEqual([b.class_id for b in result.detections], [0, 1])


class TestFailures(SessionTestCase):
    def assert_nothing_written(self) -> None:
        self.assertFalse(list(self.out_dir.glob("*")) if self.out_dir.exists() else [])

    def test_missing_image(self) -> None:
        session = self.session()
        with self.assertRaises(ImageLoadError):
            session.process_image(self.tmp / "missing.png", self.out_dir)
        self.assertEqual(session.state, SessionState.CREATED)
        self.assert_nothing_written()

    def test_missing_output_name(self) -> None:
        session = self.session(RecordingInfer(_dense_output(), name="logits"))
        with self.assertRaises(InferenceError):
            session.process_image(self.image_path, self.out_dir)
        self.assertEqual(session.state, SessionState.IMAGE_LOADED)
        self.assert_nothing_written()

    def test_backend_exception_is_wrapped(self) -> None:
        def boom(tensor):
            raise RuntimeError("device lost")

        session = self.session(boom)
        with self.assertRaises(InferenceError) as ctx:
            session.process_image(self.image_path, self.out_dir)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assert_nothing_written()

    def test_bad_output_shape(self) -> None:
        session = self.session(RecordingInfer(np.zeros((1, 3, 10), dtype=np.float32)))
        with self.assertRaises(ShapeError):
            session.process_image(self.image_path, self.out_dir)
        self.assert_nothing_written()

    def test_output_dir_is_a_file(self) -> None:
        blocker = self.tmp / "blocker"
        blocker.write_text("x")
        with self.assertRaises(OutputWriteError):
            self.session().process_image(self.image_path, blocker / "out")

    def test_failed_record_write_removes_image(self) -> None:
        self.out_dir.mkdir()
        (self.out_dir / "village.txt").mkdir()
        session = self.session()
        with self.assertRaises(OutputWriteError):
            session.process_image(self.image_path, self.out_dir)
        self.assertFalse((self.out_dir / "village.jpg").exists())
        self.assertEqual(session.state, SessionState.RENDERED)


class TestBatchAndApi(SessionTestCase):
    def test_batch_continues_after_failure(self) -> None:
        second = self.tmp / "second.png"
        cv2.imwrite(str(second), np.zeros((32, 32, 3), dtype=np.uint8))
        items = self.session().process_images([self.image_path, self.tmp / "nope.png", second], self.out_dir)

        self.assertEqual([item.ok for item in items], [True, False, True])
        self.assertIsInstance(items[1].error, ImageLoadError)
        self.assertIsNone(items[1].result)
        self.assertTrue((self.out_dir / "second.jpg").exists())
        self.assertFalse((self.out_dir / "nope.jpg").exists())

    def test_detect_from_array(self) -> None:
        session = self.session()
        boxes = session.detect(np.zeros((64, 64, 3), dtype=np.uint8))
        self.assertEqual(len(boxes), 2)
        self.assertEqual(session.state, SessionState.SUPPRESSED)
        self.assertFalse(self.out_dir.exists())

    def test_model_info_tracks_config(self) -> None:
        session = self.session(model_name="best")
        info = session.model_info()
        self.assertEqual(info.model_name, "best")
        self.assertIs(info.variant, DetectorVariant.YOLOV8)
        self.assertEqual(info.input_size, (64, 64))

        session.update_config(SessionConfig(input_size=(64, 64), iou_threshold=0.9, use_nms=False))
        info = session.model_info()
        self.assertEqual(info.iou_threshold, 0.9)
        self.assertFalse(info.use_nms)

    def test_unknown_variant(self) -> None:
        with self.assertRaises(ConfigError):
            self.session(variant="yolov99")

    def test_close_is_idempotent(self) -> None:
        session = self.session()
        with session:
            pass
        session.close()
        self.assertIsNone(session.backend)


class TestModelLoading(unittest.TestCase):
    def test_non_onnx_suffix(self) -> None:
        with self.assertRaises(ModelLoadError):
            load_session("weights/best.pt", root=tempfile.gettempdir())

    def test_relative_path_joins_explicit_root(self) -> None:
        with tempfile.TemporaryDirectory() as d, mock.patch.object(DetectionSession, "from_path") as from_path:
            load_session("models/best.onnx", root=d)
        self.assertEqual(from_path.call_args.args[0], Path(d).resolve() / "models" / "best.onnx")

    def test_auto_root_finds_pyproject_above_cwd(self) -> None:
        cwd = os.getcwd()
        with tempfile.TemporaryDirectory() as d, mock.patch.object(DetectionSession, "from_path") as from_path:
            project = Path(d).resolve()
            (project / "pyproject.toml").write_text("", encoding="utf-8")
            nested = project / "scripts" / "nested"
            nested.mkdir(parents=True)
            os.chdir(nested)
            try:
                load_session("models/best.onnx")
            finally:
                os.chdir(cwd)
        self.assertEqual(from_path.call_args.args[0], project / "models" / "best.onnx")

    def test_absolute_path_used_as_given(self) -> None:
        target = Path(tempfile.gettempdir()).resolve() / "elsewhere" / "best.onnx"
        with mock.patch.object(DetectionSession, "from_path") as from_path:
            load_session(target, root="/nonexistent")
        self.assertEqual(from_path.call_args.args[0], target)

    @unittest.skipUnless(HAS_ORT, "onnxruntime not installed")
    def test_missing_model_file(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            with self.assertRaises(ModelLoadError):
                load_session("missing.onnx", root=d)

    @unittest.skipUnless(HAS_ORT, "onnxruntime not installed")
    def test_garbage_model_bytes(self) -> None:
        with self.assertRaises(ModelLoadError):
            DetectionSession.from_bytes(b"not an onnx model")
        with self.assertRaises(ModelLoadError):
            DetectionSession.from_bytes(b"")


if __name__ == "__main__":
    unittest.main()
